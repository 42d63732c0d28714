"""
Model graph representation: Chains, Parallel nodes and layer classification.
"""

from lrpkit.model.chain import (
    Chain,
    Parallel,
    ChainTuple,
    ParallelTuple,
    parallel_sum,
    as_chain,
    flatten_model,
    flatten_rules,
    iter_layers,
)
from lrpkit.model.layers import (
    Dense,
    LayerKind,
    flatten,
    layer_kind,
    get_activation,
    strip_softmax,
)

__all__ = [
    "Chain",
    "Parallel",
    "ChainTuple",
    "ParallelTuple",
    "parallel_sum",
    "as_chain",
    "flatten_model",
    "flatten_rules",
    "iter_layers",
    "Dense",
    "LayerKind",
    "flatten",
    "layer_kind",
    "get_activation",
    "strip_softmax",
]
