# src/lrpkit/__init__.py
"""
lrpkit - Layer-wise Relevance Propagation for PyTorch models.

Explains the predictions of feed-forward networks by redistributing the
selected output back onto the input, layer by layer, with a rule chosen per
layer. Rules are assigned directly or through composites, and models are
checked for compatibility before an analyzer is built.

Quick Start:
    import torch.nn as nn
    from lrpkit import LRP, EpsilonPlusFlat, analyze

    model = nn.Sequential(nn.Linear(4, 16), nn.ReLU(), nn.Linear(16, 3))
    analyzer = LRP(model, EpsilonPlusFlat())
    explanation = analyze(x, analyzer)
    explanation.attribution        # same shape as x

Custom layers:
    from lrpkit import register_layer_supported
    register_layer_supported(MyLayer)
"""

from lrpkit.core.analyzer import BaseAnalyzer, analyze
from lrpkit.core.explanation import Explanation, HEATMAPPING_PRESETS
from lrpkit.core.neuron_selection import NeuronSelector, MaxActivationNS, IndexNS
from lrpkit.core.registry import (
    CompatibilityRegistry,
    default_registry,
    get_default_registry,
    register_layer_supported,
    register_activation_supported,
)
from lrpkit.core.errors import (
    ConfigurationError,
    ModelCheckError,
    UnknownLayerError,
    UnknownActivationError,
    OutputSoftmaxError,
    UnresolvedRuleError,
    ShapeError,
    NumericWarning,
)
from lrpkit.model import (
    Chain,
    Parallel,
    ChainTuple,
    ParallelTuple,
    Dense,
    parallel_sum,
    flatten,
    flatten_model,
    strip_softmax,
)
from lrpkit.explainers.lrp import (
    LRP,
    LRPRule,
    ZeroRule,
    EpsilonRule,
    GammaRule,
    WSquareRule,
    FlatRule,
    ZBoxRule,
    AlphaBetaRule,
    ZPlusRule,
    PassRule,
    Composite,
    LayerMap,
    GlobalMap,
    RangeMap,
    FirstLayerMap,
    LastLayerMap,
    GlobalTypeMap,
    RangeTypeMap,
    FirstLayerTypeMap,
    LastLayerTypeMap,
    FirstNTypeMap,
    lrp_rules,
    EpsilonGammaBox,
    EpsilonPlus,
    EpsilonAlpha2Beta1,
    EpsilonPlusFlat,
    EpsilonAlpha2Beta1Flat,
    check_lrp_compat,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "BaseAnalyzer",
    "analyze",
    "Explanation",
    "HEATMAPPING_PRESETS",
    # Neuron selection
    "NeuronSelector",
    "MaxActivationNS",
    "IndexNS",
    # Registry
    "CompatibilityRegistry",
    "default_registry",
    "get_default_registry",
    "register_layer_supported",
    "register_activation_supported",
    # Errors
    "ConfigurationError",
    "ModelCheckError",
    "UnknownLayerError",
    "UnknownActivationError",
    "OutputSoftmaxError",
    "UnresolvedRuleError",
    "ShapeError",
    "NumericWarning",
    # Model graph
    "Chain",
    "Parallel",
    "ChainTuple",
    "ParallelTuple",
    "Dense",
    "parallel_sum",
    "flatten",
    "flatten_model",
    "strip_softmax",
    # LRP
    "LRP",
    "LRPRule",
    "ZeroRule",
    "EpsilonRule",
    "GammaRule",
    "WSquareRule",
    "FlatRule",
    "ZBoxRule",
    "AlphaBetaRule",
    "ZPlusRule",
    "PassRule",
    # Composites
    "Composite",
    "LayerMap",
    "GlobalMap",
    "RangeMap",
    "FirstLayerMap",
    "LastLayerMap",
    "GlobalTypeMap",
    "RangeTypeMap",
    "FirstLayerTypeMap",
    "LastLayerTypeMap",
    "FirstNTypeMap",
    "lrp_rules",
    "EpsilonGammaBox",
    "EpsilonPlus",
    "EpsilonAlpha2Beta1",
    "EpsilonPlusFlat",
    "EpsilonAlpha2Beta1Flat",
    "check_lrp_compat",
]
