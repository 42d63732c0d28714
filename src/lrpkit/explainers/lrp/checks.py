# src/lrpkit/explainers/lrp/checks.py
"""
Model and rule checks run when an LRP analyzer is constructed.

LRP is only defined for "deep rectifier" networks: affine layers followed by
ReLU-like activations, plus layers that merely pool, normalize or reshape.
``check_lrp_compat`` walks the leaf layers of a model and compares them
against a CompatibilityRegistry; layers and activations that are neither
built in nor registered make the check fail.

Example:
    >>> check_lrp_compat(model)                     # prints a table on failure
    True
    >>> register_layer_supported(MyDoublingLayer)   # extend the default registry
"""

import logging
from typing import Iterator, List, Optional, Tuple

import pandas as pd

from lrpkit.core.errors import (
    ConfigurationError,
    OutputSoftmaxError,
    UnknownLayerError,
    UnknownActivationError,
)
from lrpkit.core.registry import CompatibilityRegistry, get_default_registry
from lrpkit.explainers.lrp.rules import PassRule, check_rule
from lrpkit.model.chain import (
    Chain,
    ChainTuple,
    Parallel,
    ParallelTuple,
    as_chain,
    is_sum_connection,
    iter_layers,
)
from lrpkit.model.layers import (
    LayerKind,
    PASSTHROUGH_KINDS,
    activation_name,
    get_activation,
    has_parameters,
    is_softmax,
    last_layer,
    layer_kind,
    layer_name,
)

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ["Layer", "Layer supported", "Activation", "Act. supported"]


def _check_nodes(model) -> Iterator:
    """Leaf layers depth-first, with every Parallel node before its branches."""
    if isinstance(model, Chain):
        for node in model:
            yield from _check_nodes(node)
    elif isinstance(model, Parallel):
        yield model
        for branch in model:
            yield from _check_nodes(branch)
    else:
        yield model


def _check_layer(layer, registry: CompatibilityRegistry) -> Tuple[bool, object, bool]:
    if isinstance(layer, Parallel):
        return is_sum_connection(layer.connection), None, True
    activation = get_activation(layer, registry)
    layer_ok = (
        registry.supports_layer(layer)
        or layer_kind(layer, registry) is LayerKind.ACTIVATION
    )
    return layer_ok, activation, registry.supports_activation(activation)


def model_check_summary(model, registry: Optional[CompatibilityRegistry] = None) -> pd.DataFrame:
    """
    Tabulate the compatibility of every layer of a model.

    Args:
        model: Chain, nn.Sequential or single layer
        registry: Registry to check against. Default: the process-wide registry

    Returns:
        DataFrame with columns Layer, Layer supported, Activation, Act. supported
    """
    registry = registry if registry is not None else get_default_registry()
    rows = []
    for layer in _check_nodes(as_chain(model)):
        layer_ok, activation, act_ok = _check_layer(layer, registry)
        rows.append({
            "Layer": layer_name(layer),
            "Layer supported": layer_ok,
            "Activation": activation_name(activation),
            "Act. supported": act_ok,
        })
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


def check_lrp_compat(
    model,
    verbose: bool = True,
    registry: Optional[CompatibilityRegistry] = None
) -> bool:
    """
    Check that LRP can be used on a model.

    Args:
        model: Chain, nn.Sequential or single layer
        verbose: Print the summary table when the check fails
        registry: Registry to check against. Default: the process-wide registry

    Returns:
        True if the check passes

    Raises:
        UnknownLayerError: If a layer is neither built in nor registered, or a
            Parallel merges its branches with something other than a sum
        UnknownActivationError: If all layers pass but an activation is
            neither ReLU-like nor registered
    """
    registry = registry if registry is not None else get_default_registry()
    unknown_layers: List = []
    unknown_activations: List = []
    for layer in _check_nodes(as_chain(model)):
        layer_ok, activation, act_ok = _check_layer(layer, registry)
        if not layer_ok:
            unknown_layers.append(layer)
        if not act_ok:
            unknown_activations.append(activation)

    if not unknown_layers and not unknown_activations:
        logger.debug("Model passed the LRP compatibility check")
        return True

    summary = model_check_summary(model, registry)
    if verbose:
        print(summary.to_string(index=False))

    if unknown_layers:
        names = ", ".join(layer_name(l) for l in unknown_layers)
        raise UnknownLayerError(
            f"Unknown layers found in model: {names}. LRP assumes deep "
            "rectifier networks. If a layer only reshapes its input or is "
            "otherwise compatible, register it with register_layer_supported(). "
            "Pass skip_checks=True to the analyzer to skip this check.",
            unknown_layers=unknown_layers,
            unknown_activations=unknown_activations,
            summary=summary,
        )
    names = ", ".join(activation_name(a) for a in unknown_activations)
    raise UnknownActivationError(
        f"Unknown or unsupported activation functions found in model: {names}. "
        "LRP assumes ReLU-like activations. Register compatible activations "
        "with register_activation_supported(), or pass skip_checks=True to "
        "the analyzer to skip this check.",
        unknown_activations=unknown_activations,
        summary=summary,
    )


def check_output_softmax(model) -> None:
    """
    Raise OutputSoftmaxError if the model output is a softmax.

    Raises:
        OutputSoftmaxError: If the last layer is a softmax or carries a
            softmax activation
    """
    last = last_layer(as_chain(model))
    if is_softmax(last) or is_softmax(get_activation(last)):
        raise OutputSoftmaxError(
            "Model contains softmax activation function in output layer. "
            "LRP explains output logits; remove the softmax with "
            "strip_softmax(model) before building the analyzer."
        )


def _iter_rules(rules) -> Iterator:
    if isinstance(rules, (ChainTuple, ParallelTuple)):
        for value in rules:
            yield from _iter_rules(value)
    else:
        yield rules


def check_rule_structure(model, rules) -> None:
    """
    Check that a rule assignment mirrors the model structure and holds
    valid rules only.

    Raises:
        ConfigurationError: On a structural mismatch or an invalid rule
    """
    if isinstance(model, Chain):
        if not isinstance(rules, ChainTuple) or len(rules) != len(model):
            raise ConfigurationError(
                f"Rule assignment {rules!r} does not match {model!r}: expected "
                f"a ChainTuple of {len(model)} rules."
            )
        for layer, rule in zip(model, rules):
            check_rule_structure(layer, rule)
    elif isinstance(model, Parallel):
        if not isinstance(rules, ParallelTuple) or len(rules) != len(model):
            raise ConfigurationError(
                f"Rule assignment {rules!r} does not match {model!r}: expected "
                f"a ParallelTuple of {len(model)} branches."
            )
        for branch, rule in zip(model, rules):
            check_rule_structure(branch, rule)
    else:
        check_rule(rules)


def check_rule_compat(model, rules, registry: Optional[CompatibilityRegistry] = None) -> None:
    """
    Check that rules requiring weights are only assigned to layers with
    weights, and that PassRule is not assigned to affine layers.
    Pass-through layers ignore their rule and are not checked.

    Args:
        model: Chain, nn.Sequential or single layer
        rules: ChainTuple mirroring the model
        registry: Registry deciding which functions are activations.
            Default: the process-wide registry

    Raises:
        ConfigurationError: If a parameter rule is assigned to a layer
            without parameters, or PassRule to an affine layer
    """
    model = as_chain(model)
    for position, (layer, rule) in enumerate(
        zip(iter_layers(model), _iter_rules(rules)), start=1
    ):
        kind = layer_kind(layer, registry)
        if isinstance(rule, PassRule) and kind is LayerKind.AFFINE:
            raise ConfigurationError(
                f"{rule!r} at position {position} cannot be used on "
                f"{layer_name(layer)}: affine layers change the shape and "
                "distribution of relevance."
            )
        if not rule.requires_parameters or kind in PASSTHROUGH_KINDS:
            continue
        if not has_parameters(layer):
            raise ConfigurationError(
                f"{rule!r} at position {position} requires a layer with weights, "
                f"but {layer_name(layer)} has none."
            )
