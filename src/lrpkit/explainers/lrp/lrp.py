# src/lrpkit/explainers/lrp/lrp.py
"""
Layer-wise Relevance Propagation (LRP) analyzer.

LRP decomposes a network prediction back onto the input features. A forward
pass records the activations of every layer; relevance is then seeded at the
selected output neurons and redistributed backwards layer by layer, each
layer using the rule assigned to it. Relevance is conserved up to the
stabilizers and the biases absorbed along the way.

Propagation dispatch:
    Chain                         -> local backward sweep
    Parallel (sum connection)     -> split by branch output, sum the inputs
    PassRule, reshape, dropout,
    activation layers             -> relevance reshaped to the input
    (ZBoxRule, affine)            -> bounded-input closed form
    (AlphaBetaRule, affine)       -> separate positive/negative terms
    nn.Linear                     -> closed-form matrix product
    anything else                 -> one autograd pass on the modified layer

Example:
    import torch.nn as nn
    from lrpkit import LRP, EpsilonPlusFlat, analyze

    model = nn.Sequential(nn.Linear(784, 100), nn.ReLU(), nn.Linear(100, 10))
    analyzer = LRP(model, EpsilonPlusFlat())
    expl = analyze(x, analyzer)             # explain the maximal output
    expl = analyze(x, analyzer, 3)          # explain output neuron 3

Reference:
    Bach, S., Binder, A., Montavon, G., Klauschen, F., Müller, K. R., & Samek, W. (2015).
    On Pixel-wise Explanations for Non-Linear Classifier Decisions by Layer-wise
    Relevance Propagation. PLOS ONE.
    https://doi.org/10.1371/journal.pone.0130140
"""

import copy
import logging
import warnings
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd
import torch
import torch.nn as nn
import torch.nn.functional as F

from lrpkit.core.analyzer import BaseAnalyzer
from lrpkit.core.errors import ConfigurationError, ShapeError, NumericWarning
from lrpkit.core.explanation import Explanation
from lrpkit.core.neuron_selection import (
    NeuronSelector,
    get_neuron_selector,
    mask_output_neuron,
)
from lrpkit.core.registry import CompatibilityRegistry
from lrpkit.explainers.lrp.checks import (
    check_lrp_compat,
    check_output_softmax,
    check_rule_compat,
    check_rule_structure,
)
from lrpkit.explainers.lrp.composite import (
    Composite,
    GlobalMap,
    ZeroComposite,
    lrp_rules,
)
from lrpkit.explainers.lrp.rules import (
    LRPRule,
    AlphaBetaRule,
    PassRule,
    ZBoxRule,
    stabilize_denominator,
)
from lrpkit.model.chain import (
    Chain,
    ChainTuple,
    as_chain,
    flatten_model,
    flatten_rules,
    iter_layers,
    map_structure,
)
from lrpkit.model.layers import (
    Dense,
    LayerKind,
    PASSTHROUGH_KINDS,
    has_parameters,
    layer_kind,
    layer_name,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Modified layers
# =============================================================================

def _copy_without_activation(layer):
    layer = copy.deepcopy(layer)
    if getattr(layer, "activation", None) is not None:
        layer.activation = None
    return layer


def _with_parameters(layer, weight: torch.Tensor, bias: Optional[torch.Tensor]):
    """Copy of ``layer`` (activation stripped) with new weight and bias."""
    new = _copy_without_activation(layer)
    new.requires_grad_(False)
    with torch.no_grad():
        new.weight.copy_(weight)
        if new.bias is not None and bias is not None:
            new.bias.copy_(bias)
    return new


def _parameters(layer) -> Tuple[torch.Tensor, torch.Tensor]:
    weight = layer.weight.detach()
    bias = layer.bias.detach() if layer.bias is not None else weight.new_zeros(())
    return weight, bias


def _signed_layers(layer) -> Tuple:
    """Copies of ``layer`` keeping only the positive / negative parameters."""
    weight, bias = _parameters(layer)
    positive = _with_parameters(layer, weight.clamp(min=0), bias.clamp(min=0))
    negative = _with_parameters(layer, weight.clamp(max=0), bias.clamp(max=0))
    return positive, negative


def modify_layer(rule: LRPRule, layer):
    """
    Precompute the layer a rule propagates through.

    ``modify_layer`` overrides take precedence; otherwise layers with weights
    are copied and their parameters replaced by ``modify_parameters``.
    Embedded activations are removed from the copies. Layers without
    parameters are used as they are.
    """
    kind = layer_kind(layer)
    if isinstance(rule, PassRule) or kind in PASSTHROUGH_KINDS:
        return layer

    modified = rule.modify_layer(layer)
    if modified is not None:
        return _copy_without_activation(modified)

    if not has_parameters(layer):
        return layer

    if kind is LayerKind.AFFINE and isinstance(rule, ZBoxRule):
        return (_copy_without_activation(layer), *_signed_layers(layer))
    if kind is LayerKind.AFFINE and isinstance(rule, AlphaBetaRule):
        positive, negative = _signed_layers(layer)
        weight, _ = _parameters(layer)
        positive_nobias = _with_parameters(layer, weight.clamp(min=0), torch.zeros(()))
        negative_nobias = _with_parameters(layer, weight.clamp(max=0), torch.zeros(()))
        return positive, negative, positive_nobias, negative_nobias

    weight, bias = _parameters(layer)
    new_weight, new_bias = rule.modify_parameters(weight, bias)
    if layer.bias is None:
        new_bias = None
    return _with_parameters(layer, new_weight, new_bias)


def get_modified_layers(model, rules):
    """Modified-layer cache shaped like ``model``."""
    return map_structure(lambda layer, rule: modify_layer(rule, layer), model, rules)


# =============================================================================
# Propagation arms
# =============================================================================

def _lrp_pass(layer, rule, modified, a_in, a_out, R_out):
    if R_out.numel() != a_in.numel():
        raise ShapeError(
            f"Cannot pass relevance of shape {tuple(R_out.shape)} through "
            f"{layer!r} with input shape {tuple(a_in.shape)}."
        )
    return R_out.reshape(a_in.shape)


def _lrp_linear(layer, rule, modified, a_in, a_out, R_out):
    a = rule.modify_input(a_in)
    z = F.linear(a, modified.weight, modified.bias)
    s = R_out / rule.modify_denominator(z)
    return a * (s @ modified.weight)


def _lrp_generic(layer, rule, modified, a_in, a_out, R_out):
    with torch.enable_grad():
        a = rule.modify_input(a_in).detach().requires_grad_(True)
        z = modified(a)
        s = (R_out / rule.modify_denominator(z)).detach()
        (c,) = torch.autograd.grad((z * s).sum(), a)
    return a.detach() * c


def _lrp_zbox(layer, rule, modified, a_in, a_out, R_out):
    plain, positive, negative = modified
    low = torch.as_tensor(rule.low, dtype=a_in.dtype, device=a_in.device).expand_as(a_in)
    high = torch.as_tensor(rule.high, dtype=a_in.dtype, device=a_in.device).expand_as(a_in)
    with torch.enable_grad():
        a = a_in.detach().requires_grad_(True)
        l = low.detach().clone().requires_grad_(True)
        h = high.detach().clone().requires_grad_(True)
        z = plain(a) - positive(l) - negative(h)
        s = (R_out / rule.modify_denominator(z)).detach()
        c, c_low, c_high = torch.autograd.grad((z * s).sum(), (a, l, h))
    return a_in * c + low * c_low + high * c_high


def _lrp_alpha_beta(layer, rule, modified, a_in, a_out, R_out):
    positive, negative, positive_nobias, negative_nobias = modified
    with torch.enable_grad():
        a_pos = a_in.clamp(min=0).detach().requires_grad_(True)
        a_neg = a_in.clamp(max=0).detach().requires_grad_(True)

        z_pos = positive(a_pos) + negative_nobias(a_neg)
        s_pos = (R_out / rule.modify_denominator(z_pos)).detach()
        c_pos = torch.autograd.grad((z_pos * s_pos).sum(), (a_pos, a_neg))

        z_neg = negative(a_pos) + positive_nobias(a_neg)
        s_neg = (R_out / rule.modify_denominator(z_neg)).detach()
        c_neg = torch.autograd.grad((z_neg * s_neg).sum(), (a_pos, a_neg))

    a_pos, a_neg = a_pos.detach(), a_neg.detach()
    R_pos = a_pos * c_pos[0] + a_neg * c_pos[1]
    R_neg = a_pos * c_neg[0] + a_neg * c_neg[1]
    return rule.alpha * R_pos - rule.beta * R_neg


def _lrp_chain(chain, rules, modified, a_in, a_out, R_out):
    activations = [a_in] + chain.activations(a_in)
    return _backward_sweep(chain, rules, modified, activations, R_out)[0]


def _lrp_parallel(parallel, rules, modified, a_in, a_out, R_out):
    outputs = [branch(a_in) for branch in parallel.branches]
    total = stabilize_denominator(sum(outputs))
    R_in = torch.zeros_like(a_in)
    for branch, rule, mod, out in zip(parallel.branches, rules, modified, outputs):
        R_branch = out * R_out / total
        R_in = R_in + _lrp_step(branch, rule, mod, a_in, out, R_branch)
    return R_in


# (rule class, layer kind) -> propagation arm; rule classes match by subclass
_DISPATCH: Dict[Tuple[type, LayerKind], Callable] = {
    (ZBoxRule, LayerKind.AFFINE): _lrp_zbox,
    (AlphaBetaRule, LayerKind.AFFINE): _lrp_alpha_beta,
}

# modified layers computing exactly F.linear(x, weight, bias)
_LINEAR_FORWARDS = (nn.Linear.forward, Dense.forward)


def propagation_arm(layer, rule, modified) -> Callable:
    """Select the propagation arm for a layer and its rule."""
    kind = layer_kind(layer)
    if kind is LayerKind.CHAIN:
        return _lrp_chain
    if kind is LayerKind.PARALLEL:
        return _lrp_parallel
    if isinstance(rule, PassRule) or kind in PASSTHROUGH_KINDS:
        return _lrp_pass
    if isinstance(modified, tuple):
        for rule_cls in type(rule).__mro__:
            arm = _DISPATCH.get((rule_cls, kind))
            if arm is not None:
                return arm
    if isinstance(modified, nn.Linear) and type(modified).forward in _LINEAR_FORWARDS:
        return _lrp_linear
    return _lrp_generic


def _lrp_step(layer, rule, modified, a_in, a_out, R_out):
    arm = propagation_arm(layer, rule, modified)
    R_in = arm(layer, rule, modified, a_in, a_out, R_out)
    if not torch.isfinite(R_in).all():
        warnings.warn(
            f"Non-finite relevance after propagating through {layer!r} "
            f"with {rule!r}. Consider a stabilizing rule such as EpsilonRule.",
            NumericWarning,
            stacklevel=2,
        )
    return R_in


def _backward_sweep(model: Chain, rules, modified, activations, R_last) -> List[torch.Tensor]:
    relevances = [None] * len(activations)
    relevances[-1] = R_last
    for i in reversed(range(len(model))):
        relevances[i] = _lrp_step(
            model[i], rules[i], modified[i],
            activations[i], activations[i + 1], relevances[i + 1],
        )
    return relevances


# =============================================================================
# Analyzer
# =============================================================================

class LRP(BaseAnalyzer):
    """
    Layer-wise Relevance Propagation analyzer.

    Args:
        model: Chain, nn.Sequential or single layer to explain. Modules are
            put in evaluation mode.
        rules: None (ZeroRule on every layer), a single LRPRule applied to
            every layer, a Composite, a list of rules (one per layer) or a
            ChainTuple mirroring the model
        skip_checks: Skip the softmax, compatibility and rule checks
        flatten: Inline nested Chains before propagation
        verbose: Print the compatibility table when the model check fails
        registry: CompatibilityRegistry to check against. Default: the
            process-wide registry

    Raises:
        ConfigurationError: On invalid rules or composites, or when the
            model fails a check (see ``check_lrp_compat``)
    """

    def __init__(
        self,
        model,
        rules=None,
        skip_checks: bool = False,
        flatten: bool = True,
        verbose: bool = True,
        registry: Optional[CompatibilityRegistry] = None
    ):
        model = as_chain(model).eval()
        rules = self._resolve_rules(model, rules)
        if flatten:
            model = flatten_model(model)
            rules = flatten_rules(rules)
        check_rule_structure(model, rules)

        if skip_checks:
            logger.info("Skipping LRP model checks")
        else:
            check_output_softmax(model)
            check_lrp_compat(model, verbose=verbose, registry=registry)
            check_rule_compat(model, rules, registry=registry)

        super().__init__(model)
        self.rules = rules
        self.modified_layers = get_modified_layers(model, rules)
        logger.debug(
            "Built LRP analyzer for %d layers (flatten=%s)",
            len(list(iter_layers(model))), flatten,
        )

    @staticmethod
    def _resolve_rules(model: Chain, rules) -> ChainTuple:
        if rules is None:
            return lrp_rules(model, ZeroComposite())
        if isinstance(rules, LRPRule):
            return lrp_rules(model, Composite(GlobalMap(rules)))
        if isinstance(rules, Composite):
            return lrp_rules(model, rules)
        if isinstance(rules, ChainTuple):
            return rules
        if isinstance(rules, (list, tuple)):
            return ChainTuple(*rules)
        raise ConfigurationError(
            "rules must be None, an LRPRule, a Composite, a list of rules or a "
            f"ChainTuple, got {type(rules).__name__}."
        )

    def _forward(self, input: torch.Tensor) -> List[torch.Tensor]:
        try:
            return [input] + self.model.activations(input)
        except RuntimeError as e:
            raise ShapeError(
                f"Forward pass failed for input of shape {tuple(input.shape)}: {e}"
            ) from e

    def __call__(
        self,
        input: torch.Tensor,
        neuron_selector: Optional[NeuronSelector] = None,
        layerwise_relevances: bool = False
    ) -> Explanation:
        """
        Compute the LRP attribution of ``input``.

        Args:
            input: Input batch, batch dimension first
            neuron_selector: Selector choosing the output neurons to explain,
                an output index, a list of indices, or None for the
                maximally activated neuron
            layerwise_relevances: Also return the relevance at every layer
                boundary in ``extras["layerwise_relevances"]``; the first
                entry is the attribution, the last is the output seed

        Returns:
            Explanation with analyzer tag "LRP"
        """
        neuron_selector = get_neuron_selector(neuron_selector)
        with torch.no_grad():
            activations = self._forward(input)
            output = activations[-1]
            selection = neuron_selector.select(output)
            seed = mask_output_neuron(output, selection)
            relevances = _backward_sweep(
                self.model, self.rules, self.modified_layers, activations, seed
            )

        extras = {"layerwise_relevances": relevances} if layerwise_relevances else None
        return Explanation(
            attribution=relevances[0],
            output=output,
            neuron_selection=selection,
            analyzer="LRP",
            extras=extras,
        )

    def summary(self) -> pd.DataFrame:
        """
        Table of the rule assigned to each layer.

        Returns:
            DataFrame with columns Position, Layer, Rule
        """
        rows = [
            {"Position": position, "Layer": layer_name(layer), "Rule": repr(rule)}
            for position, (layer, rule) in enumerate(
                zip(iter_layers(self.model), _leaves(self.rules)), start=1
            )
        ]
        return pd.DataFrame(rows, columns=["Position", "Layer", "Rule"])

    def __repr__(self):
        lines = ["LRP("]
        for layer, rule in zip(iter_layers(self.model), _leaves(self.rules)):
            lines.append(f"  {layer!r} => {rule!r},")
        lines.append(")")
        return "\n".join(lines)


def _leaves(rules):
    if isinstance(rules, tuple):
        for value in rules:
            yield from _leaves(value)
    else:
        yield rules
