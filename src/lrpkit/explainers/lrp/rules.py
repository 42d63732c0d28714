# src/lrpkit/explainers/lrp/rules.py
"""
LRP propagation rules.

A rule decides how the relevance of a layer's output is redistributed onto
its input. Most rules are expressed through four hooks that the propagation
engine applies around a re-evaluation of the layer:

- ``modify_input(a)``: transform the input activation
- ``modify_parameters(W, b)``: transform weight and bias
- ``modify_layer(layer)``: replace the whole layer (takes precedence over
  ``modify_parameters``; return None to keep the default behaviour)
- ``modify_denominator(z)``: stabilize the layer output before dividing

Mathematical Formulation:
    For layer l with input a and output z = Wa + b:

    LRP-0:     R_j = Σ_k (a_j * w_jk / z_k) * R_k
    LRP-ε:     R_j = Σ_k (a_j * w_jk / (z_k + ε*sign(z_k))) * R_k
    LRP-γ:     R_j = Σ_k (a_j * (w_jk + γ*w_jk⁺) / (z_k + γ*z_k⁺)) * R_k
    LRP-w²:    R_j = Σ_k (w_jk² / Σ_i w_ik²) * R_k
    LRP-flat:  R_j = Σ_k (1 / Σ_i 1) * R_k
    LRP-αβ:    R_j = Σ_k (α * (a_j * w_jk)⁺ / z_k⁺ - β * (a_j * w_jk)⁻ / z_k⁻) * R_k
    LRP-z⁺:    R_j = Σ_k (a_j * w_jk⁺ / Σ_i a_i * w_ik⁺) * R_k
    LRP-zᴮ:    R_j = Σ_k ((a_j w_jk - l_j w_jk⁺ - h_j w_jk⁻) / z_k^B) * R_k

Custom rules subclass LRPRule and override the hooks they need:

    class MyGammaRule(LRPRule):
        requires_parameters = True

        def modify_parameters(self, weight, bias):
            return weight + 0.25 * weight.clamp(min=0), bias + 0.25 * bias.clamp(min=0)

Reference:
    Montavon, G., Binder, A., Lapuschkin, S., Samek, W., & Müller, K. R. (2019).
    Layer-wise Relevance Propagation: An Overview. Explainable AI: Interpreting,
    Explaining and Visualizing Deep Learning. Springer.
"""

import math
from typing import Optional, Tuple

import torch

from lrpkit.core.errors import ConfigurationError


DEFAULT_STABILIZER = 1e-9
DEFAULT_EPSILON = 1e-6
DEFAULT_GAMMA = 0.25


def stabilize_denominator(d: torch.Tensor, eps: float = DEFAULT_STABILIZER) -> torch.Tensor:
    """
    Add ``eps`` with the sign of each element, so that no element changes
    sign. Zeros are treated as positive.
    """
    sign = torch.where(d >= 0, torch.ones_like(d), -torch.ones_like(d))
    return d + eps * sign


class LRPRule:
    """
    Base class of LRP rules. Without overrides it behaves like LRP-0.

    Attributes:
        requires_parameters: If True, the rule is only meaningful on layers
            with weights and is rejected elsewhere by the model checks.
    """

    requires_parameters = False

    def modify_input(self, input: torch.Tensor) -> torch.Tensor:
        return input

    def modify_parameters(
        self,
        weight: torch.Tensor,
        bias: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        return weight, bias

    def modify_layer(self, layer) -> Optional[object]:
        return None

    def modify_denominator(self, denominator: torch.Tensor) -> torch.Tensor:
        return stabilize_denominator(denominator, DEFAULT_STABILIZER)

    def __eq__(self, other):
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self):
        return hash((type(self), tuple(sorted(vars(self).items()))))

    def __repr__(self):
        params = ", ".join(f"{k}={v}" for k, v in vars(self).items())
        return f"{type(self).__name__}({params})"


def overrides(rule: LRPRule, hook: str) -> bool:
    """True if the rule's class overrides the given LRPRule hook."""
    return getattr(type(rule), hook) is not getattr(LRPRule, hook)


def check_rule(rule) -> None:
    """
    Validate a single rule object.

    Raises:
        ConfigurationError: If ``rule`` is not an LRPRule or defines both
            ``modify_layer`` and ``modify_parameters``
    """
    if not isinstance(rule, LRPRule):
        raise ConfigurationError(
            f"{rule!r} is not an LRP rule. Rules must subclass LRPRule."
        )
    if overrides(rule, "modify_layer") and overrides(rule, "modify_parameters"):
        raise ConfigurationError(
            f"{type(rule).__name__} overrides both modify_layer and "
            "modify_parameters. modify_layer takes precedence, so define only one."
        )


class ZeroRule(LRPRule):
    """LRP-0: basic rule without modifications."""


class EpsilonRule(LRPRule):
    """
    LRP-ε: adds a stabilizer ε to the denominator, absorbing weak or
    contradictory relevance.

    Args:
        epsilon: Stabilizer. Default: 1e-6
    """

    def __init__(self, epsilon: float = DEFAULT_EPSILON):
        if epsilon < 0:
            raise ConfigurationError(f"epsilon must be >= 0, got {epsilon}")
        self.epsilon = epsilon

    def modify_denominator(self, denominator):
        return stabilize_denominator(denominator, self.epsilon)


class GammaRule(LRPRule):
    """
    LRP-γ: favours positive contributions, W' = W + γ·W⁺, b' = b + γ·b⁺.

    Args:
        gamma: Weight of the positive parameters. Default: 0.25
    """

    requires_parameters = True

    def __init__(self, gamma: float = DEFAULT_GAMMA):
        if gamma < 0:
            raise ConfigurationError(f"gamma must be >= 0, got {gamma}")
        self.gamma = gamma

    def modify_parameters(self, weight, bias):
        return (
            weight + self.gamma * weight.clamp(min=0),
            bias + self.gamma * bias.clamp(min=0),
        )


class WSquareRule(LRPRule):
    """LRP-w²: redistributes by squared weights, independent of the input."""

    requires_parameters = True

    def modify_input(self, input):
        return torch.ones_like(input)

    def modify_parameters(self, weight, bias):
        return weight ** 2, bias ** 2


class FlatRule(LRPRule):
    """LRP-flat: redistributes uniformly over the receptive field."""

    requires_parameters = True

    def modify_input(self, input):
        return torch.ones_like(input)

    def modify_parameters(self, weight, bias):
        return torch.ones_like(weight), torch.zeros_like(bias)


class ZBoxRule(LRPRule):
    """
    LRP-zᴮ for input layers whose values are bounded by ``low`` and ``high``.

    Args:
        low: Lowest admissible input value (scalar or tensor broadcastable
            to one input sample)
        high: Highest admissible input value
    """

    requires_parameters = True

    def __init__(self, low, high):
        self.low = low
        self.high = high

    def __eq__(self, other):
        return (
            type(self) is type(other)
            and torch.equal(torch.as_tensor(self.low), torch.as_tensor(other.low))
            and torch.equal(torch.as_tensor(self.high), torch.as_tensor(other.high))
        )

    def __hash__(self):
        return hash(type(self))

    def __repr__(self):
        def fmt(v):
            return f"{float(v)}" if torch.as_tensor(v).numel() == 1 else "tensor"
        return f"ZBoxRule(low={fmt(self.low)}, high={fmt(self.high)})"


class AlphaBetaRule(LRPRule):
    """
    LRP-αβ: weighs positive and negative contributions separately.

    Args:
        alpha: Weight of positive contributions. Default: 2.0
        beta: Weight of negative contributions. Default: 1.0

    Raises:
        ConfigurationError: If alpha or beta is negative or alpha - beta != 1
    """

    requires_parameters = True

    def __init__(self, alpha: float = 2.0, beta: float = 1.0):
        if alpha < 0 or beta < 0:
            raise ConfigurationError(
                f"alpha and beta must be non-negative, got alpha={alpha}, beta={beta}"
            )
        if not math.isclose(alpha - beta, 1.0):
            raise ConfigurationError(
                f"For alpha-beta rule, alpha - beta must equal 1. "
                f"Got alpha={alpha}, beta={beta}, difference={alpha - beta}"
            )
        self.alpha = alpha
        self.beta = beta


class ZPlusRule(AlphaBetaRule):
    """LRP-z⁺: only positive contributions, equivalent to α=1, β=0."""

    def __init__(self):
        super().__init__(alpha=1.0, beta=0.0)

    def __repr__(self):
        return "ZPlusRule()"


class PassRule(LRPRule):
    """Pass relevance through unchanged (reshaped to the input shape)."""
