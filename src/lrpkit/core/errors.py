# src/lrpkit/core/errors.py
"""
Exception and warning types raised by lrpkit.

Configuration problems are detected when an analyzer is constructed, so a
validated analyzer never fails on compatibility grounds when it is called.
All errors derive from ValueError to stay catchable by code that guards
analyzer construction with ``except ValueError``.
"""

from typing import List, Optional


class ConfigurationError(ValueError):
    """Invalid analyzer configuration (rules, composite or model)."""


class ModelCheckError(ConfigurationError):
    """
    A model failed the LRP compatibility check.

    Attributes:
        unknown_layers: Layers that are neither built-in nor registered
        unknown_activations: Activation functions that are neither built-in
            nor registered
        summary: pandas DataFrame with one row per checked layer, or None
    """

    def __init__(
        self,
        message: str,
        unknown_layers: Optional[List] = None,
        unknown_activations: Optional[List] = None,
        summary=None
    ):
        super().__init__(message)
        self.unknown_layers = list(unknown_layers or [])
        self.unknown_activations = list(unknown_activations or [])
        self.summary = summary


class UnknownLayerError(ModelCheckError):
    """The model contains a layer LRP does not know how to handle."""


class UnknownActivationError(ModelCheckError):
    """The model contains an activation function that is not ReLU-like."""


class OutputSoftmaxError(ConfigurationError):
    """The model output is normalized to probabilities."""


class UnresolvedRuleError(ConfigurationError):
    """A composite left a layer without a rule."""

    def __init__(self, position: int, layer=None):
        super().__init__(
            f"No rule could be determined for layer at position {position}"
            + (f" ({layer!r})" if layer is not None else "")
            + ". Add a primitive covering it, e.g. GlobalMap(EpsilonRule())."
        )
        self.position = position
        self.layer = layer


class ShapeError(ValueError):
    """An input or intermediate tensor does not have the expected shape."""


class NumericWarning(UserWarning):
    """Relevance propagation produced non-finite values."""
