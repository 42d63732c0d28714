# src/lrpkit/model/layers.py
"""
Layer classification for relevance propagation.

Every layer is sorted into one ``LayerKind``. The kind decides which
propagation arm the LRP engine uses and which layers the compatibility
check accepts without registration.

Layers may carry an embedded activation function through an
``activation`` attribute, as ``Dense`` does.
"""

import copy
import enum
from typing import Callable, Optional, Union

import torch
import torch.nn as nn
import torch.nn.functional as F
import torch.nn.modules.activation as activation_modules

from lrpkit.model.chain import Chain, Parallel, as_chain


class LayerKind(enum.Enum):
    AFFINE = "affine"
    NORMALIZATION = "normalization"
    POOLING = "pooling"
    RESHAPE = "reshape"
    DROPOUT = "dropout"
    ACTIVATION = "activation"
    CHAIN = "chain"
    PARALLEL = "parallel"
    OPAQUE = "opaque"


def flatten(x: torch.Tensor) -> torch.Tensor:
    """Flatten all but the batch dimension."""
    return x.flatten(1)


class Dense(nn.Linear):
    """
    Linear layer with an embedded activation function.

    Args:
        in_features: Size of each input sample
        out_features: Size of each output sample
        activation: Module or function applied to the output, or None
        bias: Whether to learn an additive bias
        **kwargs: Forwarded to ``nn.Linear`` (device, dtype)

    Example:
        >>> layer = Dense(784, 100, activation=F.relu)
    """

    def __init__(
        self,
        in_features: int,
        out_features: int,
        activation: Optional[Union[Callable, nn.Module]] = None,
        bias: bool = True,
        **kwargs
    ):
        super().__init__(in_features, out_features, bias=bias, **kwargs)
        self.activation = activation

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        out = super().forward(x)
        if self.activation is None:
            return out
        return self.activation(out)

    def extra_repr(self) -> str:
        act = self.activation
        if act is None:
            return super().extra_repr()
        name = getattr(act, "__name__", type(act).__name__)
        return f"{super().extra_repr()}, activation={name}"


AFFINE_LAYERS = (
    nn.Linear,
    nn.Conv1d, nn.Conv2d, nn.Conv3d,
    nn.ConvTranspose1d, nn.ConvTranspose2d, nn.ConvTranspose3d,
)
NORMALIZATION_LAYERS = (nn.BatchNorm1d, nn.BatchNorm2d, nn.BatchNorm3d)
POOLING_LAYERS = (
    nn.MaxPool1d, nn.MaxPool2d, nn.MaxPool3d,
    nn.AvgPool1d, nn.AvgPool2d, nn.AvgPool3d,
    nn.AdaptiveAvgPool1d, nn.AdaptiveAvgPool2d, nn.AdaptiveAvgPool3d,
    nn.AdaptiveMaxPool1d, nn.AdaptiveMaxPool2d, nn.AdaptiveMaxPool3d,
)
RESHAPING_LAYERS = (nn.Flatten, nn.Unflatten, nn.Identity)
RESHAPING_FUNCTIONS = (flatten,)
DROPOUT_LAYERS = (
    nn.Dropout, nn.Dropout1d, nn.Dropout2d, nn.Dropout3d, nn.AlphaDropout,
)

# ReLU-like activations accepted by the compatibility check
RELU_LIKE_LAYERS = (
    nn.ReLU, nn.LeakyReLU, nn.ReLU6, nn.PReLU, nn.RReLU,
    nn.ELU, nn.CELU, nn.SELU, nn.GELU, nn.SiLU, nn.Softplus, nn.Mish,
)
RELU_LIKE_FUNCTIONS = (
    F.relu, torch.relu, F.leaky_relu, F.relu6, F.elu, F.celu, F.selu,
    F.gelu, F.silu, F.softplus, F.mish,
)

# Every module in torch.nn.modules.activation except attention
ACTIVATION_LAYERS = tuple(
    obj for obj in vars(activation_modules).values()
    if isinstance(obj, type)
    and issubclass(obj, nn.Module)
    and obj.__module__ == activation_modules.__name__
    and obj is not nn.MultiheadAttention
)

SOFTMAX_LAYERS = (nn.Softmax, nn.LogSoftmax, nn.Softmax2d)
SOFTMAX_FUNCTIONS = (F.softmax, torch.softmax, F.log_softmax, torch.log_softmax)

# Kinds that pass relevance through without redistribution
PASSTHROUGH_KINDS = (LayerKind.RESHAPE, LayerKind.DROPOUT, LayerKind.ACTIVATION)


def is_activation_module(layer) -> bool:
    """True for activation modules such as ``nn.ReLU`` or ``nn.Tanh``."""
    return isinstance(layer, ACTIVATION_LAYERS)


def is_activation_function(layer, registry=None) -> bool:
    """
    True for plain functions used as activation layers: the built-in
    ReLU-like functions and functions registered as supported activations.

    Args:
        layer: Layer to classify
        registry: CompatibilityRegistry to consult. Default: the
            process-wide registry
    """
    if isinstance(layer, (nn.Module, Chain, Parallel)):
        return False
    if any(layer is fn for fn in RELU_LIKE_FUNCTIONS):
        return True
    if registry is None:
        from lrpkit.core.registry import get_default_registry
        registry = get_default_registry()
    return registry.supports_activation(layer)


def layer_kind(layer, registry=None) -> LayerKind:
    """
    Classify a layer into a ``LayerKind``. ``registry`` decides which plain
    functions count as activations (see ``is_activation_function``).
    """
    if isinstance(layer, Chain):
        return LayerKind.CHAIN
    if isinstance(layer, Parallel):
        return LayerKind.PARALLEL
    if isinstance(layer, AFFINE_LAYERS):
        return LayerKind.AFFINE
    if isinstance(layer, NORMALIZATION_LAYERS):
        return LayerKind.NORMALIZATION
    if isinstance(layer, POOLING_LAYERS):
        return LayerKind.POOLING
    if isinstance(layer, RESHAPING_LAYERS):
        return LayerKind.RESHAPE
    if any(layer is fn for fn in RESHAPING_FUNCTIONS):
        return LayerKind.RESHAPE
    if isinstance(layer, DROPOUT_LAYERS):
        return LayerKind.DROPOUT
    if is_activation_module(layer) or is_activation_function(layer, registry):
        return LayerKind.ACTIVATION
    return LayerKind.OPAQUE


def get_activation(layer, registry=None):
    """
    Return the activation of a layer: the layer itself for activation
    modules and activation functions, the embedded ``activation`` attribute
    for other modules, or None.
    """
    if is_activation_module(layer):
        return layer
    if isinstance(layer, nn.Module):
        return getattr(layer, "activation", None)
    if is_activation_function(layer, registry):
        return layer
    return None


def has_parameters(layer) -> bool:
    """True if the layer carries a weight tensor."""
    return isinstance(getattr(layer, "weight", None), torch.Tensor)


def is_softmax(activation) -> bool:
    if activation is None:
        return False
    if isinstance(activation, SOFTMAX_LAYERS):
        return True
    return any(activation is fn for fn in SOFTMAX_FUNCTIONS)


def activation_name(activation) -> str:
    if activation is None:
        return "-"
    if isinstance(activation, nn.Module):
        return type(activation).__name__
    return getattr(activation, "__name__", repr(activation))


def layer_name(layer) -> str:
    """Short display name: class name for modules, ``__name__`` for functions."""
    if isinstance(layer, Parallel):
        connection = layer.connection
        return f"Parallel({getattr(connection, '__name__', repr(connection))})"
    if isinstance(layer, (Chain, nn.Module)):
        return type(layer).__name__
    return getattr(layer, "__name__", repr(layer))


def strip_activation(layer):
    """Return a copy of ``layer`` without its embedded activation."""
    if getattr(layer, "activation", None) is None:
        return layer
    layer = copy.deepcopy(layer)
    layer.activation = None
    return layer


def last_layer(model):
    """Last leaf layer of a model (Parallel nodes are returned as-is)."""
    layer = model
    while isinstance(layer, Chain) and len(layer) > 0:
        layer = layer[-1]
    return layer


def strip_softmax(model) -> Chain:
    """
    Remove a softmax from the output of a model.

    A trailing softmax module is dropped; a softmax embedded as the
    activation of the last layer is removed from a copy of that layer.
    Models without an output softmax are returned unchanged.
    """
    model = as_chain(model)
    if len(model) == 0:
        return model
    last = model[-1]
    if isinstance(last, Chain):
        return Chain(*model[:-1], strip_softmax(last))
    if is_softmax(last) and is_activation_module(last):
        return Chain(*model[:-1])
    if is_softmax(get_activation(last)):
        return Chain(*model[:-1], strip_activation(last))
    return model
