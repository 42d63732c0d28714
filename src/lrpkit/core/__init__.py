"""
lrpkit core components.
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

__all__ = [
    "BaseAnalyzer",
    "analyze",
    "Explanation",
    "HEATMAPPING_PRESETS",
    "NeuronSelector",
    "MaxActivationNS",
    "IndexNS",
    "CompatibilityRegistry",
    "default_registry",
    "get_default_registry",
    "register_layer_supported",
    "register_activation_supported",
    "ConfigurationError",
    "ModelCheckError",
    "UnknownLayerError",
    "UnknownActivationError",
    "OutputSoftmaxError",
    "UnresolvedRuleError",
    "ShapeError",
    "NumericWarning",
]
