# src/lrpkit/core/registry.py
"""
CompatibilityRegistry - which layers and activations LRP may be applied to.

LRP assumes "deep rectifier" networks. The registry records which layer
types (or plain functions used as layers) and which activation functions are
known to be compatible. It is seeded with built-in defaults and can be
extended by user code; entries are never removed.

Example usage:
    from lrpkit.core.registry import register_layer_supported

    class MyDoublingLayer(nn.Module):
        def forward(self, x):
            return 2 * x

    register_layer_supported(MyDoublingLayer)

Concurrency:
    The default registry is process-wide mutable state. It is read whenever
    an analyzer is constructed and written only by explicit registration
    calls. Register custom layers at start-up, before analyzers are built
    from several threads; concurrent registration is not synchronized.
    Tests should pass their own ``CompatibilityRegistry()`` through the
    ``registry`` argument instead of touching the default one.
"""

from typing import Any, Dict, List, Optional

from lrpkit.model.layers import (
    AFFINE_LAYERS,
    NORMALIZATION_LAYERS,
    POOLING_LAYERS,
    RESHAPING_LAYERS,
    RESHAPING_FUNCTIONS,
    DROPOUT_LAYERS,
    RELU_LIKE_LAYERS,
    RELU_LIKE_FUNCTIONS,
)


def _lookup(table: Dict[Any, bool], obj) -> Optional[bool]:
    """Find ``obj`` by identity, then by its class hierarchy."""
    try:
        if obj in table:
            return table[obj]
    except TypeError:
        # unhashable layer instance
        pass
    for cls in type(obj).__mro__:
        if cls in table:
            return table[cls]
    return None


class CompatibilityRegistry:
    """
    Append-only mapping from layer types / functions to a "supported" flag,
    with a second mapping for activation functions.

    Args:
        defaults: If True (default), seed the registry with the built-in
            layer and activation types.
    """

    def __init__(self, defaults: bool = True):
        self._layers: Dict[Any, bool] = {}
        self._activations: Dict[Any, bool] = {}
        if defaults:
            for key in (
                *AFFINE_LAYERS, *NORMALIZATION_LAYERS, *POOLING_LAYERS,
                *RESHAPING_LAYERS, *RESHAPING_FUNCTIONS, *DROPOUT_LAYERS,
                *RELU_LIKE_LAYERS,
            ):
                self._layers[key] = True
            for key in (*RELU_LIKE_LAYERS, *RELU_LIKE_FUNCTIONS):
                self._activations[key] = True

    @staticmethod
    def _register(table: Dict[Any, bool], key, supported: bool, what: str) -> None:
        if key in table and table[key] != supported:
            raise ValueError(
                f"{what} {key!r} is already registered with supported="
                f"{table[key]}. Registry entries cannot be changed."
            )
        table[key] = supported

    def register_layer(self, layer_type, supported: bool = True) -> None:
        """
        Register a layer type, or a plain function used as a layer.

        Args:
            layer_type: A class (matched with its subclasses) or a function
                (matched by identity)
            supported: Flag to record

        Raises:
            ValueError: If the key is already registered with another flag
        """
        self._register(self._layers, layer_type, supported, "Layer")

    def register_activation(self, activation, supported: bool = True) -> None:
        """Register an activation function or activation module type."""
        self._register(self._activations, activation, supported, "Activation")

    def supports_layer(self, layer) -> bool:
        return bool(_lookup(self._layers, layer))

    def supports_activation(self, activation) -> bool:
        if activation is None:
            return True
        return bool(_lookup(self._activations, activation))

    def list_layers(self) -> List[Any]:
        return [k for k, v in self._layers.items() if v]

    def list_activations(self) -> List[Any]:
        return [k for k, v in self._activations.items() if v]

    def copy(self) -> "CompatibilityRegistry":
        """Return an independent registry with the same entries."""
        new = CompatibilityRegistry(defaults=False)
        new._layers = dict(self._layers)
        new._activations = dict(self._activations)
        return new

    def summary(self) -> str:
        """
        Generate a human-readable summary of all registered entries.

        Returns:
            Formatted string summary
        """
        lines = ["=" * 60, "lrpkit - LRP Compatibility Registry", "=" * 60, ""]

        lines.append("LAYERS:")
        lines.extend(f"  {_key_name(k)}" for k in self.list_layers())
        lines.append("")
        lines.append("ACTIVATIONS:")
        lines.extend(f"  {_key_name(k)}" for k in self.list_activations())
        lines.append("")

        lines.append(
            f"Total: {len(self.list_layers())} layers, "
            f"{len(self.list_activations())} activations"
        )
        lines.append("=" * 60)

        return "\n".join(lines)


def _key_name(key) -> str:
    return getattr(key, "__qualname__", getattr(key, "__name__", repr(key)))


# =============================================================================
# Default Global Registry
# =============================================================================

_default_registry: Optional[CompatibilityRegistry] = None


def get_default_registry() -> CompatibilityRegistry:
    """Get the process-wide registry (lazy initialization)."""
    global _default_registry
    if _default_registry is None:
        _default_registry = CompatibilityRegistry()
    return _default_registry


class _LazyRegistry:
    """Lazy proxy for the default registry."""

    def __getattr__(self, name):
        return getattr(get_default_registry(), name)


default_registry = _LazyRegistry()


def register_layer_supported(layer_type) -> None:
    """Mark a layer type or function as LRP-compatible in the default registry."""
    get_default_registry().register_layer(layer_type, True)


def register_activation_supported(activation) -> None:
    """Mark an activation function as LRP-compatible in the default registry."""
    get_default_registry().register_activation(activation, True)
