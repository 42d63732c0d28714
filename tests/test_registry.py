# tests/test_registry.py
"""
Tests for the compatibility registry.
"""

import pytest
import torch.nn as nn
import torch.nn.functional as F

from lrpkit import (
    CompatibilityRegistry,
    default_registry,
    get_default_registry,
    flatten,
)


class Scaling(nn.Module):
    def forward(self, x):
        return 0.5 * x


class SubLinear(nn.Linear):
    pass


def my_activation(x):
    return F.relu(x)


@pytest.fixture
def registry():
    return CompatibilityRegistry()


class TestCompatibilityRegistry:
    """Tests for registration and lookup."""

    def test_defaults(self, registry):
        assert registry.supports_layer(nn.Linear(2, 2))
        assert registry.supports_layer(nn.Conv2d(1, 1, 3))
        assert registry.supports_layer(flatten)
        assert registry.supports_activation(F.relu)
        assert registry.supports_activation(nn.ReLU())
        assert registry.supports_activation(None)
        assert not registry.supports_activation(nn.Tanh())

    def test_empty_registry(self):
        empty = CompatibilityRegistry(defaults=False)
        assert not empty.supports_layer(nn.Linear(2, 2))
        assert empty.list_layers() == []

    def test_subclass_lookup(self, registry):
        assert registry.supports_layer(SubLinear(2, 2))

    def test_register_layer(self, registry):
        assert not registry.supports_layer(Scaling())
        registry.register_layer(Scaling)
        assert registry.supports_layer(Scaling())
        assert Scaling in registry.list_layers()

    def test_register_function(self, registry):
        assert not registry.supports_activation(my_activation)
        registry.register_activation(my_activation)
        assert registry.supports_activation(my_activation)

    def test_register_unsupported(self, registry):
        registry.register_layer(Scaling, supported=False)
        assert not registry.supports_layer(Scaling())
        assert Scaling not in registry.list_layers()

    def test_conflicting_registration(self, registry):
        registry.register_layer(Scaling)
        registry.register_layer(Scaling)
        with pytest.raises(ValueError):
            registry.register_layer(Scaling, supported=False)

    def test_copy_is_independent(self, registry):
        clone = registry.copy()
        clone.register_layer(Scaling)
        assert clone.supports_layer(Scaling())
        assert not registry.supports_layer(Scaling())

    def test_summary(self, registry):
        text = registry.summary()
        assert "LAYERS:" in text
        assert "ACTIVATIONS:" in text
        assert "Linear" in text


class TestDefaultRegistry:
    """Tests for the process-wide registry."""

    def test_singleton(self):
        assert get_default_registry() is get_default_registry()

    def test_lazy_proxy(self):
        assert default_registry.list_layers() == get_default_registry().list_layers()
