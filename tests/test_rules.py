# tests/test_rules.py
"""
Tests for the LRP rule library: parameter hooks, stabilizers and validation.
"""

import pytest
import torch
import torch.nn as nn

from lrpkit import (
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
    ConfigurationError,
)
from lrpkit.explainers.lrp.rules import (
    stabilize_denominator,
    check_rule,
    overrides,
    DEFAULT_EPSILON,
    DEFAULT_GAMMA,
)
from lrpkit.explainers.lrp.lrp import modify_layer


@pytest.fixture
def weight():
    return torch.tensor([[1.0, -2.0], [-0.5, 3.0]])


@pytest.fixture
def bias():
    return torch.tensor([0.5, -1.0])


class TestStabilizer:
    """Tests for the sign-preserving stabilizer."""

    def test_sign_preserving(self):
        d = torch.tensor([2.0, -1.0, 0.0])
        result = stabilize_denominator(d, 0.5)
        torch.testing.assert_close(result, torch.tensor([2.5, -1.5, 0.5]))

    def test_zero_treated_as_positive(self):
        result = stabilize_denominator(torch.zeros(3), 1e-9)
        assert (result > 0).all()

    def test_default_denominator(self):
        z = torch.tensor([1.0, -1.0])
        torch.testing.assert_close(ZeroRule().modify_denominator(z), z + torch.tensor([1e-9, -1e-9]))

    def test_epsilon_denominator(self):
        z = torch.tensor([1.0, -1.0, 0.0])
        result = EpsilonRule(0.1).modify_denominator(z)
        torch.testing.assert_close(result, torch.tensor([1.1, -1.1, 0.1]))


class TestParameterHooks:
    """Tests for modify_parameters and modify_input of built-in rules."""

    def test_zero_rule_identity(self, weight, bias):
        w, b = ZeroRule().modify_parameters(weight, bias)
        assert w is weight and b is bias

    def test_gamma_rule(self, weight, bias):
        w, b = GammaRule(0.25).modify_parameters(weight, bias)
        torch.testing.assert_close(w, torch.tensor([[1.25, -2.0], [-0.5, 3.75]]))
        torch.testing.assert_close(b, torch.tensor([0.625, -1.0]))

    def test_wsquare_rule(self, weight, bias):
        rule = WSquareRule()
        w, b = rule.modify_parameters(weight, bias)
        torch.testing.assert_close(w, weight ** 2)
        torch.testing.assert_close(b, bias ** 2)
        torch.testing.assert_close(rule.modify_input(torch.tensor([3.0, -1.0])), torch.ones(2))

    def test_flat_rule(self, weight, bias):
        rule = FlatRule()
        w, b = rule.modify_parameters(weight, bias)
        torch.testing.assert_close(w, torch.ones(2, 2))
        torch.testing.assert_close(b, torch.zeros(2))
        torch.testing.assert_close(rule.modify_input(torch.tensor([3.0, -1.0])), torch.ones(2))

    def test_defaults(self):
        assert EpsilonRule().epsilon == DEFAULT_EPSILON
        assert GammaRule().gamma == DEFAULT_GAMMA
        rule = AlphaBetaRule()
        assert (rule.alpha, rule.beta) == (2.0, 1.0)
        assert (ZPlusRule().alpha, ZPlusRule().beta) == (1.0, 0.0)

    def test_requires_parameters(self):
        for rule in (GammaRule(), WSquareRule(), FlatRule(), ZBoxRule(0, 1), AlphaBetaRule(), ZPlusRule()):
            assert rule.requires_parameters
        for rule in (ZeroRule(), EpsilonRule(), PassRule()):
            assert not rule.requires_parameters


class TestModifiedLayers:
    """Tests for the precomputed layers a rule propagates through."""

    def test_gamma_layer_copy(self):
        layer = nn.Linear(3, 2)
        modified = modify_layer(GammaRule(1.0), layer)
        assert modified is not layer
        torch.testing.assert_close(modified.weight, layer.weight + layer.weight.clamp(min=0))
        torch.testing.assert_close(modified.bias, layer.bias + layer.bias.clamp(min=0))

    def test_layer_without_bias(self):
        layer = nn.Linear(3, 2, bias=False)
        modified = modify_layer(FlatRule(), layer)
        assert modified.bias is None
        torch.testing.assert_close(modified.weight, torch.ones(2, 3))

    def test_parameter_free_layer_unchanged(self):
        layer = nn.MaxPool2d(2)
        assert modify_layer(EpsilonRule(), layer) is layer

    def test_pass_rule_unchanged(self):
        layer = nn.Linear(3, 2)
        assert modify_layer(PassRule(), layer) is layer

    def test_alpha_beta_signed_layers(self):
        layer = nn.Linear(3, 2)
        positive, negative, positive_nobias, negative_nobias = modify_layer(AlphaBetaRule(), layer)
        assert (positive.weight >= 0).all() and (negative.weight <= 0).all()
        torch.testing.assert_close(positive.weight + negative.weight, layer.weight)
        assert (positive_nobias.bias == 0).all() and (negative_nobias.bias == 0).all()

    def test_zbox_layers(self):
        layer = nn.Conv2d(1, 2, 3)
        plain, positive, negative = modify_layer(ZBoxRule(0.0, 1.0), layer)
        torch.testing.assert_close(plain.weight, layer.weight)
        assert (positive.weight >= 0).all() and (negative.weight <= 0).all()


class TestRuleValidation:
    """Tests for rule construction and structural checks."""

    def test_alpha_beta_difference(self):
        with pytest.raises(ConfigurationError):
            AlphaBetaRule(alpha=2.0, beta=0.5)

    def test_alpha_beta_negative(self):
        with pytest.raises(ConfigurationError):
            AlphaBetaRule(alpha=-1.0, beta=-2.0)

    def test_alpha_beta_valid(self):
        rule = AlphaBetaRule(alpha=1.5, beta=0.5)
        assert rule.alpha - rule.beta == 1.0

    def test_negative_epsilon(self):
        with pytest.raises(ConfigurationError):
            EpsilonRule(-1.0)

    def test_negative_gamma(self):
        with pytest.raises(ConfigurationError):
            GammaRule(-0.1)

    def test_check_rule_rejects_non_rule(self):
        with pytest.raises(ConfigurationError):
            check_rule("epsilon")

    def test_check_rule_rejects_both_hooks(self):
        class Conflicting(LRPRule):
            def modify_layer(self, layer):
                return layer

            def modify_parameters(self, weight, bias):
                return weight, bias

        with pytest.raises(ConfigurationError):
            check_rule(Conflicting())

    def test_overrides(self):
        assert overrides(GammaRule(), "modify_parameters")
        assert not overrides(GammaRule(), "modify_layer")
        assert overrides(EpsilonRule(), "modify_denominator")


class TestRuleValues:
    """Rules are compared by value."""

    def test_equality(self):
        assert EpsilonRule(1e-3) == EpsilonRule(1e-3)
        assert EpsilonRule(1e-3) != EpsilonRule(1e-2)
        assert ZeroRule() != PassRule()

    def test_hashable(self):
        assert len({GammaRule(0.25), GammaRule(0.25), GammaRule(0.5)}) == 2

    def test_zbox_tensor_bounds_equality(self):
        low = torch.zeros(3)
        assert ZBoxRule(low, 1.0) == ZBoxRule(torch.zeros(3), 1.0)
        assert ZBoxRule(low, 1.0) != ZBoxRule(low, 2.0)

    def test_repr(self):
        assert repr(EpsilonRule(0.1)) == "EpsilonRule(epsilon=0.1)"
        assert repr(ZeroRule()) == "ZeroRule()"
        assert repr(ZPlusRule()) == "ZPlusRule()"
        assert repr(ZBoxRule(-1.0, 1.0)) == "ZBoxRule(low=-1.0, high=1.0)"
