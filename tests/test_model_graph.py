# tests/test_model_graph.py
"""
Tests for Chains, Parallel nodes and layer classification.
"""

import operator

import pytest
import torch
import torch.nn as nn
import torch.nn.functional as F

from lrpkit import (
    Chain,
    Parallel,
    Dense,
    parallel_sum,
    flatten,
    flatten_model,
    strip_softmax,
    CompatibilityRegistry,
)
from lrpkit.model import (
    ChainTuple,
    ParallelTuple,
    LayerKind,
    as_chain,
    flatten_rules,
    iter_layers,
    layer_kind,
    get_activation,
)
from lrpkit.model.chain import map_structure, is_sum_connection


@pytest.fixture
def nested_chain():
    return Chain(
        Chain(nn.Linear(4, 8), nn.ReLU()),
        Chain(Chain(nn.Linear(8, 8)), nn.ReLU()),
        nn.Linear(8, 3),
    )


class TestChain:
    """Tests for the Chain container."""

    def test_forward_matches_sequential(self):
        torch.manual_seed(0)
        seq = nn.Sequential(nn.Linear(4, 8), nn.ReLU(), nn.Linear(8, 2))
        x = torch.rand(3, 4)
        torch.testing.assert_close(Chain.from_module(seq)(x), seq(x))

    def test_from_module_nested(self):
        seq = nn.Sequential(nn.Sequential(nn.Linear(4, 4), nn.ReLU()), nn.Linear(4, 2))
        chain = Chain.from_module(seq)
        assert isinstance(chain[0], Chain)
        assert len(chain) == 2
        assert chain.depth() == 2

    def test_activations(self):
        chain = Chain(nn.Linear(4, 8), nn.ReLU(), nn.Linear(8, 2))
        acts = chain.activations(torch.rand(3, 4))
        assert [tuple(a.shape) for a in acts] == [(3, 8), (3, 8), (3, 2)]

    def test_indexing_and_slicing(self, nested_chain):
        assert isinstance(nested_chain[-1], nn.Linear)
        head = nested_chain[:2]
        assert isinstance(head, Chain)
        assert len(head) == 2

    def test_depth(self, nested_chain):
        assert nested_chain.depth() == 3
        assert Chain(nn.ReLU()).depth() == 1

    def test_rejects_non_callable(self):
        with pytest.raises(TypeError):
            Chain(nn.ReLU(), 3)

    def test_as_chain(self):
        layer = nn.Linear(2, 2)
        chain = as_chain(layer)
        assert len(chain) == 1 and chain[0] is layer
        assert as_chain(chain) is chain

    def test_eval_mode(self):
        dropout = nn.Dropout(0.5)
        Chain(Chain(dropout)).eval()
        assert not dropout.training

    def test_sequential_layer_becomes_chain(self):
        seq = nn.Sequential(nn.Linear(4, 4), nn.Sequential(nn.ReLU()))
        chain = Chain(seq, nn.Linear(4, 2))
        assert isinstance(chain[0], Chain)
        assert isinstance(chain[0][1], Chain)
        assert len(flatten_model(chain)) == 3


class TestParallel:
    """Tests for Parallel nodes."""

    def test_forward_sum(self):
        torch.manual_seed(0)
        branch = nn.Linear(3, 3)
        parallel = Parallel(parallel_sum, branch, nn.Identity())
        x = torch.rand(2, 3)
        torch.testing.assert_close(parallel(x), branch(x) + x)

    def test_sequential_branch_becomes_chain(self):
        torch.manual_seed(0)
        branch = nn.Sequential(nn.Linear(3, 3), nn.ReLU())
        parallel = Parallel(parallel_sum, branch, nn.Identity())
        assert isinstance(parallel[0], Chain)
        assert len(parallel[0]) == 2
        x = torch.rand(2, 3)
        torch.testing.assert_close(parallel(x), branch(x) + x)

    def test_requires_branch(self):
        with pytest.raises(ValueError):
            Parallel(parallel_sum)

    def test_sum_connections(self):
        assert is_sum_connection(parallel_sum)
        assert is_sum_connection(operator.add)
        assert is_sum_connection(torch.add)
        assert not is_sum_connection(torch.mul)


class TestFlatten:
    """Tests for flattening and depth-first enumeration."""

    def test_flatten_model(self, nested_chain):
        flat = flatten_model(nested_chain)
        assert len(flat) == 5
        assert flat.depth() == 1
        assert [type(l) for l in flat] == [nn.Linear, nn.ReLU, nn.Linear, nn.ReLU, nn.Linear]

    def test_flatten_preserves_output(self, nested_chain):
        x = torch.rand(2, 4)
        torch.testing.assert_close(flatten_model(nested_chain)(x), nested_chain(x))

    def test_flatten_keeps_parallel(self):
        parallel = Parallel(parallel_sum, Chain(nn.Linear(4, 4), nn.ReLU()), nn.Identity())
        flat = flatten_model(Chain(Chain(nn.Linear(4, 4)), parallel))
        assert len(flat) == 2
        assert flat[1] is parallel

    def test_flatten_sums_lengths(self):
        inner = Chain(nn.Linear(2, 2), nn.ReLU(), nn.Linear(2, 2))
        outer = Chain(nn.ReLU(), inner, nn.ReLU())
        assert len(flatten_model(outer)) == len(inner) + 2

    def test_flatten_sequential(self):
        seq = nn.Sequential(nn.Sequential(nn.Linear(2, 2)), nn.ReLU())
        assert len(flatten_model(seq)) == 2

    def test_flatten_rules(self):
        rules = ChainTuple(ChainTuple("a", "b"), "c", ChainTuple(ChainTuple("d")))
        assert tuple(flatten_rules(rules)) == ("a", "b", "c", "d")

    def test_iter_layers_through_parallel(self):
        a, b, c = nn.Linear(2, 2), nn.ReLU(), nn.Identity()
        model = Chain(a, Parallel(parallel_sum, Chain(b), c))
        assert list(iter_layers(model)) == [a, b, c]

    def test_map_structure(self):
        model = Chain(nn.ReLU(), Parallel(parallel_sum, nn.Identity(), Chain(nn.ReLU())))
        names = map_structure(lambda layer: type(layer).__name__, model)
        assert isinstance(names, ChainTuple)
        assert isinstance(names[1], ParallelTuple)
        assert names == ChainTuple("ReLU", ParallelTuple("Identity", ChainTuple("ReLU")))


class TestLayers:
    """Tests for layer classification and softmax stripping."""

    @pytest.mark.parametrize("layer,kind", [
        (nn.Linear(2, 2), LayerKind.AFFINE),
        (Dense(2, 2), LayerKind.AFFINE),
        (nn.Conv2d(1, 1, 3), LayerKind.AFFINE),
        (nn.BatchNorm1d(2), LayerKind.NORMALIZATION),
        (nn.MaxPool2d(2), LayerKind.POOLING),
        (nn.AdaptiveAvgPool2d(1), LayerKind.POOLING),
        (nn.Flatten(), LayerKind.RESHAPE),
        (flatten, LayerKind.RESHAPE),
        (nn.Dropout(), LayerKind.DROPOUT),
        (nn.ReLU(), LayerKind.ACTIVATION),
        (nn.Tanh(), LayerKind.ACTIVATION),
        (Chain(), LayerKind.CHAIN),
        (Parallel(parallel_sum, nn.Identity()), LayerKind.PARALLEL),
        (F.relu, LayerKind.ACTIVATION),
        (torch.relu, LayerKind.ACTIVATION),
        (torch.sigmoid, LayerKind.OPAQUE),
    ])
    def test_layer_kind(self, layer, kind):
        assert layer_kind(layer) is kind

    def test_dense_activation(self):
        torch.manual_seed(0)
        layer = Dense(3, 2, activation=F.relu)
        x = torch.rand(4, 3) - 0.5
        torch.testing.assert_close(layer(x), F.relu(F.linear(x, layer.weight, layer.bias)))
        assert get_activation(layer) is F.relu
        assert "activation=relu" in repr(layer)

    def test_get_activation(self):
        relu = nn.ReLU()
        assert get_activation(relu) is relu
        assert get_activation(F.relu) is F.relu
        assert get_activation(nn.Linear(2, 2)) is None
        assert get_activation(flatten) is None

    def test_registered_activation_function(self):
        registry = CompatibilityRegistry()
        assert layer_kind(torch.tanh, registry) is LayerKind.OPAQUE
        registry.register_activation(torch.tanh)
        assert layer_kind(torch.tanh, registry) is LayerKind.ACTIVATION
        assert get_activation(torch.tanh, registry) is torch.tanh

    def test_strip_softmax_module(self):
        model = Chain(nn.Linear(2, 2), nn.Softmax(dim=1))
        stripped = strip_softmax(model)
        assert len(stripped) == 1

    def test_strip_softmax_noop(self):
        model = Chain(nn.Linear(2, 2), nn.ReLU())
        assert strip_softmax(model) is model

    def test_strip_softmax_embedded(self):
        model = Chain(Dense(2, 2, activation=F.softmax))
        stripped = strip_softmax(model)
        assert stripped[0].activation is None
        assert model[0].activation is F.softmax
