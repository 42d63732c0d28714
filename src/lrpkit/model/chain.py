# src/lrpkit/model/chain.py
"""
Graph containers for feed-forward models.

A Chain is an ordered, immutable sequence of layers. Layers are PyTorch
modules or plain callables; a Chain may nest other Chains and Parallel
nodes. A Parallel applies several branches to the same input and merges
their outputs with a connection function.

Rule assignments mirror this structure with ChainTuple and ParallelTuple.

Example:
    import torch.nn as nn
    from lrpkit.model import Chain, Parallel, flatten_model

    model = Chain(
        Chain(nn.Linear(4, 8), nn.ReLU()),
        Parallel(parallel_sum, nn.Linear(8, 8), nn.Identity()),
        nn.Linear(8, 3),
    )
    flat = flatten_model(model)   # 4 layers, the Parallel stays one unit
"""

import operator
from functools import reduce
from typing import Callable, Iterator, List

import torch
import torch.nn as nn


def parallel_sum(*outputs: torch.Tensor) -> torch.Tensor:
    """Elementwise sum of branch outputs (default Parallel connection)."""
    return reduce(operator.add, outputs)


# Connections for which relevance can be split across branches
SUM_CONNECTIONS = (parallel_sum, operator.add, torch.add)


def is_sum_connection(connection: Callable) -> bool:
    """Check whether a Parallel connection is an elementwise sum."""
    return any(connection is c for c in SUM_CONNECTIONS)


def _check_layer(layer) -> None:
    if not callable(layer):
        raise TypeError(
            f"Layers must be callable, got {type(layer).__name__}."
        )


def _as_node(layer):
    """Check a layer and convert ``nn.Sequential`` into a nested Chain."""
    _check_layer(layer)
    if isinstance(layer, nn.Sequential):
        return Chain.from_module(layer)
    return layer


class Chain:
    """
    Ordered sequence of layers applied one after another.

    Supports ``len``, integer and slice indexing and iteration. Instances are
    not modified after construction; operations such as flattening return
    new Chains. ``nn.Sequential`` layers are converted into nested Chains.
    """

    def __init__(self, *layers):
        self._layers = tuple(_as_node(layer) for layer in layers)

    @classmethod
    def from_module(cls, module) -> "Chain":
        """
        Build a Chain from an ``nn.Sequential``, converting nested
        Sequentials into nested Chains.
        """
        if isinstance(module, Chain):
            return module
        if not isinstance(module, nn.Sequential):
            return cls(module)
        return cls(*module.children())

    @property
    def layers(self) -> tuple:
        return self._layers

    def __call__(self, x):
        for layer in self._layers:
            x = layer(x)
        return x

    def activations(self, x) -> List:
        """Return the outputs of every layer for input ``x``."""
        outputs = []
        for layer in self._layers:
            x = layer(x)
            outputs.append(x)
        return outputs

    def depth(self) -> int:
        """Nesting depth; a Chain without nested Chains has depth 1."""
        inner = [
            node.depth() for node in self._layers
            if isinstance(node, (Chain, Parallel))
        ]
        return 1 + max(inner, default=0)

    def eval(self) -> "Chain":
        """Put every module in evaluation mode (disables dropout)."""
        for layer in self._layers:
            if isinstance(layer, (Chain, Parallel, nn.Module)):
                layer.eval()
        return self

    def __len__(self) -> int:
        return len(self._layers)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Chain(*self._layers[index])
        return self._layers[index]

    def __iter__(self) -> Iterator:
        return iter(self._layers)

    def __repr__(self):
        inner = ", ".join(_layer_name(layer) for layer in self._layers)
        return f"Chain({inner})"


class Parallel:
    """
    Branch-and-merge node: ``connection(*(branch(x) for branch in branches))``.

    Args:
        connection: Merge function called with one output per branch.
            Only elementwise sums are supported by LRP.
        *branches: Layers or Chains applied to the shared input.
            ``nn.Sequential`` branches are converted into Chains.
    """

    def __init__(self, connection: Callable, *branches):
        if not callable(connection):
            raise TypeError("Parallel connection must be callable.")
        if len(branches) == 0:
            raise ValueError("Parallel requires at least one branch.")
        self._connection = connection
        self._branches = tuple(_as_node(branch) for branch in branches)

    @property
    def connection(self) -> Callable:
        return self._connection

    @property
    def branches(self) -> tuple:
        return self._branches

    def __call__(self, x):
        return self._connection(*(branch(x) for branch in self._branches))

    def depth(self) -> int:
        inner = [
            node.depth() for node in self._branches
            if isinstance(node, (Chain, Parallel))
        ]
        return 1 + max(inner, default=0)

    def eval(self) -> "Parallel":
        for branch in self._branches:
            if isinstance(branch, (Chain, Parallel, nn.Module)):
                branch.eval()
        return self

    def __len__(self) -> int:
        return len(self._branches)

    def __getitem__(self, index):
        return self._branches[index]

    def __iter__(self) -> Iterator:
        return iter(self._branches)

    def __repr__(self):
        name = getattr(self._connection, "__name__", repr(self._connection))
        inner = ", ".join(_layer_name(b) for b in self._branches)
        return f"Parallel({name}, {inner})"


class ChainTuple(tuple):
    """Tuple of rules (or modified layers) mirroring a Chain."""

    def __new__(cls, *values):
        return super().__new__(cls, values)

    def __getnewargs__(self):
        return tuple(self)

    def __repr__(self):
        return f"ChainTuple({', '.join(repr(v) for v in self)})"


class ParallelTuple(tuple):
    """Tuple of rules (or modified layers) mirroring a Parallel."""

    def __new__(cls, *values):
        return super().__new__(cls, values)

    def __getnewargs__(self):
        return tuple(self)

    def __repr__(self):
        return f"ParallelTuple({', '.join(repr(v) for v in self)})"


def _layer_name(layer) -> str:
    if isinstance(layer, (Chain, Parallel, nn.Module)):
        return repr(layer)
    return getattr(layer, "__name__", repr(layer))


def as_chain(model) -> Chain:
    """Convert a model to a Chain (Sequentials are converted recursively)."""
    if isinstance(model, Chain):
        return model
    if isinstance(model, nn.Sequential):
        return Chain.from_module(model)
    _check_layer(model)
    return Chain(model)


def flatten_model(model) -> Chain:
    """
    Inline nested Chains into a single Chain, preserving execution order.

    Parallel nodes are kept as opaque units; their branches are not
    flattened.
    """
    layers = []
    for layer in as_chain(model):
        if isinstance(layer, Chain):
            layers.extend(flatten_model(layer))
        else:
            layers.append(layer)
    return Chain(*layers)


def flatten_rules(rules: ChainTuple) -> ChainTuple:
    """Counterpart of ``flatten_model`` for rule assignments."""
    values = []
    for value in rules:
        if isinstance(value, ChainTuple):
            values.extend(flatten_rules(value))
        else:
            values.append(value)
    return ChainTuple(*values)


def iter_layers(model) -> Iterator:
    """
    Yield the leaf layers of a model depth-first, descending into Chains
    and Parallel branches. Composite positions follow this order.
    """
    if isinstance(model, (Chain, Parallel)):
        for node in model:
            yield from iter_layers(node)
    else:
        yield model


def map_structure(fn: Callable, model, *trees):
    """
    Apply ``fn(layer, *values)`` to every leaf of ``model`` and return the
    results in a ChainTuple/ParallelTuple of the same shape. ``trees`` are
    ChainTuples/ParallelTuples already shaped like ``model``.
    """
    if isinstance(model, Chain):
        return ChainTuple(*(
            map_structure(fn, node, *(t[i] for t in trees))
            for i, node in enumerate(model)
        ))
    if isinstance(model, Parallel):
        return ParallelTuple(*(
            map_structure(fn, node, *(t[i] for t in trees))
            for i, node in enumerate(model)
        ))
    return fn(model, *trees)
