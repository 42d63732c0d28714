# src/lrpkit/explainers/lrp/composite.py
"""
Composites: declarative assignment of LRP rules to layers.

A Composite holds an ordered list of primitives. Applied to a model, the
primitives run in order; each one assigns rules to the positions it matches
and leaves all others untouched, so later primitives override earlier ones.
Positions are 1-based and count the leaf layers of the model depth-first
(see ``lrpkit.model.iter_layers``).

Example:
    composite = Composite(
        GlobalTypeMap({
            nn.Conv2d: ZPlusRule(),     # all convolutions
            nn.Linear: EpsilonRule(),   # all dense layers
            nn.MaxPool2d: ZeroRule(),
            (nn.Flatten, nn.Dropout, nn.ReLU): PassRule(),
        }),
        FirstLayerMap(FlatRule()),      # override the first layer
    )
    rules = lrp_rules(model, composite)
"""

import logging
from typing import Iterable, List, Optional, Tuple, Union

import torch.nn as nn

from lrpkit.core.errors import ConfigurationError, UnresolvedRuleError
from lrpkit.explainers.lrp.rules import (
    LRPRule,
    ZeroRule,
    EpsilonRule,
    GammaRule,
    FlatRule,
    ZBoxRule,
    ZPlusRule,
    AlphaBetaRule,
    PassRule,
    check_rule,
    DEFAULT_EPSILON,
    DEFAULT_GAMMA,
)
from lrpkit.model.chain import ChainTuple, as_chain, iter_layers, map_structure
from lrpkit.model.layers import (
    AFFINE_LAYERS,
    NORMALIZATION_LAYERS,
    POOLING_LAYERS,
    RESHAPING_LAYERS,
    DROPOUT_LAYERS,
    ACTIVATION_LAYERS,
    RELU_LIKE_FUNCTIONS,
    flatten,
)

logger = logging.getLogger(__name__)


PositionRange = Union[range, Tuple[int, int]]


def _to_positions(positions: PositionRange) -> List[int]:
    """A range of 1-based positions, or an inclusive (first, last) pair."""
    if isinstance(positions, range):
        return list(positions)
    if isinstance(positions, tuple) and len(positions) == 2:
        first, last = positions
        return list(range(first, last + 1))
    raise ConfigurationError(
        f"Expected a range or an inclusive (first, last) pair, got {positions!r}."
    )


def _check_positions(positions: Iterable[int], n_layers: int, primitive) -> None:
    for position in positions:
        if not 1 <= position <= n_layers:
            raise ConfigurationError(
                f"{primitive!r} refers to position {position}, but the model "
                f"has {n_layers} layers (positions start at 1)."
            )


def _type_pairs(mapping) -> List[Tuple[object, LRPRule]]:
    pairs = list(mapping.items()) if isinstance(mapping, dict) else list(mapping)
    for _, rule in pairs:
        check_rule(rule)
    return pairs


def _is_type_key(key) -> bool:
    if isinstance(key, type):
        return True
    return isinstance(key, tuple) and all(isinstance(k, type) for k in key)


def match_type(pairs: List[Tuple[object, LRPRule]], layer) -> Optional[LRPRule]:
    """
    Return the rule of the first entry matching ``layer``: classes match by
    ``isinstance``, functions by identity.
    """
    for key, rule in pairs:
        if _is_type_key(key):
            if isinstance(layer, key):
                return rule
        elif layer is key:
            return rule
    return None


class CompositePrimitive:
    """Base class of composite primitives."""

    def apply(self, assigned: List[Optional[LRPRule]], layers: List) -> None:
        """Overwrite the entries of ``assigned`` this primitive matches."""
        raise NotImplementedError


# =============================================================================
# Primitives assigning a single rule
# =============================================================================

class LayerMap(CompositePrimitive):
    """Assign ``rule`` to the layer at position ``index``."""

    def __init__(self, index: int, rule: LRPRule):
        check_rule(rule)
        self.index = index
        self.rule = rule

    def apply(self, assigned, layers):
        _check_positions([self.index], len(layers), self)
        assigned[self.index - 1] = self.rule

    def __repr__(self):
        return f"LayerMap({self.index}, {self.rule!r})"


class GlobalMap(CompositePrimitive):
    """Assign ``rule`` to every layer."""

    def __init__(self, rule: LRPRule):
        check_rule(rule)
        self.rule = rule

    def apply(self, assigned, layers):
        for i in range(len(layers)):
            assigned[i] = self.rule

    def __repr__(self):
        return f"GlobalMap({self.rule!r})"


class RangeMap(CompositePrimitive):
    """
    Assign ``rule`` to a range of positions: a ``range`` object (e.g.
    ``range(2, 5)`` covers 2, 3 and 4) or an inclusive ``(first, last)`` pair.
    """

    def __init__(self, positions: PositionRange, rule: LRPRule):
        check_rule(rule)
        self.positions = _to_positions(positions)
        self.rule = rule

    def apply(self, assigned, layers):
        _check_positions(self.positions, len(layers), self)
        for position in self.positions:
            assigned[position - 1] = self.rule

    def __repr__(self):
        return f"RangeMap({self.positions}, {self.rule!r})"


class FirstLayerMap(CompositePrimitive):
    """Assign ``rule`` to the first layer."""

    def __init__(self, rule: LRPRule):
        check_rule(rule)
        self.rule = rule

    def apply(self, assigned, layers):
        if layers:
            assigned[0] = self.rule

    def __repr__(self):
        return f"FirstLayerMap({self.rule!r})"


class LastLayerMap(CompositePrimitive):
    """Assign ``rule`` to the last layer."""

    def __init__(self, rule: LRPRule):
        check_rule(rule)
        self.rule = rule

    def apply(self, assigned, layers):
        if layers:
            assigned[-1] = self.rule

    def __repr__(self):
        return f"LastLayerMap({self.rule!r})"


# =============================================================================
# Primitives assigning rules by layer type
# =============================================================================

class _TypeMap(CompositePrimitive):
    def __init__(self, mapping):
        self.pairs = _type_pairs(mapping)

    def _positions(self, n_layers: int) -> List[int]:
        raise NotImplementedError

    def apply(self, assigned, layers):
        positions = self._positions(len(layers))
        _check_positions(positions, len(layers), self)
        for position in positions:
            rule = match_type(self.pairs, layers[position - 1])
            if rule is not None:
                assigned[position - 1] = rule

    def _mapping_repr(self) -> str:
        def name(key):
            if isinstance(key, tuple):
                return "(" + ", ".join(k.__name__ for k in key) + ")"
            return getattr(key, "__name__", repr(key))
        return "{" + ", ".join(f"{name(k)}: {r!r}" for k, r in self.pairs) + "}"


class GlobalTypeMap(_TypeMap):
    """Assign rules by layer type to all layers."""

    def _positions(self, n_layers):
        return list(range(1, n_layers + 1))

    def __repr__(self):
        return f"GlobalTypeMap({self._mapping_repr()})"


class RangeTypeMap(_TypeMap):
    """Assign rules by layer type within a range of positions."""

    def __init__(self, positions: PositionRange, mapping):
        super().__init__(mapping)
        self.positions = _to_positions(positions)

    def _positions(self, n_layers):
        return self.positions

    def __repr__(self):
        return f"RangeTypeMap({self.positions}, {self._mapping_repr()})"


class FirstLayerTypeMap(_TypeMap):
    """Assign rules by layer type to the first layer."""

    def _positions(self, n_layers):
        return [1] if n_layers else []

    def __repr__(self):
        return f"FirstLayerTypeMap({self._mapping_repr()})"


class LastLayerTypeMap(_TypeMap):
    """Assign rules by layer type to the last layer."""

    def _positions(self, n_layers):
        return [n_layers] if n_layers else []

    def __repr__(self):
        return f"LastLayerTypeMap({self._mapping_repr()})"


class FirstNTypeMap(_TypeMap):
    """Assign rules by layer type to the first ``n`` layers."""

    def __init__(self, n: int, mapping):
        super().__init__(mapping)
        if n < 0:
            raise ConfigurationError(f"n must be >= 0, got {n}")
        self.n = n

    def _positions(self, n_layers):
        return list(range(1, min(self.n, n_layers) + 1))

    def __repr__(self):
        return f"FirstNTypeMap({self.n}, {self._mapping_repr()})"


# =============================================================================
# Composite
# =============================================================================

class Composite:
    """
    Ordered collection of composite primitives.

    Primitives are applied in the order given; later primitives overwrite
    the rules assigned by earlier ones at the positions they match.
    """

    def __init__(self, *primitives: CompositePrimitive):
        for primitive in primitives:
            if isinstance(primitive, LRPRule):
                raise ConfigurationError(
                    f"Composite expects primitives, got rule {primitive!r}. "
                    f"Use GlobalMap({primitive!r})."
                )
            if not isinstance(primitive, CompositePrimitive):
                raise ConfigurationError(
                    f"{primitive!r} is not a composite primitive."
                )
        self._primitives = tuple(primitives)

    @property
    def primitives(self) -> tuple:
        return self._primitives

    def __repr__(self):
        lines = ["Composite("]
        lines.extend(f"  {p!r}," for p in self._primitives)
        lines.append(")")
        return "\n".join(lines)


def lrp_rules(model, composite: Composite) -> ChainTuple:
    """
    Apply a composite to a model and return the resulting rule assignment.

    Args:
        model: Chain (or nn.Sequential) to assign rules to
        composite: Composite to apply

    Returns:
        ChainTuple of rules mirroring the model structure

    Raises:
        UnresolvedRuleError: If a layer is left without a rule
        ConfigurationError: If a primitive refers to a non-existent position
    """
    model = as_chain(model)
    layers = list(iter_layers(model))
    assigned: List[Optional[LRPRule]] = [None] * len(layers)

    for primitive in composite.primitives:
        primitive.apply(assigned, layers)

    for position, (rule, layer) in enumerate(zip(assigned, layers), start=1):
        if rule is None:
            raise UnresolvedRuleError(position, layer)

    logger.debug("Composite assigned rules to %d layers", len(assigned))
    rules = iter(assigned)
    return map_structure(lambda layer: next(rules), model)


# =============================================================================
# Composite presets
# =============================================================================

CONV_LAYERS = tuple(t for t in AFFINE_LAYERS if t is not nn.Linear)
PASSTHROUGH_LAYERS = (
    *RESHAPING_LAYERS, *DROPOUT_LAYERS, *ACTIVATION_LAYERS, *NORMALIZATION_LAYERS,
)
PASSTHROUGH_FUNCTIONS = (flatten, *RELU_LIKE_FUNCTIONS)


def _default_type_map(conv_rule: LRPRule, epsilon: float) -> GlobalTypeMap:
    return GlobalTypeMap({
        CONV_LAYERS: conv_rule,
        nn.Linear: EpsilonRule(epsilon),
        POOLING_LAYERS: EpsilonRule(epsilon),
        PASSTHROUGH_LAYERS: PassRule(),
        **{fn: PassRule() for fn in PASSTHROUGH_FUNCTIONS},
    })


def EpsilonGammaBox(low, high, epsilon: float = DEFAULT_EPSILON, gamma: float = DEFAULT_GAMMA) -> Composite:
    """
    GammaRule on convolutions, EpsilonRule on dense and pooling layers,
    ZBoxRule on a convolutional first layer.
    """
    return Composite(
        _default_type_map(GammaRule(gamma), epsilon),
        FirstLayerTypeMap({CONV_LAYERS: ZBoxRule(low, high)}),
    )


def EpsilonPlus(epsilon: float = DEFAULT_EPSILON) -> Composite:
    """ZPlusRule on convolutions, EpsilonRule on dense and pooling layers."""
    return Composite(_default_type_map(ZPlusRule(), epsilon))


def EpsilonAlpha2Beta1(epsilon: float = DEFAULT_EPSILON) -> Composite:
    """AlphaBetaRule(2, 1) on convolutions, EpsilonRule on dense and pooling layers."""
    return Composite(_default_type_map(AlphaBetaRule(2.0, 1.0), epsilon))


def EpsilonPlusFlat(epsilon: float = DEFAULT_EPSILON) -> Composite:
    """EpsilonPlus with FlatRule on a convolutional or dense first layer."""
    return Composite(
        _default_type_map(ZPlusRule(), epsilon),
        FirstLayerTypeMap({AFFINE_LAYERS: FlatRule()}),
    )


def EpsilonAlpha2Beta1Flat(epsilon: float = DEFAULT_EPSILON) -> Composite:
    """EpsilonAlpha2Beta1 with FlatRule on a convolutional or dense first layer."""
    return Composite(
        _default_type_map(AlphaBetaRule(2.0, 1.0), epsilon),
        FirstLayerTypeMap({AFFINE_LAYERS: FlatRule()}),
    )


def ZeroComposite() -> Composite:
    """ZeroRule everywhere (default of the LRP analyzer)."""
    return Composite(GlobalMap(ZeroRule()))
