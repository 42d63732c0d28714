# src/lrpkit/explainers/lrp/__init__.py
"""
Layer-wise Relevance Propagation.

Components:
    - LRP: The analyzer (forward pass, rule-driven backward sweep)
    - Rules: ZeroRule, EpsilonRule, GammaRule, WSquareRule, FlatRule,
      ZBoxRule, AlphaBetaRule, ZPlusRule, PassRule
    - Composites: rule assignment by position and layer type, with presets
    - Checks: model compatibility validation
"""

from lrpkit.explainers.lrp.rules import (
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
    stabilize_denominator,
)
from lrpkit.explainers.lrp.composite import (
    Composite,
    LayerMap,
    GlobalMap,
    RangeMap,
    FirstLayerMap,
    LastLayerMap,
    GlobalTypeMap,
    RangeTypeMap,
    FirstLayerTypeMap,
    LastLayerTypeMap,
    FirstNTypeMap,
    lrp_rules,
    EpsilonGammaBox,
    EpsilonPlus,
    EpsilonAlpha2Beta1,
    EpsilonPlusFlat,
    EpsilonAlpha2Beta1Flat,
)
from lrpkit.explainers.lrp.checks import (
    check_lrp_compat,
    check_output_softmax,
    model_check_summary,
)
from lrpkit.explainers.lrp.lrp import LRP

__all__ = [
    "LRP",
    # Rules
    "LRPRule",
    "ZeroRule",
    "EpsilonRule",
    "GammaRule",
    "WSquareRule",
    "FlatRule",
    "ZBoxRule",
    "AlphaBetaRule",
    "ZPlusRule",
    "PassRule",
    "stabilize_denominator",
    # Composites
    "Composite",
    "LayerMap",
    "GlobalMap",
    "RangeMap",
    "FirstLayerMap",
    "LastLayerMap",
    "GlobalTypeMap",
    "RangeTypeMap",
    "FirstLayerTypeMap",
    "LastLayerTypeMap",
    "FirstNTypeMap",
    "lrp_rules",
    "EpsilonGammaBox",
    "EpsilonPlus",
    "EpsilonAlpha2Beta1",
    "EpsilonPlusFlat",
    "EpsilonAlpha2Beta1Flat",
    # Checks
    "check_lrp_compat",
    "check_output_softmax",
    "model_check_summary",
]
