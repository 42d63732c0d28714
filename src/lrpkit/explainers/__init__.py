# src/lrpkit/explainers/__init__.py
"""
Analyzers producing per-input attributions.
"""

from lrpkit.explainers.lrp import LRP

__all__ = ["LRP"]
