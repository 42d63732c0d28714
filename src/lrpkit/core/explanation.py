# src/lrpkit/core/explanation.py
"""
Unified container for explanation results.

The Explanation class bundles the attribution computed by an analyzer with
the model output and the neuron selection it was computed for. Rendering is
left to visualization tools, which can look up a default preset keyed by
the analyzer tag in ``HEATMAPPING_PRESETS``.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Tuple

import numpy as np
import torch


# Analyzer tag -> default rendering preset (colormap, channel reduction, normalization)
HEATMAPPING_PRESETS: Dict[str, Dict[str, str]] = {
    "LRP": {"colormap": "bwr", "reduce": "sum", "normalize": "centered"},
    "InputTimesGradient": {"colormap": "bwr", "reduce": "sum", "normalize": "centered"},
    "Gradient": {"colormap": "grays", "reduce": "norm", "normalize": "extrema"},
}


def _to_numpy(value) -> Any:
    if isinstance(value, torch.Tensor):
        return value.detach().cpu().numpy()
    return value


@dataclass(frozen=True)
class Explanation:
    """
    Result of one analyzer call.

    Attributes:
        attribution: Relevance tensor with the shape of the analyzed input
        output: Raw model output for the input
        neuron_selection: LongTensor of shape (batch, k) with the flat output
            indices that seeded the explanation
        analyzer: Tag of the method that produced the explanation, e.g. "LRP"
        extras: Optional additional data, e.g. {"layerwise_relevances": [...]}

    Example:
        >>> expl = analyze(x, LRP(model))
        >>> expl.attribution.shape == x.shape
        True
    """

    attribution: torch.Tensor
    output: torch.Tensor
    neuron_selection: torch.Tensor
    analyzer: str
    extras: Optional[Dict[str, Any]] = None

    def __repr__(self):
        extras = list(self.extras.keys()) if self.extras else None
        return (
            f"Explanation(analyzer='{self.analyzer}', "
            f"shape={tuple(self.attribution.shape)}, "
            f"neuron_selection={self.neuron_selection.tolist()}, "
            f"extras={extras})"
        )

    @property
    def heatmap_preset(self) -> Optional[Dict[str, str]]:
        """Default rendering preset for this explanation's analyzer."""
        return HEATMAPPING_PRESETS.get(self.analyzer)

    def get_top_features(
        self,
        k: int = 5,
        absolute: bool = True,
        sample: int = 0
    ) -> List[Tuple[int, float]]:
        """
        Get the top-k most relevant input features of one sample.

        Args:
            k: Number of top features to return
            absolute: If True, rank by absolute value of relevance
            sample: Batch index of the sample

        Returns:
            List of (flat_feature_index, relevance) tuples sorted by importance
        """
        values = self.attribution[sample].detach().flatten()
        scores = values.abs() if absolute else values
        k = min(k, values.numel())
        top = torch.topk(scores, k).indices.tolist()
        return [(i, float(values[i])) for i in top]

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert explanation to a dictionary of numpy arrays for serialization.

        Returns:
            Dictionary representation of the explanation
        """
        extras = None
        if self.extras is not None:
            extras = {}
            for key, value in self.extras.items():
                if isinstance(value, (list, tuple)):
                    extras[key] = [_to_numpy(v) for v in value]
                else:
                    extras[key] = _to_numpy(value)
        return {
            "attribution": _to_numpy(self.attribution),
            "output": _to_numpy(self.output),
            "neuron_selection": _to_numpy(self.neuron_selection),
            "analyzer": self.analyzer,
            "extras": extras,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Explanation":
        """
        Create an Explanation from a dictionary produced by ``to_dict``.

        Args:
            data: Dictionary with explanation data

        Returns:
            Explanation instance
        """
        extras = data.get("extras")
        if extras is not None:
            extras = {
                key: [torch.as_tensor(v) for v in value]
                if isinstance(value, list) else torch.as_tensor(np.asarray(value))
                for key, value in extras.items()
            }
        return cls(
            attribution=torch.as_tensor(np.asarray(data["attribution"])),
            output=torch.as_tensor(np.asarray(data["output"])),
            neuron_selection=torch.as_tensor(np.asarray(data["neuron_selection"])),
            analyzer=data["analyzer"],
            extras=extras,
        )
