# tests/test_explanation.py
"""
Tests for the Explanation container and the analyze entry point.
"""

import pytest
import numpy as np
import torch
import torch.nn as nn

from lrpkit import LRP, Explanation, HEATMAPPING_PRESETS, analyze


@pytest.fixture
def explanation():
    return Explanation(
        attribution=torch.tensor([[0.1, -0.7, 0.3, 0.0], [1.0, 0.2, -0.1, 0.4]]),
        output=torch.tensor([[1.5, 0.2], [0.3, 0.9]]),
        neuron_selection=torch.tensor([[0], [1]]),
        analyzer="LRP",
    )


class TestExplanation:
    """Tests for Explanation methods."""

    def test_top_features_absolute(self, explanation):
        top = explanation.get_top_features(k=2)
        assert [i for i, _ in top] == [1, 2]
        assert top[0][1] == pytest.approx(-0.7)

    def test_top_features_signed(self, explanation):
        top = explanation.get_top_features(k=2, absolute=False)
        assert [i for i, _ in top] == [2, 0]

    def test_top_features_other_sample(self, explanation):
        top = explanation.get_top_features(k=1, sample=1)
        assert top == [(0, pytest.approx(1.0))]

    def test_top_features_k_larger_than_features(self, explanation):
        assert len(explanation.get_top_features(k=10)) == 4

    def test_heatmap_preset(self, explanation):
        assert explanation.heatmap_preset == {"colormap": "bwr", "reduce": "sum", "normalize": "centered"}
        assert HEATMAPPING_PRESETS["Gradient"]["colormap"] == "grays"

    def test_repr(self, explanation):
        text = repr(explanation)
        assert "analyzer='LRP'" in text
        assert "shape=(2, 4)" in text

    def test_dict_round_trip(self, explanation):
        data = explanation.to_dict()
        assert isinstance(data["attribution"], np.ndarray)
        restored = Explanation.from_dict(data)
        torch.testing.assert_close(restored.attribution, explanation.attribution)
        assert restored.neuron_selection.tolist() == [[0], [1]]
        assert restored.analyzer == "LRP"
        assert restored.extras is None

    def test_dict_with_layerwise_relevances(self):
        model = nn.Sequential(nn.Linear(3, 4), nn.ReLU(), nn.Linear(4, 2))
        expl = analyze(torch.rand(2, 3), LRP(model), layerwise_relevances=True)
        data = expl.to_dict()
        assert len(data["extras"]["layerwise_relevances"]) == 4
        restored = Explanation.from_dict(data)
        torch.testing.assert_close(
            restored.extras["layerwise_relevances"][0], expl.attribution
        )

    def test_frozen(self, explanation):
        with pytest.raises(AttributeError):
            explanation.analyzer = "Gradient"
