# src/lrpkit/core/analyzer.py
"""
Base class for analyzers and the ``analyze`` entry point.
"""

from abc import ABC, abstractmethod

import numpy as np
import torch

from lrpkit.core.errors import ShapeError
from lrpkit.core.explanation import Explanation
from lrpkit.core.neuron_selection import NeuronSelector, get_neuron_selector


class BaseAnalyzer(ABC):
    """
    Abstract base class for attribution methods.

    Subclasses implement ``__call__(input, neuron_selector, **kwargs)``
    returning an Explanation.
    """

    def __init__(self, model):
        self.model = model

    @abstractmethod
    def __call__(
        self,
        input: torch.Tensor,
        neuron_selector: NeuronSelector,
        **kwargs
    ) -> Explanation:
        raise NotImplementedError


def prepare_input(input) -> torch.Tensor:
    """
    Convert an input batch to a floating point tensor.

    Raises:
        ShapeError: If the input has no batch dimension
    """
    if isinstance(input, np.ndarray):
        input = torch.from_numpy(input)
    elif not isinstance(input, torch.Tensor):
        input = torch.as_tensor(input)
    if not torch.is_floating_point(input):
        input = input.float()
    if input.dim() < 2:
        raise ShapeError(
            f"Expected an input batch with the batch dimension first, got "
            f"shape {tuple(input.shape)}. Use input.unsqueeze(0) for a single sample."
        )
    return input.detach()


def analyze(input, analyzer: BaseAnalyzer, neuron_selection=None, **kwargs) -> Explanation:
    """
    Explain ``input`` with ``analyzer``.

    Args:
        input: Input batch (tensor or numpy array), batch dimension first
        analyzer: Analyzer instance, e.g. ``LRP(model)``
        neuron_selection: None to explain the maximally activated output,
            an int (or sequence of ints) to explain fixed output neurons, or
            a NeuronSelector
        **kwargs: Forwarded to the analyzer, e.g. ``layerwise_relevances=True``

    Returns:
        Explanation object
    """
    selector = get_neuron_selector(neuron_selection)
    return analyzer(prepare_input(input), selector, **kwargs)
