# src/lrpkit/core/neuron_selection.py
"""
Neuron selection: which output units seed the backward pass.

A selector maps a batched model output of shape ``(batch, ...)`` to a
``LongTensor`` of shape ``(batch, k)`` holding flat per-sample indices.
Custom selectors only implement ``select``.
"""

import numbers
from typing import Sequence, Union

import torch

from lrpkit.core.errors import ShapeError


class NeuronSelector:
    """Base class for neuron selectors."""

    def select(self, output: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def __call__(self, output):
        """
        Select neurons from ``output``.

        A 1-D output without batch axis returns a plain index (or a list of
        indices when several neurons are selected); batched output returns
        the ``(batch, k)`` index tensor.
        """
        output = torch.as_tensor(output)
        if output.dim() == 1:
            indices = self.select(output.unsqueeze(0))[0].tolist()
            return indices[0] if len(indices) == 1 else indices
        return self.select(output)


class MaxActivationNS(NeuronSelector):
    """Select the output neuron with the largest activation per sample."""

    def select(self, output: torch.Tensor) -> torch.Tensor:
        # argmax returns the first maximal index on ties
        return output.reshape(output.shape[0], -1).argmax(dim=1, keepdim=True)

    def __repr__(self):
        return "MaxActivationNS()"


class IndexNS(NeuronSelector):
    """
    Select fixed output neuron(s), independent of the output values.

    Args:
        index: Flat per-sample index, or a sequence of indices for a k-hot
            selection
    """

    def __init__(self, index: Union[int, Sequence[int]]):
        if isinstance(index, numbers.Integral):
            index = [index]
        self.index = [int(i) for i in index]
        if len(self.index) == 0:
            raise ValueError("IndexNS requires at least one index.")

    def select(self, output: torch.Tensor) -> torch.Tensor:
        n_neurons = output[0].numel() if output.shape[0] > 0 else 0
        for i in self.index:
            if not 0 <= i < n_neurons:
                raise ShapeError(
                    f"Neuron index {i} out of range for output with "
                    f"{n_neurons} neurons per sample."
                )
        index = torch.tensor(self.index, dtype=torch.long, device=output.device)
        return index.unsqueeze(0).expand(output.shape[0], -1)

    def __repr__(self):
        if len(self.index) == 1:
            return f"IndexNS({self.index[0]})"
        return f"IndexNS({self.index})"


def get_neuron_selector(neuron_selection) -> NeuronSelector:
    """Build a selector from None (max activation), an index or a selector."""
    if neuron_selection is None:
        return MaxActivationNS()
    if isinstance(neuron_selection, NeuronSelector):
        return neuron_selection
    if isinstance(neuron_selection, (numbers.Integral, list, tuple)):
        return IndexNS(neuron_selection)
    raise TypeError(
        "neuron_selection must be None, an int, a sequence of ints or a "
        f"NeuronSelector, got {type(neuron_selection).__name__}."
    )


def mask_output_neuron(output: torch.Tensor, selection: torch.Tensor) -> torch.Tensor:
    """One-hot (or k-hot) relevance seed shaped like ``output``."""
    mask = torch.zeros(output.shape[0], output[0].numel(), dtype=output.dtype, device=output.device)
    mask.scatter_(1, selection.to(output.device).contiguous(), 1.0)
    return mask.reshape(output.shape)
