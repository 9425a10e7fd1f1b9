# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Axis combiners: merge several node inputs into one value and split the
error signal of that value back into per-input pieces.

For the input shapes given at construction time:
  split(combine(xs), shapes) == xs
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from .errors import ConflictingShape, InvalidAmount, NoInput
from .shape import Shape, Vector


class Axis(ABC):
    """Strategy for combining multiple inputs."""

    @abstractmethod
    def shape(self, input_shapes: list[Shape]) -> Shape:
        """Combined shape, or raise an AxisError."""
        ...

    @abstractmethod
    def combine(self, inputs: list[np.ndarray]) -> np.ndarray:
        ...

    @abstractmethod
    def split(self, combined: np.ndarray, input_shapes: list[Shape]) -> list[np.ndarray]:
        ...

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class AxisDefault(Axis):
    """Pass-through for nodes with exactly one input."""

    def shape(self, input_shapes: list[Shape]) -> Shape:
        if len(input_shapes) != 1:
            raise InvalidAmount(len(input_shapes), 1, 1)
        return input_shapes[0]

    def combine(self, inputs: list[np.ndarray]) -> np.ndarray:
        return inputs[0]

    def split(self, combined: np.ndarray, input_shapes: list[Shape]) -> list[np.ndarray]:
        return [combined]


class AxisAppend(Axis):
    """Concatenate vectors end to end.

    Append: shape = Vector(sum of input lengths)

    A single input of any shape passes through unchanged.
    """

    def shape(self, input_shapes: list[Shape]) -> Shape:
        if not input_shapes:
            raise NoInput()
        result = input_shapes[0]
        for operand in input_shapes[1:]:
            if not (isinstance(result, Vector) and isinstance(operand, Vector)):
                raise ConflictingShape(result, operand)
            result = Vector(result.length + operand.length)
        return result

    def combine(self, inputs: list[np.ndarray]) -> np.ndarray:
        if len(inputs) == 1:
            return inputs[0]
        return np.concatenate(inputs)

    def split(self, combined: np.ndarray, input_shapes: list[Shape]) -> list[np.ndarray]:
        if len(input_shapes) == 1:
            return [combined]
        # Cut points are the running sum of lengths, last one dropped
        cuts = np.cumsum([s.size() for s in input_shapes])[:-1]
        return np.split(combined, cuts)
