# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Shape model for values flowing between layers.

Three variants, matching the rank of the underlying ndarray:
  Vector(n)                      -> array of shape (n,)
  Matrix(rows, cols)             -> array of shape (rows, cols)
  Tensor(rows, cols, channels)   -> array of shape (rows, cols, channels)

Shapes are frozen dataclasses, so equality is structural and they can be
used as dict keys.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

import numpy as np


@dataclass(frozen=True)
class Shape:
    """Base class for shape variants."""

    def dims(self) -> tuple[int, ...]:
        """Return the numpy shape tuple."""
        return tuple(getattr(self, f.name) for f in fields(self))

    def size(self) -> int:
        """Total number of elements."""
        return int(np.prod(self.dims(), dtype=np.int64))

    def is_compatible(self, other: Shape) -> bool:
        """True when both shapes are of the same variant."""
        return type(self) is type(other)

    def sub(self, other: Shape) -> Shape | None:
        """Element-wise difference of dimensions, or None on variant mismatch."""
        if not self.is_compatible(other):
            return None
        return type(self)(*(a - b for a, b in zip(self.dims(), other.dims())))

    def zeros(self) -> np.ndarray:
        """Allocate a zero-filled array of this shape."""
        return np.zeros(self.dims())


@dataclass(frozen=True)
class Vector(Shape):
    length: int


@dataclass(frozen=True)
class Matrix(Shape):
    rows: int
    cols: int


@dataclass(frozen=True)
class Tensor(Shape):
    rows: int
    cols: int
    channels: int


def shape_of(array: np.ndarray) -> Shape:
    """Infer the shape variant of an ndarray.

    Raises:
        ValueError: if the array is not 1-, 2- or 3-dimensional.
    """
    dims = np.shape(array)
    if len(dims) == 1:
        return Vector(*dims)
    if len(dims) == 2:
        return Matrix(*dims)
    if len(dims) == 3:
        return Tensor(*dims)
    raise ValueError(f"no shape variant for array of rank {len(dims)}")
