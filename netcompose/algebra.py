# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Gradient algebra.

A gradient is a value of a vector space whose structure mirrors the
network it belongs to:
  - Empty: layers without parameters (the additive identity of everything)
  - Params: a tuple of ndarrays, e.g. (weights, bias) of a dense layer
  - Pair: (layer gradient, rest-of-chain gradient) for sequential/residual nodes
  - Stack: a fixed or growable list of gradients
  - DynGradient: a type-erased wrapper for heterogeneous collections

All operations mutate in place and return ``self`` for chaining:

  g.add_assign(h).scale(-lr)

Vector-space laws:
  g + zero        == g
  k * (a + b)     == k*a + k*b
  ||g||^2         >= 0, and == 0 only for zero gradients
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from .errors import InvariantError


class VectorSpace(ABC):
    """Interface shared by every gradient value."""

    @abstractmethod
    def zero(self) -> VectorSpace:
        """Return the additive identity with the same structure as self."""
        ...

    @abstractmethod
    def add_assign(self, other: VectorSpace) -> VectorSpace:
        """self += other (in place)."""
        ...

    @abstractmethod
    def scale(self, by: float) -> VectorSpace:
        """self *= by (in place)."""
        ...

    @abstractmethod
    def norm_squared(self) -> float:
        """Sum of squares of every component."""
        ...

    @abstractmethod
    def copy(self) -> VectorSpace:
        """Deep copy."""
        ...


class Empty(VectorSpace):
    """Gradient of a parameterless layer. Every operation is a no-op."""

    def zero(self) -> Empty:
        return self

    def add_assign(self, other: VectorSpace) -> Empty:
        return self

    def scale(self, by: float) -> Empty:
        return self

    def norm_squared(self) -> float:
        return 0.0

    def copy(self) -> Empty:
        return self

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Empty)

    def __hash__(self) -> int:
        return hash(Empty)

    def __repr__(self) -> str:
        return "Empty()"


EMPTY = Empty()


class Params(VectorSpace):
    """Gradient made of one or more ndarrays."""

    def __init__(self, *arrays: np.ndarray):
        self.arrays = [np.asarray(a, dtype=np.float64) for a in arrays]

    def zero(self) -> Params:
        return Params(*(np.zeros_like(a) for a in self.arrays))

    def add_assign(self, other: VectorSpace) -> Params:
        if isinstance(other, Empty):
            return self
        for mine, theirs in zip(self.arrays, other.arrays, strict=True):
            mine += theirs
        return self

    def scale(self, by: float) -> Params:
        for a in self.arrays:
            a *= by
        return self

    def norm_squared(self) -> float:
        return float(sum(np.sum(a * a) for a in self.arrays))

    def copy(self) -> Params:
        return Params(*(a.copy() for a in self.arrays))

    def __getitem__(self, index: int) -> np.ndarray:
        return self.arrays[index]

    def __len__(self) -> int:
        return len(self.arrays)

    def __repr__(self) -> str:
        return f"Params({', '.join(str(a.shape) for a in self.arrays)})"


class Pair(VectorSpace):
    """Gradient of a chain node: (layer gradient, child gradient)."""

    def __init__(self, left: VectorSpace, right: VectorSpace):
        self.left = left
        self.right = right

    def zero(self) -> Pair:
        return Pair(self.left.zero(), self.right.zero())

    def add_assign(self, other: VectorSpace) -> Pair:
        if isinstance(other, Empty):
            return self
        self.left.add_assign(other.left)
        self.right.add_assign(other.right)
        return self

    def scale(self, by: float) -> Pair:
        self.left.scale(by)
        self.right.scale(by)
        return self

    def norm_squared(self) -> float:
        return self.left.norm_squared() + self.right.norm_squared()

    def copy(self) -> Pair:
        return Pair(self.left.copy(), self.right.copy())

    def __iter__(self):
        yield self.left
        yield self.right

    def __repr__(self) -> str:
        return f"Pair({self.left!r}, {self.right!r})"


class Stack(VectorSpace):
    """A list of gradients combined component-wise.

    Adding a longer Stack to a shorter one grows the shorter one with
    copies of the missing tail, so ``Stack([])`` acts as the identity of
    any dynamically-sized collection.
    """

    def __init__(self, items: list[VectorSpace] | None = None):
        self.items = list(items) if items is not None else []

    def zero(self) -> Stack:
        return Stack([g.zero() for g in self.items])

    def add_assign(self, other: VectorSpace) -> Stack:
        if isinstance(other, Empty):
            return self
        for mine, theirs in zip(self.items, other.items):
            mine.add_assign(theirs)
        for theirs in other.items[len(self.items):]:
            self.items.append(theirs.copy())
        return self

    def scale(self, by: float) -> Stack:
        for g in self.items:
            g.scale(by)
        return self

    def norm_squared(self) -> float:
        return sum((g.norm_squared() for g in self.items), 0.0)

    def copy(self) -> Stack:
        return Stack([g.copy() for g in self.items])

    def __getitem__(self, index: int) -> VectorSpace:
        return self.items[index]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __repr__(self) -> str:
        return f"Stack({self.items!r})"


class DynGradient(VectorSpace):
    """Type-erased gradient.

    Lets gradients of unrelated layer types share one homogeneous
    collection. ``add_assign`` accepts only another DynGradient wrapping
    the same concrete type; anything else is a broken contract.
    """

    def __init__(self, inner: VectorSpace):
        if isinstance(inner, DynGradient):
            inner = inner.inner
        self.inner = inner

    def zero(self) -> DynGradient:
        return DynGradient(self.inner.zero())

    def add_assign(self, other: VectorSpace) -> DynGradient:
        theirs = other.inner if isinstance(other, DynGradient) else other
        if type(theirs) is not type(self.inner):
            raise InvariantError(
                f"cannot add {type(theirs).__name__} gradient to "
                f"{type(self.inner).__name__} gradient"
            )
        self.inner.add_assign(theirs)
        return self

    def scale(self, by: float) -> DynGradient:
        self.inner.scale(by)
        return self

    def norm_squared(self) -> float:
        return self.inner.norm_squared()

    def copy(self) -> DynGradient:
        return DynGradient(self.inner.copy())

    def downcast(self, kind: type) -> VectorSpace:
        """Return the wrapped gradient, checking its concrete type."""
        if not isinstance(self.inner, kind):
            raise InvariantError(
                f"expected {kind.__name__} gradient, found {type(self.inner).__name__}"
            )
        return self.inner

    def __repr__(self) -> str:
        return f"DynGradient({self.inner!r})"
