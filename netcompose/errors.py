# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Error taxonomy.

Every recoverable error is raised while constructing a network, before
any data flows through it:
  - shape errors from individual layers (IncompatibleShape, OutOfBound, OutOfOrder)
  - axis errors from input combiners (NoInput, ConflictingShape, InvalidAmount)
  - RecursiveError, tagging where in a sequential chain construction failed
  - residual wiring errors (ResidualConstructError and subclasses)
  - graph errors (MissingNode, InvalidName, LayerErr, Cyclic)

InvariantError marks a broken internal contract at evaluation time
(reading an empty buffer, mixing erased gradient types). It signals a bug
in a composer and is never caught by the library.
"""

from __future__ import annotations

from .shape import Shape


class ConstructionError(Exception):
    """Base class for errors raised by ``construct``."""


class InvariantError(RuntimeError):
    """A runtime contract that construction should have guaranteed was broken."""


# ---------------------------------------------------------------------------
# Shape errors
# ---------------------------------------------------------------------------


class IncompatibleShape(ConstructionError):
    """The layer does not accept the given shape variant."""

    def __init__(self, expected: Shape | str, got: Shape):
        self.expected = expected
        self.got = got
        super().__init__(f"incompatible shape: expected {expected}, got {got}")


class OutOfBound(ConstructionError):
    """A requested range exceeds the input shape."""

    def __init__(self, bound: Shape, requested: Shape):
        self.bound = bound
        self.requested = requested
        super().__init__(f"{requested} is out of bound for {bound}")


class OutOfOrder(ConstructionError):
    """A range whose start is not strictly before its end."""

    def __init__(self, start: Shape, end: Shape):
        self.start = start
        self.end = end
        super().__init__(f"range start {start} is not before end {end}")


# ---------------------------------------------------------------------------
# Axis errors
# ---------------------------------------------------------------------------


class AxisError(ConstructionError):
    """Base class for input-combination failures."""


class NoInput(AxisError):
    def __init__(self):
        super().__init__("no input to combine")


class ConflictingShape(AxisError):
    def __init__(self, first: Shape, second: Shape):
        self.first = first
        self.second = second
        super().__init__(f"cannot combine {first} with {second}")


class InvalidAmount(AxisError):
    def __init__(self, got: int, min_inputs: int, max_inputs: int | None):
        self.got = got
        self.min_inputs = min_inputs
        self.max_inputs = max_inputs
        upper = "inf" if max_inputs is None else max_inputs
        super().__init__(f"expected between {min_inputs} and {upper} inputs, got {got}")


# ---------------------------------------------------------------------------
# Sequential errors
# ---------------------------------------------------------------------------


class RecursiveError(ConstructionError):
    """Construction error tagged with where in a chain it happened.

    ``current`` errors come from the node that raised; ``child`` errors
    wrap the RecursiveError of a descendant, so ``depth`` counts how many
    nodes down the failing layer sits.
    """

    def __init__(self, error: ConstructionError, is_child: bool = False):
        self.inner = error
        self.is_child = is_child
        super().__init__(f"layer {self.depth}: {self.error}")

    @classmethod
    def current(cls, error: ConstructionError) -> RecursiveError:
        return cls(error)

    @classmethod
    def child(cls, error: RecursiveError) -> RecursiveError:
        return cls(error, is_child=True)

    @property
    def depth(self) -> int:
        if self.is_child:
            return self.inner.depth + 1
        return 0

    @property
    def error(self) -> ConstructionError:
        """The error raised by the failing layer itself."""
        if self.is_child:
            return self.inner.error
        return self.inner


# ---------------------------------------------------------------------------
# Residual errors
# ---------------------------------------------------------------------------


class ResidualConstructError(ConstructionError):
    """Base class for residual wiring errors."""


class ResidualLayerError(ResidualConstructError):
    def __init__(self, error: ConstructionError):
        self.error = error
        super().__init__(f"layer construction failed: {error}")


class ResidualAxisError(ResidualConstructError):
    def __init__(self, error: AxisError):
        self.error = error
        super().__init__(f"input combination failed: {error}")


class NoOutput(ResidualConstructError):
    def __init__(self):
        super().__init__("node declares no output offsets")


class WrongConnection(ResidualConstructError):
    def __init__(self, offset: int):
        self.offset = offset
        super().__init__(f"wrong connection at offset {offset}")


class OutOfBoundConnection(ResidualConstructError):
    def __init__(self, offset: int):
        self.offset = offset
        super().__init__(f"connection at offset {offset} points past the network output")


class ResidualNoInput(ResidualConstructError):
    def __init__(self):
        super().__init__("network output receives no input")


# ---------------------------------------------------------------------------
# Graph errors
# ---------------------------------------------------------------------------


class GraphError(ConstructionError):
    """Base class for graph construction errors."""


class MissingNode(GraphError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"no node named {name!r}")


class InvalidName(GraphError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"name {name!r} is used more than once")


class LayerErr(GraphError):
    def __init__(self, name: str, error: ConstructionError):
        self.name = name
        self.error = error
        super().__init__(f"node {name!r}: {error}")


class Cyclic(GraphError):
    def __init__(self):
        super().__init__("graph contains a cycle or an unreachable node")
