# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Residual composition: a chain whose nodes may skip ahead.

Every node declares ``offsets``: which downstream nodes receive its
output. Offset 0 is the next node, offset 1 the one after, and so on.
Values travel in a ResidualInput buffer of slots, one slot per upcoming
node; each node shifts off slot 0 (its inputs), combines them with its
axis, evaluates its layer and pushes the result into the remaining slots
at each of its offsets.

  Residual(initial_offsets=[0, 2])     input goes to nodes 1 and 3
    ResidualNode(dense(4), offsets=[0, 1])
    ResidualNode(dense(3), offsets=[0])
    ResidualNode(dense(2), offsets=[0])   input = append(input, node 1, node 2)
    ResidualLast                          output = node 3

Backward mirrors this with a buffer of error signals indexed relative to
the node reading it: slot k holds signals for the producer k + 1 positions
back. A node sums its slot 0 (one signal per consumer), backpropagates
through its layer, splits the result per input with its axis and pushes
each piece at that input's offset.
"""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np

from .algebra import EMPTY, VectorSpace
from .axis import Axis, AxisAppend
from .errors import (
    AxisError,
    ConstructionError,
    InvariantError,
    NoOutput,
    OutOfBoundConnection,
    ResidualAxisError,
    ResidualLayerError,
    ResidualNoInput,
    WrongConnection,
)
from .layers import Layer, PartialLayer, construct_layer
from .network import NetworkNode
from .shape import Shape

logger = logging.getLogger(__name__)


class ResidualInput:
    """Per-pass routing buffer.

    Slots hold shared values; a value pushed into several slots is the
    same object in each, and is never mutated after being pushed.
    """

    def __init__(self, slots: Iterable[list] | None = None):
        self.slots: list[list] = [list(s) for s in slots] if slots is not None else []

    def push(self, offset: int, value) -> None:
        while len(self.slots) <= offset:
            self.slots.append([])
        self.slots[offset].append(value)

    def shift(self) -> tuple[list, ResidualInput]:
        """Return (slot 0, buffer of the remaining slots shifted down by one)."""
        if not self.slots:
            return [], ResidualInput()
        return list(self.slots[0]), ResidualInput(self.slots[1:])

    def get_first(self):
        if not self.slots or not self.slots[0]:
            raise InvariantError("residual buffer has no value in its first slot")
        return self.slots[0][0]

    def is_empty(self) -> bool:
        return all(not slot for slot in self.slots)

    def first_occupied(self) -> int | None:
        for offset, slot in enumerate(self.slots):
            if slot:
                return offset
        return None

    def __len__(self) -> int:
        return len(self.slots)

    def __repr__(self) -> str:
        return f"ResidualInput({self.slots!r})"


def _sum_signals(signals: list[np.ndarray]) -> np.ndarray:
    total = np.array(signals[0], dtype=np.float64)
    for signal in signals[1:]:
        total += signal
    return total


class ResidualLast(NetworkNode):
    """End of a residual chain: outputs the value routed to it."""

    def __init__(self, shape: Shape | None = None):
        self.shape = shape

    def get_layer(self) -> None:
        return None

    def get_next(self) -> None:
        return None

    def output_shape(self) -> Shape:
        if self.shape is None:
            raise InvariantError("output shape of an unconstructed residual network")
        return self.shape

    def construct_residual(
        self, shapes: ResidualInput, indices: ResidualInput, current_index: int
    ) -> ResidualLast:
        input_shapes, rest_shapes = shapes.shift()
        input_indices, rest_indices = indices.shift()

        leftover = rest_shapes.first_occupied()
        if leftover is not None:
            # Declared offset of the producer that points past this node
            producer = rest_indices.slots[leftover][0]
            raise OutOfBoundConnection(current_index + leftover - producer)
        if not input_shapes:
            raise ResidualNoInput()
        for index in input_indices:
            if index != current_index - 1:
                raise WrongConnection(current_index - index - 1)
        return ResidualLast(input_shapes[0])

    def map_input(self, input: ResidualInput):
        return input.get_first()

    def map_gradient_out(self, input, gradient_in, gradient_out) -> ResidualInput:
        epsilon = ResidualInput()
        epsilon.push(0, gradient_out)
        return epsilon

    def merge_gradient(self, rec_gradient: VectorSpace, layer_gradient: VectorSpace) -> VectorSpace:
        return EMPTY

    def split_gradient(self, gradient: VectorSpace) -> tuple[VectorSpace, VectorSpace]:
        return EMPTY, EMPTY

    def __repr__(self) -> str:
        return f"ResidualLast({self.shape!r})"


class ResidualNode(NetworkNode):
    """One layer of a residual chain and where its output goes.

    After construction also holds:
      input_shapes   shapes of the values combined into the layer input
      input_offsets  for each of those, how many nodes back its producer
                     sits (0 = the previous node); used to route error
                     signals back
    """

    def __init__(
        self,
        layer: Layer | PartialLayer,
        child: ResidualNode | ResidualLast,
        offsets: list[int] | None = None,
        axis: Axis | None = None,
        input_shapes: list[Shape] | None = None,
        input_offsets: list[int] | None = None,
    ):
        self.layer = layer
        self.child = child
        self.offsets = list(offsets) if offsets is not None else [0]
        self.axis = axis if axis is not None else AxisAppend()
        self.input_shapes = input_shapes
        self.input_offsets = input_offsets

    def get_layer(self) -> Layer | PartialLayer:
        return self.layer

    def get_next(self) -> ResidualNode | ResidualLast:
        return self.child

    def output_shape(self) -> Shape:
        return self.child.output_shape()

    def construct_residual(
        self, shapes: ResidualInput, indices: ResidualInput, current_index: int
    ) -> ResidualNode:
        input_shapes, rest_shapes = shapes.shift()
        input_indices, rest_indices = indices.shift()

        try:
            layer_input_shape = self.axis.shape(input_shapes)
        except AxisError as err:
            raise ResidualAxisError(err) from err
        try:
            layer = construct_layer(self.layer, layer_input_shape)
        except ConstructionError as err:
            raise ResidualLayerError(err) from err

        if not self.offsets:
            raise NoOutput()
        layer_output_shape = layer.output_shape()
        for offset in self.offsets:
            if offset < 0:
                raise WrongConnection(offset)
            rest_shapes.push(offset, layer_output_shape)
            rest_indices.push(offset, current_index)

        child = self.child.construct_residual(rest_shapes, rest_indices, current_index + 1)
        logger.debug(
            "constructed residual node %d: %s -> %s, offsets %s",
            current_index, input_shapes, layer_output_shape, self.offsets,
        )
        return ResidualNode(
            layer,
            child,
            self.offsets,
            self.axis,
            input_shapes=input_shapes,
            input_offsets=[current_index - index - 1 for index in input_indices],
        )

    def _require_constructed(self) -> None:
        if self.input_shapes is None or self.input_offsets is None:
            raise InvariantError("residual node used before construction")

    def map_input(self, input: ResidualInput):
        inputs, _ = input.shift()
        if not inputs:
            raise InvariantError("residual node received no input")
        return self.axis.combine(inputs)

    def map_output(self, input: ResidualInput, layer_output) -> ResidualInput:
        _, rest = input.shift()
        for offset in self.offsets:
            rest.push(offset, layer_output)
        return rest

    def map_gradient_in(self, input, gradient_in: ResidualInput) -> np.ndarray:
        signals, _ = gradient_in.shift()
        if not signals:
            raise InvariantError("no error signal reached residual node")
        return _sum_signals(signals)

    def map_gradient_out(self, input, gradient_in: ResidualInput, gradient_out) -> ResidualInput:
        self._require_constructed()
        _, rest = gradient_in.shift()
        pieces = self.axis.split(gradient_out, self.input_shapes)
        for piece, offset in zip(pieces, self.input_offsets, strict=True):
            rest.push(offset, piece)
        return rest

    def __repr__(self) -> str:
        return f"ResidualNode({self.layer!r}, offsets={self.offsets}, axis={self.axis!r})"


class Residual(NetworkNode, PartialLayer):
    """Entry of a residual network.

    Seeds the routing buffer with the network input at ``initial_offsets``
    and, on the way back, sums every error signal addressed to the input.
    """

    def __init__(self, layers: ResidualNode | ResidualLast, initial_offsets: list[int] | None = None):
        self.child = layers
        self.initial_offsets = list(initial_offsets) if initial_offsets is not None else [0]

    def get_layer(self) -> None:
        return None

    def get_next(self) -> ResidualNode | ResidualLast:
        return self.child

    def output_shape(self) -> Shape:
        return self.child.output_shape()

    def construct(self, input_shape: Shape) -> Residual:
        """Construct every node, routing shapes as values will be routed.

        Raises:
            ResidualConstructError: on a bad offset, axis or layer.
        """
        shapes, indices = ResidualInput(), ResidualInput()
        for offset in self.initial_offsets:
            if offset < 0:
                raise WrongConnection(offset)
            shapes.push(offset, input_shape)
            indices.push(offset, 0)
        layers = self.child.construct_residual(shapes, indices, 1)
        return Residual(layers, self.initial_offsets)

    def map_output(self, input, layer_output) -> ResidualInput:
        buffer = ResidualInput()
        for offset in self.initial_offsets:
            buffer.push(offset, layer_output)
        return buffer

    def map_gradient_in(self, input, gradient_in: ResidualInput) -> np.ndarray:
        signals, rest = gradient_in.shift()
        if not signals or not rest.is_empty():
            raise InvariantError("error signals of the residual input are misrouted")
        return _sum_signals(signals)

    def merge_gradient(self, rec_gradient: VectorSpace, layer_gradient: VectorSpace) -> VectorSpace:
        return rec_gradient

    def split_gradient(self, gradient: VectorSpace) -> tuple[VectorSpace, VectorSpace]:
        return EMPTY, gradient

    def nodes_residual(self) -> list[ResidualNode]:
        """The layer-carrying nodes, in order."""
        return [node for node in self.nodes() if isinstance(node, ResidualNode)]

    def __repr__(self) -> str:
        return f"Residual({self.child!r}, initial_offsets={self.initial_offsets})"


class ResidualBuilder:
    """Chainable description of a residual network.

      residual([0, 2]).add(dense(4), offsets=[0, 1]).add(dense(3)).add(dense(2)).build()
    """

    def __init__(self, initial_offsets: list[int] | None = None):
        self.initial_offsets = list(initial_offsets) if initial_offsets is not None else [0]
        self._entries: list[tuple[Layer | PartialLayer, list[int], Axis | None]] = []

    def add(
        self,
        layer: Layer | PartialLayer,
        offsets: list[int] | None = None,
        axis: Axis | None = None,
    ) -> ResidualBuilder:
        self._entries.append((layer, list(offsets) if offsets is not None else [0], axis))
        return self

    def build(self) -> Residual:
        chain: ResidualNode | ResidualLast = ResidualLast()
        for layer, offsets, axis in reversed(self._entries):
            chain = ResidualNode(layer, chain, offsets, axis)
        return Residual(chain, self.initial_offsets)


def residual(initial_offsets: list[int] | None = None) -> ResidualBuilder:
    """Start describing a residual network whose input goes to ``initial_offsets``."""
    return ResidualBuilder(initial_offsets)
