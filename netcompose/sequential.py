# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Sequential composition: layers chained head to tail.

A chain is a cons list:

  Sequential(layer_1, Sequential(layer_2, ... SequentialLast(shape)))

Its gradient mirrors that structure:

  Pair(grad_1, Pair(grad_2, ... EMPTY))

Construction threads the output shape of each layer into the next one.
A failure is raised as RecursiveError, tagged with how far down the
chain the failing layer sits.
"""

from __future__ import annotations

import logging

from .algebra import EMPTY, VectorSpace
from .errors import ConstructionError, InvariantError, RecursiveError
from .layers import Layer, LockLayer, PartialLayer, construct_layer
from .network import NetworkNode
from .shape import Shape

logger = logging.getLogger(__name__)


def _is_constructed(item: Layer | PartialLayer) -> bool:
    # Composite networks are both; only plain layers know their output shape up front
    return isinstance(item, Layer) and not isinstance(item, PartialLayer)


class SequentialLast(NetworkNode, PartialLayer):
    """End of a chain. Passes its input through unchanged."""

    def __init__(self, shape: Shape | None = None):
        self.shape = shape

    def get_layer(self) -> None:
        return None

    def get_next(self) -> None:
        return None

    def output_shape(self) -> Shape:
        if self.shape is None:
            raise InvariantError("output shape of an unconstructed chain")
        return self.shape

    def merge_gradient(self, rec_gradient: VectorSpace, layer_gradient: VectorSpace) -> VectorSpace:
        return EMPTY

    def split_gradient(self, gradient: VectorSpace) -> tuple[VectorSpace, VectorSpace]:
        return EMPTY, EMPTY

    def construct(self, input_shape: Shape) -> SequentialLast:
        return SequentialLast(input_shape)

    def push_tail(self, layer: Layer | PartialLayer) -> Sequential:
        return Sequential.link(layer, SequentialLast())

    def lock(self) -> SequentialLast:
        return self

    def __repr__(self) -> str:
        return f"SequentialLast({self.shape!r})"


class Sequential(NetworkNode, PartialLayer):
    """Chain node: a layer followed by the rest of the chain."""

    def __init__(
        self,
        layer: Layer | PartialLayer,
        child: Sequential | SequentialLast,
        input_shape: Shape | None = None,
    ):
        self.layer = layer
        self.child = child
        # Known once constructed
        self.input_shape = input_shape

    @classmethod
    def link(
        cls,
        layer: Layer | PartialLayer,
        child: Sequential | SequentialLast,
        input_shape: Shape | None = None,
    ) -> Sequential:
        """Prepend ``layer``, filling in an unknown tail shape when the layer is constructed."""
        if isinstance(child, SequentialLast) and child.shape is None and _is_constructed(layer):
            child = SequentialLast(layer.output_shape())
        return cls(layer, child, input_shape)

    def get_layer(self) -> Layer | PartialLayer:
        return self.layer

    def get_next(self) -> Sequential | SequentialLast:
        return self.child

    def output_shape(self) -> Shape:
        return self.child.output_shape()

    def construct(self, input_shape: Shape) -> Sequential:
        """Construct every layer, threading shapes head to tail.

        Raises:
            RecursiveError: wrapping the first layer that failed.
        """
        try:
            layer = construct_layer(self.layer, input_shape)
        except ConstructionError as err:
            raise RecursiveError.current(err) from err
        try:
            child = self.child.construct(layer.output_shape())
        except RecursiveError as err:
            raise RecursiveError.child(err) from err
        logger.debug("constructed %s: %s -> %s", type(layer).__name__, input_shape, layer.output_shape())
        return Sequential(layer, child, input_shape)

    # -----------------------------------------------------------------------
    # Structural edits (each returns a new chain sharing the layers)
    # -----------------------------------------------------------------------

    def trim_tail(self) -> Sequential | SequentialLast:
        """Drop the last layer.

        The new tail keeps the output shape of the layer now last, which
        is the input shape recorded by the dropped node.
        """
        if isinstance(self.child, SequentialLast):
            return SequentialLast(self.input_shape)
        return Sequential.link(self.layer, self.child.trim_tail(), self.input_shape)

    def push_tail(self, layer: Layer | PartialLayer) -> Sequential:
        """Append ``layer`` after the last layer."""
        return Sequential(self.layer, self.child.push_tail(layer), self.input_shape)

    def trim_front(self) -> Sequential | SequentialLast:
        """Drop the first layer."""
        return self.child

    def push_front(self, layer: Layer | PartialLayer) -> Sequential:
        """Insert ``layer`` before the first layer."""
        return Sequential(layer, self)

    def lock(self) -> Sequential:
        """Wrap every layer in a LockLayer, freezing its parameters."""
        return Sequential(LockLayer(self.layer), self.child.lock(), self.input_shape)

    def __repr__(self) -> str:
        return f"Sequential({self.layer!r}, {self.child!r})"


def sequential(*items: Layer | PartialLayer) -> Sequential | SequentialLast:
    """Chain ``items`` in order. Accepts partial and constructed layers."""
    chain: Sequential | SequentialLast = SequentialLast()
    for item in reversed(items):
        chain = Sequential.link(item, chain)
    return chain
