# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Traversal protocol shared by chain-shaped networks.

A chain network is a linked list of nodes. Each node optionally encloses
a layer and points to the next node; the last node has no successor.
Nodes adapt what flows through them with four hooks:

  map_input(input)                             -> layer input
  map_output(input, layer_output)              -> value passed to the next node
  map_gradient_in(input, eps_from_next)        -> eps w.r.t. the layer output
  map_gradient_out(input, eps_from_next, eps)  -> eps passed to the previous node

plus ``merge_gradient``/``split_gradient`` which build and take apart the
node's gradient from (layer gradient, rest-of-chain gradient).

Sequential nodes use identity hooks. Residual nodes route values through
a ResidualInput buffer. Gradient solvers walk any chain through this
protocol without knowing which kind it is, and NetworkNode implements the
whole Layer contract on top of it, so chains nest inside other networks.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Iterator, NamedTuple

import numpy as np

from .algebra import EMPTY, Empty, Pair, VectorSpace
from .errors import InvariantError
from .layers import Layer
from .shape import Shape


class Step(NamedTuple):
    """What one node saw during a training-mode forward pass."""

    node: NetworkNode
    input: object
    layer_input: object
    intermediary: object


class NetworkNode(Layer):
    """A node of a chain network."""

    @abstractmethod
    def get_layer(self) -> Layer | None:
        """Enclosed layer, or None for an identity node."""
        ...

    @abstractmethod
    def get_next(self) -> NetworkNode | None:
        """Successor node, or None at the end of the chain."""
        ...

    @abstractmethod
    def output_shape(self) -> Shape:
        ...

    def map_input(self, input):
        return input

    def map_output(self, input, layer_output):
        return layer_output

    def map_gradient_in(self, input, gradient_in):
        return gradient_in

    def map_gradient_out(self, input, gradient_in, gradient_out):
        return gradient_out

    def merge_gradient(self, rec_gradient: VectorSpace, layer_gradient: VectorSpace) -> VectorSpace:
        return Pair(layer_gradient, rec_gradient)

    def split_gradient(self, gradient: VectorSpace) -> tuple[VectorSpace, VectorSpace]:
        """Inverse of ``merge_gradient``: (layer gradient, rest gradient)."""
        if isinstance(gradient, Empty):
            return EMPTY, EMPTY
        return gradient.left, gradient.right

    # -----------------------------------------------------------------------
    # Traversal
    # -----------------------------------------------------------------------

    def nodes(self) -> Iterator[NetworkNode]:
        node = self
        while node is not None:
            yield node
            node = node.get_next()

    def _checked_layer(self) -> Layer | None:
        layer = self.get_layer()
        if layer is not None and not isinstance(layer, Layer):
            raise InvariantError(f"{type(layer).__name__} was evaluated before being constructed")
        return layer

    def eval(self, x: np.ndarray) -> np.ndarray:
        value = x
        for node in self.nodes():
            layer = node._checked_layer()
            layer_input = node.map_input(value)
            layer_output = layer_input if layer is None else layer.eval(layer_input)
            value = node.map_output(value, layer_output)
        return value

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, list[Step]]:
        trace: list[Step] = []
        value = x
        for node in self.nodes():
            layer = node._checked_layer()
            layer_input = node.map_input(value)
            if layer is None:
                layer_output, intermediary = layer_input, None
            else:
                layer_output, intermediary = layer.eval_training(layer_input)
            trace.append(Step(node, value, layer_input, intermediary))
            value = node.map_output(value, layer_output)
        return value, trace

    def backward(
        self, trace: list[Step], epsilon: np.ndarray, with_gradient: bool = True
    ) -> tuple[np.ndarray, VectorSpace]:
        """Walk a training trace in reverse.

        Returns (error signal w.r.t. the chain input, chain gradient). The
        gradient is EMPTY when ``with_gradient`` is False.
        """
        rec_gradient: VectorSpace = EMPTY
        for step in reversed(trace):
            node, layer = step.node, step.node.get_layer()
            layer_eps_in = node.map_gradient_in(step.input, epsilon)
            if layer is None:
                layer_eps_out, layer_gradient = layer_eps_in, EMPTY
            else:
                layer_eps_out = layer.backprop_layer(step.layer_input, step.intermediary, layer_eps_in)
                layer_gradient = EMPTY
                if with_gradient:
                    layer_gradient = layer.get_gradient(
                        step.layer_input, step.intermediary, layer_eps_in
                    )
            epsilon = node.map_gradient_out(step.input, epsilon, layer_eps_out)
            if with_gradient:
                rec_gradient = node.merge_gradient(rec_gradient, layer_gradient)
        return epsilon, rec_gradient

    # -----------------------------------------------------------------------
    # Layer contract
    # -----------------------------------------------------------------------

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        return self.backward(intermediary, epsilon, with_gradient=False)[0]

    def get_gradient(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> VectorSpace:
        return self.backward(intermediary, epsilon)[1]

    def default_gradient(self) -> VectorSpace:
        layer, child = self.get_layer(), self.get_next()
        layer_gradient = EMPTY if layer is None else layer.default_gradient()
        rec_gradient = EMPTY if child is None else child.default_gradient()
        return self.merge_gradient(rec_gradient, layer_gradient)

    def regularize_layer(self) -> VectorSpace:
        layer, child = self.get_layer(), self.get_next()
        layer_gradient = EMPTY if layer is None else layer.regularize_layer()
        rec_gradient = EMPTY if child is None else child.regularize_layer()
        return self.merge_gradient(rec_gradient, layer_gradient)

    def apply_gradient(self, gradient: VectorSpace) -> None:
        layer_gradient, rec_gradient = self.split_gradient(gradient)
        layer, child = self.get_layer(), self.get_next()
        if layer is not None:
            layer.apply_gradient(layer_gradient)
        if child is not None:
            child.apply_gradient(rec_gradient)

    def prepare_layer(self, is_training: bool) -> None:
        for node in self.nodes():
            layer = node.get_layer()
            if layer is not None:
                layer.prepare_layer(is_training)

    def layers(self) -> Iterator[Layer]:
        """Enclosed layers, in order."""
        for node in self.nodes():
            layer = node.get_layer()
            if layer is not None:
                yield layer

    def __iter__(self) -> Iterator[Layer]:
        return self.layers()

    def __len__(self) -> int:
        return sum(1 for _ in self.layers())
