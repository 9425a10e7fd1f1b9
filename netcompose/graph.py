# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Graph composition: named nodes with arbitrary named inputs.

  GraphPartial(
      nodes=[
          GraphNode("a", ["input"], dense(8)),
          GraphNode("b", ["a"], dense(8)),
          GraphNode("out", ["a", "b"], dense(2), AxisAppend()),
      ],
      input="input",
      output="out",
  ).construct(Vector(4))

Construction resolves names to buffer slots, orders nodes topologically
and threads shapes through them. Slot 0 of every per-pass buffer holds
the network input; slot k holds the output of the k-th node in execution
order. Nodes reference each other only through these slots.

The gradient of a graph is a Stack of DynGradient, one entry per slot
(slot 0 holds the empty gradient of the input).
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np

from .algebra import EMPTY, DynGradient, Empty, Stack, VectorSpace
from .axis import Axis, AxisDefault
from .errors import ConstructionError, Cyclic, InvalidName, InvariantError, LayerErr, MissingNode
from .layers import Layer, PartialLayer, construct_layer
from .network import NetworkNode
from .shape import Shape

logger = logging.getLogger(__name__)


@dataclass
class GraphNode:
    """Unconstructed node: a name, the names it reads, a combiner and a layer."""

    name: str
    inputs: list[str]
    layer: Layer | PartialLayer
    axis: Axis = field(default_factory=AxisDefault)

    def construct_node(
        self, input_shapes: list[Shape], input_indices: list[int], output_index: int
    ) -> GraphLayerNode:
        layer = construct_layer(self.layer, self.axis.shape(input_shapes))
        return GraphLayerNode(
            self.name, layer, self.axis, input_indices, output_index, input_shapes
        )


class GraphLayerNode:
    """Constructed node bound to buffer slots."""

    def __init__(
        self,
        name: str,
        layer: Layer,
        axis: Axis,
        inputs: list[int],
        output: int,
        input_shapes: list[Shape],
    ):
        self.name = name
        self.layer = layer
        self.axis = axis
        self.inputs = inputs
        self.output = output
        self.input_shapes = input_shapes

    def output_shape(self) -> Shape:
        return self.layer.output_shape()

    def eval(self, inputs: list[np.ndarray]) -> np.ndarray:
        return self.layer.eval(self.axis.combine(inputs))

    def eval_training(self, inputs: list[np.ndarray]) -> tuple[np.ndarray, tuple]:
        combined = self.axis.combine(inputs)
        output, intermediary = self.layer.eval_training(combined)
        return output, (combined, intermediary)

    def backprop(self, intermediary: tuple, epsilon: np.ndarray) -> list[np.ndarray]:
        """Error signal for each input, in declaration order."""
        combined, layer_intermediary = intermediary
        epsilon_in = self.layer.backprop_layer(combined, layer_intermediary, epsilon)
        return self.axis.split(epsilon_in, self.input_shapes)

    def get_gradient(self, intermediary: tuple, epsilon: np.ndarray) -> DynGradient:
        combined, layer_intermediary = intermediary
        return DynGradient(self.layer.get_gradient(combined, layer_intermediary, epsilon))

    def default_gradient(self) -> DynGradient:
        return DynGradient(self.layer.default_gradient())

    def regularize(self) -> DynGradient:
        return DynGradient(self.layer.regularize_layer())

    def apply_gradient(self, gradient: VectorSpace) -> None:
        if isinstance(gradient, DynGradient):
            gradient = gradient.inner
        self.layer.apply_gradient(gradient)

    def prepare(self, is_training: bool) -> None:
        self.layer.prepare_layer(is_training)

    def __repr__(self) -> str:
        return f"GraphLayerNode({self.name!r}, {self.inputs} -> {self.output}, {self.layer!r})"


class GraphIntermediary(NamedTuple):
    """Buffers of a training-mode forward pass, indexed by slot."""

    outputs: list
    intermediaries: list


class Graph(Layer):
    """Constructed graph; nodes are stored in execution order."""

    def __init__(
        self,
        nodes: list[GraphLayerNode],
        input_shape: Shape,
        output_index: int,
        buffer_size: int | None = None,
    ):
        self.nodes = nodes
        self.input_shape = input_shape
        self.output_index = output_index
        self.buffer_size = buffer_size if buffer_size is not None else len(nodes) + 1

    @classmethod
    def from_sequential(cls, network: NetworkNode, input_shape: Shape) -> Graph:
        """One pass-through node per layer of a constructed chain.

        Layers are deep-copied, so the graph trains independently of
        ``network``.
        """
        nodes: list[GraphLayerNode] = []
        shape = input_shape
        for position, layer in enumerate(network.layers()):
            nodes.append(
                GraphLayerNode(
                    f"layer_{position}", copy.deepcopy(layer), AxisDefault(),
                    [position], position + 1, [shape],
                )
            )
            shape = layer.output_shape()
        return cls(nodes, input_shape, len(nodes))

    def output_shape(self) -> Shape:
        if self.output_index == 0:
            return self.input_shape
        return self.nodes[self.output_index - 1].output_shape()

    def gather(self, buffer: list, node: GraphLayerNode) -> list:
        """Collect the inputs of ``node`` from a per-pass buffer."""
        inputs = [buffer[index] for index in node.inputs]
        if any(value is None for value in inputs):
            raise InvariantError(f"node {node.name!r} read an empty buffer slot")
        return inputs

    def eval(self, x: np.ndarray) -> np.ndarray:
        outputs: list = [None] * self.buffer_size
        outputs[0] = x
        for node in self.nodes:
            outputs[node.output] = node.eval(self.gather(outputs, node))
        return outputs[self.output_index]

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, GraphIntermediary]:
        outputs: list = [None] * self.buffer_size
        intermediaries: list = [None] * self.buffer_size
        outputs[0] = x
        for node in self.nodes:
            output, intermediary = node.eval_training(self.gather(outputs, node))
            outputs[node.output] = output
            intermediaries[node.output] = intermediary
        return outputs[self.output_index], GraphIntermediary(outputs, intermediaries)

    def backward(
        self, intermediary: GraphIntermediary, epsilon: np.ndarray, with_gradient: bool = True
    ) -> tuple[np.ndarray, Stack]:
        """Reverse pass over a training-mode forward pass.

        Returns (error signal w.r.t. the graph input, per-slot gradients).
        Nodes that no error signal reaches are skipped.
        """
        epsilons: list = [None] * self.buffer_size
        epsilons[self.output_index] = epsilon
        gradients = self.default_gradient()

        for node in reversed(self.nodes):
            node_epsilon = epsilons[node.output]
            if node_epsilon is None:
                continue
            node_intermediary = intermediary.intermediaries[node.output]
            for index, piece in zip(node.inputs, node.backprop(node_intermediary, node_epsilon)):
                # Sum instead of overwriting when several consumers share a producer
                if epsilons[index] is None:
                    epsilons[index] = piece
                else:
                    epsilons[index] = epsilons[index] + piece
            if with_gradient:
                gradients[node.output].add_assign(node.get_gradient(node_intermediary, node_epsilon))

        input_epsilon = epsilons[0]
        if input_epsilon is None:
            input_epsilon = self.input_shape.zeros()
        return input_epsilon, gradients

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        return self.backward(intermediary, epsilon, with_gradient=False)[0]

    def get_gradient(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> Stack:
        return self.backward(intermediary, epsilon)[1]

    def default_gradient(self) -> Stack:
        return Stack([DynGradient(EMPTY)] + [node.default_gradient() for node in self.nodes])

    def regularize_layer(self) -> Stack:
        return Stack([DynGradient(EMPTY)] + [node.regularize() for node in self.nodes])

    def apply_gradient(self, gradient: VectorSpace) -> None:
        if isinstance(gradient, Empty):
            return
        for node in self.nodes:
            node.apply_gradient(gradient[node.output])

    def prepare_layer(self, is_training: bool) -> None:
        for node in self.nodes:
            node.prepare(is_training)

    def __repr__(self) -> str:
        return f"Graph({self.nodes!r}, output={self.output_index})"


@dataclass
class GraphPartial(PartialLayer):
    """Unconstructed graph: nodes plus the names of the input and the output."""

    nodes: list[GraphNode]
    input: str
    output: str

    def get_index_map(self) -> dict[str, int]:
        """Map each name to its declaration slot (input -> 0, node i -> i + 1).

        Raises:
            InvalidName: if a name is declared twice.
        """
        index_map = {self.input: 0}
        for i, node in enumerate(self.nodes):
            if node.name in index_map:
                raise InvalidName(node.name)
            index_map[node.name] = i + 1
        return index_map

    def get_reverse_graph(self, index_map: dict[str, int]) -> dict[int, list[int]]:
        """Map each declaration slot to the indices of the nodes reading it.

        Raises:
            MissingNode: if a node reads an undeclared name.
        """
        reverse: dict[int, list[int]] = {slot: [] for slot in index_map.values()}
        for i, node in enumerate(self.nodes):
            for name in node.inputs:
                if name not in index_map:
                    raise MissingNode(name)
                consumers = reverse[index_map[name]]
                if i not in consumers:
                    consumers.append(i)
        return reverse

    def get_node_order(self, reverse_graph: dict[int, list[int]]) -> list[int]:
        """Topological order of the node indices, starting from the input.

        A node becomes ready once every one of its inputs is closed. Ready
        nodes are queued at the front and taken from the back.

        Raises:
            Cyclic: if some node never becomes ready.
        """
        index_map = self.get_index_map()
        order: list[int] = []
        closed: set[int] = set()
        ready: deque[int] = deque([0])

        while ready:
            slot = ready.pop()
            if slot in closed:
                continue
            closed.add(slot)
            if slot != 0:
                order.append(slot - 1)
            for consumer in reverse_graph[slot]:
                if consumer + 1 in closed:
                    continue
                if all(index_map[name] in closed for name in self.nodes[consumer].inputs):
                    ready.appendleft(consumer + 1)

        if len(order) != len(self.nodes):
            raise Cyclic()
        return order

    def construct(self, input_shape: Shape) -> Graph:
        """Resolve names, order nodes and construct their layers.

        Raises:
            GraphError: InvalidName, MissingNode, Cyclic, or LayerErr
                wrapping a layer's own construction error.
        """
        index_map = self.get_index_map()
        reverse_graph = self.get_reverse_graph(index_map)
        order = self.get_node_order(reverse_graph)

        # Naming the input as output is allowed: the graph is then the identity
        if self.output not in index_map:
            raise MissingNode(self.output)

        # Declaration slot -> execution slot
        slot_of = {0: 0}
        for position, i in enumerate(order):
            slot_of[i + 1] = position + 1

        shapes: list[Shape | None] = [None] * (len(self.nodes) + 1)
        shapes[0] = input_shape
        nodes: list[GraphLayerNode] = []
        for position, i in enumerate(order):
            node = self.nodes[i]
            input_indices = [slot_of[index_map[name]] for name in node.inputs]
            input_shapes = [shapes[index] for index in input_indices]
            try:
                constructed = node.construct_node(input_shapes, input_indices, position + 1)
            except ConstructionError as err:
                raise LayerErr(node.name, err) from err
            shapes[position + 1] = constructed.output_shape()
            nodes.append(constructed)
            logger.debug(
                "constructed graph node %r: %s -> %s",
                node.name, input_shapes, shapes[position + 1],
            )

        return Graph(nodes, input_shape, slot_of[index_map[self.output]], len(self.nodes) + 1)
