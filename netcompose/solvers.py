# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Gradient solvers: turn (network, input, target) into a gradient.

  - Backprop: one global loss, error signal propagated end to end.
  - ForwardForward: every layer optimizes its own "goodness", with no
    error signal crossing layer boundaries.

Both return a gradient of the loss, so trainers subtract it (scaled by
the learning rate) from the parameters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from .algebra import EMPTY, DynGradient, VectorSpace
from .derivable import Activation, Loss
from .graph import Graph
from .layers import Layer
from .network import NetworkNode


class GradientSolver(ABC):
    """Strategy computing a network gradient and a comparable score."""

    @abstractmethod
    def get_gradient(self, network: Layer, x: np.ndarray, target) -> VectorSpace:
        ...

    @abstractmethod
    def score(self, network: Layer, x: np.ndarray, target) -> float:
        """Scalar loss for logging."""
        ...


class Backprop(GradientSolver):
    """Backpropagation.

    epsilon_out = dLoss/dy at the network output, then every node maps the
    error signal back to its input while collecting its parameter gradient.
    """

    def __init__(self, loss: Loss):
        self.loss = loss

    def get_gradient(self, network: Layer, x: np.ndarray, target: np.ndarray) -> VectorSpace:
        output, intermediary = network.eval_training(x)
        epsilon = self.loss.nabla(target, output)
        return network.get_gradient(x, intermediary, epsilon)

    def score(self, network: Layer, x: np.ndarray, target: np.ndarray) -> float:
        return self.loss.eval(target, network.eval(x))


def goodness(output: np.ndarray) -> float:
    """Goodness: G(y) = sum(y^2)"""
    return float(np.sum(np.square(output)))


class ForwardForward(GradientSolver):
    """Forward-forward learning.

    The target is a bool: True for a genuine example (raise goodness above
    the threshold), False for a negative one (push it below). Per layer,
    with G = sum(y^2) and t the threshold:

      maximize:  L = -act(G - t)   dL/dy = -2y * act'(G - t)
      minimize:  L = -act(t - G)   dL/dy =  2y * act'(t - G)

    dL/dy is fed to the layer as its error signal; nothing flows back to
    earlier layers.
    """

    def __init__(self, activation: Activation, threshold: float):
        self.activation = activation
        self.threshold = threshold

    def derivate_goodness(self, output: np.ndarray, maximize: bool) -> np.ndarray:
        g = goodness(output)
        shifted = g - self.threshold if maximize else self.threshold - g
        derivative = 2.0 * np.asarray(output, dtype=np.float64) * float(self.activation.derivate(shifted))
        return -derivative if maximize else derivative

    def get_gradient(self, network: Layer, x: np.ndarray, target: bool) -> VectorSpace:
        return self._local_gradient(network, x, bool(target))[1]

    def _local_gradient(self, layer: Layer, x, maximize: bool) -> tuple[np.ndarray, VectorSpace]:
        """(output, gradient) of ``layer`` trained on its own goodness.

        Chains and graphs, wherever they sit, are trained layer by layer.
        """
        if isinstance(layer, NetworkNode):
            return layer.eval(x), self._chain_gradient(layer, x, maximize)
        if isinstance(layer, Graph):
            return layer.eval(x), self._graph_gradient(layer, x, maximize)
        output, intermediary = layer.eval_training(x)
        return output, layer.get_gradient(x, intermediary, self.derivate_goodness(output, maximize))

    def _chain_gradient(self, node: NetworkNode, x, maximize: bool) -> VectorSpace:
        layer = node.get_layer()
        layer_input = node.map_input(x)
        if layer is None:
            layer_output, layer_gradient = layer_input, EMPTY
        else:
            layer_output, layer_gradient = self._local_gradient(layer, layer_input, maximize)
        output = node.map_output(x, layer_output)

        child = node.get_next()
        rec_gradient = EMPTY if child is None else self._chain_gradient(child, output, maximize)
        return node.merge_gradient(rec_gradient, layer_gradient)

    def _graph_gradient(self, graph: Graph, x: np.ndarray, maximize: bool) -> VectorSpace:
        outputs: list = [None] * graph.buffer_size
        outputs[0] = x
        gradients = graph.default_gradient()
        for node in graph.nodes:
            combined = node.axis.combine(graph.gather(outputs, node))
            output, gradient = self._local_gradient(node.layer, combined, maximize)
            outputs[node.output] = output
            gradients[node.output].add_assign(DynGradient(gradient))
        return gradients

    def score(self, network: Layer, x: np.ndarray, target: bool) -> float:
        """Goodness of the network output mapped to a loss-like value.

        g = act(G - t), rescaled to (g - a0) / (1 - a0) with a0 = act(-t)
        when a0 < 0.99, so that a zero output scores 0. Genuine examples
        score 1 - g, negative ones g.
        """
        output = network.eval(x)
        g = float(self.activation.eval(goodness(output) - self.threshold))
        at_zero = float(self.activation.eval(-self.threshold))
        if at_zero < 0.99:
            g = (g - at_zero) / (1.0 - at_zero)
        return 1.0 - g if target else g
