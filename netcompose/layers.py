# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Layer contract and the concrete layers built on it.

Two halves:
  - PartialLayer: an immutable hyperparameter description that does not
    know its input shape yet. ``construct(input_shape)`` turns it into a
    Layer or raises a ConstructionError.
  - Layer: a constructed, shape-bound transform that owns its parameters.

Provided layers: Dense, Dropout, Softmax, Normalize, Isolate, Reshape,
OneHot, Lock.
Every derivative is written out by hand; the ``intermediary`` returned by
``eval_training`` carries whatever the backward pass needs.

Builder functions (dense, dropout, ...) return partial layers:

  dense(16).activation(Relu()).regularization(L2(1e-3))
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace

import numpy as np

from .algebra import EMPTY, Empty, Params, VectorSpace
from .derivable import Activation, LeakyRelu, L0, Regularizer
from .errors import IncompatibleShape, OutOfBound, OutOfOrder
from .shape import Shape, Vector

logger = logging.getLogger(__name__)


class Layer(ABC):
    """Base class for constructed layers.

    Parameterless layers only need ``output_shape``, ``eval_training`` and
    ``backprop_layer``; the gradient methods default to the empty gradient.
    """

    @abstractmethod
    def output_shape(self) -> Shape:
        """Shape of the value produced by ``eval``."""
        ...

    def eval(self, x: np.ndarray) -> np.ndarray:
        """Inference forward pass."""
        return self.eval_training(x)[0]

    @abstractmethod
    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, object]:
        """Forward pass returning (output, intermediary) for the backward pass."""
        ...

    @abstractmethod
    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        """Error signal w.r.t. the input, given the error signal w.r.t. the output."""
        ...

    def get_gradient(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> VectorSpace:
        """Parameter gradient, given the error signal w.r.t. the output."""
        return self.default_gradient()

    def default_gradient(self) -> VectorSpace:
        """Zero gradient of this layer."""
        return EMPTY

    def apply_gradient(self, gradient: VectorSpace) -> None:
        """params += gradient"""

    def regularize_layer(self) -> VectorSpace:
        """Gradient of the regularization penalty."""
        return self.default_gradient()

    def prepare_layer(self, is_training: bool) -> None:
        """Hook called before each training iteration and before inference."""


class PartialLayer(ABC):
    """Layer description waiting for its input shape."""

    @abstractmethod
    def construct(self, input_shape: Shape) -> Layer:
        """Build the concrete layer, or raise a ConstructionError."""
        ...


def construct_layer(item: Layer | PartialLayer, input_shape: Shape) -> Layer:
    """Construct a partial layer; an already constructed layer is used as is."""
    if isinstance(item, PartialLayer):
        return item.construct(input_shape)
    if isinstance(item, Layer):
        return item
    raise TypeError(f"{type(item).__name__} is neither a layer nor a partial layer")


def _require_vector(shape: Shape) -> Vector:
    if not isinstance(shape, Vector):
        raise IncompatibleShape("Vector", shape)
    return shape


# ---------------------------------------------------------------------------
# Dense
# ---------------------------------------------------------------------------


class DenseLayer(Layer):
    """Fully connected layer.

    Dense: y = act(W @ x + b)

    Backward, with z = W @ x + b and delta = eps * act'(z):
      dW = outer(delta, x)
      db = delta
      eps_in = W^T @ delta
    """

    def __init__(
        self,
        weights: np.ndarray,
        bias: np.ndarray,
        activation: Activation,
        regularization: Regularizer | None = None,
    ):
        self.weights = np.array(weights, dtype=np.float64)
        self.bias = np.array(bias, dtype=np.float64)
        if self.weights.ndim != 2 or self.bias.shape != (self.weights.shape[0],):
            raise ValueError(
                f"bias of shape {self.bias.shape} does not match weights of shape {self.weights.shape}"
            )
        self.activation = activation
        self.regularization = regularization if regularization is not None else L0()

    @property
    def input_shape(self) -> Vector:
        return Vector(self.weights.shape[1])

    def output_shape(self) -> Vector:
        return Vector(self.weights.shape[0])

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        # Pre-activation is the intermediary: act'(z) is needed for backward
        z = self.weights @ x + self.bias
        return self.activation.eval(z), z

    def _delta(self, z: np.ndarray, epsilon: np.ndarray) -> np.ndarray:
        return epsilon * self.activation.derivate(z)

    def get_gradient(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> Params:
        delta = self._delta(intermediary, epsilon)
        return Params(np.outer(delta, x), delta)

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        return self.weights.T @ self._delta(intermediary, epsilon)

    def default_gradient(self) -> Params:
        return Params(np.zeros_like(self.weights), np.zeros_like(self.bias))

    def apply_gradient(self, gradient: VectorSpace) -> None:
        if isinstance(gradient, Empty):
            return
        self.weights += gradient[0]
        self.bias += gradient[1]

    def regularize_layer(self) -> Params:
        # Bias is never regularized
        return Params(self.regularization.derivate(self.weights), np.zeros_like(self.bias))


@dataclass(frozen=True)
class DensePartial(PartialLayer):
    """Dense layer description: output width, activation and regularizer.

    Initialization (Glorot-style, scaled by the activation's hint):
      std = sqrt(variance_hint * 2 / (fan_in + fan_out))
      W ~ N(0, std^2),  b = bias_hint
    """

    units: int
    act: Activation = field(default_factory=lambda: LeakyRelu(0.1))
    reg: Regularizer = field(default_factory=L0)
    rng: np.random.Generator | None = field(default=None, compare=False)

    def activation(self, act: Activation) -> DensePartial:
        return replace(self, act=act)

    def regularization(self, reg: Regularizer) -> DensePartial:
        return replace(self, reg=reg)

    def with_rng(self, rng: np.random.Generator) -> DensePartial:
        return replace(self, rng=rng)

    def construct(self, input_shape: Shape) -> DenseLayer:
        fan_in = _require_vector(input_shape).length
        fan_out = self.units
        std = math.sqrt(self.act.variance_hint * 2.0 / (fan_in + fan_out))
        if self.rng is None:
            weights = np.random.randn(fan_out, fan_in) * std
        else:
            weights = self.rng.standard_normal((fan_out, fan_in)) * std
        bias = np.full(fan_out, self.act.bias_hint)
        return DenseLayer(weights, bias, self.act, self.reg)


# ---------------------------------------------------------------------------
# Dropout
# ---------------------------------------------------------------------------


class DropoutLayer(Layer):
    """Inverted dropout.

    Training: y = x * mask * (n / kept), mask resampled by ``prepare_layer``.
    Inference: y = x.

    The mask is rejection-sampled until at least one unit survives, so the
    multiplier n / kept is always finite.
    """

    def __init__(self, shape: Shape, probability: float, rng: np.random.Generator | None = None):
        self.shape = shape
        self.probability = probability
        self.rng = rng if rng is not None else np.random.default_rng()
        self.mask: np.ndarray | None = None
        self.multiplier = 1.0

    def output_shape(self) -> Shape:
        return self.shape

    def prepare_layer(self, is_training: bool) -> None:
        if not is_training:
            self.mask = None
            self.multiplier = 1.0
            return

        attempts = 0
        while True:
            attempts += 1
            mask = self.rng.random(self.shape.dims()) >= self.probability
            kept = int(np.count_nonzero(mask))
            if kept > 0:
                break
        if attempts > 1:
            logger.debug("dropout mask resampled %d times", attempts)
        self.mask = mask
        self.multiplier = self.shape.size() / kept

    def _apply_mask(self, x: np.ndarray) -> np.ndarray:
        if self.mask is None:
            return x
        return np.where(self.mask, x * self.multiplier, 0.0)

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, None]:
        return self._apply_mask(x), None

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        return self._apply_mask(epsilon)


@dataclass(frozen=True)
class DropoutPartial(PartialLayer):
    probability: float
    rng: np.random.Generator | None = field(default=None, compare=False)

    def __post_init__(self):
        if not 0.0 <= self.probability < 1.0:
            raise ValueError(f"dropout probability must be in [0, 1), got {self.probability}")

    def construct(self, input_shape: Shape) -> DropoutLayer:
        return DropoutLayer(input_shape, self.probability, self.rng)


# ---------------------------------------------------------------------------
# Softmax
# ---------------------------------------------------------------------------


class SoftmaxLayer(Layer):
    """Softmax: y_i = exp(x_i) / sum_j exp(x_j)

    Backward (Jacobian-vector product, J = diag(y) - y y^T):
      eps_in = eps * y - y * sum(eps * y)
    """

    def __init__(self, shape: Vector):
        self.shape = shape

    def output_shape(self) -> Vector:
        return self.shape

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        # Numerically stable: subtract max before exp
        e = np.exp(x - np.max(x))
        y = e / np.sum(e)
        return y, y

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        y = intermediary
        weighted = epsilon * y
        return weighted - y * np.sum(weighted)


@dataclass(frozen=True)
class SoftmaxPartial(PartialLayer):
    def construct(self, input_shape: Shape) -> SoftmaxLayer:
        return SoftmaxLayer(_require_vector(input_shape))


# ---------------------------------------------------------------------------
# Normalize
# ---------------------------------------------------------------------------


class NormalizeLayer(Layer):
    """Standardize a vector to zero mean and unit variance.

    Normalize: c = x - mean(x),  s = sqrt(mean(c^2) + eps),  y = c / s

    Jacobian (symmetric):
      dy_i/dx_k = (delta_ik - 1/n) / s - c_i c_k / (n s^3)
    so eps_in = eps / s - sum(eps) / (n s) - c * (c . eps) / (n s^3).
    """

    def __init__(self, shape: Vector, eps: float = 1e-8):
        self.shape = shape
        self.eps = eps

    def output_shape(self) -> Vector:
        return self.shape

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, tuple[np.ndarray, float]]:
        centered = x - np.mean(x)
        stddev = math.sqrt(float(np.mean(centered * centered)) + self.eps)
        return centered / stddev, (centered, stddev)

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        centered, stddev = intermediary
        n = centered.shape[0]
        return (
            epsilon / stddev
            - np.sum(epsilon) / (n * stddev)
            - centered * float(centered @ epsilon) / (n * stddev ** 3)
        )


@dataclass(frozen=True)
class NormalizePartial(PartialLayer):
    eps: float = 1e-8

    def construct(self, input_shape: Shape) -> NormalizeLayer:
        return NormalizeLayer(_require_vector(input_shape), self.eps)


# ---------------------------------------------------------------------------
# Isolate
# ---------------------------------------------------------------------------


class IsolateLayer(Layer):
    """Select the sub-range [start, end) of the input along every axis.

    Backward scatters the error signal back into a zero array of the input
    shape.
    """

    def __init__(self, input_shape: Shape, start: Shape, end: Shape):
        self.input_shape = input_shape
        self.start = start
        self.end = end
        self._window = tuple(slice(s, e) for s, e in zip(start.dims(), end.dims()))

    def output_shape(self) -> Shape:
        return self.end.sub(self.start)

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, None]:
        return x[self._window].copy(), None

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        eps_in = self.input_shape.zeros()
        eps_in[self._window] = epsilon
        return eps_in


@dataclass(frozen=True)
class IsolatePartial(PartialLayer):
    start: Shape
    end: Shape

    def construct(self, input_shape: Shape) -> IsolateLayer:
        if not self.start.is_compatible(self.end):
            raise IncompatibleShape(self.start, self.end)
        if not self.start.is_compatible(input_shape):
            raise IncompatibleShape(self.start, input_shape)
        for lo, hi in zip(self.start.dims(), self.end.dims()):
            if lo >= hi:
                raise OutOfOrder(self.start, self.end)
        for lo, hi, bound in zip(self.start.dims(), self.end.dims(), input_shape.dims()):
            if lo < 0 or hi > bound:
                raise OutOfBound(input_shape, self.end)
        return IsolateLayer(input_shape, self.start, self.end)


# ---------------------------------------------------------------------------
# Reshape
# ---------------------------------------------------------------------------


class ReshapeLayer(Layer):
    """Reinterpret the input with another shape of the same size (row-major).

    Flattening a Matrix into a Vector is Reshape(Vector(rows * cols)).
    Backward reshapes the error signal back to the input shape.
    """

    def __init__(self, input_shape: Shape, shape: Shape):
        self.input_shape = input_shape
        self.shape = shape

    def output_shape(self) -> Shape:
        return self.shape

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, None]:
        return np.reshape(x, self.shape.dims()), None

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        return np.reshape(epsilon, self.input_shape.dims())


@dataclass(frozen=True)
class ReshapePartial(PartialLayer):
    shape: Shape

    def construct(self, input_shape: Shape) -> ReshapeLayer:
        if input_shape.size() != self.shape.size():
            raise IncompatibleShape(self.shape, input_shape)
        return ReshapeLayer(input_shape, self.shape)


# ---------------------------------------------------------------------------
# One-hot
# ---------------------------------------------------------------------------


class OneHotLayer(Layer):
    """Spread each input value over ``categories`` slots.

    For x_i, with lo = clamp(floor(x_i), 0, categories - 2) and
    a = clamp(x_i - lo, 0, 1):
      y[i * categories + lo]     = 1 - a
      y[i * categories + lo + 1] = a

    Integer inputs give plain one-hot vectors; fractional ones interpolate
    between neighbouring categories. Outside the clamped range the output
    is constant, so the error signal there is zero.
    """

    def __init__(self, shape: Vector, categories: int):
        self.shape = shape
        self.categories = categories

    def output_shape(self) -> Vector:
        return Vector(self.shape.length * self.categories)

    def _split(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        low = np.clip(np.floor(x), 0, self.categories - 2).astype(np.int64)
        return low, x - low

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, tuple[np.ndarray, np.ndarray]]:
        low, offset = self._split(x)
        amount = np.clip(offset, 0.0, 1.0)
        y = np.zeros((x.shape[0], self.categories))
        rows = np.arange(x.shape[0])
        y[rows, low] = 1.0 - amount
        y[rows, low + 1] = amount
        return y.reshape(-1), (low, offset)

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        low, offset = intermediary
        eps = epsilon.reshape(-1, self.categories)
        rows = np.arange(eps.shape[0])
        inside = (offset >= 0.0) & (offset < 1.0)
        return np.where(inside, eps[rows, low + 1] - eps[rows, low], 0.0)


@dataclass(frozen=True)
class OneHotPartial(PartialLayer):
    categories: int

    def construct(self, input_shape: Shape) -> OneHotLayer:
        return OneHotLayer(_require_vector(input_shape), self.categories)


# ---------------------------------------------------------------------------
# Lock
# ---------------------------------------------------------------------------


class LockLayer(Layer):
    """Freeze a layer: it still evaluates and propagates error signals,
    but exposes an empty gradient and ignores ``apply_gradient``."""

    def __init__(self, layer: Layer):
        self.layer = layer

    def output_shape(self) -> Shape:
        return self.layer.output_shape()

    def eval(self, x: np.ndarray) -> np.ndarray:
        return self.layer.eval(x)

    def eval_training(self, x: np.ndarray) -> tuple[np.ndarray, object]:
        return self.layer.eval_training(x)

    def backprop_layer(self, x: np.ndarray, intermediary, epsilon: np.ndarray) -> np.ndarray:
        return self.layer.backprop_layer(x, intermediary, epsilon)

    def prepare_layer(self, is_training: bool) -> None:
        self.layer.prepare_layer(is_training)

    def unlock(self) -> Layer:
        return self.layer


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def dense(units: int) -> DensePartial:
    """Dense layer with ``units`` outputs (LeakyRelu(0.1), no regularization)."""
    return DensePartial(units)


def dropout(probability: float, rng: np.random.Generator | None = None) -> DropoutPartial:
    return DropoutPartial(probability, rng)


def softmax() -> SoftmaxPartial:
    return SoftmaxPartial()


def normalize(eps: float = 1e-8) -> NormalizePartial:
    return NormalizePartial(eps)


def isolate(start: Shape | int, end: Shape | int) -> IsolatePartial:
    """Sub-range layer; plain ints select a vector range."""
    if isinstance(start, int):
        start = Vector(start)
    if isinstance(end, int):
        end = Vector(end)
    return IsolatePartial(start, end)


def reshape(shape: Shape) -> ReshapePartial:
    """Reshape layer; the input must hold exactly ``shape.size()`` values."""
    return ReshapePartial(shape)


def one_hot(categories: int) -> OneHotPartial:
    """Soft one-hot encoding of a vector over ``categories`` slots each.

    Raises:
        ValueError: if there are fewer than two categories.
    """
    if categories < 2:
        raise ValueError(f"one_hot needs at least 2 categories, got {categories}")
    return OneHotPartial(categories)
