# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Derivable functions: activations, regularizers and losses.

Everything here is element-wise and works on numpy arrays as well as on
plain floats, so the same activation can shape a layer output or a
scalar goodness value.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


# ---------------------------------------------------------------------------
# Activations
# ---------------------------------------------------------------------------


class Activation(ABC):
    """Element-wise activation with its derivative.

    ``variance_hint`` and ``bias_hint`` steer weight initialization of the
    layers using this activation.
    """

    variance_hint: float = 1.0
    bias_hint: float = 0.0

    @abstractmethod
    def eval(self, x):
        ...

    @abstractmethod
    def derivate(self, x):
        ...

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self) -> int:
        return hash((type(self), tuple(sorted(vars(self).items()))))

    def __repr__(self) -> str:
        args = ", ".join(f"{v!r}" for v in vars(self).values())
        return f"{type(self).__name__}({args})"


class Relu(Activation):
    """Relu: y = max(x, 0)"""

    variance_hint = 2.0
    bias_hint = 0.1

    def eval(self, x):
        return np.maximum(x, 0.0)

    def derivate(self, x):
        return np.where(np.asarray(x) > 0.0, 1.0, 0.0)


class LeakyRelu(Activation):
    """LeakyRelu: y = x if x > 0 else a * x"""

    variance_hint = 2.0
    bias_hint = 0.1

    def __init__(self, a: float = 0.1):
        self.a = a

    def eval(self, x):
        x = np.asarray(x, dtype=np.float64)
        return np.where(x > 0.0, x, self.a * x)

    def derivate(self, x):
        return np.where(np.asarray(x) > 0.0, 1.0, self.a)


class Tanh(Activation):
    """Tanh: y = tanh(x), dy/dx = 1 - tanh(x)^2"""

    def eval(self, x):
        return np.tanh(x)

    def derivate(self, x):
        t = np.tanh(x)
        return 1.0 - t * t


class Sigmoid(Activation):
    """Sigmoid: y = 1 / (1 + exp(-x)), dy/dx = y * (1 - y)"""

    def eval(self, x):
        return 0.5 * (1.0 + np.tanh(0.5 * np.asarray(x, dtype=np.float64)))

    def derivate(self, x):
        y = self.eval(x)
        return y * (1.0 - y)


class Linear(Activation):
    """Identity activation."""

    def eval(self, x):
        return np.asarray(x, dtype=np.float64)

    def derivate(self, x):
        return np.ones_like(np.asarray(x, dtype=np.float64))


# ---------------------------------------------------------------------------
# Regularizers
# ---------------------------------------------------------------------------


class Regularizer(ABC):
    """Penalty on a parameter array.

    ``derivate`` returns the gradient of the penalty; the trainer scales it
    by the learning rate and subtracts it from the parameters.
    """

    @abstractmethod
    def eval(self, w: np.ndarray) -> float:
        ...

    @abstractmethod
    def derivate(self, w: np.ndarray) -> np.ndarray:
        ...

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self) -> int:
        return hash((type(self), tuple(sorted(vars(self).items()))))

    def __repr__(self) -> str:
        args = ", ".join(f"{v!r}" for v in vars(self).values())
        return f"{type(self).__name__}({args})"


class L0(Regularizer):
    """No regularization."""

    def eval(self, w: np.ndarray) -> float:
        return 0.0

    def derivate(self, w: np.ndarray) -> np.ndarray:
        return np.zeros_like(w, dtype=np.float64)


class L1(Regularizer):
    """L1: R(w) = k * sum(|w|), dR/dw = k * sign(w)"""

    def __init__(self, k: float):
        self.k = k

    def eval(self, w: np.ndarray) -> float:
        return float(self.k * np.sum(np.abs(w)))

    def derivate(self, w: np.ndarray) -> np.ndarray:
        return self.k * np.sign(w)


class L2(Regularizer):
    """L2: R(w) = k * sum(w^2), dR/dw = k * w

    The derivative omits the factor 2: ``k`` is the weight-decay coefficient.
    """

    def __init__(self, k: float):
        self.k = k

    def eval(self, w: np.ndarray) -> float:
        return float(self.k * np.sum(w * w))

    def derivate(self, w: np.ndarray) -> np.ndarray:
        return self.k * np.asarray(w, dtype=np.float64)


class ElasticNet(Regularizer):
    """Weighted sum of L1 and L2 penalties."""

    def __init__(self, l1: float, l2: float):
        self.l1 = l1
        self.l2 = l2

    def eval(self, w: np.ndarray) -> float:
        return L1(self.l1).eval(w) + L2(self.l2).eval(w)

    def derivate(self, w: np.ndarray) -> np.ndarray:
        return L1(self.l1).derivate(w) + L2(self.l2).derivate(w)


# ---------------------------------------------------------------------------
# Losses
# ---------------------------------------------------------------------------


class Loss(ABC):
    """Loss between a target and the network output.

    ``nabla`` is the derivative of the loss w.r.t. the output: the error
    signal that seeds backpropagation.
    """

    @abstractmethod
    def eval(self, target: np.ndarray, actual: np.ndarray) -> float:
        ...

    @abstractmethod
    def nabla(self, target: np.ndarray, actual: np.ndarray) -> np.ndarray:
        ...


class Euclidean(Loss):
    """Euclidean: L = 0.5 * sum((t - a)^2), dL/da = a - t"""

    def eval(self, target: np.ndarray, actual: np.ndarray) -> float:
        diff = np.asarray(target, dtype=np.float64) - actual
        return float(0.5 * np.sum(diff * diff))

    def nabla(self, target: np.ndarray, actual: np.ndarray) -> np.ndarray:
        return np.asarray(actual, dtype=np.float64) - target


class CrossEntropy(Loss):
    """CrossEntropy: L = -sum(t * ln(a)), dL/da = -t / a

    ``a`` is clamped from below in the log and the derivative magnitude is
    capped, so saturated outputs cannot produce inf/NaN.
    """

    LOG_MIN = 1e-5
    MAX_DERIVATIVE = 100.0

    def eval(self, target: np.ndarray, actual: np.ndarray) -> float:
        return float(-np.sum(target * np.log(np.maximum(actual, self.LOG_MIN))))

    def nabla(self, target: np.ndarray, actual: np.ndarray) -> np.ndarray:
        actual = np.asarray(actual, dtype=np.float64)
        target = np.asarray(target, dtype=np.float64)
        ratio = np.divide(
            target, actual,
            out=np.full_like(actual, self.MAX_DERIVATIVE),
            where=actual != 0.0,
        )
        ratio = np.where((actual == 0.0) & (target == 0.0), 0.0, ratio)
        return -np.minimum(ratio, self.MAX_DERIVATIVE)
