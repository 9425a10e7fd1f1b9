# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Tests for shapes, derivables and concrete layers."""

import numpy as np
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from netcompose.algebra import EMPTY, Params
from netcompose.derivable import (
    CrossEntropy,
    ElasticNet,
    Euclidean,
    L0,
    L1,
    L2,
    LeakyRelu,
    Linear,
    Relu,
    Sigmoid,
    Tanh,
)
from netcompose.errors import IncompatibleShape, OutOfBound, OutOfOrder
from netcompose.layers import (
    DenseLayer,
    DropoutLayer,
    LockLayer,
    dense,
    dropout,
    isolate,
    normalize,
    one_hot,
    reshape,
    softmax,
)
from netcompose.sequential import sequential
from netcompose.shape import Matrix, Tensor, Vector, shape_of

np.random.seed(42)


def numeric_gradient(f, x, h=1e-6):
    """Central finite differences of a scalar function."""
    grad = np.zeros_like(x)
    for index in np.ndindex(x.shape):
        plus, minus = x.copy(), x.copy()
        plus[index] += h
        minus[index] -= h
        grad[index] = (f(plus) - f(minus)) / (2 * h)
    return grad


# ---------------------------------------------------------------------------
# Shape
# ---------------------------------------------------------------------------


class TestShape:
    def test_size(self):
        assert Vector(3).size() == 3
        assert Matrix(2, 3).size() == 6
        assert Tensor(2, 3, 4).size() == 24

    def test_structural_equality(self):
        assert Vector(3) == Vector(3)
        assert Vector(3) != Vector(4)
        assert Vector(3) != Matrix(3, 1)

    def test_compatibility_and_sub(self):
        assert Matrix(4, 4).is_compatible(Matrix(1, 2))
        assert not Matrix(4, 4).is_compatible(Vector(4))
        assert Matrix(4, 5).sub(Matrix(1, 2)) == Matrix(3, 3)
        assert Vector(4).sub(Matrix(1, 1)) is None

    def test_shape_of(self):
        assert shape_of(np.zeros(5)) == Vector(5)
        assert shape_of(np.zeros((2, 3))) == Matrix(2, 3)
        assert shape_of(np.zeros((2, 3, 4))) == Tensor(2, 3, 4)
        with pytest.raises(ValueError):
            shape_of(np.zeros((1, 1, 1, 1)))


# ---------------------------------------------------------------------------
# Derivables
# ---------------------------------------------------------------------------


class TestActivations:
    @pytest.mark.parametrize("act", [Tanh(), Sigmoid(), Linear(), LeakyRelu(0.1), Relu()])
    def test_derivative_matches_finite_difference(self, act):
        # Stay away from the kink at 0
        x = np.array([-1.3, -0.4, 0.35, 1.7])
        numeric = numeric_gradient(lambda v: float(np.sum(act.eval(v))), x)
        np.testing.assert_allclose(act.derivate(x), numeric, rtol=1e-5, atol=1e-8)

    def test_hints(self):
        assert Relu().variance_hint == 2.0
        assert Relu().bias_hint == 0.1
        assert Tanh().variance_hint == 1.0
        assert Tanh().bias_hint == 0.0

    def test_scalar_input(self):
        assert float(Relu().eval(-2.0)) == 0.0
        assert float(Relu().derivate(3.0)) == 1.0

    def test_equality(self):
        assert LeakyRelu(0.1) == LeakyRelu(0.1)
        assert LeakyRelu(0.1) != LeakyRelu(0.2)
        assert Relu() != Tanh()


class TestRegularizers:
    def test_l0(self):
        w = np.random.randn(3, 3)
        assert L0().eval(w) == 0.0
        np.testing.assert_allclose(L0().derivate(w), np.zeros((3, 3)))

    def test_l1(self):
        w = np.array([-2.0, 0.5, 0.0])
        assert L1(0.1).eval(w) == pytest.approx(0.25)
        np.testing.assert_allclose(L1(0.1).derivate(w), [-0.1, 0.1, 0.0])

    def test_l2(self):
        w = np.array([-2.0, 0.5])
        assert L2(0.1).eval(w) == pytest.approx(0.425)
        np.testing.assert_allclose(L2(0.1).derivate(w), [-0.2, 0.05])

    def test_elastic(self):
        w = np.array([-2.0, 0.5])
        reg = ElasticNet(0.1, 0.2)
        np.testing.assert_allclose(reg.derivate(w), L1(0.1).derivate(w) + L2(0.2).derivate(w))


class TestLosses:
    def test_euclidean(self):
        target = np.array([1.0, 0.0])
        actual = np.array([0.5, 0.5])
        assert Euclidean().eval(target, actual) == pytest.approx(0.25)
        np.testing.assert_allclose(Euclidean().nabla(target, actual), [-0.5, 0.5])

    def test_euclidean_nabla_matches_finite_difference(self):
        target = np.random.randn(4)
        actual = np.random.randn(4)
        numeric = numeric_gradient(lambda a: Euclidean().eval(target, a), actual)
        np.testing.assert_allclose(Euclidean().nabla(target, actual), numeric, rtol=1e-6)

    def test_cross_entropy(self):
        target = np.array([0.0, 1.0])
        actual = np.array([0.3, 0.7])
        assert CrossEntropy().eval(target, actual) == pytest.approx(-np.log(0.7))
        np.testing.assert_allclose(CrossEntropy().nabla(target, actual), [0.0, -1.0 / 0.7])

    def test_cross_entropy_is_clamped(self):
        target = np.array([1.0, 0.0])
        actual = np.array([0.0, 0.0])
        assert np.isfinite(CrossEntropy().eval(target, actual))
        np.testing.assert_allclose(CrossEntropy().nabla(target, actual), [-100.0, 0.0])
        np.testing.assert_allclose(
            CrossEntropy().nabla(np.array([1.0]), np.array([0.001])), [-100.0]
        )


# ---------------------------------------------------------------------------
# Dense
# ---------------------------------------------------------------------------


class TestDense:
    def test_construct(self):
        layer = dense(4).activation(Relu()).construct(Vector(3))
        assert layer.output_shape() == Vector(4)
        assert layer.input_shape == Vector(3)
        assert layer.weights.shape == (4, 3)
        np.testing.assert_allclose(layer.bias, np.full(4, 0.1))

    def test_construct_rejects_non_vector(self):
        with pytest.raises(IncompatibleShape) as info:
            dense(4).construct(Matrix(2, 2))
        assert info.value.got == Matrix(2, 2)

    def test_builder_is_immutable(self):
        base = dense(4)
        configured = base.activation(Tanh()).regularization(L2(0.01))
        assert base.act == LeakyRelu(0.1)
        assert base.reg == L0()
        assert configured.act == Tanh()
        assert configured.reg == L2(0.01)
        assert configured.units == 4

    def test_seeded_construction_is_reproducible(self):
        a = dense(5).with_rng(np.random.default_rng(7)).construct(Vector(3))
        b = dense(5).with_rng(np.random.default_rng(7)).construct(Vector(3))
        np.testing.assert_allclose(a.weights, b.weights)

    def test_eval(self):
        layer = DenseLayer(np.array([[1.0, 2.0], [-1.0, 0.5]]), np.array([0.5, -3.0]), Relu())
        np.testing.assert_allclose(layer.eval(np.array([1.0, 1.0])), [3.5, 0.0])

    def test_gradients_match_finite_difference(self):
        layer = DenseLayer(np.random.randn(3, 4), np.random.randn(3), Tanh())
        x = np.random.randn(4)
        epsilon = np.random.randn(3)
        _, z = layer.eval_training(x)

        def loss_of_weights(w):
            return float(epsilon @ DenseLayer(w, layer.bias, Tanh()).eval(x))

        def loss_of_bias(b):
            return float(epsilon @ DenseLayer(layer.weights, b, Tanh()).eval(x))

        def loss_of_input(v):
            return float(epsilon @ layer.eval(v))

        gradient = layer.get_gradient(x, z, epsilon)
        np.testing.assert_allclose(gradient[0], numeric_gradient(loss_of_weights, layer.weights), rtol=1e-5, atol=1e-8)
        np.testing.assert_allclose(gradient[1], numeric_gradient(loss_of_bias, layer.bias), rtol=1e-5, atol=1e-8)
        np.testing.assert_allclose(
            layer.backprop_layer(x, z, epsilon), numeric_gradient(loss_of_input, x), rtol=1e-5, atol=1e-8
        )

    def test_apply_gradient(self):
        layer = DenseLayer(np.zeros((2, 2)), np.zeros(2), Linear())
        layer.apply_gradient(Params(np.ones((2, 2)), np.full(2, 2.0)))
        np.testing.assert_allclose(layer.weights, np.ones((2, 2)))
        np.testing.assert_allclose(layer.bias, np.full(2, 2.0))

    def test_regularize_skips_bias(self):
        w = np.random.randn(2, 3)
        layer = DenseLayer(w, np.ones(2), Linear(), L2(0.5))
        reg = layer.regularize_layer()
        np.testing.assert_allclose(reg[0], 0.5 * w)
        np.testing.assert_allclose(reg[1], np.zeros(2))

    def test_mismatched_bias(self):
        with pytest.raises(ValueError):
            DenseLayer(np.zeros((2, 3)), np.zeros(3), Linear())


# ---------------------------------------------------------------------------
# Dropout
# ---------------------------------------------------------------------------


class TestDropout:
    def test_never_degenerates(self):
        layer = dropout(0.9, np.random.default_rng(0)).construct(Vector(3))
        for _ in range(500):
            layer.prepare_layer(True)
            kept = int(np.count_nonzero(layer.mask))
            assert kept > 0
            assert np.isfinite(layer.multiplier)
            assert layer.multiplier == pytest.approx(3 / kept)

    def test_training_scales_kept_units(self):
        layer = DropoutLayer(Vector(4), 0.5, np.random.default_rng(1))
        layer.prepare_layer(True)
        x = np.arange(1.0, 5.0)
        y = layer.eval(x)
        np.testing.assert_allclose(y[layer.mask], x[layer.mask] * layer.multiplier)
        np.testing.assert_allclose(y[~layer.mask], 0.0)
        # Backward uses the same mask
        eps = layer.backprop_layer(x, None, np.ones(4))
        np.testing.assert_allclose(eps, np.where(layer.mask, layer.multiplier, 0.0))

    def test_inference_is_identity(self):
        layer = dropout(0.5).construct(Vector(4))
        layer.prepare_layer(True)
        layer.prepare_layer(False)
        assert layer.mask is None
        x = np.random.randn(4)
        np.testing.assert_allclose(layer.eval(x), x)

    def test_works_on_matrices(self):
        layer = dropout(0.25, np.random.default_rng(3)).construct(Matrix(2, 3))
        layer.prepare_layer(True)
        assert layer.mask.shape == (2, 3)
        assert layer.output_shape() == Matrix(2, 3)

    def test_invalid_probability(self):
        with pytest.raises(ValueError):
            dropout(1.0)
        with pytest.raises(ValueError):
            dropout(-0.1)


# ---------------------------------------------------------------------------
# Softmax / Normalize
# ---------------------------------------------------------------------------


class TestSoftmax:
    def test_eval(self):
        layer = softmax().construct(Vector(4))
        y = layer.eval(np.array([1.0, 2.0, 3.0, 1000.0]))
        assert np.all(np.isfinite(y))
        assert np.sum(y) == pytest.approx(1.0)

    def test_backprop_matches_finite_difference(self):
        layer = softmax().construct(Vector(5))
        x = np.random.randn(5)
        epsilon = np.random.randn(5)
        _, y = layer.eval_training(x)
        numeric = numeric_gradient(lambda v: float(epsilon @ layer.eval(v)), x)
        np.testing.assert_allclose(layer.backprop_layer(x, y, epsilon), numeric, rtol=1e-5, atol=1e-8)

    def test_rejects_matrix(self):
        with pytest.raises(IncompatibleShape):
            softmax().construct(Matrix(2, 2))


class TestNormalize:
    def test_eval(self):
        layer = normalize().construct(Vector(6))
        y = layer.eval(np.random.randn(6) * 5.0 + 3.0)
        assert np.mean(y) == pytest.approx(0.0, abs=1e-12)
        assert np.std(y) == pytest.approx(1.0, rel=1e-6)

    def test_backprop_matches_finite_difference(self):
        layer = normalize().construct(Vector(5))
        x = np.random.randn(5)
        epsilon = np.random.randn(5)
        _, intermediary = layer.eval_training(x)
        numeric = numeric_gradient(lambda v: float(epsilon @ layer.eval(v)), x)
        np.testing.assert_allclose(
            layer.backprop_layer(x, intermediary, epsilon), numeric, rtol=1e-5, atol=1e-7
        )

    def test_constant_input_is_finite(self):
        layer = normalize().construct(Vector(3))
        assert np.all(np.isfinite(layer.eval(np.ones(3))))


# ---------------------------------------------------------------------------
# Reshape / One-hot
# ---------------------------------------------------------------------------


class TestReshape:
    def test_flatten_is_row_major(self):
        layer = reshape(Vector(6)).construct(Matrix(2, 3))
        assert layer.output_shape() == Vector(6)
        x = np.arange(6.0).reshape(2, 3)
        np.testing.assert_allclose(layer.eval(x), np.arange(6.0))
        eps = layer.backprop_layer(x, None, np.arange(6.0) * 2.0)
        np.testing.assert_allclose(eps, x * 2.0)

    def test_size_mismatch(self):
        with pytest.raises(IncompatibleShape) as info:
            reshape(Vector(5)).construct(Matrix(2, 3))
        assert info.value.expected == Vector(5)
        assert info.value.got == Matrix(2, 3)

    def test_matrix_chain_matches_finite_difference(self):
        net = sequential(reshape(Vector(6)), dense(2).activation(Tanh())).construct(Matrix(2, 3))
        assert net.output_shape() == Vector(2)
        x, epsilon = np.random.randn(2, 3), np.random.randn(2)
        _, intermediary = net.eval_training(x)
        numeric = numeric_gradient(lambda v: float(epsilon @ net.eval(v)), x)
        eps_in = net.backprop_layer(x, intermediary, epsilon)
        assert eps_in.shape == (2, 3)
        np.testing.assert_allclose(eps_in, numeric, rtol=1e-5, atol=1e-8)


class TestOneHot:
    def test_integer_inputs(self):
        layer = one_hot(3).construct(Vector(2))
        assert layer.output_shape() == Vector(6)
        np.testing.assert_allclose(layer.eval(np.array([0.0, 2.0])), [1, 0, 0, 0, 0, 1])

    def test_fractional_inputs_interpolate(self):
        layer = one_hot(4).construct(Vector(2))
        y = layer.eval(np.array([0.25, 1.5]))
        np.testing.assert_allclose(y, [0.75, 0.25, 0, 0, 0, 0.5, 0.5, 0])

    def test_clamped(self):
        layer = one_hot(3).construct(Vector(2))
        x = np.array([-0.5, 7.0])
        y, intermediary = layer.eval_training(x)
        np.testing.assert_allclose(y, [1, 0, 0, 0, 0, 1])
        np.testing.assert_allclose(layer.backprop_layer(x, intermediary, np.ones(6)), [0.0, 0.0])

    def test_backprop_matches_finite_difference(self):
        layer = one_hot(4).construct(Vector(3))
        x = np.array([0.3, 1.6, 2.45])
        epsilon = np.random.randn(12)
        _, intermediary = layer.eval_training(x)
        numeric = numeric_gradient(lambda v: float(epsilon @ layer.eval(v)), x)
        np.testing.assert_allclose(
            layer.backprop_layer(x, intermediary, epsilon), numeric, rtol=1e-5, atol=1e-8
        )

    def test_invalid(self):
        with pytest.raises(ValueError):
            one_hot(1)
        with pytest.raises(IncompatibleShape):
            one_hot(3).construct(Matrix(2, 2))


# ---------------------------------------------------------------------------
# Isolate / Lock
# ---------------------------------------------------------------------------


class TestIsolate:
    def test_vector_range(self):
        layer = isolate(1, 3).construct(Vector(5))
        assert layer.output_shape() == Vector(2)
        np.testing.assert_allclose(layer.eval(np.arange(5.0)), [1.0, 2.0])
        eps = layer.backprop_layer(np.arange(5.0), None, np.array([7.0, 8.0]))
        np.testing.assert_allclose(eps, [0.0, 7.0, 8.0, 0.0, 0.0])

    def test_matrix_range(self):
        layer = isolate(Matrix(0, 1), Matrix(2, 3)).construct(Matrix(3, 3))
        assert layer.output_shape() == Matrix(2, 2)
        x = np.arange(9.0).reshape(3, 3)
        np.testing.assert_allclose(layer.eval(x), [[1.0, 2.0], [4.0, 5.0]])

    def test_out_of_order(self):
        with pytest.raises(OutOfOrder):
            isolate(3, 3).construct(Vector(5))
        with pytest.raises(OutOfOrder):
            isolate(4, 2).construct(Vector(5))

    def test_out_of_bound(self):
        with pytest.raises(OutOfBound):
            isolate(2, 6).construct(Vector(5))
        with pytest.raises(OutOfBound):
            isolate(5, 7).construct(Vector(5))

    def test_incompatible(self):
        with pytest.raises(IncompatibleShape):
            isolate(0, 2).construct(Matrix(2, 2))
        with pytest.raises(IncompatibleShape):
            isolate(Vector(0), Matrix(1, 1)).construct(Vector(4))


class TestLock:
    def test_lock_freezes_parameters(self):
        inner = DenseLayer(np.random.randn(2, 3), np.random.randn(2), Tanh())
        weights = inner.weights.copy()
        layer = LockLayer(inner)
        x = np.random.randn(3)
        output, intermediary = layer.eval_training(x)
        np.testing.assert_allclose(output, inner.eval(x))
        assert layer.get_gradient(x, intermediary, np.ones(2)) is EMPTY
        assert layer.default_gradient() is EMPTY
        layer.apply_gradient(Params(np.ones((2, 3)), np.ones(2)))
        np.testing.assert_allclose(inner.weights, weights)

    def test_lock_still_propagates_error(self):
        inner = DenseLayer(np.random.randn(2, 3), np.random.randn(2), Tanh())
        layer = LockLayer(inner)
        x = np.random.randn(3)
        _, z = layer.eval_training(x)
        np.testing.assert_allclose(
            layer.backprop_layer(x, z, np.ones(2)), inner.backprop_layer(x, z, np.ones(2))
        )
        assert layer.unlock() is inner
