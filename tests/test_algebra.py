# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Tests for the gradient algebra."""

import numpy as np
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from netcompose.algebra import EMPTY, DynGradient, Empty, Pair, Params, Stack
from netcompose.errors import InvariantError

np.random.seed(42)


def flatten(g):
    """All arrays of a gradient tree, depth first."""
    if isinstance(g, Params):
        return list(g.arrays)
    if isinstance(g, Pair):
        return flatten(g.left) + flatten(g.right)
    if isinstance(g, Stack):
        return [a for item in g for a in flatten(item)]
    if isinstance(g, DynGradient):
        return flatten(g.inner)
    return []


def assert_tree_close(actual, expected):
    a, e = flatten(actual), flatten(expected)
    assert len(a) == len(e)
    for x, y in zip(a, e):
        np.testing.assert_allclose(x, y, rtol=1e-12, atol=1e-12)


def make_chain_gradient():
    return Pair(
        Params(np.random.randn(3, 2), np.random.randn(3)),
        Pair(Params(np.random.randn(1, 3), np.random.randn(1)), EMPTY),
    )


def make_dyn_stack():
    return Stack([
        DynGradient(EMPTY),
        DynGradient(Params(np.random.randn(2, 2), np.random.randn(2))),
        DynGradient(Params(np.random.randn(4))),
    ])


# ---------------------------------------------------------------------------
# Vector-space laws
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("make", [make_chain_gradient, make_dyn_stack])
class TestVectorSpaceLaws:
    def test_zero_is_additive_identity(self, make):
        g = make()
        before = g.copy()
        g.add_assign(g.zero())
        assert_tree_close(g, before)

    def test_add_is_commutative(self, make):
        a = make()
        b = a.zero()
        for target, source in zip(flatten(b), flatten(make())):
            target += source
        ab = a.copy().add_assign(b)
        ba = b.copy().add_assign(a)
        assert_tree_close(ab, ba)

    def test_scale_distributes_over_add(self, make):
        a = make()
        b = a.zero()
        for target, source in zip(flatten(b), flatten(make())):
            target += source
        k = -0.37
        lhs = a.copy().add_assign(b).scale(k)
        rhs = a.copy().scale(k).add_assign(b.copy().scale(k))
        assert_tree_close(lhs, rhs)

    def test_norm_squared(self, make):
        g = make()
        expected = sum(float(np.sum(a * a)) for a in flatten(g))
        assert g.norm_squared() == pytest.approx(expected)
        assert g.norm_squared() > 0.0
        assert g.zero().norm_squared() == 0.0

    def test_copy_is_deep(self, make):
        g = make()
        c = g.copy()
        c.scale(0.0)
        assert g.norm_squared() > 0.0
        assert c.norm_squared() == 0.0


# ---------------------------------------------------------------------------
# Empty
# ---------------------------------------------------------------------------


class TestEmpty:
    def test_operations_are_noops(self):
        assert EMPTY.add_assign(EMPTY) is EMPTY
        assert EMPTY.scale(5.0) is EMPTY
        assert EMPTY.zero() is EMPTY
        assert EMPTY.norm_squared() == 0.0

    def test_equality(self):
        assert Empty() == EMPTY

    def test_adding_empty_leaves_params_unchanged(self):
        p = Params(np.ones(3))
        p.add_assign(EMPTY)
        np.testing.assert_allclose(p[0], np.ones(3))


# ---------------------------------------------------------------------------
# Params / Stack
# ---------------------------------------------------------------------------


class TestParams:
    def test_add_assign_in_place(self):
        w = np.ones((2, 2))
        p = Params(w, np.zeros(2))
        p.add_assign(Params(np.full((2, 2), 2.0), np.ones(2)))
        np.testing.assert_allclose(p[0], np.full((2, 2), 3.0))
        np.testing.assert_allclose(p[1], np.ones(2))

    def test_shape_mismatch_fails(self):
        with pytest.raises(ValueError):
            Params(np.ones(2)).add_assign(Params(np.ones(2), np.ones(2)))


class TestStack:
    def test_empty_stack_grows_on_add(self):
        s = Stack()
        s.add_assign(Stack([Params(np.ones(2))]))
        assert len(s) == 1
        np.testing.assert_allclose(s[0][0], np.ones(2))

    def test_grown_items_are_copies(self):
        source = Stack([Params(np.ones(2))])
        s = Stack().add_assign(source)
        s.scale(3.0)
        np.testing.assert_allclose(source[0][0], np.ones(2))


# ---------------------------------------------------------------------------
# DynGradient
# ---------------------------------------------------------------------------


class TestDynGradient:
    def test_same_type_adds(self):
        a = DynGradient(Params(np.ones(2)))
        a.add_assign(DynGradient(Params(np.ones(2))))
        np.testing.assert_allclose(a.inner[0], np.full(2, 2.0))

    def test_mismatched_type_is_fatal(self):
        a = DynGradient(Params(np.ones(2)))
        with pytest.raises(InvariantError):
            a.add_assign(DynGradient(EMPTY))

    def test_mismatched_pair_is_fatal(self):
        a = DynGradient(Pair(EMPTY, EMPTY))
        with pytest.raises(InvariantError):
            a.add_assign(DynGradient(Params(np.ones(1))))

    def test_downcast(self):
        inner = Params(np.ones(2))
        assert DynGradient(inner).downcast(Params) is inner
        with pytest.raises(InvariantError):
            DynGradient(inner).downcast(Pair)

    def test_no_double_wrapping(self):
        inner = Params(np.ones(2))
        assert DynGradient(DynGradient(inner)).inner is inner
