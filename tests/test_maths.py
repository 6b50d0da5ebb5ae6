"""
Tests for the probability algebra

Normalisation, Dirichlet statistics, contractions and Bayesian surprise.
"""

import numpy as np
import pytest
from scipy import special

from mdpvb import maths, utils

from . import TEST_TOLERANCE, assert_normalized


class TestNormalisation:
    """Column and row normalisation."""

    def test_columns_sum_to_one(self, rng):
        A = rng.random((4, 3, 2))
        assert_normalized(maths.spm_norm(A))

    def test_zero_column_becomes_uniform(self):
        A = np.array([[1.0, 0.0], [3.0, 0.0], [0.0, 0.0]])
        normed = maths.spm_norm(A)
        assert np.allclose(normed[:, 0], [0.25, 0.75, 0.0])
        assert np.allclose(normed[:, 1], np.ones(3) / 3)

    def test_idempotence(self, rng):
        normed = maths.spm_norm(rng.random((5, 4)))
        assert np.allclose(maths.spm_norm(normed), normed, atol=TEST_TOLERANCE)

    def test_spm_back_normalises_rows(self, rng):
        B = rng.random((3, 3)) + 0.1
        assert np.allclose(maths.spm_back(B).sum(axis=1), 1.0)

    def test_spm_cum_broadcasts_column_totals(self):
        A = np.array([[1.0, 2.0], [3.0, 4.0]])
        assert np.allclose(maths.spm_cum(A), [[4.0, 6.0], [4.0, 6.0]])

    def test_softmax(self):
        x = np.array([1.0, 2.0, 3.0])
        expected = np.exp(x) / np.exp(x).sum()
        assert np.allclose(maths.softmax(x), expected)

    def test_softmax_is_shift_invariant_for_large_values(self):
        out = maths.softmax(np.array([1000.0, 1000.0]))
        assert np.allclose(out, [0.5, 0.5])


class TestDirichletStatistics:
    """Digamma expectations, novelty weights and beta functions."""

    def test_spm_psi(self):
        a = np.array([[1.0, 2.0], [3.0, 4.0]])
        expected = special.digamma(a) - special.digamma(a.sum(axis=0))
        assert np.allclose(maths.spm_psi(a), expected)

    def test_spm_wnorm_masks_absent_entries(self):
        a = np.array([[2.0, 0.0], [2.0, 1.0]])
        wA = maths.spm_wnorm(a)
        assert wA[0, 1] == 0.0
        assert np.isclose(wA[0, 0], 1 / 4 - 1 / 2)
        assert wA[1, 1] < 1e-6

    def test_spm_wnorm_empty_column_is_zero(self):
        a = np.array([[1.0, 0.0], [1.0, 0.0]])
        wA = maths.spm_wnorm(a)
        assert np.all(np.isfinite(wA))
        assert np.all(wA[:, 1] == 0.0)
        assert np.allclose(wA[:, 0], 1 / 2 - 1 / (1 + maths.P0_VAL))

    def test_spm_betaln(self):
        z = np.array([1.0, 2.0, 3.0])
        expected = special.gammaln(z).sum() - special.gammaln(z.sum())
        assert np.isclose(maths.spm_betaln(z), expected)

    def test_spm_betaln_strips_zeros(self):
        z = np.array([[1.0, 0.0], [2.0, 0.0], [0.0, 0.0]])
        betaln = maths.spm_betaln(z)
        assert np.isclose(betaln[0], special.gammaln(1.0) + special.gammaln(2.0) - special.gammaln(3.0))
        assert betaln[1] == 0.0

    def test_spm_log_single_is_finite_at_zero(self):
        assert np.isfinite(maths.spm_log_single(np.zeros(3))).all()


class TestContractions:
    """spm_dot and spm_cross."""

    def test_spm_dot_matrix_vector(self, rng):
        A = rng.random((3, 4))
        x = rng.random(4)
        assert np.allclose(maths.spm_dot(A, x), A.dot(x))

    def test_spm_dot_all_factors(self, rng):
        A = rng.random((2, 3, 4))
        x = utils.to_obj_array([rng.random(3), rng.random(4)])
        expected = np.einsum("oij,i,j->o", A, x[0], x[1])
        assert np.allclose(maths.spm_dot(A, x), expected)

    def test_spm_dot_omits_dimension(self, rng):
        A = rng.random((2, 3, 4))
        x = utils.to_obj_array([rng.random(3), rng.random(4)])
        expected = np.einsum("oij,i->oj", A, x[0])
        assert np.allclose(maths.spm_dot(A, x, dims_to_omit=[1]), expected)

    def test_spm_dot_full_contraction_is_scalar(self, rng):
        A = rng.random((2, 3))
        x = [rng.random(2), rng.random(3)]
        result = maths.spm_dot(A, x)
        assert result.ndim == 0
        assert np.isclose(float(result), x[0].dot(A).dot(x[1]))

    def test_spm_cross_shape(self):
        x = utils.to_obj_array([np.ones(2), np.ones(3), np.ones(4)])
        assert maths.spm_cross(x).shape == (2, 3, 4)

    def test_spm_cross_values(self):
        a = np.array([0.2, 0.8])
        b = np.array([0.5, 0.25, 0.25])
        assert np.allclose(maths.spm_cross(a, b), np.outer(a, b))

    def test_spm_cross_rejects_non_numeric(self):
        with pytest.raises(ValueError):
            maths.spm_cross(np.array(["a", "b"]))


class TestBayesianSurprise:
    """Expected information gain about hidden states."""

    def test_precise_likelihood_under_uniform_beliefs(self):
        A = utils.to_obj_array([np.eye(2)])
        x = utils.to_obj_array([np.array([0.5, 0.5])])
        assert np.isclose(maths.spm_MDP_G(A, x), np.log(2), atol=1e-6)

    def test_uninformative_likelihood(self):
        A = utils.to_obj_array([np.ones((2, 2)) / 2])
        x = utils.to_obj_array([np.array([0.5, 0.5])])
        assert np.isclose(maths.spm_MDP_G(A, x), 0.0, atol=1e-6)

    def test_certain_beliefs_carry_no_surprise(self):
        A = utils.to_obj_array([np.eye(3)])
        x = utils.to_obj_array([np.array([1.0, 0.0, 0.0])])
        assert np.isclose(maths.spm_MDP_G(A, x), 0.0, atol=1e-6)

    def test_neg_entropy(self):
        assert np.isclose(maths.neg_entropy(np.array([0.5, 0.5])), -np.log(2))
