"""
Tests for policy evaluation, pruning, precision and action selection
"""

import numpy as np
import pytest

from mdpvb import control, utils
from mdpvb.control import QBETA_FLOOR

from . import TEST_SEED


class TestExpectedFreeEnergy:
    """Risk, ambiguity and novelty of policies."""

    def _beliefs(self, model, final_states):
        """Policy-conditioned beliefs that end up in the given state under each policy."""
        x = utils.obj_array(1)
        x[0] = np.zeros((2, model.T, model.num_policies)) + 0.5
        for k, state in enumerate(final_states):
            x[0][:, 1:, k] = utils.onehot(state, 2)[:, None]
        return x

    def test_preferred_outcomes_score_higher(self, one_factor_model):
        model = one_factor_model
        x = self._beliefs(model, [0, 1, 0, 1])
        Q = control.calc_expected_free_energy(x, model.A_model, model.C, model.policies, [0, 1, 2, 3])
        assert Q[0] > Q[1]
        assert np.isclose(Q[0], Q[2])

    def test_dead_policies_are_not_scored(self, one_factor_model):
        model = one_factor_model
        x = self._beliefs(model, [0, 1, 0, 1])
        Q = control.calc_expected_free_energy(x, model.A_model, model.C, model.policies, [1])
        assert Q[0] == 0.0 and Q[2] == 0.0 and Q[3] == 0.0
        assert Q[1] != 0.0

    def test_novelty_raises_the_score(self, learning_model):
        model = learning_model
        x = self._beliefs(model, [0, 1, 0, 1])
        Q = control.calc_expected_free_energy(x, model.A_model, model.C, model.policies, [0])
        Q_novelty = control.calc_expected_free_energy(x, model.A_model, model.C, model.policies, [0], wA=model.wA)
        assert Q_novelty[0] > Q[0]


class TestPruning:
    """Policies more than 3 nats below the best are dropped."""

    def test_pruning_threshold(self):
        F = np.array([-1.0, -2.0, -5.0, -10.0])
        assert control.prune_policies(F, [0, 1, 2, 3]) == [0, 1]

    def test_boundary_is_retained(self):
        F = np.array([-1.0, -4.0, -4.000001])
        assert control.prune_policies(F, [0, 1, 2]) == [0, 1]

    def test_only_live_policies_are_considered(self):
        F = np.array([0.0, -2.0, -5.0, -6.0])
        assert control.prune_policies(F, [2, 3]) == [2, 3]

    def test_empty(self):
        assert control.prune_policies(np.zeros(2), []) == []


class TestPrecision:
    """Joint updates of the policy posterior and the expected precision."""

    def test_single_iteration_favours_higher_value(self):
        Q = np.array([0.5, -0.3])
        F = np.zeros(2)
        log_E = np.log(np.ones(2) / 2)
        q_pi, qbeta, gamma, wn, un = control.update_precision(Q, F, log_E, [0, 1], 1.0, 1.0, beta=1.0, num_iter=1)
        assert q_pi[0] > q_pi[1]
        assert np.isclose(q_pi.sum(), 1.0)
        assert gamma > 0
        assert np.isclose(gamma, 1.0 / qbeta)
        assert wn.shape == (1,) and un.shape == (2, 1)

    def test_fixed_precision(self):
        Q = np.array([1.0, -1.0, 0.0])
        F = np.array([0.0, -1.0, -2.0])
        log_E = np.log(np.ones(3) / 3)
        q_pi, qbeta, gamma, wn, _ = control.update_precision(
            Q, F, log_E, [0, 1, 2], 1.0, 1.0, beta=2.0, num_iter=4, fixed_precision=True
        )
        assert gamma == 0.5
        assert np.allclose(wn, 0.5)
        assert qbeta == 1.0

    def test_pruned_policies_have_zero_probability(self):
        Q = np.array([1.0, -1.0, 0.0])
        F = np.array([0.0, -1.0, -2.0])
        log_E = np.log(np.ones(3) / 3)
        q_pi, _, _, _, un = control.update_precision(Q, F, log_E, [0, 2], 1.0, 1.0)
        assert q_pi[1] == 0.0
        assert np.all(un[1] == 0.0)
        assert np.isclose(q_pi.sum(), 1.0)

    def test_precision_stays_positive(self):
        rng = np.random.default_rng(TEST_SEED)
        for _ in range(50):
            num_policies = rng.integers(2, 6)
            Q = rng.normal(scale=10.0, size=num_policies)
            F = rng.normal(scale=10.0, size=num_policies)
            log_E = np.log(np.ones(num_policies) / num_policies)
            beta = rng.uniform(0.01, 4.0)
            _, qbeta, gamma, wn, _ = control.update_precision(
                Q, F, log_E, list(range(num_policies)), beta, 1.0 / beta, beta=beta
            )
            assert qbeta >= QBETA_FLOOR
            assert np.all(wn > 0) and np.all(np.isfinite(wn))
            assert gamma > 0


class TestActionSelection:
    """Marginal posterior over joint actions and sampling."""

    def test_joint_action_probabilities(self):
        policies = np.array([[[0, 1]], [[1, 0]], [[0, 1]]])
        q_pi = np.array([0.2, 0.3, 0.5])
        Pu = control.get_joint_action_probabilities(q_pi, policies, [2, 2], 0)
        assert np.allclose(Pu, [[0.0, 0.7], [0.3, 0.0]])

    def test_sharpened_selection(self):
        Pu = np.array([[0.1, 0.4], [0.2, 0.3]])
        _, P = control.sample_joint_action(Pu, alpha=16.0, rng=TEST_SEED)
        assert P.shape == (2, 2)
        assert np.isclose(P.sum(), 1.0)
        assert P[0, 1] > 0.98
        assert P[0, 1] == P.max()

    def test_sampling_recovers_concentration(self):
        Pu = np.array([[0.1, 0.4], [0.2, 0.3]])
        rng = np.random.default_rng(TEST_SEED)
        draws = [tuple(control.sample_joint_action(Pu, alpha=16.0, rng=rng)[0]) for _ in range(2000)]
        assert draws.count((0, 1)) / len(draws) > 0.95

    def test_supplied_action_bypasses_sampling(self):
        Pu = np.array([[0.1, 0.4], [0.2, 0.3]])
        action, _ = control.sample_joint_action(Pu, alpha=16.0, rng=TEST_SEED, action=[1, 0])
        assert np.array_equal(action, [1, 0])

    def test_uniform_selection(self):
        Pu = np.ones(3) / 3
        _, P = control.sample_joint_action(Pu, alpha=1.0, rng=TEST_SEED)
        assert np.allclose(P, 1 / 3)


class TestPolicies:
    """Policy construction and moving policies."""

    def test_construct_policies(self):
        policies = control.construct_policies([2, 3], [1, 3], policy_len=2)
        assert len(policies) == 9
        assert all(p.shape == (2, 2) for p in policies)
        assert all(np.all(p[:, 0] == 0) for p in policies)

    def test_construct_policies_defaults_to_state_dimensions(self):
        policies = control.construct_policies([2, 3])
        assert len(policies) == 6

    @pytest.mark.parametrize("t, expected_rows", [(0, [1, 2]), (2, [3])])
    def test_moving_policies(self, t, expected_rows):
        repertoire = np.array([[[0], [0]], [[1], [1]]])
        policies = repertoire.copy()
        updated = control.update_moving_policies(policies, np.array([1]), repertoire, t, 5)
        assert np.all(updated[:, t, 0] == 1)
        for j, row in enumerate(expected_rows):
            assert np.array_equal(updated[:, row, 0], repertoire[:, j, 0])
        assert updated.shape[1] == max(2, t + 1, expected_rows[-1] + 1)

    def test_moving_policies_stop_before_last_transition(self):
        repertoire = np.array([[[0]], [[1]]])
        updated = control.update_moving_policies(repertoire.copy(), np.array([0]), repertoire, 2, 4)
        assert updated.shape == (2, 3, 1)
        assert np.all(updated[:, 2, 0] == 0)
