"""
Pytest configuration for mdpvb tests.

Provides small generative models shared across the test modules.
"""

import numpy as np
import pytest

from mdpvb import GenerativeModel
from mdpvb.control import construct_policies

from . import TEST_SEED


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests that are slow to run")


@pytest.fixture
def rng():
    """Seeded random generator for reproducible tests."""
    return np.random.default_rng(TEST_SEED)


@pytest.fixture
def one_factor_arrays():
    """Two states, two outcomes, two actions (stay, switch), preference for outcome 0."""
    A = np.array([[0.9, 0.1], [0.1, 0.9]])
    B = np.zeros((2, 2, 2))
    B[:, :, 0] = np.eye(2)
    B[:, :, 1] = np.array([[0.0, 1.0], [1.0, 0.0]])
    C = np.array([2.0, 0.0])
    D = np.array([0.5, 0.5])
    policies = construct_policies([2], [2], policy_len=2)
    return {"A": [A], "B": [B], "C": [C], "D": [D], "policies": policies}


@pytest.fixture
def one_factor_model(one_factor_arrays):
    return GenerativeModel(**one_factor_arrays)


@pytest.fixture
def learning_model(one_factor_arrays):
    """One factor model with concentration parameters over A, B and D."""
    arrays = dict(one_factor_arrays)
    arrays["pA"] = [np.array([[4.0, 1.0], [1.0, 4.0]])]
    arrays["pB"] = [arrays["B"][0] * 8 + 1.0]
    arrays["pD"] = [np.array([2.0, 2.0])]
    return GenerativeModel(**arrays)


@pytest.fixture
def two_factor_arrays():
    """An uncontrollable context factor (2 levels) and a controllable location factor (3 levels)."""
    num_states = [2, 3]

    A_loc = np.zeros((3, 2, 3))
    A_ctx = np.zeros((2, 2, 3))
    for ctx in range(2):
        for loc in range(3):
            A_loc[loc, ctx, loc] = 1.0
            if loc == 2:
                A_ctx[ctx, ctx, loc] = 0.95
                A_ctx[1 - ctx, ctx, loc] = 0.05
            else:
                A_ctx[:, ctx, loc] = 0.5

    B_ctx = np.eye(2)[:, :, None]
    B_loc = np.zeros((3, 3, 3))
    for u in range(3):
        B_loc[u, :, u] = 1.0

    C = [np.array([1.0, 0.0]), np.zeros(3)]
    D = [np.array([0.5, 0.5]), np.array([1.0, 0.0, 0.0])]
    policies = construct_policies(num_states, [1, 3], policy_len=1)
    return {"A": [A_ctx, A_loc], "B": [B_ctx, B_loc], "C": C, "D": D, "policies": policies}


@pytest.fixture
def two_factor_model(two_factor_arrays):
    return GenerativeModel(**two_factor_arrays)
