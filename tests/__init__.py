"""
mdpvb test suite

Shared tolerances and helpers for the variational scheme tests.
"""

import numpy as np

TEST_TOLERANCE = 1e-9
TEST_SEED = 42


def assert_normalized(arr, atol=TEST_TOLERANCE):
    """Assert that every column of an array (or of every sub-array of an object array) sums to one."""
    if isinstance(arr, np.ndarray) and arr.dtype == object:
        for sub_arr in arr:
            assert_normalized(sub_arr, atol=atol)
        return
    assert np.allclose(arr.sum(axis=0), 1.0, atol=atol), f"Columns do not sum to one: {arr.sum(axis=0)}"
