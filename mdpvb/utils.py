#!/usr/bin/env python
# -*- coding: utf-8 -*-

""" Utility functions

Object-array helpers, sampling and configuration errors shared by the rest of the package.
"""

import numpy as np


class MDPConfigError(ValueError):
    """
    Raised when a generative model (or a trajectory override) is malformed. The offending field
    is stored in ``field`` and prefixed to the message.
    """

    def __init__(self, field, message):
        self.field = field
        super().__init__(f"{field}: {message}")


def obj_array(num_arr):
    """
    Creates a generic object array with the desired number of sub-arrays, given by ``num_arr``
    """
    return np.empty(num_arr, dtype=object)


def obj_array_zeros(shape_list):
    """
    Creates a numpy object array whose sub-arrays are zero-filled arrays of the given shapes.
    Each entry of ``shape_list`` may be an int or a tuple of ints.
    """
    arr = obj_array(len(shape_list))
    for i, shape in enumerate(shape_list):
        arr[i] = np.zeros(shape)
    return arr


def is_obj_array(arr):
    return isinstance(arr, np.ndarray) and arr.dtype == "object"


def to_obj_array(arr):
    """
    Wraps a single array (or a list of arrays) into an object array. Object arrays pass through
    untouched. Lists are filled entry by entry so that equally-shaped sub-arrays are not merged
    into one higher-dimensional array.
    """
    if is_obj_array(arr):
        return arr
    if isinstance(arr, (list, tuple)):
        obj_arr = obj_array(len(arr))
        for i, arr_i in enumerate(arr):
            obj_arr[i] = np.asarray(arr_i, dtype=float)
        return obj_arr
    obj_arr = obj_array(1)
    obj_arr[0] = np.asarray(arr, dtype=float)
    return obj_arr


def obj_array_copy(obj_arr):
    """ Copies every sub-array of an object array (``None`` passes through) """
    if obj_arr is None:
        return None
    copied = obj_array(len(obj_arr))
    for i, arr in enumerate(obj_arr):
        copied[i] = np.array(arr, dtype=float, copy=True)
    return copied


def norm_dist(dist):
    """ Normalizes a Categorical probability distribution (or a tensor of them, over axis 0) """
    return np.divide(dist, dist.sum(axis=0))


def onehot(value, num_values):
    arr = np.zeros(num_values)
    arr[value] = 1.0
    return arr


def sample(probabilities, rng):
    """
    Draws an index from a categorical distribution by inverting its cumulative sum, i.e. the first
    index whose cumulative probability exceeds a uniform draw.
    """
    probabilities = np.asarray(probabilities, dtype=float).ravel()
    cumulative = np.cumsum(probabilities)
    draw = rng.random() * cumulative[-1]
    return int(min(np.searchsorted(cumulative, draw, side="right"), len(probabilities) - 1))


def get_rng(rng=None):
    """ Accepts ``None``, an integer seed or an existing ``numpy.random.Generator`` """
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


def to_policy_array(policies, num_factors=None):
    """
    Stacks a list of ``(num_steps, num_factors)`` policies (pymdp convention) into a single integer
    array of shape ``(num_policies, num_steps, num_factors)``.
    """
    if isinstance(policies, np.ndarray) and policies.ndim == 3:
        arr = policies
    else:
        arr = np.stack([np.atleast_2d(np.asarray(p)) for p in policies], axis=0)
    if num_factors is not None and arr.shape[-1] != num_factors:
        raise MDPConfigError(
            "policies", f"last dimension must equal the number of hidden state factors ({num_factors}), got {arr.shape[-1]}"
        )
    return arr.astype(int)
