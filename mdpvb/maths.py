#!/usr/bin/env python
# -*- coding: utf-8 -*-
# pylint: disable=no-member

""" Probability algebra

Normalisation, logarithms, Dirichlet statistics and tensor contractions used throughout the
variational scheme. All functions are pure.
"""

from itertools import chain

import numpy as np
from scipy import special
from opt_einsum import contract

from mdpvb import utils

EPS_VAL = 1e-16 # global constant for use in spm_log() function
P0_VAL = np.exp(-16) # floor for concentration parameters and joint state probabilities


def spm_norm(A):
    """
    Normalizes the Categorical distributions stored in the columns of ``A`` (i.e. over axis 0, with
    every other axis held fixed). Columns that sum to zero (or less) are replaced by a uniform
    distribution.
    """
    A = np.asarray(A, dtype=float)
    totals = A.sum(axis=0, keepdims=True)
    valid = totals > 0
    safe_totals = np.where(valid, totals, 1.0)
    return np.where(valid, A / safe_totals, 1.0 / A.shape[0])


def spm_back(A):
    """
    Normalizes the rows of ``A`` (over axis 1). Applied to a transition matrix this gives, after
    transposition, the column-stochastic matrix that carries messages backwards in time.
    """
    A = np.asarray(A, dtype=float)
    return A / A.sum(axis=1, keepdims=True)


def spm_cum(A):
    """ Column totals of ``A``, broadcast back to the shape of ``A`` """
    A = np.asarray(A, dtype=float)
    return np.broadcast_to(A.sum(axis=0, keepdims=True), A.shape).copy()


def spm_psi(A):
    """
    Expectation of the log probabilities under Dirichlet distributions with concentration
    parameters stored in the columns of ``A``: ``psi(A) - psi(sum(A))``
    """
    A = np.asarray(A, dtype=float)
    return special.digamma(A) - special.digamma(A.sum(axis=0, keepdims=True))


def spm_wnorm(A):
    """
    Novelty weights of Dirichlet concentration parameters, ``1/sum(A) - 1/A`` column-wise. Entries
    whose concentration is not strictly positive (structurally absent) are set to zero.
    """
    A = np.asarray(A, dtype=float)
    totals = spm_cum(A)
    totals = np.where(totals > 0, totals, 1.0)
    return np.where(A > 0, 1.0 / totals - 1.0 / (A + P0_VAL), 0.0)


def spm_betaln(z):
    """ Log of the multivariate beta function of a vector.
     @NOTE this function computes across columns if `z` is a matrix. Zero entries are stripped,
     so an empty column contributes zero
    """
    z = np.asarray(z, dtype=float)
    totals = z.sum(axis=0)
    return special.gammaln(np.where(z > 0, z, 1.0)).sum(axis=0) - special.gammaln(np.where(totals > 0, totals, 1.0))


def spm_log_single(arr):
    """
    Adds small epsilon value to an array before natural logging it
    """
    return np.log(arr + EPS_VAL)


def softmax(dist):
    """
    Computes the softmax function on a set of values, over axis 0
    """

    output = dist - dist.max(axis=0)
    output = np.exp(output)
    output = output / np.sum(output, axis=0)
    return output


def spm_dot(X, x, dims_to_omit=None):
    """ Dot product of a multidimensional array ``X`` with the vectors in ``x``.

    The vectors are aligned with the trailing axes of ``X`` (``x[i]`` with axis
    ``X.ndim - len(x) + i``). Every aligned axis is summed out except those listed in
    ``dims_to_omit`` (indices into ``x``); leading axes not covered by ``x`` are always kept.

    Parameters
    ----------
    X: ``numpy.ndarray``
        Tensor to contract
    x: ``numpy.ndarray`` of dtype object, ``list`` or 1D ``numpy.ndarray``
        Vectors to contract with
    dims_to_omit: ``list`` of ``int``, optional
        Which vectors (and thus axes) to leave out of the contraction

    Returns
    -------
    Y: ``numpy.ndarray``
        The contracted tensor, ordered as the surviving axes of ``X`` (0-d if nothing survives)
    """
    x = utils.to_obj_array(x)
    dims_to_omit = [] if dims_to_omit is None else list(dims_to_omit)
    offset = X.ndim - len(x)

    operands = [X, list(range(X.ndim))]
    operands += list(chain(*([x[i], [offset + i]] for i in range(len(x)) if i not in dims_to_omit)))
    keep_dims = list(range(offset)) + sorted(offset + i for i in dims_to_omit)

    return np.asarray(contract(*operands, keep_dims, backend="numpy"))


def spm_cross(x, y=None, *args):
    """ Multi-dimensional outer product

    Parameters
    ----------
    x: ``numpy.ndarray`` or object array
        The values to perform the outer-product with. If ``y`` is empty and ``x`` is an object array,
        the outer product is taken among the sub-arrays of ``x``.
    y: ``numpy.ndarray`` or object array, optional
    args: ``numpy.ndarray``
        Remaining arrays to perform outer-product with, recursively multiplied onto the result.

    Returns
    -------
    z: ``numpy.ndarray``
        The result of the outer-product
    """

    if len(args) == 0 and y is None:
        if utils.is_obj_array(x):
            z = spm_cross(*list(x))
        elif np.issubdtype(np.asarray(x).dtype, np.number):
            z = np.asarray(x)
        else:
            raise ValueError(f"Invalid input to spm_cross ({x})")
        return z

    if utils.is_obj_array(x):
        x = spm_cross(*list(x))

    if y is not None and utils.is_obj_array(y):
        y = spm_cross(*list(y))

    x, y = np.asarray(x), np.asarray(y)
    A = np.expand_dims(x, tuple(range(-y.ndim, 0)))
    B = np.expand_dims(y, tuple(range(x.ndim)))
    z = A * B

    for x in args:
        z = spm_cross(z, x)
    return z


def spm_MDP_G(A, x):
    """
    Expected Bayesian surprise about hidden states, i.e. the mutual information between outcomes
    (jointly over all modalities) and hidden states under the beliefs ``x``.

    Parameters
    ----------
    A: ``numpy.ndarray`` of dtype object
        Likelihood arrays, one per outcome modality
    x: ``numpy.ndarray`` of dtype object
        Categorical beliefs over each hidden state factor

    Returns
    -------
    G: ``float``
        ``E_Q(x)[sum_o P(o|x) ln P(o|x)] - sum_o Q(o) ln Q(o)``
    """

    # probability distribution over the hidden causes: i.e., Q(x)
    qx = spm_cross(x)
    G = 0.0
    qo = 0.0
    idx = np.array(np.where(qx > P0_VAL)).T

    # accumulate expectation of entropy: i.e., E_{Q(x)}[P(o|x) lnP(o|x)]
    for i in idx:
        po = np.ones(1)
        for A_m in A:
            po = spm_cross(po, A_m[(slice(None),) + tuple(i)])
        po = po.ravel()
        qo = qo + qx[tuple(i)] * po
        G += qx[tuple(i)] * po.dot(spm_log_single(po))

    # subtract entropy of expectations: i.e., E_{Q(o)}[lnQ(o)]
    G = G - np.dot(qo, spm_log_single(qo))

    return float(G)


def neg_entropy(qx):
    """ Negative entropy ``sum q ln q`` of a Categorical distribution """
    return float(np.dot(qx, spm_log_single(qx)))
