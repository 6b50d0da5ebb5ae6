#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
MARGINAL MESSAGE PASSING (gradient descent on variational free energy)

This module implements belief updating about sequences of hidden states under a single
policy. Beliefs about every hidden state factor, at every time point of the policy's
horizon, are refined by a damped natural-gradient descent on variational free energy.

ALGORITHM OVERVIEW:
==================

For each time point j and factor f, the free energy gradient with respect to log beliefs is

    v = ln A(o_j | s_j^f, E[s_j^-f])                         (only for j <= current time)
      + ln D^f - ln q(s_j^f)                                 (j == 0)
      + ln (B^f(u_{j-1}) q(s_{j-1}^f)) - ln q(s_j^f)         (j > 0, forward message)
      + ln (B^f(u_j)^T q(s_{j+1}^f)) - ln q(s_j^f)           (j < horizon - 1, backward message)

and the belief moves one step of size 1/tau along it:

    q(s_j^f) <- softmax(ln q(s_j^f) + v / tau)

Negative free energy accumulates as q . v / num_factors. Once it stops increasing between two
successive iterations the beliefs are frozen, while the bookkeeping (free energy and
neuronal traces) carries on until the fixed iteration count is reached.

Messages use the marginal likelihood of the outcome at time j under the beliefs about all
*other* factors, so the likelihood of every modality is first contracted with the (possibly
probabilistic) outcome and then with a snapshot of the beliefs at time j.
"""

import numpy as np

from mdpvb.utils import obj_array, obj_array_zeros
from mdpvb.maths import spm_dot, softmax, spm_log_single


def run_mmp_gradient(qs_seq, obs_seq, A, sB, rB, D, policy, curr_t, num_iter=16, tau=4.0):
    """
    Gradient-descent marginal message passing for one policy.

    Parameters
    ----------
    qs_seq: ``numpy.ndarray`` of dtype object
        Beliefs under the policy, one array per factor with shape ``(num_states[f], horizon)``.
        Updated in place.
    obs_seq: ``list`` of ``numpy.ndarray`` of dtype object
        Outcome distributions up to (and including) the current time: ``obs_seq[j][g]`` is a
        distribution over the levels of modality ``g`` at time ``j`` (one-hot for realised outcomes).
    A: ``numpy.ndarray`` of dtype object
        Likelihood arrays of the agent's model.
    sB: ``numpy.ndarray`` of dtype object
        Forward (column-normalised) transition arrays, ``sB[f][:, :, u]``.
    rB: ``numpy.ndarray`` of dtype object
        Backward transition arrays (transposed, row-normalised), ``rB[f][:, :, u]``.
    D: ``numpy.ndarray`` of dtype object
        Prior over initial hidden states.
    policy: 2D ``numpy.ndarray``
        Actions of shape ``(horizon - 1, num_factors)``.
    curr_t: ``int``
        Current (zero-based) time. Outcomes are only available for ``j <= curr_t``.
    num_iter: ``int``, default 16
        Number of variational iterations (a hard cap; no loop depends on convergence).
    tau: ``float``, default 4.0
        Time constant of the gradient descent.

    Returns
    ---------
    F: ``float``
        Negative variational free energy of the policy at the final iteration.
    F_hist: 1D ``numpy.ndarray``
        Negative free energy at each iteration.
    xn: ``numpy.ndarray`` of dtype object
        Beliefs at each iteration, ``xn[f]`` of shape ``(num_iter, num_states[f], horizon)``.
    vn: ``numpy.ndarray`` of dtype object
        Mean-centred free energy gradients at each iteration (same shapes as ``xn``).
    """

    num_factors = len(qs_seq)
    num_modalities = len(A)
    num_states = [qs_f.shape[0] for qs_f in qs_seq]
    horizon = qs_seq[0].shape[1]

    xn = obj_array_zeros([(num_iter, ns, horizon) for ns in num_states])
    vn = obj_array_zeros([(num_iter, ns, horizon) for ns in num_states])
    F_hist = np.zeros(num_iter)

    Ao = obj_array(num_modalities)
    xq = obj_array(num_factors)

    dF = 1.0 # reset criterion for this policy
    F_prev = 0.0
    for itr in range(num_iter):
        F = 0.0 # reset free energy for this iteration
        for j in range(horizon):

            # marginal likelihood over outcome modalities
            if j <= curr_t and dF > 0:
                for f in range(num_factors):
                    xq[f] = qs_seq[f][:, j].copy()
                for g in range(num_modalities):
                    Ao[g] = spm_dot(A[g], [obs_seq[j][g]] + list(xq), dims_to_omit=list(range(1, num_factors + 1)))

            for f in range(num_factors):
                sx = qs_seq[f][:, j]
                v = np.zeros(num_states[f])

                if dF > 0:
                    if j <= curr_t:
                        for g in range(num_modalities):
                            v += spm_log_single(spm_dot(Ao[g], xq, [f]).ravel())

                    # entropy and empirical priors
                    qx = spm_log_single(sx)
                    if j == 0:
                        v += spm_log_single(D[f]) - qx
                    if j > 0:
                        v += spm_log_single(sB[f][:, :, policy[j - 1, f]].dot(qs_seq[f][:, j - 1])) - qx
                    if j < horizon - 1:
                        v += spm_log_single(rB[f][:, :, policy[j, f]].dot(qs_seq[f][:, j + 1])) - qx

                    # (negative) free energy
                    F += sx.dot(v) / num_factors

                    sx = softmax(qx + v / tau)
                else:
                    F = F_prev

                qs_seq[f][:, j] = sx
                xn[f][itr, :, j] = sx
                vn[f][itr, :, j] = v - v.mean()

        # convergence
        if itr > 0:
            dF = F - F_prev
        F_prev = F
        F_hist[itr] = F

    return F, F_hist, xn, vn
