#!/usr/bin/env python
# -*- coding: utf-8 -*-
# pylint: disable=no-member

""" Dirichlet learning

Accumulation of Dirichlet concentration parameters over the likelihood, transition and initial
state distributions, from the beliefs and outcomes of a completed trajectory. Only entries that
are already strictly positive are ever incremented.
"""

import numpy as np

from mdpvb import utils
from mdpvb.maths import spm_cross, spm_betaln


def update_obs_likelihood_dirichlet(pA, obs_t, X_t, lr=1.0, qA=None):
    """
    Update Dirichlet parameters of the observation likelihood with the outcomes at one time point.

    THE BASIC IDEA:
    Every outcome is a pseudo-count for the likelihood column of the states that (the agent
    believes) produced it. Counts are spread over state combinations in proportion to the
    averaged beliefs, and entries with zero concentration never receive any.

    MATHEMATICAL FOUNDATION:
    pA_g ← pA_g + lr × (o_g ⊗ X_0 ⊗ ... ⊗ X_(F-1)) ⊙ [pA_g > 0]

    EXAMPLE:
    pA = [[1, 1], [1, 1]], outcome 0, beliefs [0.9, 0.1]
    updated pA = [[1.9, 1.1], [1, 1]]

    Parameters
    -----------
    pA: ``numpy.ndarray`` of dtype object
        Prior Dirichlet parameters over the likelihood (same shapes as ``A``). Not modified.
    obs_t: ``list`` of ``int``
        Realised outcome index of every modality.
    X_t: ``numpy.ndarray`` of dtype object
        Bayesian model averaged beliefs about every hidden state factor at the same time point.
    lr: ``float``, default 1.0
        Learning rate, scale of the Dirichlet pseudo-count update.
    qA: ``numpy.ndarray`` of dtype object, optional
        Digamma expectations of ``pA``; when given, the free energy diagnostic is computed.

    Returns
    -----------
    pA_updated: ``numpy.ndarray`` of dtype object
        Posterior Dirichlet parameters over the likelihood.
    Fa: ``float`` or ``None``
        ``da . qA - sum(betaln(pA_updated))`` for the last modality (``None`` without ``qA``).
    """

    pA_updated = utils.obj_array_copy(pA)
    Fa = None
    for g, pA_g in enumerate(pA):
        da = spm_cross(utils.onehot(obs_t[g], pA_g.shape[0]), X_t)
        da = da * (pA_g > 0)
        pA_updated[g] = pA_g + lr * da
        if qA is not None:
            Fa = float(da.ravel().dot(qA[g].ravel()) - spm_betaln(pA_updated[g]).sum())

    return pA_updated, Fa


def update_state_likelihood_dirichlet(pB, x, q_pi_prev, policies, t, lr=1.0):
    """
    Update Dirichlet parameters of the transition likelihood with the transition from ``t - 1`` to ``t``,
    under every policy, weighted by the posterior probability of that policy at ``t - 1``.

    MATHEMATICAL FOUNDATION:
    For each policy π with action u = π(t-1, f):
    pB_f[:, :, u] ← pB_f[:, :, u] + lr × q(π) × (x_π(t) ⊗ x_π(t-1)) ⊙ [pB_f[:, :, u] > 0]

    Parameters
    -----------
    pB: ``numpy.ndarray`` of dtype object
        Prior Dirichlet parameters over the transitions (same shapes as ``B``). Not modified.
    x: ``numpy.ndarray`` of dtype object
        Policy-conditioned beliefs, ``x[f]`` of shape ``(num_states[f], T, num_policies)``.
    q_pi_prev: 1D ``numpy.ndarray``
        Posterior over policies at ``t - 1``.
    policies: 3D ``numpy.ndarray``
        Policies of shape ``(num_policies, num_steps, num_factors)``.
    t: ``int``
        Time of the later state (``t >= 1``).
    lr: ``float``, default 1.0
        Learning rate.

    Returns
    -----------
    pB_updated: ``numpy.ndarray`` of dtype object
        Posterior Dirichlet parameters over the transitions.
    """

    pB_updated = utils.obj_array_copy(pB)
    for f in range(len(pB)):
        for k in range(policies.shape[0]):
            u = policies[k, t - 1, f]
            db = q_pi_prev[k] * np.outer(x[f][:, t, k], x[f][:, t - 1, k])
            db = db * (pB_updated[f][:, :, u] > 0)
            pB_updated[f][:, :, u] += lr * db

    return pB_updated


def update_state_prior_dirichlet(pD, X0):
    """
    Update Dirichlet parameters of the initial hidden state distribution with the averaged
    beliefs about the first time point. Entries with zero concentration stay at zero.

    Parameters
    -----------
    pD: ``numpy.ndarray`` of dtype object
        Prior Dirichlet parameters over initial states. Not modified.
    X0: ``numpy.ndarray`` of dtype object
        Bayesian model averaged beliefs about the initial state of every factor.

    Returns
    -----------
    pD_updated: ``numpy.ndarray`` of dtype object
        Posterior Dirichlet parameters over initial states.
    """

    pD_updated = utils.obj_array_copy(pD)
    for f, pD_f in enumerate(pD):
        idx = pD_f > 0
        pD_updated[f][idx] = pD_f[idx] + X0[f][idx]

    return pD_updated
