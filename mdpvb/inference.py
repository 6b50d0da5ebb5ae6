#!/usr/bin/env python
# -*- coding: utf-8 -*-
# pylint: disable=no-member

"""
STATE INFERENCE MODULE

This module contains the state estimation step of the variational scheme: the "perception"
part of the perception-action loop, where the agent updates its beliefs about hidden states
(past, present and future) under every policy that is still in play.

KEY CONCEPTS:
=============

1. POLICY-CONDITIONED BELIEFS:
   - Beliefs are held separately for every policy, ``x[f][:, j, k]`` for factor ``f``,
     time ``j`` and policy ``k``
   - Each policy implies a different sequence of transitions, hence different beliefs about
     where the agent has been and where it will be

2. FREE ENERGY OF POLICIES:
   - Belief updating minimises variational free energy under each policy
   - The (negative) free energy that remains scores how well each policy explains the
     outcomes observed so far and enters the posterior over policies

3. BAYESIAN MODEL AVERAGE:
   - Beliefs that are not conditioned on policies are the average of the policy-conditioned
     beliefs, weighted by the posterior over policies
"""

import numpy as np

from mdpvb import utils
from mdpvb.algos import run_mmp_gradient


def update_posterior_states_vb(
    x,
    obs_seq,
    A,
    sB,
    rB,
    D,
    policies,
    live,
    curr_t,
    num_iter=16,
    tau=4.0,
):
    """
    POLICY-CONDITIONED STATE ESTIMATION: Beliefs About Hidden State Sequences

    Update posterior beliefs about hidden state sequences under each live policy, using
    gradient-descent marginal message passing

    THE BASIC IDEA:
    Every policy tells a different story about how the hidden states unfolded and will unfold.
    For each policy still in play, the agent revises its beliefs about the whole sequence
    (past, present and future) so that they explain the outcomes seen so far while respecting
    the transitions that policy implies. How well a policy manages this is its free energy.

    MATHEMATICAL FOUNDATION:
    For policy π, factor f and time j the gradient is
    v = ln A·o_j + ln(B_π(j-1)·x_(j-1)) + ln(B_π(j)ᵀ·x_(j+1)) - ln x_j
    (with ln D in place of the past message at j = 0), and beliefs move down it:
    x_j ← σ(ln x_j + v / tau)
    The negative free energy F_π = Σ_j x_j·v is accumulated along the way.

    WHEN TO USE:
    - Once per time step, before evaluating policies
    - Pruned policies are skipped and keep ``F == 0``

    Parameters
    ----------
    x: ``numpy.ndarray`` of dtype object
        Policy-conditioned beliefs, ``x[f]`` of shape ``(num_states[f], T, num_policies)``. The first
        ``horizon`` time points of every live policy are updated in place.
    obs_seq: ``list`` of ``numpy.ndarray`` of dtype object
        Outcome distributions at each time point up to ``curr_t``.
    A: ``numpy.ndarray`` of dtype object
        Likelihood arrays of the agent's model.
    sB, rB: ``numpy.ndarray`` of dtype object
        Forward and backward transition arrays.
    D: ``numpy.ndarray`` of dtype object
        Prior over initial hidden states.
    policies: 3D ``numpy.ndarray``
        Policies of shape ``(num_policies, num_steps, num_factors)``; the horizon of the
        belief sequences is ``num_steps + 1``.
    live: ``list`` of ``int``
        Indices of the policies that survive pruning.
    curr_t: ``int``
        Current time.
    num_iter: ``int``, default 16
        Number of variational iterations per policy.
    tau: ``float``, default 4.0
        Time constant of the gradient descent.

    Returns
    ---------
    F: 1D ``numpy.ndarray``
        (Negative) variational free energy of every policy. Pruned policies have ``F == 0``.
    xn_pi: ``dict``
        Per-iteration belief traces of each live policy, as returned by ``run_mmp_gradient``.
    vn_pi: ``dict``
        Per-iteration mean-centred gradients of each live policy.
    """

    num_factors = len(x)
    horizon = policies.shape[1] + 1

    F = np.zeros(policies.shape[0])
    xn_pi, vn_pi = {}, {}

    for p_idx in live:
        # basic slicing: these are views into x, so updates land in place
        qs_seq = utils.obj_array(num_factors)
        for f in range(num_factors):
            qs_seq[f] = x[f][:, :horizon, p_idx]

        F[p_idx], _, xn_pi[p_idx], vn_pi[p_idx] = run_mmp_gradient(
            qs_seq,
            obs_seq,
            A,
            sB,
            rB,
            D,
            policies[p_idx],
            curr_t,
            num_iter=num_iter,
            tau=tau,
        )

    return F, xn_pi, vn_pi


def average_states_over_policies(x, q_pi, horizon=None):
    """
    BAYESIAN MODEL AVERAGING: Integrating State Beliefs Across Policies

    This function computes a expected posterior over hidden states with respect to the posterior over policies,
    also known as the 'Bayesian model average of states with respect to policies'.

    MATHEMATICAL FOUNDATION:
    For each state factor f:
    X[f][:, j] = Σ_π q(π) × x[f][:, j, π]

    EXAMPLE:
    Policy posterior: [0.25, 0.75]
    Belief in state 0 at j under each policy: 0.8 and 0.4
    BMA result: 0.25×0.8 + 0.75×0.4 = 0.5

    Parameters
    ----------
    x: ``numpy.ndarray`` of dtype object
        Policy-conditioned beliefs, ``x[f]`` of shape ``(num_states[f], T, num_policies)``.
    q_pi: 1D ``numpy.ndarray``
        Posterior over policies.
    horizon: ``int``, optional
        Number of leading time points to average. Defaults to all of them.

    Returns
    ---------
    X: ``numpy.ndarray`` of dtype object
        Bayesian model average, ``X[f]`` of shape ``(num_states[f], horizon)``.
    """

    X = utils.obj_array(len(x))
    for f, x_f in enumerate(x):
        stop = x_f.shape[1] if horizon is None else horizon
        X[f] = x_f[:, :stop, :].dot(q_pi)

    return X
