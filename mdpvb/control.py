#!/usr/bin/env python
# -*- coding: utf-8 -*-
# pylint: disable=no-member

""" Policy evaluation, precision and action selection

Expected free energy of policies, pruning of implausible policies, gradient descent on the
precision (rate) hyperparameter, and sampling of joint actions from the marginal posterior
over control states.
"""

import itertools
import logging

import numpy as np

from mdpvb import utils
from mdpvb.maths import spm_dot, spm_MDP_G, softmax, spm_log_single

logger = logging.getLogger(__name__)

PRUNE_THRESHOLD = -3.0 # nats below the best policy
QBETA_FLOOR = 1e-3 # keeps the precision finite and positive


def calc_expected_free_energy(x, A, log_C, policies, live, wA=None):
    """
    EXPECTED FREE ENERGY: Scoring Policies by What They Are Expected to Bring

    (Negative) expected free energy of each live policy, accumulated over the time points of
    the policy's horizon.

    THE BASIC IDEA:
    A good policy leads to outcomes the agent prefers, and to states whose outcomes are
    informative. With learnable likelihoods it also favours visiting state combinations whose
    mapping to outcomes is still poorly known.

    MATHEMATICAL FOUNDATION:
    Q_π = Σ_j [ G(A, x_πj) + Σ_g qo_g·ln C_g[:, j] - Σ_g wA_g·(qo_g ⊗ x_πj) ]
    Where:
    - qo_g = A_g·x_πj are the predicted outcomes
    - G is the Bayesian surprise about states (ambiguity)
    - qo_g·ln C_g is the expected log preference (risk)
    - the wA term is novelty about the likelihood parameters (only with ``wA``)

    Parameters
    ----------
    x: ``numpy.ndarray`` of dtype object
        Policy-conditioned beliefs, ``x[f]`` of shape ``(num_states[f], T, num_policies)``.
    A: ``numpy.ndarray`` of dtype object
        Likelihood arrays of the agent's model.
    log_C: ``numpy.ndarray`` of dtype object
        Log preferences, ``log_C[g]`` of shape ``(num_obs[g], T)``.
    policies: 3D ``numpy.ndarray``
        Policies of shape ``(num_policies, num_steps, num_factors)``.
    live: ``list`` of ``int``
        Indices of the policies to evaluate.
    wA: ``numpy.ndarray`` of dtype object, optional
        Novelty weights of the likelihood concentration parameters. When given, the expected
        information gain about the likelihood parameters enters the score.

    Returns
    -------
    Q: 1D ``numpy.ndarray``
        Negative expected free energies (zero for policies that are not live).
    """

    num_factors = len(x)
    horizon = policies.shape[1] + 1

    Q = np.zeros(policies.shape[0])
    xq = utils.obj_array(num_factors)
    for k in live:
        for j in range(horizon):
            for f in range(num_factors):
                xq[f] = x[f][:, j, k]

            # Bayesian surprise about states
            Q[k] += spm_MDP_G(A, xq)

            for g, A_g in enumerate(A):

                # prior preferences about outcomes
                qo = spm_dot(A_g, xq)
                Q[k] += qo.dot(log_C[g][:, j])

                # Bayesian surprise about parameters
                if wA is not None:
                    Q[k] -= float(spm_dot(wA[g], [qo] + list(xq)))

    return Q


def prune_policies(F, live, threshold=PRUNE_THRESHOLD):
    """
    Drops the policies whose free energy is more than ``-threshold`` nats below the best live
    policy. Policies exactly on the boundary are retained.
    """
    live = list(live)
    if len(live) == 0:
        return live
    best = max(F[k] for k in live)
    kept = [k for k in live if F[k] - best >= threshold]
    if len(kept) < len(live):
        logger.debug("pruned %d of %d policies", len(live) - len(kept), len(live))
    return kept


def update_precision(Q, F, log_E, live, qbeta, gamma, beta=1.0, num_iter=16, fixed_precision=False):
    """
    PRECISION AND POLICY POSTERIOR: How Much to Trust Expected Free Energy

    Joint updates of the posterior over policies and of the expected precision.

    THE BASIC IDEA:
    Precision (gamma) sets how sharply expected free energy shapes beliefs about policies.
    When the evidence (free energy) agrees with what the agent expected to do, precision
    rises; when it disagrees, precision falls and policy beliefs flatten.

    MATHEMATICAL FOUNDATION:
    q(π) = σ(ln E + gamma·Q + F)        (posterior)
    p(π) = σ(ln E + gamma·Q)            (prior)
    qbeta ← qbeta - (qbeta - beta + (q(π) - p(π))·Q) / 2,   gamma = 1 / qbeta
    The rate is held at or above ``QBETA_FLOOR``.

    Parameters
    ----------
    Q: 1D ``numpy.ndarray``
        Negative expected free energies of policies.
    F: 1D ``numpy.ndarray``
        Negative variational free energies of policies.
    log_E: 1D ``numpy.ndarray``
        Log prior over policies.
    live: ``list`` of ``int``
        Policies that survive pruning; the rest receive zero posterior probability.
    qbeta: ``float``
        Current rate parameter of the precision.
    gamma: ``float``
        Current expected precision (``1 / qbeta``).
    beta: ``float``, default 1.0
        Prior rate parameter.
    num_iter: ``int``, default 16
        Number of updates.
    fixed_precision: ``bool``, default ``False``
        When ``True`` the precision is held at ``1 / beta``.

    Returns
    -------
    q_pi: 1D ``numpy.ndarray``
        Posterior over policies after the final iteration.
    qbeta: ``float``
        Updated rate parameter.
    gamma: ``float``
        Updated expected precision.
    wn: 1D ``numpy.ndarray``
        Expected precision at each iteration.
    un: 2D ``numpy.ndarray``
        Posterior over policies at each iteration, of shape ``(num_policies, num_iter)``.
    """

    live = list(live)
    num_policies = len(Q)

    q_pi = np.zeros(num_policies)
    wn = np.zeros(num_iter)
    un = np.zeros((num_policies, num_iter))

    Q_live = Q[live]
    for i in range(num_iter):

        # posterior and prior beliefs about policies
        qu = softmax(log_E[live] + gamma * Q_live + F[live])
        pu = softmax(log_E[live] + gamma * Q_live)

        # precision with free energy gradients
        if fixed_precision:
            gamma = 1.0 / beta
        else:
            eg = (qu - pu).dot(Q_live)
            dFdg = qbeta - beta + eg
            qbeta = max(qbeta - dFdg / 2.0, QBETA_FLOOR)
            gamma = 1.0 / qbeta

        wn[i] = gamma
        un[live, i] = qu
        q_pi[live] = qu

    logger.debug("expected precision %.4f (rate %.4f)", gamma, qbeta)

    return q_pi, qbeta, gamma, wn, un


def get_joint_action_probabilities(q_pi, policies, num_controls, t):
    """
    Marginal posterior over joint actions at time ``t``: the probability of each policy is added
    to the combination of control states it prescribes at that time.

    Returns
    -------
    Pu: ``numpy.ndarray``
        Tensor of shape ``num_controls``.
    """
    Pu = np.zeros(num_controls)
    for p_idx, policy in enumerate(policies):
        Pu[tuple(policy[t])] += q_pi[p_idx]
    return Pu


def sample_joint_action(Pu, alpha=16.0, rng=None, action=None):
    """
    Samples a joint action from ``softmax(alpha * log(Pu))`` over the flattened action tensor.

    EXAMPLE:
    Pu = [[0.1, 0.4], [0.2, 0.3]] with alpha = 16 puts almost all of its mass on the joint
    action (0, 1): (0.4 / 0.3)^16 ≈ 100 times more likely than the runner-up.

    Parameters
    ----------
    Pu: ``numpy.ndarray``
        Marginal posterior over joint actions, of shape ``num_controls``.
    alpha: ``float``, default 16.0
        Action precision.
    rng: ``numpy.random.Generator``, ``int`` or ``None``
        Source of randomness.
    action: 1D ``numpy.ndarray``, optional
        Externally supplied action. Sampling is bypassed when given.

    Returns
    -------
    action: 1D ``numpy.ndarray``
        Selected control state of every factor.
    P: ``numpy.ndarray``
        Action probabilities, with the shape of ``Pu``.
    """

    P = softmax(alpha * spm_log_single(Pu.ravel())).reshape(Pu.shape)

    if action is None:
        idx = utils.sample(P, utils.get_rng(rng))
        action = np.array(np.unravel_index(idx, Pu.shape))
    else:
        action = np.asarray(action, dtype=int).ravel()

    return action, P


def update_moving_policies(policies, action, repertoire, t, T):
    """
    Rewrites the policies in moving-policy mode: step ``t`` of every policy becomes the selected
    action and the following steps (up to the last transition ``T - 2``) are filled from the
    default repertoire.

    Parameters
    ----------
    policies: 3D ``numpy.ndarray``
        Current policies, of shape ``(num_policies, num_steps, num_factors)``.
    action: 1D ``numpy.ndarray``
        Action selected at time ``t``.
    repertoire: 3D ``numpy.ndarray``
        Default action repertoire, of shape ``(num_policies, n, num_factors)``.
    t: ``int``
        Current time.
    T: ``int``
        Number of time steps of the trajectory.

    Returns
    -------
    policies: 3D ``numpy.ndarray``
        New policies (grown along the step axis where needed).
    """

    num_policies, num_steps, num_factors = policies.shape
    rows = [t + j for j in range(1, repertoire.shape[1] + 1) if t + j < T - 1]
    new_steps = max([num_steps, t + 1] + [r + 1 for r in rows])

    updated = np.zeros((num_policies, new_steps, num_factors), dtype=int)
    updated[:, :num_steps, :] = policies
    updated[:, t, :] = action
    for j, row in enumerate(rows):
        updated[:, row, :] = repertoire[:, j, :]

    return updated


def construct_policies(num_states, num_controls=None, policy_len=1, control_fac_idx=None):
    """
    Generate a ``list`` of policies. The returned array ``policies`` is a ``list`` that stores one policy per entry.
    A particular policy (``policies[i]``) has shape ``(num_timesteps, num_factors)``
    where ``num_timesteps`` is the temporal depth of the policy and ``num_factors`` is the number of control factors.

    Parameters
    ----------
    num_states: ``list`` of ``int``
        ``list`` of the dimensionalities of each hidden state factor
    num_controls: ``list`` of ``int``, default ``None``
        ``list`` of the dimensionalities of each control state factor. If ``None``, then is automatically computed as the dimensionality of each hidden state factor that is controllable
    policy_len: ``int``, default 1
        temporal depth ("planning horizon") of policies
    control_fac_idx: ``list`` of ``int``
        ``list`` of indices of the hidden state factors that are controllable (i.e. those state factors ``i`` where ``num_controls[i] > 1``)

    Returns
    ----------
    policies: ``list`` of 2D ``numpy.ndarray``
        ``list`` that stores each policy as a 2D array in ``policies[p_idx]``. Shape of ``policies[p_idx]``
        is ``(num_timesteps, num_factors)`` where ``num_timesteps`` is the temporal
        depth of the policy and ``num_factors`` is the number of control factors.
    """

    num_factors = len(num_states)
    if control_fac_idx is None:
        if num_controls is not None:
            control_fac_idx = [f for f, n_c in enumerate(num_controls) if n_c > 1]
        else:
            control_fac_idx = list(range(num_factors))

    if num_controls is None:
        num_controls = [num_states[c_idx] if c_idx in control_fac_idx else 1 for c_idx in range(num_factors)]

    x = num_controls * policy_len
    policies = list(itertools.product(*[list(range(i)) for i in x]))
    for pol_i in range(len(policies)):
        policies[pol_i] = np.array(policies[pol_i]).reshape(policy_len, num_factors)

    return policies
