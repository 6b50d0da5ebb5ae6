#!/usr/bin/env python
# -*- coding: utf-8 -*-

""" Agent Class

Runs one trajectory of active inference on a discrete POMDP and returns everything it produced.

"""

import logging
import time
import warnings
from dataclasses import dataclass, field
from typing import Any, List, Optional

import numpy as np

from mdpvb import inference, control, learning
from mdpvb import utils, maths
from mdpvb.model import GenerativeModel
from mdpvb.utils import MDPConfigError

logger = logging.getLogger(__name__)


@dataclass
class MDPResult:
    """Everything produced by one trajectory.

    Time axes are truncated to ``T``, the number of time steps actually run (smaller than the
    model's ``T`` after early termination).
    """

    T: int
    P: np.ndarray                 # action probabilities, shape (*num_controls, T - 1)
    x: np.ndarray                 # policy-conditioned beliefs, x[f] of shape (num_states[f], T, num_policies)
    X: np.ndarray                 # Bayesian model averages, X[f] of shape (num_states[f], T)
    q_pi: np.ndarray              # posterior over policies at each time step, (num_policies, T)
    policies: np.ndarray          # policies as they stood at the end of the trajectory
    s: np.ndarray                 # true states, (num_factors, T)
    o: np.ndarray                 # outcomes, (num_modalities, T)
    O: np.ndarray                 # outcome distributions used in estimation, O[g] of shape (num_obs[g], T)
    O_pred: np.ndarray            # posterior predictive outcome distributions, O_pred[g] of shape (num_obs[g], T)
    actions: np.ndarray           # selected actions, (num_factors, T - 1)
    w: np.ndarray                 # expected precision at the end of each time step, (T,)
    un: np.ndarray                # policy posterior at each iteration, (num_policies, T * num_iter)
    wn: np.ndarray                # expected precision at each iteration, (T * num_iter,)
    dn: np.ndarray                # phasic signal derived from wn
    xn: np.ndarray                # belief traces, xn[f] of shape (num_iter, num_states[f], T, T, num_policies)
    vn: np.ndarray                # gradient traces, same shapes as xn
    Xn: np.ndarray                # policy-averaged belief traces, Xn[f] of shape (num_iter, num_states[f], T, T)
    Vn: np.ndarray                # policy-averaged gradient traces
    rt: np.ndarray                # wall-clock time of each update, in seconds
    F: np.ndarray                 # free energy of policies, (num_policies, T)
    G: np.ndarray                 # expected free energy of policies, (num_policies, T)
    C: np.ndarray                 # log preferences used
    pA: Optional[np.ndarray] = None
    pB: Optional[np.ndarray] = None
    pD: Optional[np.ndarray] = None
    Fa: Optional[float] = None
    subordinate: List[Any] = field(default_factory=list)
    sub_model: Optional[GenerativeModel] = None


class _Trajectory(object):
    """
    Mutable state of one trajectory: beliefs, policies, precision, sampled states and outcomes,
    and the traces recorded along the way. Created afresh by every ``Agent.run()``.
    """

    def __init__(self, model, num_iter):
        T = model.T
        Np = model.num_policies
        self.T = T

        # policies are rewritten in moving-policy mode
        self.policies = model.policies.copy()
        self.live = list(range(Np))

        # posteriors over states
        self.x = utils.obj_array(model.num_factors)
        self.X = utils.obj_array(model.num_factors)
        self.xn = utils.obj_array(model.num_factors)
        self.vn = utils.obj_array(model.num_factors)
        for f, ns in enumerate(model.num_states):
            self.x[f] = np.zeros((ns, T, Np)) + 1.0 / ns
            self.x[f][:, 0, :] = model.D_model[f][:, None]
            self.X[f] = np.zeros((ns, T)) + 1.0 / ns
            self.X[f][:, 0] = model.D_model[f]
            self.xn[f] = np.zeros((num_iter, ns, T, T, Np))
            self.vn[f] = np.zeros((num_iter, ns, T, T, Np))

        # posteriors over policies, precision and action
        self.P = np.zeros(list(model.num_controls) + [max(T - 1, 0)])
        self.q_pi = np.zeros((Np, T))
        self.un = np.zeros((Np, T * num_iter))
        self.wn = np.zeros(T * num_iter)
        self.w = np.zeros(T)
        self.F = np.zeros((Np, T))
        self.G = np.zeros((Np, T))
        self.rt = np.zeros(T)

        # generative process
        self.s = np.zeros((model.num_factors, T), dtype=int)
        self.o = np.zeros((model.num_modalities, T), dtype=int)
        self.a = np.zeros((model.num_factors, max(T - 1, 0)), dtype=int)
        self.O = utils.obj_array_zeros([(no, T) for no in model.num_obs])
        self.O_pred = utils.obj_array_zeros([(no, T) for no in model.num_obs])
        self.obs_seq = []

        self.Fa = None
        self.reports = []
        self.sub_model = None

    def horizon(self):
        return self.policies.shape[1] + 1


class Agent(object):
    """
    Active Inference Agent Class

    Simulates one trajectory of active inference: at every time step the agent samples (or is
    given) true states and outcomes, updates its beliefs about hidden states under every policy,
    evaluates policies by their expected free energy, estimates its precision, and selects an
    action. Once the trajectory is complete, Dirichlet concentration parameters are accumulated.

    THE CYCLE AT EACH TIME STEP:
    ===========================

    1. GENERATIVE PROCESS:
       - true states follow the process transitions under the previous action
       - outcomes are sampled from the process likelihood
       - posterior predictive outcomes are formed from the averaged beliefs of the last step

    2. PERCEPTION (inference.update_posterior_states_vb):
       - gradient descent on variational free energy, separately for every live policy

    3. PLANNING (control.calc_expected_free_energy, control.update_precision):
       - expected free energy (ambiguity, risk and novelty) of every live policy
       - implausible policies are pruned
       - posterior over policies and expected precision are updated together

    4. ACTION (control.sample_joint_action):
       - softmax over the marginal posterior of joint actions

    5. LEARNING (learning.*, once, after the last time step)

    The basic usage is as follows:

    >>> model = GenerativeModel(A=A, B=B, C=C, D=D, policies=policies)
    >>> result = Agent(model).run(rng=0)
    >>> result.actions, result.X, result.q_pi

    Multi-trial learning is a loop that carries the concentration parameters forward:

    >>> model = model.copy(pA=result.pA, pB=result.pB, pD=result.pD)
    """

    def __init__(
        self,
        model,
        alpha=16.0,             # Action precision: inverse temperature of action selection
        beta=1.0,               # Prior rate of the expected precision over policies
        eta=1.0,                # Learning rate of the Dirichlet updates of pA and pB
        tau=4.0,                # Time constant of the belief-updating gradient descent
        chi=1 / 64,             # Residual uncertainty below which the trajectory ends (with factors_to_resolve)
        num_iter=16,            # Number of variational iterations
        fixed_precision=False,  # Hold the expected precision at 1 / beta
        subordinate=None,       # Subordinate inference link (see ``mdpvb.hierarchy``)
    ):

        if not isinstance(model, GenerativeModel):
            raise TypeError("model must be a GenerativeModel")
        if beta <= 0:
            raise MDPConfigError("beta", "prior rate of precision must be positive")
        if tau <= 0:
            raise MDPConfigError("tau", "time constant must be positive")
        if num_iter < 1:
            raise MDPConfigError("num_iter", "at least one variational iteration is required")

        self.model = model
        self.alpha = alpha
        self.beta = beta
        self.eta = eta
        self.tau = tau
        self.chi = chi
        self.num_iter = int(num_iter)
        self.subordinate = subordinate

        # moving policies are not pruned and use a fixed precision
        self.fixed_precision = fixed_precision
        if model.moving_policies and not fixed_precision:
            warnings.warn(
                "Moving policies are evaluated with a fixed precision.\
                Setting `fixed_precision` to True"
            )
            self.fixed_precision = True

    def run(self, s=None, o=None, u=None, rng=None):
        """
        Simulate one trajectory.

        Parameters
        ----------
        s: 2D array-like of ``int``, optional
            True hidden states, ``(num_factors, t_s)`` with ``t_s <= T``. Later states are sampled.
        o: 2D array-like of ``int``, optional
            Outcomes, ``(num_modalities, t_o)`` with ``t_o <= T``. Later outcomes are sampled.
        u: 2D array-like of ``int``, optional
            Actions, ``(num_factors, t_u)`` with ``t_u <= T - 1``. Later actions are sampled.
        rng: ``numpy.random.Generator``, ``int`` or ``None``
            Source of randomness (or a seed for one).

        Returns
        ----------
        result: ``MDPResult``
        """

        model = self.model
        rng = utils.get_rng(rng)
        s = self._check_override(s, "s", model.num_states, model.T)
        o = self._check_override(o, "o", model.num_obs, model.T)
        u = self._check_override(u, "u", model.num_controls, model.T - 1)

        traj = _Trajectory(model, self.num_iter)
        if self.subordinate is not None:
            traj.sub_model = self.subordinate.model

        qbeta = self.beta       # rate parameter
        gamma = 1.0 / qbeta     # expected precision
        T = model.T
        for t in range(model.T):

            self._generate(traj, t, s, o, rng)

            # outcome distributions used for estimation
            O_t = utils.obj_array(model.num_modalities)
            for g in range(model.num_modalities):
                O_t[g] = utils.onehot(traj.o[g, t], model.num_obs[g])

            if self.subordinate is not None:
                predicted = utils.obj_array(model.num_modalities)
                for g in range(model.num_modalities):
                    predicted[g] = traj.O_pred[g][:, t].copy()
                O_t, report, traj.sub_model = self.subordinate.step(traj.sub_model, t, predicted, traj.o[:, t].copy(), rng)
                traj.reports.append(report)

            traj.obs_seq.append(O_t)
            for g in range(model.num_modalities):
                traj.O[g][:, t] = O_t[g]

            tstart = time.perf_counter()

            # annealing reset
            for f in range(model.num_factors):
                traj.x[f] = maths.softmax(maths.spm_log_single(traj.x[f]) / 4)

            gamma, qbeta = self._infer(traj, t, gamma, qbeta)

            traj.rt[t] = time.perf_counter() - tstart

            # residual uncertainty in hierarchical schemes
            if model.factors_to_resolve is not None:
                H = sum(maths.neg_entropy(traj.X[f][:, 0]) for f in model.factors_to_resolve)
                if H > -self.chi:
                    logger.debug("no further uncertainty to resolve: stopping at t = %d (H = %.4f)", t, H)
                    T = t + 1

            if t < T - 1:
                self._act(traj, t, u, rng)
            else:
                break

        return self._finalise(traj, T)

    def _check_override(self, value, field, sizes, max_len):
        """ Validates a ground-truth override of shape ``(len(sizes), k)`` with ``k <= max_len`` """
        if value is None:
            return None
        value = np.asarray(value)
        if value.ndim == 1:
            value = value.reshape(-1, 1)
        if value.ndim != 2 or value.shape[0] != len(sizes):
            raise MDPConfigError(field, f"expected an array with {len(sizes)} rows, got shape {value.shape}")
        if value.shape[1] > max_len:
            raise MDPConfigError(field, f"at most {max_len} time steps may be supplied, got {value.shape[1]}")
        value = value.astype(int)
        for i, n in enumerate(sizes):
            if value.shape[1] > 0 and (value[i].min() < 0 or value[i].max() >= n):
                raise MDPConfigError(field, f"entries of row {i} must lie in [0, {n})")
        return value

    def _generate(self, traj, t, s, o, rng):
        """ True states and outcomes at ``t``, and the posterior predictive outcomes """
        model = self.model

        # sampled state, based on previous action
        for f in range(model.num_factors):
            if s is not None and t < s.shape[1]:
                traj.s[f, t] = s[f, t]
            else:
                if t > 0:
                    ps = model.B[f][:, traj.s[f, t - 1], traj.a[f, t - 1]]
                else:
                    ps = model.D[f]
                traj.s[f, t] = utils.sample(ps, rng)

        # sample outcome from true state if not specified
        ind = tuple(traj.s[:, t])
        for g in range(model.num_modalities):
            if o is not None and t < o.shape[1]:
                traj.o[g, t] = o[g, t]
            else:
                traj.o[g, t] = utils.sample(model.A[g][(slice(None),) + ind], rng)

        # posterior predictive density
        xq = utils.obj_array(model.num_factors)
        for f in range(model.num_factors):
            if t > 0:
                xq[f] = model.sB[f][:, :, traj.a[f, t - 1]].dot(traj.X[f][:, t - 1])
            else:
                xq[f] = traj.X[f][:, t]
        for g in range(model.num_modalities):
            traj.O_pred[g][:, t] = maths.spm_dot(model.A_model[g], xq)

    def _infer(self, traj, t, gamma, qbeta):
        """ Belief updating, policy evaluation and precision at time ``t`` """
        model = self.model
        Ni = self.num_iter
        S = traj.horizon()

        F, xn_pi, vn_pi = inference.update_posterior_states_vb(
            traj.x,
            traj.obs_seq,
            model.A_model,
            model.sB,
            model.rB,
            model.D_model,
            traj.policies,
            traj.live,
            t,
            num_iter=Ni,
            tau=self.tau,
        )
        for k in traj.live:
            for f in range(model.num_factors):
                traj.xn[f][:, :, :S, t, k] = xn_pi[k][f]
                traj.vn[f][:, :, :S, t, k] = vn_pi[k][f]

        Q = control.calc_expected_free_energy(traj.x, model.A_model, model.C, traj.policies, traj.live, wA=model.wA)

        # eliminate unlikely policies
        if not model.moving_policies:
            traj.live = control.prune_policies(F, traj.live)

        q_pi, qbeta, gamma, wn, un = control.update_precision(
            Q,
            F,
            model.log_E,
            traj.live,
            qbeta,
            gamma,
            beta=self.beta,
            num_iter=Ni,
            fixed_precision=self.fixed_precision,
        )
        traj.wn[t * Ni : (t + 1) * Ni] = wn
        traj.un[:, t * Ni : (t + 1) * Ni] = un
        traj.q_pi[:, t] = q_pi
        traj.w[t] = gamma

        # Bayesian model averaging of hidden states
        X = inference.average_states_over_policies(traj.x, q_pi, horizon=S)
        for f in range(model.num_factors):
            traj.X[f][:, :S] = X[f]

        traj.F[:, t] = F
        traj.G[:, t] = Q

        return gamma, qbeta

    def _act(self, traj, t, u, rng):
        """ Action selection at time ``t`` and, with moving policies, the rewrite of the policy set """
        model = self.model

        Pu = control.get_joint_action_probabilities(traj.q_pi[:, t], traj.policies, model.num_controls, t)
        action = u[:, t] if u is not None and t < u.shape[1] else None
        action, P = control.sample_joint_action(Pu, self.alpha, rng, action=action)
        traj.P[..., t] = P
        traj.a[:, t] = action

        if model.moving_policies:
            traj.policies = control.update_moving_policies(traj.policies, action, model.policies, t, model.T)

            # and reinitialise expectations about hidden states
            for f, ns in enumerate(model.num_states):
                traj.x[f][:] = 1.0 / ns

    def _finalise(self, traj, T):
        """ Learning, derived traces and assembly of the result over the first ``T`` time steps """
        model = self.model
        Ni = self.num_iter

        x = utils.obj_array(model.num_factors)
        X = utils.obj_array(model.num_factors)
        xn = utils.obj_array(model.num_factors)
        vn = utils.obj_array(model.num_factors)
        for f in range(model.num_factors):
            x[f] = traj.x[f][:, :T, :]
            X[f] = traj.X[f][:, :T]
            xn[f] = traj.xn[f][:, :, :T, :T, :]
            vn[f] = traj.vn[f][:, :, :T, :T, :]
        q_pi = traj.q_pi[:, :T]

        # learning
        pA, Fa = None, None
        if model.learn_A:
            pA = utils.obj_array_copy(model.pA)
            for t in range(T):
                X_t = utils.obj_array(model.num_factors)
                for f in range(model.num_factors):
                    X_t[f] = X[f][:, t]
                pA, Fa = learning.update_obs_likelihood_dirichlet(pA, traj.o[:, t], X_t, lr=self.eta, qA=model.qA)

        pB = None
        if model.learn_B:
            pB = utils.obj_array_copy(model.pB)
            for t in range(1, T):
                pB = learning.update_state_likelihood_dirichlet(pB, x, q_pi[:, t - 1], traj.policies, t, lr=self.eta)

        pD = None
        if model.learn_D:
            X0 = utils.obj_array(model.num_factors)
            for f in range(model.num_factors):
                X0[f] = X[f][:, 0]
            pD = learning.update_state_prior_dirichlet(model.pD, X0)

        # simulated dopamine responses
        wn = traj.wn[: T * Ni]
        dn = 8 * np.gradient(wn) + wn / 8 if wn.size > 1 else wn / 8

        # Bayesian model averaging of expected hidden states over policies
        Xn = utils.obj_array(model.num_factors)
        Vn = utils.obj_array(model.num_factors)
        for f in range(model.num_factors):
            Xn[f] = np.einsum("nsjik,ki->nsji", xn[f], q_pi)
            Vn[f] = np.einsum("nsjik,ki->nsji", vn[f], q_pi)

        # use penultimate beliefs about moving policies
        un = traj.un[:, : T * Ni]
        if model.moving_policies:
            q_pi = q_pi[:, :-1]
            un = un[:, :-Ni]

        O = utils.obj_array(model.num_modalities)
        O_pred = utils.obj_array(model.num_modalities)
        for g in range(model.num_modalities):
            O[g] = traj.O[g][:, :T]
            O_pred[g] = traj.O_pred[g][:, :T]

        return MDPResult(
            T=T,
            P=traj.P[..., : T - 1],
            x=x,
            X=X,
            q_pi=q_pi,
            policies=traj.policies,
            s=traj.s[:, :T],
            o=traj.o[:, :T],
            O=O,
            O_pred=O_pred,
            actions=traj.a[:, : T - 1],
            w=traj.w[:T],
            un=un,
            wn=wn,
            dn=dn,
            xn=xn,
            vn=vn,
            Xn=Xn,
            Vn=Vn,
            rt=traj.rt[:T],
            F=traj.F[:, :T],
            G=traj.G[:, :T],
            C=model.C,
            pA=pA,
            pB=pB,
            pD=pD,
            Fa=Fa,
            subordinate=traj.reports,
            sub_model=traj.sub_model,
        )
