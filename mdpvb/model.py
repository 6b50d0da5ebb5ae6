#!/usr/bin/env python
# -*- coding: utf-8 -*-

""" Generative model store

Holds the definition of a discrete POMDP (likelihoods, transitions, preferences, priors,
policies and optional Dirichlet concentration parameters), validates it, and derives the
normalised working copies that the variational scheme reads during a trajectory.
"""

import numpy as np

from mdpvb import utils, maths
from mdpvb.utils import MDPConfigError


class GenerativeModel(object):
    """
    Generative model of a discrete-time, discrete-state partially observed MDP.

    The "process" arrays (``A``, ``B``, ``D``) generate true states and outcomes. The "model"
    arrays (``A_model``, ``sB``, ``rB``, ``D_model``) are what the agent believes; they are derived
    from the concentration parameters ``pA``, ``pB``, ``pD`` when these are given, and from the
    process arrays otherwise.

    >>> model = GenerativeModel(A=A, B=B, C=C, D=D, policies=policies)
    >>> result = Agent(model).run(rng=0)

    Parameters
    ----------
    A: ``numpy.ndarray`` or ``list`` of ``numpy.ndarray``
        Likelihood arrays. ``A[g]`` has shape ``(num_obs[g], num_states[0], ..., num_states[-1])``.
    B: ``numpy.ndarray`` or ``list`` of ``numpy.ndarray``
        Transition arrays. ``B[f]`` has shape ``(num_states[f], num_states[f], num_controls[f])``.
    C: ``list`` of ``numpy.ndarray``, optional
        Prior preferences (unnormalised log probabilities) over outcomes, either static
        (``(num_obs[g],)`` or ``(num_obs[g], 1)``) or per time step (``(num_obs[g], T')`` with ``T' >= T``).
    D: ``list`` of ``numpy.ndarray``, optional
        Prior over initial hidden states, one vector per factor. Defaults to uniform.
    E: 1D ``numpy.ndarray``, optional
        Prior over policies. Defaults to uniform.
    pA, pB, pD: ``list`` of ``numpy.ndarray``, optional
        Dirichlet concentration parameters with the shapes of ``A``, ``B`` and ``D``. Their presence
        switches on learning of the corresponding distribution.
    policies: ``numpy.ndarray`` or ``list`` of 2D ``numpy.ndarray``
        Allowable policies, each of shape ``(num_steps, num_factors)``.
    actions: ``numpy.ndarray`` or ``list`` of 2D ``numpy.ndarray``
        Allowable actions for moving-policy mode (same format as ``policies``). Exactly one of
        ``policies`` and ``actions`` must be given.
    T: ``int``, optional
        Number of time steps. Defaults to ``num_steps + 1`` with ``policies``; required with ``actions``.
    factors_to_resolve: ``list`` of ``int``, optional
        Hidden state factors whose residual uncertainty about the initial state can end a
        trajectory early.
    """

    def __init__(
        self,
        A=None,
        B=None,
        C=None,
        D=None,
        E=None,
        pA=None,
        pB=None,
        pD=None,
        policies=None,
        actions=None,
        T=None,
        factors_to_resolve=None,
    ):

        ### Likelihood and transition arrays (required) ###

        if A is None:
            raise MDPConfigError("A", "a likelihood array is required")
        if B is None:
            raise MDPConfigError("B", "a transition array is required")
        if not isinstance(A, (np.ndarray, list, tuple)):
            raise TypeError("A matrix must be a numpy array")
        if not isinstance(B, (np.ndarray, list, tuple)):
            raise TypeError("B matrix must be a numpy array")

        B = utils.obj_array_copy(utils.to_obj_array(B))
        for f, B_f in enumerate(B):
            if B_f.ndim == 2:
                B[f] = B_f[:, :, None]
            elif B_f.ndim != 3:
                raise MDPConfigError("B", f"B[{f}] must have 3 dimensions (next state, previous state, control)")
            if B[f].shape[0] != B[f].shape[1]:
                raise MDPConfigError("B", f"B[{f}] must be square over its first two dimensions, got {B[f].shape}")

        self.num_states = [B_f.shape[0] for B_f in B]
        self.num_controls = [B_f.shape[2] for B_f in B]
        self.num_factors = len(self.num_states)

        A = utils.obj_array_copy(utils.to_obj_array(A))
        for g, A_g in enumerate(A):
            if A_g.shape[1:] != tuple(self.num_states):
                raise MDPConfigError(
                    "A", f"trailing dimensions of A[{g}] {A_g.shape[1:]} must match the hidden state dimensions {tuple(self.num_states)}"
                )
        self.num_obs = [A_g.shape[0] for A_g in A]
        self.num_modalities = len(self.num_obs)

        ### Policies ###

        if (policies is None) == (actions is None):
            raise MDPConfigError("policies", "exactly one of `policies` or `actions` (moving-policy repertoire) is required")

        self.moving_policies = actions is not None
        field = "actions" if self.moving_policies else "policies"
        try:
            V = utils.to_policy_array(actions if self.moving_policies else policies, self.num_factors)
        except ValueError as e:
            if isinstance(e, MDPConfigError):
                raise
            raise MDPConfigError(field, f"policies must share one shape (num_steps, num_factors): {e}") from e

        for f in range(self.num_factors):
            if V[..., f].min() < 0 or V[..., f].max() >= self.num_controls[f]:
                raise MDPConfigError(field, f"actions for factor {f} must lie in [0, {self.num_controls[f]})")

        if self.moving_policies:
            if T is None:
                raise MDPConfigError("T", "the number of time steps is required in moving-policy mode")
        else:
            if T is None:
                T = V.shape[1] + 1
            elif T > V.shape[1] + 1:
                raise MDPConfigError("T", f"policies cover {V.shape[1]} transitions, which is fewer than T - 1 = {T - 1}")
        if T < 1:
            raise MDPConfigError("T", "at least one time step is required")
        self.T = int(T)

        # ensure policy length is less than the number of updates
        self.policies = V[:, : self.T - 1, :]
        self.num_policies = self.policies.shape[0]

        ### Concentration parameters (optional) ###

        self.pA = self._check_concentration(pA, A, "pA")
        self.pB = self._check_concentration(pB, B, "pB")
        if self.pB is not None:
            for f, pB_f in enumerate(self.pB):
                if pB_f.ndim == 2:
                    self.pB[f] = pB_f[:, :, None]

        ### Process (true) arrays ###

        self.A = utils.obj_array(self.num_modalities)
        for g, A_g in enumerate(A):
            self.A[g] = maths.spm_norm(A_g)

        self.B = utils.obj_array(self.num_factors)
        for f, B_f in enumerate(B):
            self.B[f] = maths.spm_norm(B_f)

        if D is not None:
            D = utils.to_obj_array(D)
            if len(D) != self.num_factors:
                raise MDPConfigError("D", f"number of sub-arrays must equal the number of hidden state factors: {self.num_factors}")
            for f, D_f in enumerate(D):
                if D_f.size != self.num_states[f]:
                    raise MDPConfigError("D", f"D[{f}] must have {self.num_states[f]} entries")

        if pD is not None:
            pD = utils.to_obj_array(pD)
            if len(pD) != self.num_factors:
                raise MDPConfigError("pD", f"number of sub-arrays must equal the number of hidden state factors: {self.num_factors}")
            for f, pD_f in enumerate(pD):
                if pD_f.size != self.num_states[f]:
                    raise MDPConfigError("pD", f"pD[{f}] must have {self.num_states[f]} entries")
                if np.any(pD_f < 0):
                    raise MDPConfigError("pD", f"concentration parameters of pD[{f}] must be non-negative")
            self.pD = utils.obj_array(self.num_factors)
            for f, pD_f in enumerate(pD):
                self.pD[f] = pD_f.astype(float).ravel().copy()
        else:
            self.pD = None

        self.D = utils.obj_array(self.num_factors)
        for f in range(self.num_factors):
            if D is not None:
                self.D[f] = maths.spm_norm(D[f].ravel())
            elif self.pD is not None:
                self.D[f] = maths.spm_norm(self.pD[f])
            else:
                self.D[f] = maths.spm_norm(np.ones(self.num_states[f]))

        ### Prior over policies ###

        if E is not None:
            E = np.asarray(E, dtype=float).ravel()
            if E.size != self.num_policies:
                raise MDPConfigError("E", f"length of E must be equal to number of policies: {self.num_policies}")
            self.E = maths.spm_norm(E)
        else:
            self.E = maths.spm_norm(np.ones(self.num_policies))
        self.log_E = maths.spm_log_single(self.E)

        ### Prior preferences ###

        self.C = self._construct_log_preferences(C)

        ### Hierarchical early termination ###

        if factors_to_resolve is not None:
            factors_to_resolve = list(factors_to_resolve)
            if any(f < 0 or f >= self.num_factors for f in factors_to_resolve):
                raise MDPConfigError("factors_to_resolve", f"factor indices must lie in [0, {self.num_factors})")
        self.factors_to_resolve = factors_to_resolve

        self.derive_working_arrays()

    @property
    def learn_A(self):
        return self.pA is not None

    @property
    def learn_B(self):
        return self.pB is not None

    @property
    def learn_D(self):
        return self.pD is not None

    def _check_concentration(self, p, reference, field):
        """ Validates concentration parameters against the shapes of the arrays they parameterise """
        if p is None:
            return None
        p = utils.obj_array_copy(utils.to_obj_array(p))
        if len(p) != len(reference):
            raise MDPConfigError(field, f"expected {len(reference)} sub-arrays, got {len(p)}")
        for i, (p_i, ref_i) in enumerate(zip(p, reference)):
            if p_i.shape != ref_i.shape and not (field == "pB" and p_i.shape == ref_i.shape[:2] and ref_i.shape[2] == 1):
                raise MDPConfigError(field, f"{field}[{i}] has shape {p_i.shape}, expected {ref_i.shape}")
            if np.any(p_i < 0):
                raise MDPConfigError(field, f"concentration parameters of {field}[{i}] must be non-negative")
        return p

    def _construct_log_preferences(self, C):
        """
        Returns ``log(softmax(C))`` for each modality, broadcast to one column per time step.
        A missing ``C`` means flat preferences.
        """
        log_C = utils.obj_array(self.num_modalities)
        self._C_raw = utils.obj_array(self.num_modalities)
        if C is not None:
            C = utils.to_obj_array(C)
            if len(C) != self.num_modalities:
                raise MDPConfigError("C", f"number of sub-arrays must be equal to number of observation modalities: {self.num_modalities}")

        for g in range(self.num_modalities):
            if C is None:
                C_g = np.zeros((self.num_obs[g], 1))
            else:
                C_g = C[g].reshape(C[g].shape[0], -1)
                if C_g.shape[0] != self.num_obs[g]:
                    raise MDPConfigError("C", f"C[{g}] must have {self.num_obs[g]} rows")

            self._C_raw[g] = C_g.astype(float).copy()

            # assume constant preferences if only one column is specified
            if C_g.shape[1] == 1:
                C_g = np.tile(C_g, (1, self.T))
            elif C_g.shape[1] < self.T:
                raise MDPConfigError("C", f"C[{g}] has {C_g.shape[1]} columns; needs 1 or at least T = {self.T}")

            log_C[g] = maths.spm_log_single(maths.softmax(C_g[:, : self.T]))
        return log_C

    def derive_working_arrays(self):
        """
        (Re)computes the arrays used during inference from the current concentration parameters
        (or from the process arrays where no concentration parameters are given).
        """

        # likelihood: expected distribution, digamma expectation and novelty weights
        self.A_model = utils.obj_array(self.num_modalities)
        self.qA = None
        self.wA = None
        if self.learn_A:
            self.qA = utils.obj_array(self.num_modalities)
            self.wA = utils.obj_array(self.num_modalities)
        for g in range(self.num_modalities):
            if self.learn_A:
                self.A_model[g] = maths.spm_norm(self.pA[g])
                self.qA[g] = maths.spm_psi(self.pA[g] + 1 / 16)
                self.wA[g] = maths.spm_wnorm(self.pA[g])
            else:
                self.A_model[g] = self.A[g]

        # transitions: forward (column-normalised) and backward (row-normalised, transposed)
        self.sB = utils.obj_array(self.num_factors)
        self.rB = utils.obj_array(self.num_factors)
        for f in range(self.num_factors):
            source = self.pB[f] if self.learn_B else self.B[f]
            self.sB[f] = np.zeros_like(source, dtype=float)
            self.rB[f] = np.zeros_like(source, dtype=float)
            for u in range(self.num_controls[f]):
                self.sB[f][:, :, u] = maths.spm_norm(source[:, :, u] + maths.P0_VAL)
                self.rB[f][:, :, u] = maths.spm_back(source[:, :, u] + maths.P0_VAL).T

        # initial states
        self.D_model = utils.obj_array(self.num_factors)
        for f in range(self.num_factors):
            self.D_model[f] = maths.spm_norm(self.pD[f]) if self.learn_D else self.D[f]

    def copy(self, **overrides):
        """
        Returns a new model with the same definition, with any constructor argument replaced by
        ``overrides`` (e.g. learned concentration parameters carried into a subsequent trajectory).
        """
        kwargs = dict(
            A=utils.obj_array_copy(self.A),
            B=utils.obj_array_copy(self.B),
            C=self._raw_preferences(),
            D=utils.obj_array_copy(self.D),
            E=self.E.copy(),
            pA=utils.obj_array_copy(self.pA),
            pB=utils.obj_array_copy(self.pB),
            pD=utils.obj_array_copy(self.pD),
            T=self.T,
            factors_to_resolve=self.factors_to_resolve,
        )
        if self.moving_policies:
            kwargs["actions"] = self.policies.copy()
        else:
            kwargs["policies"] = self.policies.copy()
        kwargs.update(overrides)
        return GenerativeModel(**kwargs)

    def _raw_preferences(self):
        # static preferences stay a single column so that T can be overridden
        return utils.obj_array_copy(self._C_raw)
