#!/usr/bin/env python
# -*- coding: utf-8 -*-

""" Subordinate inference

A subordinate (lower-level) model is inverted once per time step of a parent trajectory. The
parent's posterior predictive outcomes set the subordinate's empirical priors and its prior
precision; the precision the subordinate ends up with is read back as evidence that reweights
the parent's predicted outcomes before they are used for state estimation.

The link is a pure function of its inputs: the subordinate model is passed in and the updated
one (with learned initial state concentration parameters) is passed back.
"""

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from mdpvb import utils
from mdpvb.agent import Agent
from mdpvb.maths import spm_norm
from mdpvb.model import GenerativeModel
from mdpvb.utils import MDPConfigError

logger = logging.getLogger(__name__)

PRECISION_FLOOR = 0.03
EVIDENCE_GAIN = 40.0


@dataclass
class SubordinateReport:
    """Statistics of one subordinate inversion."""

    t: int
    beta_sub: float        # prior rate given to the subordinate
    beta_po: float         # posterior rate read back from the subordinate
    weights: np.ndarray    # normalised evidence weights of the two valence levels
    result: Any            # the subordinate's ``MDPResult``


class SubordinateLink(object):
    """
    Evidence reweighting through a subordinate model.

    A single precision channel is carried: the valence modality sets the subordinate's prior rate and
    is the only parent outcome that gets reweighted. A second, physiological channel (a separate
    rate read from an interoceptive modality) is not modelled.

    Parameters
    ----------
    model: ``GenerativeModel``
        Subordinate model. It must carry initial state concentration parameters ``pD``.
    valence_modality: ``int``
        Parent modality whose first two predicted levels set the subordinate's prior rate
        (``beta_pos * p[0] + beta_neg * p[1]``) and are reweighted by the returned evidence.
    prior_modality: ``int``
        Parent modality whose predicted distribution rescales the subordinate's ``pD[prior_factor]``.
    prior_factor: ``int``
        Subordinate factor whose initial state concentration parameters are rescaled.
    beta_pos, beta_neg: ``float``
        Prior rates associated with the two valence levels.
    initial_states: callable, optional
        ``initial_states(t, realized)`` returns the subordinate's true initial state of every factor,
        given the parent's realised outcomes at ``t``. Sampled when omitted.
    pD_totals: ``dict``, optional
        ``{factor: total}``: learned ``pD[factor]`` is rescaled to sum to ``total`` before the
        next call.
    tau: ``float``, default 12.0
        Time constant of the subordinate's belief updating.
    floor: ``float``, default 0.03
        Lower bound of derived precision rates.
    gain: ``float``, default 40.0
        Scale of the log-evidence in the reweighting.
    agent_kwargs: ``dict``, optional
        Further keyword arguments of the subordinate ``Agent``.
    """

    def __init__(
        self,
        model,
        valence_modality,
        prior_modality,
        prior_factor,
        beta_pos,
        beta_neg,
        initial_states=None,
        pD_totals=None,
        tau=12.0,
        floor=PRECISION_FLOOR,
        gain=EVIDENCE_GAIN,
        agent_kwargs=None,
    ):
        if not isinstance(model, GenerativeModel):
            raise TypeError("model must be a GenerativeModel")
        if not model.learn_D:
            raise MDPConfigError("pD", "the subordinate model needs initial state concentration parameters")
        if prior_factor < 0 or prior_factor >= model.num_factors:
            raise MDPConfigError("prior_factor", f"must lie in [0, {model.num_factors})")
        if beta_pos <= 0 or beta_neg <= 0:
            raise MDPConfigError("beta_pos", "prior rates must be positive")

        self.model = model
        self.valence_modality = valence_modality
        self.prior_modality = prior_modality
        self.prior_factor = prior_factor
        self.beta_pos = beta_pos
        self.beta_neg = beta_neg
        self.initial_states = initial_states
        self.pD_totals = pD_totals or {}
        self.tau = tau
        self.floor = floor
        self.gain = gain
        self.agent_kwargs = agent_kwargs or {}

    def step(self, sub_model, t, predicted, realized, rng=None):
        """
        Invert the subordinate model once and reweight the parent's predicted outcomes.

        Parameters
        ----------
        sub_model: ``GenerativeModel``
            Current subordinate model.
        t: ``int``
            Parent time step.
        predicted: ``numpy.ndarray`` of dtype object
            Parent's posterior predictive outcome distributions at ``t``.
        realized: 1D ``numpy.ndarray``
            Parent's realised outcomes at ``t``.
        rng: ``numpy.random.Generator``, ``int`` or ``None``

        Returns
        -------
        outcomes: ``numpy.ndarray`` of dtype object
            Outcome distributions for the parent's state estimation at ``t``.
        report: ``SubordinateReport``
        next_sub_model: ``GenerativeModel``
            Subordinate model carrying the learned ``pD`` forward.
        """

        # empirical priors
        pD = utils.obj_array_copy(sub_model.pD)
        p_prior = np.asarray(predicted[self.prior_modality], dtype=float)
        n = min(pD[self.prior_factor].size, p_prior.size)
        pD[self.prior_factor][:n] = pD[self.prior_factor][:n] * p_prior[:n]

        p_valence = predicted[self.valence_modality]
        beta_sub = max(self.beta_pos * p_valence[0] + self.beta_neg * p_valence[1], self.floor)

        s = None
        if self.initial_states is not None:
            s = np.asarray(self.initial_states(t, realized), dtype=int).reshape(-1, 1)

        run_model = sub_model.copy(pD=pD)
        result = Agent(run_model, beta=beta_sub, tau=self.tau, **self.agent_kwargs).run(s=s, rng=rng)

        # evidence from the change in precision
        beta_po = 1.0 / result.w[0]
        levels = np.array([self.beta_pos, self.beta_neg], dtype=float)
        levels_po = np.maximum(levels + beta_po - beta_sub, self.floor)
        weights = np.exp(
            -self.gain * (-np.log(levels_po) + np.log(levels) + np.log(beta_po) - np.log(beta_sub))
        )

        outcomes = utils.obj_array_copy(predicted)
        outcomes[self.valence_modality][:2] = outcomes[self.valence_modality][:2] * weights
        outcomes[self.valence_modality] = spm_norm(outcomes[self.valence_modality])

        logger.debug("subordinate at t = %d: beta_sub %.4f, beta_po %.4f", t, beta_sub, beta_po)

        # carry learned initial state parameters forward
        next_pD = utils.obj_array_copy(result.pD)
        for f, total in self.pD_totals.items():
            next_pD[f] = total * next_pD[f] / next_pD[f].sum()
        next_sub_model = sub_model.copy(pD=next_pD)

        report = SubordinateReport(
            t=t,
            beta_sub=float(beta_sub),
            beta_po=float(beta_po),
            weights=spm_norm(weights),
            result=result,
        )
        return outcomes, report, next_sub_model
