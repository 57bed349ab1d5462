"""Semi-analytic engines integrating per-name conditional losses.

Given the common factor, names default independently. The semi-analytic
engine convolves each name's loss into a vector of loss buckets of width
``grid_size``, splitting a loss that falls between two buckets linearly
so the conditional mean is exact. The heterogeneous engine works on the
default count instead and assigns each count the conditional average
loss per default.
"""

import datetime
import logging
import math
from typing import Sequence

import numpy as np

from .analytic import count_distribution
from .basket import LossDistributionEngine
from .copula import FactorIntegration
from .correlation import CorrelationTarget
from .distribution import bucket_distribution, stack_atoms
from .recovery import recovery_model_for

logger = logging.getLogger(__name__)


def _shift(mass: np.ndarray, k: int) -> np.ndarray:
    """Move mass k buckets up; mass past the top stays in the top bucket."""
    buckets = mass.shape[1]
    out = np.zeros_like(mass)
    if k >= buckets:
        out[:, -1] = mass.sum(axis=1)
        return out
    out[:, k:] = mass[:, :buckets - k]
    if k > 0:
        out[:, -1] += mass[:, buckets - k:].sum(axis=1)
    return out


def convolve_outcomes(pmf: np.ndarray, outcomes: Sequence) -> np.ndarray:
    """Add one name to a conditional bucket distribution.

    Args:
        pmf: Current distribution, shape (nodes, buckets)
        outcomes: (probability, size) pairs; probability of shape (nodes,),
            size in buckets, scalar or shape (nodes,). The remaining
            probability leaves the distribution unchanged.

    Returns:
        Updated distribution
    """
    stay = np.ones(pmf.shape[0])
    out = np.zeros_like(pmf)
    for prob, size in outcomes:
        prob = np.asarray(prob, dtype=float)
        stay = stay - prob
        size = np.broadcast_to(np.asarray(size, dtype=float), prob.shape)
        k = np.floor(size).astype(int)
        frac = size - k
        moved = pmf * prob[:, None]
        for kk in np.unique(k):
            rows = k == kk
            part = moved[rows]
            f = frac[rows][:, None]
            out[rows] += _shift(part, kk) * (1.0 - f) + _shift(part, kk + 1) * f
    out += pmf * np.clip(stay, 0.0, 1.0)[:, None]
    return out


class SemiAnalyticEngine(LossDistributionEngine):
    """Per-name loss convolution integrated over the factor.

    Supports heterogeneous principals, recoveries and correlations,
    multi-factor Gaussian loadings, early maturities, refinance curves
    (when ``check_refinance`` is set) and factor-correlated recoveries.
    """

    target = CorrelationTarget.FACTOR
    supports_recovery_correlation = True

    def __init__(self, *args, check_refinance: bool = True, **kwargs):
        self.check_refinance = check_refinance
        super().__init__(*args, **kwargs)

    def _recovery_nodes(self, integ: FactorIntegration, date: datetime.date) -> np.ndarray:
        recovery = recovery_model_for(self.recovery_correlation)
        r = self.pool.recovery_rates(date)
        if recovery.is_fixed:
            return np.broadcast_to(r, integ.probabilities.shape)
        return recovery.conditional(r, integ.factor)

    def _event_probabilities(self, date):
        default, prepay = super()._event_probabilities(date)
        if not self.check_refinance:
            for i, name in enumerate(self.pool):
                if name.refinance_curve is not None and (
                        name.early_maturity is None or name.early_maturity >= date):
                    default[i] = name.survival_curve.default_probability(date, self.portfolio_start)
                    prepay[i] = 0.0
        return default, prepay

    def _compute(self, dates):
        g = self.grid_size
        buckets = int(math.ceil(1.0 / g - 1e-9)) + 2
        w = self.pool.weights
        loss_pmf = np.zeros((len(dates), buckets))
        amort_pmf = np.zeros((len(dates), buckets))
        track_amortization = not self.no_amortization
        for j, date in enumerate(dates):
            pd_, prepay = self._event_probabilities(date)
            integ = self._integration(pd_, date)
            p = integ.probabilities
            r_nodes = self._recovery_nodes(integ, date)
            nodes = integ.node_count
            loss = np.zeros((nodes, buckets))
            loss[:, 0] = 1.0
            amort = loss.copy()
            for i in range(self.count):
                if w[i] <= 0:
                    continue
                loss = convolve_outcomes(loss, [(p[:, i], w[i] * (1.0 - r_nodes[:, i]) / g)])
                if track_amortization:
                    # prepayment only happens to names that have not defaulted
                    q = prepay[i] * (1.0 - p[:, i]) / max(1.0 - pd_[i], 1e-14)
                    q = np.minimum(q, 1.0 - p[:, i])
                    amort = convolve_outcomes(
                        amort, [(p[:, i], w[i] * r_nodes[:, i] / g), (q, w[i] / g)])
            loss_pmf[j] = integ.weights @ loss
            if track_amortization:
                amort_pmf[j] = integ.weights @ amort
        loss_dist = bucket_distribution(dates, g, loss_pmf)
        amort_dist = bucket_distribution(dates, g, amort_pmf) if track_amortization else None
        return loss_dist, amort_dist


class HeterogeneousEngine(LossDistributionEngine):
    """Default count recursion with conditional average loss per default.

    Exact in the number of defaults for heterogeneous default
    probabilities; names with different losses given default are
    represented by their probability-weighted average at each node.
    """

    target = CorrelationTarget.FACTOR

    def _compute(self, dates):
        n = self.count
        counts = np.arange(n + 1)
        w = self.pool.weights
        loss_levels, amort_levels, probs = [], [], []
        for date in dates:
            pd_, prepay = self._event_probabilities(date)
            integ = self._integration(pd_, date)
            p = integ.probabilities
            r = self.pool.recovery_rates(date)
            dist = count_distribution(p)
            expected_count = np.maximum(p.sum(axis=1), 1e-300)
            # average loss and recovery per default at each node, in pool fractions
            unit_loss = (p @ (w * (1.0 - r))) / expected_count
            unit_amort = (p @ (w * r)) / expected_count
            unit_loss = np.where(p.sum(axis=1) > 0, unit_loss, w @ (1.0 - r) / n)
            unit_amort = np.where(p.sum(axis=1) > 0, unit_amort, w @ r / n)
            loss_levels.append(np.clip(np.outer(unit_loss, counts), 0.0, 1.0).ravel())
            amort_levels.append(np.clip(np.outer(unit_amort, counts) + prepay @ w, 0.0, 1.0).ravel())
            probs.append((integ.weights[:, None] * dist).ravel())
        loss = stack_atoms(dates, loss_levels, probs)
        amort = None if self.no_amortization else stack_atoms(dates, amort_levels, probs)
        return loss, amort

