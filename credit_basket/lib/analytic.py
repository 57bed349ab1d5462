"""Large pool, uniform and homogeneous basket engines.

All three integrate over a single common factor. They trade the
per-name detail of the semi-analytic engine for speed.
"""

import datetime
import logging

import numpy as np
from scipy.stats import binom

from .basket import LossDistributionEngine
from .correlation import CorrelationTarget, average_correlation
from .distribution import LossDistribution, stack_atoms
from .recovery import recovery_model_for

logger = logging.getLogger(__name__)


def count_distribution(probabilities: np.ndarray) -> np.ndarray:
    """Distribution of the number of defaults given per-name probabilities.

    Args:
        probabilities: Conditional default probabilities, shape (nodes, names)

    Returns:
        Array of shape (nodes, names + 1); column k is P(k defaults)
    """
    nodes, n = probabilities.shape
    dist = np.zeros((nodes, n + 1))
    dist[:, 0] = 1.0
    for i in range(n):
        p = probabilities[:, i:i + 1]
        shifted = np.zeros_like(dist)
        shifted[:, 1:] = dist[:, :-1]
        dist = dist * (1.0 - p) + shifted * p
    return dist


class _SingleFactorEngine(LossDistributionEngine):
    """Engines summarising the pool by one correlation and one recovery."""

    target = CorrelationTarget.SINGLE_FACTOR

    def _pool_correlation(self, date: datetime.date) -> float:
        return average_correlation(self.correlation, self.pool.weights, date)


class LargePoolEngine(_SingleFactorEngine):
    """Infinitely granular pool.

    Given the factor the pool loss is deterministic,
    L(m) = sum_i w_i (1 - R_i) p_i(m), so the distribution has one atom
    per quadrature node.
    """

    supports_recovery_correlation = True

    def _compute(self, dates):
        n_dates = len(dates)
        w = self.pool.weights
        recovery = recovery_model_for(self.recovery_correlation)
        loss_levels, amort_levels, probs = [], [], []
        for date in dates:
            pd_, prepay = self._event_probabilities(date)
            rho = self._pool_correlation(date)
            integ = self._copula.integrate(pd_, np.full(self.count, np.sqrt(rho)),
                                           self.integration_points_first,
                                           self.integration_points_second)
            r = self.pool.recovery_rates(date)
            if recovery.is_fixed:
                r_nodes = np.broadcast_to(r, integ.probabilities.shape)
            else:
                r_nodes = recovery.conditional(r, integ.factor)
            p = integ.probabilities
            loss_levels.append(np.clip((p * (1.0 - r_nodes)) @ w, 0.0, 1.0))
            amort_levels.append(np.clip((p * r_nodes) @ w + prepay @ w, 0.0, 1.0))
            probs.append(integ.weights)
        loss = stack_atoms(dates, loss_levels, probs)
        amort = None if self.no_amortization else stack_atoms(dates, amort_levels, probs)
        return loss, amort


class UniformEngine(_SingleFactorEngine):
    """Pool of identical names.

    Names share the principal-weighted average default probability,
    recovery and correlation; the default count is binomial given the
    factor.
    """

    def _compute(self, dates):
        n = self.count
        w = self.pool.weights
        counts = np.arange(n + 1)
        loss_p, amort_levels, loss_levels = [], [], []
        for date in dates:
            pd_, prepay = self._event_probabilities(date)
            p_bar = float(w @ pd_)
            r_bar = float(w @ self.pool.recovery_rates(date))
            rho = self._pool_correlation(date)
            integ = self._copula.integrate(np.array([p_bar]), np.array([np.sqrt(rho)]),
                                           self.integration_points_first,
                                           self.integration_points_second)
            pk = binom.pmf(counts[None, :], n, integ.probabilities[:, 0][:, None])
            loss_p.append(integ.weights @ pk)
            loss_levels.append(counts * (1.0 - r_bar) / n)
            amort_levels.append(np.clip(counts * r_bar / n + float(w @ prepay), 0.0, 1.0))
        probs = np.array(loss_p)
        loss = LossDistribution(dates, np.array(loss_levels), probs)
        amort = None if self.no_amortization else LossDistribution(dates, np.array(amort_levels), probs)
        return loss, amort


class HomogeneousEngine(LossDistributionEngine):
    """Names with equal principal and recovery but their own default curves.

    The default count given the factor follows from an exact recursion
    over the names; each default costs the same loss.
    """

    target = CorrelationTarget.FACTOR

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        principals = self.pool.principals
        recoveries = self.pool.recovery_rates()
        if not (np.allclose(principals, principals[0]) and np.allclose(recoveries, recoveries[0])):
            raise ValueError("HomogeneousEngine requires equal principals and recoveries")

    def _compute(self, dates):
        n = self.count
        counts = np.arange(n + 1)
        probs, loss_levels, amort_levels = [], [], []
        for date in dates:
            pd_, prepay = self._event_probabilities(date)
            r = float(self.pool.recovery_rates(date)[0])
            integ = self._integration(pd_, date)
            probs.append(integ.weights @ count_distribution(integ.probabilities))
            loss_levels.append(counts * (1.0 - r) / n)
            amort_levels.append(np.clip(counts * r / n + float(np.mean(prepay)), 0.0, 1.0))
        probs = np.array(probs)
        loss = LossDistribution(dates, np.array(loss_levels), probs)
        amort = None if self.no_amortization else LossDistribution(dates, np.array(amort_levels), probs)
        return loss, amort
