"""CDO-squared engines.

A CDO-squared is a tranche on a pool of child tranches. Every child is a
tranche [A_j, D_j] on its own principals over a shared universe of names.
Default paths are simulated once for the whole universe and each child's
loss is read off the same path, so overlapping names default together in
every child they appear in.
"""

import datetime
import logging
from typing import List, Optional, Sequence

import numpy as np
from scipy.stats import norm, t as student_t

from .base_correlation import BaseCorrelation
from .copula import CopulaType
from .errors import ArgumentShapeError
from .distribution import LossDistribution
from .factor_model import LatentFactorModel
from .simulation import FIXED_SEED, MonteCarloEngine, resolve_seed, simulate_default_indices

logger = logging.getLogger(__name__)


def check_child_structure(principals: np.ndarray, attachments: Sequence[float],
                          detachments: Sequence[float], curve_count: int) -> None:
    """Validate the principal matrix (names x children) against the children."""
    if principals.ndim != 2 or principals.shape[0] != curve_count:
        raise ArgumentShapeError("Number of principal rows must match number of survival curves")
    if len(attachments) != len(detachments):
        raise ArgumentShapeError(
            "Number of attachment points must match the number of detachment points"
        )
    if principals.shape[1] != len(attachments):
        raise ArgumentShapeError(
            "Number of principal columns must match number of attachment points"
        )
    for a, d in zip(attachments, detachments):
        if not 0.0 <= a < d <= 1.0:
            raise ValueError(
                f"Child tranche levels must satisfy 0 <= attach < detach <= 1, got {a}, {d}"
            )


def aggregate_child_losses(child_losses: np.ndarray, principals: np.ndarray,
                           attachments: np.ndarray, detachments: np.ndarray,
                           cross_subordination: bool) -> np.ndarray:
    """Second level pool loss from child pool losses.

    Args:
        child_losses: Loss amount of each child pool, last axis over children
        principals: Total principal P_j of each child pool
        attachments: Child attachments A_j
        detachments: Child detachments D_j
        cross_subordination: Whether the children share subordination

    Returns:
        Loss as a fraction of the second level principal sum_j P_j (D_j - A_j)
    """
    principals = np.asarray(principals, dtype=float)
    lower = np.asarray(attachments, dtype=float) * principals
    upper = np.asarray(detachments, dtype=float) * principals
    total = float(np.sum(upper - lower))
    if total <= 0:
        return np.zeros(np.shape(child_losses)[:-1])
    if cross_subordination:
        # losses beyond one child's detachment never reach the others
        capped = np.sum(np.minimum(child_losses, upper), axis=-1)
        return np.clip(capped - np.sum(lower), 0.0, total) / total
    return np.sum(np.clip(child_losses - lower, 0.0, upper - lower), axis=-1) / total


class CDOSquaredEngine(MonteCarloEngine):
    """Loss of a tranche on child tranches, by simulation.

    The pool holds every name referenced by some child; ``total_principal``
    is the second level principal. The distribution is over the second
    level loss fraction and there is no amortization.

    Args:
        child_principals: Principal of each input name in each child,
            shape (input names, children)
        attachments: Child attachments
        detachments: Child detachments
        cross_subordination: Whether subordination is shared across children
        child_maturities: Maturity of each child, losses stop accruing after it
    """

    def __init__(self, as_of, settle, maturity, pool, copula, correlation,
                 child_principals, attachments: Sequence[float],
                 detachments: Sequence[float], cross_subordination: bool = True,
                 child_maturities: Optional[Sequence[Optional[datetime.date]]] = None,
                 sample_size: int = 0, seed: int = FIXED_SEED, **kwargs):
        matrix = np.asarray(child_principals, dtype=float)
        check_child_structure(matrix, attachments, detachments, pool.input_count)
        if child_maturities is not None and len(child_maturities) != len(attachments):
            raise ArgumentShapeError("Number of child maturities must match number of children")
        self.child_principals = matrix[pool.picks]
        self.attachments = np.asarray(attachments, dtype=float)
        self.detachments = np.asarray(detachments, dtype=float)
        self.cross_subordination = bool(cross_subordination)
        self.child_maturities = list(child_maturities or [None] * len(attachments))
        self.child_loss_paths: Optional[np.ndarray] = None
        super().__init__(as_of, settle, maturity, pool, copula, correlation,
                         sample_size=sample_size, seed=seed, **kwargs)
        self._no_amortization = True

    @property
    def child_count(self) -> int:
        return len(self.attachments)

    @property
    def child_totals(self) -> np.ndarray:
        """Total principal of each child pool."""
        return np.sum(self.child_principals, axis=0)

    @property
    def total_principal(self) -> float:
        """Second level principal sum_j P_j (D_j - A_j)."""
        return float(np.sum(self.child_totals * (self.detachments - self.attachments)))

    def _default_sample_size(self) -> int:
        return self.settings.cdo_squared_sample_size

    def maximum_amortization_level(self) -> float:
        return 0.0

    def _child_default_indices(self, default_probabilities: np.ndarray,
                               rng: np.random.Generator) -> List[np.ndarray]:
        """Default grid index per path and name, one array per child."""
        model = LatentFactorModel(self.correlation, self.copula)
        index = simulate_default_indices(model, default_probabilities, self.sample_size,
                                         rng, self.batch_size)
        return [index] * self.child_count

    def _child_horizons(self, dates) -> np.ndarray:
        """Last grid index at which each child accrues losses."""
        last = len(dates) - 1
        out = np.full(self.child_count, last, dtype=int)
        for j, maturity in enumerate(self.child_maturities):
            if maturity is None:
                continue
            eligible = [d for d, date in enumerate(dates) if date <= maturity]
            out[j] = eligible[-1] if eligible else -1
        return out

    def simulate_paths(self) -> np.ndarray:
        """Child pool losses by path, date and child, in principal units."""
        self._ensure_computed()
        return self.child_loss_paths

    def _compute(self, dates):
        rng = np.random.default_rng(resolve_seed(self._seed, self.settings.default_seed))
        pd_matrix = np.array([self._event_probabilities(d)[0] for d in dates])
        pd_matrix = np.maximum.accumulate(pd_matrix, axis=0)
        indices = self._child_default_indices(pd_matrix, rng)

        n_dates = len(dates)
        recoveries = np.array([self.pool.recovery_rates(d) for d in dates])
        recoveries = np.vstack([recoveries, recoveries[-1:]])
        horizons = self._child_horizons(dates)
        names = np.arange(self.count)

        paths = indices[0].shape[0]
        child_losses = np.zeros((paths, n_dates, self.child_count))
        for j, index in enumerate(indices):
            lgd = (1.0 - recoveries[index, names]) * self.child_principals[:, j]
            for d in range(n_dates):
                defaulted = index <= min(d, horizons[j])
                child_losses[:, d, j] = np.sum(defaulted * lgd, axis=1)

        losses = aggregate_child_losses(child_losses, self.child_totals, self.attachments,
                                        self.detachments, self.cross_subordination)
        self.child_loss_paths = child_losses
        logger.debug("CDO-squared with %d children simulated over %d paths",
                     self.child_count, paths)
        probs = np.full((n_dates, paths), 1.0 / paths)
        return LossDistribution(dates, losses.T, probs), None


class FactorCorrelationCDO2Engine(CDOSquaredEngine):
    """CDO-squared driven by one correlation structure over all names."""


class TrancheCorrelationCDO2Engine(CDOSquaredEngine):
    """CDO-squared with one single-factor correlation per child.

    All children see the same common factor and idiosyncratic draws;
    only the factor weight differs, so a name defaulting in one child
    tends to default in the others.

    Args:
        child_correlations: Correlation of each child
    """

    def __init__(self, as_of, settle, maturity, pool, copula, child_correlations,
                 child_principals, attachments, detachments, **kwargs):
        self._child_correlations = np.asarray(child_correlations, dtype=float)
        super().__init__(as_of, settle, maturity, pool, copula, 0.0, child_principals,
                         attachments, detachments, **kwargs)
        if len(self._child_correlations) != self.child_count:
            raise ArgumentShapeError(
                "Number of child correlations must match number of children"
            )

    def child_correlations(self) -> np.ndarray:
        return self._child_correlations

    def _check_child_correlations(self, rho: np.ndarray) -> None:
        if np.any(rho < 0) or np.any(rho > 1):
            raise ValueError(f"Child correlations must be between 0 and 1, got {rho}")

    def _child_default_indices(self, default_probabilities, rng):
        rho = self.child_correlations()
        self._check_child_correlations(rho)
        n_paths = self.sample_size
        n_dates = default_probabilities.shape[0]
        is_t = self.copula.copula_type == CopulaType.STUDENT_T
        batch = self.batch_size or n_paths
        out = [[] for _ in rho]
        done = 0
        while done < n_paths:
            size = min(batch, n_paths - done)
            batch_rng = np.random.default_rng(rng.integers(0, 2**31))
            common = batch_rng.standard_normal((size, 1))
            shocks = batch_rng.standard_normal((size, self.count))
            if is_t:
                nu = float(self.copula.df_common)
                mix = np.sqrt(batch_rng.chisquare(nu, size=(size, 1)) / nu)
            for j, r in enumerate(rho):
                latent = np.sqrt(r) * common + np.sqrt(1.0 - r) * shocks
                if is_t:
                    u = student_t.cdf(latent / mix, self.copula.df_common)
                else:
                    u = norm.cdf(latent)
                index = np.full(u.shape, n_dates, dtype=int)
                for d in range(n_dates - 1, -1, -1):
                    index[u <= default_probabilities[d]] = d
                out[j].append(index)
            done += size
        return [np.concatenate(parts) for parts in out]


class BaseCorrelationCDO2Engine(TrancheCorrelationCDO2Engine):
    """CDO-squared whose child correlations come from a base correlation.

    Each child uses the base correlation at the strike of its detachment,
    read again on every computation so surface changes are picked up.

    Args:
        base_correlation: Strike to correlation curve
        discount_curve: Discount curve for strike conversion
    """

    def __init__(self, as_of, settle, maturity, pool, copula,
                 base_correlation: BaseCorrelation, discount_curve, child_principals,
                 attachments, detachments, **kwargs):
        self.base_correlation_surface = base_correlation
        self.discount_curve = discount_curve
        super().__init__(as_of, settle, maturity, pool, copula, np.zeros(len(attachments)),
                         child_principals, attachments, detachments, **kwargs)

    def _upstream_versions(self) -> tuple:
        return super()._upstream_versions() + (self.base_correlation_surface.version,)

    def child_correlations(self) -> np.ndarray:
        grid = self.time_grid
        out = []
        for d, maturity in zip(self.detachments, self.child_maturities):
            strike = self.base_correlation_surface.strike(
                d, self.pool, self.discount_curve, self.portfolio_start,
                maturity or self.maturity, grid)
            out.append(self.base_correlation_surface.correlation(strike))
        return np.array(out)
