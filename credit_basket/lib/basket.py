"""Base class of the loss distribution engines.

An engine owns a pool, a copula and a correlation structure, builds a
pricing grid and caches the loss (and amortization) distribution over
it. The cache follows an explicit state machine::

    UNINITIALIZED -> COMPUTED -> STALE -> COMPUTED -> ...

Every setter calls :meth:`_invalidate`; queries call
:meth:`_ensure_computed`, the single place the distribution is built.
Mutations of curves or correlation objects shared with other holders
are detected through their version counters.
"""

import contextlib
import copy
import datetime
import logging
import math
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import DEFAULT_SETTINGS, EngineSettings, TimeUnit
from .copula import Copula, FactorIntegration
from .correlation import (
    CorrelationKind,
    CorrelationModel,
    CorrelationTarget,
    SharedCorrelation,
    default_correlation,
    factor_loadings,
    resolve_correlation,
)
from .curves import generate_time_grid
from .distribution import LossDistribution
from .errors import UnsupportedCombination
from .pool import Pool
from .quadrature import default_quadrature_points, safe_quadrature_points_for_greeks

logger = logging.getLogger(__name__)


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    COMPUTED = "computed"
    STALE = "stale"


class LossDistributionEngine:
    """Pool loss distribution over a time grid.

    Subclasses implement :meth:`_compute` and may restrict the copulas
    and correlation structures they accept.

    Args:
        as_of: Pricing date
        settle: Settlement date
        maturity: Last date of the grid
        pool: Names to model
        copula: Copula family
        correlation: Scalar, flat array or correlation object; see
            :func:`resolve_correlation`
        portfolio_start: Date losses start to accumulate, settle if None
        step_size: Grid step, from settings if None
        step_unit: Grid step unit, from settings if None
        loss_levels: Levels reported by :meth:`loss_distribution`
        integration_points: Quadrature points, 0 for the default table
        grid_size: Loss bucket width, 0 for automatic
        recovery_correlation: Factor sensitivity of recoveries
        extra_dates: Dates added to the grid
        settings: Engine settings
    """

    target = CorrelationTarget.FACTOR
    uses_quadrature = True
    supports_recovery_correlation = False

    def __init__(self, as_of: datetime.date, settle: datetime.date,
                 maturity: datetime.date, pool: Pool, copula: Copula, correlation,
                 portfolio_start: Optional[datetime.date] = None,
                 step_size: Optional[int] = None, step_unit: Optional[TimeUnit] = None,
                 loss_levels: Optional[Sequence[float]] = None,
                 integration_points: int = 0, grid_size: Optional[float] = None,
                 recovery_correlation: float = 0.0,
                 extra_dates: Optional[Sequence[datetime.date]] = None,
                 settings: EngineSettings = DEFAULT_SETTINGS):
        if maturity <= settle:
            raise ValueError(f"Maturity {maturity} must be after settle {settle}")
        if pool.count == 0:
            raise ValueError("Pool has no names")
        self.as_of = as_of
        self.settle = settle
        self._maturity = maturity
        self.pool = pool
        self.settings = settings
        self._check_copula(copula)
        self._check_recovery_correlation(float(recovery_correlation), copula)
        self._copula = copula
        self.base_correlation = None
        self.shared_correlation = SharedCorrelation()
        self._correlation = self._bind_correlation(correlation)
        self._portfolio_start = portfolio_start
        self._step_size = step_size or settings.step_size
        self._step_unit = step_unit or settings.step_unit
        self._loss_levels = list(loss_levels) if loss_levels is not None else []
        self._points = int(integration_points)
        self._points_second = 0
        self._grid_size = settings.grid_size if grid_size is None else float(grid_size)
        self._recovery_correlation = float(recovery_correlation)
        self._extra_dates: List[datetime.date] = list(extra_dates or [])
        self._no_amortization = False
        self._add_complement = True

        self._state = EngineState.UNINITIALIZED
        self.revision = 0
        self._versions: Optional[tuple] = None
        self._dates: Optional[List[datetime.date]] = None
        self._loss: Optional[LossDistribution] = None
        self._amortization: Optional[LossDistribution] = None

    # Validation hooks

    def _check_copula(self, copula: Copula) -> None:
        """Raise UnsupportedCombination for copulas the engine cannot use."""

    def _check_correlation(self, correlation: CorrelationModel) -> None:
        """Raise UnsupportedCombination for structures the engine cannot use."""

    def _check_recovery_correlation(self, value: float, copula: Copula) -> None:
        if value == 0:
            return
        if not self.supports_recovery_correlation:
            raise UnsupportedCombination(
                f"Correlated recoveries are not supported by {type(self).__name__}"
            )
        if not copula.has_factor_node:
            raise UnsupportedCombination(
                f"{copula.name} copula cannot drive correlated recoveries"
            )

    def _bind_correlation(self, value) -> CorrelationModel:
        model = resolve_correlation(value, self.pool, self.target)
        if model.kind == CorrelationKind.BASE:
            # placeholder until a tranche resolves the base correlation
            self.base_correlation = model
            model = default_correlation(self.pool, self.target)
        self._check_correlation(model)
        return model

    # Cache state machine

    def _upstream_versions(self) -> tuple:
        return self.pool.versions() + (self._correlation.version,)

    @property
    def state(self) -> EngineState:
        if self._state == EngineState.COMPUTED and self._versions != self._upstream_versions():
            self._state = EngineState.STALE
        return self._state

    def _invalidate(self) -> None:
        self.revision += 1
        if self._state == EngineState.COMPUTED:
            logger.debug("%s marked stale", type(self).__name__)
            self._state = EngineState.STALE

    def reset(self) -> None:
        """Force recomputation on the next query."""
        self._invalidate()

    def _ensure_computed(self) -> None:
        if self.state == EngineState.COMPUTED:
            return
        dates = self.time_grid
        logger.debug("%s computing distribution over %d dates for %d names",
                     type(self).__name__, len(dates), self.pool.count)
        self._loss, self._amortization = self._compute(dates)
        self._versions = self._upstream_versions()
        self._state = EngineState.COMPUTED

    def _compute(self, dates: List[datetime.date]
                 ) -> Tuple[LossDistribution, Optional[LossDistribution]]:
        raise NotImplementedError

    # Configuration surface

    @property
    def maturity(self) -> datetime.date:
        """Last grid date."""
        return self._maturity

    @maturity.setter
    def maturity(self, value: datetime.date) -> None:
        if value <= self.settle:
            raise ValueError(f"Maturity {value} must be after settle {self.settle}")
        self._maturity = value
        self._invalidate()

    @property
    def portfolio_start(self) -> datetime.date:
        return self._portfolio_start or self.settle

    @portfolio_start.setter
    def portfolio_start(self, value: Optional[datetime.date]) -> None:
        if value is not None and value > self.maturity:
            raise ValueError(f"Portfolio start {value} is after maturity {self.maturity}")
        self._portfolio_start = value
        self._invalidate()

    @property
    def step_size(self) -> int:
        return self._step_size

    @step_size.setter
    def step_size(self, value: int) -> None:
        if value <= 0:
            raise ValueError(f"Step size must be positive, got {value}")
        self._step_size = value
        self._invalidate()

    @property
    def step_unit(self) -> TimeUnit:
        return self._step_unit

    @step_unit.setter
    def step_unit(self, value: TimeUnit) -> None:
        self._step_unit = value
        self._invalidate()

    @property
    def integration_points_first(self) -> int:
        """Quadrature points on the common factor."""
        if self._points > 0:
            return self._points
        return default_quadrature_points(self._copula.copula_type, self.pool.count)

    @property
    def integration_points_default(self) -> bool:
        """Whether the point count comes from the default table."""
        return self._points <= 0

    @integration_points_first.setter
    def integration_points_first(self, value: int) -> None:
        self._points = int(value)
        self._invalidate()

    @contextlib.contextmanager
    def greek_quadrature_points(self, for_gamma: bool = False):
        """Price with at least the safe point count for sensitivities.

        The previous point setting is restored on exit, default included.
        """
        saved = self._points
        self.integration_points_first = safe_quadrature_points_for_greeks(
            self.integration_points_first, self._copula.copula_type, for_gamma)
        try:
            yield self
        finally:
            self._points = saved
            self._invalidate()

    @property
    def integration_points_second(self) -> int:
        return self._points_second

    @integration_points_second.setter
    def integration_points_second(self, value: int) -> None:
        self._points_second = int(value)
        self._invalidate()

    @property
    def grid_size(self) -> float:
        """Loss bucket width; chosen from the pool when set to 0."""
        if self._grid_size > 0:
            return self._grid_size
        return self._automatic_grid_size()

    @grid_size.setter
    def grid_size(self, value: float) -> None:
        if value < 0 or value >= 1:
            raise ValueError(f"Grid size must be in [0, 1), got {value}")
        self._grid_size = float(value)
        self._invalidate()

    def _automatic_grid_size(self) -> float:
        """Largest grid no wider than the floor dividing the smallest name loss."""
        lgd = self.pool.weights * (1.0 - self.pool.recovery_rates())
        positive = lgd[lgd > 1e-12]
        floor = self.settings.min_grid_size
        if len(positive) == 0:
            return floor
        smallest = float(positive.min())
        return smallest / math.ceil(smallest / floor - 1e-9)

    @property
    def no_amortization(self) -> bool:
        return self._no_amortization

    @no_amortization.setter
    def no_amortization(self, value: bool) -> None:
        self._no_amortization = bool(value)
        self._invalidate()

    @property
    def loss_level_add_complement(self) -> bool:
        """Whether complements 1 - level are reported for amortization."""
        return self._add_complement

    @loss_level_add_complement.setter
    def loss_level_add_complement(self, value: bool) -> None:
        self._add_complement = bool(value)
        self._invalidate()

    @property
    def loss_levels(self) -> List[float]:
        return list(self._loss_levels)

    @loss_levels.setter
    def loss_levels(self, levels: Sequence[float]) -> None:
        levels = [float(x) for x in levels]
        if any(x < 0 or x > 1 for x in levels):
            raise ValueError(f"Loss levels must be between 0 and 1, got {levels}")
        self._loss_levels = levels
        self._invalidate()

    @property
    def cooked_loss_levels(self) -> List[float]:
        """Loss levels with 0 and, when amortization is tracked, complements."""
        levels = {0.0}
        levels.update(self._loss_levels)
        if self._add_complement and not self._no_amortization:
            levels.update(1.0 - x for x in self._loss_levels)
        return sorted(levels)

    @property
    def copula(self) -> Copula:
        return self._copula

    @copula.setter
    def copula(self, value: Copula) -> None:
        self._check_copula(value)
        self._check_recovery_correlation(self._recovery_correlation, value)
        self._copula = value
        self._invalidate()

    @property
    def correlation(self) -> CorrelationModel:
        return self._correlation

    @correlation.setter
    def correlation(self, value) -> None:
        self._correlation = self._bind_correlation(value)
        self._invalidate()

    @property
    def recovery_correlation(self) -> float:
        return self._recovery_correlation

    @recovery_correlation.setter
    def recovery_correlation(self, value: float) -> None:
        if not -1 <= value <= 1:
            raise ValueError(f"Recovery correlation must be between -1 and 1, got {value}")
        self._check_recovery_correlation(value, self._copula)
        self._recovery_correlation = float(value)
        self._invalidate()

    def add_grid_dates(self, dates: Sequence[Optional[datetime.date]]) -> None:
        """Merge extra dates (tranche effective or maturity dates) into the grid."""
        new = [d for d in dates if d is not None and d not in self._extra_dates]
        if new:
            self._extra_dates.extend(new)
            self._invalidate()

    # Derived views

    @property
    def time_grid(self) -> List[datetime.date]:
        return generate_time_grid(self.portfolio_start, self.maturity, self._step_size,
                                  self._step_unit, self._extra_dates)

    @property
    def count(self) -> int:
        """Number of names in the pool."""
        return self.pool.count

    @property
    def total_principal(self) -> float:
        """Total principal in the caller's units."""
        return self.pool.raw_total_principal

    @property
    def distribution(self) -> LossDistribution:
        self._ensure_computed()
        return self._loss

    @property
    def amortization_distribution(self) -> Optional[LossDistribution]:
        self._ensure_computed()
        return self._amortization

    def maximum_amortization_level(self) -> float:
        """Upper bound of the pool fraction that can amortize by maturity."""
        return self.pool.maximum_amortization_level(
            correlated_recovery=self._recovery_correlation != 0.0,
            maturity=self.maturity,
        )

    # Queries

    def expected_loss(self, date: datetime.date, attach: float = 0.0,
                      detach: float = 1.0) -> float:
        """Expected loss of [attach, detach] at a date, as a pool fraction."""
        _check_levels(attach, detach)
        self._ensure_computed()
        return self._loss.expected_tranche_loss(date, attach, detach)

    def expected_amortization(self, date: datetime.date, attach: float = 0.0,
                              detach: float = 1.0) -> float:
        """Expected amortization of [attach, detach] at a date, as a pool fraction.

        Amortization reduces the capital structure from the top, so the
        tranche amortizes once pool amortization exceeds 1 - detach.
        """
        _check_levels(attach, detach)
        if self._no_amortization:
            return 0.0
        self._ensure_computed()
        if self._amortization is None:
            return 0.0
        return self._amortization.expected_tranche_loss(date, 1.0 - detach, 1.0 - attach)

    def loss_distribution(self, date: datetime.date,
                          levels: Optional[Sequence[float]] = None) -> np.ndarray:
        """Cumulative loss probabilities, shape (levels, 2)."""
        self._ensure_computed()
        levels = self.cooked_loss_levels if levels is None else sorted(levels)
        return np.array([[x, self._loss.cumulative_probability(date, x)] for x in levels])

    # Helpers shared by the engines

    def _event_probabilities(self, date: datetime.date) -> Tuple[np.ndarray, np.ndarray]:
        """Per-name probabilities of default and of prepayment by a date.

        A name maturing early cannot default after its early maturity and
        repays its principal if it survives to it. A refinance curve is a
        competing risk, split by the midpoint rule.
        """
        start = self.portfolio_start
        default = np.empty(self.pool.count)
        prepay = np.zeros(self.pool.count)
        for i, name in enumerate(self.pool):
            horizon = date
            early = name.early_maturity is not None and name.early_maturity < date
            if early:
                horizon = max(name.early_maturity, start)
            p_def = name.survival_curve.default_probability(horizon, start)
            if name.refinance_curve is not None:
                p_ref = name.refinance_curve.default_probability(horizon, start)
                p_def, p_ref = p_def * (1.0 - 0.5 * p_ref), p_ref * (1.0 - 0.5 * p_def)
                prepay[i] = p_ref
            if early:
                prepay[i] = 1.0 - p_def
            default[i] = p_def
        return default, prepay

    def _integration(self, default_probabilities: np.ndarray,
                     date: datetime.date) -> FactorIntegration:
        loadings = factor_loadings(self._correlation, date)
        return self._copula.integrate(default_probabilities, loadings,
                                      self.integration_points_first,
                                      self._points_second)

    def clone(self) -> "LossDistributionEngine":
        """Independent copy sharing curves and settings but not the cache."""
        other = copy.copy(self)
        other._extra_dates = list(self._extra_dates)
        other._loss_levels = list(self._loss_levels)
        other._state = EngineState.UNINITIALIZED
        other._versions = None
        other._loss = None
        other._amortization = None
        return other

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(names={self.pool.count}, copula={self._copula}, "
                f"maturity={self.maturity}, state={self.state.value})")


def _check_levels(attach: float, detach: float) -> None:
    if not 0.0 <= attach <= detach <= 1.0:
        raise ValueError(
            f"Tranche levels must satisfy 0 <= attach <= detach <= 1, got {attach}, {detach}"
        )
