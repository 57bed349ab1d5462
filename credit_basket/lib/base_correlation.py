"""Base correlation: implied correlation indexed by detachment strike."""

import datetime
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.interpolate import interp1d

from .correlation import CorrelationKind, CorrelationModel, MAX_CORRELATION
from .errors import ArgumentShapeError


class StrikeMethod(Enum):
    """How a tranche level is mapped to a base correlation strike."""
    UNSCALED = "unscaled"
    EXPECTED_LOSS = "expected_loss"
    EXPECTED_LOSS_PV = "expected_loss_pv"


class BaseCorrelation(CorrelationModel):
    """Strike to correlation curve.

    Correlations are interpolated linearly in strike and extrapolated flat.
    A base correlation has no per-name structure; it is turned into a
    single-factor correlation one tranche at a time.

    Attributes:
        strikes: Increasing strikes
        correlations: Correlation at each strike
        strike_method: Mapping from tranche level to strike
        recovery_correlation: Factor sensitivity of recovery rates used when
            pricing with this surface, 0 for fixed recoveries
    """

    kind = CorrelationKind.BASE

    def __init__(self, strikes: Sequence[float], correlations: Sequence[float],
                 strike_method: StrikeMethod = StrikeMethod.UNSCALED,
                 recovery_correlation: float = 0.0, name: Optional[str] = None):
        super().__init__()
        self.strike_method = strike_method
        self.recovery_correlation = float(recovery_correlation)
        self.name = name
        self.set_surface(strikes, correlations, touch=False)

    def set_surface(self, strikes: Sequence[float], correlations: Sequence[float],
                    touch: bool = True) -> None:
        """Replace the strike/correlation curve; visible to every holder."""
        strikes = np.asarray(strikes, dtype=float)
        correlations = np.asarray(correlations, dtype=float)
        if strikes.shape != correlations.shape or strikes.ndim != 1 or len(strikes) == 0:
            raise ArgumentShapeError(
                f"Number of strikes {strikes.size} must match number of correlations "
                f"{correlations.size}"
            )
        if np.any(np.diff(strikes) <= 0):
            raise ValueError("Base correlation strikes must be increasing")
        if np.any(correlations < 0) or np.any(correlations > 1):
            raise ValueError(f"Correlations must be between 0 and 1, got {correlations}")
        self.strikes = strikes
        self.correlations = correlations
        if len(strikes) == 1:
            self._interp = None
        else:
            self._interp = interp1d(
                strikes, correlations, kind="linear", bounds_error=False,
                fill_value=(correlations[0], correlations[-1]),
            )
        if touch:
            self._touch()

    def correlation(self, strike: float) -> float:
        """Correlation at a strike."""
        if self._interp is None:
            value = self.correlations[0]
        else:
            value = float(self._interp(strike))
        return float(min(value, MAX_CORRELATION))

    def strike(self, level: float, pool, discount_curve, start: datetime.date,
               maturity: datetime.date, dates: Optional[List[datetime.date]] = None) -> float:
        """Convert a tranche level into a strike.

        Args:
            level: Attachment or detachment point
            pool: Pool of the tranche
            discount_curve: Discount curve, used by the PV method
            start: Date loss accumulation starts
            maturity: Tranche maturity
            dates: Grid dates for the PV method, defaults to start and maturity

        Returns:
            The strike
        """
        if self.strike_method == StrikeMethod.UNSCALED:
            return level
        if self.strike_method == StrikeMethod.EXPECTED_LOSS:
            scale = pool.expected_loss(maturity, start)
        else:
            grid = sorted(set(dates or []) | {start, maturity})
            grid = [d for d in grid if start <= d <= maturity]
            losses = np.array([pool.expected_loss(d, start) for d in grid])
            factors = np.array([discount_curve.discount_factor(d) for d in grid])
            scale = float(np.sum(np.diff(losses) * factors[1:]))
        if scale <= 1e-12:
            return level
        return level / scale

    def tranche_correlations(self, attach: float, detach: float, pool, discount_curve,
                             start: datetime.date, maturity: datetime.date,
                             dates: Optional[List[datetime.date]] = None
                             ) -> Tuple[float, float]:
        """Correlations of the two base tranches [0, attach] and [0, detach]."""
        rho_a = self.correlation(self.strike(attach, pool, discount_curve, start, maturity, dates))
        rho_d = self.correlation(self.strike(detach, pool, discount_curve, start, maturity, dates))
        return rho_a, rho_d

    def __eq__(self, other):
        return (isinstance(other, BaseCorrelation)
                and np.array_equal(self.strikes, other.strikes)
                and np.array_equal(self.correlations, other.correlations)
                and self.strike_method == other.strike_method
                and self.recovery_correlation == other.recovery_correlation)

    def __repr__(self) -> str:
        return (f"BaseCorrelation(strikes={self.strikes.tolist()}, "
                f"method={self.strike_method.value})")
