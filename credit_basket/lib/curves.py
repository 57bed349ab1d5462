"""Survival, recovery and discount curves consumed by the basket engines.

These are narrow: piecewise-constant hazard survival curves,
flat or stepwise recovery, flat continuously-compounded discounting and
ACT/365F year fractions. Curve calibration lives elsewhere.
"""

import datetime
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import TimeUnit

DAYS_PER_YEAR = 365.0


def year_fraction(start: datetime.date, end: datetime.date) -> float:
    """ACT/365F year fraction, negative when end precedes start."""
    return (end - start).days / DAYS_PER_YEAR


def add_period(date: datetime.date, size: int, unit: TimeUnit) -> datetime.date:
    """Step a date forward by a number of calendar units."""
    if unit == TimeUnit.DAYS:
        offset = pd.DateOffset(days=size)
    elif unit == TimeUnit.WEEKS:
        offset = pd.DateOffset(weeks=size)
    elif unit == TimeUnit.MONTHS:
        offset = pd.DateOffset(months=size)
    else:
        offset = pd.DateOffset(years=size)
    return (pd.Timestamp(date) + offset).date()


def generate_time_grid(start: datetime.date, maturity: datetime.date,
                       step_size: int = 3, step_unit: TimeUnit = TimeUnit.MONTHS,
                       extra_dates: Optional[Sequence[datetime.date]] = None
                       ) -> List[datetime.date]:
    """Build the pricing grid from start to maturity.

    Args:
        start: First grid date (portfolio start or settle)
        maturity: Last grid date
        step_size: Number of step units between dates
        step_unit: Calendar unit of a step
        extra_dates: Dates to merge into the grid; those outside
            (start, maturity] are ignored

    Returns:
        Sorted list of unique dates, starting at start and ending at maturity
    """
    if maturity < start:
        raise ValueError(f"Maturity {maturity} precedes grid start {start}")
    dates = {start, maturity}
    n = 1
    while True:
        # Always stepped from start, month ends must not drift
        current = add_period(start, step_size * n, step_unit)
        if current >= maturity:
            break
        dates.add(current)
        n += 1
    for d in extra_dates or ():
        if d is not None and start < d <= maturity:
            dates.add(d)
    return sorted(dates)


class _Versioned:
    """Mixin giving curves a counter bumped on every mutation."""

    version: int = 0

    def _touch(self) -> None:
        self.version += 1


class RecoveryCurve(_Versioned):
    """Recovery rate term structure.

    A single rate gives a flat curve; with ``dates`` the rate steps at each
    date (the i-th rate applies up to and including the i-th date, the last
    rate beyond).
    """

    def __init__(self, as_of: datetime.date, recovery,
                 dispersion: float = 0.0,
                 dates: Optional[Sequence[datetime.date]] = None):
        rates = np.atleast_1d(np.asarray(recovery, dtype=float))
        if np.any(rates < 0) or np.any(rates > 1):
            raise ValueError(f"Recovery rates must be between 0 and 1, got {rates}")
        if dispersion < 0:
            raise ValueError(f"Recovery dispersion must be non-negative, got {dispersion}")
        if dates is not None and len(dates) != len(rates):
            raise ValueError("Number of recovery dates must match number of rates")
        if dates is None and len(rates) != 1:
            raise ValueError("Recovery term structure needs dates")
        self.as_of = as_of
        self._rates = rates
        self._dates = list(dates) if dates is not None else None
        self.dispersion = float(dispersion)
        self.version = 0

    def recovery_rate(self, date: Optional[datetime.date] = None) -> float:
        if self._dates is None or date is None:
            return float(self._rates[0])
        for d, r in zip(self._dates, self._rates):
            if date <= d:
                return float(r)
        return float(self._rates[-1])

    def set_recovery(self, recovery: float) -> None:
        """Replace the curve by a flat recovery rate."""
        if not 0 <= recovery <= 1:
            raise ValueError(f"Recovery rate must be between 0 and 1, got {recovery}")
        self._rates = np.array([recovery], dtype=float)
        self._dates = None
        self._touch()

    def __repr__(self) -> str:
        return f"RecoveryCurve(recovery={self.recovery_rate():.4f}, dispersion={self.dispersion})"


class SurvivalCalibrator:
    """Calibration context of a survival curve; carries its recovery curve."""

    def __init__(self, recovery_curve: Optional[RecoveryCurve] = None):
        self.recovery_curve = recovery_curve


class SurvivalCurve(_Versioned):
    """Piecewise-constant hazard rate survival curve.

    S(t) = exp(-H(t)) where H is the integrated hazard; the i-th hazard
    rate applies up to the i-th date and the last one is extended flat.

    Attributes:
        name: Reference credit identifier
        as_of: Curve date, S(as_of) == 1
        calibrator: Optional calibration context holding the recovery curve
        early_maturity: Date after which the name no longer carries default
            risk (refinanced or matured); the principal amortizes instead
        refinance_curve: Optional survival curve of the refinancing event;
            its default probability is the probability of prepayment
    """

    def __init__(self, name: str, as_of: datetime.date,
                 dates: Sequence[datetime.date], hazard_rates: Sequence[float],
                 calibrator: Optional[SurvivalCalibrator] = None,
                 early_maturity: Optional[datetime.date] = None,
                 refinance_curve: Optional["SurvivalCurve"] = None):
        self.name = name
        self.as_of = as_of
        self.calibrator = calibrator
        self.early_maturity = early_maturity
        self.refinance_curve = refinance_curve
        self.version = 0
        self._set(dates, hazard_rates)

    @classmethod
    def flat(cls, name: str, as_of: datetime.date, hazard_rate: float,
             recovery: Optional[float] = 0.4, **kwargs) -> "SurvivalCurve":
        """Flat hazard curve, with a calibrator carrying a flat recovery.

        Pass ``recovery=None`` to build a curve without a calibrator.
        """
        calibrator = None
        if recovery is not None:
            calibrator = SurvivalCalibrator(RecoveryCurve(as_of, recovery))
        maturity = add_period(as_of, 30, TimeUnit.YEARS)
        return cls(name, as_of, [maturity], [hazard_rate], calibrator=calibrator, **kwargs)

    def _set(self, dates, hazard_rates) -> None:
        hazards = np.asarray(hazard_rates, dtype=float)
        if len(dates) != len(hazards) or len(dates) == 0:
            raise ValueError("Number of hazard rates must match number of curve dates")
        if np.any(hazards < 0):
            raise ValueError(f"Hazard rates must be non-negative, got {hazards}")
        times = np.array([year_fraction(self.as_of, d) for d in dates])
        if np.any(np.diff(times) <= 0) or times[0] <= 0:
            raise ValueError("Curve dates must be increasing and after the curve date")
        self._times = times
        self._hazards = hazards
        starts = np.concatenate([[0.0], times[:-1]])
        self._cum_hazard = np.cumsum(hazards * (times - starts))

    def set_hazard_rates(self, dates: Sequence[datetime.date],
                         hazard_rates: Sequence[float]) -> None:
        """Replace the hazard term structure."""
        self._set(dates, hazard_rates)
        self._touch()

    def bump(self, shift: float) -> None:
        """Shift every hazard rate in parallel, flooring at zero."""
        self._hazards = np.maximum(self._hazards + shift, 0.0)
        starts = np.concatenate([[0.0], self._times[:-1]])
        self._cum_hazard = np.cumsum(self._hazards * (self._times - starts))
        self._touch()

    def integrated_hazard(self, date: datetime.date) -> float:
        t = max(year_fraction(self.as_of, date), 0.0)
        k = int(np.searchsorted(self._times, t, side="left"))
        if k >= len(self._times):
            return float(self._cum_hazard[-1] + self._hazards[-1] * (t - self._times[-1]))
        prev_time = self._times[k - 1] if k > 0 else 0.0
        prev_cum = self._cum_hazard[k - 1] if k > 0 else 0.0
        return float(prev_cum + self._hazards[k] * (t - prev_time))

    def survival_probability(self, date: datetime.date,
                             start: Optional[datetime.date] = None) -> float:
        """Probability of surviving to ``date``, conditional on ``start``."""
        h = self.integrated_hazard(date)
        if start is not None:
            h -= self.integrated_hazard(start)
        return float(np.exp(-max(h, 0.0)))

    def default_probability(self, date: datetime.date,
                            start: Optional[datetime.date] = None) -> float:
        return 1.0 - self.survival_probability(date, start)

    def hazard_rate(self, start: datetime.date, end: datetime.date) -> float:
        """Average hazard rate between two dates."""
        dt = year_fraction(start, end)
        if dt <= 0:
            return 0.0
        return (self.integrated_hazard(end) - self.integrated_hazard(start)) / dt

    @property
    def recovery_curve(self) -> Optional[RecoveryCurve]:
        if self.calibrator is None:
            return None
        return self.calibrator.recovery_curve

    def __repr__(self) -> str:
        return f"SurvivalCurve(name={self.name!r}, hazard={self._hazards[0]:.4f})"


class DiscountCurve(_Versioned):
    """Flat continuously compounded discount curve."""

    def __init__(self, as_of: datetime.date, rate: float):
        self.as_of = as_of
        self.rate = float(rate)
        self.version = 0

    def discount_factor(self, date: datetime.date,
                        start: Optional[datetime.date] = None) -> float:
        t = year_fraction(start or self.as_of, date)
        return float(np.exp(-self.rate * t))

    def set_rate(self, rate: float) -> None:
        self.rate = float(rate)
        self._touch()
