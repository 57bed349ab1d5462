"""Time-indexed discrete distribution of pool loss (or amortization).

At every grid date the distribution is a set of atoms: loss levels, as
fractions of the pool principal, with probabilities. Bucket engines put
atoms on a regular grid, the large pool engine on factor nodes and
Monte Carlo engines on paths.
"""

import bisect
import datetime
from typing import List, Sequence

import numpy as np


def tranche_loss(levels: np.ndarray, attach: float, detach: float) -> np.ndarray:
    """Loss absorbed by [attach, detach] for each pool loss level."""
    return np.clip(levels - attach, 0.0, max(detach - attach, 0.0))


class LossDistribution:
    """Atoms of pool loss per grid date.

    Args:
        dates: Increasing grid dates
        levels: Loss levels, shape (levels,) shared by all dates or
            (dates, atoms)
        probabilities: Probabilities, shape (dates, atoms)
    """

    def __init__(self, dates: Sequence[datetime.date], levels, probabilities):
        self.dates: List[datetime.date] = list(dates)
        probabilities = np.asarray(probabilities, dtype=float)
        levels = np.asarray(levels, dtype=float)
        if levels.ndim == 1:
            levels = np.broadcast_to(levels, probabilities.shape)
        if probabilities.shape != levels.shape or probabilities.shape[0] != len(self.dates):
            raise ValueError(
                f"Distribution shape {probabilities.shape} does not match "
                f"{len(self.dates)} dates and levels {levels.shape}"
            )
        self.levels = levels
        self.probabilities = probabilities

    @classmethod
    def degenerate(cls, dates: Sequence[datetime.date]) -> "LossDistribution":
        """Distribution with no loss at any date."""
        return cls(dates, np.zeros(1), np.ones((len(dates), 1)))

    def _bracket(self, date: datetime.date):
        """Grid indices around a date and the linear interpolation weight."""
        if date <= self.dates[0]:
            return 0, 0, 0.0
        if date > self.dates[-1]:
            raise ValueError(f"Date {date} is after the last grid date {self.dates[-1]}")
        hi = bisect.bisect_left(self.dates, date)
        if self.dates[hi] == date:
            return hi, hi, 0.0
        lo = hi - 1
        span = (self.dates[hi] - self.dates[lo]).days
        return lo, hi, (date - self.dates[lo]).days / span

    def _at(self, index: int, attach: float, detach: float) -> float:
        return float(self.probabilities[index] @ tranche_loss(self.levels[index], attach, detach))

    def expected_tranche_loss(self, date: datetime.date, attach: float = 0.0,
                              detach: float = 1.0) -> float:
        """E[min(max(L - attach, 0), detach - attach)] at a date.

        Dates before the first grid date carry no loss; dates between grid
        dates are interpolated linearly in time.
        """
        if date < self.dates[0]:
            return 0.0
        lo, hi, w = self._bracket(date)
        value = self._at(lo, attach, detach)
        if w > 0.0:
            value = (1.0 - w) * value + w * self._at(hi, attach, detach)
        return value

    def expected_loss_curve(self, attach: float = 0.0, detach: float = 1.0) -> np.ndarray:
        return np.array([self._at(i, attach, detach) for i in range(len(self.dates))])

    def cumulative_probability(self, date: datetime.date, level: float) -> float:
        """P(L <= level) at a grid date or interpolated between two."""
        if date < self.dates[0]:
            return 1.0
        lo, hi, w = self._bracket(date)
        p_lo = float(np.sum(self.probabilities[lo][self.levels[lo] <= level + 1e-12]))
        if w == 0.0:
            return p_lo
        p_hi = float(np.sum(self.probabilities[hi][self.levels[hi] <= level + 1e-12]))
        return (1.0 - w) * p_lo + w * p_hi

    def total_probability(self) -> np.ndarray:
        return np.sum(self.probabilities, axis=1)

    def __len__(self) -> int:
        return len(self.dates)

    def __repr__(self) -> str:
        return f"LossDistribution(dates={len(self.dates)}, atoms={self.levels.shape[1]})"


def bucket_distribution(dates: Sequence[datetime.date], grid_size: float,
                        pmf: np.ndarray) -> LossDistribution:
    """Distribution over regular buckets ``k * grid_size``."""
    levels = np.arange(pmf.shape[1]) * grid_size
    return LossDistribution(dates, levels, pmf)


def split_onto_grid(values: np.ndarray, weights: np.ndarray, grid_size: float,
                    buckets: int) -> np.ndarray:
    """Spread point masses onto a regular grid, splitting between neighbours.

    Each mass at ``x`` is shared between buckets floor(x/g) and
    floor(x/g)+1 so that the mean is preserved.
    """
    pos = np.clip(np.asarray(values, dtype=float) / grid_size, 0.0, buckets - 1)
    k = np.floor(pos).astype(int)
    frac = pos - k
    k_up = np.minimum(k + 1, buckets - 1)
    out = np.zeros(buckets)
    np.add.at(out, k, weights * (1.0 - frac))
    np.add.at(out, k_up, weights * frac)
    return out


def stack_atoms(dates: Sequence[datetime.date], levels: Sequence[np.ndarray],
                probabilities: Sequence[np.ndarray]) -> LossDistribution:
    """Distribution from per-date atoms whose counts may differ."""
    width = max(len(p) for p in probabilities)
    lv = np.zeros((len(dates), width))
    pr = np.zeros((len(dates), width))
    for i, (x, p) in enumerate(zip(levels, probabilities)):
        lv[i, :len(x)] = x
        pr[i, :len(p)] = p
    return LossDistribution(dates, lv, pr)
