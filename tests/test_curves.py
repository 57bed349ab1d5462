"""Tests for curves.py - dates, survival, recovery and discount curves."""

import datetime

import pytest
import numpy as np

from credit_basket import DiscountCurve, RecoveryCurve, SurvivalCurve, generate_time_grid
from credit_basket.lib.config import TimeUnit
from credit_basket.lib.curves import add_period, year_fraction


class TestDates:
    """Tests for date helpers and the time grid."""

    def test_add_period_month_end(self):
        """Test month arithmetic clamps to the month end."""
        assert add_period(datetime.date(2024, 1, 31), 1, TimeUnit.MONTHS) == \
            datetime.date(2024, 2, 29)
        assert add_period(datetime.date(2024, 1, 31), 2, TimeUnit.WEEKS) == \
            datetime.date(2024, 2, 14)

    def test_year_fraction(self):
        start = datetime.date(2024, 1, 1)
        assert year_fraction(start, start + datetime.timedelta(days=365)) == pytest.approx(1.0)
        assert year_fraction(start + datetime.timedelta(days=73), start) == pytest.approx(-0.2)

    def test_grid_steps_from_start(self, as_of, maturity):
        """Test a quarterly grid from start to maturity."""
        grid = generate_time_grid(as_of, maturity, 3, TimeUnit.MONTHS)
        assert grid[0] == as_of
        assert grid[-1] == maturity
        assert grid[1] == add_period(as_of, 3, TimeUnit.MONTHS)
        assert len(grid) == 21

    def test_grid_extra_dates(self, as_of, maturity):
        """Test that extra dates inside the grid are merged and others dropped."""
        extra = as_of + datetime.timedelta(days=10)
        grid = generate_time_grid(as_of, maturity, extra_dates=[
            extra, None, as_of - datetime.timedelta(days=1),
            maturity + datetime.timedelta(days=1)])
        assert extra in grid
        assert grid == sorted(set(grid))
        assert grid[0] == as_of and grid[-1] == maturity

    def test_grid_maturity_before_start(self, as_of):
        with pytest.raises(ValueError, match="precedes grid start"):
            generate_time_grid(as_of, as_of - datetime.timedelta(days=1))


class TestSurvivalCurve:
    """Tests for the piecewise hazard survival curve."""

    def test_flat_curve(self, as_of):
        curve = SurvivalCurve.flat("A", as_of, 0.02)
        date = add_period(as_of, 5, TimeUnit.YEARS)
        t = year_fraction(as_of, date)
        assert curve.survival_probability(date) == pytest.approx(np.exp(-0.02 * t))
        assert curve.default_probability(as_of) == 0.0
        assert curve.recovery_curve.recovery_rate() == 0.4

    def test_piecewise_hazard(self, as_of):
        """Test integration across hazard steps and conditional survival."""
        d1 = add_period(as_of, 1, TimeUnit.YEARS)
        d2 = add_period(as_of, 3, TimeUnit.YEARS)
        curve = SurvivalCurve("A", as_of, [d1, d2], [0.01, 0.03])
        t1 = year_fraction(as_of, d1)
        t2 = year_fraction(as_of, d2)
        expected = 0.01 * t1 + 0.03 * (t2 - t1)
        assert curve.integrated_hazard(d2) == pytest.approx(expected)
        assert curve.hazard_rate(d1, d2) == pytest.approx(0.03)
        assert curve.survival_probability(d2, d1) == pytest.approx(np.exp(-0.03 * (t2 - t1)))
        assert curve.recovery_curve is None

    def test_validation(self, as_of):
        d1 = add_period(as_of, 1, TimeUnit.YEARS)
        with pytest.raises(ValueError, match="must match"):
            SurvivalCurve("A", as_of, [d1], [0.01, 0.02])
        with pytest.raises(ValueError, match="non-negative"):
            SurvivalCurve("A", as_of, [d1], [-0.01])
        with pytest.raises(ValueError, match="increasing"):
            SurvivalCurve("A", as_of, [as_of], [0.01])

    def test_mutations_bump_version(self, as_of, maturity):
        """Test bump and replacement raise the version counter."""
        curve = SurvivalCurve.flat("A", as_of, 0.02)
        before = curve.default_probability(maturity)
        curve.bump(0.01)
        assert curve.version == 1
        assert curve.default_probability(maturity) > before
        curve.bump(-1.0)
        assert curve.default_probability(maturity) == 0.0
        curve.set_hazard_rates([maturity], [0.05])
        assert curve.version == 3


class TestRecoveryAndDiscount:
    """Tests for recovery and discount curves."""

    def test_recovery_term_structure(self, as_of):
        d1 = add_period(as_of, 1, TimeUnit.YEARS)
        d2 = add_period(as_of, 2, TimeUnit.YEARS)
        curve = RecoveryCurve(as_of, [0.3, 0.5], dates=[d1, d2])
        assert curve.recovery_rate(d1) == 0.3
        assert curve.recovery_rate(d2) == 0.5
        assert curve.recovery_rate(add_period(as_of, 5, TimeUnit.YEARS)) == 0.5
        curve.set_recovery(0.25)
        assert curve.recovery_rate(d1) == 0.25
        assert curve.version == 1

    def test_recovery_validation(self, as_of):
        with pytest.raises(ValueError, match="between 0 and 1"):
            RecoveryCurve(as_of, 1.2)
        with pytest.raises(ValueError, match="needs dates"):
            RecoveryCurve(as_of, [0.3, 0.4])
        with pytest.raises(ValueError, match="non-negative"):
            RecoveryCurve(as_of, 0.4, dispersion=-0.1)

    def test_discount_factor(self, as_of):
        curve = DiscountCurve(as_of, 0.05)
        date = as_of + datetime.timedelta(days=730)
        assert curve.discount_factor(date) == pytest.approx(np.exp(-0.05 * 2.0))
        curve.set_rate(0.0)
        assert curve.discount_factor(date) == 1.0
        assert curve.version == 1
