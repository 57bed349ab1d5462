"""Tests for pool.py - Name selection, principal defaulting and Pool."""

import datetime

import pytest
import numpy as np

from credit_basket import (
    ArgumentShapeError,
    EngineSettings,
    MissingRecoveryData,
    RecoveryCurve,
    SurvivalCurve,
    select_names,
    setup_pool,
)


class TestSelectNames:
    """Tests for the name filtering rule."""

    def test_missing_curves_are_skipped(self, flat_curves):
        """Test that None curves are dropped keeping the input order."""
        curves = [flat_curves[0], None, flat_curves[2], None, flat_curves[4]]
        assert select_names(curves, None) == [0, 2, 4]

    def test_zero_principals_are_skipped(self, flat_curves):
        """Test that names with zero principal are dropped."""
        assert select_names(flat_curves, [1.0, 0.0, 2.0, 0.0, 3.0]) == [0, 2, 4]

    def test_single_zero_principal_keeps_all(self, flat_curves):
        """Test that a single principal entry never filters names."""
        assert select_names(flat_curves, [0.0]) == [0, 1, 2, 3, 4]

    def test_length_mismatch(self, flat_curves):
        """Test that per-name principals must match the curves."""
        with pytest.raises(ArgumentShapeError, match="Number of principals"):
            select_names(flat_curves, [1.0, 2.0])


class TestSetupPool:
    """Tests for setup_pool."""

    def test_default_principal(self, flat_curves):
        """Test that missing principals use the default principal."""
        settings = EngineSettings()
        pool = setup_pool(flat_curves, None, settings=settings)
        assert pool.raw_total_principal == pytest.approx(5 * settings.default_principal)
        assert np.allclose(pool.weights, 0.2)

    def test_empty_principals_use_default(self, flat_curves):
        """Test that an empty principal list behaves like None."""
        pool = setup_pool(flat_curves, [])
        assert pool.count == 5
        assert pool.raw_total_principal == pytest.approx(5_000_000)

    def test_scalar_principal(self, flat_curves):
        """Test that one principal applies to every name."""
        pool = setup_pool(flat_curves, [2_000_000.0])
        assert pool.raw_total_principal == pytest.approx(10_000_000)

    def test_per_name_principals(self, flat_curves):
        """Test per-name principals and their weights."""
        pool = setup_pool(flat_curves, [1.0, 2.0, 3.0, 4.0, 0.0])
        assert pool.count == 4
        assert pool.name_ids == ["NAME0", "NAME1", "NAME2", "NAME3"]
        assert np.allclose(pool.weights, [0.1, 0.2, 0.3, 0.4])
        assert pool.raw_total_principal == pytest.approx(10.0)

    def test_principals_are_scaled(self, flat_curves):
        """Test that stored principals carry the scale factor."""
        settings = EngineSettings(principal_scale=10.0)
        pool = setup_pool(flat_curves, [1.0], settings=settings)
        assert pool.total_principal == pytest.approx(50.0)
        assert pool.raw_total_principal == pytest.approx(5.0)

    def test_missing_recovery(self, as_of):
        """Test that a curve without recoveries is fatal."""
        curves = [SurvivalCurve.flat("NORECOVERY", as_of, 0.01, recovery=None)]
        with pytest.raises(MissingRecoveryData, match="NORECOVERY"):
            setup_pool(curves)

    def test_explicit_recovery_overrides(self, as_of):
        """Test that explicit recovery curves replace the calibrator's."""
        curves = [SurvivalCurve.flat("A", as_of, 0.01, recovery=None)]
        pool = setup_pool(curves, recovery_curves=[RecoveryCurve(as_of, 0.25)])
        assert pool.recovery_rates()[0] == pytest.approx(0.25)

    def test_recovery_length_mismatch(self, flat_curves, as_of):
        """Test that recovery curves must line up with survival curves."""
        with pytest.raises(ArgumentShapeError):
            setup_pool(flat_curves, recovery_curves=[RecoveryCurve(as_of, 0.4)])

    def test_duplicate_names(self, as_of):
        """Test that names must be unique."""
        curves = [SurvivalCurve.flat("DUP", as_of, 0.01) for _ in range(2)]
        with pytest.raises(ValueError, match="unique"):
            setup_pool(curves)


class TestPool:
    """Tests for Pool queries."""

    def test_lookup(self, pool):
        """Test name lookup by identifier."""
        assert pool.get_name("NAME3").name == "NAME3"
        assert "NAME1" in pool
        with pytest.raises(KeyError, match="not found"):
            pool.get_name("MISSING")

    def test_expected_loss(self, pool, as_of, maturity):
        """Test the uncorrelated expected loss of the pool."""
        pd_ = 1.0 - pool.survival_curves[0].survival_probability(maturity)
        assert pool.expected_loss(maturity, as_of) == pytest.approx(pd_ * 0.6)

    def test_maximum_amortization_level(self, pool):
        """Test that fixed recoveries bound amortization by the recovery rate."""
        assert pool.maximum_amortization_level() == pytest.approx(0.4)
        assert pool.maximum_amortization_level(correlated_recovery=True) == 1.0

    def test_maximum_amortization_with_early_maturity(self, as_of, maturity):
        """Test that an early maturing name may amortize in full."""
        early = datetime.date(2026, 1, 1)
        curves = [
            SurvivalCurve.flat("EARLY", as_of, 0.02, early_maturity=early),
            SurvivalCurve.flat("LATE", as_of, 0.02),
        ]
        pool = setup_pool(curves, [1.0, 1.0])
        assert pool.maximum_amortization_level(maturity=maturity) == pytest.approx(0.7)

    def test_versions_follow_curves(self, pool):
        """Test that curve mutations change the version tuple."""
        before = pool.versions()
        pool.survival_curves[0].bump(0.01)
        assert pool.versions() != before
