"""Tests for tranche.py and the tranche pricer setup."""

import datetime

import pytest
import numpy as np
import pandas as pd

from credit_basket import (
    BaseCorrelation,
    BaseCorrelationTrancheBasket,
    SemiAnalyticEngine,
    StrikeMethod,
    Tranche,
    TrancheLossMapper,
    minimum_amortization_level,
    tranche_expected_loss,
    tranche_pricers,
)


class TestTranche:
    """Tests for the tranche description."""

    def test_levels_validated(self):
        with pytest.raises(ValueError, match="Tranche levels"):
            Tranche(0.07, 0.03)
        with pytest.raises(ValueError):
            Tranche(0.5, 1.5)

    def test_label_and_width(self):
        tranche = Tranche(0.03, 0.07)
        assert tranche.width == pytest.approx(0.04)
        assert tranche.label == "3.00%-7.00%"
        assert Tranche(0.0, 0.03, name="Equity").label == "Equity"

    def test_minimum_amortization_level(self):
        """Test that only premium amortizing tranches amortize."""
        assert Tranche(0.03, 0.07).minimum_amortization_level() == 1.0
        assert Tranche(0.03, 0.07, amortize_premium=True).minimum_amortization_level() == \
            pytest.approx(0.93)
        batch = [Tranche(0.0, 0.03), None, Tranche(0.7, 1.0, amortize_premium=True)]
        assert minimum_amortization_level(batch) == pytest.approx(0.0)


class TestTranchePricers:
    """Tests for preparing an engine for a batch of tranches."""

    def test_mapper_per_tranche(self, make_engine):
        """Test skipped entries for missing tranches and zero notionals."""
        engine = make_engine()
        tranches = [Tranche(0.0, 0.03), None, Tranche(0.03, 0.07), Tranche(0.07, 0.10)]
        mappers = tranche_pricers(engine, tranches, notionals=[1e6, 1e6, 0.0, 2e6])
        assert mappers[1] is None
        assert mappers[2] is None
        assert mappers[0].notional == 1e6
        assert mappers[3].notional == 2e6

    def test_default_notional(self, make_engine):
        """Test the notional defaults to the tranche share of the pool."""
        mapper = tranche_pricers(make_engine(), [Tranche(0.03, 0.07)])[0]
        assert mapper.notional == pytest.approx(50_000_000.0 * 0.04)

    def test_no_amortization_fast_path(self, make_engine):
        """Test that amortization is switched off when no tranche can amortize."""
        engine = make_engine()
        tranche_pricers(engine, [Tranche(0.0, 0.03), Tranche(0.03, 0.07, amortize_premium=True)])
        assert engine.maximum_amortization_level() <= 0.93
        assert engine.no_amortization
        assert not engine.loss_level_add_complement

    def test_amortizing_senior_keeps_amortization(self, make_engine):
        """Test that a premium amortizing senior tranche needs amortization."""
        engine = make_engine()
        tranche_pricers(engine, [Tranche(0.0, 0.03), Tranche(0.7, 1.0, amortize_premium=True)])
        assert not engine.no_amortization

    def test_quadrature_points_raised(self, make_engine):
        """Test the tranche adjustment on default point counts."""
        engine = make_engine()
        before = engine.integration_points_first
        tranche_pricers(engine, [Tranche(0.07, 0.10)])
        assert engine.integration_points_first > before

    def test_high_correlation_raises_points(self, make_engine):
        """Test the correlation floor on default point counts."""
        engine = make_engine(correlation=0.9)
        tranche_pricers(engine, [Tranche(0.0, 1.0)])
        assert engine.integration_points_first == int(550 * 0.9) - 295

        low = make_engine(correlation=0.3)
        before = low.integration_points_first
        tranche_pricers(low, [Tranche(0.0, 1.0)])
        assert low.integration_points_first == before

    def test_explicit_points_kept(self, make_engine):
        """Test that explicit point counts are not adjusted."""
        engine = make_engine(integration_points=40)
        tranche_pricers(engine, [Tranche(0.07, 0.10)])
        assert engine.integration_points_first == 40

    def test_loss_levels_and_dates(self, make_engine, as_of):
        """Test that tranche levels and dates reach the engine."""
        engine = make_engine()
        effective = as_of + datetime.timedelta(days=45)
        tranche_pricers(engine, [Tranche(0.03, 0.07, effective=effective)])
        assert engine.loss_levels == [0.03, 0.07]
        assert effective in engine.time_grid

    def test_pv_strikes_need_discount_curve(self, make_engine):
        base = BaseCorrelation([0.03, 0.07], [0.2, 0.4], StrikeMethod.EXPECTED_LOSS_PV)
        with pytest.raises(ValueError, match="discount curve"):
            tranche_pricers(make_engine(correlation=base), [Tranche(0.0, 0.03)])


class TestTrancheLossMapper:
    """Tests for tranche loss queries."""

    def test_loss_in_notional_units(self, make_engine, maturity):
        engine = make_engine()
        mapper = TrancheLossMapper(Tranche(0.03, 0.07), engine, notional=4e6)
        fraction = engine.expected_loss(maturity, 0.03, 0.07) / 0.04
        assert mapper.expected_loss_fraction(maturity) == pytest.approx(fraction)
        assert mapper.expected_loss(maturity) == pytest.approx(fraction * 4e6)

    def test_tranche_expected_loss(self, make_engine, maturity):
        engine = make_engine()
        value = tranche_expected_loss(engine.distribution, 0.03, 0.07, maturity)
        assert value == pytest.approx(engine.expected_loss(maturity, 0.03, 0.07) / 0.04)

    def test_loss_curve(self, make_engine):
        """Test the loss curve series."""
        engine = make_engine()
        mapper = TrancheLossMapper(Tranche(0.0, 0.03, name="Equity"), engine)
        curve = mapper.loss_curve()
        assert isinstance(curve, pd.Series)
        assert curve.name == "Equity"
        assert curve.index.name == "date"
        assert list(curve.index) == engine.time_grid
        assert curve.is_monotonic_increasing
        assert curve.iloc[-1] <= 1.0

    def test_tranche_maturity_cuts_curve(self, make_engine, as_of):
        engine = make_engine()
        end = engine.time_grid[4]
        mapper = TrancheLossMapper(Tranche(0.0, 0.03, maturity=end), engine)
        assert list(mapper.loss_curve().index) == engine.time_grid[:5]


class TestBaseCorrelationTranches:
    """Tests for tranches priced off a base correlation."""

    def test_flat_surface_matches_plain_engine(self, make_engine, maturity):
        """Test that a flat surface reproduces the plain tranche loss."""
        tranche = Tranche(0.03, 0.07)
        plain = tranche_pricers(make_engine(correlation=0.3), [tranche])[0]
        base = BaseCorrelation([0.1], [0.3])
        mapper = tranche_pricers(make_engine(correlation=base), [tranche])[0]
        assert isinstance(mapper.basket, BaseCorrelationTrancheBasket)
        assert mapper.expected_loss_fraction(maturity) == pytest.approx(
            plain.expected_loss_fraction(maturity), rel=1e-8)

    def test_difference_of_base_tranches(self, make_engine, maturity):
        """Test L(0, d; rho_d) - L(0, a; rho_a)."""
        base = BaseCorrelation([0.03, 0.07], [0.2, 0.5])
        engine = make_engine(correlation=base)
        mapper = tranche_pricers(engine, [Tranche(0.03, 0.07)])[0]
        points = engine.integration_points_first

        low = make_engine(correlation=0.2, integration_points=points)
        high = make_engine(correlation=0.5, integration_points=points)
        expected = high.expected_loss(maturity, 0.0, 0.07) - low.expected_loss(maturity, 0.0, 0.03)
        assert mapper.basket.tranche_correlations() == pytest.approx((0.2, 0.5))
        assert mapper.basket.expected_loss(maturity) == pytest.approx(expected, rel=1e-8)

    def test_siblings_share_one_correlation(self, make_engine, maturity):
        """Test that tranches on one pool resolve the same correlation object."""
        base = BaseCorrelation([0.03, 0.07, 0.10], [0.2, 0.3, 0.4])
        engine = make_engine(correlation=base)
        first, second = tranche_pricers(engine, [Tranche(0.0, 0.03), Tranche(0.03, 0.07)])
        first.expected_loss(maturity)
        second.expected_loss(maturity)
        assert first.correlation is second.correlation
        assert engine.shared_correlation.resolved
        assert engine.shared_correlation.model is first.correlation

    def test_surface_change_is_picked_up(self, make_engine, maturity):
        """Test that editing the surface reprices the tranche."""
        base = BaseCorrelation([0.03, 0.07], [0.2, 0.3])
        mapper = tranche_pricers(make_engine(correlation=base), [Tranche(0.0, 0.03)])[0]
        before = mapper.expected_loss(maturity)
        base.set_surface([0.03, 0.07], [0.6, 0.7])
        assert mapper.expected_loss(maturity) < before

    def test_expected_loss_strikes(self, make_engine, pool, as_of, maturity):
        """Test strikes scaled by the pool expected loss."""
        base = BaseCorrelation([0.1, 0.5, 1.0], [0.2, 0.3, 0.4], StrikeMethod.EXPECTED_LOSS)
        engine = make_engine(correlation=base)
        mapper = tranche_pricers(engine, [Tranche(0.03, 0.07)])[0]
        scale = pool.expected_loss(maturity, as_of)
        assert mapper.basket.strikes() == pytest.approx((0.03 / scale, 0.07 / scale))

    def test_other_levels_rejected(self, make_engine, maturity):
        base = BaseCorrelation([0.03], [0.2])
        mapper = tranche_pricers(make_engine(correlation=base), [Tranche(0.0, 0.03)])[0]
        with pytest.raises(ValueError, match="asked for"):
            mapper.basket.expected_loss(maturity, 0.03, 0.07)

    def test_engine_keeps_placeholder_correlation(self, make_engine):
        """Test that the pool engine itself holds a zero correlation."""
        base = BaseCorrelation([0.03], [0.2])
        engine = make_engine(correlation=base)
        assert engine.base_correlation is base
        assert np.allclose(engine.correlation.correlations, 0.0)
