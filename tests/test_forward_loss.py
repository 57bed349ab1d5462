"""Tests for forward_loss.py - default count Markov chain."""

import pytest
import numpy as np

from credit_basket import (
    ArgumentShapeError,
    ForwardLossEngine,
    ForwardLossSettings,
    default_scaling_factors,
    default_state_losses,
    setup_pool,
    transform_scaling_factors,
)


class TestScalingFactors:
    """Tests for the rate shape helpers."""

    def test_default_factors(self):
        """Test the default factors at zero rate."""
        assert list(default_scaling_factors(3)) == [3.0, 2.0, 1.0, 0.0]

    def test_rate_grows_factors(self):
        """Test that a positive rate raises later states."""
        flat = default_scaling_factors(4)
        steep = default_scaling_factors(4, rate=0.5)
        assert steep[0] == flat[0]
        assert np.all(steep[1:-1] > flat[1:-1])

    def test_state_losses(self):
        assert default_state_losses(4) == pytest.approx([0.0, 0.25, 0.5, 0.75, 1.0])

    def test_transform_last_state_is_absorbing(self):
        """Test that the top state never leaves."""
        result = transform_scaling_factors(default_scaling_factors(3), np.array([0.01, 0.03, 0.02]))
        assert len(result) == 4
        assert result[-1] == 0.0
        assert np.all(result[:-1] > 0)

    def test_transform_without_decay(self):
        """Test the transform when nothing decays."""
        settings = ForwardLossSettings(alpha=1.0, beta=1.0, flat=0)
        hazards = np.array([0.01, 0.02])
        result = transform_scaling_factors(np.ones(3), hazards, settings)
        # every state sees the total hazard of the pool
        assert result[:2] == pytest.approx([0.03, 0.03])


class TestForwardLossEngine:
    """Tests for the calibrated chain."""

    def test_expected_loss_matches_curves(self, as_of, maturity, pool):
        """Test the expected default count against the survival curves."""
        engine = ForwardLossEngine(as_of, as_of, maturity, pool)
        for date in engine.time_grid[1:]:
            expected = pool.expected_loss(date, as_of)
            assert engine.expected_loss(date) == pytest.approx(expected, rel=1e-6)

    def test_probabilities_sum_to_one(self, as_of, maturity, pool):
        engine = ForwardLossEngine(as_of, as_of, maturity, pool, rate=0.3)
        assert engine.distribution.total_probability() == pytest.approx(
            np.ones(len(engine.time_grid)))

    def test_contagion_fattens_tail(self, as_of, maturity, pool):
        """Test that rising rates put more weight on many defaults."""
        calm = ForwardLossEngine(as_of, as_of, maturity, pool, rate=0.0)
        contagious = ForwardLossEngine(as_of, as_of, maturity, pool, rate=1.5)
        assert contagious.expected_loss(maturity, 0.3, 1.0) > calm.expected_loss(maturity, 0.3, 1.0)

    def test_no_amortization(self, as_of, maturity, pool):
        engine = ForwardLossEngine(as_of, as_of, maturity, pool)
        assert engine.no_amortization
        assert engine.maximum_amortization_level() == 0.0
        assert engine.expected_amortization(maturity) == 0.0

    @pytest.mark.parametrize("argument", ["state_losses", "scaling_factors", "base_levels"])
    def test_length_mismatch(self, as_of, maturity, pool, argument):
        """Test that per-state arrays need N + 1 entries."""
        with pytest.raises(ArgumentShapeError, match="must match number of states"):
            ForwardLossEngine(as_of, as_of, maturity, pool, **{argument: np.ones(4)})

    def test_negative_base_levels(self, as_of, maturity, pool):
        with pytest.raises(ValueError, match="non-negative"):
            ForwardLossEngine(as_of, as_of, maturity, pool, base_levels=-np.ones(6))

    def test_uniform_principals_required(self, as_of, maturity, flat_curves):
        """Test that names must share one principal."""
        pool = setup_pool(flat_curves, [1.0, 2.0, 1.0, 1.0, 1.0])
        with pytest.raises(ValueError, match="uniform"):
            ForwardLossEngine(as_of, as_of, maturity, pool)
