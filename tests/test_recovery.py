"""Tests for recovery.py - factor-conditional recovery models."""

import pytest
import numpy as np

from credit_basket import (
    CorrelatedRecovery,
    FixedRecovery,
    create_recovery_model,
)
from credit_basket.lib.recovery import recovery_model_for


def _normal_nodes(points=40):
    x, w = np.polynomial.hermite.hermgauss(points)
    return x * np.sqrt(2.0), w / np.sqrt(np.pi)


class TestFixedRecovery:
    """Tests for FixedRecovery class."""

    def test_ignores_factor(self):
        """Test that every node sees the expected recovery."""
        model = FixedRecovery()
        out = model.conditional(np.array([0.4, 0.25]), np.array([-2.0, 0.0, 2.0]))
        assert out.shape == (3, 2)
        assert np.all(out == np.array([0.4, 0.25]))
        assert model.is_fixed


class TestCorrelatedRecovery:
    """Tests for CorrelatedRecovery class."""

    def test_validation(self):
        """Test that the sensitivity is bounded."""
        with pytest.raises(ValueError, match="between -1 and 1"):
            CorrelatedRecovery(beta=1.5)

    def test_mean_preserved(self):
        """Test that the factor average recovers the expected recovery."""
        factor, weights = _normal_nodes()
        recoveries = np.array([0.1, 0.4, 0.7])
        out = CorrelatedRecovery(beta=0.5).conditional(recoveries, factor)
        assert weights @ out == pytest.approx(recoveries, abs=1e-8)

    def test_increasing_in_factor(self):
        """Test that recoveries fall in bad states for positive beta."""
        out = CorrelatedRecovery(beta=0.3).conditional(np.array([0.4]),
                                                       np.array([-2.0, 0.0, 2.0]))
        assert np.all(np.diff(out[:, 0]) > 0)
        assert not CorrelatedRecovery(beta=0.3).is_fixed

    def test_boundary_recoveries_kept(self):
        """Test that zero and full recoveries do not move."""
        out = CorrelatedRecovery(beta=0.8).conditional(np.array([0.0, 1.0]),
                                                       np.array([-1.0, 1.0]))
        assert np.all(out[:, 0] == 0.0)
        assert np.all(out[:, 1] == 1.0)

    def test_repr(self):
        assert "0.3000" in repr(CorrelatedRecovery(beta=0.3))


class TestCreateRecoveryModel:
    """Tests for the recovery model factory."""

    def test_create_models(self):
        assert isinstance(create_recovery_model('fixed'), FixedRecovery)
        assert isinstance(create_recovery_model('Correlated', beta=0.2), CorrelatedRecovery)

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown recovery model type"):
            create_recovery_model('beta')

    def test_model_for_sensitivity(self):
        """Test that a zero sensitivity gives the fixed model."""
        assert recovery_model_for(0.0).is_fixed
        assert recovery_model_for(0.4).beta == 0.4
