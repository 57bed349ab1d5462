"""Tests for copula.py - conditional default probabilities by family."""

import pytest
import numpy as np

from credit_basket import Copula, CopulaType, UnsupportedCombination
from credit_basket.lib.copula import frank_theta, kendall_tau


PD = np.array([0.01, 0.05, 0.10, 0.25])
LOADINGS = np.sqrt(np.full(4, 0.3))


class TestCopulaValidation:
    """Tests for copula parameter checks."""

    def test_student_t_needs_degrees_of_freedom(self):
        """Test that a t copula needs positive degrees of freedom."""
        with pytest.raises(ValueError, match="degrees of freedom"):
            Copula(CopulaType.STUDENT_T)

    def test_double_t_needs_degrees_above_two(self):
        """Test that Double-t degrees of freedom exceed two."""
        with pytest.raises(ValueError, match="above 2"):
            Copula(CopulaType.DOUBLE_T, df_common=2, df_idiosyncratic=5)

    def test_nig_parameters(self):
        """Test NIG alpha and beta constraints."""
        with pytest.raises(ValueError, match="alpha"):
            Copula(CopulaType.NIG, data=(1.0, 1.5))

    def test_random_factor_loading_probabilities(self):
        """Test that regime probabilities sum to one."""
        with pytest.raises(ValueError, match="sum to 1"):
            Copula(CopulaType.RANDOM_FACTOR_LOADING, data=(0.5, 0.5, 0.2, 1.0))

    def test_simulation_support(self):
        """Test which families Monte Carlo engines accept."""
        assert Copula().supports_simulation
        assert Copula(CopulaType.STUDENT_T, df_common=5).supports_simulation
        assert not Copula(CopulaType.CLAYTON).supports_simulation

    def test_string_form(self):
        """Test the display name of t copulas."""
        assert str(Copula(CopulaType.DOUBLE_T, 4, 5)) == "DoubleT(4,5)"
        assert str(Copula()) == "Gauss"


class TestIntegration:
    """Tests that every family reproduces the marginal default probabilities."""

    @pytest.mark.parametrize("copula, points, rel", [
        (Copula(), 25, 1e-6),
        (Copula(CopulaType.EXTENDED_GAUSS), 25, 1e-6),
        (Copula(CopulaType.STUDENT_T, df_common=6), 40, 2e-2),
        (Copula(CopulaType.DOUBLE_T, df_common=4, df_idiosyncratic=5), 40, 2e-2),
        (Copula(CopulaType.CLAYTON), 200, 2e-2),
        (Copula(CopulaType.GUMBEL), 100, 5e-2),
        (Copula(CopulaType.FRANK), 100, 5e-2),
        (Copula(CopulaType.NIG, data=(1.0, 0.0)), 100, 5e-2),
        (Copula(CopulaType.RANDOM_FACTOR_LOADING, data=(0.5, 0.5, 0.5, 1.0)), 25, 1e-6),
        (Copula(CopulaType.POISSON), 0, 1e-10),
    ])
    def test_marginals(self, copula, points, rel):
        """Test weights @ conditional probabilities against the marginals."""
        integ = copula.integrate(PD, LOADINGS, points)
        assert integ.weights.sum() == pytest.approx(1.0, abs=1e-8)
        assert np.all(integ.probabilities >= 0.0)
        assert np.all(integ.probabilities <= 1.0 + 1e-12)
        assert integ.marginals() == pytest.approx(PD, rel=rel)

    def test_zero_correlation_is_independent(self):
        """Test that zero loadings give the marginal at every node."""
        integ = Copula().integrate(PD, np.zeros(4), 10)
        assert np.allclose(integ.probabilities, PD[None, :])

    def test_conditional_probability_decreases_in_factor(self):
        """Test that a better common factor lowers default probability."""
        integ = Copula().integrate(PD, LOADINGS, 15)
        order = np.argsort(integ.factor)
        assert np.all(np.diff(integ.probabilities[order, 0]) <= 0)

    def test_multi_factor_gauss(self):
        """Test two-factor Gaussian integration."""
        loadings = np.column_stack([np.full(4, 0.4), np.full(4, 0.3)])
        integ = Copula().integrate(PD, loadings, 10)
        assert integ.node_count == 100
        assert integ.marginals() == pytest.approx(PD, rel=1e-4)

    def test_multi_factor_rejected_for_other_families(self):
        """Test that only Gaussian copulas take several factors."""
        loadings = np.column_stack([np.full(4, 0.4), np.full(4, 0.3)])
        with pytest.raises(UnsupportedCombination):
            Copula(CopulaType.CLAYTON).integrate(PD, loadings, 10)

    def test_points_required(self):
        """Test that quadrature families need positive points."""
        with pytest.raises(ValueError, match="quadrature points"):
            Copula().integrate(PD, LOADINGS, 0)

    def test_loadings_shape(self):
        """Test that loadings must match the names."""
        with pytest.raises(ValueError, match="one row"):
            Copula().integrate(PD, np.full(3, 0.5), 10)


class TestArchimedeanParameters:
    """Tests for the correlation to Archimedean parameter mapping."""

    def test_kendall_tau(self):
        """Test the Gaussian Kendall tau mapping."""
        assert kendall_tau(0.0) == 0.0
        assert kendall_tau(1.0) == pytest.approx(1.0)
        assert kendall_tau(0.5) == pytest.approx(1.0 / 3.0)

    def test_frank_theta(self):
        """Test that the Frank parameter grows with tau."""
        assert frank_theta(0.0) == 0.0
        assert 0.0 < frank_theta(0.1) < frank_theta(0.3)
