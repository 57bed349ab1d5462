"""Tests for factor_model.py - LatentFactorModel class."""

import pytest
import numpy as np

from credit_basket import (
    Copula,
    CopulaType,
    FactorCorrelation,
    GeneralCorrelation,
    LatentFactorModel,
    SingleFactorCorrelation,
)


NAMES = ["A", "B", "C"]


class TestLatentFactorModel:
    """Tests for the latent variable simulation."""

    def test_single_factor_correlation(self):
        """Test the sample correlation of the latent variables."""
        model = LatentFactorModel(SingleFactorCorrelation(NAMES, 0.36), Copula())
        latent = model.simulate_latent_variables(100_000, np.random.default_rng(3))
        sample = np.corrcoef(latent.T)
        assert model.num_factors == 1
        assert sample[0, 1] == pytest.approx(0.36, abs=0.02)
        assert np.std(latent, axis=0) == pytest.approx(np.ones(3), abs=0.02)

    def test_multi_factor_loadings(self):
        loadings = [[0.6, 0.0], [0.6, 0.0], [0.0, 0.7]]
        model = LatentFactorModel(FactorCorrelation(NAMES, loadings), Copula())
        assert model.num_factors == 2
        expected = np.array([[1.0, 0.36, 0.0], [0.36, 1.0, 0.0], [0.0, 0.0, 1.0]])
        assert model.get_correlation_matrix() == pytest.approx(expected)

    def test_general_correlation(self):
        """Test simulation through the Cholesky factor."""
        matrix = np.array([[1.0, 0.5, 0.2], [0.5, 1.0, 0.3], [0.2, 0.3, 1.0]])
        model = LatentFactorModel(GeneralCorrelation(NAMES, matrix), Copula())
        latent = model.simulate_latent_variables(100_000, np.random.default_rng(5))
        assert np.corrcoef(latent.T) == pytest.approx(matrix, abs=0.02)

    def test_uniform_marginals(self):
        """Test that uniforms match default probabilities in frequency."""
        for copula in (Copula(), Copula(CopulaType.STUDENT_T, df_common=5)):
            model = LatentFactorModel(SingleFactorCorrelation(NAMES, 0.3), copula)
            u = model.simulate_uniforms(50_000, np.random.default_rng(11))
            assert np.mean(u < 0.05, axis=0) == pytest.approx(np.full(3, 0.05), abs=0.01)

    def test_thresholds(self):
        model = LatentFactorModel(SingleFactorCorrelation(NAMES, 0.3), Copula())
        thresholds = model.calculate_default_thresholds(np.array([0.0, 0.5]))
        assert thresholds[0] == -np.inf
        assert thresholds[1] == pytest.approx(0.0)

    def test_frailty_copula_rejected(self):
        with pytest.raises(ValueError, match="cannot be simulated"):
            LatentFactorModel(SingleFactorCorrelation(NAMES, 0.3), Copula(CopulaType.CLAYTON))
