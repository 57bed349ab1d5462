"""Latent variable model used to simulate correlated defaults."""

from typing import Optional

import numpy as np
from scipy.stats import norm, t as student_t

from .copula import Copula, CopulaType
from .correlation import (
    CorrelationKind,
    CorrelationModel,
    correlation_matrix,
    factor_loadings,
)


class LatentFactorModel:
    """Correlated latent variables driving name defaults.

    With factor loadings the latent variable is

        X_i = sum_k beta_ik F_k + sqrt(1 - sum_k beta_ik^2) eps_i

    with independent standard normal factors; a full correlation matrix
    is simulated through its Cholesky factor. For the Student-t copula the
    variables are divided by sqrt(W / nu), W chi-square with nu degrees
    of freedom. Name i defaults by a date when its uniform
    U_i = F(X_i) falls below its default probability to that date.
    """

    def __init__(self, correlation: CorrelationModel, copula: Copula):
        if not copula.supports_simulation:
            raise ValueError(f"{copula.name} copula cannot be simulated")
        self.copula = copula
        self.num_names = correlation.size
        self._loadings: Optional[np.ndarray] = None
        self._cholesky: Optional[np.ndarray] = None
        if correlation.kind == CorrelationKind.GENERAL:
            n = correlation.size
            self._cholesky = np.linalg.cholesky(correlation.matrix + np.eye(n) * 1e-10)
        else:
            self._loadings = factor_loadings(correlation)
            total = np.sum(self._loadings ** 2, axis=1)
            self._idio = np.sqrt(np.clip(1.0 - total, 0.0, 1.0))
        self._correlation = correlation

    @property
    def num_factors(self) -> int:
        if self._loadings is None:
            return self.num_names
        return self._loadings.shape[1]

    def generate_factor_scenarios(self, num_scenarios: int,
                                  rng: np.random.Generator) -> np.ndarray:
        """Independent standard normal factors, shape (scenarios, factors)."""
        return rng.standard_normal((num_scenarios, self.num_factors))

    def simulate_latent_variables(self, num_scenarios: int,
                                  rng: np.random.Generator) -> np.ndarray:
        """Latent variables of every name, shape (scenarios, names)."""
        factors = self.generate_factor_scenarios(num_scenarios, rng)
        if self._cholesky is not None:
            latent = factors @ self._cholesky.T
        else:
            shocks = rng.standard_normal((num_scenarios, self.num_names))
            latent = factors @ self._loadings.T + shocks * self._idio
        if self.copula.copula_type == CopulaType.STUDENT_T:
            nu = float(self.copula.df_common)
            mix = rng.chisquare(nu, size=(num_scenarios, 1))
            latent = latent / np.sqrt(mix / nu)
        return latent

    def simulate_uniforms(self, num_scenarios: int, rng: np.random.Generator) -> np.ndarray:
        """Latent variables mapped to uniform marginals."""
        latent = self.simulate_latent_variables(num_scenarios, rng)
        if self.copula.copula_type == CopulaType.STUDENT_T:
            return student_t.cdf(latent, self.copula.df_common)
        return norm.cdf(latent)

    def calculate_default_thresholds(self, default_probabilities: np.ndarray) -> np.ndarray:
        """Latent thresholds below which names default."""
        pd_ = np.asarray(default_probabilities, dtype=float)
        with np.errstate(divide="ignore"):
            if self.copula.copula_type == CopulaType.STUDENT_T:
                return student_t.ppf(pd_, self.copula.df_common)
            return norm.ppf(pd_)

    def get_correlation_matrix(self) -> np.ndarray:
        """Pairwise correlation of the latent variables."""
        return correlation_matrix(self._correlation)
