"""Forward loss engine.

The number of defaults in the pool follows a pure birth Markov chain.
Leaving state k happens at rate ``lambda_k = s_k * x + b_k`` where the
scaling factors ``s`` and base levels ``b`` fix the shape of the rates
and the multiplier ``x`` is solved on every grid step so the expected
number of defaults matches the survival curves.
"""

import logging
from typing import Optional, Sequence

import numpy as np
from scipy.linalg import expm
from scipy.optimize import brentq

from .basket import LossDistributionEngine
from .config import DEFAULT_FORWARD_LOSS_SETTINGS, ForwardLossSettings
from .copula import Copula
from .curves import year_fraction
from .distribution import LossDistribution
from .errors import ArgumentShapeError

logger = logging.getLogger(__name__)


def default_scaling_factors(basket_size: int, rate: float = 0.0) -> np.ndarray:
    """Scaling factors ``exp(rate * k) * (N - k)`` for k = 0..N."""
    k = np.arange(basket_size + 1)
    return np.exp(rate * k) * (basket_size - k)


def default_base_levels(basket_size: int) -> np.ndarray:
    return np.zeros(basket_size + 1)


def default_state_losses(basket_size: int) -> np.ndarray:
    """Pool loss fraction ``k / N`` of each default count."""
    return np.arange(basket_size + 1) / basket_size


def transform_scaling_factors(scaling_factors: np.ndarray, hazard_rates: np.ndarray,
                              settings: ForwardLossSettings = DEFAULT_FORWARD_LOSS_SETTINGS
                              ) -> np.ndarray:
    """Weight scaling factors by the hazard rates of the names left.

    Args:
        scaling_factors: Raw factors, length N + 1
        hazard_rates: Name hazard rates, length N
        settings: Decay constants

    Returns:
        Transformed factors, length N + 1, with the last one zero
    """
    hazards = np.sort(np.asarray(hazard_rates, dtype=float))[::-1]
    n = len(hazards)
    result = np.zeros(n + 1)
    defaulted = np.zeros(n)
    for i in range(1, n):
        defaulted[i] = settings.alpha * defaulted[i - 1] + hazards[i - 1]
    remaining = 0.0
    for k in range(n - 1, -1, -1):
        weight = 1.0 if k > settings.flat else settings.beta
        remaining = weight * remaining + hazards[k]
        result[k] = scaling_factors[k] * (remaining + defaulted[k])
    return result


def _check_length(values: np.ndarray, what: str, states: int) -> None:
    if len(values) != states:
        raise ArgumentShapeError(
            f"Number of {what} {len(values)} must match number of states {states}"
        )


class ForwardLossEngine(LossDistributionEngine):
    """Default count Markov chain calibrated to the name survival curves.

    Names must share one principal. The engine tracks no amortization.

    Args:
        state_losses: Pool loss fraction per default count before
            recovery, ``k / N`` if None
        scaling_factors: Rate shape per state, see
            :func:`default_scaling_factors`
        base_levels: Rate floor per state, zeros if None
        rate: Exponent of the default scaling factors
        forward_settings: Scaling factor decay constants
    """

    uses_quadrature = False

    def __init__(self, as_of, settle, maturity, pool,
                 state_losses: Optional[Sequence[float]] = None,
                 scaling_factors: Optional[Sequence[float]] = None,
                 base_levels: Optional[Sequence[float]] = None,
                 rate: float = 0.0,
                 forward_settings: ForwardLossSettings = DEFAULT_FORWARD_LOSS_SETTINGS,
                 **kwargs):
        principals = pool.principals
        if np.any(principals != principals[0]):
            raise ValueError(f"Principals must be uniform, got {principals}")
        n = pool.count
        states = n + 1
        self.state_losses = (default_state_losses(n) if state_losses is None
                             else np.asarray(state_losses, dtype=float))
        self.scaling_factors = (default_scaling_factors(n, rate) if scaling_factors is None
                                else np.asarray(scaling_factors, dtype=float))
        self.base_levels = (default_base_levels(n) if base_levels is None
                            else np.asarray(base_levels, dtype=float))
        _check_length(self.state_losses, "state losses", states)
        _check_length(self.scaling_factors, "scaling factors", states)
        _check_length(self.base_levels, "base levels", states)
        if np.any(self.base_levels < 0):
            raise ValueError(f"Base levels must be non-negative, got {self.base_levels}")
        self.forward_settings = forward_settings
        super().__init__(as_of, settle, maturity, pool, Copula(), 0.0, **kwargs)
        self._no_amortization = True
        self.transition_rates: Optional[np.ndarray] = None

    def maximum_amortization_level(self) -> float:
        return 0.0

    def _generator(self, rates: np.ndarray) -> np.ndarray:
        states = len(rates)
        q = np.zeros((states, states))
        idx = np.arange(states - 1)
        q[idx, idx] = -rates[:-1]
        q[idx, idx + 1] = rates[:-1]
        return q

    def _step(self, probabilities: np.ndarray, shape: np.ndarray, dt: float,
              target: float) -> np.ndarray:
        """Evolve the count distribution over dt matching the expected count."""
        counts = np.arange(len(probabilities))

        def evolve(x):
            rates = shape * x + self.base_levels
            rates[-1] = 0.0
            return probabilities @ expm(self._generator(rates) * dt)

        def excess(x):
            return float(evolve(x) @ counts) - target

        if excess(0.0) >= 0.0:
            return evolve(0.0)
        high = 1.0
        for _ in range(60):
            if excess(high) > 0.0:
                break
            high *= 2.0
        else:
            raise ValueError(f"Cannot reach expected default count {target:.6g}")
        x = brentq(excess, 0.0, high, xtol=1e-14)
        self.transition_rates = shape * x + self.base_levels
        self.transition_rates[-1] = 0.0
        return evolve(x)

    def _compute(self, dates):
        start = self.portfolio_start
        hazards = np.array([c.hazard_rate(start, self.maturity) for c in self.pool.survival_curves])
        shape = transform_scaling_factors(self.scaling_factors, hazards, self.forward_settings)

        states = self.count + 1
        probs = np.zeros((len(dates), states))
        probs[0, 0] = 1.0
        for i in range(1, len(dates)):
            dt = year_fraction(dates[i - 1], dates[i])
            target = float(np.sum(self.pool.default_probabilities(dates[i], start)))
            probs[i] = self._step(probs[i - 1], shape, dt, target)
        logger.debug("Forward loss chain with %d states over %d dates", states, len(dates))

        loss_rate = max(0.0, 1.0 - float(np.mean(self.pool.recovery_rates())))
        levels = np.minimum(self.state_losses * loss_rate, 1.0)
        return LossDistribution(dates, levels, probs), None
