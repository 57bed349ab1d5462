"""Monte Carlo basket engine."""

import datetime
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .basket import LossDistributionEngine
from .copula import Copula
from .correlation import CorrelationTarget
from .distribution import LossDistribution
from .errors import UnsupportedCombination
from .factor_model import LatentFactorModel

logger = logging.getLogger(__name__)

# Seed values with special meaning.
FIXED_SEED = 0
RANDOM_SEED = -1


@dataclass
class SimulationResult:
    """Paths of a Monte Carlo run.

    Attributes:
        dates: Grid dates
        path_losses: Pool loss fraction per path and date, shape (paths, dates)
        path_amortizations: Amortized fraction per path and date
        default_indicators: Names defaulted by the last date, shape (paths, names)
        num_paths: Number of simulated paths
        num_defaults_per_path: Defaults by the last date on each path
    """
    dates: List[datetime.date]
    path_losses: np.ndarray
    path_amortizations: np.ndarray
    default_indicators: np.ndarray
    num_paths: int
    num_defaults_per_path: np.ndarray

    @property
    def expected_loss(self) -> float:
        """Average pool loss at the last date."""
        return float(np.mean(self.path_losses[:, -1]))

    @property
    def loss_std(self) -> float:
        """Standard deviation of pool loss at the last date."""
        return float(np.std(self.path_losses[:, -1]))

    def get_var(self, confidence: float = 0.99) -> float:
        """Loss quantile at the last date."""
        return float(np.percentile(self.path_losses[:, -1], confidence * 100))

    def get_expected_shortfall(self, confidence: float = 0.99) -> float:
        """Average loss beyond the quantile at the last date."""
        var = self.get_var(confidence)
        tail = self.path_losses[:, -1][self.path_losses[:, -1] >= var]
        if len(tail) == 0:
            return var
        return float(np.mean(tail))

    @property
    def default_rate(self) -> float:
        """Fraction of names defaulted, averaged over paths."""
        return float(np.mean(self.default_indicators))

    def get_name_default_rate(self, name_idx: int) -> float:
        """Simulated default probability of one name."""
        return float(np.mean(self.default_indicators[:, name_idx]))

    def expected_loss_curve(self) -> np.ndarray:
        return np.mean(self.path_losses, axis=0)


def resolve_seed(seed: int, fixed_seed: int) -> Optional[int]:
    """Map the seed convention to a generator seed.

    0 uses the fixed default seed, -1 draws fresh entropy.
    """
    if seed < RANDOM_SEED:
        raise ValueError(f"Seed must be -1, 0 or positive, got {seed}")
    if seed == FIXED_SEED:
        return fixed_seed
    if seed == RANDOM_SEED:
        return None
    return seed


def simulate_event_indices(model: LatentFactorModel, default_probabilities: np.ndarray,
                           prepay_probabilities: Optional[np.ndarray], num_paths: int,
                           rng: np.random.Generator, batch_size: Optional[int] = None
                           ) -> Tuple[np.ndarray, np.ndarray]:
    """Grid index of each name's default and prepayment on each path.

    A name defaults by date d when its uniform is at most the default
    probability to d, and prepays by d when the uniform is above one
    minus the prepayment probability to d. The two events exclude each
    other while their probabilities sum to at most one.

    Args:
        model: Latent variable model of the names
        default_probabilities: Cumulative default probability per date
            and name, shape (dates, names), non-decreasing in date
        prepay_probabilities: Cumulative prepayment probability, same
            shape, or None when no name can prepay
        num_paths: Number of paths
        rng: Generator seeding every batch
        batch_size: Paths simulated per batch, all at once if None

    Returns:
        Two integer arrays (paths, names); the number of dates means the
        event does not happen on the grid
    """
    n_dates = default_probabilities.shape[0]
    if batch_size is None or batch_size >= num_paths:
        batches = [num_paths]
    else:
        batches = [batch_size] * (num_paths // batch_size)
        if num_paths % batch_size:
            batches.append(num_paths % batch_size)

    defaults, prepays = [], []
    for size in batches:
        batch_rng = np.random.default_rng(rng.integers(0, 2**31))
        u = model.simulate_uniforms(size, batch_rng)
        index = np.full(u.shape, n_dates, dtype=int)
        prepay = np.full(u.shape, n_dates, dtype=int)
        for d in range(n_dates - 1, -1, -1):
            index[u <= default_probabilities[d]] = d
            if prepay_probabilities is not None:
                prepay[u > 1.0 - prepay_probabilities[d]] = d
        prepay[prepay >= index] = n_dates
        defaults.append(index)
        prepays.append(prepay)
    return np.concatenate(defaults), np.concatenate(prepays)


def simulate_default_indices(model: LatentFactorModel, default_probabilities: np.ndarray,
                             num_paths: int, rng: np.random.Generator,
                             batch_size: Optional[int] = None) -> np.ndarray:
    """Grid index of each name's default on each path, see :func:`simulate_event_indices`."""
    return simulate_event_indices(model, default_probabilities, None, num_paths,
                                  rng, batch_size)[0]


class MonteCarloEngine(LossDistributionEngine):
    """Pool loss from simulated default paths.

    Accepts full pairwise correlation as well as factor structures, for
    the Gaussian and Student-t copulas. Results are reproducible for a
    given seed and batch size.

    Args:
        sample_size: Number of paths, 0 for the settings default
        seed: 0 for the fixed default seed, -1 for a random seed,
            otherwise the seed itself
        batch_size: Paths simulated per batch
    """

    target = CorrelationTarget.GENERAL
    uses_quadrature = False

    def __init__(self, *args, sample_size: int = 0, seed: int = FIXED_SEED,
                 batch_size: Optional[int] = None, **kwargs):
        resolve_seed(seed, 0)
        self._sample_size = int(sample_size)
        self._seed = int(seed)
        self.batch_size = batch_size
        self.last_result: Optional[SimulationResult] = None
        super().__init__(*args, **kwargs)

    def _check_copula(self, copula: Copula) -> None:
        if not copula.supports_simulation:
            raise UnsupportedCombination(
                f"{copula.name} copula is not supported by the Monte Carlo engine"
            )

    def _default_sample_size(self) -> int:
        return self.settings.sample_size

    @property
    def sample_size(self) -> int:
        return self._sample_size if self._sample_size > 0 else self._default_sample_size()

    @sample_size.setter
    def sample_size(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"Sample size must be non-negative, got {value}")
        self._sample_size = int(value)
        self._invalidate()

    @property
    def seed(self) -> int:
        return self._seed

    @seed.setter
    def seed(self, value: int) -> None:
        resolve_seed(value, 0)
        self._seed = int(value)
        self._invalidate()

    def _compute(self, dates):
        n_paths = self.sample_size
        rng = np.random.default_rng(resolve_seed(self._seed, self.settings.default_seed))
        model = LatentFactorModel(self.correlation, self.copula)
        events = [self._event_probabilities(d) for d in dates]
        pd_matrix = np.maximum.accumulate(np.array([e[0] for e in events]), axis=0)
        prepay_matrix = np.maximum.accumulate(np.array([e[1] for e in events]), axis=0)
        # survivors past an early maturity all prepay
        prepay_matrix = np.minimum(prepay_matrix, 1.0 - pd_matrix)
        index, prepay_index = simulate_event_indices(
            model, pd_matrix, prepay_matrix if prepay_matrix.any() else None,
            n_paths, rng, self.batch_size)

        w = self.pool.weights
        n_dates = len(dates)
        recoveries = np.array([self.pool.recovery_rates(d) for d in dates])
        recoveries = np.vstack([recoveries, recoveries[-1:]])
        r_at_default = recoveries[index, np.arange(self.count)]

        losses = np.zeros((n_paths, n_dates))
        amortized = np.zeros((n_paths, n_dates))
        for d in range(n_dates):
            defaulted = index <= d
            repaid = prepay_index <= d
            losses[:, d] = (defaulted * (1.0 - r_at_default)) @ w
            amortized[:, d] = (defaulted * r_at_default) @ w + repaid @ w

        defaults = index < n_dates
        self.last_result = SimulationResult(
            dates=list(dates),
            path_losses=losses,
            path_amortizations=amortized,
            default_indicators=defaults,
            num_paths=n_paths,
            num_defaults_per_path=np.sum(defaults, axis=1),
        )
        logger.debug("Simulated %d paths, mean defaults %.4f",
                     n_paths, float(np.mean(self.last_result.num_defaults_per_path)))

        probs = np.full((n_dates, n_paths), 1.0 / n_paths)
        loss = LossDistribution(dates, losses.T, probs)
        amort = None if self.no_amortization else LossDistribution(dates, amortized.T, probs)
        return loss, amort
