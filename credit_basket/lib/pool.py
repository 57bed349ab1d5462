"""Reference names and the filtered pool used by the basket engines."""

import datetime
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np

from .config import DEFAULT_SETTINGS, EngineSettings
from .curves import RecoveryCurve, SurvivalCurve
from .errors import ArgumentShapeError, MissingRecoveryData

logger = logging.getLogger(__name__)


@dataclass
class Name:
    """A single reference credit in the pool.

    Attributes:
        name: Unique identifier, taken from the survival curve
        survival_curve: Term structure of survival probability
        recovery_curve: Term structure of recovery given default
        principal: Scaled notional
        early_maturity: Date after which the name amortizes rather than defaults
        refinance_curve: Survival curve of the prepayment event, if any
    """
    name: str
    survival_curve: SurvivalCurve
    recovery_curve: RecoveryCurve
    principal: float
    early_maturity: Optional[datetime.date] = None
    refinance_curve: Optional[SurvivalCurve] = None

    def __post_init__(self):
        if self.principal < 0:
            raise ValueError(f"Principal must be non-negative, got {self.principal}")

    def recovery_rate(self, date: Optional[datetime.date] = None) -> float:
        return self.recovery_curve.recovery_rate(date)

    @property
    def has_random_recovery(self) -> bool:
        return self.recovery_curve.dispersion > 0


class Pool:
    """Filtered, scaled set of names a loss distribution is computed over.

    Built once by :func:`setup_pool`; the total principal never changes
    afterwards.
    """

    def __init__(self, names: Sequence[Name], picks: Sequence[int],
                 scale: float = DEFAULT_SETTINGS.principal_scale):
        self._names: List[Name] = list(names)
        self._index: Dict[str, int] = {n.name: i for i, n in enumerate(self._names)}
        self.picks = np.asarray(picks, dtype=int)
        self.scale = scale
        self.input_count = int(self.picks.max()) + 1 if len(self.picks) else 0
        self._principals = np.array([n.principal for n in self._names], dtype=float)
        self._total = float(np.sum(self._principals))

    @property
    def names(self) -> List[Name]:
        return list(self._names)

    @property
    def name_ids(self) -> List[str]:
        return [n.name for n in self._names]

    @property
    def count(self) -> int:
        """Number of included names."""
        return len(self._names)

    @property
    def principals(self) -> np.ndarray:
        """Scaled principals, in pool order."""
        return self._principals.copy()

    @property
    def weights(self) -> np.ndarray:
        """Principals as fractions of the total."""
        if self._total <= 0:
            return np.zeros(self.count)
        return self._principals / self._total

    @property
    def total_principal(self) -> float:
        """Sum of scaled principals."""
        return self._total

    @property
    def raw_total_principal(self) -> float:
        """Sum of principals in the caller's units."""
        return self._total / self.scale

    @property
    def survival_curves(self) -> List[SurvivalCurve]:
        return [n.survival_curve for n in self._names]

    @property
    def recovery_curves(self) -> List[RecoveryCurve]:
        return [n.recovery_curve for n in self._names]

    def get_name(self, name: str) -> Name:
        if name not in self._index:
            raise KeyError(f"Name '{name}' not found in pool")
        return self._names[self._index[name]]

    def recovery_rates(self, date: Optional[datetime.date] = None) -> np.ndarray:
        return np.array([n.recovery_rate(date) for n in self._names])

    def default_probabilities(self, date: datetime.date,
                              start: Optional[datetime.date] = None) -> np.ndarray:
        return np.array([n.survival_curve.default_probability(date, start)
                         for n in self._names])

    def expected_loss(self, date: datetime.date,
                      start: Optional[datetime.date] = None) -> float:
        """Expected pool loss fraction ignoring correlation."""
        pd_ = self.default_probabilities(date, start)
        lgd = 1.0 - self.recovery_rates(date)
        return float(np.sum(self.weights * pd_ * lgd))

    def maximum_amortization_level(self, correlated_recovery: bool = False,
                                   maturity: Optional[datetime.date] = None) -> float:
        """Upper bound of the amortized fraction of the pool.

        A defaulted name amortizes its recovery, a name with random
        recovery or an early maturity before ``maturity`` may amortize its
        whole principal. With correlated recovery every name may.
        """
        if correlated_recovery:
            return 1.0
        if self._total <= 0:
            return 0.0
        level = 0.0
        for n in self._names:
            matures_early = n.early_maturity is not None and (
                maturity is None or n.early_maturity < maturity)
            if n.has_random_recovery or matures_early or n.refinance_curve is not None:
                level += n.principal
            else:
                level += n.principal * n.recovery_rate()
        return level / self._total

    def versions(self) -> tuple:
        """Version counters of every curve the pool depends on."""
        out = []
        for n in self._names:
            out.append(n.survival_curve.version)
            out.append(n.recovery_curve.version)
            if n.refinance_curve is not None:
                out.append(n.refinance_curve.version)
        return tuple(out)

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[Name]:
        return iter(self._names)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def __repr__(self) -> str:
        return f"Pool(count={self.count}, total_principal={self.raw_total_principal:,.0f})"


def select_names(survival_curves: Sequence[Optional[SurvivalCurve]],
                 principals: Optional[Sequence[float]]) -> List[int]:
    """Indices of the names kept in the pool, in input order.

    A name is dropped when its curve is missing, or when per-name
    principals are given and its principal is exactly zero.
    """
    if principals is not None and len(principals) > 1 and len(principals) != len(survival_curves):
        raise ArgumentShapeError(
            "Number of principals must match number of survival curves"
        )
    picks = []
    for i, curve in enumerate(survival_curves):
        if curve is None:
            continue
        if principals is None or len(principals) <= 1 or principals[i] != 0:
            picks.append(i)
    return picks


def setup_pool(survival_curves: Sequence[Optional[SurvivalCurve]],
               principals: Optional[Sequence[float]] = None,
               recovery_curves: Optional[Sequence[Optional[RecoveryCurve]]] = None,
               settings: EngineSettings = DEFAULT_SETTINGS) -> Pool:
    """Filter raw curves and principals into a scaled pool.

    Args:
        survival_curves: One survival curve per input name, None to skip
        principals: None or empty for the default principal, one value
            applied to every name, or one value per name
        recovery_curves: Optional explicit recoveries overriding the
            calibrator's, one per input name
        settings: Engine settings supplying the default principal and scale

    Returns:
        Pool of the included names

    Raises:
        ArgumentShapeError: if per-name arrays do not match the curves
        MissingRecoveryData: if an included curve has no recovery curve
    """
    if principals is not None:
        principals = [float(p) for p in np.atleast_1d(principals)]
    if recovery_curves is not None and len(recovery_curves) != len(survival_curves):
        raise ArgumentShapeError(
            "Number of recovery curves must match number of survival curves"
        )
    picks = select_names(survival_curves, principals)

    names = []
    for i in picks:
        curve = survival_curves[i]
        if not principals:
            principal = settings.default_principal
        elif len(principals) == 1:
            principal = principals[0]
        else:
            principal = principals[i]

        recovery = recovery_curves[i] if recovery_curves is not None else None
        if recovery is None:
            recovery = curve.recovery_curve
        if recovery is None:
            raise MissingRecoveryData(curve.name)

        names.append(Name(
            name=curve.name,
            survival_curve=curve,
            recovery_curve=recovery,
            principal=principal * settings.principal_scale,
            early_maturity=curve.early_maturity,
            refinance_curve=curve.refinance_curve,
        ))

    if len(set(n.name for n in names)) != len(names):
        raise ValueError("Survival curve names must be unique within a pool")

    pool = Pool(names, picks, scale=settings.principal_scale)
    pool.input_count = len(survival_curves)
    logger.debug("Pool built with %d of %d names", pool.count, len(survival_curves))
    return pool
