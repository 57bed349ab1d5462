"""Default quadrature point counts.

Downstream prices are sensitive to the exact point counts, so the
tables and formulas here are kept literally and pinned by tests.
"""

import math
from typing import Iterable, Sequence, Tuple

from .copula import CopulaType
from .errors import UnknownCopulaType

QUADRATURE_TABLE_VERSION = 1

# Fixed point counts independent of basket size.
FIXED_POINTS = {
    CopulaType.CLAYTON: 200,
    CopulaType.GUMBEL: 100,
    CopulaType.FRANK: 100,
    CopulaType.POISSON: 0,
}

# Point counts for small baskets, grown by SIZE_STEP names beyond SIZE_THRESHOLD.
SCALED_POINTS = {
    CopulaType.GAUSS: 25,
    CopulaType.EXTENDED_GAUSS: 25,
    CopulaType.NIG: 25,
    CopulaType.RANDOM_FACTOR_LOADING: 25,
    CopulaType.DOUBLE_T: 15,
    CopulaType.STUDENT_T: 12,
}
SIZE_THRESHOLD = 40
SIZE_STEP = 10

# Tranche shape adjustment: int(BASE - ATTACH_SLOPE*|a - ATTACH_CENTER| - WIDTH_SLOPE*(d - a)).
ADJUST_BASE = 30
ADJUST_ATTACH_CENTER = 0.09
ADJUST_ATTACH_SLOPE = 500
ADJUST_WIDTH_SLOPE = 100

# Correlation bump: int(CORR_SLOPE * rho) - CORR_OFFSET.
CORR_SLOPE = 550
CORR_OFFSET = 295

GREEKS_POINTS = 100
GAMMA_POINTS = 200

# Families whose point counts are never raised by tranche, correlation or Greek rules.
NO_ADJUST = frozenset({CopulaType.CLAYTON, CopulaType.GUMBEL, CopulaType.FRANK})
NO_CORRELATION_ADJUST = NO_ADJUST | {CopulaType.DOUBLE_T, CopulaType.STUDENT_T}


def default_quadrature_points(copula_type: CopulaType, basket_size: int) -> int:
    """Base number of integration points for a copula and basket size.

    Raises:
        UnknownCopulaType: for a tag without a table entry
    """
    if copula_type in FIXED_POINTS:
        return FIXED_POINTS[copula_type]
    if copula_type in SCALED_POINTS:
        points = SCALED_POINTS[copula_type]
        if basket_size >= SIZE_THRESHOLD:
            points += (basket_size - SIZE_THRESHOLD) // SIZE_STEP
        return points
    raise UnknownCopulaType(f"Unknown copula type {copula_type!r}")


def quadrature_points_adjust(attach: float, detach: float) -> int:
    """Extra points for a tranche, largest near a 9% attachment; never negative."""
    points = int(ADJUST_BASE - ADJUST_ATTACH_SLOPE * abs(attach - ADJUST_ATTACH_CENTER)
                 - ADJUST_WIDTH_SLOPE * (detach - attach))
    return max(points, 0)


def quadrature_points_adjust_for_copula(copula_type: CopulaType,
                                        tranches: Iterable[Tuple[float, float]]) -> int:
    """Largest tranche adjustment over a set of (attach, detach) pairs."""
    if copula_type in NO_ADJUST:
        return 0
    return max((quadrature_points_adjust(a, d) for a, d in tranches), default=0)


def quadrature_points_adjust_for_detachments(detachments: Sequence[float]) -> int:
    """Largest adjustment over consecutive detachment points.

    Each detachment in (0, 1] forms a tranche with the previous one
    (the first with 0). The input order is used as given.
    """
    points = 0
    attach = 0.0
    for detach in detachments:
        if 0.0 < detach <= 1.0:
            points = max(points, quadrature_points_adjust(attach, detach))
            attach = detach
    return points


def quadrature_points_for_correlation(points: int, copula_type: CopulaType,
                                      correlation: float) -> int:
    """Raise the point count for high correlations."""
    if copula_type in NO_CORRELATION_ADJUST:
        return points
    return max(points, int(CORR_SLOPE * correlation) - CORR_OFFSET)


def safe_quadrature_points_for_greeks(points: int, copula_type: CopulaType,
                                      for_gamma: bool = False) -> int:
    """Minimum point count keeping sensitivities free of integration noise."""
    if copula_type in NO_CORRELATION_ADJUST:
        return points
    return max(points, GAMMA_POINTS if for_gamma else GREEKS_POINTS)


def quadrature_points_from_accuracy(accuracy: float,
                                    default_accuracy: float = 0.0) -> Tuple[int, float]:
    """Split an accuracy argument into (points, accuracy).

    Values above 1 are point counts; values in (0, 1] are accuracies;
    anything else selects the default accuracy.
    """
    if accuracy <= 0:
        accuracy = default_accuracy
    if accuracy > 1:
        return int(math.floor(accuracy + 1e-8)), 0.0
    return 0, accuracy
