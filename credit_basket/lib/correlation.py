"""Correlation structures binding the names of a pool together.

Every structure carries a ``kind`` tag; engines and the resolution
table below dispatch on it. Structures are mutable through explicit
setters, each bumping ``version`` so engines holding a reference notice
the change.
"""

import datetime
import numbers
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from .errors import ArgumentShapeError, InvalidCorrelationInput, UnsupportedCombination

MAX_CORRELATION = 0.9999


class CorrelationKind(Enum):
    FLAT = "flat"
    SINGLE_FACTOR = "single_factor"
    FACTOR = "factor"
    GENERAL = "general"
    TERM_STRUCTURE = "term_structure"
    BASE = "base"


class CorrelationTarget(Enum):
    """Structure an engine consumes."""
    SINGLE_FACTOR = "single_factor"
    FACTOR = "factor"
    GENERAL = "general"


def _check_range(values: np.ndarray, low: float, what: str) -> None:
    if np.any(~np.isfinite(values)) or np.any(values < low) or np.any(values > 1):
        raise ValueError(f"{what} must be between {low:g} and 1, got {values}")


class CorrelationModel:
    """Common interface of the correlation variants."""

    kind: CorrelationKind

    def __init__(self, names: Optional[Sequence[str]] = None):
        self.names: List[str] = list(names) if names is not None else []
        self.version = 0

    @property
    def size(self) -> int:
        return len(self.names)

    def _touch(self) -> None:
        self.version += 1

    def subset(self, indices: Sequence[int]) -> "CorrelationModel":
        raise UnsupportedCombination(f"{type(self).__name__} cannot be sub-selected")

    def _same_names(self, other: "CorrelationModel") -> bool:
        return type(self) is type(other) and self.names == other.names


class FlatCorrelation(CorrelationModel):
    """One correlation for every pair of names, sized by the pool it meets."""

    kind = CorrelationKind.FLAT

    def __init__(self, rho: float):
        super().__init__()
        self.set_correlation(rho, touch=False)

    def set_correlation(self, rho: float, touch: bool = True) -> None:
        _check_range(np.array([rho]), 0.0, "Correlation")
        self.rho = float(rho)
        if touch:
            self._touch()

    def __eq__(self, other):
        return isinstance(other, FlatCorrelation) and self.rho == other.rho

    def __repr__(self) -> str:
        return f"FlatCorrelation(rho={self.rho})"


class SingleFactorCorrelation(CorrelationModel):
    """Per-name correlation with one common factor.

    The pairwise latent correlation is sqrt(rho_i * rho_j).
    """

    kind = CorrelationKind.SINGLE_FACTOR

    def __init__(self, names: Sequence[str], correlations):
        super().__init__(names)
        self.set_correlations(correlations, touch=False)

    def set_correlations(self, correlations, touch: bool = True) -> None:
        values = np.asarray(correlations, dtype=float)
        if values.ndim == 0:
            values = np.full(self.size, float(values))
        if values.shape != (self.size,):
            raise ArgumentShapeError(
                f"Number of correlations {values.shape[0]} must match number of names {self.size}"
            )
        _check_range(values, 0.0, "Correlations")
        self.correlations = values
        if touch:
            self._touch()

    def set_correlation(self, rho: float) -> None:
        """Apply one correlation to every name."""
        self.set_correlations(np.full(self.size, float(rho)))

    @property
    def factors(self) -> np.ndarray:
        """Factor loadings sqrt(rho_i)."""
        return np.sqrt(self.correlations)

    def subset(self, indices):
        return SingleFactorCorrelation([self.names[i] for i in indices],
                                       self.correlations[list(indices)])

    def __eq__(self, other):
        return self._same_names(other) and np.array_equal(self.correlations, other.correlations)

    def __repr__(self) -> str:
        return f"SingleFactorCorrelation(size={self.size}, mean={np.mean(self.correlations):.4f})"


class FactorCorrelation(CorrelationModel):
    """Multi-factor loadings beta[i, k] with sum_k beta[i, k]^2 <= 1."""

    kind = CorrelationKind.FACTOR

    def __init__(self, names: Sequence[str], loadings):
        super().__init__(names)
        self.set_loadings(loadings, touch=False)

    def set_loadings(self, loadings, touch: bool = True) -> None:
        values = np.asarray(loadings, dtype=float)
        if values.ndim == 1:
            values = values[:, None]
        if values.ndim != 2 or values.shape[0] != self.size:
            raise ArgumentShapeError(
                f"Factor loadings must have one row per name ({self.size}), got {values.shape}"
            )
        total = np.sum(values ** 2, axis=1)
        if np.any(total > 1 + 1e-12):
            raise ValueError(
                f"Sum of squared factor loadings must be <= 1, got {total.max()}"
            )
        self.loadings = values
        if touch:
            self._touch()

    @property
    def factor_count(self) -> int:
        return self.loadings.shape[1]

    @classmethod
    def from_flat(cls, names: Sequence[str], data) -> "FactorCorrelation":
        """Build from a flat array laid out factor by factor.

        The first ``len(names)`` entries are the loadings of every name on
        the first factor, the next block those on the second, and so on.
        """
        data = np.asarray(data, dtype=float).ravel()
        n = len(names)
        if n == 0 or len(data) % n != 0:
            raise ArgumentShapeError(
                f"Length of correlation array {len(data)} is not a multiple of pool size {n}"
            )
        return cls(names, data.reshape(len(data) // n, n).T)

    def subset(self, indices):
        return FactorCorrelation([self.names[i] for i in indices],
                                 self.loadings[list(indices)])

    def __eq__(self, other):
        return self._same_names(other) and np.array_equal(self.loadings, other.loadings)

    def __repr__(self) -> str:
        return f"FactorCorrelation(size={self.size}, factors={self.factor_count})"


class GeneralCorrelation(CorrelationModel):
    """Full pairwise correlation matrix of the latent variables."""

    kind = CorrelationKind.GENERAL

    def __init__(self, names: Sequence[str], matrix):
        super().__init__(names)
        self.set_matrix(matrix, touch=False)

    def set_matrix(self, matrix, touch: bool = True) -> None:
        matrix = np.asarray(matrix, dtype=float)
        n = self.size
        if matrix.shape != (n, n):
            raise ArgumentShapeError(
                f"Correlation matrix must be {n}x{n}, got {matrix.shape}"
            )
        if not np.allclose(matrix, matrix.T):
            raise ValueError("Correlation matrix must be symmetric")
        if not np.allclose(np.diag(matrix), 1.0):
            raise ValueError("Diagonal elements must be 1")
        if np.any(matrix < -1) or np.any(matrix > 1):
            raise ValueError("Correlations must be between -1 and 1")
        eigvals = np.linalg.eigvalsh(matrix)
        if np.any(eigvals < -1e-10):
            raise ValueError("Correlation matrix must be positive semi-definite")
        self.matrix = matrix.copy()
        if touch:
            self._touch()

    def subset(self, indices):
        idx = list(indices)
        return GeneralCorrelation([self.names[i] for i in idx], self.matrix[np.ix_(idx, idx)])

    def __eq__(self, other):
        return self._same_names(other) and np.array_equal(self.matrix, other.matrix)

    def __repr__(self) -> str:
        return f"GeneralCorrelation(size={self.size})"


class CorrelationTermStruct(CorrelationModel):
    """Single-factor correlations bucketed by date.

    Row j of ``correlations`` applies to dates up to and including
    ``dates[j]``; the last row applies beyond.
    """

    kind = CorrelationKind.TERM_STRUCTURE

    def __init__(self, names: Sequence[str], dates: Sequence[datetime.date], correlations):
        super().__init__(names)
        self.set_correlations(dates, correlations, touch=False)

    def set_correlations(self, dates, correlations, touch: bool = True) -> None:
        values = np.asarray(correlations, dtype=float)
        if values.ndim == 1:
            values = np.repeat(values[:, None], self.size, axis=1)
        if values.shape != (len(dates), self.size):
            raise ArgumentShapeError(
                f"Correlation term structure must be {len(dates)}x{self.size}, got {values.shape}"
            )
        if any(b <= a for a, b in zip(dates[:-1], dates[1:])):
            raise ValueError("Correlation dates must be increasing")
        _check_range(values, 0.0, "Correlations")
        self.dates = list(dates)
        self.correlations = values
        if touch:
            self._touch()

    def correlations_at(self, date: datetime.date) -> np.ndarray:
        for j, d in enumerate(self.dates):
            if date <= d:
                return self.correlations[j]
        return self.correlations[-1]

    def subset(self, indices):
        idx = list(indices)
        return CorrelationTermStruct([self.names[i] for i in idx], self.dates,
                                     self.correlations[:, idx])

    def __eq__(self, other):
        return (self._same_names(other) and self.dates == other.dates
                and np.array_equal(self.correlations, other.correlations))

    def __repr__(self) -> str:
        return f"CorrelationTermStruct(size={self.size}, dates={len(self.dates)})"


# Variants each target consumes as-is.
_ACCEPTED = {
    CorrelationTarget.SINGLE_FACTOR: {CorrelationKind.SINGLE_FACTOR,
                                      CorrelationKind.TERM_STRUCTURE},
    CorrelationTarget.FACTOR: {CorrelationKind.SINGLE_FACTOR,
                               CorrelationKind.FACTOR,
                               CorrelationKind.TERM_STRUCTURE},
    CorrelationTarget.GENERAL: {CorrelationKind.SINGLE_FACTOR,
                                CorrelationKind.FACTOR,
                                CorrelationKind.GENERAL},
}


def is_flat_array(value) -> bool:
    if isinstance(value, np.ndarray):
        return value.ndim == 1 and np.issubdtype(value.dtype, np.number)
    if isinstance(value, (list, tuple)):
        return len(value) > 0 and all(
            isinstance(v, numbers.Real) and not isinstance(v, bool) for v in value)
    return False


def _fit_to_pool(model: CorrelationModel, pool) -> CorrelationModel:
    if model.size == pool.count:
        return model
    if model.size == pool.input_count:
        return model.subset(pool.picks)
    raise ArgumentShapeError(
        f"Correlation covers {model.size} names but the pool has {pool.count}"
    )


def convert_correlation(model: CorrelationModel, target: CorrelationTarget) -> CorrelationModel:
    """Convert a sized correlation into one the target engine consumes.

    Models the target already accepts are returned unchanged.
    """
    if model.kind in _ACCEPTED[target]:
        return model
    if model.kind == CorrelationKind.FACTOR and target == CorrelationTarget.SINGLE_FACTOR:
        if model.factor_count != 1:
            raise UnsupportedCombination(
                f"A {model.factor_count}-factor correlation cannot drive a single-factor engine"
            )
        return SingleFactorCorrelation(model.names, model.loadings[:, 0] ** 2)
    if model.kind == CorrelationKind.GENERAL:
        raise UnsupportedCombination(
            "Full pairwise correlation requires a Monte Carlo engine"
        )
    if model.kind == CorrelationKind.TERM_STRUCTURE:
        raise UnsupportedCombination(
            "Correlation term structures are only supported by quadrature engines"
        )
    raise UnsupportedCombination(
        f"Cannot convert {model.kind.value} correlation for a {target.value} engine"
    )


def resolve_correlation(value, pool, target: CorrelationTarget) -> CorrelationModel:
    """Turn a caller's correlation argument into a structure for an engine.

    Rules, in order: a base correlation is returned untouched (it is
    resolved per tranche); a scalar becomes a uniform single-factor
    correlation; a flat numeric array whose length is a multiple of the
    pool size becomes factor loadings laid out factor by factor; a
    correlation object is sized to the pool and converted for the target.

    Args:
        value: Scalar, flat array or CorrelationModel
        pool: Pool the correlation applies to
        target: Structure the consuming engine needs

    Returns:
        CorrelationModel; the argument itself when already usable

    Raises:
        InvalidCorrelationInput: for anything else
        ArgumentShapeError: for sizes that do not match the pool
        UnsupportedCombination: when the target cannot consume the structure
    """
    if isinstance(value, CorrelationModel) and value.kind == CorrelationKind.BASE:
        return value
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        model = SingleFactorCorrelation(pool.name_ids, np.full(pool.count, float(value)))
        return convert_correlation(model, target)
    if is_flat_array(value):
        data = np.asarray(value, dtype=float)
        if pool.count and len(data) % pool.count == 0:
            return convert_correlation(FactorCorrelation.from_flat(pool.name_ids, data), target)
        if pool.input_count and len(data) % pool.input_count == 0:
            blocks = data.reshape(-1, pool.input_count)[:, pool.picks]
            return convert_correlation(
                FactorCorrelation.from_flat(pool.name_ids, blocks.ravel()), target)
        raise ArgumentShapeError(
            f"Length of correlation array {len(data)} is not a multiple of pool size {pool.count}"
        )
    if isinstance(value, FlatCorrelation):
        model = SingleFactorCorrelation(pool.name_ids, np.full(pool.count, value.rho))
        return convert_correlation(model, target)
    if isinstance(value, CorrelationModel):
        return convert_correlation(_fit_to_pool(value, pool), target)
    raise InvalidCorrelationInput(
        f"Invalid correlation parameter of type {type(value).__name__}"
    )


def default_correlation(pool, target: CorrelationTarget) -> CorrelationModel:
    """All-zero placeholder used until a tranche resolves a base correlation."""
    if target == CorrelationTarget.GENERAL:
        return GeneralCorrelation(pool.name_ids, np.eye(pool.count))
    return SingleFactorCorrelation(pool.name_ids, np.zeros(pool.count))


def factor_loadings(model: CorrelationModel, date: Optional[datetime.date] = None) -> np.ndarray:
    """Loadings matrix (names x factors) of a factor-type structure."""
    if model.kind == CorrelationKind.SINGLE_FACTOR:
        return model.factors[:, None]
    if model.kind == CorrelationKind.FACTOR:
        return model.loadings
    if model.kind == CorrelationKind.TERM_STRUCTURE:
        if date is None:
            raise ValueError("Correlation term structure needs a date")
        return np.sqrt(model.correlations_at(date))[:, None]
    raise UnsupportedCombination(f"{model.kind.value} correlation has no factor loadings")


def correlation_matrix(model: CorrelationModel) -> np.ndarray:
    """Pairwise latent correlation implied by a structure."""
    if model.kind == CorrelationKind.GENERAL:
        return model.matrix.copy()
    loadings = factor_loadings(model)
    matrix = loadings @ loadings.T
    np.fill_diagonal(matrix, 1.0)
    return matrix


def average_correlation(model: CorrelationModel, weights: Optional[np.ndarray] = None,
                        date: Optional[datetime.date] = None) -> float:
    """Weighted average single-factor correlation of a structure."""
    if model.kind == CorrelationKind.GENERAL:
        n = model.size
        if n < 2:
            return 0.0
        off = model.matrix[~np.eye(n, dtype=bool)]
        return float(np.clip(np.mean(off), 0.0, 1.0))
    rho = np.sum(factor_loadings(model, date) ** 2, axis=1)
    if weights is None:
        return float(np.mean(rho))
    return float(np.sum(weights * rho) / np.sum(weights))


class SharedCorrelation:
    """Handle to the one correlation object sibling tranches price with.

    The pool engine owns the handle. The first tranche to resolve a
    concrete correlation publishes it; later tranches get that same
    object back, so a change made through any of them is seen by all.
    """

    def __init__(self):
        self.model: Optional[CorrelationModel] = None

    @property
    def resolved(self) -> bool:
        return self.model is not None

    def publish(self, candidate: CorrelationModel) -> CorrelationModel:
        """Return the canonical model, adopting the candidate if there is none."""
        if self.model is None:
            self.model = candidate
        return self.model

    def __repr__(self) -> str:
        return f"SharedCorrelation(model={self.model!r})"
