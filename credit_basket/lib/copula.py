"""Factor copulas and their conditional default probabilities.

Every family is written as a one-factor (or frailty) model: conditional
on the common factor the names default independently. For each family
:meth:`Copula.integrate` returns quadrature nodes over the factor, their
weights and the conditional default probability of every name at every
node, such that ``weights @ probabilities`` reproduces the marginal
default probabilities.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from numpy.polynomial.hermite import hermgauss
from numpy.polynomial.legendre import leggauss
from scipy.optimize import brentq
from scipy.integrate import quad
from scipy.special import exp1, roots_genlaguerre
from scipy.stats import norm, norminvgauss, t as student_t

from .correlation import MAX_CORRELATION
from .errors import UnsupportedCombination

# Second-dimension nodes used by Gumbel when none are requested.
DEFAULT_SECOND_POINTS = 20


class CopulaType(Enum):
    GAUSS = "Gauss"
    EXTENDED_GAUSS = "ExtendedGauss"
    STUDENT_T = "StudentT"
    DOUBLE_T = "DoubleT"
    CLAYTON = "Clayton"
    GUMBEL = "Gumbel"
    FRANK = "Frank"
    NIG = "NIG"
    RANDOM_FACTOR_LOADING = "RandomFactorLoading"
    POISSON = "Poisson"


ARCHIMEDEAN = frozenset({CopulaType.CLAYTON, CopulaType.GUMBEL, CopulaType.FRANK})
GAUSSIAN = frozenset({CopulaType.GAUSS, CopulaType.EXTENDED_GAUSS})


@dataclass
class FactorIntegration:
    """Quadrature over the common factor.

    Attributes:
        weights: Node weights summing to one, shape (nodes,)
        probabilities: Conditional default probabilities, shape (nodes, names)
        factor: Standard normal common factor at each node, when the family
            has one; used to drive correlated recoveries
    """
    weights: np.ndarray
    probabilities: np.ndarray
    factor: Optional[np.ndarray] = None

    @property
    def node_count(self) -> int:
        return len(self.weights)

    def marginals(self) -> np.ndarray:
        return self.weights @ self.probabilities


@dataclass(frozen=True)
class Copula:
    """Copula family and its shape parameters.

    Attributes:
        copula_type: Family tag
        df_common: Degrees of freedom of the common factor (t families)
        df_idiosyncratic: Degrees of freedom of the idiosyncratic term (Double-t)
        data: Extra parameters; (alpha, beta) for NIG, (probability,
            multiplier) pairs for random factor loading
    """
    copula_type: CopulaType = CopulaType.GAUSS
    df_common: int = 0
    df_idiosyncratic: int = 0
    data: Tuple[float, ...] = (1.0, 0.0)

    def __post_init__(self):
        if not isinstance(self.copula_type, CopulaType):
            raise ValueError(f"Unknown copula type {self.copula_type!r}")
        object.__setattr__(self, "data", tuple(float(x) for x in self.data))
        if self.df_common < 0 or self.df_idiosyncratic < 0:
            raise ValueError(
                f"Degrees of freedom must be non-negative, got "
                f"{self.df_common} and {self.df_idiosyncratic}"
            )
        if self.copula_type == CopulaType.STUDENT_T and self.df_common <= 0:
            raise ValueError("StudentT copula needs positive degrees of freedom")
        if self.copula_type == CopulaType.DOUBLE_T and (
                self.df_common <= 2 or self.df_idiosyncratic <= 2):
            raise ValueError("DoubleT copula needs degrees of freedom above 2")
        if self.copula_type == CopulaType.NIG:
            if len(self.data) < 2:
                raise ValueError("NIG copula needs (alpha, beta) parameters")
            alpha, beta = self.data[0], self.data[1]
            if alpha <= 0 or abs(beta) >= alpha:
                raise ValueError(
                    f"NIG parameters need alpha > 0 and |beta| < alpha, got {alpha}, {beta}"
                )
        if self.copula_type == CopulaType.RANDOM_FACTOR_LOADING:
            if len(self.data) == 0 or len(self.data) % 2 != 0:
                raise ValueError("Random factor loading data must be (probability, multiplier) pairs")
            probs = np.array(self.data[0::2])
            mults = np.array(self.data[1::2])
            if np.any(probs < 0) or np.any(probs > 1) or np.any(mults < 0) or np.any(mults > 1):
                raise ValueError("Random factor loading values must be between 0 and 1")
            if abs(probs.sum() - 1.0) > 1e-8:
                raise ValueError(f"Random factor loading probabilities must sum to 1, got {probs.sum()}")

    @property
    def name(self) -> str:
        return self.copula_type.value

    @property
    def is_archimedean(self) -> bool:
        return self.copula_type in ARCHIMEDEAN

    @property
    def has_factor_node(self) -> bool:
        """Whether integration nodes carry a standard normal factor value."""
        return not (self.is_archimedean or self.copula_type == CopulaType.POISSON)

    @property
    def supports_simulation(self) -> bool:
        """Whether Monte Carlo engines can sample this copula."""
        return self.copula_type in GAUSSIAN or self.copula_type == CopulaType.STUDENT_T

    def integrate(self, default_probabilities, loadings, points: int,
                  points_second: int = 0) -> FactorIntegration:
        """Conditional default probabilities over the factor quadrature.

        Args:
            default_probabilities: Marginal default probability per name
            loadings: Factor loadings, shape (names,) or (names, factors)
            points: Quadrature points on the common factor
            points_second: Points on a second integration dimension
                (t mixing variable, Gumbel exponential), 0 for the default

        Returns:
            FactorIntegration over the factor nodes
        """
        pd_ = np.clip(np.asarray(default_probabilities, dtype=float), 0.0, 1.0)
        loadings = np.asarray(loadings, dtype=float)
        if loadings.ndim == 1:
            loadings = loadings[:, None]
        if loadings.shape[0] != pd_.shape[0]:
            raise ValueError("Need one row of factor loadings per name")
        if loadings.shape[1] > 1:
            if self.copula_type not in GAUSSIAN:
                raise UnsupportedCombination(
                    f"{self.name} copula supports a single factor only"
                )
            return _gauss_multi_factor(pd_, loadings, max(points, 1))
        if self.copula_type != CopulaType.POISSON and points <= 0:
            raise ValueError(f"{self.name} copula needs positive quadrature points")
        if self.copula_type in GAUSSIAN:
            return _gauss(pd_, loadings[:, 0], points)
        rho = np.clip(loadings[:, 0] ** 2, 0.0, MAX_CORRELATION)
        return _FAMILIES[self.copula_type](self, pd_, rho, points, points_second)

    def __str__(self) -> str:
        if self.copula_type in (CopulaType.STUDENT_T, CopulaType.DOUBLE_T):
            return f"{self.name}({self.df_common},{self.df_idiosyncratic})"
        return self.name


def _hermite_nodes(points: int) -> Tuple[np.ndarray, np.ndarray]:
    """Standard normal factor nodes and weights."""
    x, w = hermgauss(points)
    return math.sqrt(2.0) * x, w / math.sqrt(math.pi)


def _uniform_nodes(points: int, low: float = 0.0, high: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """Gauss-Legendre nodes on (low, high) with weights summing to one."""
    x, w = leggauss(points)
    return low + (x + 1.0) * (high - low) / 2.0, w / 2.0


def _laguerre_nodes(points: int, alpha: float) -> Tuple[np.ndarray, np.ndarray]:
    """Nodes of the gamma(alpha + 1) density, weights normalised."""
    x, w = roots_genlaguerre(points, alpha)
    return x, w / np.sum(w)


def _independent(pd_: np.ndarray) -> FactorIntegration:
    return FactorIntegration(np.ones(1), pd_[None, :].copy(), np.zeros(1))


def _gauss(pd_, beta, points) -> FactorIntegration:
    m, w = _hermite_nodes(points)
    beta = np.clip(beta, -math.sqrt(MAX_CORRELATION), math.sqrt(MAX_CORRELATION))
    threshold = norm.ppf(pd_)
    idio = np.sqrt(1.0 - beta ** 2)
    probs = norm.cdf((threshold[None, :] - m[:, None] * beta[None, :]) / idio[None, :])
    return FactorIntegration(w, probs, m)


def _gauss_multi_factor(pd_, loadings, points) -> FactorIntegration:
    k = loadings.shape[1]
    m1, w1 = _hermite_nodes(points)
    grids = np.meshgrid(*([m1] * k), indexing="ij")
    nodes = np.stack([g.ravel() for g in grids], axis=1)
    weights = np.ones(nodes.shape[0])
    for g in np.meshgrid(*([w1] * k), indexing="ij"):
        weights = weights * g.ravel()
    threshold = norm.ppf(pd_)
    idio = np.sqrt(np.clip(1.0 - np.sum(loadings ** 2, axis=1), 1.0 - MAX_CORRELATION, 1.0))
    probs = norm.cdf((threshold[None, :] - nodes @ loadings.T) / idio[None, :])
    return FactorIntegration(weights, probs, nodes[:, 0])


def _student_t(copula, pd_, rho, points, points_second) -> FactorIntegration:
    nu = float(copula.df_common)
    m, wm = _hermite_nodes(points)
    y, wy = _laguerre_nodes(points_second or points, nu / 2.0 - 1.0)
    mix = np.sqrt(2.0 * y / nu)
    threshold = student_t.ppf(pd_, nu)
    a = np.sqrt(rho)
    s = np.sqrt(1.0 - rho)
    mm = np.repeat(m, len(y))
    scale = np.tile(mix, len(m))
    weights = np.outer(wm, wy).ravel()
    with np.errstate(invalid="ignore"):
        z = (threshold[None, :] * scale[:, None] - a[None, :] * mm[:, None]) / s[None, :]
    z = np.where(np.isnan(z), np.where(pd_[None, :] >= 1.0, np.inf, -np.inf), z)
    return FactorIntegration(weights, norm.cdf(z), mm)


def _double_t(copula, pd_, rho, points, points_second) -> FactorIntegration:
    nu1 = float(copula.df_common)
    nu2 = float(copula.df_idiosyncratic)
    s1 = math.sqrt((nu1 - 2.0) / nu1)
    s2 = math.sqrt((nu2 - 2.0) / nu2)
    u, w = _uniform_nodes(points)
    z = s1 * student_t.ppf(u, nu1)
    probs = np.empty((len(w), len(pd_)))
    grid = np.concatenate([-np.logspace(3, -4, 400), [0.0], np.logspace(-4, 3, 400)])
    for rho_value in np.unique(rho):
        cols = np.where(rho == rho_value)[0]
        a = math.sqrt(rho_value)
        s = math.sqrt(1.0 - rho_value) * s2
        # mixture CDF of a*Z + s*T2 on the grid, inverted by interpolation
        cdf = w @ student_t.cdf((grid[None, :] - a * z[:, None]) / s, nu2)
        thresholds = np.interp(pd_[cols], cdf, grid)
        p = student_t.cdf((thresholds[None, :] - a * z[:, None]) / s, nu2)
        p = np.where(pd_[cols][None, :] <= 0.0, 0.0, p)
        p = np.where(pd_[cols][None, :] >= 1.0, 1.0, p)
        probs[:, cols] = p
    return FactorIntegration(w, probs, norm.ppf(u))


def kendall_tau(rho: float) -> float:
    """Kendall's tau of a Gaussian pair with correlation rho."""
    return 2.0 / math.pi * math.asin(min(max(rho, 0.0), 1.0))


def _mean_rho(rho: np.ndarray) -> float:
    return float(np.mean(rho)) if len(rho) else 0.0


def _clayton(copula, pd_, rho, points, points_second) -> FactorIntegration:
    tau = kendall_tau(_mean_rho(rho))
    theta = 2.0 * tau / (1.0 - tau)
    if theta < 1e-6:
        return _independent(pd_)
    v, w = _laguerre_nodes(points, 1.0 / theta - 1.0)
    with np.errstate(divide="ignore"):
        psi_inv = np.power(pd_, -theta) - 1.0
    probs = np.exp(-v[:, None] * psi_inv[None, :])
    return FactorIntegration(w, probs)


def _gumbel(copula, pd_, rho, points, points_second) -> FactorIntegration:
    tau = kendall_tau(_mean_rho(rho))
    theta = 1.0 / (1.0 - tau)
    if theta - 1.0 < 1e-6:
        return _independent(pd_)
    alpha = 1.0 / theta
    u, wu = _uniform_nodes(points, 0.0, math.pi)
    e, we = _laguerre_nodes(points_second or DEFAULT_SECOND_POINTS, 0.0)
    uu = np.repeat(u, len(e))
    ee = np.tile(e, len(u))
    # positive stable frailty with Laplace transform exp(-s**alpha)
    v = (np.sin(alpha * uu) / np.sin(uu) ** (1.0 / alpha)
         * (np.sin((1.0 - alpha) * uu) / ee) ** ((1.0 - alpha) / alpha))
    weights = np.outer(wu, we).ravel()
    with np.errstate(divide="ignore"):
        psi_inv = np.power(-np.log(pd_), theta)
    probs = np.exp(-v[:, None] * psi_inv[None, :])
    return FactorIntegration(weights, probs)


def _debye1(x: float) -> float:
    value, _ = quad(lambda t: t / math.expm1(t) if t > 0 else 1.0, 0.0, x)
    return value / x


def frank_theta(tau: float) -> float:
    """Frank copula parameter with the given Kendall's tau."""
    if tau <= 1e-8:
        return 0.0
    return brentq(lambda th: 1.0 - 4.0 / th * (1.0 - _debye1(th)) - tau, 1e-6, 1e4)


def _frank(copula, pd_, rho, points, points_second) -> FactorIntegration:
    theta = frank_theta(kendall_tau(_mean_rho(rho)))
    if theta < 1e-6:
        return _independent(pd_)
    # logarithmic series frailty P(V = k) = c**k / (k * theta), c = 1 - exp(-theta)
    lam = -math.log(-math.expm1(-theta))
    k = np.arange(1, points + 1, dtype=float)
    nodes = [k]
    weights = [np.exp(-lam * k) / (k * theta)]
    upper = max(40.0 / lam, points + 1.0)
    if upper > points + 1.0:
        edges = np.geomspace(points + 0.5, upper, 2 * points + 1)
        nodes.append(np.sqrt(edges[:-1] * edges[1:]))
        weights.append((exp1(lam * edges[:-1]) - exp1(lam * edges[1:])) / theta)
    v = np.concatenate(nodes)
    w = np.concatenate(weights)
    w = w / np.sum(w)
    with np.errstate(divide="ignore"):
        psi_inv = -np.log(-np.expm1(-theta * pd_) / -math.expm1(-theta))
    probs = np.exp(-v[:, None] * psi_inv[None, :])
    return FactorIntegration(w, probs)


def _nig(copula, pd_, rho, points, points_second) -> FactorIntegration:
    alpha, beta = copula.data[0], copula.data[1]
    gamma = math.sqrt(alpha * alpha - beta * beta)
    u, w = _uniform_nodes(points)
    factor = norminvgauss(alpha * alpha, alpha * beta, loc=-alpha * beta / gamma, scale=alpha)
    m = factor.ppf(u)
    probs = np.empty((len(w), len(pd_)))
    for rho_value in np.unique(rho):
        cols = np.where(rho == rho_value)[0]
        a = math.sqrt(rho_value)
        if a < 1e-4:
            probs[:, cols] = pd_[cols][None, :]
            continue
        k = math.sqrt(1.0 - a * a) / a
        total = norminvgauss((alpha / a) ** 2, alpha * beta / a ** 2,
                             loc=-alpha * beta / (a * gamma), scale=alpha / a)
        idio = norminvgauss((k * alpha) ** 2, k * k * alpha * beta,
                            loc=-k * alpha * beta / gamma, scale=k * alpha)
        inner = (pd_[cols] > 0.0) & (pd_[cols] < 1.0)
        thresholds = np.where(pd_[cols] >= 1.0, np.inf, -np.inf)
        unique_pd, inverse = np.unique(pd_[cols][inner], return_inverse=True)
        if len(unique_pd):
            thresholds[inner] = total.ppf(unique_pd)[inverse]
        with np.errstate(invalid="ignore"):
            p = idio.cdf((thresholds[None, :] - a * m[:, None]) / math.sqrt(1.0 - a * a))
        p = np.where(pd_[cols][None, :] <= 0.0, 0.0, p)
        p = np.where(pd_[cols][None, :] >= 1.0, 1.0, p)
        probs[:, cols] = p
    return FactorIntegration(w, probs, norm.ppf(u))


def _random_factor_loading(copula, pd_, rho, points, points_second) -> FactorIntegration:
    state_probs = np.array(copula.data[0::2])
    multipliers = np.array(copula.data[1::2])
    mean_mult = float(state_probs @ multipliers)
    m, wm = _hermite_nodes(points)
    weights, probs, factor = [], [], []
    for p_state, mult in zip(state_probs, multipliers):
        if p_state <= 0:
            continue
        state_rho = rho if mean_mult <= 0 else np.clip(rho * mult / mean_mult, 0.0, MAX_CORRELATION)
        part = _gauss(pd_, np.sqrt(state_rho), points)
        weights.append(wm * p_state)
        probs.append(part.probabilities)
        factor.append(m)
    return FactorIntegration(np.concatenate(weights), np.vstack(probs), np.concatenate(factor))


def _poisson(copula, pd_, rho, points, points_second) -> FactorIntegration:
    with np.errstate(divide="ignore"):
        hazards = -np.log1p(-pd_)
    # common shock intensity, limited by the least exposed name
    scaled = np.where(np.isinf(hazards), np.inf, rho * np.where(np.isinf(hazards), 0.0, hazards))
    common = float(np.min(scaled)) if len(scaled) else 0.0
    if not np.isfinite(common):
        common = 0.0
    shock = -math.expm1(-common)
    with np.errstate(invalid="ignore"):
        no_shock = -np.expm1(-(hazards - common))
    no_shock = np.where(np.isinf(hazards), 1.0, no_shock)
    probs = np.vstack([np.ones_like(pd_), no_shock])
    return FactorIntegration(np.array([shock, 1.0 - shock]), probs)


_FAMILIES = {
    CopulaType.STUDENT_T: _student_t,
    CopulaType.DOUBLE_T: _double_t,
    CopulaType.CLAYTON: _clayton,
    CopulaType.GUMBEL: _gumbel,
    CopulaType.FRANK: _frank,
    CopulaType.NIG: _nig,
    CopulaType.RANDOM_FACTOR_LOADING: _random_factor_loading,
    CopulaType.POISSON: _poisson,
}
