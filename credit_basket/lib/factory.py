"""Builders for basket engines and tranche pricers.

The builders take raw survival curves and principals, filter them into a
pool and hand it to the engine. :func:`tranche_pricers` prepares one
engine for a batch of tranches on the same pool.
"""

import datetime
import logging
from typing import List, Optional, Sequence

import numpy as np

from .analytic import HomogeneousEngine, LargePoolEngine, UniformEngine
from .base_correlation import BaseCorrelation, StrikeMethod
from .basket import LossDistributionEngine
from .cdo_squared import (
    BaseCorrelationCDO2Engine,
    CDOSquaredEngine,
    FactorCorrelationCDO2Engine,
    TrancheCorrelationCDO2Engine,
    check_child_structure,
)
from .config import DEFAULT_SETTINGS, EngineSettings
from .copula import Copula
from .correlation import average_correlation, is_flat_array
from .forward_loss import ForwardLossEngine
from .pool import setup_pool
from .quadrature import quadrature_points_adjust_for_copula, quadrature_points_for_correlation
from .semi_analytic import HeterogeneousEngine, SemiAnalyticEngine
from .simulation import MonteCarloEngine
from .tranche import (
    BaseCorrelationTrancheBasket,
    Tranche,
    TrancheLossMapper,
    minimum_amortization_level,
)

logger = logging.getLogger(__name__)


def _build(engine_cls, as_of, settle, maturity, survival_curves, principals, copula,
           correlation, recovery_curves, settings, **options) -> LossDistributionEngine:
    pool = setup_pool(survival_curves, principals, recovery_curves, settings)
    return engine_cls(as_of, settle, maturity, pool, copula or Copula(), correlation,
                      settings=settings, **options)


def large_pool_basket(as_of: datetime.date, settle: datetime.date, maturity: datetime.date,
                      survival_curves, principals=None, copula: Optional[Copula] = None,
                      correlation=0.0, recovery_curves=None,
                      settings: EngineSettings = DEFAULT_SETTINGS, **options) -> LargePoolEngine:
    """Large pool engine over the given names.

    Args:
        as_of: Pricing date
        settle: Settlement date
        maturity: Last grid date
        survival_curves: One curve per input name, None to skip the name
        principals: None, one value for all names, or one per name
        copula: Copula family, Gaussian if None
        correlation: Scalar, flat array or correlation object
        recovery_curves: Recovery overrides, one per input name
        settings: Engine settings
        **options: Further engine arguments (step_size, grid_size, ...)

    Returns:
        LargePoolEngine
    """
    return _build(LargePoolEngine, as_of, settle, maturity, survival_curves, principals,
                  copula, correlation, recovery_curves, settings, **options)


def uniform_basket(as_of, settle, maturity, survival_curves, principals=None, copula=None,
                   correlation=0.0, recovery_curves=None, settings=DEFAULT_SETTINGS,
                   **options) -> UniformEngine:
    """Uniform engine; arguments as :func:`large_pool_basket`."""
    return _build(UniformEngine, as_of, settle, maturity, survival_curves, principals,
                  copula, correlation, recovery_curves, settings, **options)


def homogeneous_basket(as_of, settle, maturity, survival_curves, principals=None, copula=None,
                       correlation=0.0, recovery_curves=None, settings=DEFAULT_SETTINGS,
                       **options) -> HomogeneousEngine:
    """Homogeneous engine; arguments as :func:`large_pool_basket`."""
    return _build(HomogeneousEngine, as_of, settle, maturity, survival_curves, principals,
                  copula, correlation, recovery_curves, settings, **options)


def semi_analytic_basket(as_of, settle, maturity, survival_curves, principals=None,
                         copula=None, correlation=0.0, recovery_curves=None,
                         settings=DEFAULT_SETTINGS, **options) -> SemiAnalyticEngine:
    """Semi-analytic engine; also takes ``check_refinance``."""
    return _build(SemiAnalyticEngine, as_of, settle, maturity, survival_curves, principals,
                  copula, correlation, recovery_curves, settings, **options)


def heterogeneous_basket(as_of, settle, maturity, survival_curves, principals=None,
                         copula=None, correlation=0.0, recovery_curves=None,
                         settings=DEFAULT_SETTINGS, **options) -> HeterogeneousEngine:
    return _build(HeterogeneousEngine, as_of, settle, maturity, survival_curves, principals,
                  copula, correlation, recovery_curves, settings, **options)


def monte_carlo_basket(as_of, settle, maturity, survival_curves, principals=None,
                       copula=None, correlation=0.0, recovery_curves=None,
                       settings=DEFAULT_SETTINGS, **options) -> MonteCarloEngine:
    """Monte Carlo engine; also takes ``sample_size``, ``seed`` and ``batch_size``."""
    return _build(MonteCarloEngine, as_of, settle, maturity, survival_curves, principals,
                  copula, correlation, recovery_curves, settings, **options)


def forward_loss_basket(as_of, settle, maturity, survival_curves, principals=None,
                        recovery_curves=None, settings=DEFAULT_SETTINGS,
                        **options) -> ForwardLossEngine:
    """Forward loss engine; takes ``state_losses``, ``scaling_factors``,
    ``base_levels`` and ``rate``."""
    pool = setup_pool(survival_curves, principals, recovery_curves, settings)
    return ForwardLossEngine(as_of, settle, maturity, pool, settings=settings, **options)


def cdo_squared_basket(as_of, settle, maturity, survival_curves, child_principals,
                       attachments: Sequence[float], detachments: Sequence[float],
                       correlation=0.0, cross_subordination: bool = True, copula=None,
                       recovery_curves=None, discount_curve=None,
                       settings=DEFAULT_SETTINGS, **options) -> CDOSquaredEngine:
    """CDO-squared engine over child tranches.

    The engine variant follows the correlation argument: a base
    correlation reads child correlations off its strikes, a flat array
    with one value per child gives each child its own correlation, and
    anything else is one correlation structure over all names.

    Args:
        child_principals: Principal of each input name in each child,
            shape (names, children)
        attachments: Child attachments
        detachments: Child detachments
        correlation: Base correlation, per-child correlations, or a
            correlation for the names
        cross_subordination: Whether subordination is shared across children
        discount_curve: Needed with a base correlation using PV strikes
        **options: Further engine arguments (child_maturities, sample_size, seed, ...)
    """
    matrix = np.asarray(child_principals, dtype=float)
    check_child_structure(matrix, attachments, detachments, len(survival_curves))
    pool = setup_pool(survival_curves, matrix.sum(axis=1), recovery_curves, settings)
    copula = copula or Copula()
    structure = dict(child_principals=matrix, attachments=attachments,
                     detachments=detachments, cross_subordination=cross_subordination,
                     settings=settings, **options)

    if isinstance(correlation, BaseCorrelation):
        _check_discount_curve(correlation, discount_curve)
        return BaseCorrelationCDO2Engine(as_of, settle, maturity, pool, copula, correlation,
                                         discount_curve, **structure)
    if is_flat_array(correlation) and len(correlation) == len(attachments):
        return TrancheCorrelationCDO2Engine(as_of, settle, maturity, pool, copula,
                                            correlation, **structure)
    return FactorCorrelationCDO2Engine(as_of, settle, maturity, pool, copula, correlation,
                                       **structure)


_BUILDERS = {
    'large_pool': large_pool_basket,
    'uniform': uniform_basket,
    'homogeneous': homogeneous_basket,
    'semi_analytic': semi_analytic_basket,
    'heterogeneous': heterogeneous_basket,
    'monte_carlo': monte_carlo_basket,
    'forward_loss': forward_loss_basket,
    'cdo_squared': cdo_squared_basket,
}


def create_basket(model_type: str, **kwargs) -> LossDistributionEngine:
    """Factory function to create basket engines.

    Args:
        model_type: One of 'large_pool', 'uniform', 'homogeneous',
            'semi_analytic', 'heterogeneous', 'monte_carlo',
            'forward_loss', 'cdo_squared'
        **kwargs: Arguments passed to the builder

    Examples:
        >>> create_basket('semi_analytic', as_of=d, settle=d, maturity=m,
        ...               survival_curves=curves, correlation=0.3)
    """
    builder = _BUILDERS.get(model_type.lower())
    if builder is None:
        raise ValueError(f"Unknown basket model type: {model_type}. "
                         f"Choose from: {', '.join(repr(k) for k in _BUILDERS)}")
    return builder(**kwargs)


def _check_discount_curve(base_correlation: BaseCorrelation, discount_curve) -> None:
    if discount_curve is None and base_correlation.strike_method == StrikeMethod.EXPECTED_LOSS_PV:
        raise ValueError("A discount curve is required for present value strikes")


def tranche_pricers(basket: LossDistributionEngine, tranches: Sequence[Optional[Tranche]],
                    discount_curve=None, notionals: Optional[Sequence[float]] = None,
                    rescale_strikes: bool = False) -> List[Optional[TrancheLossMapper]]:
    """Prepare an engine for a batch of tranches and wrap each one.

    Adds the tranche quadrature adjustment when the engine uses the
    default point count, raising it further for high factor
    correlations, puts tranche dates on the grid, and switches
    amortization off when no tranche can amortize. With a base
    correlation each tranche gets its own wrapper and all wrappers share
    one correlation object.

    Args:
        basket: Engine over the tranches' pool
        tranches: Tranches, None entries are skipped
        discount_curve: Discount curve for base correlation strikes
        notionals: Tranche notionals, one for all or one per tranche;
            zero skips a tranche
        rescale_strikes: Recompute base correlation strikes on pool changes

    Returns:
        One mapper per tranche, None where skipped
    """
    present = [t for t in tranches if t is not None]
    if basket.uses_quadrature and basket.integration_points_default:
        copula_type = basket.copula.copula_type
        before = basket.integration_points_first
        points = before + quadrature_points_adjust_for_copula(
            copula_type, [(t.attach, t.detach) for t in present])
        if basket.base_correlation is None:
            points = quadrature_points_for_correlation(
                points, copula_type, average_correlation(basket.correlation, basket.pool.weights))
        if points > before:
            basket.integration_points_first = points
            logger.info("Quadrature points raised from %d to %d", before, points)
    last = max((t.maturity for t in present if t.maturity is not None), default=None)
    if last is not None and last > basket.maturity:
        logger.info("Basket maturity extended from %s to tranche maturity %s",
                    basket.maturity, last)
        basket.maturity = last
    basket.add_grid_dates([d for t in present for d in (t.effective, t.maturity)])

    max_amortization = basket.maximum_amortization_level()
    if max_amortization <= minimum_amortization_level(present):
        basket.no_amortization = True
        basket.loss_level_add_complement = False
        logger.info("No tranche can amortize (max pool amortization %.4f), "
                    "amortization tracking disabled", max_amortization)
    basket.loss_levels = sorted({x for t in present for x in (t.attach, t.detach)})

    base = basket.base_correlation
    if base is not None:
        _check_discount_curve(base, discount_curve)

    mappers: List[Optional[TrancheLossMapper]] = []
    for i, tranche in enumerate(tranches):
        notional = None
        if notionals:
            notional = notionals[i if i < len(notionals) else 0]
        if tranche is None or notional == 0.0:
            mappers.append(None)
            continue
        target = basket
        if base is not None:
            target = BaseCorrelationTrancheBasket(
                basket, discount_curve, base, tranche.attach, tranche.detach,
                maturity=tranche.maturity, rescale_strikes=rescale_strikes)
            if max_amortization <= tranche.minimum_amortization_level():
                target.no_amortization = True
        mappers.append(TrancheLossMapper(tranche, target, notional))
    return mappers


def cdo_pricers(model_type: str, tranches: Sequence[Optional[Tranche]], discount_curve=None,
                notionals: Optional[Sequence[float]] = None, rescale_strikes: bool = False,
                **basket_kwargs) -> List[Optional[TrancheLossMapper]]:
    """Build an engine with :func:`create_basket` and wrap the tranches on it."""
    basket = create_basket(model_type, **basket_kwargs)
    return tranche_pricers(basket, tranches, discount_curve, notionals, rescale_strikes)
