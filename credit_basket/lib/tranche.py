"""Tranche loss from a pool loss distribution.

A tranche [attach, detach] absorbs pool losses between its two levels.
With a base correlation each tranche is priced as the difference of two
base tranches [0, detach] and [0, attach], each at its own correlation,
on a private copy of the shared pool engine.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .basket import LossDistributionEngine
from .base_correlation import BaseCorrelation
from .correlation import CorrelationModel, SingleFactorCorrelation
from .distribution import LossDistribution

logger = logging.getLogger(__name__)


@dataclass
class Tranche:
    """Slice of pool loss.

    Attributes:
        attach: Attachment point as a pool fraction
        detach: Detachment point as a pool fraction
        effective: Date the tranche starts, added to the pricing grid
        maturity: Tranche maturity, the pool maturity if None
        amortize_premium: Whether recoveries amortize the tranche
        name: Label used in reports
    """
    attach: float
    detach: float
    effective: Optional[datetime.date] = None
    maturity: Optional[datetime.date] = None
    amortize_premium: bool = False
    name: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.attach < self.detach <= 1.0:
            raise ValueError(
                f"Tranche levels must satisfy 0 <= attach < detach <= 1, "
                f"got {self.attach}, {self.detach}"
            )

    @property
    def width(self) -> float:
        return self.detach - self.attach

    @property
    def label(self) -> str:
        return self.name or f"{self.attach:.2%}-{self.detach:.2%}"

    def minimum_amortization_level(self) -> float:
        """Pool amortization below which the tranche never amortizes."""
        if not self.amortize_premium:
            return 1.0
        return 1.0 - self.detach


def minimum_amortization_level(tranches: Sequence[Optional[Tranche]]) -> float:
    """Lowest minimum amortization level of a batch of tranches."""
    level = 1.0
    for tranche in tranches:
        if tranche is not None:
            level = min(level, tranche.minimum_amortization_level())
    return level


def tranche_expected_loss(distribution: LossDistribution, attach: float, detach: float,
                          date: datetime.date) -> float:
    """Expected loss of [attach, detach] as a fraction of the tranche width."""
    if detach <= attach:
        raise ValueError(f"Detachment {detach} must exceed attachment {attach}")
    return distribution.expected_tranche_loss(date, attach, detach) / (detach - attach)


class BaseCorrelationTrancheBasket:
    """One tranche priced off a shared pool engine with base correlation.

    The attach and detach correlations are read off the base correlation
    by strike. Both base tranches are computed on a private clone of the
    pool engine driven by the single-factor correlation published in the
    pool engine's shared handle, so sibling tranches hold the same
    correlation object.

    Args:
        basket: Pool engine built with the base correlation
        discount_curve: Discount curve used for strike conversion
        base_correlation: Strike to correlation curve
        attach: Tranche attachment
        detach: Tranche detachment
        maturity: Tranche maturity, the pool maturity if None
        rescale_strikes: Recompute strikes whenever the pool changes,
            otherwise strikes are computed once
    """

    def __init__(self, basket: LossDistributionEngine, discount_curve,
                 base_correlation: BaseCorrelation, attach: float, detach: float,
                 maturity: Optional[datetime.date] = None, rescale_strikes: bool = False):
        if not 0.0 <= attach < detach <= 1.0:
            raise ValueError(
                f"Tranche levels must satisfy 0 <= attach < detach <= 1, got {attach}, {detach}"
            )
        self.basket = basket
        self.discount_curve = discount_curve
        self.base_correlation = base_correlation
        self.attach = attach
        self.detach = detach
        self.maturity = maturity or basket.maturity
        self.rescale_strikes = rescale_strikes
        self.handle = basket.shared_correlation
        self._no_amortization = basket.no_amortization
        self._model: Optional[CorrelationModel] = None
        self._engine: Optional[LossDistributionEngine] = None
        self._engine_revision: Optional[int] = None
        self._strikes: Optional[Tuple[float, float]] = None
        self._key = None
        self._base: Tuple[LossDistribution, ...] = ()

    @property
    def correlation(self) -> CorrelationModel:
        """The single-factor correlation shared with sibling tranches."""
        if self._model is None:
            candidate = SingleFactorCorrelation(
                self.basket.pool.name_ids, np.zeros(self.basket.count))
            self._model = self.handle.publish(candidate)
        return self._model

    @correlation.setter
    def correlation(self, value: CorrelationModel) -> None:
        self._model = value
        self._key = None

    @property
    def no_amortization(self) -> bool:
        return self._no_amortization or self.basket.no_amortization

    @no_amortization.setter
    def no_amortization(self, value: bool) -> None:
        self._no_amortization = bool(value)

    @property
    def total_principal(self) -> float:
        return self.basket.total_principal

    def maximum_amortization_level(self) -> float:
        return self.basket.maximum_amortization_level()

    def strikes(self) -> Tuple[float, float]:
        """Strikes of the attachment and detachment points."""
        if self._strikes is None or self.rescale_strikes:
            args = (self.basket.pool, self.discount_curve, self.basket.portfolio_start,
                    self.maturity, self.basket.time_grid)
            self._strikes = (self.base_correlation.strike(self.attach, *args),
                             self.base_correlation.strike(self.detach, *args))
        return self._strikes

    def tranche_correlations(self) -> Tuple[float, float]:
        """Correlations of the base tranches [0, attach] and [0, detach]."""
        k_a, k_d = self.strikes()
        return self.base_correlation.correlation(k_a), self.base_correlation.correlation(k_d)

    def _pricing_engine(self) -> LossDistributionEngine:
        if self._engine is None or self._engine_revision != self.basket.revision:
            engine = self.basket.clone()
            engine.maturity = self.maturity
            engine.no_amortization = self.no_amortization
            if self.base_correlation.recovery_correlation != 0:
                engine.recovery_correlation = self.base_correlation.recovery_correlation
            engine.correlation = self.correlation
            self._engine = engine
            self._engine_revision = self.basket.revision
        return self._engine

    def _distributions_at(self, rho: float) -> Tuple[LossDistribution, Optional[LossDistribution]]:
        model = self.correlation
        model.set_correlations(np.full(model.size, rho))
        engine = self._pricing_engine()
        if engine.correlation is not model:
            engine.correlation = model
        return engine.distribution, engine.amortization_distribution

    def _ensure(self) -> None:
        rho_a, rho_d = self.tranche_correlations()
        key = (self.basket.revision, self.basket.pool.versions(), self.base_correlation.version,
               rho_a, rho_d, self.no_amortization, id(self.correlation))
        if key == self._key:
            return
        logger.debug("Base tranche [%g, %g] correlations %.4f, %.4f",
                     self.attach, self.detach, rho_a, rho_d)
        loss_d, amort_d = self._distributions_at(rho_d)
        if self.attach > 0:
            loss_a, amort_a = self._distributions_at(rho_a)
        else:
            loss_a, amort_a = loss_d, amort_d
        self._base = (loss_a, amort_a, loss_d, amort_d)
        self._key = key

    def _check_levels(self, attach: float, detach: float) -> None:
        if (attach, detach) != (self.attach, self.detach):
            raise ValueError(
                f"Basket prices [{self.attach}, {self.detach}], asked for [{attach}, {detach}]"
            )

    def expected_loss(self, date: datetime.date, attach: Optional[float] = None,
                      detach: Optional[float] = None) -> float:
        """Expected tranche loss as a pool fraction, L(0, d; rho_d) - L(0, a; rho_a)."""
        self._check_levels(self.attach if attach is None else attach,
                           self.detach if detach is None else detach)
        self._ensure()
        loss_a, _, loss_d, _ = self._base
        value = loss_d.expected_tranche_loss(date, 0.0, self.detach)
        if self.attach > 0:
            value -= loss_a.expected_tranche_loss(date, 0.0, self.attach)
        return value

    def expected_amortization(self, date: datetime.date, attach: Optional[float] = None,
                              detach: Optional[float] = None) -> float:
        """Expected tranche amortization as a pool fraction."""
        self._check_levels(self.attach if attach is None else attach,
                           self.detach if detach is None else detach)
        if self.no_amortization:
            return 0.0
        self._ensure()
        _, amort_a, _, amort_d = self._base
        if amort_d is None:
            return 0.0
        value = amort_d.expected_tranche_loss(date, 1.0 - self.detach, 1.0)
        if self.attach > 0:
            value -= amort_a.expected_tranche_loss(date, 1.0 - self.attach, 1.0)
        return value

    def __repr__(self) -> str:
        return (f"BaseCorrelationTrancheBasket(attach={self.attach}, detach={self.detach}, "
                f"maturity={self.maturity})")


class TrancheLossMapper:
    """Expected loss and amortization of one tranche.

    Args:
        tranche: The tranche
        basket: Pool engine, or a base correlation tranche basket
        notional: Tranche notional, total principal times width if None
    """

    def __init__(self, tranche: Tranche, basket, notional: Optional[float] = None):
        self.tranche = tranche
        self.basket = basket
        if notional is None:
            notional = basket.total_principal * tranche.width
        self.notional = notional

    @property
    def correlation(self) -> CorrelationModel:
        return self.basket.correlation

    def expected_loss_fraction(self, date: datetime.date) -> float:
        """Expected loss as a fraction of the tranche width."""
        t = self.tranche
        return self.basket.expected_loss(date, t.attach, t.detach) / t.width

    def expected_amortization_fraction(self, date: datetime.date) -> float:
        t = self.tranche
        return self.basket.expected_amortization(date, t.attach, t.detach) / t.width

    def expected_loss(self, date: datetime.date) -> float:
        """Expected loss in notional units."""
        return self.expected_loss_fraction(date) * self.notional

    def expected_amortization(self, date: datetime.date) -> float:
        return self.expected_amortization_fraction(date) * self.notional

    def loss_curve(self, dates: Optional[Sequence[datetime.date]] = None) -> pd.Series:
        """Expected loss fraction by date, on the pricing grid if no dates are given."""
        if dates is None:
            dates = self._grid()
        values = [self.expected_loss_fraction(d) for d in dates]
        return pd.Series(values, index=pd.Index(list(dates), name="date"), name=self.tranche.label)

    def _grid(self) -> List[datetime.date]:
        engine = self.basket.basket if isinstance(self.basket, BaseCorrelationTrancheBasket) \
            else self.basket
        maturity = self.tranche.maturity or engine.maturity
        return [d for d in engine.time_grid if d <= maturity]

    def __repr__(self) -> str:
        return f"TrancheLossMapper({self.tranche.label}, notional={self.notional:,.0f})"
