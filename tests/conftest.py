"""Pytest fixtures for credit basket tests."""

import datetime

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from credit_basket import (
    Copula,
    DiscountCurve,
    SemiAnalyticEngine,
    SurvivalCurve,
    setup_pool,
)
from credit_basket.lib.curves import add_period
from credit_basket.lib.config import TimeUnit


@pytest.fixture
def as_of():
    """Pricing date."""
    return datetime.date(2024, 3, 20)


@pytest.fixture
def maturity(as_of):
    """Five year maturity."""
    return add_period(as_of, 5, TimeUnit.YEARS)


@pytest.fixture
def flat_curves(as_of):
    """Five names with a flat 2% hazard rate and 40% recovery."""
    return [SurvivalCurve.flat(f"NAME{i}", as_of, 0.02, recovery=0.4) for i in range(5)]


@pytest.fixture
def principals():
    """Equal principals of 10MM."""
    return [10_000_000.0] * 5


@pytest.fixture
def pool(flat_curves, principals):
    """Pool of the five flat names."""
    return setup_pool(flat_curves, principals)


@pytest.fixture
def discount_curve(as_of):
    """Flat 3% discount curve."""
    return DiscountCurve(as_of, 0.03)


@pytest.fixture
def make_engine(as_of, maturity, pool):
    """Build an engine of a given class on the five-name pool."""
    def _make(engine_cls=SemiAnalyticEngine, correlation=0.3, copula=None, **kwargs):
        return engine_cls(as_of, as_of, maturity, pool, copula or Copula(), correlation,
                          **kwargs)
    return _make


@pytest.fixture
def heterogeneous_curves(as_of):
    """Ten names with hazard rates from 0.5% to 5%."""
    hazards = np.linspace(0.005, 0.05, 10)
    return [SurvivalCurve.flat(f"HET{i}", as_of, h, recovery=0.3 + 0.02 * i)
            for i, h in enumerate(hazards)]
