"""Credit basket loss distributions for tranche and CDO-squared pricing.

This package computes the time-indexed loss distribution of a pool of
credit names under a factor copula and maps it to tranche losses.

Main components:
- pool: names, principals and recovery curves
- correlation: correlation structures and base correlation
- copula: Gaussian, Student-t, double-t, Archimedean, NIG and other copulas
- engines: large pool, uniform, homogeneous, semi-analytic, heterogeneous,
  Monte Carlo and forward loss engines
- tranche: tranche loss mapping and base correlation tranches
- cdo_squared: tranches on tranches
"""

from .lib import *  # noqa: F401,F403
from .lib import __all__

__version__ = "1.0.0"
