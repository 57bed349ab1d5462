"""Core library modules for basket loss modeling.

This subpackage contains the core implementation:
- curves, pool: survival, recovery and discount curves and the name pool
- correlation, base_correlation: correlation structures and their resolution
- copula, quadrature: factor copulas and integration point tables
- basket, analytic, semi_analytic, simulation, forward_loss: loss engines
- tranche, cdo_squared: tranche and CDO-squared loss
- factory, reports: builders and tabular output
"""

from .errors import (
    BasketModelError,
    ArgumentShapeError,
    MissingRecoveryData,
    InvalidCorrelationInput,
    UnsupportedCombination,
    UnknownCopulaType,
)
from .config import (
    TimeUnit,
    EngineSettings,
    ForwardLossSettings,
    DEFAULT_SETTINGS,
    DEFAULT_FORWARD_LOSS_SETTINGS,
)
from .curves import (
    RecoveryCurve,
    SurvivalCalibrator,
    SurvivalCurve,
    DiscountCurve,
    generate_time_grid,
)
from .pool import Name, Pool, select_names, setup_pool
from .correlation import (
    CorrelationKind,
    CorrelationTarget,
    CorrelationModel,
    FlatCorrelation,
    SingleFactorCorrelation,
    FactorCorrelation,
    GeneralCorrelation,
    CorrelationTermStruct,
    SharedCorrelation,
    convert_correlation,
    resolve_correlation,
    default_correlation,
)
from .base_correlation import BaseCorrelation, StrikeMethod
from .copula import Copula, CopulaType, FactorIntegration
from .quadrature import (
    QUADRATURE_TABLE_VERSION,
    default_quadrature_points,
    quadrature_points_adjust,
    quadrature_points_adjust_for_copula,
    quadrature_points_adjust_for_detachments,
    quadrature_points_for_correlation,
    safe_quadrature_points_for_greeks,
    quadrature_points_from_accuracy,
)
from .recovery import (
    RecoveryModel,
    FixedRecovery,
    CorrelatedRecovery,
    create_recovery_model,
)
from .distribution import LossDistribution, tranche_loss
from .basket import EngineState, LossDistributionEngine
from .analytic import LargePoolEngine, UniformEngine, HomogeneousEngine, count_distribution
from .semi_analytic import SemiAnalyticEngine, HeterogeneousEngine
from .factor_model import LatentFactorModel
from .simulation import MonteCarloEngine, SimulationResult
from .forward_loss import (
    ForwardLossEngine,
    default_scaling_factors,
    default_base_levels,
    default_state_losses,
    transform_scaling_factors,
)
from .tranche import (
    Tranche,
    TrancheLossMapper,
    BaseCorrelationTrancheBasket,
    minimum_amortization_level,
    tranche_expected_loss,
)
from .cdo_squared import (
    CDOSquaredEngine,
    FactorCorrelationCDO2Engine,
    TrancheCorrelationCDO2Engine,
    BaseCorrelationCDO2Engine,
    aggregate_child_losses,
)
from .factory import (
    large_pool_basket,
    uniform_basket,
    homogeneous_basket,
    semi_analytic_basket,
    heterogeneous_basket,
    monte_carlo_basket,
    forward_loss_basket,
    cdo_squared_basket,
    create_basket,
    tranche_pricers,
    cdo_pricers,
)
from .reports import create_loss_curve_report, create_distribution_report

__all__ = [
    # Errors
    "BasketModelError",
    "ArgumentShapeError",
    "MissingRecoveryData",
    "InvalidCorrelationInput",
    "UnsupportedCombination",
    "UnknownCopulaType",
    # Configuration
    "TimeUnit",
    "EngineSettings",
    "ForwardLossSettings",
    "DEFAULT_SETTINGS",
    "DEFAULT_FORWARD_LOSS_SETTINGS",
    # Curves and pool
    "RecoveryCurve",
    "SurvivalCalibrator",
    "SurvivalCurve",
    "DiscountCurve",
    "generate_time_grid",
    "Name",
    "Pool",
    "select_names",
    "setup_pool",
    # Correlation
    "CorrelationKind",
    "CorrelationTarget",
    "CorrelationModel",
    "FlatCorrelation",
    "SingleFactorCorrelation",
    "FactorCorrelation",
    "GeneralCorrelation",
    "CorrelationTermStruct",
    "SharedCorrelation",
    "BaseCorrelation",
    "StrikeMethod",
    "convert_correlation",
    "resolve_correlation",
    "default_correlation",
    # Copulas and quadrature
    "Copula",
    "CopulaType",
    "FactorIntegration",
    "QUADRATURE_TABLE_VERSION",
    "default_quadrature_points",
    "quadrature_points_adjust",
    "quadrature_points_adjust_for_copula",
    "quadrature_points_adjust_for_detachments",
    "quadrature_points_for_correlation",
    "safe_quadrature_points_for_greeks",
    "quadrature_points_from_accuracy",
    # Recovery
    "RecoveryModel",
    "FixedRecovery",
    "CorrelatedRecovery",
    "create_recovery_model",
    # Engines
    "LossDistribution",
    "tranche_loss",
    "EngineState",
    "LossDistributionEngine",
    "LargePoolEngine",
    "UniformEngine",
    "HomogeneousEngine",
    "count_distribution",
    "SemiAnalyticEngine",
    "HeterogeneousEngine",
    "LatentFactorModel",
    "MonteCarloEngine",
    "SimulationResult",
    "ForwardLossEngine",
    "default_scaling_factors",
    "default_base_levels",
    "default_state_losses",
    "transform_scaling_factors",
    # Tranches
    "Tranche",
    "TrancheLossMapper",
    "BaseCorrelationTrancheBasket",
    "minimum_amortization_level",
    "tranche_expected_loss",
    # CDO-squared
    "CDOSquaredEngine",
    "FactorCorrelationCDO2Engine",
    "TrancheCorrelationCDO2Engine",
    "BaseCorrelationCDO2Engine",
    "aggregate_child_losses",
    # Builders and reports
    "large_pool_basket",
    "uniform_basket",
    "homogeneous_basket",
    "semi_analytic_basket",
    "heterogeneous_basket",
    "monte_carlo_basket",
    "forward_loss_basket",
    "cdo_squared_basket",
    "create_basket",
    "tranche_pricers",
    "cdo_pricers",
    "create_loss_curve_report",
    "create_distribution_report",
]
