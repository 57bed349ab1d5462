"""Immutable engine settings."""

from dataclasses import dataclass
from enum import Enum


class TimeUnit(Enum):
    """Calendar unit used to step the pricing grid."""
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


@dataclass(frozen=True)
class EngineSettings:
    """Defaults shared by all basket engines.

    Attributes:
        step_size: Number of step units between pricing grid dates
        step_unit: Calendar unit of a grid step
        sample_size: Monte Carlo paths when none are given
        cdo_squared_sample_size: Paths used by CDO-squared engines
        grid_size: Loss bucket width, 0 selects it from the pool
        min_grid_size: Finest bucket width chosen automatically
        principal_scale: Factor applied to principals inside the pool
        default_principal: Principal given to names when none is supplied
        default_seed: Seed used when a seed of 0 is requested
    """
    step_size: int = 3
    step_unit: TimeUnit = TimeUnit.MONTHS
    sample_size: int = 10000
    cdo_squared_sample_size: int = 5000
    grid_size: float = 0.0
    min_grid_size: float = 0.005
    principal_scale: float = 10.0
    default_principal: float = 1_000_000.0
    default_seed: int = 7

    def __post_init__(self):
        if self.step_size <= 0:
            raise ValueError(f"Step size must be positive, got {self.step_size}")
        if self.sample_size <= 0 or self.cdo_squared_sample_size <= 0:
            raise ValueError("Sample sizes must be positive")
        if self.principal_scale <= 0:
            raise ValueError(
                f"Principal scale must be positive, got {self.principal_scale}"
            )


@dataclass(frozen=True)
class ForwardLossSettings:
    """Transition calibration constants of the forward loss engine.

    Attributes:
        alpha: Decay of the hazard of names already defaulted
        beta: Decay of the hazard of names still alive
        flat: State above which surviving hazards stop decaying
    """
    alpha: float = 0.985
    beta: float = 0.995
    flat: int = 200


DEFAULT_SETTINGS = EngineSettings()
DEFAULT_FORWARD_LOSS_SETTINGS = ForwardLossSettings()
