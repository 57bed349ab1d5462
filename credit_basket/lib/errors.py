"""Exception types raised while building basket models.

All of them derive from ValueError so callers validating inputs with
``except ValueError`` keep working.
"""


class BasketModelError(ValueError):
    """Base class for basket model construction errors."""


class ArgumentShapeError(BasketModelError):
    """Array arguments whose lengths do not line up."""


class MissingRecoveryData(BasketModelError):
    """A survival curve carries no calibrator-derived recovery curve."""

    def __init__(self, curve_name: str):
        super().__init__(
            f"Must specify recoveries as curve {curve_name} does not have "
            f"recoveries from calibration"
        )
        self.curve_name = curve_name


class InvalidCorrelationInput(BasketModelError):
    """Correlation argument of an unrecognised kind."""


class UnsupportedCombination(BasketModelError):
    """Correlation or copula the selected engine cannot consume."""


class UnknownCopulaType(BasketModelError):
    """Copula tag missing from the quadrature tables."""
