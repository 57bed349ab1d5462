"""Recovery rate models conditional on the common factor.

- Fixed: recovery does not depend on the factor
- Correlated: R(m) = Phi(mu + beta * m), mu chosen so that E[R(M)] = R
"""

from abc import ABC, abstractmethod

import numpy as np
from scipy.stats import norm


class RecoveryModel(ABC):
    """Abstract base class for factor-conditional recoveries."""

    @abstractmethod
    def conditional(self, recoveries: np.ndarray, factor: np.ndarray) -> np.ndarray:
        """Recovery of each name at each factor node.

        Args:
            recoveries: Expected recovery per name, shape (names,)
            factor: Standard normal factor at each node, shape (nodes,)

        Returns:
            Array of shape (nodes, names)
        """
        pass

    @property
    def is_fixed(self) -> bool:
        return False


class FixedRecovery(RecoveryModel):
    """Recovery independent of the factor."""

    def conditional(self, recoveries, factor):
        return np.broadcast_to(recoveries, (len(factor), len(recoveries)))

    @property
    def is_fixed(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "FixedRecovery()"


class CorrelatedRecovery(RecoveryModel):
    """Gaussian factor recovery.

    Defaults cluster at low factor values, so a positive ``beta`` lowers
    recoveries exactly where losses concentrate.
    """

    def __init__(self, beta: float):
        if not -1 <= beta <= 1:
            raise ValueError(f"Recovery correlation must be between -1 and 1, got {beta}")
        self.beta = float(beta)

    def conditional(self, recoveries, factor):
        r = np.clip(recoveries, 1e-12, 1 - 1e-12)
        mu = norm.ppf(r) * np.sqrt(1.0 + self.beta ** 2)
        out = norm.cdf(mu[None, :] + self.beta * np.asarray(factor)[:, None])
        # keep exact zero and full recoveries
        return np.where((recoveries <= 0) | (recoveries >= 1), recoveries[None, :], out)

    def __repr__(self) -> str:
        return f"CorrelatedRecovery(beta={self.beta:.4f})"


def create_recovery_model(model_type: str, **kwargs) -> RecoveryModel:
    """Factory function to create recovery models.

    Args:
        model_type: 'fixed' or 'correlated'
        **kwargs: Arguments passed to the model constructor

    Examples:
        >>> create_recovery_model('fixed')
        >>> create_recovery_model('correlated', beta=0.3)
    """
    model_type = model_type.lower()

    if model_type == 'fixed':
        return FixedRecovery(**kwargs)
    elif model_type == 'correlated':
        return CorrelatedRecovery(**kwargs)
    else:
        raise ValueError(f"Unknown recovery model type: {model_type}. "
                        f"Choose from: 'fixed', 'correlated'")


def recovery_model_for(beta: float) -> RecoveryModel:
    """Fixed model for a zero sensitivity, correlated otherwise."""
    if beta == 0:
        return create_recovery_model('fixed')
    return create_recovery_model('correlated', beta=beta)
