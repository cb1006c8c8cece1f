"""Exceptions and warnings raised by the subspace Newton accelerator."""

import numpy as np


class InvalidConfiguration(ValueError):
    """Sizing parameters passed to ``resize`` are inconsistent.

    The accelerator is left unusable; the caller must not proceed with the
    outer iteration.
    """


class IllConditionedJacobianError(np.linalg.LinAlgError):
    """``I - ProjectedJacobian`` is singular or too ill-conditioned to invert."""

    def __init__(self, message, condition=None):
        super().__init__(message)
        self.condition = condition


class BasisCapacityWarning(RuntimeWarning):
    """The unstable-subspace basis is full; further growth is frozen."""
