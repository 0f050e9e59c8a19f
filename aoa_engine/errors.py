"""
Error kinds raised by the AOA engine.

All of them derive from ValueError so callers that already guard numeric input with
`except ValueError` keep working.
"""
from __future__ import annotations


class AOAError(ValueError):
    """Base class for every error raised by the estimator and its helpers."""


class InvalidInput(AOAError):
    """Shape mismatch, empty/too-small reference set, zero predictors, non-finite values."""


class DegenerateVariance(InvalidInput):
    """A predictor has zero standard deviation in the reference set."""

    def __init__(self, message: str, predictors=None) -> None:
        super().__init__(message)
        self.predictors = list(predictors or [])
