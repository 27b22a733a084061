"""
Exception types raised by PyConfSeq.

Every public entry point either returns a fully populated result or raises
exactly one of the errors below.
"""

from typing import Optional


class ConfSeqError(Exception):
    """Base class for all PyConfSeq errors."""


class ConfigurationError(ConfSeqError, ValueError):
    """Invalid configuration, input data, fold assignment or reporting times."""


class FitError(ConfSeqError):
    """A nuisance fit failed or produced unusable predictions."""

    def __init__(self, message: str, fold: Optional[int] = None):
        if fold is not None:
            message = f"fold {fold}: {message}"
        super().__init__(message)
        self.fold = fold


class InsufficientDataError(ConfSeqError):
    """A requested time is not covered by the available score stream."""


class NumericalInstabilityError(ConfSeqError, ArithmeticError):
    """Running statistics became non-finite or invalid."""
