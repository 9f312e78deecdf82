"""
Core infrastructure for pymultifit.

This module provides shared abstractions and utilities used by the
domain-specific submodules.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing utilities
"""

from pymultifit.core.result import Result
from pymultifit.core.exceptions import (
    MultiFitError,
    ValidationError,
    DimensionError,
    ConfigurationError,
    DegenerateMarginError,
    NumericalError,
    NumericalInstabilityError,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "MultiFitError",
    "ValidationError",
    "DimensionError",
    "ConfigurationError",
    "DegenerateMarginError",
    "NumericalError",
    "NumericalInstabilityError",
]
