"""
pymultifit: multiscale tests of independence for Python.

Tests independence between two multivariate samples through 2x2 tables
on recursive dyadic partitions, with Holm-type multiple testing
adjustments and simulated null calibrations.

Submodules:
    independence: multifit() and its building blocks
    core: results, exceptions and validation shared by submodules
"""

__version__ = "0.1.0"

from pymultifit import independence
from pymultifit.independence import multifit

__all__ = [
    "__version__",
    "independence",
    "multifit",
]
