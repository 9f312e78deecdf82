"""
Generic result container for pymultifit computations.

The Result class provides a standardized envelope around the fit payload.
This enables shared tooling for timing, warnings and reproducibility while
letting each computation define its own parameter structure.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (counts, resolved options)
    - timing is optional (don't burden unit tests)
    - Immutable (frozen=True) for reproducibility
"""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for statistical computations.

    Type Parameters:
        P: The domain-specific parameter payload type

    Attributes:
        params: Domain-specific payload (tested nodes, p-values, statistics)
        info: Structured metadata (number of tests, resolved options)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the backend that produced this result
        warnings: Non-fatal issues encountered during computation

    Examples:
        >>> Result(
        ...     params=MultiFitParams(...),
        ...     info={'n_tests': 57, 'n_pairs': 1},
        ...     timing={'total_seconds': 0.04, 'tree': 0.03},
        ...     backend_name='cpu_multifit'
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
