"""
Common types for multiscale independence testing.

Defines the test-method tag, the partition node record, per-pair pruning
summaries, global statistics and the MultiFitParams payload wrapped by
Result[P].
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
import numpy as np
from numpy.typing import NDArray

from pymultifit.core.exceptions import ConfigurationError


class TestMethod(str, Enum):
    """Univariate 2x2 test applied at every partition node."""
    __test__ = False  # not a pytest class

    FISHER = "fisher"
    CHI_SQUARE = "chisq"
    LIKELIHOOD_RATIO = "lr"
    NORMAL = "norm"

    @property
    def has_correction(self) -> bool:
        """Mid-p (Fisher), Yates (chi-square), Williams (LR); none for normal."""
        return self is not TestMethod.NORMAL


_METHOD_ALIASES = {
    "fisher": TestMethod.FISHER,
    "chisq": TestMethod.CHI_SQUARE,
    "chi.sq": TestMethod.CHI_SQUARE,
    "chi-square": TestMethod.CHI_SQUARE,
    "chi_square": TestMethod.CHI_SQUARE,
    "lr": TestMethod.LIKELIHOOD_RATIO,
    "likelihood-ratio": TestMethod.LIKELIHOOD_RATIO,
    "likelihood_ratio": TestMethod.LIKELIHOOD_RATIO,
    "norm": TestMethod.NORMAL,
    "norm.approx": TestMethod.NORMAL,
    "normal": TestMethod.NORMAL,
}

# Holm on raw p-values, Holm on corrected p-values, Modified-Holm
VALID_ADJUST_METHODS = ("H", "Hcorrected", "MH")

STATISTIC_NAMES = ("mean", "top_mean", "mean_corrected", "top_mean_corrected")


def parse_test_method(method: str | TestMethod) -> TestMethod:
    """Resolve a test-method name or alias (case-insensitive)."""
    if isinstance(method, TestMethod):
        return method
    key = str(method).strip().lower()
    if key not in _METHOD_ALIASES:
        raise ConfigurationError(
            f"test_method must be one of {sorted(_METHOD_ALIASES)}, got {method!r}",
            option="test_method",
            value=method,
        )
    return _METHOD_ALIASES[key]


@dataclass(frozen=True)
class PartitionNode:
    """
    One tested 2x2 table.

    The node covers the cell of margin pair ``pair`` whose x interval is the
    ``x_index``-th of ``2**x_level`` dyadic intervals and whose y interval is
    the ``y_index``-th of ``2**y_level``. Its table splits the cell at the
    midpoint of both intervals; rows are the x halves (lower, upper) and
    columns the y halves (lower, upper).

    Attributes
    ----------
    node_id : int
        Index of the node in the fit's node list.
    pair : tuple of int
        (x column, y column), 0-based.
    x_level, x_index, y_level, y_index : int
        Dyadic cell coordinates.
    counts : tuple of int
        (a, b, c, d) = (xlo/ylo, xlo/yhi, xhi/ylo, xhi/yhi).
    p_value : float
        Raw p-value of the table.
    p_corrected : float or None
        Corrected p-value (mid-p, Yates or Williams), None if not computed.
    parents : tuple of int
        Node ids of the tested cells that generated this one. The first
        entry created it; empty for the root.
    children : tuple of int
        Node ids of tested child cells, in x-lower, x-upper, y-lower,
        y-upper order (pruned children are absent).
    """
    node_id: int
    pair: tuple[int, int]
    x_level: int
    x_index: int
    y_level: int
    y_index: int
    counts: tuple[int, int, int, int]
    p_value: float
    p_corrected: float | None
    parents: tuple[int, ...]
    children: tuple[int, ...]

    @property
    def resolution(self) -> int:
        return self.x_level + self.y_level

    @property
    def address(self) -> tuple[str, str]:
        """Binary split decisions per axis, most significant first."""
        x_bits = format(self.x_index, f"0{self.x_level}b") if self.x_level else ""
        y_bits = format(self.y_index, f"0{self.y_level}b") if self.y_level else ""
        return x_bits, y_bits

    @property
    def total(self) -> int:
        return sum(self.counts)

    @property
    def parent(self) -> int | None:
        return self.parents[0] if self.parents else None

    @property
    def is_leaf(self) -> bool:
        return not self.children


@dataclass(frozen=True)
class PairSummary:
    """
    Per margin pair bookkeeping of how far its tree grew.

    Attributes
    ----------
    pair : tuple of int
        (x column, y column).
    n_tested : int
        Number of tested nodes.
    max_resolution : int
        Highest resolution of a tested node, -1 for an empty tree.
    n_pruned_guard : int
        Distinct cells rejected by the minimum-total guards.
    n_pruned_gate : int
        Tested nodes whose expansion was stopped by the p_star gate.
    excluded : bool
        True when the pair involves a degenerate margin and was not tested.
    """
    pair: tuple[int, int]
    n_tested: int
    max_resolution: int
    n_pruned_guard: int
    n_pruned_gate: int
    excluded: bool = False


@dataclass(frozen=True)
class GlobalStatistics:
    """Mean and top-k mean of -log(p), on raw and corrected p-values."""
    mean: float
    top_mean: float
    mean_corrected: float
    top_mean_corrected: float

    def as_array(self) -> NDArray[np.floating[Any]]:
        return np.array(
            [self.mean, self.top_mean, self.mean_corrected, self.top_mean_corrected],
            dtype=np.float64,
        )

    def as_dict(self) -> dict[str, float]:
        return dict(zip(STATISTIC_NAMES, self.as_array().tolist()))


@dataclass(frozen=True)
class NullCalibration:
    """
    Simulated null distribution of the global statistics.

    Attributes
    ----------
    kind : str
        "approx", "exact" or "permutation".
    statistics : ndarray
        Replicate statistics, shape (B, 4), columns in STATISTIC_NAMES order.
    p_values : dict
        Empirical p-value of each observed statistic, keyed by name.
    """
    kind: str
    statistics: NDArray[np.floating[Any]]
    p_values: dict[str, float]

    @property
    def n_sim(self) -> int:
        return int(self.statistics.shape[0])


@dataclass(frozen=True)
class MultiFitParams:
    """
    Parameter payload for a multiscale independence fit.

    Arrays are aligned with ``nodes``. ``adjusted`` maps each requested
    adjustment method to its per-node adjusted p-values, or is None when
    only global p-values were computed.
    """
    nodes: tuple[PartitionNode, ...]
    p_values: NDArray[np.floating[Any]]
    p_corrected: NDArray[np.floating[Any]] | None
    adjusted: dict[str, NDArray[np.floating[Any]]] | None
    global_p_values: dict[str, float]
    statistics: GlobalStatistics
    pair_summaries: tuple[PairSummary, ...]
    null_calibrations: dict[str, NullCalibration]
