"""
Margin transformation onto the unit interval.

Each column is mapped to [0, 1] either by normalized average ranks or by
min-max scaling, then discretized into integer dyadic cell codes used by
the tree builder.
"""

from __future__ import annotations

from typing import Any
import numpy as np
from numpy.typing import NDArray
from scipy.stats import rankdata

# Deepest bisection level per axis; 2**30 cells exceed any sample size and
# stay well inside double precision.
MAX_DEPTH = 30


def normalize_margins(
    data: NDArray[np.floating[Any]],
    rank_transform: bool = True,
) -> tuple[NDArray[np.floating[Any]], NDArray[np.bool_]]:
    """
    Map every column of an (n, d) matrix onto [0, 1].

    Parameters
    ----------
    data : ndarray
        Sample matrix, shape (n, d).
    rank_transform : bool
        If True, columns are replaced by (average rank - 0.5) / n, which lies
        strictly inside (0, 1). Otherwise columns are min-max scaled.

    Returns
    -------
    normalized : ndarray
        Shape (n, d), monotone in the input per column.
    degenerate : ndarray of bool
        Shape (d,). True for constant columns; those are filled with 0.5 and
        must not be tested.
    """
    n, d = data.shape
    normalized = np.empty((n, d), dtype=np.float64)
    degenerate = np.zeros(d, dtype=bool)

    for j in range(d):
        col = data[:, j]
        lo = np.min(col)
        hi = np.max(col)
        if hi == lo:
            degenerate[j] = True
            normalized[:, j] = 0.5
            continue
        if rank_transform:
            normalized[:, j] = (rankdata(col, method='average') - 0.5) / n
        else:
            normalized[:, j] = (col - lo) / (hi - lo)

    return normalized, degenerate


def dyadic_codes(
    normalized: NDArray[np.floating[Any]],
    depth: int = MAX_DEPTH,
) -> NDArray[np.int64]:
    """
    Integer cell index of every value at the given bisection depth.

    The cell containing a value at level ``l <= depth`` is
    ``code >> (depth - l)``. Intervals are half open, except the top one,
    which also holds 1.0.
    """
    scale = float(2 ** depth)
    codes = np.floor(normalized * scale).astype(np.int64)
    return np.clip(codes, 0, 2 ** depth - 1)
