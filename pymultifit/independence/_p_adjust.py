"""
Multiple testing adjustment over all tested nodes.

Implements Holm's step-down procedure (on raw or corrected p-values), the
Modified-Holm procedure for discrete Fisher p-values, and the global
-log(p) statistics of a fit.

Holm and Modified-Holm share one ranking primitive; Modified-Holm only
replaces the step multiplier for p-values at or below the cutoff.
"""

from __future__ import annotations

from typing import Any, Sequence
import numpy as np
from numpy.typing import NDArray, ArrayLike

from pymultifit.core.exceptions import ValidationError
from pymultifit.independence._common import GlobalStatistics, VALID_ADJUST_METHODS

_P_FLOOR = np.finfo(np.float64).tiny


def _rank(pv: NDArray) -> tuple[NDArray[np.intp], NDArray]:
    """Stable ascending order and sorted p-values."""
    order = np.argsort(pv, kind='stable')
    return order, pv[order]


def _step_down(order: NDArray[np.intp], adjusted_sorted: NDArray) -> NDArray:
    """Enforce monotonicity, cap at 1 and unsort."""
    adjusted_sorted = np.minimum(np.maximum.accumulate(adjusted_sorted), 1.0)
    result = np.empty(len(order), dtype=np.float64)
    result[order] = adjusted_sorted
    return result


def holm(p: ArrayLike) -> NDArray[np.floating[Any]]:
    """
    Holm's step-down adjustment (controls FWER, no assumptions).

    Parameters
    ----------
    p : array-like
        Raw p-values.

    Returns
    -------
    ndarray
        Adjusted p-values in the input order, capped at 1.
    """
    pv = np.asarray(p, dtype=np.float64).ravel()
    m = len(pv)
    if m == 0:
        return np.array([], dtype=np.float64)
    order, sorted_p = _rank(pv)
    # Multiply by (m - rank + 1) where rank is 1-based
    return _step_down(order, sorted_p * np.arange(m, 0, -1, dtype=np.float64))


def holm_global(p: ArrayLike) -> float:
    """Smallest Holm-adjusted p-value, min(1, m * min p); 1 for no tests."""
    pv = np.asarray(p, dtype=np.float64).ravel()
    if len(pv) == 0:
        return 1.0
    return float(min(1.0, len(pv) * np.min(pv)))


def _largest_attainable(attainable: NDArray, thresholds: NDArray) -> NDArray:
    """F(t): the largest attainable p-value <= t, 0 if there is none."""
    pos = np.searchsorted(attainable, thresholds, side='right') - 1
    return np.where(pos >= 0, attainable[np.maximum(pos, 0)], 0.0)


def modified_holm(
    p: ArrayLike,
    attainable: Sequence[NDArray],
    cutoff: float = 0.05,
) -> NDArray[np.floating[Any]]:
    """
    Modified-Holm adjustment for discrete p-values.

    At step i of the step-down, Holm's multiplier ``(m - i + 1) * p_(i)`` is
    replaced by ``sum_k F_k(p_(i))`` over the hypotheses still in the set,
    where ``F_k(t)`` is the largest p-value test k can attain that is <= t.
    Tests that cannot reach small p-values thus cost nothing.

    Only steps with ``p_(i) <= cutoff`` are computed this way; later steps
    keep Holm's multiplier, which bounds the modified one from above. With
    cutoff = 1 every step is exact.

    Parameters
    ----------
    p : array-like
        Observed p-values, length m.
    attainable : sequence of ndarray
        Sorted attainable p-values of each test (each contains its observed
        p-value).
    cutoff : float
        Largest p-value adjusted by the modified rule.

    Returns
    -------
    ndarray
        Adjusted p-values in the input order, capped at 1.
    """
    pv = np.asarray(p, dtype=np.float64).ravel()
    m = len(pv)
    if len(attainable) != m:
        raise ValidationError(
            f"attainable must have one entry per p-value, got {len(attainable)} for {m}"
        )
    if m == 0:
        return np.array([], dtype=np.float64)

    order, sorted_p = _rank(pv)
    rank_of = np.empty(m, dtype=np.intp)
    rank_of[order] = np.arange(m)

    adjusted_sorted = sorted_p * np.arange(m, 0, -1, dtype=np.float64)
    n_cut = int(np.searchsorted(sorted_p, cutoff, side='right'))
    if n_cut > 0:
        thresholds = sorted_p[:n_cut]
        sums = np.zeros(n_cut, dtype=np.float64)
        for k in range(m):
            att = attainable[k]
            if len(att) == 0 or att[0] > thresholds[-1]:
                continue
            # test k is still in the set at steps 0..rank_of[k]
            upto = min(int(rank_of[k]), n_cut - 1) + 1
            sums[:upto] += _largest_attainable(att, thresholds[:upto])
        adjusted_sorted[:n_cut] = sums

    return _step_down(order, adjusted_sorted)


def modified_holm_global(
    p: ArrayLike,
    attainable: Sequence[NDArray],
    cutoff: float = 0.05,
) -> float:
    """Smallest Modified-Holm p-value without adjusting every node."""
    pv = np.asarray(p, dtype=np.float64).ravel()
    if len(pv) == 0:
        return 1.0
    p_min = float(np.min(pv))
    if p_min > cutoff:
        return float(min(1.0, len(pv) * p_min))
    threshold = np.array([p_min])
    total = sum(
        float(_largest_attainable(att, threshold)[0])
        for att in attainable if len(att) > 0
    )
    return float(min(1.0, total))


def adjust_pvalues(
    p: NDArray[np.floating[Any]],
    p_corrected: NDArray[np.floating[Any]] | None,
    methods: Sequence[str],
    *,
    attainable: Sequence[NDArray] | None = None,
    cutoff: float = 0.05,
    compute_all: bool = True,
) -> tuple[dict[str, NDArray[np.floating[Any]]] | None, dict[str, float]]:
    """
    Apply every requested adjustment method.

    Parameters
    ----------
    p : ndarray
        Raw p-values of all tested nodes.
    p_corrected : ndarray or None
        Corrected p-values (required for "Hcorrected").
    methods : sequence of str
        Subset of ("H", "Hcorrected", "MH").
    attainable : sequence of ndarray or None
        Attainable Fisher p-values per node (required for "MH").
    cutoff : float
        Modified-Holm cutoff.
    compute_all : bool
        If False only global p-values are computed and the per-node result
        is None.

    Returns
    -------
    adjusted : dict or None
        Per-node adjusted p-values by method.
    global_p : dict
        Global p-value by method (smallest adjusted p-value).
    """
    adjusted: dict[str, NDArray[np.floating[Any]]] | None = {} if compute_all else None
    global_p: dict[str, float] = {}

    for method in methods:
        if method not in VALID_ADJUST_METHODS:
            raise ValidationError(
                f"method must be one of {VALID_ADJUST_METHODS}, got {method!r}"
            )
        if method == "MH":
            if attainable is None:
                raise ValidationError("'MH' needs the attainable p-values of every node")
            if compute_all:
                values = modified_holm(p, attainable, cutoff)
                adjusted[method] = values
                global_p[method] = float(np.min(values)) if len(values) else 1.0
            else:
                global_p[method] = modified_holm_global(p, attainable, cutoff)
            continue

        if method == "Hcorrected":
            if p_corrected is None:
                raise ValidationError("'Hcorrected' needs corrected p-values")
            source = p_corrected
        else:
            source = p
        if compute_all:
            values = holm(source)
            adjusted[method] = values
            global_p[method] = float(np.min(values)) if len(values) else 1.0
        else:
            global_p[method] = holm_global(source)

    return adjusted, global_p


def neg_log(p: ArrayLike) -> NDArray[np.floating[Any]]:
    """-log(p), with p floored at the smallest positive double."""
    return -np.log(np.clip(np.asarray(p, dtype=np.float64), _P_FLOOR, 1.0))


def mean_and_top(scores: NDArray, top_k: int) -> tuple[NDArray, NDArray]:
    """
    Mean of scores and mean of the top_k largest along the last axis.

    Both are 0 when there are no scores; fewer than top_k scores are all
    averaged.
    """
    m = scores.shape[-1]
    if m == 0:
        zeros = np.zeros(scores.shape[:-1], dtype=np.float64)
        return zeros, zeros.copy()
    k = min(top_k, m)
    top = np.partition(scores, m - k, axis=-1)[..., m - k:]
    return scores.mean(axis=-1), top.mean(axis=-1)


def global_statistics(
    p: NDArray[np.floating[Any]],
    p_corrected: NDArray[np.floating[Any]] | None,
    top_k: int,
) -> GlobalStatistics:
    """
    Mean and top-k mean of -log(p) over all tested nodes.

    The corrected statistics are NaN when no corrected p-values exist.
    """
    mean, top_mean = mean_and_top(neg_log(p), top_k)
    if p_corrected is None:
        mean_c = top_c = float('nan')
    else:
        mean_c, top_c = mean_and_top(neg_log(p_corrected), top_k)
    return GlobalStatistics(
        mean=float(mean),
        top_mean=float(top_mean),
        mean_corrected=float(mean_c),
        top_mean_corrected=float(top_c),
    )
