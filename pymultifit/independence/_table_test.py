"""
2x2 table tests used at every partition node.

Supports:
- Fisher's exact test (two-sided), mid-p correction
- Pearson's chi-squared test, Yates' continuity correction
- Likelihood-ratio (G) test, Williams' correction
- Normal approximation to the hypergeometric (no correction)

All tests condition on the table margins. The hypergeometric pmf is
evaluated through log-gamma (scipy.stats.hypergeom.logpmf) and normalized
in the log domain, so large counts cannot overflow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable
import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import stats as sp_stats
from scipy.special import xlogy

from pymultifit.core.exceptions import (
    ConfigurationError,
    NumericalInstabilityError,
    ValidationError,
)
from pymultifit.independence._common import TestMethod, parse_test_method

# Tables whose probability is within this relative tolerance of the observed
# one are treated as equally extreme (matches R's fisher.test).
_REL_TOL = 1.0 + 1e-7


def _support(row1: int, col1: int, n: int) -> NDArray[np.int64]:
    """Attainable values of the (xlo, ylo) cell given the margins."""
    lo = max(0, col1 - (n - row1))
    hi = min(row1, col1)
    return np.arange(lo, hi + 1, dtype=np.int64)


def _hypergeom_pmf(ks: NDArray[np.int64], row1: int, col1: int, n: int) -> NDArray:
    """Null pmf of the (xlo, ylo) cell, normalized in the log domain."""
    if len(ks) == 1:
        # an empty margin leaves a single table
        return np.ones(1, dtype=np.float64)
    log_pmf = sp_stats.hypergeom.logpmf(ks, n, row1, col1)
    log_pmf = log_pmf - np.max(log_pmf)
    pmf = np.exp(log_pmf)
    return pmf / np.sum(pmf)


@lru_cache(maxsize=8192)
def fisher_support(
    row1: int, col1: int, n: int,
) -> tuple[NDArray[np.int64], NDArray, NDArray, NDArray]:
    """
    Fisher p-values of every table with the given margins.

    Parameters
    ----------
    row1 : int
        Total of the lower-x row (a + b).
    col1 : int
        Total of the lower-y column (a + c).
    n : int
        Table total.

    Returns
    -------
    ks : ndarray
        Support of cell a.
    pmf : ndarray
        Hypergeometric null probability of each table.
    p : ndarray
        Two-sided exact p-value of each table.
    mid_p : ndarray
        Mid-p value of each table: mass of strictly more extreme tables plus
        half the mass of tables as extreme as it.
    """
    ks = _support(row1, col1, n)
    pmf = _hypergeom_pmf(ks, row1, col1, n)
    if len(ks) == 1:
        p = np.ones(1, dtype=np.float64)
        mid_p = p.copy()
        for arr in (ks, pmf, p, mid_p):
            arr.setflags(write=False)
        return ks, pmf, p, mid_p

    order = np.argsort(pmf, kind='stable')
    sorted_pmf = pmf[order]
    cum = np.cumsum(sorted_pmf)

    at_most = np.searchsorted(sorted_pmf, pmf * _REL_TOL, side='right')
    p = np.minimum(cum[at_most - 1], 1.0)

    below = np.searchsorted(sorted_pmf, pmf / _REL_TOL, side='left')
    strictly_less = np.where(below > 0, cum[np.maximum(below - 1, 0)], 0.0)
    mid_p = strictly_less + 0.5 * (p - strictly_less)

    for arr in (ks, pmf, p, mid_p):
        arr.setflags(write=False)
    return ks, pmf, p, mid_p


def attainable_pvalues(row1: int, col1: int, n: int) -> NDArray:
    """Sorted distinct two-sided Fisher p-values attainable with these margins."""
    _, _, p, _ = fisher_support(row1, col1, n)
    return np.unique(p)


def _fisher(a, b, c, d):
    row1, col1, n = a + b, a + c, a + b + c + d
    ks, _, p, mid_p = fisher_support(int(row1), int(col1), int(n))
    i = int(a - ks[0])
    return float(p[i]), float(mid_p[i])


def _chisq(a, b, c, d):
    n = a + b + c + d
    denom = (a + b) * (c + d) * (a + c) * (b + d)
    # float products: |ad - bc|**2 overflows int64 for large cells
    diff = np.abs(np.multiply(a, d, dtype=np.float64) - np.multiply(b, c, dtype=np.float64))
    stat = n * diff ** 2 / denom
    stat_yates = n * np.maximum(diff - n / 2.0, 0.0) ** 2 / denom
    return sp_stats.chi2.sf(stat, 1), sp_stats.chi2.sf(stat_yates, 1)


def _lr(a, b, c, d):
    n = a + b + c + d
    r1, r2, c1, c2 = a + b, c + d, a + c, b + d
    g = 2.0 * (
        xlogy(a, a) + xlogy(b, b) + xlogy(c, c) + xlogy(d, d)
        - xlogy(r1, r1) - xlogy(r2, r2) - xlogy(c1, c1) - xlogy(c2, c2)
        + xlogy(n, n)
    )
    g = np.maximum(g, 0.0)
    q = 1.0 + (n * (1.0 / r1 + 1.0 / r2) - 1.0) * (n * (1.0 / c1 + 1.0 / c2) - 1.0) / (6.0 * n)
    return sp_stats.chi2.sf(g, 1), sp_stats.chi2.sf(g / q, 1)


def _norm(a, b, c, d):
    n = a + b + c + d
    r1, r2, c1, c2 = a + b, c + d, a + c, b + d
    mean = r1 * c1 / n
    var = r1 * r2 * c1 * c2 / (n ** 2 * (n - 1.0))
    z = (a - mean) / np.sqrt(var)
    return np.minimum(2.0 * sp_stats.norm.sf(np.abs(z)), 1.0), None


_DISPATCH: dict[TestMethod, Callable] = {
    TestMethod.FISHER: _fisher,
    TestMethod.CHI_SQUARE: _chisq,
    TestMethod.LIKELIHOOD_RATIO: _lr,
    TestMethod.NORMAL: _norm,
}


@dataclass(frozen=True)
class TableTester:
    """
    A test method and correction, resolved once per fit.

    Calling the tester with the four cell counts returns
    ``(p_value, p_corrected)``; ``p_corrected`` is None when ``correct`` is
    False. Tables with an empty row or column return p = 1 without running
    the test.
    """
    method: TestMethod
    correct: bool
    _fn: Callable = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.correct and not self.method.has_correction:
            raise ConfigurationError(
                f"test method {self.method.value!r} has no correction; "
                f"use correct=False",
                option="correct",
                value=self.correct,
            )
        object.__setattr__(self, '_fn', _DISPATCH[self.method])

    def __call__(self, a: int, b: int, c: int, d: int) -> tuple[float, float | None]:
        if min(a + b, c + d, a + c, b + d) == 0:
            return 1.0, (1.0 if self.correct else None)

        p, p_corr = self._fn(a, b, c, d)
        p = float(p)
        if not np.isfinite(p):
            raise NumericalInstabilityError(
                f"{self.method.value} test produced a non-finite p-value "
                f"for table {(a, b, c, d)}",
                table=(a, b, c, d),
                method=self.method.value,
            )
        p = min(max(p, 0.0), 1.0)
        if not self.correct:
            return p, None
        p_corr = float(p_corr)
        if not np.isfinite(p_corr):
            raise NumericalInstabilityError(
                f"{self.method.value} correction produced a non-finite p-value "
                f"for table {(a, b, c, d)}",
                table=(a, b, c, d),
                method=self.method.value,
            )
        return p, min(max(p_corr, 0.0), 1.0)


def support_pvalues(
    method: TestMethod,
    row1: int,
    col1: int,
    n: int,
) -> tuple[NDArray, NDArray, NDArray | None]:
    """
    Null pmf and p-values of every table sharing the given margins.

    Returns
    -------
    pmf : ndarray
        Hypergeometric probability of each table in the support.
    p : ndarray
        Raw p-value of each table.
    p_corrected : ndarray or None
        Corrected p-value of each table; None for the normal approximation.
    """
    if method is TestMethod.FISHER:
        _, pmf, p, mid_p = fisher_support(row1, col1, n)
        return pmf, p, mid_p

    ks = _support(row1, col1, n)
    pmf = _hypergeom_pmf(ks, row1, col1, n)
    if min(row1, n - row1, col1, n - col1) == 0:
        ones = np.ones_like(pmf)
        return pmf, ones, (None if method is TestMethod.NORMAL else ones.copy())

    a = ks.astype(np.float64)
    b = row1 - a
    c = col1 - a
    d = n - row1 - col1 + a
    p, p_corr = _DISPATCH[method](a, b, c, d)
    p = np.clip(np.asarray(p, dtype=np.float64), 0.0, 1.0)
    if p_corr is not None:
        p_corr = np.clip(np.asarray(p_corr, dtype=np.float64), 0.0, 1.0)
    return pmf, p, p_corr


def table_pvalue(
    table: ArrayLike,
    method: str | TestMethod = "fisher",
    correct: bool = True,
) -> tuple[float, float | None]:
    """
    Test independence in a single 2x2 table.

    Parameters
    ----------
    table : array-like
        2x2 table [[a, b], [c, d]] of non-negative integer counts.
    method : str
        "fisher" (default), "chisq", "lr" or "norm" (aliases accepted).
    correct : bool
        Also return the corrected p-value (mid-p, Yates or Williams).

    Returns
    -------
    tuple
        (p_value, p_corrected); p_corrected is None when correct=False.
    """
    arr = np.asarray(table, dtype=np.float64)
    if arr.shape != (2, 2):
        raise ValidationError(f"table must be 2x2, got shape {arr.shape}")
    if np.any(arr < 0) or np.any(arr != np.round(arr)):
        raise ValidationError(
            f"table must hold non-negative integer counts, got {arr.tolist()}"
        )
    a, b, c, d = (int(v) for v in arr.ravel())
    tester = TableTester(parse_test_method(method), bool(correct))
    return tester(a, b, c, d)
