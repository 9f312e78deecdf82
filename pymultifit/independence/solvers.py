"""
Solver dispatch for multiscale independence tests.

Provides multifit(), the entry point of the package.
"""

from __future__ import annotations

import inspect
import warnings
from typing import Any, Iterable, Mapping
from numpy.typing import ArrayLike

from pymultifit.core.exceptions import ValidationError
from pymultifit.independence.design import MultiFitDesign
from pymultifit.independence.solution import MultiFitSolution
from pymultifit.independence.backends.cpu import CPUMultiFitBackend


def _get_backend(backend: str = 'cpu'):
    """Select backend for multiscale fits (CPU only)."""
    if backend in ('cpu', 'auto'):
        return CPUMultiFitBackend()
    raise ValidationError(
        f"Unknown backend: {backend!r}. Use 'cpu'."
    )


def multifit(
    x: ArrayLike | Mapping[str, ArrayLike] | tuple | MultiFitDesign,
    y: ArrayLike | None = None,
    *,
    p_star: float | None = None,
    r_max: int | float | None = None,
    r_star: int | None = None,
    rank_transform: bool = True,
    test_method: str = "fisher",
    correct: bool | None = None,
    min_tbl_tot: int = 25,
    min_row_tot: int = 10,
    min_col_tot: int = 10,
    p_adjust_methods: str | Iterable[str] | None = None,
    compute_all_holm: bool = True,
    cutoff: float = 0.05,
    top_max_ps: int = 4,
    uv_approx_null: bool = False,
    uv_exact_null: bool = False,
    uv_null_sim: int = 10000,
    perm_null_sim: int = 0,
    gate_on_corrected: bool = False,
    seed: int | None = None,
    n_jobs: int = 1,
    backend: str = 'cpu',
) -> MultiFitSolution:
    """
    Multiscale test of independence between two random vectors.

    Every (x column, y column) pair is bisected recursively into dyadic
    cells; a 2x2 table is tested at each cell, and the local p-values are
    combined into global p-values by Holm-type adjustments.

    Parameters
    ----------
    x : array-like, (x, y) pair, mapping or MultiFitDesign
        x sample, shape (n,) or (n, dx). May also hold the whole sample as
        a pair or a mapping with keys 'x' and 'y'. A MultiFitDesign
        is used as built; y and the fit options must then be left unset.
    y : array-like or None
        y sample, shape (n,) or (n, dy).
    p_star : float or None
        Beyond resolution r_star, a node is expanded only if its p-value is
        <= p_star. Default 1 / (dx * dy * log2(n)).
    r_max : int, math.inf or None
        Highest resolution tested. Default floor(log2(n / 10)).
    r_star : int or None
        Nodes below this resolution are always expanded. Default 1
        (0 if r_max is 0).
    rank_transform : bool
        Normalize margins by ranks (True) or min-max scaling (False).
    test_method : str
        "fisher" (default), "chisq", "lr" or "norm".
    correct : bool or None
        Compute corrected p-values: mid-p (Fisher), Yates (chi-squared),
        Williams (LR). Default True when the method has a correction.
    min_tbl_tot, min_row_tot, min_col_tot : int
        Minimum table, row and column totals for a cell to be tested.
        Defaults 25, 10, 10.
    p_adjust_methods : str or iterable of str or None
        Subset of "H" (Holm), "Hcorrected" (Holm on corrected p-values)
        and "MH" (Modified-Holm, Fisher only). Default: all applicable.
    compute_all_holm : bool
        If False only global p-values are computed.
    cutoff : float
        Modified-Holm adjusts p-values at or below cutoff exactly.
    top_max_ps : int
        Number of smallest p-values averaged in the top-k statistics.
    uv_approx_null, uv_exact_null : bool
        Univariate (dx = dy = 1) null calibrations of the global statistics.
    uv_null_sim : int
        Replicates for the univariate nulls. Default 10000.
    perm_null_sim : int
        Permutation null replicates. Default 0 (off).
    gate_on_corrected : bool
        Use corrected p-values for the p_star gate.
    seed : int or None
        Seed of all simulated nulls.
    n_jobs : int
        Worker threads for margin pairs and permutation replicates.
    backend : str
        'cpu' (default).

    Returns
    -------
    MultiFitSolution
        Tested nodes, adjusted and global p-values, statistics and null
        calibrations.
    """
    options = dict(
        p_star=p_star,
        r_max=r_max,
        r_star=r_star,
        rank_transform=rank_transform,
        test_method=test_method,
        correct=correct,
        min_tbl_tot=min_tbl_tot,
        min_row_tot=min_row_tot,
        min_col_tot=min_col_tot,
        p_adjust_methods=p_adjust_methods,
        compute_all_holm=compute_all_holm,
        cutoff=cutoff,
        top_max_ps=top_max_ps,
        uv_approx_null=uv_approx_null,
        uv_exact_null=uv_exact_null,
        uv_null_sim=uv_null_sim,
        perm_null_sim=perm_null_sim,
        gate_on_corrected=gate_on_corrected,
        seed=seed,
        n_jobs=n_jobs,
    )
    if isinstance(x, MultiFitDesign):
        overridden = sorted(
            name for name, value in options.items()
            if value != _OPTION_DEFAULTS[name]
        )
        if y is not None or overridden:
            raise ValidationError(
                f"a MultiFitDesign carries its own sample and configuration; "
                f"pass options to MultiFitDesign.for_multifit() instead "
                f"(got y: {y is not None}, options: {overridden})"
            )
        design = x
    else:
        design = MultiFitDesign.for_multifit(x, y, **options)

    if design.degenerate_x or design.degenerate_y:
        warnings.warn(
            f"Constant margins excluded from testing: "
            f"x columns {list(design.degenerate_x)}, "
            f"y columns {list(design.degenerate_y)}",
            UserWarning,
            stacklevel=2,
        )

    be = _get_backend(backend)
    result = be.solve(design)
    return MultiFitSolution(_result=result, _design=design)


_OPTION_DEFAULTS = {
    name: param.default
    for name, param in inspect.signature(multifit).parameters.items()
    if param.kind is inspect.Parameter.KEYWORD_ONLY and name != 'backend'
}
