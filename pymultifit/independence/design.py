"""
MultiFitConfig and MultiFitDesign: validated, immutable fit inputs.

MultiFitConfig gathers every option of a fit into one frozen record,
resolving data-dependent defaults. MultiFitDesign holds the normalized
sample, its dyadic codes and the margin pairs left to test. Both are
built through factory classmethods that fail fast before any tree is built.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping
import numpy as np
from numpy.typing import NDArray, ArrayLike

from pymultifit.core.exceptions import (
    ConfigurationError,
    DegenerateMarginError,
    ValidationError,
)
from pymultifit.core.validation import (
    as_columns,
    check_array,
    check_consistent_length,
    check_finite,
    check_min_samples,
)
from pymultifit.independence._common import (
    TestMethod,
    VALID_ADJUST_METHODS,
    parse_test_method,
)
from pymultifit.independence._margins import dyadic_codes, normalize_margins


def _validate_int(value: Any, name: str, minimum: int) -> int:
    """Validate an integer option is >= minimum."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ConfigurationError(
            f"{name} must be an integer, got {value!r}", option=name, value=value,
        )
    if value < minimum:
        raise ConfigurationError(
            f"{name} must be >= {minimum}, got {value}", option=name, value=value,
        )
    return int(value)


def _validate_probability(
    value: Any, name: str, *, open_lower: bool,
) -> float:
    """Validate an option lies in (0, 1] (open_lower) or [0, 1]."""
    try:
        value = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"{name} must be a number, got {value!r}", option=name, value=value,
        ) from e
    low_ok = value > 0.0 if open_lower else value >= 0.0
    if not (low_ok and value <= 1.0):
        interval = "(0, 1]" if open_lower else "[0, 1]"
        raise ConfigurationError(
            f"{name} must be in {interval}, got {value}", option=name, value=value,
        )
    return value


def _validate_adjust_methods(
    methods: str | Iterable[str] | None,
    test_method: TestMethod,
    correct: bool,
) -> tuple[str, ...]:
    """Resolve the adjustment methods; None selects every applicable one."""
    if methods is None:
        resolved = ["H"]
        if correct:
            resolved.append("Hcorrected")
        if test_method is TestMethod.FISHER:
            resolved.append("MH")
        return tuple(resolved)

    if isinstance(methods, str):
        methods = (methods,)

    resolved = []
    for method in methods:
        if method not in VALID_ADJUST_METHODS:
            raise ConfigurationError(
                f"p_adjust_methods entries must be in {VALID_ADJUST_METHODS}, "
                f"got {method!r}",
                option="p_adjust_methods",
                value=method,
            )
        if method == "MH" and test_method is not TestMethod.FISHER:
            raise ConfigurationError(
                f"Modified-Holm ('MH') requires Fisher p-values, "
                f"got test_method={test_method.value!r}",
                option="p_adjust_methods",
                value=method,
            )
        if method == "Hcorrected" and not correct:
            raise ConfigurationError(
                "'Hcorrected' requires corrected p-values (correct=True)",
                option="p_adjust_methods",
                value=method,
            )
        if method not in resolved:
            resolved.append(method)
    return tuple(resolved)


@dataclass(frozen=True)
class MultiFitConfig:
    """
    Resolved options of a multiscale independence fit.

    Do not construct directly; use MultiFitConfig.create().

    Attributes
    ----------
    p_star : float
        Expansion threshold beyond resolution r_star, in (0, 1].
    r_max : int or float
        Highest resolution tested (math.inf for no limit).
    r_star : int
        Resolutions below r_star are expanded unconditionally.
    rank_transform : bool
        Rank (True) or min-max (False) margin normalization.
    test_method : TestMethod
        Test applied to every 2x2 table.
    correct : bool
        Whether corrected p-values are computed.
    min_tbl_tot, min_row_tot, min_col_tot : int
        Minimum table, row and column totals for a cell to be tested.
    p_adjust_methods : tuple of str
        Subset of ("H", "Hcorrected", "MH").
    compute_all_holm : bool
        Compute per-node adjusted p-values, not only the global ones.
    cutoff : float
        Modified-Holm examines only p-values at or below this value.
    top_max_ps : int
        Number of smallest p-values in the top-k statistics.
    uv_approx_null, uv_exact_null : bool
        Univariate null calibrations (uniform / hypergeometric draws).
    uv_null_sim : int
        Replicates of each univariate null.
    perm_null_sim : int
        Permutation null replicates (0 disables it).
    gate_on_corrected : bool
        Gate expansion on corrected rather than raw p-values.
    seed : int or None
        Root seed of every simulated null.
    n_jobs : int
        Worker threads for tree building and permutation replicates.
    """
    p_star: float
    r_max: int | float
    r_star: int
    rank_transform: bool
    test_method: TestMethod
    correct: bool
    min_tbl_tot: int
    min_row_tot: int
    min_col_tot: int
    p_adjust_methods: tuple[str, ...]
    compute_all_holm: bool
    cutoff: float
    top_max_ps: int
    uv_approx_null: bool
    uv_exact_null: bool
    uv_null_sim: int
    perm_null_sim: int
    gate_on_corrected: bool
    seed: int | None
    n_jobs: int

    @classmethod
    def create(
        cls,
        n: int,
        dx: int,
        dy: int,
        *,
        p_star: float | None = None,
        r_max: int | float | None = None,
        r_star: int | None = None,
        rank_transform: bool = True,
        test_method: str | TestMethod = "fisher",
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
    ) -> MultiFitConfig:
        """
        Resolve defaults and validate every option.

        Parameters
        ----------
        n : int
            Number of observations.
        dx, dy : int
            Number of x and y columns.
        p_star : float or None
            Default 1 / (dx * dy * log2(n)), capped at 1.
        r_max : int, math.inf or None
            Default max(0, floor(log2(n / 10))).
        r_star : int or None
            Default min(1, r_max).
        correct : bool or None
            Default True when the test method has a correction.
        p_adjust_methods : str, iterable of str, or None
            Default: every method applicable to the test method and
            correction.

        Remaining options are documented on the class.

        Raises
        ------
        ConfigurationError
            If any option or combination of options is invalid.
        """
        method = parse_test_method(test_method)

        if correct is None:
            correct = method.has_correction
        elif correct and not method.has_correction:
            raise ConfigurationError(
                f"test method {method.value!r} has no correction; use correct=False",
                option="correct",
                value=correct,
            )
        correct = bool(correct)

        if r_max is None:
            r_max = max(0, math.floor(math.log2(n / 10.0))) if n > 0 else 0
        elif not (isinstance(r_max, float) and math.isinf(r_max) and r_max > 0):
            r_max = _validate_int(r_max, "r_max", 0)

        if r_star is None:
            r_star = min(1, r_max)
        else:
            r_star = _validate_int(r_star, "r_star", 0)
        if r_star > r_max:
            raise ConfigurationError(
                f"r_star ({r_star}) must be <= r_max ({r_max})",
                option="r_star",
                value=r_star,
            )

        if p_star is None:
            denom = dx * dy * math.log2(n) if n > 1 else 0.0
            p_star = 1.0 if denom <= 1.0 else 1.0 / denom
        p_star = _validate_probability(p_star, "p_star", open_lower=True)
        cutoff = _validate_probability(cutoff, "cutoff", open_lower=False)

        min_tbl_tot = _validate_int(min_tbl_tot, "min_tbl_tot", 0)
        min_row_tot = _validate_int(min_row_tot, "min_row_tot", 0)
        min_col_tot = _validate_int(min_col_tot, "min_col_tot", 0)
        top_max_ps = _validate_int(top_max_ps, "top_max_ps", 1)
        uv_null_sim = _validate_int(uv_null_sim, "uv_null_sim", 1)
        perm_null_sim = _validate_int(perm_null_sim, "perm_null_sim", 0)
        n_jobs = _validate_int(n_jobs, "n_jobs", 1)
        if seed is not None:
            seed = _validate_int(seed, "seed", 0)

        methods = _validate_adjust_methods(p_adjust_methods, method, correct)

        if gate_on_corrected and not correct:
            raise ConfigurationError(
                "gate_on_corrected requires corrected p-values (correct=True)",
                option="gate_on_corrected",
                value=gate_on_corrected,
            )

        if uv_approx_null or uv_exact_null:
            if dx != 1 or dy != 1:
                raise ConfigurationError(
                    f"univariate nulls require one x and one y column, "
                    f"got dx={dx}, dy={dy}",
                    option="uv_exact_null" if uv_exact_null else "uv_approx_null",
                    value=True,
                )
            if method not in (TestMethod.FISHER, TestMethod.NORMAL):
                raise ConfigurationError(
                    f"univariate nulls require test_method 'fisher' or 'norm', "
                    f"got {method.value!r}",
                    option="test_method",
                    value=method.value,
                )

        return cls(
            p_star=p_star,
            r_max=r_max,
            r_star=r_star,
            rank_transform=bool(rank_transform),
            test_method=method,
            correct=correct,
            min_tbl_tot=min_tbl_tot,
            min_row_tot=min_row_tot,
            min_col_tot=min_col_tot,
            p_adjust_methods=methods,
            compute_all_holm=bool(compute_all_holm),
            cutoff=cutoff,
            top_max_ps=top_max_ps,
            uv_approx_null=bool(uv_approx_null),
            uv_exact_null=bool(uv_exact_null),
            uv_null_sim=uv_null_sim,
            perm_null_sim=perm_null_sim,
            gate_on_corrected=bool(gate_on_corrected),
            seed=seed,
            n_jobs=n_jobs,
        )


def _split_sample(
    x: ArrayLike | Mapping[str, ArrayLike] | tuple,
    y: ArrayLike | None,
) -> tuple[ArrayLike, ArrayLike]:
    """Accept (x, y), a mapping with 'x' and 'y', or a 2-tuple in x."""
    if y is not None:
        return x, y
    if isinstance(x, Mapping):
        if "x" not in x or "y" not in x:
            raise ValidationError(
                f"a mapping sample needs keys 'x' and 'y', got {sorted(x)}"
            )
        return x["x"], x["y"]
    if isinstance(x, (tuple, list)) and len(x) == 2:
        return x[0], x[1]
    raise ValidationError(
        "y is required unless x is an (x, y) pair or a mapping with 'x' and 'y'"
    )


@dataclass(frozen=True)
class MultiFitDesign:
    """
    Design for a multiscale independence fit.

    Holds the normalized sample, the dyadic codes the tree builder reads and
    the margin pairs left to test after degenerate columns are excluded.
    Immutable after construction; use MultiFitDesign.for_multifit().

    Attributes
    ----------
    x_normalized, y_normalized : ndarray
        Margins mapped to [0, 1], shapes (n, dx) and (n, dy).
    x_codes, y_codes : ndarray
        Integer dyadic codes of the normalized margins.
    degenerate_x, degenerate_y : tuple of int
        Constant columns, excluded from testing.
    pairs : tuple of (int, int)
        Margin pairs to test, x column major.
    config : MultiFitConfig
        Resolved options.
    """
    x_normalized: NDArray[np.floating[Any]]
    y_normalized: NDArray[np.floating[Any]]
    x_codes: NDArray[np.int64]
    y_codes: NDArray[np.int64]
    degenerate_x: tuple[int, ...]
    degenerate_y: tuple[int, ...]
    pairs: tuple[tuple[int, int], ...]
    config: MultiFitConfig

    @property
    def n_observations(self) -> int:
        return int(self.x_codes.shape[0])

    @property
    def dx(self) -> int:
        return int(self.x_codes.shape[1])

    @property
    def dy(self) -> int:
        return int(self.y_codes.shape[1])

    @property
    def all_pairs(self) -> tuple[tuple[int, int], ...]:
        """Every (x column, y column) pair, degenerate ones included."""
        return tuple((i, j) for i in range(self.dx) for j in range(self.dy))

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            'n': self.n_observations,
            'dx': self.dx,
            'dy': self.dy,
            'n_pairs': len(self.pairs),
            'degenerate_x': self.degenerate_x,
            'degenerate_y': self.degenerate_y,
        }

    def with_permuted_y(self, permutation: NDArray[np.intp]) -> MultiFitDesign:
        """Same design with the rows of y reordered (breaks the x/y pairing)."""
        return replace(
            self,
            y_normalized=self.y_normalized[permutation],
            y_codes=self.y_codes[permutation],
        )

    @classmethod
    def for_multifit(
        cls,
        x: ArrayLike | Mapping[str, ArrayLike] | tuple,
        y: ArrayLike | None = None,
        **options: Any,
    ) -> MultiFitDesign:
        """
        Build a design from raw samples.

        Parameters
        ----------
        x : array-like, (x, y) pair or mapping
            x sample, shape (n,) or (n, dx); or the whole sample.
        y : array-like or None
            y sample, shape (n,) or (n, dy).
        **options
            Fit options, see MultiFitConfig.create().

        Raises
        ------
        ValidationError
            On non-numeric, non-finite or mismatched samples.
        ConfigurationError
            On invalid options.
        DegenerateMarginError
            If every x column or every y column is constant.
        """
        x_raw, y_raw = _split_sample(x, y)
        x_arr = as_columns(check_array(x_raw, "x"), "x")
        y_arr = as_columns(check_array(y_raw, "y"), "y")
        check_finite(x_arr, "x")
        check_finite(y_arr, "y")
        check_consistent_length(x_arr, y_arr, names=("x", "y"))
        check_min_samples(x_arr, 2, "x")

        n, dx = x_arr.shape
        dy = y_arr.shape[1]
        config = MultiFitConfig.create(n, dx, dy, **options)

        x_norm, x_degenerate = normalize_margins(x_arr, config.rank_transform)
        y_norm, y_degenerate = normalize_margins(y_arr, config.rank_transform)
        degenerate_x = tuple(int(i) for i in np.flatnonzero(x_degenerate))
        degenerate_y = tuple(int(j) for j in np.flatnonzero(y_degenerate))

        pairs = tuple(
            (i, j)
            for i in range(dx) if not x_degenerate[i]
            for j in range(dy) if not y_degenerate[j]
        )
        if not pairs:
            raise DegenerateMarginError(
                f"no margin pair left to test: constant x columns {list(degenerate_x)}, "
                f"constant y columns {list(degenerate_y)}",
                x_columns=degenerate_x,
                y_columns=degenerate_y,
            )

        return cls(
            x_normalized=x_norm,
            y_normalized=y_norm,
            x_codes=dyadic_codes(x_norm),
            y_codes=dyadic_codes(y_norm),
            degenerate_x=degenerate_x,
            degenerate_y=degenerate_y,
            pairs=pairs,
            config=config,
        )
