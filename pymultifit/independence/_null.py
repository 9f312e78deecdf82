"""
Null distributions of the global statistics.

Three calibrations are available:
- approximate (univariate): tested p-values replaced by i.i.d. Uniform(0, 1)
- exact (univariate): every tested table redrawn from its hypergeometric
  null given its margins, independently across nodes
- permutation (any dimension): rows of y shuffled and the whole tree
  rebuilt

Each yields replicate statistics and empirical p-values
(1 + #{null >= observed}) / (B + 1).
"""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Iterator, Sequence, TYPE_CHECKING
import numpy as np
from numpy.typing import NDArray

from pymultifit.independence._common import (
    GlobalStatistics,
    NullCalibration,
    PartitionNode,
    STATISTIC_NAMES,
    TestMethod,
)
from pymultifit.independence._p_adjust import global_statistics, mean_and_top, neg_log
from pymultifit.independence._table_test import TableTester, support_pvalues
from pymultifit.independence._tree import build_trees, node_pvalues

if TYPE_CHECKING:
    from pymultifit.independence.design import MultiFitDesign

# Cap on the number of uniforms drawn at once by the approximate null
_CHUNK_ELEMENTS = 1_000_000


def empirical_pvalues(
    observed: GlobalStatistics,
    null_stats: NDArray[np.floating[Any]],
) -> dict[str, float]:
    """Empirical p-value of each observed statistic (large is extreme)."""
    n_sim = null_stats.shape[0]
    result = {}
    for name, obs, column in zip(STATISTIC_NAMES, observed.as_array(), null_stats.T):
        if np.isnan(obs):
            result[name] = float('nan')
            continue
        count = int(np.sum(column >= obs - 1e-12))
        result[name] = (count + 1) / (n_sim + 1)
    return result


def approximate_null(
    m: int,
    top_k: int,
    n_sim: int,
    rng: np.random.Generator,
    corrected: bool = True,
) -> NDArray[np.floating[Any]]:
    """
    Statistics of m i.i.d. Uniform(0, 1) p-values, shape (n_sim, 4).

    Raw and corrected columns use the same draws; the corrected columns are
    NaN when corrected is False.
    """
    stats = np.zeros((n_sim, 4), dtype=np.float64)
    if m > 0:
        rows = max(1, _CHUNK_ELEMENTS // m)
        for start in range(0, n_sim, rows):
            stop = min(n_sim, start + rows)
            scores = neg_log(rng.random((stop - start, m)))
            mean, top = mean_and_top(scores, top_k)
            stats[start:stop, 0] = mean
            stats[start:stop, 1] = top
    if corrected:
        stats[:, 2:] = stats[:, :2]
    else:
        stats[:, 2:] = np.nan
    return stats


def _push_top(top: NDArray, scores: NDArray, k: int) -> NDArray:
    """Keep the k largest scores per replicate."""
    merged = np.column_stack([top, scores])
    if merged.shape[1] <= k:
        return merged
    return np.partition(merged, 1, axis=1)[:, 1:]


def exact_null(
    nodes: Sequence[PartitionNode],
    method: TestMethod,
    corrected: bool,
    top_k: int,
    n_sim: int,
    rng: np.random.Generator,
) -> NDArray[np.floating[Any]]:
    """
    Statistics under independent hypergeometric redraws of every table.

    The set of tested tables and their margins is held fixed; each replicate
    draws cell a of every table from its null given the margins and scores
    the raw and corrected p-value of the drawn table. Shape (n_sim, 4).
    """
    m = len(nodes)
    stats = np.zeros((n_sim, 4), dtype=np.float64)
    if not corrected:
        stats[:, 2:] = np.nan
    if m == 0:
        return stats

    k = min(top_k, m)
    sums = np.zeros(n_sim, dtype=np.float64)
    sums_c = np.zeros(n_sim, dtype=np.float64)
    top = np.empty((n_sim, 0), dtype=np.float64)
    top_c = np.empty((n_sim, 0), dtype=np.float64)

    for node in nodes:
        a, b, c, _ = node.counts
        pmf, p, p_corr = support_pvalues(method, a + b, a + c, node.total)
        draws = rng.choice(len(pmf), size=n_sim, p=pmf)
        scores = neg_log(p[draws])
        sums += scores
        top = _push_top(top, scores, k)
        if corrected:
            scores_c = neg_log(p_corr[draws])
            sums_c += scores_c
            top_c = _push_top(top_c, scores_c, k)

    stats[:, 0] = sums / m
    stats[:, 1] = top.mean(axis=1)
    if corrected:
        stats[:, 2] = sums_c / m
        stats[:, 3] = top_c.mean(axis=1)
    return stats


def fit_statistics(design: MultiFitDesign) -> GlobalStatistics:
    """Build every tree of a design and return its global statistics."""
    config = design.config
    tester = TableTester(config.test_method, config.correct)
    nodes, _ = build_trees(design, tester)
    p, p_corrected = node_pvalues(nodes, config.correct)
    return global_statistics(p, p_corrected, config.top_max_ps)


def iter_permutation_statistics(
    design: MultiFitDesign,
    n_sim: int,
    seed: int | np.random.SeedSequence | None = None,
    n_jobs: int = 1,
) -> Iterator[GlobalStatistics]:
    """
    Lazily yield global statistics of permuted samples.

    Each replicate shuffles the rows of y with its own generator spawned
    from one SeedSequence, so the sequence is restartable from the seed
    and identical for any n_jobs. With n_jobs > 1 a bounded window of
    replicates runs ahead of the consumer; closing the generator cancels
    the ones not yet started.
    """
    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    n = design.n_observations

    def _replicate(child: np.random.SeedSequence) -> GlobalStatistics:
        rng = np.random.default_rng(child)
        return fit_statistics(design.with_permuted_y(rng.permutation(n)))

    children = root.spawn(n_sim)
    if n_jobs > 1 and n_sim > 1:
        # at most 2 * n_jobs replicates are in flight ahead of the consumer
        with ThreadPoolExecutor(max_workers=n_jobs) as ex:
            pending: deque[Future[GlobalStatistics]] = deque()
            try:
                for child in children:
                    pending.append(ex.submit(_replicate, child))
                    if len(pending) >= 2 * n_jobs:
                        yield pending.popleft().result()
                while pending:
                    yield pending.popleft().result()
            finally:
                for future in pending:
                    future.cancel()
    else:
        for child in children:
            yield _replicate(child)


def calibrate(
    design: MultiFitDesign,
    nodes: Sequence[PartitionNode],
    observed: GlobalStatistics,
) -> dict[str, NullCalibration]:
    """
    Run every null calibration requested by the design's configuration.

    Streams for the approximate, exact and permutation nulls are spawned
    from the configured seed, so enabling one does not change the others.
    """
    config = design.config
    approx_ss, exact_ss, perm_ss = np.random.SeedSequence(config.seed).spawn(3)
    calibrations: dict[str, NullCalibration] = {}

    if config.uv_approx_null:
        stats = approximate_null(
            len(nodes), config.top_max_ps, config.uv_null_sim,
            np.random.default_rng(approx_ss), corrected=config.correct,
        )
        calibrations["approx"] = NullCalibration(
            kind="approx", statistics=stats,
            p_values=empirical_pvalues(observed, stats),
        )

    if config.uv_exact_null:
        stats = exact_null(
            nodes, config.test_method, config.correct, config.top_max_ps,
            config.uv_null_sim, np.random.default_rng(exact_ss),
        )
        calibrations["exact"] = NullCalibration(
            kind="exact", statistics=stats,
            p_values=empirical_pvalues(observed, stats),
        )

    if config.perm_null_sim > 0:
        replicates = iter_permutation_statistics(
            design, config.perm_null_sim, perm_ss, config.n_jobs,
        )
        stats = np.array([s.as_array() for s in replicates], dtype=np.float64)
        calibrations["permutation"] = NullCalibration(
            kind="permutation", statistics=stats,
            p_values=empirical_pvalues(observed, stats),
        )

    return calibrations
