"""
Multiscale independence testing module.

Tests independence between two random vectors by recursively bisecting
every (x margin, y margin) pair into dyadic cells, testing a 2x2 table at
each cell and combining the local p-values into global p-values.

Public API:
    multifit(x, y)                   - full multiscale test
    table_pvalue(table)              - single 2x2 table test
    holm(p), modified_holm(p, att)   - multiple testing adjustments
    iter_permutation_statistics(...) - lazy permutation null replicates
"""

from pymultifit.independence.solvers import multifit
from pymultifit.independence._table_test import table_pvalue, attainable_pvalues
from pymultifit.independence._p_adjust import holm, modified_holm
from pymultifit.independence._null import iter_permutation_statistics
from pymultifit.independence.design import MultiFitConfig, MultiFitDesign
from pymultifit.independence._common import (
    TestMethod,
    PartitionNode,
    PairSummary,
    GlobalStatistics,
    NullCalibration,
    MultiFitParams,
)
from pymultifit.independence.solution import MultiFitSolution

__all__ = [
    "multifit",
    "table_pvalue",
    "attainable_pvalues",
    "holm",
    "modified_holm",
    "iter_permutation_statistics",
    "MultiFitConfig",
    "MultiFitDesign",
    "TestMethod",
    "PartitionNode",
    "PairSummary",
    "GlobalStatistics",
    "NullCalibration",
    "MultiFitParams",
    "MultiFitSolution",
]
