"""
Resolution tree builder.

For every margin pair the unit square is bisected recursively. A node is a
dyadic cell; its 2x2 table splits the cell at the midpoint of both axes.
Expanding a node splits one axis per child, giving up to four children at
the next resolution in a fixed order: x-lower, x-upper, y-lower, y-upper.
A cell reached from two parents (x then y, or y then x) is a single node
with two parents.

Trees are built breadth-first by resolution, so node ids are reproducible.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Sequence, TYPE_CHECKING
import numpy as np
from numpy.typing import NDArray

from pymultifit.independence._common import PairSummary, PartitionNode
from pymultifit.independence._margins import MAX_DEPTH
from pymultifit.independence._table_test import TableTester

if TYPE_CHECKING:
    from pymultifit.independence.design import MultiFitConfig, MultiFitDesign


@dataclass
class _Cell:
    """Mutable node record used while a tree is growing."""
    local_id: int
    x_level: int
    x_index: int
    y_level: int
    y_index: int
    counts: tuple[int, int, int, int]
    idx: NDArray[np.intp] | None
    x_bits: NDArray[np.int64] | None
    y_bits: NDArray[np.int64] | None
    p_value: float = 1.0
    p_corrected: float | None = None
    parents: list[int] = field(default_factory=list)
    children: list[int] = field(default_factory=list)

    @property
    def resolution(self) -> int:
        return self.x_level + self.y_level


def _passes_guards(counts: tuple[int, int, int, int], config: MultiFitConfig) -> bool:
    a, b, c, d = counts
    if a + b + c + d < config.min_tbl_tot:
        return False
    if min(a + b, c + d) < config.min_row_tot:
        return False
    if min(a + c, b + d) < config.min_col_tot:
        return False
    return True


def _make_cell(
    key: tuple[int, int, int, int],
    idx: NDArray[np.intp],
    x_codes: NDArray[np.int64],
    y_codes: NDArray[np.int64],
    config: MultiFitConfig,
) -> _Cell | None:
    """Tabulate a cell; None if it fails the minimum-total guards."""
    x_level, x_index, y_level, y_index = key
    x_bits = (x_codes[idx] >> (MAX_DEPTH - x_level - 1)) & 1
    y_bits = (y_codes[idx] >> (MAX_DEPTH - y_level - 1)) & 1

    n_x_upper = int(np.sum(x_bits))
    n_y_upper = int(np.sum(y_bits))
    d = int(np.sum(x_bits & y_bits))
    c = n_x_upper - d
    b = n_y_upper - d
    a = len(idx) - n_x_upper - b
    counts = (a, b, c, d)

    if not _passes_guards(counts, config):
        return None
    return _Cell(
        local_id=-1,
        x_level=x_level,
        x_index=x_index,
        y_level=y_level,
        y_index=y_index,
        counts=counts,
        idx=idx,
        x_bits=x_bits,
        y_bits=y_bits,
    )


def _candidate_children(cell: _Cell):
    """Child keys and sample indices in x-lower, x-upper, y-lower, y-upper order."""
    idx = cell.idx
    if cell.x_level + 2 <= MAX_DEPTH:
        for half in (0, 1):
            key = (cell.x_level + 1, 2 * cell.x_index + half, cell.y_level, cell.y_index)
            yield key, idx[cell.x_bits == half]
    if cell.y_level + 2 <= MAX_DEPTH:
        for half in (0, 1):
            key = (cell.x_level, cell.x_index, cell.y_level + 1, 2 * cell.y_index + half)
            yield key, idx[cell.y_bits == half]


def build_pair_tree(
    x_col: NDArray[np.int64],
    y_col: NDArray[np.int64],
    pair: tuple[int, int],
    config: MultiFitConfig,
    tester: TableTester,
) -> tuple[list[_Cell], PairSummary]:
    """
    Grow the partition tree of one margin pair.

    Parameters
    ----------
    x_col, y_col : ndarray
        Dyadic codes (depth MAX_DEPTH) of the x and y margin.
    pair : tuple of int
        (x column, y column), recorded in the summary.
    config : MultiFitConfig
        Resolved fit options (guards, r_max, r_star, p_star, gate).
    tester : TableTester
        Test applied at every node.

    Returns
    -------
    cells : list
        Tested cells in creation order; parent/child links are local ids.
    summary : PairSummary
        Pruning bookkeeping for the pair.
    """
    n = len(x_col)
    cells: list[_Cell] = []
    rejected: set[tuple[int, int, int, int]] = set()
    n_pruned_guard = 0
    n_pruned_gate = 0

    root = _make_cell((0, 0, 0, 0), np.arange(n), x_col, y_col, config)
    if root is None:
        return cells, PairSummary(
            pair=pair, n_tested=0, max_resolution=-1,
            n_pruned_guard=1, n_pruned_gate=0,
        )
    root.local_id = 0
    cells.append(root)
    current = [root]

    while current:
        next_level: dict[tuple[int, int, int, int], _Cell] = {}
        for cell in current:
            cell.p_value, cell.p_corrected = tester(*cell.counts)

            r = cell.resolution
            expand = r + 1 <= config.r_max
            if expand and r >= config.r_star:
                gate = cell.p_corrected if config.gate_on_corrected else cell.p_value
                if gate > config.p_star:
                    n_pruned_gate += 1
                    expand = False

            if expand:
                for key, child_idx in _candidate_children(cell):
                    child = next_level.get(key)
                    if child is None:
                        if key in rejected:
                            continue
                        child = _make_cell(key, child_idx, x_col, y_col, config)
                        if child is None:
                            rejected.add(key)
                            n_pruned_guard += 1
                            continue
                        child.local_id = len(cells)
                        cells.append(child)
                        next_level[key] = child
                    child.parents.append(cell.local_id)
                    cell.children.append(child.local_id)

            cell.idx = cell.x_bits = cell.y_bits = None

        current = list(next_level.values())

    summary = PairSummary(
        pair=pair,
        n_tested=len(cells),
        max_resolution=max(c.resolution for c in cells),
        n_pruned_guard=n_pruned_guard,
        n_pruned_gate=n_pruned_gate,
    )
    return cells, summary


def build_trees(
    design: MultiFitDesign,
    tester: TableTester,
    n_jobs: int = 1,
) -> tuple[tuple[PartitionNode, ...], tuple[PairSummary, ...]]:
    """
    Build the trees of every margin pair and merge them into one node list.

    Pairs are independent and may be built concurrently; results are merged
    in pair order (x column major), so node ids do not depend on n_jobs.
    Pairs with a degenerate margin are reported as excluded.
    """
    config = design.config
    active = design.pairs

    def _one(pair: tuple[int, int]):
        i, j = pair
        return build_pair_tree(
            design.x_codes[:, i], design.y_codes[:, j], pair, config, tester,
        )

    if n_jobs > 1 and len(active) > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as ex:
            built = list(ex.map(_one, active))
    else:
        built = [_one(pair) for pair in active]
    by_pair = dict(zip(active, built))

    nodes: list[PartitionNode] = []
    summaries: list[PairSummary] = []
    for pair in design.all_pairs:
        if pair not in by_pair:
            summaries.append(PairSummary(
                pair=pair, n_tested=0, max_resolution=-1,
                n_pruned_guard=0, n_pruned_gate=0, excluded=True,
            ))
            continue
        cells, summary = by_pair[pair]
        summaries.append(summary)
        offset = len(nodes)
        for cell in cells:
            nodes.append(PartitionNode(
                node_id=offset + cell.local_id,
                pair=pair,
                x_level=cell.x_level,
                x_index=cell.x_index,
                y_level=cell.y_level,
                y_index=cell.y_index,
                counts=cell.counts,
                p_value=cell.p_value,
                p_corrected=cell.p_corrected,
                parents=tuple(offset + k for k in cell.parents),
                children=tuple(offset + k for k in cell.children),
            ))

    return tuple(nodes), tuple(summaries)


def node_pvalues(
    nodes: Sequence[PartitionNode],
    corrected: bool,
) -> tuple[NDArray[np.floating[Any]], NDArray[np.floating[Any]] | None]:
    """Raw and (optionally) corrected p-values aligned with ``nodes``."""
    p = np.array([node.p_value for node in nodes], dtype=np.float64)
    if not corrected:
        return p, None
    pc = np.array([node.p_corrected for node in nodes], dtype=np.float64)
    return p, pc
