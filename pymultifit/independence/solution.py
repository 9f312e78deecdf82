"""
Multiscale independence fit solution type.

MultiFitSolution wraps Result[MultiFitParams] and gives read access to the
tested nodes, their parent/child links, adjusted p-values, global
statistics and null calibrations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TYPE_CHECKING
import numpy as np
from numpy.typing import NDArray

from pymultifit.core.exceptions import ValidationError
from pymultifit.core.result import Result
from pymultifit.independence._common import (
    GlobalStatistics,
    MultiFitParams,
    NullCalibration,
    PairSummary,
    PartitionNode,
)

if TYPE_CHECKING:
    from pymultifit.independence.design import MultiFitConfig, MultiFitDesign


@dataclass
class MultiFitSolution:
    """
    User-facing multiscale independence test results.

    Node-aligned arrays (p_values, p_corrected, adjusted[...]) are indexed
    by ``PartitionNode.node_id``.
    """
    _result: Result[MultiFitParams]
    _design: 'MultiFitDesign'

    # --- Tested nodes ---

    @property
    def nodes(self) -> tuple[PartitionNode, ...]:
        """Every tested node, ordered by margin pair then creation."""
        return self._result.params.nodes

    @property
    def p_values(self) -> NDArray[np.floating[Any]]:
        """Raw p-value per node."""
        return self._result.params.p_values

    @property
    def p_corrected(self) -> NDArray[np.floating[Any]] | None:
        """Corrected p-value per node, None when correct=False."""
        return self._result.params.p_corrected

    @property
    def adjusted(self) -> dict[str, NDArray[np.floating[Any]]] | None:
        """Adjusted p-values per method; None when compute_all_holm=False."""
        return self._result.params.adjusted

    # --- Global results ---

    @property
    def global_p_values(self) -> dict[str, float]:
        """Global p-value per adjustment method."""
        return self._result.params.global_p_values

    @property
    def statistics(self) -> GlobalStatistics:
        """Mean and top-k mean of -log(p), raw and corrected."""
        return self._result.params.statistics

    @property
    def null_calibrations(self) -> dict[str, NullCalibration]:
        """Simulated null distributions keyed by kind."""
        return self._result.params.null_calibrations

    @property
    def null_p_values(self) -> dict[str, dict[str, float]]:
        """Empirical p-values of the global statistics, by null kind."""
        return {k: v.p_values for k, v in self.null_calibrations.items()}

    @property
    def pair_summaries(self) -> tuple[PairSummary, ...]:
        """How far each margin pair's tree grew and what was pruned."""
        return self._result.params.pair_summaries

    # --- Metadata ---

    @property
    def config(self) -> 'MultiFitConfig':
        return self._design.config

    @property
    def n_tests(self) -> int:
        return len(self.nodes)

    @property
    def info(self) -> dict[str, Any]:
        return self._result.info

    @property
    def timing(self) -> dict[str, float] | None:
        return self._result.timing

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    # --- Navigation ---

    def children(self, node: PartitionNode | int) -> tuple[PartitionNode, ...]:
        """Tested child nodes of a node."""
        node = self._node(node)
        return tuple(self.nodes[i] for i in node.children)

    def parents(self, node: PartitionNode | int) -> tuple[PartitionNode, ...]:
        """Tested parent nodes of a node (two for cells split x-then-y and y-then-x)."""
        node = self._node(node)
        return tuple(self.nodes[i] for i in node.parents)

    def leaves(self) -> tuple[PartitionNode, ...]:
        """Nodes with no tested child."""
        return tuple(node for node in self.nodes if node.is_leaf)

    def node_records(self) -> list[dict[str, Any]]:
        """
        One flat record per node.

        Keys: node_id, pair, resolution, address, x_level, x_index, y_level,
        y_index, counts, p_value, p_corrected, parents, children and one
        ``adjusted_<method>`` entry per computed adjustment.
        """
        adjusted = self.adjusted or {}
        records = []
        for node in self.nodes:
            rec = {
                'node_id': node.node_id,
                'pair': node.pair,
                'resolution': node.resolution,
                'address': node.address,
                'x_level': node.x_level,
                'x_index': node.x_index,
                'y_level': node.y_level,
                'y_index': node.y_index,
                'counts': node.counts,
                'p_value': node.p_value,
                'p_corrected': node.p_corrected,
                'parents': node.parents,
                'children': node.children,
            }
            for method, values in adjusted.items():
                rec[f'adjusted_{method}'] = float(values[node.node_id])
            records.append(rec)
        return records

    def significant_nodes(
        self,
        alpha: float = 0.05,
        method: str = "H",
    ) -> tuple[PartitionNode, ...]:
        """
        Nodes whose adjusted p-value is <= alpha, most significant first.

        Raises
        ------
        ValidationError
            If per-node adjusted p-values were not computed for ``method``.
        """
        if self.adjusted is None or method not in self.adjusted:
            raise ValidationError(
                f"no per-node adjusted p-values for method {method!r}; "
                f"available: {sorted(self.adjusted or {})}"
            )
        values = self.adjusted[method]
        hits = np.flatnonzero(values <= alpha)
        hits = hits[np.argsort(values[hits], kind='stable')]
        return tuple(self.nodes[i] for i in hits)

    def _node(self, node: PartitionNode | int) -> PartitionNode:
        return self.nodes[node] if isinstance(node, (int, np.integer)) else node

    # --- Formatting ---

    def summary(self) -> str:
        """
        Text summary of the fit.

        Produces output like:
            Multiscale Fisher Independence Test

        data:  n = 300, dx = 1, dy = 1
        tests: 57 tables, max resolution 4
        global p-values:
            H           = 1.2340e-08
            Hcorrected  = 8.1100e-09
            MH          = 3.9020e-09
        """
        cfg = self.config
        lines = []
        method_title = {
            "fisher": "Fisher",
            "chisq": "Chi-squared",
            "lr": "Likelihood-Ratio",
            "norm": "Normal-Approximation",
        }[cfg.test_method.value]
        lines.append(f"\tMultiscale {method_title} Independence Test")
        lines.append("")
        lines.append(
            f"data:  n = {self.info['n']}, dx = {self.info['dx']}, dy = {self.info['dy']}"
        )
        lines.append(
            f"tests: {self.n_tests} tables, max resolution {self.info['max_resolution']}"
        )
        lines.append("global p-values:")
        for name, value in self.global_p_values.items():
            lines.append(f"    {name:<11s} = {_format_pvalue(value)}")

        lines.append("statistics (-log p):")
        for name, value in self.statistics.as_dict().items():
            lines.append(f"    {name:<18s} = {value:.5g}")

        for kind, cal in self.null_calibrations.items():
            lines.append(f"{kind} null ({cal.n_sim} replicates) p-values:")
            for name, value in cal.p_values.items():
                lines.append(f"    {name:<18s} = {_format_pvalue(value)}")

        for w in self.warnings:
            lines.append(f"warning: {w}")
        lines.append("")
        return "\n".join(lines)

    def __repr__(self) -> str:
        gp = ", ".join(f"{k}={v:.4g}" for k, v in self.global_p_values.items())
        return f"MultiFitSolution(n_tests={self.n_tests}, {gp})"


def _format_pvalue(p: float) -> str:
    """Format a p-value the way R prints them."""
    if np.isnan(p):
        return "NA"
    if p < 2.2e-16:
        return "< 2.2e-16"
    if p < 0.001:
        return f"{p:.4e}"
    return f"{p:.4g}"
