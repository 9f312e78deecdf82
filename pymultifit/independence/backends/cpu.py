"""
CPU backend for multiscale independence fits.

Runs the pipeline: tree building (which drives the table tester at every
node), multiple-testing adjustment, global statistics and the optional
null calibrations.
"""

from __future__ import annotations

from pymultifit.core.result import Result
from pymultifit.core.compute.timing import Timer
from pymultifit.independence._common import MultiFitParams
from pymultifit.independence._null import calibrate
from pymultifit.independence._p_adjust import adjust_pvalues, global_statistics
from pymultifit.independence._table_test import TableTester, attainable_pvalues
from pymultifit.independence._tree import build_trees, node_pvalues
from pymultifit.independence.design import MultiFitDesign


class CPUMultiFitBackend:
    """CPU reference backend for multiscale independence fits."""

    @property
    def name(self) -> str:
        return 'cpu_multifit'

    def solve(self, design: MultiFitDesign) -> Result[MultiFitParams]:
        """Build all trees, adjust, summarize and calibrate."""
        timer = Timer()
        timer.start()

        config = design.config
        warnings_list: list[str] = []
        if design.degenerate_x or design.degenerate_y:
            warnings_list.append(
                f"Constant margins excluded from testing: "
                f"x columns {list(design.degenerate_x)}, "
                f"y columns {list(design.degenerate_y)}"
            )

        tester = TableTester(config.test_method, config.correct)

        with timer.section('tree'):
            nodes, summaries = build_trees(design, tester, n_jobs=config.n_jobs)

        if not nodes:
            warnings_list.append(
                "No table passed the minimum-total guards; global p-values are 1"
            )

        p, p_corrected = node_pvalues(nodes, config.correct)

        with timer.section('adjust'):
            attainable = None
            if "MH" in config.p_adjust_methods:
                attainable = [
                    attainable_pvalues(node.counts[0] + node.counts[1],
                                       node.counts[0] + node.counts[2],
                                       node.total)
                    for node in nodes
                ]
            adjusted, global_p = adjust_pvalues(
                p, p_corrected, config.p_adjust_methods,
                attainable=attainable,
                cutoff=config.cutoff,
                compute_all=config.compute_all_holm,
            )
            statistics = global_statistics(p, p_corrected, config.top_max_ps)

        with timer.section('null'):
            null_calibrations = calibrate(design, nodes, statistics)

        timer.stop()

        params = MultiFitParams(
            nodes=nodes,
            p_values=p,
            p_corrected=p_corrected,
            adjusted=adjusted,
            global_p_values=global_p,
            statistics=statistics,
            pair_summaries=summaries,
            null_calibrations=null_calibrations,
        )

        info = dict(design.metadata)
        info.update({
            'n_tests': len(nodes),
            'test_method': config.test_method.value,
            'p_adjust_methods': config.p_adjust_methods,
            'max_resolution': max((s.max_resolution for s in summaries), default=-1),
        })

        return Result(
            params=params,
            info=info,
            timing=timer.result(),
            backend_name=self.name,
            warnings=tuple(warnings_list),
        )
