"""
Tests for the resolution tree builder.
"""

import numpy as np
import pytest

from pymultifit.independence import MultiFitDesign, TestMethod
from pymultifit.independence._table_test import TableTester
from pymultifit.independence._tree import build_trees


def _build(x, y, n_jobs=1, **options):
    design = MultiFitDesign.for_multifit(x, y, **options)
    tester = TableTester(design.config.test_method, design.config.correct)
    return design, build_trees(design, tester, n_jobs=n_jobs)


class TestRoot:

    def test_root_counts(self, rng):
        x = rng.uniform(size=200)
        y = rng.uniform(size=200)
        _, (nodes, _) = _build(x, y, r_max=0)
        assert len(nodes) == 1
        root = nodes[0]
        a, b, c, d = root.counts
        assert root.total == 200
        # ranks split the sample evenly along each axis
        assert a + b == 100
        assert a + c == 100
        assert root.parents == ()
        assert root.parent is None
        assert root.resolution == 0
        assert root.address == ("", "")

    def test_root_fails_guards(self, rng):
        x = rng.uniform(size=60)
        _, (nodes, summaries) = _build(x, x, min_tbl_tot=100)
        assert nodes == ()
        assert summaries[0].n_tested == 0
        assert summaries[0].max_resolution == -1
        assert summaries[0].n_pruned_guard == 1


class TestStructure:

    @pytest.fixture
    def tree(self, rng):
        x = rng.standard_normal(500)
        y = x + rng.standard_normal(500)
        return _build(x, y, p_star=1.0)

    def test_children_partition_parent(self, tree):
        """The two x children (or two y children) of a node split its sample."""
        _, (nodes, _) = tree
        for node in nodes:
            for axis in ("x", "y"):
                kids = [
                    nodes[k] for k in node.children
                    if getattr(nodes[k], f"{axis}_level") == getattr(node, f"{axis}_level") + 1
                ]
                if len(kids) == 2:
                    assert sum(k.total for k in kids) == node.total

    def test_child_counts_match_parent_table(self, tree):
        _, (nodes, _) = tree
        for node in nodes:
            a, b, c, d = node.counts
            for k in node.children:
                child = nodes[k]
                if child.x_level == node.x_level + 1:
                    expected = a + b if child.x_index % 2 == 0 else c + d
                else:
                    expected = a + c if child.y_index % 2 == 0 else b + d
                assert child.total == expected

    def test_links_are_consistent(self, tree):
        _, (nodes, _) = tree
        for node in nodes:
            assert node.node_id == nodes.index(node)
            for k in node.children:
                assert node.node_id in nodes[k].parents
            for k in node.parents:
                assert node.node_id in nodes[k].children
                assert nodes[k].resolution == node.resolution - 1

    def test_cells_shared_by_two_parents(self, tree):
        _, (nodes, _) = tree
        assert any(len(node.parents) == 2 for node in nodes)
        keys = [(n.pair, n.x_level, n.x_index, n.y_level, n.y_index) for n in nodes]
        assert len(keys) == len(set(keys))

    def test_breadth_first_ids(self, tree):
        _, (nodes, _) = tree
        resolutions = [node.resolution for node in nodes]
        assert resolutions == sorted(resolutions)

    def test_guards_hold(self, tree):
        design, (nodes, _) = tree
        cfg = design.config
        for node in nodes:
            a, b, c, d = node.counts
            assert node.total >= cfg.min_tbl_tot
            assert min(a + b, c + d) >= cfg.min_row_tot
            assert min(a + c, b + d) >= cfg.min_col_tot

    def test_resolution_bounded(self, tree):
        design, (nodes, summaries) = tree
        assert max(node.resolution for node in nodes) <= design.config.r_max
        assert summaries[0].max_resolution == max(node.resolution for node in nodes)

    def test_no_gate_pruning_at_p_star_one(self, tree):
        _, (_, summaries) = tree
        assert summaries[0].n_pruned_gate == 0


class TestGate:

    def test_gate_prunes_beyond_r_star(self, rng):
        x = rng.standard_normal(400)
        y = rng.standard_normal(400)
        design, (nodes, summaries) = _build(x, y, p_star=1e-6, r_star=1)
        gated = [n for n in nodes if n.resolution >= 1 and n.p_value > 1e-6]
        # every node at resolution >= r_star with a large p-value is a leaf
        assert all(n.is_leaf for n in gated)
        assert summaries[0].n_pruned_gate >= 1
        # resolution 0 is always expanded
        assert len(nodes[0].children) > 0

    @pytest.fixture
    def two_by_two(self, rng):
        x = rng.standard_normal((400, 2))
        y = rng.standard_normal((400, 2))
        _, (roots, _) = _build(x, y, r_max=0)
        return x, y, roots

    def test_gate_alone_stops_at_root(self, two_by_two):
        """With r_star = 0 a root above p_star is the only tested node."""
        x, y, roots = two_by_two
        p_star = min(node.p_value for node in roots) / 2.0
        _, (nodes, summaries) = _build(x, y, r_star=0, p_star=p_star)
        assert len(nodes) == 4
        assert all(not node.parents and node.is_leaf for node in nodes)
        for summary in summaries:
            assert summary.n_tested == 1
            assert summary.max_resolution == 0
            assert summary.n_pruned_gate == 1

    def test_gate_alone_expands_root(self, two_by_two):
        """With r_star = 0 a root at or below p_star is expanded."""
        x, y, roots = two_by_two
        p_star = max(node.p_value for node in roots)
        _, (nodes, summaries) = _build(x, y, r_star=0, p_star=p_star)
        for summary in summaries:
            assert summary.n_tested > 1
        for node in nodes:
            if not node.parents:
                assert len(node.children) == 4

    def test_raising_p_star_only_adds_nodes(self, rng):
        x = rng.standard_normal(400)
        y = x + 2.0 * rng.standard_normal(400)
        previous = set()
        for p_star in (0.001, 0.05, 0.3, 1.0):
            _, (nodes, _) = _build(x, y, p_star=p_star)
            keys = {(n.x_level, n.x_index, n.y_level, n.y_index) for n in nodes}
            assert previous <= keys
            previous = keys

    def test_r_star_equal_r_max_is_exhaustive(self, rng):
        x = rng.standard_normal(400)
        y = rng.standard_normal(400)
        _, (gated, _) = _build(x, y, p_star=1e-6, r_max=3, r_star=3)
        _, (full, _) = _build(x, y, p_star=1.0, r_max=3)
        assert len(gated) == len(full)

    def test_gate_on_corrected(self, rng):
        x = rng.standard_normal(400)
        y = rng.standard_normal(400)
        _, (nodes, _) = _build(x, y, p_star=0.2, gate_on_corrected=True)
        for node in nodes:
            if node.resolution >= 1 and node.p_corrected > 0.2:
                assert node.is_leaf


class TestDeterminism:

    def test_repeatable(self, bivariate_data):
        x, y = bivariate_data
        _, (a, sa) = _build(x, y)
        _, (b, sb) = _build(x, y)
        assert a == b
        assert sa == sb

    def test_n_jobs_does_not_change_result(self, bivariate_data):
        x, y = bivariate_data
        _, (serial, _) = _build(x, y, n_jobs=1)
        _, (threaded, _) = _build(x, y, n_jobs=4)
        assert serial == threaded

    def test_pairs_in_order(self, bivariate_data):
        x, y = bivariate_data
        _, (nodes, summaries) = _build(x, y)
        assert [s.pair for s in summaries] == [(0, 0), (0, 1), (1, 0), (1, 1)]
        pairs = [node.pair for node in nodes]
        assert pairs == sorted(pairs)
        roots = [node for node in nodes if not node.parents]
        assert len(roots) == 4


class TestMethods:

    @pytest.mark.parametrize("method,correct", [
        ("fisher", True), ("chisq", True), ("lr", True), ("norm", False),
    ])
    def test_every_method_builds(self, rng, method, correct):
        x = rng.standard_normal(200)
        y = rng.standard_normal(200)
        design, (nodes, _) = _build(x, y, test_method=method, correct=correct)
        assert design.config.test_method == TestMethod(method)
        assert len(nodes) > 1
        for node in nodes:
            assert 0.0 <= node.p_value <= 1.0
            if correct:
                assert 0.0 <= node.p_corrected <= 1.0
            else:
                assert node.p_corrected is None
