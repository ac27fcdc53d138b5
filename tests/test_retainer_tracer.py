"""Tests for heapleak.analysis.retainer_tracer."""

from heapleak.analysis.retainer_tracer import (
    HeapRatios,
    RetainerTracer,
    RootKind,
    summarize_assessments,
)
from heapleak.analysis.thresholds import Severity
from heapleak.config import KB, MB, AnalysisConfig
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_app_snapshot() -> HeapSnapshot:
    nodes = [
        HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
        HeapNode(3, 1, NodeKind.object, "Window", 500, 500),
        HeapNode(5, 2, NodeKind.object, "Cache", 10 * KB, 10 * KB),
        HeapNode(7, 3, NodeKind.object, "Payload", 2 * KB, 2 * KB),
        HeapNode(9, 4, NodeKind.closure, "onTick", KB, KB),
        HeapNode(11, 5, NodeKind.object, "Timer", 200 * KB, 200 * KB),
        HeapNode(13, 6, NodeKind.closure, "onClick", 300, 300),
        HeapNode(15, 7, NodeKind.native, "Detached HTMLDivElement", 2 * MB, 2 * MB),
        HeapNode(17, 8, NodeKind.object, "WeakOnly", 64, 64),
    ]
    links = [
        (1, 3, EdgeKind.property, "window"),
        (3, 5, EdgeKind.property, "cache"),
        (5, 7, EdgeKind.element, "0"),
        (7, 5, EdgeKind.property, "owner"),
        (3, 9, EdgeKind.property, "handler"),
        (9, 11, EdgeKind.context, "timer"),
        (13, 15, EdgeKind.context, "el"),
        (1, 17, EdgeKind.weak, "w"),
    ]
    return HeapSnapshot.build(nodes, links)


def _make_chain_snapshot(length: int) -> HeapSnapshot:
    nodes = [HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0)]
    links = []
    previous = 1
    for i in range(length):
        node_id = 101 + i * 2
        nodes.append(HeapNode(node_id, i + 1, NodeKind.object, "Link", 64, 64))
        links.append((previous, node_id, EdgeKind.property, "next"))
        previous = node_id
    return HeapSnapshot.build(nodes, links)


def _make_island_snapshot() -> HeapSnapshot:
    nodes = [
        HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
        HeapNode(3, 1, NodeKind.object, "NodeA", 100, 100),
        HeapNode(5, 2, NodeKind.object, "NodeB", 100, 100),
    ]
    links = [(3, 5, EdgeKind.property, "b"), (5, 3, EdgeKind.property, "a")]
    return HeapSnapshot.build(nodes, links)


# ---------------------------------------------------------------------------
# Tracing
# ---------------------------------------------------------------------------

class TestTrace:
    def test_path_runs_from_root_to_object(self):
        path = RetainerTracer().trace(_make_app_snapshot(), 7)
        assert path is not None
        assert [h.node_id for h in path.hops] == [3, 5, 7]
        assert path.reached_root
        assert path.depth == 2
        assert path.root_kind is RootKind.global_
        assert path.describe() == "Window.cache -> Cache[0] -> Payload"

    def test_cycle_recorded_and_walk_terminates(self):
        path = RetainerTracer().trace(_make_app_snapshot(), 7)
        assert path.has_cycle

    def test_unrooted_cycle_terminates(self):
        path = RetainerTracer().trace(_make_island_snapshot(), 3)
        assert path is not None
        assert not path.reached_root
        assert path.has_cycle
        assert [h.node_id for h in path.hops] == [5, 3]
        assert path.root_kind is RootKind.unknown

    def test_missing_id_returns_none(self):
        assert RetainerTracer().trace(_make_app_snapshot(), 999) is None

    def test_weak_edges_do_not_retain(self):
        path = RetainerTracer().trace(_make_app_snapshot(), 17)
        assert path.retainer_count == 0
        assert len(path.hops) == 1
        assert not path.reached_root

    def test_depth_bound(self):
        snap = _make_chain_snapshot(30)
        last = 101 + 29 * 2
        short = RetainerTracer(AnalysisConfig(trace_max_depth=5)).trace(snap, last)
        assert short.depth == 5
        assert not short.reached_root
        full = RetainerTracer(AnalysisConfig(trace_max_depth=40)).trace(snap, last)
        assert full.reached_root
        assert full.depth == 30
        assert full.hops[0].name == "(root)"
        assert full.root_kind is RootKind.gc_root

    def test_to_dict(self):
        data = RetainerTracer().trace(_make_app_snapshot(), 7).to_dict()
        assert data["root_kind"] == "global"
        assert data["depth"] == 2
        assert data["hops"][0]["edge_name"] == "cache"


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------

class TestAssess:
    def test_timer_held_by_handler(self):
        assessment = RetainerTracer().assess(_make_app_snapshot(), 11)
        assert assessment is not None
        assert assessment.is_likely_leak
        assert assessment.advice_category == "timer"
        assert "timer/interval related" in assessment.factors
        assert assessment.confidence >= 50
        assert "clearInterval" in assessment.remediation

    def test_detached_element(self):
        assessment = RetainerTracer().assess(_make_app_snapshot(), 15)
        assert assessment.advice_category == "detached"
        assert "detached from the DOM tree" in assessment.factors
        assert assessment.path.root_kind is RootKind.closure
        assert assessment.is_likely_leak
        assert assessment.severity is Severity.MEDIUM

    def test_plain_object_not_flagged(self):
        assessment = RetainerTracer().assess(_make_app_snapshot(), 7)
        assert not assessment.is_likely_leak
        assert assessment.confidence == 0.0
        assert assessment.severity is Severity.LOW
        assert assessment.advice_category == "generic"
        assert "no strong leak indicators" in assessment.explanation

    def test_missing_id(self):
        assert RetainerTracer().assess(_make_app_snapshot(), 999) is None

    def test_assess_many_sorted_and_skips_missing(self):
        results = RetainerTracer().assess_many(_make_app_snapshot(), [7, 999, 11, 15])
        assert [a.node_id for a in results][-1] == 7
        assert len(results) == 3
        confidences = [a.confidence for a in results]
        assert confidences == sorted(confidences, reverse=True)

    def test_assessment_to_dict(self):
        data = RetainerTracer().assess(_make_app_snapshot(), 7).to_dict()
        assert data["path_text"] == "Window.cache -> Cache[0] -> Payload"
        assert data["severity"] == "LOW"


class TestHeapRatios:
    def test_ratios(self):
        ratios = HeapRatios.from_snapshot(_make_app_snapshot())
        assert ratios.node_count == 9
        assert ratios.function_ratio == 2 / 9
        assert ratios.timer_ratio == 1 / 9

    def test_similar_size_count(self):
        nodes = [HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0)]
        for i in range(1, 6):
            nodes.append(HeapNode(i * 2 + 1, i, NodeKind.object, "Row", 1000 + i, 1000 + i))
        nodes.append(HeapNode(99, 6, NodeKind.object, "Row", 5000, 5000))
        ratios = HeapRatios.from_snapshot(HeapSnapshot.build(nodes, []))
        assert ratios.similar_size_count(nodes[3]) == 5


class TestSummary:
    def test_empty(self):
        assert summarize_assessments([]) == "No objects traced."

    def test_counts_likely(self):
        results = RetainerTracer().assess_many(_make_app_snapshot(), [7, 11])
        assert summarize_assessments(results).startswith("1 of 2 traced object(s)")
