"""Tests for heapleak.analysis.pipeline."""

import pytest

from heapleak.analysis.growth_tracker import GrowthStatus
from heapleak.analysis.leak_classifier import LeakCategory
from heapleak.analysis.pipeline import (
    AnalysisStatus,
    SnapshotInput,
    SnapshotRole,
    analyze_snapshot,
    analyze_snapshots,
)
from heapleak.config import KB, AnalysisConfig
from heapleak.snapshot.encoder import encode_snapshot
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_snapshot(timer_count: int = 0, label: str = "") -> HeapSnapshot:
    nodes = [
        HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
        HeapNode(3, 1, NodeKind.object, "Window", 500, 500),
    ]
    links = [(1, 3, EdgeKind.property, "window")]
    for i in range(50):
        node_id = 5 + i * 2
        nodes.append(HeapNode(node_id, len(nodes), NodeKind.object, f"Widget{i}", 2 * KB, 2 * KB))
        links.append((3, node_id, EdgeKind.property, f"w{i}"))
    scheduler_id = 999
    nodes.append(HeapNode(scheduler_id, len(nodes), NodeKind.closure, "scheduler", 256, 256))
    links.append((3, scheduler_id, EdgeKind.property, "scheduler"))
    for i in range(timer_count):
        node_id = 10_001 + i * 2
        nodes.append(HeapNode(node_id, len(nodes), NodeKind.object, "Timer", 2 * KB, 2 * KB))
        links.append((scheduler_id, node_id, EdgeKind.context, f"t{i}"))
    return HeapSnapshot.build(nodes, links, label=label)


def _make_raw(timer_count: int = 0):
    return encode_snapshot(_make_snapshot(timer_count))


_BROKEN = {"snapshot": {}, "nodes": [1, 2, 3]}


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

class TestSnapshotRole:
    def test_parse_aliases(self):
        assert SnapshotRole.parse("before") is SnapshotRole.baseline
        assert SnapshotRole.parse("After") is SnapshotRole.target
        assert SnapshotRole.parse(" final ") is SnapshotRole.final
        assert SnapshotRole.parse(SnapshotRole.target) is SnapshotRole.target

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            SnapshotRole.parse("middle")


# ---------------------------------------------------------------------------
# analyze_snapshot
# ---------------------------------------------------------------------------

class TestAnalyzeSnapshot:
    def test_single_report(self):
        report = analyze_snapshot(_make_snapshot(label="heap"), role="target")
        assert report.label == "heap"
        assert report.role == "target"
        assert report.summary["node_count"] == 53
        assert report.size_rank.objects
        data = report.to_dict()
        assert set(data) >= {"size_rank", "shapes", "fanout", "detached", "summary"}
        assert set(data) >= {"strings", "globals", "stale_collections"}

    def test_single_report_globals_and_collections(self):
        report = analyze_snapshot(_make_snapshot())
        assert report.global_vars.holders_checked == 1
        assert len(report.global_vars.variables) == 50
        assert report.global_vars.suspicious == []
        assert "scheduler" not in {g.name for g in report.global_vars.variables}
        assert report.stale_collections.collections == []
        assert report.strings.total_strings == 0


# ---------------------------------------------------------------------------
# analyze_snapshots
# ---------------------------------------------------------------------------

class TestAnalyzeSnapshots:
    def test_leak_workflow(self):
        result = analyze_snapshots({"before": _make_raw(), "after": _make_raw(1200)})
        assert result.status is AnalysisStatus.ok
        assert [s.role for s in result.snapshots] == ["baseline", "target"]
        assert [s.label for s in result.snapshots] == ["before", "after"]
        assert result.classification is not None
        categories = {f.category for f in result.findings}
        assert LeakCategory.timer_retention in categories
        assert result.traces
        assert all(t.node_id in _make_snapshot(1200) for t in result.traces)

    def test_stable_workflow(self):
        result = analyze_snapshots({
            "baseline": _make_raw(),
            "target": _make_raw(),
            "final": _make_raw(),
        })
        assert result.status is AnalysisStatus.ok
        assert result.findings == []
        assert result.traces == []
        assert result.growth.status is GrowthStatus.ok

    def test_malformed_sibling_is_isolated(self):
        result = analyze_snapshots({
            "baseline": _make_raw(),
            "target": _make_raw(1200),
            "final": _BROKEN,
        })
        assert result.status is AnalysisStatus.partial
        assert len(result.errors) == 1
        assert result.errors[0].role == "final"
        assert [s.role for s in result.snapshots] == ["baseline", "target"]
        assert result.classification is not None

    def test_bad_edge_count_is_isolated(self):
        broken = _make_raw(1200)
        stride = len(broken["snapshot"]["meta"]["node_fields"])
        edge_count_off = broken["snapshot"]["meta"]["node_fields"].index("edge_count")
        broken["nodes"][stride + edge_count_off] = None
        result = analyze_snapshots({"baseline": _make_raw(), "target": broken})
        assert result.status is AnalysisStatus.partial
        assert [e.role for e in result.errors] == ["target"]
        assert "non-integer" in result.errors[0].message
        assert result.classification is None

    def test_all_malformed(self):
        result = analyze_snapshots({"baseline": _BROKEN, "target": _BROKEN})
        assert result.status is AnalysisStatus.failed
        assert result.snapshots == []
        assert result.growth is None
        assert result.classification is None
        assert len(result.errors) == 2

    def test_single_snapshot_skips_classification(self):
        result = analyze_snapshots({"target": _make_raw()})
        assert result.status is AnalysisStatus.ok
        assert result.classification is None
        assert result.growth.status is GrowthStatus.insufficient_snapshots

    def test_missing_baseline_skips_classification(self):
        result = analyze_snapshots({"baseline": _BROKEN, "target": _make_raw(1200)})
        assert result.status is AnalysisStatus.partial
        assert result.classification is None
        assert result.findings == []

    def test_duplicate_roles_rejected(self):
        inputs = [
            SnapshotInput(SnapshotRole.baseline, _make_raw()),
            SnapshotInput(SnapshotRole.baseline, _make_raw()),
        ]
        with pytest.raises(ValueError, match="Duplicate"):
            analyze_snapshots(inputs)

    def test_inputs_sorted_by_role(self):
        inputs = [
            SnapshotInput(SnapshotRole.target, _make_raw(1200), label="t.heapsnapshot"),
            SnapshotInput(SnapshotRole.baseline, _make_raw(), label="b.heapsnapshot"),
        ]
        result = analyze_snapshots(inputs, trace_findings=False)
        assert [s.label for s in result.snapshots] == ["b.heapsnapshot", "t.heapsnapshot"]
        assert result.traces == []
        assert result.findings

    def test_decoded_snapshots_accepted(self):
        inputs = [
            SnapshotInput(SnapshotRole.baseline, _make_snapshot(label="b")),
            SnapshotInput(SnapshotRole.target, _make_snapshot(1200, label="t")),
        ]
        result = analyze_snapshots(inputs)
        assert result.status is AnalysisStatus.ok
        assert result.findings

    def test_threaded_matches_sequential(self):
        inputs = {"baseline": _make_raw(), "target": _make_raw(1200), "final": _make_raw(1200)}
        sequential = analyze_snapshots(inputs)
        threaded = analyze_snapshots(inputs, max_workers=3)
        assert [f.to_dict() for f in threaded.findings] == [f.to_dict() for f in sequential.findings]
        assert [s.role for s in threaded.snapshots] == ["baseline", "target", "final"]

    def test_config_is_recorded(self):
        config = AnalysisConfig(top_n=3)
        result = analyze_snapshots({"target": _make_raw()}, config)
        assert result.config["top_n"] == 3
        assert len(result.snapshots[0].size_rank.objects) <= 3

    def test_to_dict(self):
        result = analyze_snapshots({"baseline": _make_raw(), "target": _make_raw(1200)})
        data = result.to_dict()
        assert data["status"] == "ok"
        assert sum(data["severity_counts"].values()) == len(result.findings)
        assert data["findings"][0]["category"] == result.findings[0].category.value
        assert data["errors"] == []
