"""Tests for heapleak.analysis.fanout_analyzer."""

from heapleak.analysis.fanout_analyzer import FanoutAnalyzer
from heapleak.analysis.thresholds import Severity
from heapleak.config import KB, MB, AnalysisConfig
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_hub_snapshot(hub_name: str, children: int, hub_size: int = 4 * KB,
                       edge_kind: EdgeKind = EdgeKind.property) -> HeapSnapshot:
    nodes = [
        HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
        HeapNode(3, 1, NodeKind.object, hub_name, hub_size, hub_size),
    ]
    links = [(1, 3, EdgeKind.property, "hub")]
    for i in range(children):
        node_id = 100 + i * 2
        nodes.append(HeapNode(node_id, i + 2, NodeKind.object, "Entry", 64, 64))
        links.append((3, node_id, edge_kind, f"k{i}"))
    return HeapSnapshot.build(nodes, links)


# ---------------------------------------------------------------------------
# Severity grading
# ---------------------------------------------------------------------------

class TestSeverity:
    def test_thresholds(self):
        analyzer = FanoutAnalyzer()
        assert analyzer.severity(200, 0) is Severity.CRITICAL
        assert analyzer.severity(100, 6 * MB) is Severity.CRITICAL
        assert analyzer.severity(50, 0) is Severity.HIGH
        assert analyzer.severity(25, 2 * MB) is Severity.HIGH
        assert analyzer.severity(20, 0) is Severity.MEDIUM
        assert analyzer.severity(5, 0) is Severity.LOW

    def test_configured_thresholds(self):
        analyzer = FanoutAnalyzer(AnalysisConfig(fanout_high_threshold=10, fanout_critical_threshold=30))
        assert analyzer.severity(10, 0) is Severity.HIGH
        assert analyzer.severity(30, 0) is Severity.CRITICAL


# ---------------------------------------------------------------------------
# FanoutAnalyzer
# ---------------------------------------------------------------------------

class TestFanoutAnalyzer:
    def test_hub_detected(self):
        result = FanoutAnalyzer().analyze(_make_hub_snapshot("SessionCache", 60))
        top = result.top[0]
        assert top.node_id == 3
        assert top.fanout == 60
        assert top.severity is Severity.HIGH
        assert top.category == "Cache"
        assert "name contains 'cache'" in top.suspicious_tags
        assert result.suspicious == [top]
        assert result.max_fanout == 60

    def test_name_alone_never_sets_severity(self):
        result = FanoutAnalyzer().analyze(_make_hub_snapshot("GlobalRegistry", 3))
        top = result.top[0]
        assert top.suspicious_tags
        assert top.severity is Severity.LOW

    def test_weak_and_hidden_edges_ignored(self):
        result = FanoutAnalyzer().analyze(_make_hub_snapshot("Holder", 80, edge_kind=EdgeKind.weak))
        assert all(r.node_id != 3 for r in result.top)

    def test_critical_hub(self):
        result = FanoutAnalyzer().analyze(_make_hub_snapshot("Pool", 250))
        top = result.top[0]
        assert top.severity is Severity.CRITICAL
        assert any("extremely high" in t for t in top.suspicious_tags)
        assert result.distribution["200+"] == 1

    def test_confidence_bounds(self):
        result = FanoutAnalyzer().analyze(_make_hub_snapshot("Pool", 600, hub_size=2 * MB))
        assert 10.0 <= result.top[0].confidence <= 100.0

    def test_empty_snapshot(self):
        snap = HeapSnapshot.build([HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0)], [])
        result = FanoutAnalyzer().analyze(snap)
        assert result.top == []
        assert result.max_fanout == 0

    def test_recommendations_for_hubs(self):
        result = FanoutAnalyzer().analyze(_make_hub_snapshot("SessionCache", 60))
        assert any("evict" in r for r in result.recommendations)
        assert any("Cache" in r for r in result.recommendations)
