"""Tests for heapleak.analysis.global_analyzer."""

import pytest

from heapleak.analysis.global_analyzer import GlobalAnalyzer, is_global_holder
from heapleak.analysis.thresholds import Severity
from heapleak.config import KB, MB, AnalysisConfig
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_globals_snapshot() -> HeapSnapshot:
    nodes = [
        HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
        HeapNode(3, 1, NodeKind.object, "Window", 500, 10 * MB),
        HeapNode(5, 2, NodeKind.object, "Cache", 200, 2 * MB),
        HeapNode(7, 3, NodeKind.object, "Storage", 100, 3 * MB),
        HeapNode(9, 4, NodeKind.number, "heap number", 16, 16),
        HeapNode(11, 5, NodeKind.object, "Array", 32, 20 * KB),
        HeapNode(13, 6, NodeKind.object, "Object", 100, 500),
        HeapNode(15, 7, NodeKind.object, "Registry", 100, 4 * MB),
        HeapNode(17, 8, NodeKind.object, "Object", 100, 8 * KB),
    ]
    links = [
        (1, 3, EdgeKind.property, "window"),
        (3, 5, EdgeKind.property, "userCache"),
        (3, 7, EdgeKind.property, "localStorage"),
        (3, 9, EdgeKind.property, "counter"),
        (3, 11, EdgeKind.property, "items"),
        (3, 13, EdgeKind.property, "tiny"),
        (3, 15, EdgeKind.property, "Symbol(registry)"),
        (3, 5, EdgeKind.property, "alias"),
        (3, 17, EdgeKind.internal, "map"),
    ]
    return HeapSnapshot.build(nodes, links)


# ---------------------------------------------------------------------------
# Holders
# ---------------------------------------------------------------------------

class TestGlobalHolder:
    def test_window_and_global(self):
        assert is_global_holder(HeapNode(3, 1, NodeKind.object, "Window", 0, 0))
        assert is_global_holder(HeapNode(3, 1, NodeKind.object, "global", 0, 0))

    def test_root_is_not_holder(self):
        assert not is_global_holder(HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0))
        assert not is_global_holder(HeapNode(1, 0, NodeKind.object, "Window", 0, 0))

    def test_detached_window_is_not_holder(self):
        assert not is_global_holder(HeapNode(3, 1, NodeKind.object, "Detached Window", 0, 0))

    def test_non_object_is_not_holder(self):
        assert not is_global_holder(HeapNode(3, 1, NodeKind.closure, "windowResize", 0, 0))


# ---------------------------------------------------------------------------
# GlobalAnalyzer
# ---------------------------------------------------------------------------

class TestGlobalAnalyzer:
    def test_user_globals_only(self):
        result = GlobalAnalyzer().analyze(_make_globals_snapshot())
        assert result.holders_checked == 1
        assert [g.name for g in result.variables] == ["userCache", "items"]

    def test_built_in_number_symbol_and_small_skipped(self):
        names = {g.name for g in GlobalAnalyzer().analyze(_make_globals_snapshot()).variables}
        assert "localStorage" not in names
        assert "counter" not in names
        assert "Symbol(registry)" not in names
        assert "tiny" not in names
        assert "map" not in names

    def test_shared_target_listed_once(self):
        result = GlobalAnalyzer().analyze(_make_globals_snapshot())
        assert [g.node_id for g in result.variables].count(5) == 1

    def test_cache_global(self):
        result = GlobalAnalyzer().analyze(_make_globals_snapshot())
        cache = result.variables[0]
        assert cache.holder_id == 3
        assert cache.type_name == "Cache"
        assert cache.severity is Severity.HIGH
        assert cache.confidence == 95.0
        assert cache.is_suspicious
        assert "size limit" in cache.suggested_fix

    def test_small_array_not_suspicious(self):
        items = GlobalAnalyzer().analyze(_make_globals_snapshot()).variables[1]
        assert items.severity is Severity.LOW
        assert items.confidence == 75.0
        assert not items.is_suspicious

    def test_suspicious_totals(self):
        result = GlobalAnalyzer().analyze(_make_globals_snapshot())
        assert [g.name for g in result.suspicious] == ["userCache"]
        assert result.total_memory_impact == 2 * MB
        assert "userCache" in result.recommendations[0]
        assert any("cache-like" in r for r in result.recommendations)

    def test_extra_excluded_names(self):
        config = AnalysisConfig(extra_excluded_names=("userCache",))
        result = GlobalAnalyzer(config).analyze(_make_globals_snapshot())
        assert [g.name for g in result.variables] == ["items"]

    def test_no_holders(self):
        snap = HeapSnapshot.build([HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0)], [])
        result = GlobalAnalyzer().analyze(snap)
        assert result.variables == []
        assert result.recommendations == []

    def test_to_dict(self):
        data = GlobalAnalyzer().analyze(_make_globals_snapshot()).to_dict()
        assert data["suspicious_count"] == 1
        assert data["variables"][0]["severity"] == "HIGH"
        assert data["variables"][0]["is_suspicious"] is True

    @pytest.mark.parametrize(
        "size,expected",
        [
            (11 * MB, Severity.CRITICAL),
            (2 * MB, Severity.HIGH),
            (200 * KB, Severity.MEDIUM),
            (10 * KB, Severity.LOW),
        ],
    )
    def test_severity(self, size, expected):
        assert GlobalAnalyzer.severity(size) is expected
