"""Tests for heapleak.analysis.stale_collection_analyzer."""

import pytest

from heapleak.analysis.stale_collection_analyzer import (
    StaleCollectionAnalyzer,
    collection_type,
    is_collection,
    name_words,
)
from heapleak.analysis.thresholds import Severity
from heapleak.config import KB, MB
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_collections_snapshot() -> HeapSnapshot:
    nodes = [
        HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
        HeapNode(3, 1, NodeKind.object, "Window", 500, 20 * KB),
        # Map with its entries behind a runtime hash table.
        HeapNode(5, 2, NodeKind.object, "Map", 32, 10 * KB),
        HeapNode(7, 3, NodeKind.hidden, "system / OrderedHashMap", 256, 1000),
        HeapNode(9, 4, NodeKind.native, "Detached HTMLDivElement", 400, 400),
        HeapNode(11, 5, NodeKind.object, "Session", 300, 300),
        HeapNode(13, 6, NodeKind.object, "StaleSession", 200, 200),
        HeapNode(15, 7, NodeKind.object, "ExpiredToken", 50, 50),
        # Array with its elements behind a backing store.
        HeapNode(17, 8, NodeKind.object, "Array", 32, 2 * KB),
        HeapNode(19, 9, NodeKind.array, "(object elements)", 64, 1 * KB),
        HeapNode(21, 10, NodeKind.object, "Widget", 100, 100),
        HeapNode(23, 11, NodeKind.object, "Widget", 100, 100),
        # Plain object named like a container.
        HeapNode(25, 12, NodeKind.object, "TaskList", 64, 500),
        HeapNode(27, 13, NodeKind.object, "TempFile", 100, 100),
        HeapNode(29, 14, NodeKind.object, "Task", 80, 80),
    ]
    links = [
        (1, 3, EdgeKind.property, "window"),
        (3, 5, EdgeKind.property, "registry"),
        (5, 7, EdgeKind.internal, "table"),
        (7, 9, EdgeKind.internal, "1"),
        (7, 11, EdgeKind.internal, "3"),
        (7, 13, EdgeKind.internal, "5"),
        (7, 15, EdgeKind.weak, "7"),
        (3, 17, EdgeKind.property, "items"),
        (17, 19, EdgeKind.internal, "elements"),
        (19, 21, EdgeKind.element, "0"),
        (19, 23, EdgeKind.element, "1"),
        (3, 25, EdgeKind.property, "pending"),
        (25, 27, EdgeKind.property, "a"),
        (25, 29, EdgeKind.property, "b"),
    ]
    return HeapSnapshot.build(nodes, links)


def _make_cache_snapshot(entries: int, stale: int) -> HeapSnapshot:
    nodes = [
        HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
        HeapNode(3, 1, NodeKind.object, "ImageCache", 64, MB),
    ]
    links = [(1, 3, EdgeKind.property, "cache")]
    for i in range(entries):
        node_id = 101 + i * 2
        name = "Detached HTMLImageElement" if i < stale else "HTMLImageElement"
        nodes.append(HeapNode(node_id, len(nodes), NodeKind.native, name, KB, KB))
        links.append((3, node_id, EdgeKind.property, f"img{i}"))
    return HeapSnapshot.build(nodes, links)


# ---------------------------------------------------------------------------
# Helpers under test
# ---------------------------------------------------------------------------

class TestNameHelpers:
    def test_name_words(self):
        assert name_words("oldWidgetState") == ["old", "widget", "state"]
        assert name_words("HTMLDivElement") == ["html", "div", "element"]
        assert name_words("temp_file") == ["temp", "file"]

    def test_is_stale_uses_whole_words(self):
        def node(name):
            return HeapNode(1, 1, NodeKind.object, name, 0, 0)

        assert StaleCollectionAnalyzer.is_stale(node("oldWidget"))
        assert StaleCollectionAnalyzer.is_stale(node("DisposedView"))
        assert StaleCollectionAnalyzer.is_stale(node("Detached Text"))
        assert not StaleCollectionAnalyzer.is_stale(node("Golden"))
        assert not StaleCollectionAnalyzer.is_stale(node("Template"))

    def test_is_stale_by_known_detached_id(self):
        task = HeapNode(29, 14, NodeKind.object, "Task", 0, 0)
        assert StaleCollectionAnalyzer.is_stale(task, frozenset({29}))

    def test_is_collection(self):
        assert is_collection(HeapNode(1, 1, NodeKind.object, "Map", 0, 0))
        assert is_collection(HeapNode(1, 1, NodeKind.object, "EventQueue", 0, 0))
        assert is_collection(HeapNode(1, 1, NodeKind.array, "", 0, 0))
        assert not is_collection(HeapNode(1, 1, NodeKind.object, "Widget", 0, 0))
        assert not is_collection(HeapNode(1, 1, NodeKind.closure, "Map", 0, 0))

    @pytest.mark.parametrize(
        "name,kind,expected",
        [
            ("Map", NodeKind.object, "Map"),
            ("WeakSet", NodeKind.object, "Set"),
            ("Array", NodeKind.object, "Array"),
            ("", NodeKind.array, "Array"),
            ("TaskList", NodeKind.object, "Object"),
        ],
    )
    def test_collection_type(self, name, kind, expected):
        assert collection_type(HeapNode(1, 1, kind, name, 0, 0)) == expected


# ---------------------------------------------------------------------------
# StaleCollectionAnalyzer
# ---------------------------------------------------------------------------

class TestStaleCollectionAnalyzer:
    def test_collections_checked(self):
        result = StaleCollectionAnalyzer().analyze(_make_collections_snapshot())
        assert result.collections_checked == 3

    def test_map_entries_through_backing_table(self):
        snap = _make_collections_snapshot()
        entries = StaleCollectionAnalyzer.entries(snap, snap.get(5))
        assert {e.id for e in entries} == {9, 11, 13}

    def test_array_entries_through_elements(self):
        snap = _make_collections_snapshot()
        entries = StaleCollectionAnalyzer.entries(snap, snap.get(17))
        assert {e.id for e in entries} == {21, 23}

    def test_stale_map(self):
        result = StaleCollectionAnalyzer().analyze(_make_collections_snapshot())
        stale = result.collections[0]
        assert stale.node_id == 5
        assert stale.collection_type == "Map"
        assert stale.stale_ids == (9, 13)
        assert stale.entry_count == 3
        assert stale.detached_count == 1
        assert stale.stale_retained_size == 600
        assert stale.severity is Severity.LOW
        assert stale.confidence == 80.0
        assert "WeakMap" in stale.suggested_fix

    def test_stale_object_container(self):
        result = StaleCollectionAnalyzer().analyze(_make_collections_snapshot())
        stale = result.collections[1]
        assert stale.name == "TaskList"
        assert stale.collection_type == "Object"
        assert stale.stale_ids == (27,)
        assert stale.confidence == 65.0

    def test_clean_array_not_reported(self):
        result = StaleCollectionAnalyzer().analyze(_make_collections_snapshot())
        assert 17 not in {c.node_id for c in result.collections}

    def test_known_detached_ids(self):
        result = StaleCollectionAnalyzer().analyze(_make_collections_snapshot(), {29})
        task_list = [c for c in result.collections if c.node_id == 25][0]
        assert task_list.stale_count == 2
        assert task_list.detached_count == 1
        assert task_list.stale_percent == 100.0

    def test_totals_and_recommendations(self):
        result = StaleCollectionAnalyzer().analyze(_make_collections_snapshot())
        assert result.total_stale_objects == 3
        assert result.total_stale_size == 700
        assert "'Map' holds 2 stale entries" in result.recommendations[0]
        assert any("detached DOM" in r for r in result.recommendations)
        assert any("WeakMap/WeakSet" in r for r in result.recommendations)

    def test_large_cache(self):
        result = StaleCollectionAnalyzer().analyze(_make_cache_snapshot(120, 60))
        stale = result.collections[0]
        assert stale.stale_count == 60
        assert stale.severity is Severity.HIGH
        # 50 + 15 (half stale) + 20 detached + 20 entry count + 15 cache, capped.
        assert stale.confidence == 95.0

    def test_nothing_stale(self):
        result = StaleCollectionAnalyzer().analyze(_make_cache_snapshot(5, 0))
        assert result.collections == []
        assert result.collections_checked == 1
        assert result.recommendations == []

    def test_to_dict(self):
        data = StaleCollectionAnalyzer().analyze(_make_collections_snapshot()).to_dict()
        assert data["total_stale_objects"] == 3
        assert data["collections"][0]["stale_ids"] == [9, 13]
        assert data["collections"][0]["stale_percent"] == 66.7

    @pytest.mark.parametrize(
        "count,size,expected",
        [
            (101, 0, Severity.CRITICAL),
            (0, 11 * MB, Severity.CRITICAL),
            (51, 0, Severity.HIGH),
            (11, 0, Severity.MEDIUM),
            (1, 2 * MB, Severity.MEDIUM),
            (1, 100, Severity.LOW),
        ],
    )
    def test_severity(self, count, size, expected):
        assert StaleCollectionAnalyzer.severity(count, size) is expected
