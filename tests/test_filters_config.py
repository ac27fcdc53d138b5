"""Tests for heapleak.snapshot.filters and heapleak.config."""

import pytest

from heapleak.config import KB, MB, AnalysisConfig
from heapleak.snapshot.filters import (
    BUILT_IN_NAMES,
    ExclusionFilter,
    clean_global_name,
    is_built_in,
    is_dom_like,
    is_root_equivalent,
    is_system_internal,
)
from heapleak.snapshot.model import HeapNode, HeapSnapshot, NodeKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_node(name: str, kind: NodeKind = NodeKind.object, size: int = 2048, index: int = 1) -> HeapNode:
    return HeapNode(id=index * 2 + 1, index=index, kind=kind, name=name, self_size=size, retained_size=size)


# ---------------------------------------------------------------------------
# Name helpers
# ---------------------------------------------------------------------------

class TestNameHelpers:
    def test_clean_global_name(self):
        assert clean_global_name("window.fetch") == "fetch"
        assert clean_global_name("global.process") == "process"
        assert clean_global_name("Math (builtin)") == "Math"
        assert clean_global_name("") == ""

    def test_is_built_in(self):
        assert is_built_in("JSON")
        assert is_built_in("window.localStorage")
        assert not is_built_in("Object")
        assert not is_built_in("Array")
        assert not is_built_in("UserStore")
        assert "Map" not in BUILT_IN_NAMES

    def test_system_internal(self):
        assert is_system_internal(_make_node("(GC roots)", NodeKind.synthetic))
        assert is_system_internal(_make_node("system / Map"))
        assert is_system_internal(_make_node("(compiled code)"))
        assert is_system_internal(_make_node("anything", NodeKind.hidden))
        assert not is_system_internal(_make_node("UserStore"))

    def test_root_equivalent(self):
        assert is_root_equivalent(_make_node("anything", index=0))
        assert is_root_equivalent(_make_node("Window / https://example.com"))
        assert is_root_equivalent(_make_node("HTMLDocument"))
        assert not is_root_equivalent(_make_node("Detached HTMLDocument"))
        assert not is_root_equivalent(_make_node("UserStore"))

    def test_dom_like(self):
        assert is_dom_like(_make_node("HTMLDivElement"))
        assert is_dom_like(_make_node("Detached HTMLDivElement"))
        assert is_dom_like(_make_node("Text"))
        assert not is_dom_like(_make_node("UserStore"))


# ---------------------------------------------------------------------------
# ExclusionFilter
# ---------------------------------------------------------------------------

class TestExclusionFilter:
    def test_min_size(self):
        f = ExclusionFilter(min_retained_size=1024)
        assert f.accepts(_make_node("Big", size=2048))
        assert not f.accepts(_make_node("Small", size=100))

    def test_excluded_names_and_prefixes(self):
        f = ExclusionFilter(excluded_prefixes=("vendor_",))
        assert not f.accepts(_make_node("Promise"))
        assert not f.accepts(_make_node("vendor_cache"))
        assert f.accepts(_make_node("AppCache"))

    def test_system_toggle(self):
        node = _make_node("(internal)", NodeKind.synthetic)
        assert not ExclusionFilter().accepts(node)
        assert ExclusionFilter(exclude_system=False).accepts(node)

    def test_apply_preserves_index_order(self):
        nodes = [
            HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
            HeapNode(3, 1, NodeKind.object, "B", 5000, 5000),
            HeapNode(5, 2, NodeKind.object, "A", 9000, 9000),
            HeapNode(7, 3, NodeKind.object, "tiny", 10, 10),
        ]
        snap = HeapSnapshot.build(nodes, [])
        kept = list(ExclusionFilter(min_retained_size=KB).apply(snap))
        assert [n.name for n in kept] == ["B", "A"]

    def test_with_min_size(self):
        f = ExclusionFilter(excluded_prefixes=("x",)).with_min_size(500)
        assert f.min_retained_size == 500
        assert f.excluded_prefixes == ("x",)


# ---------------------------------------------------------------------------
# AnalysisConfig
# ---------------------------------------------------------------------------

class TestAnalysisConfig:
    def test_defaults(self):
        config = AnalysisConfig()
        assert config.min_retained_size == KB
        assert config.growth_threshold == MB
        assert config.fanout_high_threshold == 50
        assert config.fanout_critical_threshold == 200
        assert config.max_tracked_objects == 10_000
        assert config.compute_retained_sizes is False

    def test_excluded_names_extend_built_ins(self):
        config = AnalysisConfig(extra_excluded_names=("MyFramework",))
        assert "MyFramework" in config.excluded_names
        assert "JSON" in config.excluded_names

    def test_exclusion_filter_override(self):
        config = AnalysisConfig(min_retained_size=4096)
        assert config.exclusion_filter().min_retained_size == 4096
        assert config.exclusion_filter(min_retained_size=0).min_retained_size == 0

    def test_from_dict_ignores_unknown_keys(self):
        config = AnalysisConfig.from_dict({"top_n": 5, "bogus": 1})
        assert config.top_n == 5

    def test_dict_roundtrip(self):
        config = AnalysisConfig(top_n=7, excluded_prefixes=("a", "b"))
        assert AnalysisConfig.from_dict(config.to_dict()) == config

    def test_from_env(self):
        env = {
            "HEAPLEAK_TOP_N": "12",
            "HEAPLEAK_COMPUTE_RETAINED_SIZES": "yes",
            "HEAPLEAK_EXCLUDED_PREFIXES": "foo, bar",
        }
        config = AnalysisConfig.from_env(env)
        assert config.top_n == 12
        assert config.compute_retained_sizes is True
        assert config.excluded_prefixes == ("foo", "bar")

    def test_from_env_skips_bad_values(self):
        config = AnalysisConfig.from_env({"HEAPLEAK_TOP_N": "lots"})
        assert config.top_n == AnalysisConfig().top_n

    def test_merged_skips_none(self):
        config = AnalysisConfig(top_n=9).merged({"top_n": None, "min_retained_size": 0})
        assert config.top_n == 9
        assert config.min_retained_size == 0

    def test_frozen(self):
        config = AnalysisConfig()
        with pytest.raises(AttributeError):
            config.top_n = 1  # type: ignore[misc]
