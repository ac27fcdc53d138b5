"""Tests for the heapleak package layout and shared model helpers."""

import importlib

import pytest

import heapleak
from heapleak.snapshot.model import STRONG_EDGE_KINDS, EdgeKind, is_strong_edge


MODULES = [
    "heapleak.errors",
    "heapleak.config",
    "heapleak.snapshot.model",
    "heapleak.snapshot.decoder",
    "heapleak.snapshot.dominators",
    "heapleak.snapshot.encoder",
    "heapleak.snapshot.filters",
    "heapleak.analysis.thresholds",
    "heapleak.analysis.size_rank",
    "heapleak.analysis.shape_analyzer",
    "heapleak.analysis.fanout_analyzer",
    "heapleak.analysis.detached_analyzer",
    "heapleak.analysis.string_analyzer",
    "heapleak.analysis.global_analyzer",
    "heapleak.analysis.stale_collection_analyzer",
    "heapleak.analysis.growth_tracker",
    "heapleak.analysis.snapshot_diff",
    "heapleak.analysis.leak_classifier",
    "heapleak.analysis.retainer_tracer",
    "heapleak.analysis.pipeline",
    "heapleak.analysis.report_generator",
    "heapleak.cli.main",
]


class TestImports:
    @pytest.mark.parametrize("name", MODULES)
    def test_module_imports(self, name):
        module = importlib.import_module(name)
        assert module.__name__ == name

    def test_version(self):
        assert heapleak.__version__ == "0.1.0"


class TestStrongEdges:
    def test_strong_kinds(self):
        assert STRONG_EDGE_KINDS == {EdgeKind.property, EdgeKind.element}

    @pytest.mark.parametrize("kind", [EdgeKind.property, EdgeKind.element])
    def test_strong(self, kind):
        assert is_strong_edge(kind)

    @pytest.mark.parametrize(
        "kind",
        [EdgeKind.internal, EdgeKind.hidden, EdgeKind.weak, EdgeKind.context, EdgeKind.shortcut],
    )
    def test_not_strong(self, kind):
        assert not is_strong_edge(kind)
