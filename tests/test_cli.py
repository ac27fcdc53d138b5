"""Tests for heapleak.cli.main."""

import json

import click
import pytest
from click.testing import CliRunner

from heapleak.analysis.pipeline import SnapshotRole
from heapleak.cli.main import cli, infer_roles
from heapleak.config import KB
from heapleak.snapshot.encoder import encode_snapshot
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_snapshot(timer_count: int = 0) -> HeapSnapshot:
    nodes = [
        HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0),
        HeapNode(3, 1, NodeKind.object, "Window", 500, 500),
        HeapNode(5, 2, NodeKind.closure, "scheduler", 256, 256),
        HeapNode(7, 3, NodeKind.object, "Settings", 4 * KB, 4 * KB),
    ]
    links = [
        (1, 3, EdgeKind.property, "window"),
        (3, 5, EdgeKind.property, "scheduler"),
        (3, 7, EdgeKind.property, "settings"),
    ]
    for i in range(timer_count):
        node_id = 1001 + i * 2
        nodes.append(HeapNode(node_id, len(nodes), NodeKind.object, "Timer", 2 * KB, 2 * KB))
        links.append((5, node_id, EdgeKind.context, f"t{i}"))
    return HeapSnapshot.build(nodes, links)


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def snapshots(tmp_path):
    """Baseline and target snapshot files for a timer leak."""
    baseline = _write(tmp_path / "baseline.heapsnapshot", encode_snapshot(_make_snapshot()))
    target = _write(tmp_path / "target.heapsnapshot", encode_snapshot(_make_snapshot(1200)))
    return baseline, target


# ---------------------------------------------------------------------------
# Role inference
# ---------------------------------------------------------------------------

class TestInferRoles:
    def test_keywords(self):
        roles = infer_roles(["run-after.heapsnapshot", "run-before.heapsnapshot"])
        assert roles == [
            (SnapshotRole.baseline, "run-before.heapsnapshot"),
            (SnapshotRole.target, "run-after.heapsnapshot"),
        ]

    def test_positional_fallback(self):
        roles = infer_roles(["a.heapsnapshot", "b.heapsnapshot", "c.heapsnapshot"])
        assert [r for r, _ in roles] == [SnapshotRole.baseline, SnapshotRole.target, SnapshotRole.final]
        assert roles[0][1] == "a.heapsnapshot"

    def test_mixed(self):
        roles = infer_roles(["x.heapsnapshot", "final.heapsnapshot", "y.heapsnapshot"])
        assert dict(roles) == {
            SnapshotRole.baseline: "x.heapsnapshot",
            SnapshotRole.target: "y.heapsnapshot",
            SnapshotRole.final: "final.heapsnapshot",
        }

    def test_keyword_must_be_a_word(self):
        roles = infer_roles(["finalize.heapsnapshot"])
        assert roles == [(SnapshotRole.baseline, "finalize.heapsnapshot")]

    def test_duplicate_role(self):
        with pytest.raises(click.UsageError):
            infer_roles(["before-1.heapsnapshot", "before-2.heapsnapshot"])

    def test_too_many(self):
        with pytest.raises(click.UsageError):
            infer_roles(["a", "b", "c", "d"])


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

class TestCLIGroup:
    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "memory leaks" in result.output

    def test_config_file(self, runner, tmp_path):
        config_path = _write(tmp_path / "thresholds.json", {"top_n": 7})
        result = runner.invoke(cli, ["--config", config_path, "config"])
        assert result.exit_code == 0
        assert json.loads(result.output)["top_n"] == 7

    def test_config_file_bad_value(self, runner, tmp_path):
        config_path = _write(tmp_path / "thresholds.json", {"top_n": "x"})
        result = runner.invoke(cli, ["--config", config_path, "config"])
        assert result.exit_code == 1
        assert "Invalid value in config file" in result.output

    def test_config_defaults(self, runner):
        result = runner.invoke(cli, ["config"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["min_retained_size"] == 1024
        assert data["fanout_high_threshold"] == 50


# ---------------------------------------------------------------------------
# inspect
# ---------------------------------------------------------------------------

class TestInspectCommand:
    def test_inspect(self, runner, snapshots):
        result = runner.invoke(cli, ["inspect", snapshots[1]])
        assert result.exit_code == 0
        assert "Largest objects" in result.output

    def test_inspect_json(self, runner, snapshots):
        result = runner.invoke(cli, ["inspect", snapshots[1], "--json", "--top", "2"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["summary"]["node_count"] == 1204
        assert len(data["size_rank"]["objects"]) == 2

    def test_inspect_malformed(self, runner, tmp_path):
        path = _write(tmp_path / "broken.heapsnapshot", {"snapshot": {}})
        result = runner.invoke(cli, ["inspect", path])
        assert result.exit_code == 1
        assert "Malformed snapshot" in result.output

    def test_inspect_invalid_json(self, runner, tmp_path):
        path = tmp_path / "garbage.heapsnapshot"
        path.write_text("{not json", encoding="utf-8")
        result = runner.invoke(cli, ["inspect", str(path)])
        assert result.exit_code == 1
        assert "Invalid JSON" in result.output

    def test_inspect_missing_file(self, runner):
        result = runner.invoke(cli, ["inspect", "nonexistent_xyz.heapsnapshot"])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------

class TestAnalyzeCommand:
    def test_analyze(self, runner, snapshots):
        result = runner.invoke(cli, ["analyze", *snapshots])
        assert result.exit_code == 0
        assert "new timer objects retained" in result.output

    def test_analyze_json(self, runner, snapshots):
        result = runner.invoke(cli, ["analyze", snapshots[1], snapshots[0], "--json", "--no-trace"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "ok"
        assert [s["role"] for s in data["snapshots"]] == ["baseline", "target"]
        assert data["findings"][0]["category"] == "timer-retention"
        assert data["traces"] == []

    def test_analyze_all_malformed(self, runner, tmp_path):
        path = _write(tmp_path / "broken.heapsnapshot", {"snapshot": {}})
        result = runner.invoke(cli, ["analyze", path])
        assert result.exit_code == 1

    def test_analyze_too_many(self, runner, snapshots):
        result = runner.invoke(cli, ["analyze", *snapshots, *snapshots])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# report
# ---------------------------------------------------------------------------

class TestReportCommand:
    def test_report_markdown(self, runner, snapshots, tmp_path):
        output = str(tmp_path / "leaks.md")
        result = runner.invoke(cli, ["report", *snapshots, "-o", output])
        assert result.exit_code == 0
        assert "Report saved to" in result.output
        content = open(output, encoding="utf-8").read()
        assert content.startswith("# Heap Leak Analysis")

    def test_report_json(self, runner, snapshots, tmp_path):
        output = str(tmp_path / "leaks.json")
        result = runner.invoke(cli, ["report", *snapshots, "--format", "json", "--output", output])
        assert result.exit_code == 0
        with open(output) as f:
            data = json.load(f)
        assert data["metadata"]["tool"] == "heapleak"
        assert data["analysis"]["findings"]

    def test_report_invalid_format(self, runner, snapshots):
        result = runner.invoke(cli, ["report", *snapshots, "--format", "pdf"])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# trace
# ---------------------------------------------------------------------------

class TestTraceCommand:
    def test_trace(self, runner, snapshots):
        result = runner.invoke(cli, ["trace", snapshots[1], "1001"])
        assert result.exit_code == 0
        assert "Retainer traces" in result.output

    def test_trace_json(self, runner, snapshots):
        result = runner.invoke(cli, ["trace", snapshots[1], "1001", "424242", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["missing"] == [424242]
        assessment = data["assessments"][0]
        assert assessment["node_id"] == 1001
        assert assessment["path_text"].endswith("Timer")
        assert assessment["advice_category"] == "timer"

    def test_trace_json_nothing_found(self, runner, snapshots):
        result = runner.invoke(cli, ["trace", snapshots[1], "424242", "--json"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["missing"] == [424242]
        assert data["assessments"] == []

    def test_trace_nothing_found(self, runner, snapshots):
        result = runner.invoke(cli, ["trace", snapshots[1], "424242"])
        assert result.exit_code == 1
        assert "None of the requested objects" in result.output
