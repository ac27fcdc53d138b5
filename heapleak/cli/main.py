"""CLI interface for heapleak.

Provides commands for inspecting a single heap snapshot, analyzing a
baseline/target[/final] capture workflow for leaks, tracing retainer paths
for specific objects, and writing markdown or JSON reports.

Uses Click for command parsing and Rich for terminal output.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import click
from rich.console import Console
from rich.panel import Panel

from heapleak import __version__
from heapleak.analysis.pipeline import (
    AnalysisResult,
    AnalysisStatus,
    SnapshotInput,
    SnapshotRole,
    analyze_snapshot,
    analyze_snapshots,
)
from heapleak.analysis.report_generator import ReportGenerator
from heapleak.analysis.retainer_tracer import RetainerTracer, summarize_assessments
from heapleak.analysis.shape_analyzer import ShapeAnalyzer
from heapleak.config import AnalysisConfig
from heapleak.errors import MalformedSnapshot
from heapleak.snapshot.decoder import decode_snapshot
from heapleak.snapshot.model import HeapSnapshot

logger = logging.getLogger(__name__)

console = Console()

# ---------------------------------------------------------------------------
# Environment variable names
# ---------------------------------------------------------------------------
_ENV_CONFIG = "HEAPLEAK_CONFIG"

# Filename keywords that pin a snapshot to a workflow role.
_ROLE_KEYWORDS: Tuple[Tuple[SnapshotRole, Tuple[str, ...]], ...] = (
    (SnapshotRole.baseline, ("baseline", "before")),
    (SnapshotRole.target, ("target", "after")),
    (SnapshotRole.final, ("final",)),
)


# ============================================================================
# Helpers
# ============================================================================


def _error(message: str) -> None:
    """Print an error message and exit with code 1."""
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise SystemExit(1)


def _warn(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}", style="yellow")


def _info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[dim]{message}[/dim]")


def _load_json(path: str, what: str = "snapshot") -> Dict[str, Any]:
    """Load a JSON document from disk.

    Parameters
    ----------
    path:
        Path to the ``.heapsnapshot`` (or config) JSON file.
    what:
        Noun used in error messages.

    Returns
    -------
    dict
        The parsed document.

    Raises
    ------
    SystemExit
        If the file cannot be read or parsed.
    """
    filepath = Path(path)
    if not filepath.exists():
        _error(f"{what.capitalize()} file not found: {path}")
    if not filepath.is_file():
        _error(f"Not a file: {path}")

    try:
        text = filepath.read_text(encoding="utf-8")
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        _error(f"Invalid JSON in {what} file {path}: {exc}")
    except OSError as exc:
        _error(f"Cannot read {what} file {path}: {exc}")
    else:
        if not isinstance(data, dict):
            _error(f"Expected a JSON object in {what} file {path}")
        return data

    # Unreachable, but satisfies type checker.
    return {}  # pragma: no cover


def _decode_file(path: str, config: AnalysisConfig) -> HeapSnapshot:
    raw = _load_json(path)
    try:
        return decode_snapshot(
            raw,
            label=Path(path).name,
            compute_retained_sizes=config.compute_retained_sizes,
            chunk_size=config.chunk_size,
        )
    except MalformedSnapshot as exc:
        _error(f"Malformed snapshot: {exc}")

    # Unreachable, _error always exits.
    raise SystemExit(1)  # pragma: no cover


def infer_roles(paths: Sequence[str]) -> List[Tuple[SnapshotRole, str]]:
    """Assign workflow roles to snapshot files.

    A file whose name contains ``baseline``/``before``, ``target``/``after``
    or ``final`` takes that role.  Remaining files fill the free roles in
    command-line order.

    Raises
    ------
    click.UsageError
        If more than three files are given or two files claim the same role.
    """
    if len(paths) > len(_ROLE_KEYWORDS):
        raise click.UsageError("At most three snapshots (baseline, target, final) are supported.")

    assigned: Dict[SnapshotRole, str] = {}
    unassigned: List[str] = []
    for path in paths:
        stem = Path(path).name.lower()
        role = next(
            (
                r for r, words in _ROLE_KEYWORDS
                if any(re.search(rf"(^|[^a-z]){w}([^a-z]|$)", stem) for w in words)
            ),
            None,
        )
        if role is None:
            unassigned.append(path)
            continue
        if role in assigned:
            raise click.UsageError(
                f"Both {assigned[role]} and {path} look like the {role.value} snapshot."
            )
        assigned[role] = path

    free = [r for r, _ in _ROLE_KEYWORDS if r not in assigned]
    for role, path in zip(free, unassigned):
        assigned[role] = path
    return [(r, assigned[r]) for r, _ in _ROLE_KEYWORDS if r in assigned]


def _config_from_context(ctx: click.Context, **overrides: Any) -> AnalysisConfig:
    base: AnalysisConfig = ctx.obj["config"] if ctx.obj else AnalysisConfig.from_env()
    return base.merged(overrides)


def _print_json(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _run_workflow(
    paths: Sequence[str],
    config: AnalysisConfig,
    trace: bool,
    workers: int,
    announce: bool = True,
) -> AnalysisResult:
    roles = infer_roles(paths)
    inputs = []
    for role, path in roles:
        if announce:
            _info(f"{role.value}: {path}")
        inputs.append(SnapshotInput(role=role, source=_load_json(path), label=Path(path).name))
    return analyze_snapshots(inputs, config, trace_findings=trace, max_workers=workers)


# Options shared by the analysis commands.
def _analysis_options(func: Any) -> Any:
    func = click.option(
        "--min-size",
        type=int,
        default=None,
        help="Ignore objects retaining fewer bytes than this.",
    )(func)
    func = click.option(
        "--top", "-n",
        "top_n",
        type=int,
        default=None,
        help="Number of ranked objects to keep.",
    )(func)
    func = click.option(
        "--retained/--no-retained",
        "compute_retained",
        default=None,
        help="Compute true retained sizes with a dominator pass.",
    )(func)
    return func


def _overrides(min_size: Optional[int], top_n: Optional[int], compute_retained: Optional[bool]) -> Dict[str, Any]:
    return {
        "min_retained_size": min_size,
        "top_n": top_n,
        "compute_retained_sizes": compute_retained,
    }


# ============================================================================
# CLI group
# ============================================================================


@click.group(name="heapleak")
@click.version_option(version=__version__, prog_name="heapleak")
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable verbose debug logging.",
)
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    envvar=_ENV_CONFIG,
    default=None,
    help="JSON file with analysis thresholds.",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Optional[str]) -> None:
    """heapleak - Find memory leaks in heap snapshots."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    config = AnalysisConfig.from_env()
    if config_path:
        overrides = _load_json(config_path, what="config")
        try:
            config = config.merged(overrides)
        except (TypeError, ValueError) as exc:
            _error(f"Invalid value in config file {config_path}: {exc}")
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ============================================================================
# inspect
# ============================================================================


@cli.command()
@click.argument("snapshot_path", type=click.Path(exists=True))
@_analysis_options
@click.option("--deep", is_flag=True, default=False, help="Group shapes by property layout.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON instead of tables.")
@click.pass_context
def inspect(
    ctx: click.Context,
    snapshot_path: str,
    min_size: Optional[int],
    top_n: Optional[int],
    compute_retained: Optional[bool],
    deep: bool,
    as_json: bool,
) -> None:
    """Rank, deduplicate and fan-out check a single snapshot.

    Usage: heapleak inspect app.heapsnapshot --top 20
    """
    config = _config_from_context(ctx, **_overrides(min_size, top_n, compute_retained))
    if not as_json:
        console.print(
            Panel(
                f"[bold]Inspecting:[/bold] {snapshot_path}",
                border_style="cyan",
                padding=(0, 1),
            )
        )

    snapshot = _decode_file(snapshot_path, config)
    report = analyze_snapshot(snapshot, config)
    if deep:
        report.shapes = ShapeAnalyzer(config, deep=True).analyze(snapshot)

    if as_json:
        _print_json(report.to_dict())
        return

    summary = report.summary
    _info(
        f"{summary['node_count']} nodes, {summary['edge_count']} edges, "
        f"size mode: {summary['size_mode']}"
    )
    if snapshot.diagnostics:
        _warn(f"{len(snapshot.diagnostics)} unresolved reference(s) were replaced during decode.")
    generator = ReportGenerator(AnalysisResult(AnalysisStatus.ok, [report], None, None), console)
    generator.print_snapshot(report)
    recommendations = (
        report.size_rank.recommendations
        + report.shapes.recommendations
        + report.strings.recommendations
        + report.global_vars.recommendations
        + report.stale_collections.recommendations
    )
    for line in recommendations:
        console.print(f"  [cyan]-[/cyan] {line}")


# ============================================================================
# analyze
# ============================================================================


@cli.command()
@click.argument("snapshot_paths", nargs=-1, required=True, type=click.Path(exists=True))
@_analysis_options
@click.option("--no-trace", is_flag=True, default=False, help="Skip retainer tracing of findings.")
@click.option("--workers", "-w", type=int, default=1, show_default=True, help="Snapshots decoded in parallel.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON instead of tables.")
@click.pass_context
def analyze(
    ctx: click.Context,
    snapshot_paths: Tuple[str, ...],
    min_size: Optional[int],
    top_n: Optional[int],
    compute_retained: Optional[bool],
    no_trace: bool,
    workers: int,
    as_json: bool,
) -> None:
    """Analyze a baseline/target[/final] workflow for leaks.

    Usage: heapleak analyze baseline.heapsnapshot target.heapsnapshot final.heapsnapshot

    Roles come from filenames (baseline/before, target/after, final) and
    otherwise from argument order.
    """
    config = _config_from_context(ctx, **_overrides(min_size, top_n, compute_retained))
    if not as_json:
        console.print(
            Panel(
                "[bold]Analyzing:[/bold] " + ", ".join(snapshot_paths),
                border_style="cyan",
                padding=(0, 1),
            )
        )
    result = _run_workflow(
        snapshot_paths, config, trace=not no_trace, workers=workers, announce=not as_json,
    )

    if as_json:
        _print_json(result.to_dict())
    else:
        if len(snapshot_paths) < 2:
            _warn("Leak classification needs at least a baseline and a target snapshot.")
        ReportGenerator(result, console).generate_terminal_report()

    if result.status is AnalysisStatus.failed:
        raise SystemExit(1)


# ============================================================================
# report
# ============================================================================


@cli.command()
@click.argument("snapshot_paths", nargs=-1, required=True, type=click.Path(exists=True))
@_analysis_options
@click.option(
    "--format", "-f",
    "report_format",
    type=click.Choice(["terminal", "markdown", "json"], case_sensitive=False),
    default="markdown",
    show_default=True,
    help="Report output format.",
)
@click.option(
    "--output", "-o",
    type=click.Path(),
    default=None,
    help="Output file path for markdown/json formats.",
)
@click.pass_context
def report(
    ctx: click.Context,
    snapshot_paths: Tuple[str, ...],
    min_size: Optional[int],
    top_n: Optional[int],
    compute_retained: Optional[bool],
    report_format: str,
    output: Optional[str],
) -> None:
    """Analyze snapshots and write a report.

    Usage: heapleak report before.heapsnapshot after.heapsnapshot --format json --output leaks.json
    """
    config = _config_from_context(ctx, **_overrides(min_size, top_n, compute_retained))
    result = _run_workflow(
        snapshot_paths, config, trace=True, workers=1, announce=report_format != "json",
    )
    result_path = ReportGenerator(result, console).generate_report(
        format=report_format, output_path=output,
    )
    if result_path:
        console.print(f"[bold green]Report saved to:[/bold green] {result_path}")


# ============================================================================
# trace
# ============================================================================


@cli.command()
@click.argument("snapshot_path", type=click.Path(exists=True))
@click.argument("node_ids", nargs=-1, required=True, type=int)
@click.option("--depth", type=int, default=None, help="Maximum retainer path length.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON instead of tables.")
@click.pass_context
def trace(
    ctx: click.Context,
    snapshot_path: str,
    node_ids: Tuple[int, ...],
    depth: Optional[int],
    as_json: bool,
) -> None:
    """Trace who retains the given objects and assess whether they leak.

    Usage: heapleak trace target.heapsnapshot 12345 67890
    """
    config = _config_from_context(ctx, trace_max_depth=depth)
    snapshot = _decode_file(snapshot_path, config)

    missing = [i for i in node_ids if i not in snapshot]
    assessments = RetainerTracer(config).assess_many(snapshot, node_ids)

    if as_json:
        _print_json(
            {
                "snapshot": snapshot.label,
                "missing": missing,
                "assessments": [a.to_dict() for a in assessments],
            }
        )
        if not assessments:
            ctx.exit(1)
        return

    for node_id in missing:
        _warn(f"Object @{node_id} is not in {snapshot_path}")
    if not assessments:
        _error("None of the requested objects were found.")
    generator = ReportGenerator(AnalysisResult(AnalysisStatus.ok, [], None, None), console)
    generator.print_traces(assessments)
    for assessment in assessments:
        console.print(
            Panel(
                f"{assessment.explanation}\n\n[bold]Fix:[/bold] {assessment.remediation}",
                title=f"@{assessment.node_id} {assessment.name or '(anonymous)'}",
                border_style="red" if assessment.is_likely_leak else "green",
                padding=(0, 1),
            )
        )
    console.print(summarize_assessments(assessments))


# ============================================================================
# config
# ============================================================================


@cli.command(name="config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective analysis thresholds as JSON."""
    _print_json(_config_from_context(ctx).to_dict())


# ============================================================================
# Entry point
# ============================================================================


def main() -> None:
    """Entry point for the CLI.

    This function exists so the CLI can also be invoked via
    ``python -m heapleak.cli.main``.
    """
    cli()


if __name__ == "__main__":
    main()
