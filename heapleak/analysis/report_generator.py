"""Report generation for heap leak analysis results.

Renders an :class:`~heapleak.analysis.pipeline.AnalysisResult` as a Rich
terminal report, a markdown document, or a structured JSON export.  The JSON
export carries every field of the result so downstream tooling can render
severity, confidence, implicated object ids and remediation text itself.
"""

from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from heapleak import __version__
from heapleak.analysis.growth_tracker import GrowthResult
from heapleak.analysis.leak_classifier import LeakFinding
from heapleak.analysis.pipeline import AnalysisResult, SnapshotReport
from heapleak.analysis.retainer_tracer import LeakAssessment
from heapleak.analysis.thresholds import Severity, format_bytes

logger = logging.getLogger(__name__)


# ============================================================================
# Severity colors
# ============================================================================

_SEVERITY_COLORS: Dict[Severity, str] = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "green",
}

# Rows shown per table in terminal and markdown output.
_TOP_ROWS: int = 10


def severity_color(severity: Severity) -> str:
    """Return a Rich style for *severity*."""
    return _SEVERITY_COLORS.get(severity, "white")


def _truncate(name: str, max_len: int = 60) -> str:
    if len(name) <= max_len:
        return name
    return name[: max_len - 3] + "..."


class ReportGenerator:
    """Render analysis results in several formats.

    Usage::

        result = analyze_snapshots({"baseline": raw_a, "target": raw_b})
        generator = ReportGenerator(result)
        generator.generate_report(format="terminal")
        generator.generate_report(format="markdown", output_path="leaks.md")
        generator.generate_report(format="json", output_path="leaks.json")
    """

    FORMATS = ("terminal", "markdown", "json")

    def __init__(self, result: AnalysisResult, console: Optional[Console] = None) -> None:
        self._result = result
        self._console = console or Console()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_report(
        self,
        format: str = "terminal",
        output_path: Optional[str] = None,
    ) -> Optional[str]:
        """Dispatch to the matching report method.

        Parameters
        ----------
        format:
            One of ``"terminal"``, ``"markdown"`` or ``"json"``.
        output_path:
            File path for markdown and JSON output.  Ignored for terminal.

        Returns
        -------
        str | None
            The written file path, or ``None`` for terminal output.

        Raises
        ------
        ValueError
            If *format* is not recognised.
        """
        fmt = format.lower().strip()
        if fmt == "terminal":
            self.generate_terminal_report()
            return None
        elif fmt == "markdown":
            output_path = output_path or "heapleak_report.md"
            self.write(output_path, self.generate_markdown())
            return output_path
        elif fmt == "json":
            output_path = output_path or "heapleak_report.json"
            self.write(output_path, self.generate_json())
            return output_path
        else:
            raise ValueError(
                f"Unknown report format {fmt!r}. "
                f"Expected one of: 'terminal', 'markdown', 'json'."
            )

    @staticmethod
    def write(output_path: str, text: str) -> None:
        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
        logger.info("Report written to %s", output_path)

    # ==================================================================
    # JSON report
    # ==================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {
                "tool": "heapleak",
                "version": __version__,
                "report_generated": datetime.datetime.now().isoformat(),
                "format_version": "1.0",
            },
            "analysis": self._result.to_dict(),
        }

    def generate_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    # ==================================================================
    # Markdown report
    # ==================================================================

    def generate_markdown(self) -> str:
        """Render the result as a markdown document."""
        result = self._result
        lines: List[str] = ["# Heap Leak Analysis", ""]
        lines.append(f"- Status: **{result.status.value}**")
        lines.append(f"- Snapshots analyzed: {len(result.snapshots)}")
        counts = result.severity_counts()
        lines.append(
            "- Findings: "
            + ", ".join(f"{counts[s.value]} {s.value}" for s in reversed(list(Severity)))
        )
        lines.append("")

        if result.errors:
            lines += ["## Errors", ""]
            for error in result.errors:
                lines.append(f"- `{error.role}` {error.label}: {error.message}")
            lines.append("")

        lines += ["## Findings", ""]
        if not result.findings:
            lines += ["No leak patterns detected.", ""]
        for finding in result.findings:
            lines += self._finding_markdown(finding)

        if result.classification and result.classification.diagnostics:
            lines += ["## Detector diagnostics", ""]
            for diag in result.classification.diagnostics:
                lines.append(f"- `{diag.detector}` failed: {diag.error}")
            lines.append("")

        if result.growth is not None and result.growth.records:
            lines += [
                "## Growing objects",
                "",
                "| Id | Name | Kind | Pattern | Start | Current | Growth |",
                "|---:|------|------|---------|------:|--------:|-------:|",
            ]
            for record in result.growth.records[:_TOP_ROWS]:
                lines.append(
                    f"| {record.id} | {_truncate(record.name or '(anonymous)', 40)} "
                    f"| {record.kind.value} | {record.pattern.value} "
                    f"| {format_bytes(record.start_size)} "
                    f"| {format_bytes(record.current_size)} "
                    f"| {format_bytes(record.total_growth)} |"
                )
            lines.append("")

        if result.traces:
            lines += ["## Retainer traces", ""]
            for assessment in result.traces:
                lines += self._trace_markdown(assessment)

        for report in result.snapshots:
            lines += self._snapshot_markdown(report)

        return "\n".join(lines).rstrip() + "\n"

    @staticmethod
    def _finding_markdown(finding: LeakFinding) -> List[str]:
        ids = ", ".join(str(i) for i in finding.node_ids[:_TOP_ROWS])
        if len(finding.node_ids) > _TOP_ROWS:
            ids += f", ... ({len(finding.node_ids)} total)"
        return [
            f"### [{finding.severity.value}] {finding.title}",
            "",
            f"- Category: `{finding.category.value}`",
            f"- Confidence: {finding.confidence:.0f}%",
            f"- Objects: {ids}",
            "",
            finding.description,
            "",
            f"**Fix:** {finding.remediation}",
            "",
        ]

    @staticmethod
    def _trace_markdown(assessment: LeakAssessment) -> List[str]:
        verdict = "likely leak" if assessment.is_likely_leak else "probably fine"
        return [
            f"- **@{assessment.node_id} {assessment.name or '(anonymous)'}** "
            f"({assessment.kind}, {format_bytes(assessment.retained_size)}): "
            f"{verdict}, {assessment.confidence:.0f}% confidence",
            f"  - Path: `{assessment.path.describe()}`",
            f"  - {assessment.remediation}",
        ]

    @staticmethod
    def _snapshot_markdown(report: SnapshotReport) -> List[str]:
        title = report.label or report.role or "snapshot"
        lines = [
            f"## Snapshot: {title}",
            "",
            f"- Nodes: {report.summary.get('node_count', 0)}, "
            f"edges: {report.summary.get('edge_count', 0)}, "
            f"size mode: {report.summary.get('size_mode', '')}",
            "",
            "| Rank | Id | Name | Kind | Retained | % | Significance |",
            "|-----:|---:|------|------|---------:|--:|--------------|",
        ]
        for obj in report.size_rank.objects[:_TOP_ROWS]:
            lines.append(
                f"| {obj.rank} | {obj.node_id} | {_truncate(obj.name or '(anonymous)', 40)} "
                f"| {obj.kind} | {format_bytes(obj.retained_size)} "
                f"| {obj.size_percentage:.1f} | {obj.significance.value} |"
            )
        lines.append("")
        wasteful = report.shapes.wasteful_shapes[:_TOP_ROWS]
        if wasteful:
            lines += ["| Shape | Count | Total | Wasted |", "|-------|------:|------:|-------:|"]
            for shape in wasteful:
                lines.append(
                    f"| `{_truncate(shape.shape_key, 50)}` | {shape.count} "
                    f"| {format_bytes(shape.total_size)} | {format_bytes(shape.wasted_memory)} |"
                )
            lines.append("")
        if report.detached.detached:
            lines.append(
                f"Detached objects: {len(report.detached.detached)} "
                f"({format_bytes(report.detached.total_detached_size)})"
            )
            lines.append("")
        duplicated = report.strings.top_by_size[:_TOP_ROWS]
        if duplicated:
            lines += [
                f"Duplicated string copies: {report.strings.duplicated_strings}, "
                f"{format_bytes(report.strings.wasted_memory)} wasted",
                "",
                "| Content | Count | Wasted |",
                "|---------|------:|-------:|",
            ]
            for record in duplicated:
                content = _truncate(record.content, 50).replace("|", "\\|")
                lines.append(
                    f"| `{content}` | {record.count} | {format_bytes(record.wasted_memory)} |"
                )
            lines.append("")
        suspicious = report.global_vars.suspicious[:_TOP_ROWS]
        if suspicious:
            lines += ["| Global | Type | Retained | Severity |", "|--------|------|---------:|----------|"]
            for variable in suspicious:
                lines.append(
                    f"| `{variable.name}` | {_truncate(variable.type_name, 40)} "
                    f"| {format_bytes(variable.retained_size)} | {variable.severity.value} |"
                )
            lines.append("")
        for stale in report.stale_collections.collections[:_TOP_ROWS]:
            lines.append(
                f"- Stale entries in **{stale.name}** ({stale.collection_type}): "
                f"{stale.stale_count}/{stale.entry_count}, "
                f"{format_bytes(stale.stale_retained_size)}. {stale.suggested_fix}"
            )
        if report.stale_collections.collections:
            lines.append("")
        return lines

    # ==================================================================
    # Terminal report
    # ==================================================================

    def generate_terminal_report(self) -> None:
        console = self._console
        result = self._result

        header = Text()
        header.append("heapleak", style="bold magenta")
        header.append(" - Heap Leak Analysis", style="bold white")
        console.print()
        console.print(Panel(header, border_style="magenta", padding=(1, 2)))

        for error in result.errors:
            console.print(
                f"[bold red]Snapshot failed:[/bold red] {error.role} {error.label}: {error.message}"
            )

        for report in result.snapshots:
            self.print_snapshot(report)

        self.print_findings(result.findings)

        if result.growth is not None and result.growth.records:
            self._print_growth_table(result.growth)

        if result.traces:
            self.print_traces(result.traces)

        counts = result.severity_counts()
        summary = Text()
        summary.append(f"{len(result.findings)} finding(s): ")
        summary.append(
            ", ".join(f"{counts[s.value]} {s.value}" for s in reversed(list(Severity)))
        )
        console.print(
            Panel(summary, title="[bold]Summary[/bold]", border_style="cyan", padding=(1, 2))
        )
        console.print()

    def print_snapshot(self, report: SnapshotReport) -> None:
        console = self._console
        title = report.label or report.role or "snapshot"
        table = Table(
            title=f"Largest objects: {title}",
            box=box.ROUNDED,
            show_lines=False,
            title_style="bold",
        )
        table.add_column("#", justify="right", style="dim")
        table.add_column("Id", justify="right")
        table.add_column("Name")
        table.add_column("Kind", style="dim")
        table.add_column("Retained", justify="right")
        table.add_column("%", justify="right")
        table.add_column("Significance")
        for obj in report.size_rank.objects[:_TOP_ROWS]:
            table.add_row(
                str(obj.rank),
                str(obj.node_id),
                _truncate(obj.name or "(anonymous)"),
                obj.kind,
                format_bytes(obj.retained_size),
                f"{obj.size_percentage:.1f}",
                Text(obj.significance.value, style=severity_color(obj.significance)),
            )
        console.print(table)

        wasteful = report.shapes.wasteful_shapes[:_TOP_ROWS]
        if wasteful:
            shapes = Table(title="Duplicated shapes", box=box.ROUNDED, title_style="bold")
            shapes.add_column("Shape")
            shapes.add_column("Count", justify="right")
            shapes.add_column("Total", justify="right")
            shapes.add_column("Wasted", justify="right", style="yellow")
            for shape in wasteful:
                shapes.add_row(
                    _truncate(shape.shape_key),
                    str(shape.count),
                    format_bytes(shape.total_size),
                    format_bytes(shape.wasted_memory),
                )
            console.print(shapes)

        suspicious = report.fanout.suspicious[:_TOP_ROWS]
        if suspicious:
            fanout = Table(title="High fan-out objects", box=box.ROUNDED, title_style="bold")
            fanout.add_column("Id", justify="right")
            fanout.add_column("Name")
            fanout.add_column("Refs", justify="right")
            fanout.add_column("Severity")
            fanout.add_column("Tags", style="dim")
            for record in suspicious:
                fanout.add_row(
                    str(record.node_id),
                    _truncate(record.name or "(anonymous)"),
                    str(record.fanout),
                    Text(record.severity.value, style=severity_color(record.severity)),
                    ", ".join(record.suspicious_tags),
                )
            console.print(fanout)

        if report.detached.detached:
            console.print(
                f"[yellow]{len(report.detached.detached)} detached object(s) "
                f"retaining {format_bytes(report.detached.total_detached_size)}[/yellow]"
            )

        duplicated = report.strings.top_by_size[:_TOP_ROWS]
        if duplicated:
            strings = Table(title="Duplicate strings", box=box.ROUNDED, title_style="bold")
            strings.add_column("Content")
            strings.add_column("Count", justify="right")
            strings.add_column("Total", justify="right")
            strings.add_column("Wasted", justify="right", style="yellow")
            for record in duplicated:
                strings.add_row(
                    _truncate(record.content),
                    str(record.count),
                    format_bytes(record.total_size),
                    format_bytes(record.wasted_memory),
                )
            console.print(strings)

        suspicious_globals = report.global_vars.suspicious[:_TOP_ROWS]
        if suspicious_globals:
            globals_table = Table(title="Large globals", box=box.ROUNDED, title_style="bold")
            globals_table.add_column("Name")
            globals_table.add_column("Type", style="dim")
            globals_table.add_column("Retained", justify="right")
            globals_table.add_column("Severity")
            for variable in suspicious_globals:
                globals_table.add_row(
                    _truncate(variable.name),
                    _truncate(variable.type_name, 40),
                    format_bytes(variable.retained_size),
                    Text(variable.severity.value, style=severity_color(variable.severity)),
                )
            console.print(globals_table)

        stale_collections = report.stale_collections.collections[:_TOP_ROWS]
        if stale_collections:
            stale_table = Table(title="Stale collections", box=box.ROUNDED, title_style="bold")
            stale_table.add_column("Id", justify="right")
            stale_table.add_column("Name")
            stale_table.add_column("Type", style="dim")
            stale_table.add_column("Stale", justify="right")
            stale_table.add_column("Retained", justify="right")
            stale_table.add_column("Severity")
            for stale in stale_collections:
                stale_table.add_row(
                    str(stale.node_id),
                    _truncate(stale.name),
                    stale.collection_type,
                    f"{stale.stale_count}/{stale.entry_count}",
                    format_bytes(stale.stale_retained_size),
                    Text(stale.severity.value, style=severity_color(stale.severity)),
                )
            console.print(stale_table)
        console.print()

    def print_findings(self, findings: List[LeakFinding]) -> None:
        console = self._console
        if not findings:
            console.print("[green]No leak patterns detected.[/green]")
            console.print()
            return
        for finding in findings:
            body = Text()
            body.append(finding.description + "\n\n")
            body.append("Fix: ", style="bold")
            body.append(finding.remediation + "\n")
            body.append(
                f"Objects: {', '.join(str(i) for i in finding.node_ids[:_TOP_ROWS])}",
                style="dim",
            )
            color = severity_color(finding.severity)
            console.print(
                Panel(
                    body,
                    title=(
                        f"[{color}]{finding.severity.value}[/{color}] {finding.title} "
                        f"[dim]({finding.confidence:.0f}% confidence)[/dim]"
                    ),
                    border_style=color.replace("bold ", ""),
                    padding=(0, 1),
                )
            )
        console.print()

    def print_traces(self, traces: List[LeakAssessment]) -> None:
        table = Table(title="Retainer traces", box=box.ROUNDED, title_style="bold")
        table.add_column("Id", justify="right")
        table.add_column("Object")
        table.add_column("Root")
        table.add_column("Path")
        table.add_column("Leak?", justify="center")
        table.add_column("Confidence", justify="right")
        for assessment in traces:
            table.add_row(
                str(assessment.node_id),
                _truncate(assessment.name or "(anonymous)", 30),
                assessment.path.root_kind.value,
                _truncate(assessment.path.describe(), 70),
                "[red]yes[/red]" if assessment.is_likely_leak else "[green]no[/green]",
                f"{assessment.confidence:.0f}%",
            )
        self._console.print(table)
        self._console.print()

    def _print_growth_table(self, growth: GrowthResult) -> None:
        table = Table(title="Growing objects", box=box.ROUNDED, title_style="bold")
        table.add_column("Id", justify="right")
        table.add_column("Name")
        table.add_column("Pattern")
        table.add_column("Start", justify="right")
        table.add_column("Current", justify="right")
        table.add_column("Growth", justify="right", style="red")
        for record in growth.records[:_TOP_ROWS]:
            table.add_row(
                str(record.id),
                _truncate(record.name or "(anonymous)"),
                record.pattern.value,
                format_bytes(record.start_size),
                format_bytes(record.current_size),
                format_bytes(record.total_growth),
            )
        self._console.print(table)
        self._console.print()
