"""End-to-end analysis of one or more snapshots.

:func:`analyze_snapshots` is the entry point reporting collaborators call.
It always returns an :class:`AnalysisResult`: a snapshot that fails to decode
is recorded as an error on the result and the remaining snapshots are still
analyzed.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from heapleak.analysis.detached_analyzer import DetachedAnalyzer, DetachedResult
from heapleak.analysis.fanout_analyzer import FanoutAnalyzer, FanoutResult
from heapleak.analysis.global_analyzer import GlobalAnalysisResult, GlobalAnalyzer
from heapleak.analysis.growth_tracker import GrowthResult, GrowthTracker
from heapleak.analysis.leak_classifier import (
    ClassificationResult,
    LeakClassifier,
    LeakFinding,
    LeakSignals,
)
from heapleak.analysis.retainer_tracer import LeakAssessment, RetainerTracer
from heapleak.analysis.shape_analyzer import ShapeAnalysisResult, ShapeAnalyzer
from heapleak.analysis.size_rank import SizeRankAnalyzer, SizeRankResult
from heapleak.analysis.stale_collection_analyzer import (
    StaleCollectionAnalyzer,
    StaleCollectionResult,
)
from heapleak.analysis.string_analyzer import StringAnalysisResult, StringAnalyzer
from heapleak.analysis.thresholds import Severity
from heapleak.config import AnalysisConfig
from heapleak.errors import MalformedSnapshot
from heapleak.snapshot.decoder import decode_snapshot
from heapleak.snapshot.model import HeapSnapshot

logger = logging.getLogger(__name__)

# Findings whose first implicated objects get a retainer trace.
_TRACED_IDS_PER_FINDING: int = 3


# ============================================================================
# Enums
# ============================================================================


class SnapshotRole(str, Enum):
    """Position of a snapshot in a capture workflow."""

    baseline = "baseline"
    target = "target"
    final = "final"

    @classmethod
    def parse(cls, value: Union[str, SnapshotRole]) -> SnapshotRole:
        if isinstance(value, SnapshotRole):
            return value
        key = str(value).strip().lower()
        return _ROLE_ALIASES.get(key) or cls(key)


_ROLE_ALIASES: Dict[str, SnapshotRole] = {
    "before": SnapshotRole.baseline,
    "after": SnapshotRole.target,
}

_ROLE_ORDER = (SnapshotRole.baseline, SnapshotRole.target, SnapshotRole.final)


class AnalysisStatus(str, Enum):
    ok = "ok"
    partial = "partial"
    failed = "failed"


# ============================================================================
# Data classes
# ============================================================================


@dataclass
class SnapshotInput:
    """A raw snapshot document (or an already decoded one) and its role."""

    role: SnapshotRole
    source: Union[Mapping[str, Any], HeapSnapshot]
    label: str = ""


@dataclass
class SnapshotError:
    label: str
    role: str
    message: str

    def to_dict(self) -> Dict[str, object]:
        return {"label": self.label, "role": self.role, "message": self.message}


@dataclass
class SnapshotReport:
    """Single-snapshot analyzer outputs for one decoded snapshot."""

    label: str
    role: str
    summary: Dict[str, object]
    size_rank: SizeRankResult
    shapes: ShapeAnalysisResult
    fanout: FanoutResult
    detached: DetachedResult
    strings: StringAnalysisResult
    global_vars: GlobalAnalysisResult
    stale_collections: StaleCollectionResult
    diagnostics: List[Dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "label": self.label,
            "role": self.role,
            "summary": dict(self.summary),
            "size_rank": self.size_rank.to_dict(),
            "shapes": self.shapes.to_dict(),
            "fanout": self.fanout.to_dict(),
            "detached": self.detached.to_dict(),
            "strings": self.strings.to_dict(),
            "globals": self.global_vars.to_dict(),
            "stale_collections": self.stale_collections.to_dict(),
            "diagnostics": list(self.diagnostics),
        }


@dataclass
class AnalysisResult:
    """Everything a reporting collaborator needs to render an analysis run."""

    status: AnalysisStatus
    snapshots: List[SnapshotReport]
    growth: Optional[GrowthResult]
    classification: Optional[ClassificationResult]
    traces: List[LeakAssessment] = field(default_factory=list)
    errors: List[SnapshotError] = field(default_factory=list)
    config: Dict[str, object] = field(default_factory=dict)

    @property
    def findings(self) -> List[LeakFinding]:
        return list(self.classification.findings) if self.classification else []

    def severity_counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "snapshots": [s.to_dict() for s in self.snapshots],
            "growth": self.growth.to_dict() if self.growth else None,
            "classification": self.classification.to_dict() if self.classification else None,
            "findings": [f.to_dict() for f in self.findings],
            "severity_counts": self.severity_counts(),
            "traces": [t.to_dict() for t in self.traces],
            "errors": [e.to_dict() for e in self.errors],
            "config": dict(self.config),
        }


# ============================================================================
# Single snapshot
# ============================================================================


def analyze_snapshot(
    snapshot: HeapSnapshot,
    config: Optional[AnalysisConfig] = None,
    role: str = "",
) -> SnapshotReport:
    """Run every single-snapshot analyzer over *snapshot*."""
    config = config or AnalysisConfig()
    detached = DetachedAnalyzer(config).analyze(snapshot)
    return SnapshotReport(
        label=snapshot.label,
        role=role,
        summary=snapshot.summary(),
        size_rank=SizeRankAnalyzer(config).analyze(snapshot),
        shapes=ShapeAnalyzer(config).analyze(snapshot),
        fanout=FanoutAnalyzer(config).analyze(snapshot),
        detached=detached,
        strings=StringAnalyzer(config).analyze(snapshot),
        global_vars=GlobalAnalyzer(config).analyze(snapshot),
        stale_collections=StaleCollectionAnalyzer(config).analyze(
            snapshot, detached.detached_ids,
        ),
        diagnostics=[d.to_dict() for d in snapshot.diagnostics[:100]],
    )


def _decode(item: SnapshotInput, config: AnalysisConfig) -> HeapSnapshot:
    if isinstance(item.source, HeapSnapshot):
        return item.source
    return decode_snapshot(
        item.source,
        label=item.label,
        compute_retained_sizes=config.compute_retained_sizes,
        chunk_size=config.chunk_size,
    )


def _normalize_inputs(
    inputs: Union[Sequence[SnapshotInput], Mapping[str, Any]],
) -> List[SnapshotInput]:
    if isinstance(inputs, Mapping):
        items = [
            SnapshotInput(role=SnapshotRole.parse(role), source=source, label=str(role))
            for role, source in inputs.items()
        ]
    else:
        items = list(inputs)
    seen = set()
    for item in items:
        if item.role in seen:
            raise ValueError(f"Duplicate snapshot role: {item.role.value}")
        seen.add(item.role)
    items.sort(key=lambda i: _ROLE_ORDER.index(i.role))
    return items


# ============================================================================
# Multi snapshot
# ============================================================================


def analyze_snapshots(
    inputs: Union[Sequence[SnapshotInput], Mapping[str, Any]],
    config: Optional[AnalysisConfig] = None,
    trace_findings: bool = True,
    max_workers: int = 1,
) -> AnalysisResult:
    """Decode and analyze a baseline/target[/final] workflow.

    Parameters
    ----------
    inputs:
        Snapshot inputs with resolved roles, or a ``{role: raw_document}``
        mapping (``before``/``after`` are accepted for baseline/target).
    config:
        Thresholds; defaults to :class:`AnalysisConfig`.
    trace_findings:
        Attach a retainer trace for the leading objects of each finding.
    max_workers:
        Threads used to decode and analyze snapshots independently.

    Returns
    -------
    AnalysisResult
        Always returned.  Structural decode failures are listed in
        ``errors``; the classifier runs only when a baseline and a target
        both decoded.
    """
    config = config or AnalysisConfig()
    items = _normalize_inputs(inputs)

    def work(item: SnapshotInput) -> Union[HeapSnapshot, SnapshotError]:
        try:
            return _decode(item, config)
        except MalformedSnapshot as exc:
            logger.error("Cannot decode %s snapshot %s: %s", item.role.value, item.label, exc)
            return SnapshotError(item.label, item.role.value, str(exc))

    if max_workers > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(work, items))
    else:
        outcomes = [work(item) for item in items]

    decoded: Dict[SnapshotRole, HeapSnapshot] = {}
    errors: List[SnapshotError] = []
    for item, outcome in zip(items, outcomes):
        if isinstance(outcome, SnapshotError):
            errors.append(outcome)
        else:
            decoded[item.role] = outcome

    if max_workers > 1 and len(decoded) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            reports = list(
                pool.map(lambda r: analyze_snapshot(decoded[r], config, r.value), list(decoded))
            )
    else:
        reports = [analyze_snapshot(decoded[r], config, r.value) for r in decoded]
    report_by_role = dict(zip(decoded, reports))

    ordered = [decoded[r] for r in _ROLE_ORDER if r in decoded]
    growth: Optional[GrowthResult] = None
    if ordered:
        tracker = GrowthTracker(config)
        for snapshot in ordered:
            tracker.feed(snapshot)
        growth = tracker.finish()

    classification: Optional[ClassificationResult] = None
    traces: List[LeakAssessment] = []
    baseline = decoded.get(SnapshotRole.baseline)
    target = decoded.get(SnapshotRole.target)
    final = decoded.get(SnapshotRole.final)
    if baseline is not None and target is not None:
        roles = [r for r in _ROLE_ORDER if r in decoded]
        signals = LeakSignals.build(
            baseline,
            target,
            final,
            config,
            growth=growth,
            shapes=[report_by_role[r].shapes for r in roles],
            detached=[report_by_role[r].detached for r in roles],
        )
        classification = LeakClassifier(config).classify(signals)
        if trace_findings:
            traces = _trace_findings(classification, final or target, config)
    elif len(items) >= 2:
        logger.warning("Classification skipped: a baseline and a target snapshot are required.")

    if not decoded:
        status = AnalysisStatus.failed
    elif errors:
        status = AnalysisStatus.partial
    else:
        status = AnalysisStatus.ok

    return AnalysisResult(
        status=status,
        snapshots=[report_by_role[r] for r in _ROLE_ORDER if r in report_by_role],
        growth=growth,
        classification=classification,
        traces=traces,
        errors=errors,
        config=config.to_dict(),
    )


def _trace_findings(
    classification: ClassificationResult,
    snapshot: HeapSnapshot,
    config: AnalysisConfig,
) -> List[LeakAssessment]:
    ids: List[int] = []
    for finding in classification.findings:
        ids.extend(i for i in finding.node_ids[:_TRACED_IDS_PER_FINDING] if i in snapshot)
    if not ids:
        return []
    return RetainerTracer(config).assess_many(snapshot, dict.fromkeys(ids))
