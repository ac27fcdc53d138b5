"""Composite leak-pattern classifier.

Fuses the single-snapshot analyzers, the baseline -> target (-> final)
snapshot diffs and the growth tracker into scored :class:`LeakFinding`
objects.

Each detector is a pure function ``(LeakSignals) -> Optional[LeakFinding]``
registered in an ordered list.  A detector evaluates several independent
signals, each worth a fixed number of confidence points; it only emits a
finding when at least :data:`MIN_SIGNALS` of them fire, so one weak signal
can never produce a finding on its own.  Confidence is ``base + sum of fired
weights`` clamped to [10, 100]; severity comes from the absolute byte and
object-count deltas the detector measured and is independent of confidence.

A detector that raises is recorded as a zero-confidence
:class:`DetectorDiagnostic` and contributes no finding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
)

from heapleak.analysis.detached_analyzer import DetachedAnalyzer, DetachedResult
from heapleak.analysis.growth_tracker import (
    GrowthPattern,
    GrowthResult,
    GrowthStatus,
    track_snapshots,
)
from heapleak.analysis.shape_analyzer import ShapeAnalysisResult, ShapeAnalyzer
from heapleak.analysis.snapshot_diff import SnapshotDiff, diff_snapshots
from heapleak.analysis.thresholds import (
    Severity,
    clamp_confidence,
    format_bytes,
    severity_from_delta,
)
from heapleak.config import AnalysisConfig, KB, MB
from heapleak.snapshot.filters import DETACHED_PREFIX, clean_global_name
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind

logger = logging.getLogger(__name__)

# Fired signals required before a detector reports anything.
MIN_SIGNALS: int = 2

# Node ids attached to a single finding.
_MAX_IMPLICATED: int = 100

_TIMER_FRAGMENTS = ("timer", "interval", "timeout", "schedule")
_LISTENER_FRAGMENTS = ("listener", "eventhandler", "observer", "subscription", "subscriber")
_GLOBAL_HOLDER_FRAGMENTS = ("window", "global")
_ACCUMULATOR_FRAGMENTS = ("archive", "cache", "store", "buffer", "pool", "registry", "manager")
_COLLECTION_NAMES = frozenset({"Array", "Map", "Set", "WeakMap", "WeakSet"})
_COLLECTION_FRAGMENTS = ("list", "queue", "collection", "array", "history", "log")


# ============================================================================
# Enums
# ============================================================================


class LeakCategory(str, Enum):
    """Leak pattern a finding belongs to."""

    timer_retention = "timer-retention"
    detached_dom = "detached-dom"
    global_accumulation = "global-accumulation"
    shape_duplication = "shape-duplication"
    collection_growth = "collection-growth"
    closure_retention = "closure-retention"
    listener_accumulation = "listener-accumulation"
    object_growth = "object-growth"
    large_allocation = "large-allocation"


REMEDIATION: Dict[LeakCategory, str] = {
    LeakCategory.timer_retention: (
        "Clear timers when their owner goes away: keep the handle returned by "
        "setInterval/setTimeout and call clearInterval/clearTimeout in the "
        "teardown path (component unmount, dispose, route change)."
    ),
    LeakCategory.detached_dom: (
        "Drop references to removed elements: clear caches, component fields "
        "and closures that still point at them, and remove their event "
        "listeners before detaching them from the document."
    ),
    LeakCategory.global_accumulation: (
        "Bound global caches and registries: add eviction (LRU/TTL), use "
        "WeakMap/WeakRef for object keys, and clear entries when the owning "
        "feature is torn down."
    ),
    LeakCategory.shape_duplication: (
        "Many identical objects are alive: reuse a shared instance, intern "
        "repeated data, or release the copies once processed."
    ),
    LeakCategory.collection_growth: (
        "A collection keeps gaining entries: cap its length, remove items "
        "when they are consumed, or replace it with a bounded structure."
    ),
    LeakCategory.closure_retention: (
        "Closures are created and kept alive: unsubscribe callbacks, avoid "
        "capturing large scopes, and release handlers stored in long-lived "
        "objects."
    ),
    LeakCategory.listener_accumulation: (
        "Listeners accumulate: pair every addEventListener/subscribe with a "
        "removeEventListener/unsubscribe, or use an AbortController signal."
    ),
    LeakCategory.object_growth: (
        "An object grows in every snapshot: inspect what it owns (arrays, "
        "maps, caches) and add a size bound or cleanup."
    ),
    LeakCategory.large_allocation: (
        "A large new allocation survived: release the buffer or payload after "
        "use, or stream it instead of holding it whole."
    ),
}


# ============================================================================
# Data classes
# ============================================================================


class Signal(NamedTuple):
    """One independent piece of evidence and its confidence weight."""

    name: str
    fired: bool
    weight: float


@dataclass(frozen=True)
class LeakFinding:
    """A scored, categorised leak diagnosis."""

    category: LeakCategory
    severity: Severity
    confidence: float
    node_ids: Tuple[int, ...]
    title: str
    description: str
    remediation: str
    detector: str = ""
    signals: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "node_ids": list(self.node_ids),
            "title": self.title,
            "description": self.description,
            "remediation": self.remediation,
            "detector": self.detector,
            "signals": list(self.signals),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LeakFinding:
        return cls(
            category=LeakCategory(data.get("category", "object-growth")),
            severity=Severity(data.get("severity", "LOW")),
            confidence=float(data.get("confidence", 10.0)),
            node_ids=tuple(int(i) for i in data.get("node_ids", [])),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            remediation=str(data.get("remediation", "")),
            detector=str(data.get("detector", "")),
            signals=tuple(str(s) for s in data.get("signals", [])),
        )


@dataclass(frozen=True)
class DetectorDiagnostic:
    """A detector that failed during classification."""

    detector: str
    error: str
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {"detector": self.detector, "error": self.error, "confidence": self.confidence}


@dataclass
class ClassificationResult:
    findings: List[LeakFinding]
    diagnostics: List[DetectorDiagnostic] = field(default_factory=list)
    detectors_run: List[str] = field(default_factory=list)

    def by_category(self, category: LeakCategory) -> List[LeakFinding]:
        return [f for f in self.findings if f.category is category]

    def to_dict(self) -> Dict[str, object]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "detectors_run": list(self.detectors_run),
        }


@dataclass
class LeakSignals:
    """Everything detectors read, derived once per classification run."""

    config: AnalysisConfig
    baseline: HeapSnapshot
    target: HeapSnapshot
    final: Optional[HeapSnapshot]
    diff: SnapshotDiff
    final_diff: Optional[SnapshotDiff]
    growth: GrowthResult
    baseline_shapes: ShapeAnalysisResult
    target_shapes: ShapeAnalysisResult
    baseline_detached: DetachedResult
    target_detached: DetachedResult
    final_detached: Optional[DetachedResult] = None

    @classmethod
    def build(
        cls,
        baseline: HeapSnapshot,
        target: HeapSnapshot,
        final: Optional[HeapSnapshot] = None,
        config: Optional[AnalysisConfig] = None,
        growth: Optional[GrowthResult] = None,
        shapes: Optional[Sequence[ShapeAnalysisResult]] = None,
        detached: Optional[Sequence[DetachedResult]] = None,
    ) -> LeakSignals:
        """Compute the diffs and analyzer outputs detectors depend on.

        *shapes* and *detached* may carry already-computed results, one per
        snapshot in ``(baseline, target[, final])`` order.
        """
        config = config or AnalysisConfig()
        ordered = [baseline, target] + ([final] if final is not None else [])
        if growth is None:
            growth = track_snapshots(ordered, config)
        if shapes is None:
            shape_analyzer = ShapeAnalyzer(config)
            shapes = [shape_analyzer.analyze(s) for s in ordered[:2]]
        if detached is None:
            detached_analyzer = DetachedAnalyzer(config)
            detached = [detached_analyzer.analyze(s) for s in ordered]
        return cls(
            config=config,
            baseline=baseline,
            target=target,
            final=final,
            diff=diff_snapshots(baseline, target, config),
            final_diff=diff_snapshots(target, final, config) if final is not None else None,
            growth=growth,
            baseline_shapes=shapes[0],
            target_shapes=shapes[1],
            baseline_detached=detached[0],
            target_detached=detached[1],
            final_detached=detached[2] if len(detached) > 2 else None,
        )

    def surviving_in_final(self, node_ids: Iterable[int]) -> int:
        """How many of *node_ids* are still present in the final snapshot."""
        if self.final is None:
            return 0
        return sum(1 for node_id in node_ids if node_id in self.final)


def _lower(node: HeapNode) -> str:
    return node.name.lower()


def is_timer_name(name: str) -> bool:
    lowered = name.lower()
    return any(f in lowered for f in _TIMER_FRAGMENTS) or "TimerTask" in name


def is_listener_name(name: str) -> bool:
    lowered = name.lower()
    return any(f in lowered for f in _LISTENER_FRAGMENTS)


def is_collection_like(kind: str, name: str) -> bool:
    if kind == NodeKind.array.value or clean_global_name(name) in _COLLECTION_NAMES:
        return True
    lowered = name.lower()
    return any(f in lowered for f in _COLLECTION_FRAGMENTS)


def _make_finding(
    category: LeakCategory,
    detector: str,
    base: float,
    signals: Sequence[Signal],
    node_ids: Iterable[int],
    severity: Severity,
    title: str,
    description: str,
) -> Optional[LeakFinding]:
    fired = [s for s in signals if s.fired]
    ids = tuple(dict.fromkeys(node_ids))[:_MAX_IMPLICATED]
    if len(fired) < MIN_SIGNALS or not ids:
        return None
    return LeakFinding(
        category=category,
        severity=severity,
        confidence=clamp_confidence(base + sum(s.weight for s in fired)),
        node_ids=ids,
        title=title,
        description=description,
        remediation=REMEDIATION[category],
        detector=detector,
        signals=tuple(s.name for s in fired),
    )


# ============================================================================
# Detectors
# ============================================================================


def detect_timer_retention(signals: LeakSignals) -> Optional[LeakFinding]:
    """Many new timer-named objects relative to everything allocated."""
    new_nodes = signals.diff.new_nodes
    timers = [n for n in new_nodes if is_timer_name(n.name)]
    if not timers:
        return None
    ratio = len(timers) / len(new_nodes)
    timer_bytes = sum(n.retained_size for n in timers)
    average = timer_bytes / len(timers)
    surviving = signals.surviving_in_final(n.id for n in timers)
    checks = [
        Signal("timer share of new objects > 10%", ratio > 0.1, 20),
        Signal("more than 1000 new timer objects", len(timers) > 1000, 15),
        Signal("average timer object >= 1 KB", average >= KB, 10),
        Signal("timer share of new objects > 50%", ratio > 0.5, 10),
        Signal("timers survive into final snapshot", surviving > len(timers) // 2, 10),
    ]
    timers.sort(key=lambda n: (-n.retained_size, n.id))
    return _make_finding(
        LeakCategory.timer_retention,
        "timer_retention",
        40,
        checks,
        (n.id for n in timers),
        severity_from_delta(timer_bytes, len(timers)),
        f"{len(timers)} new timer objects retained",
        f"{len(timers)} of {len(new_nodes)} new objects ({ratio:.0%}) are timer-related, "
        f"holding {format_bytes(timer_bytes)} (average {format_bytes(average)}).",
    )


def detect_detached_dom(signals: LeakSignals) -> Optional[LeakFinding]:
    """Detached DOM nodes that appeared between baseline and target."""
    before = signals.baseline_detached.detached_ids
    new = [d for d in signals.target_detached.detached if d.node_id not in before]
    if not new:
        return None
    size = sum(d.retained_size for d in new)
    groups: Dict[str, int] = {}
    for d in new:
        groups[d.name] = groups.get(d.name, 0) + 1
    marked = sum(1 for d in new if d.name.startswith(DETACHED_PREFIX))
    persisted = False
    if signals.final_detached is not None:
        final_ids = signals.final_detached.detached_ids
        persisted = sum(1 for d in new if d.node_id in final_ids) > len(new) // 2
    checks = [
        Signal("10 or more newly detached nodes", len(new) >= 10, 20),
        Signal("newly detached nodes retain >= 1 MB", size >= MB, 15),
        Signal("runtime marked nodes as detached", marked > 0, 10),
        Signal("10 or more detached nodes share a name", max(groups.values()) >= 10, 10),
        Signal("detached nodes persist into final snapshot", persisted, 15),
    ]
    return _make_finding(
        LeakCategory.detached_dom,
        "detached_dom",
        40,
        checks,
        (d.node_id for d in new),
        severity_from_delta(size, len(new)),
        f"{len(new)} newly detached DOM nodes",
        f"{len(new)} DOM nodes became unreachable from the document but are still "
        f"retained ({format_bytes(size)}).",
    )


def detect_global_accumulation(signals: LeakSignals) -> Optional[LeakFinding]:
    """Objects hanging off window/global that keep growing."""
    baseline, target = signals.baseline, signals.target
    grown = {g.node_id: g for g in signals.diff.grown}
    final_grown = (
        {g.node_id: g for g in signals.final_diff.grown} if signals.final_diff else {}
    )
    best: Optional[List[Signal]] = None
    best_score = -1.0
    implicated: List[int] = []
    total_bytes = 0
    total_entries = 0

    for holder in target.nodes:
        if holder.index == 0 or not any(f in _lower(holder) for f in _GLOBAL_HOLDER_FRAGMENTS):
            continue
        for edge in target.outgoing(holder.index):
            if edge.kind is not EdgeKind.property:
                continue
            change = grown.get(edge.to_id)
            if change is None or edge.to_id not in baseline:
                continue
            label = f"{edge.name or ''} {change.name}".lower()
            checks = [
                Signal("global property gained >= 100 references", change.fanout_delta >= 100, 20),
                Signal("global property grew >= 1 MB", change.size_delta >= MB, 20),
                Signal(
                    "global property named like an accumulator",
                    any(f in label for f in _ACCUMULATOR_FRAGMENTS),
                    15,
                ),
                Signal("growth continues into final snapshot", edge.to_id in final_grown, 10),
            ]
            fired = [c for c in checks if c.fired]
            if len(fired) < MIN_SIGNALS:
                continue
            implicated.append(edge.to_id)
            total_bytes += max(0, change.size_delta)
            total_entries += max(0, change.fanout_delta)
            score = sum(c.weight for c in fired)
            if score > best_score:
                best, best_score = checks, score

    if best is None:
        return None
    return _make_finding(
        LeakCategory.global_accumulation,
        "global_accumulation",
        40,
        best,
        implicated,
        severity_from_delta(total_bytes, total_entries),
        f"{len(implicated)} global object(s) accumulating data",
        f"Objects reachable directly from a global gained {total_entries} references "
        f"and {format_bytes(total_bytes)} between snapshots.",
    )


def detect_shape_duplication(signals: LeakSignals) -> Optional[LeakFinding]:
    """Shapes whose duplicate count jumped between baseline and target."""
    before = {s.shape_key: s for s in signals.baseline_shapes.shapes}
    candidates = []
    for shape in signals.target_shapes.shapes:
        if not shape.is_wasteful:
            continue
        prev = before.get(shape.shape_key)
        prev_count = prev.count if prev else 0
        prev_wasted = prev.wasted_memory if prev else 0
        count_growth = shape.count - prev_count
        wasted_growth = shape.wasted_memory - prev_wasted
        if count_growth <= 0:
            continue
        checks = [
            Signal("100 or more new duplicates", count_growth >= 100, 20),
            Signal("duplicate waste grew >= 1 MB", wasted_growth >= MB, 15),
            Signal("duplicate count at least doubled", shape.count >= 2 * max(prev_count, 1), 10),
        ]
        fired = [c for c in checks if c.fired]
        if len(fired) >= MIN_SIGNALS:
            candidates.append((sum(c.weight for c in fired), wasted_growth, count_growth, shape, checks))

    if not candidates:
        return None
    candidates.sort(key=lambda c: (-c[0], -c[1], c[3].shape_key))
    top = candidates[:5]
    _, _, _, lead, lead_checks = top[0]
    wasted = sum(c[1] for c in top)
    count = sum(c[2] for c in top)
    ids: List[int] = []
    for c in top:
        ids.extend(c[3].node_ids)
    return _make_finding(
        LeakCategory.shape_duplication,
        "shape_duplication",
        35,
        lead_checks,
        ids,
        severity_from_delta(wasted, count),
        f"{lead.count} duplicates of '{lead.name or lead.kind}'",
        f"{len(top)} shape(s) gained {count} structurally identical objects, "
        f"wasting {format_bytes(wasted)} more than at baseline.",
    )


def detect_collection_growth(signals: LeakSignals) -> Optional[LeakFinding]:
    """Arrays, maps and sets that keep gaining entries."""
    collections = [
        g for g in signals.diff.grown
        if g.fanout_delta > 0 and is_collection_like(g.kind, g.name)
    ]
    if not collections:
        return None
    entries = sum(g.fanout_delta for g in collections)
    size = sum(max(0, g.size_delta) for g in collections)
    largest = max(g.fanout_delta for g in collections)
    continued = False
    if signals.final_diff is not None:
        ids = {g.node_id for g in collections}
        continued = any(
            g.node_id in ids and g.fanout_delta > 0 for g in signals.final_diff.grown
        )
    checks = [
        Signal("collections gained >= 1000 entries", entries >= 1000, 20),
        Signal(
            "one collection gained >= the high fan-out threshold",
            largest >= signals.config.fanout_high_threshold,
            15,
        ),
        Signal("collections grew >= 1 MB", size >= MB, 15),
        Signal("growth continues into final snapshot", continued, 15),
    ]
    collections.sort(key=lambda g: (-g.fanout_delta, g.node_id))
    return _make_finding(
        LeakCategory.collection_growth,
        "collection_growth",
        40,
        checks,
        (g.node_id for g in collections),
        severity_from_delta(size, entries),
        f"{len(collections)} collection(s) growing",
        f"{len(collections)} collection(s) gained {entries} entries "
        f"(largest +{largest}) and {format_bytes(size)}.",
    )


def detect_closure_retention(signals: LeakSignals) -> Optional[LeakFinding]:
    """Large numbers of new closures, usually handlers that were never released."""
    new_nodes = signals.diff.new_nodes
    closures = [n for n in new_nodes if n.kind is NodeKind.closure]
    if not closures:
        return None
    by_name: Dict[str, int] = {}
    for n in closures:
        by_name[n.name] = by_name.get(n.name, 0) + 1
    size = sum(n.retained_size for n in closures)
    share = len(closures) / len(new_nodes)
    checks = [
        Signal("500 or more new closures", len(closures) >= 500, 20),
        Signal("closures are >= 30% of new objects", share >= 0.3, 10),
        Signal("100 or more instances of one function", max(by_name.values()) >= 100, 15),
        Signal("new closures retain >= 1 MB", size >= MB, 10),
    ]
    closures.sort(key=lambda n: (-n.retained_size, n.id))
    return _make_finding(
        LeakCategory.closure_retention,
        "closure_retention",
        35,
        checks,
        (n.id for n in closures),
        severity_from_delta(size, len(closures)),
        f"{len(closures)} new closures retained",
        f"{len(closures)} closures ({share:.0%} of new objects) were created and are "
        f"still alive, holding {format_bytes(size)}.",
    )


def detect_listener_accumulation(signals: LeakSignals) -> Optional[LeakFinding]:
    """Event listeners and observers piling up."""
    new_nodes = signals.diff.new_nodes
    listeners = [n for n in new_nodes if is_listener_name(n.name)]
    if not listeners:
        return None
    size = sum(n.retained_size for n in listeners)
    ratio = len(listeners) / len(new_nodes)
    more_in_final = 0
    if signals.final_diff is not None:
        more_in_final = sum(1 for n in signals.final_diff.new_nodes if is_listener_name(n.name))
    checks = [
        Signal("100 or more new listeners", len(listeners) >= 100, 20),
        Signal("listeners are >= 5% of new objects", ratio >= 0.05, 10),
        Signal("listener count keeps rising in final snapshot", more_in_final >= 100, 15),
        Signal("new listeners retain >= 1 MB", size >= MB, 10),
    ]
    return _make_finding(
        LeakCategory.listener_accumulation,
        "listener_accumulation",
        40,
        checks,
        (n.id for n in listeners),
        severity_from_delta(size, len(listeners)),
        f"{len(listeners)} new event listeners",
        f"{len(listeners)} listener/observer objects were added between snapshots "
        f"({format_bytes(size)}).",
    )


def detect_object_growth(signals: LeakSignals) -> Optional[LeakFinding]:
    """Individual objects that grew across the tracked snapshots."""
    growth = signals.growth
    if growth.status is not GrowthStatus.ok or not growth.records:
        return None
    best: Optional[List[Signal]] = None
    best_score = -1.0
    implicated: List[int] = []
    total = 0
    for record in growth.records:
        checks = [
            Signal("growth above threshold", record.pattern is not GrowthPattern.STABLE, 15),
            Signal("grew in every snapshot", record.pattern is GrowthPattern.MONOTONIC, 15),
            Signal("observed in 3 or more snapshots", len(record.size_history) >= 3, 10),
            Signal("grew >= 5 MB", record.total_growth >= 5 * MB, 15),
            Signal("at least doubled in size", record.growth_percent >= 100, 10),
        ]
        fired = [c for c in checks if c.fired]
        if len(fired) < MIN_SIGNALS:
            continue
        implicated.append(record.id)
        total += record.total_growth
        score = sum(c.weight for c in fired)
        if score > best_score:
            best, best_score = checks, score
    if best is None:
        return None
    return _make_finding(
        LeakCategory.object_growth,
        "object_growth",
        40,
        best,
        implicated,
        severity_from_delta(total, 0),
        f"{len(implicated)} object(s) growing across snapshots",
        f"{len(implicated)} tracked object(s) grew by {format_bytes(total)} in total.",
    )


def detect_large_allocation(signals: LeakSignals) -> Optional[LeakFinding]:
    """Big objects that appeared between baseline and target."""
    large = [n for n in signals.diff.new_nodes if n.retained_size >= MB]
    if not large:
        return None
    size = sum(n.retained_size for n in large)
    heap = max(signals.target.total_self_size, 1)
    surviving = signals.surviving_in_final(n.id for n in large)
    checks = [
        Signal("new object >= 1 MB", True, 20),
        Signal("new large objects are >= 5% of the heap", size / heap >= 0.05, 15),
        Signal("large objects survive into final snapshot", surviving > 0, 15),
    ]
    large.sort(key=lambda n: (-n.retained_size, n.id))
    return _make_finding(
        LeakCategory.large_allocation,
        "large_allocation",
        40,
        checks,
        (n.id for n in large),
        severity_from_delta(size, 0),
        f"{len(large)} new large allocation(s)",
        f"{len(large)} new object(s) of at least 1 MB appeared, "
        f"{format_bytes(size)} in total (largest '{large[0].display_name}').",
    )


# ============================================================================
# Registry
# ============================================================================


@dataclass(frozen=True)
class Detector:
    name: str
    category: LeakCategory
    detect: Callable[[LeakSignals], Optional[LeakFinding]]


DEFAULT_DETECTORS: Tuple[Detector, ...] = (
    Detector("timer_retention", LeakCategory.timer_retention, detect_timer_retention),
    Detector("detached_dom", LeakCategory.detached_dom, detect_detached_dom),
    Detector("global_accumulation", LeakCategory.global_accumulation, detect_global_accumulation),
    Detector("shape_duplication", LeakCategory.shape_duplication, detect_shape_duplication),
    Detector("collection_growth", LeakCategory.collection_growth, detect_collection_growth),
    Detector("closure_retention", LeakCategory.closure_retention, detect_closure_retention),
    Detector("listener_accumulation", LeakCategory.listener_accumulation, detect_listener_accumulation),
    Detector("object_growth", LeakCategory.object_growth, detect_object_growth),
    Detector("large_allocation", LeakCategory.large_allocation, detect_large_allocation),
)


# ============================================================================
# Leak Classifier
# ============================================================================


class LeakClassifier:
    """Run the registered detectors over a baseline/target[/final] workflow.

    Usage::

        classifier = LeakClassifier(config)
        result = classifier.classify_snapshots(baseline, target, final)
        for finding in result.findings:
            print(finding.category.value, finding.severity.value, finding.confidence)
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        detectors: Optional[Sequence[Detector]] = None,
    ) -> None:
        self._config = config or AnalysisConfig()
        self._detectors: Tuple[Detector, ...] = tuple(
            DEFAULT_DETECTORS if detectors is None else detectors
        )

    @property
    def detectors(self) -> Tuple[Detector, ...]:
        return self._detectors

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def classify_snapshots(
        self,
        baseline: HeapSnapshot,
        target: HeapSnapshot,
        final: Optional[HeapSnapshot] = None,
        growth: Optional[GrowthResult] = None,
    ) -> ClassificationResult:
        signals = LeakSignals.build(baseline, target, final, self._config, growth=growth)
        return self.classify(signals)

    def classify(self, signals: LeakSignals) -> ClassificationResult:
        findings: List[LeakFinding] = []
        diagnostics: List[DetectorDiagnostic] = []
        for detector in self._detectors:
            try:
                finding = detector.detect(signals)
            except Exception as exc:
                logger.warning("Detector %s failed: %s", detector.name, exc, exc_info=True)
                diagnostics.append(
                    DetectorDiagnostic(detector.name, f"{type(exc).__name__}: {exc}")
                )
                continue
            if finding is not None:
                logger.debug(
                    "Detector %s: %s at %.0f%% confidence.",
                    detector.name, finding.severity.value, finding.confidence,
                )
                findings.append(finding)

        findings.sort(key=lambda f: (-f.confidence, -f.severity.rank, f.category.value))
        return ClassificationResult(
            findings=findings,
            diagnostics=diagnostics,
            detectors_run=[d.name for d in self._detectors],
        )
