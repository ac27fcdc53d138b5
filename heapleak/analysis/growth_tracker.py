"""Cross-snapshot object growth tracking.

A tracking session follows individual objects, identified by their runtime
id, through a sequence of snapshots fed in capture order:

* the first snapshot seeds a :class:`GrowthRecord` for every filtered
  object, closure or regexp node (capped at ``max_tracked_objects``,
  keeping the largest);
* every later snapshot appends the object's current retained size, drops
  the record when the id now belongs to a node with a different name or
  kind, and marks ``disappeared_at`` when the id is gone;
* :meth:`GrowthTracker.finish` classifies each record as MONOTONIC,
  FLUCTUATING or STABLE and surfaces the non-stable ones.

The id -> record map lives in a :class:`TrackingStore` owned by exactly one
session and passed explicitly to the update functions.

Alongside per-object tracking the session aggregates filtered nodes by
``name:kind`` in every snapshot, so growth spread over many small new
objects (which per-object tracking cannot see) is still reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from heapleak.analysis.thresholds import Severity, format_bytes
from heapleak.config import AnalysisConfig, MB
from heapleak.snapshot.model import HeapSnapshot, NodeKind

logger = logging.getLogger(__name__)

TRACKABLE_KINDS = frozenset({NodeKind.object, NodeKind.closure, NodeKind.regexp})

# Aggregated name:kind groups reported by shape-level growth.
_MAX_SHAPE_GROWTH_ROWS: int = 50


# ============================================================================
# Enums
# ============================================================================


class GrowthPattern(str, Enum):
    """How an object's retained size evolved across snapshots."""

    MONOTONIC = "MONOTONIC"
    FLUCTUATING = "FLUCTUATING"
    STABLE = "STABLE"


class GrowthStatus(str, Enum):
    ok = "ok"
    insufficient_snapshots = "insufficient_snapshots"


def classify_history(history: Sequence[int], threshold: int) -> GrowthPattern:
    """Classify a size history.

    MONOTONIC when no step shrinks and the total growth reaches *threshold*;
    FLUCTUATING when the total growth reaches *threshold* but some step
    shrinks; STABLE otherwise.
    """
    if len(history) < 2 or history[-1] - history[0] < threshold:
        return GrowthPattern.STABLE
    if all(b >= a for a, b in zip(history, history[1:])):
        return GrowthPattern.MONOTONIC
    return GrowthPattern.FLUCTUATING


def growth_severity(total_growth: int, growth_percent: float) -> Severity:
    if total_growth >= 10 * MB or growth_percent >= 500:
        return Severity.CRITICAL
    if total_growth >= 5 * MB or growth_percent >= 200:
        return Severity.HIGH
    if total_growth >= 1 * MB or growth_percent >= 100:
        return Severity.MEDIUM
    return Severity.LOW


# ============================================================================
# Data classes
# ============================================================================


@dataclass
class GrowthRecord:
    """Size history of one tracked object.

    Mutable while its session is running; finalised (``pattern`` set) by
    :meth:`GrowthTracker.finish`.
    """

    id: int
    name: str
    kind: NodeKind
    size_history: List[int]
    first_seen: int = 0
    disappeared_at: Optional[int] = None
    pattern: GrowthPattern = GrowthPattern.STABLE

    @property
    def start_size(self) -> int:
        return self.size_history[0]

    @property
    def current_size(self) -> int:
        return self.size_history[-1]

    @property
    def peak_size(self) -> int:
        return max(self.size_history)

    @property
    def total_growth(self) -> int:
        return self.current_size - self.start_size

    @property
    def growth_percent(self) -> float:
        if self.start_size <= 0:
            return 0.0
        return self.total_growth / self.start_size * 100.0

    @property
    def growth_rate(self) -> float:
        """Average bytes gained per observed snapshot step."""
        steps = len(self.size_history) - 1
        return self.total_growth / steps if steps > 0 else 0.0

    @property
    def severity(self) -> Severity:
        return growth_severity(self.total_growth, self.growth_percent)

    @property
    def confidence(self) -> float:
        """0-100 score: longer monotonic histories are more convincing."""
        if self.pattern is GrowthPattern.STABLE:
            return 0.0
        score = 50.0 if self.pattern is GrowthPattern.MONOTONIC else 30.0
        score += min(30.0, 10.0 * (len(self.size_history) - 1))
        if self.total_growth >= 5 * MB:
            score += 20.0
        elif self.total_growth >= 1 * MB:
            score += 10.0
        if self.disappeared_at is not None:
            score -= 30.0
        return max(10.0, min(100.0, score))

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "size_history": list(self.size_history),
            "first_seen": self.first_seen,
            "disappeared_at": self.disappeared_at,
            "pattern": self.pattern.value,
            "total_growth": self.total_growth,
            "growth_percent": round(self.growth_percent, 1),
            "severity": self.severity.value,
            "confidence": round(self.confidence, 1),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GrowthRecord:
        disappeared = data.get("disappeared_at")
        return cls(
            id=int(data.get("id", 0)),
            name=str(data.get("name", "")),
            kind=NodeKind.from_type_name(str(data.get("kind", "object"))),
            size_history=[int(s) for s in data.get("size_history", [0])],
            first_seen=int(data.get("first_seen", 0)),
            disappeared_at=None if disappeared is None else int(disappeared),
            pattern=GrowthPattern(data.get("pattern", "STABLE")),
        )


@dataclass(frozen=True)
class ShapeGrowthRecord:
    """Aggregate count and size of one ``name:kind`` group per snapshot."""

    shape_key: str
    count_history: Tuple[int, ...]
    size_history: Tuple[int, ...]
    pattern: GrowthPattern

    @property
    def count_growth(self) -> int:
        return self.count_history[-1] - self.count_history[0]

    @property
    def size_growth(self) -> int:
        return self.size_history[-1] - self.size_history[0]

    def to_dict(self) -> Dict[str, object]:
        return {
            "shape_key": self.shape_key,
            "count_history": list(self.count_history),
            "size_history": list(self.size_history),
            "pattern": self.pattern.value,
            "count_growth": self.count_growth,
            "size_growth": self.size_growth,
        }


@dataclass
class GrowthResult:
    """Output of a finished tracking session."""

    status: GrowthStatus
    snapshots_analyzed: int
    records: List[GrowthRecord]
    tracked_count: int = 0
    identity_changes: int = 0
    disappeared_count: int = 0
    shape_growth: List[ShapeGrowthRecord] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.status is GrowthStatus.ok

    @property
    def monotonic(self) -> List[GrowthRecord]:
        return [r for r in self.records if r.pattern is GrowthPattern.MONOTONIC]

    @property
    def total_growth(self) -> int:
        return sum(r.total_growth for r in self.records)

    def pattern_breakdown(self) -> Dict[str, int]:
        breakdown = {p.value: 0 for p in GrowthPattern}
        for r in self.records:
            breakdown[r.pattern.value] += 1
        return breakdown

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "snapshots_analyzed": self.snapshots_analyzed,
            "records": [r.to_dict() for r in self.records],
            "tracked_count": self.tracked_count,
            "identity_changes": self.identity_changes,
            "disappeared_count": self.disappeared_count,
            "pattern_breakdown": self.pattern_breakdown(),
            "shape_growth": [s.to_dict() for s in self.shape_growth],
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# Tracking store
# ============================================================================


class TrackingStore:
    """Keyed id -> :class:`GrowthRecord` map owned by one tracking session."""

    def __init__(self, capacity: int = 10_000) -> None:
        self.capacity = capacity
        self._records: Dict[int, GrowthRecord] = {}
        self.identity_changes = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._records

    def __iter__(self) -> Iterator[GrowthRecord]:
        return iter(list(self._records.values()))

    def get(self, node_id: int) -> Optional[GrowthRecord]:
        return self._records.get(node_id)

    def add(self, record: GrowthRecord) -> None:
        self._records[record.id] = record

    def drop(self, node_id: int) -> None:
        self._records.pop(node_id, None)


def seed_store(
    store: TrackingStore,
    snapshot: HeapSnapshot,
    config: AnalysisConfig,
    snapshot_index: int = 0,
) -> int:
    """Start a record for every trackable node of *snapshot*.

    When more nodes qualify than ``store.capacity`` allows, the largest at
    first observation are kept (ties broken by id).  Returns the number of
    records started.
    """
    node_filter = config.exclusion_filter()
    candidates = [
        n for n in node_filter.apply(snapshot)
        if n.kind in TRACKABLE_KINDS and n.id not in store
    ]
    room = max(0, store.capacity - len(store))
    if len(candidates) > room:
        logger.debug(
            "Capping tracked objects at %d (of %d candidates).", store.capacity, len(candidates),
        )
        candidates.sort(key=lambda n: (-n.retained_size, n.id))
        candidates = candidates[:room]
    for node in candidates:
        store.add(
            GrowthRecord(
                id=node.id,
                name=node.name,
                kind=node.kind,
                size_history=[node.retained_size],
                first_seen=snapshot_index,
            )
        )
    return len(candidates)


def observe_snapshot(store: TrackingStore, snapshot: HeapSnapshot, snapshot_index: int) -> None:
    """Extend every live record in *store* with its size in *snapshot*."""
    for record in store:
        if record.disappeared_at is not None:
            continue
        node = snapshot.get(record.id)
        if node is None:
            record.disappeared_at = snapshot_index
        elif node.name != record.name or node.kind is not record.kind:
            store.drop(record.id)
            store.identity_changes += 1
        else:
            record.size_history.append(node.retained_size)


def finalize_store(store: TrackingStore, threshold: int) -> List[GrowthRecord]:
    """Classify every record and return the non-stable ones, largest growth first."""
    surfaced: List[GrowthRecord] = []
    for record in store:
        record.pattern = classify_history(record.size_history, threshold)
        if record.pattern is not GrowthPattern.STABLE:
            surfaced.append(record)
    surfaced.sort(key=lambda r: (-r.total_growth, r.id))
    return surfaced


# ============================================================================
# Growth Tracker
# ============================================================================


class GrowthTracker:
    """One tracking session over a run of snapshots.

    Sessions are independent: each owns its :class:`TrackingStore`, so two
    capture runs can be tracked concurrently by two trackers.

    Usage::

        tracker = GrowthTracker(config)
        for snapshot in snapshots:      # capture order
            tracker.feed(snapshot)
        result = tracker.finish()
        for record in result.monotonic:
            print(record.name, record.size_history)
    """

    # Fewer snapshots than this yield an insufficient-data result.
    MIN_SNAPSHOTS: int = 2

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self._config = config or AnalysisConfig()
        self._store = TrackingStore(capacity=self._config.max_tracked_objects)
        self._shape_totals: List[Dict[str, Tuple[int, int]]] = []
        self._count = 0
        self._finished: Optional[GrowthResult] = None

    @property
    def store(self) -> TrackingStore:
        return self._store

    @property
    def snapshots_seen(self) -> int:
        return self._count

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, snapshot: HeapSnapshot) -> None:
        """Add the next snapshot in capture order."""
        if self._finished is not None:
            raise RuntimeError("Tracking session already finished.")
        if self._count == 0:
            started = seed_store(self._store, snapshot, self._config, 0)
            logger.debug("Tracking %d objects from %s.", started, snapshot.label or "snapshot 0")
        else:
            observe_snapshot(self._store, snapshot, self._count)
        self._shape_totals.append(self._aggregate(snapshot))
        self._count += 1

    def finish(self) -> GrowthResult:
        """Classify all records.  Idempotent once called."""
        if self._finished is not None:
            return self._finished
        if self._count < self.MIN_SNAPSHOTS:
            logger.info(
                "Growth tracking needs at least %d snapshots, got %d.",
                self.MIN_SNAPSHOTS, self._count,
            )
            self._finished = GrowthResult(
                status=GrowthStatus.insufficient_snapshots,
                snapshots_analyzed=self._count,
                records=[],
                recommendations=[
                    "Capture at least two snapshots of the same session to track growth."
                ],
            )
            return self._finished

        threshold = self._config.growth_threshold
        records = finalize_store(self._store, threshold)
        tracked = len(self._store)
        disappeared = sum(1 for r in self._store if r.disappeared_at is not None)
        shape_growth = self._shape_growth(threshold)
        logger.debug(
            "Growth tracking over %d snapshots: %d of %d records surfaced.",
            self._count, len(records), tracked,
        )
        self._finished = GrowthResult(
            status=GrowthStatus.ok,
            snapshots_analyzed=self._count,
            records=records,
            tracked_count=tracked,
            identity_changes=self._store.identity_changes,
            disappeared_count=disappeared,
            shape_growth=shape_growth,
            recommendations=self._recommendations(records, shape_growth),
        )
        return self._finished

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _aggregate(self, snapshot: HeapSnapshot) -> Dict[str, Tuple[int, int]]:
        totals: Dict[str, Tuple[int, int]] = {}
        for node in self._config.exclusion_filter().apply(snapshot):
            key = f"{node.name}:{node.kind.value}"
            count, size = totals.get(key, (0, 0))
            totals[key] = (count + 1, size + node.retained_size)
        return totals

    def _shape_growth(self, threshold: int) -> List[ShapeGrowthRecord]:
        first = self._shape_totals[0]
        last = self._shape_totals[-1]
        rows: List[ShapeGrowthRecord] = []
        for key in set(first) | set(last):
            counts = tuple(t.get(key, (0, 0))[0] for t in self._shape_totals)
            sizes = tuple(t.get(key, (0, 0))[1] for t in self._shape_totals)
            pattern = classify_history(sizes, threshold)
            if pattern is GrowthPattern.STABLE:
                continue
            rows.append(ShapeGrowthRecord(key, counts, sizes, pattern))
        rows.sort(key=lambda r: (-r.size_growth, r.shape_key))
        return rows[:_MAX_SHAPE_GROWTH_ROWS]

    @staticmethod
    def _recommendations(
        records: List[GrowthRecord], shapes: List[ShapeGrowthRecord],
    ) -> List[str]:
        recs: List[str] = []
        monotonic = [r for r in records if r.pattern is GrowthPattern.MONOTONIC]
        if monotonic:
            top = monotonic[0]
            recs.append(
                f"'{top.name or top.kind.value}' (@{top.id}) grew in every snapshot, "
                f"+{format_bytes(top.total_growth)} in total; look for unbounded "
                "arrays, maps or caches it owns."
            )
        fluctuating = [r for r in records if r.pattern is GrowthPattern.FLUCTUATING]
        if fluctuating:
            recs.append(
                f"{len(fluctuating)} object(s) grew overall despite shrinking at times; "
                "cleanup runs but does not keep up with allocation."
            )
        if shapes and shapes[0].count_growth > 0:
            top_shape = shapes[0]
            recs.append(
                f"'{top_shape.shape_key}' instances grew by {top_shape.count_growth} "
                f"(+{format_bytes(top_shape.size_growth)}); something keeps creating "
                "and retaining them."
            )
        return recs


def track_snapshots(
    snapshots: Iterable[HeapSnapshot], config: Optional[AnalysisConfig] = None,
) -> GrowthResult:
    """Run a fresh tracking session over *snapshots* (in capture order)."""
    tracker = GrowthTracker(config)
    for snapshot in snapshots:
        tracker.feed(snapshot)
    return tracker.finish()
