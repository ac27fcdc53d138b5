"""Find objects with the most outgoing references (fan-out)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional

from heapleak.analysis.thresholds import Severity, clamp_confidence
from heapleak.config import AnalysisConfig, KB, MB
from heapleak.snapshot.filters import is_dom_like
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot

logger = logging.getLogger(__name__)

# Name fragments that suggest an unbounded container.  They only add tags;
# severity comes from counts and sizes.
SUSPICIOUS_NAME_PATTERNS = (
    "cache",
    "registry",
    "collection",
    "manager",
    "store",
    "pool",
    "tracker",
    "accumulated",
)

_IGNORED_EDGE_KINDS = (EdgeKind.hidden, EdgeKind.weak)


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class FanoutRecord:
    """Fan-out statistics for one node."""

    node_id: int
    name: str
    kind: str
    fanout: int
    retained_size: int
    reference_kinds: Dict[str, int]
    severity: Severity
    confidence: float
    category: str
    suspicious_tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FanoutRecord:
        return cls(
            node_id=int(data.get("node_id", 0)),
            name=str(data.get("name", "")),
            kind=str(data.get("kind", "")),
            fanout=int(data.get("fanout", 0)),
            retained_size=int(data.get("retained_size", 0)),
            reference_kinds=dict(data.get("reference_kinds", {})),
            severity=Severity(data.get("severity", "LOW")),
            confidence=float(data.get("confidence", 0.0)),
            category=str(data.get("category", "Object")),
            suspicious_tags=[str(t) for t in data.get("suspicious_tags", [])],
        )


@dataclass
class FanoutResult:
    """Output of :class:`FanoutAnalyzer`."""

    top: List[FanoutRecord]
    total_analyzed: int
    average_fanout: float
    max_fanout: int
    distribution: Dict[str, int]
    recommendations: List[str]

    @property
    def suspicious(self) -> List[FanoutRecord]:
        return [r for r in self.top if r.severity.rank >= Severity.HIGH.rank]

    def to_dict(self) -> Dict[str, object]:
        return {
            "top": [r.to_dict() for r in self.top],
            "total_analyzed": self.total_analyzed,
            "average_fanout": self.average_fanout,
            "max_fanout": self.max_fanout,
            "distribution": dict(self.distribution),
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# Fan-out Analyzer
# ============================================================================


class FanoutAnalyzer:
    """Count strong outgoing references per node and grade hubs.

    A node is HIGH at ``fanout_high_threshold`` references (or 25 with more
    than 1 MB retained) and CRITICAL at ``fanout_critical_threshold`` (or
    100 with more than 5 MB retained).
    """

    # Nodes retaining less than this are not inspected.
    MIN_NODE_SIZE: int = 100

    def __init__(self, config: Optional[AnalysisConfig] = None, top_n: int = 20) -> None:
        self._config = config or AnalysisConfig()
        self._top_n = top_n

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, snapshot: HeapSnapshot) -> FanoutResult:
        node_filter = self._config.exclusion_filter(min_retained_size=self.MIN_NODE_SIZE)
        records: List[FanoutRecord] = []
        for node in node_filter.apply(snapshot):
            kinds: Dict[str, int] = {}
            for edge in snapshot.outgoing(node.index):
                if edge.kind in _IGNORED_EDGE_KINDS:
                    continue
                kinds[edge.kind.value] = kinds.get(edge.kind.value, 0) + 1
            fanout = sum(kinds.values())
            if fanout == 0:
                continue
            records.append(self._record(node, fanout, kinds))

        if not records:
            return FanoutResult([], 0, 0.0, 0, {}, [])

        records.sort(key=lambda r: (-r.fanout, -r.retained_size, r.node_id))
        top = records[: self._top_n]
        logger.debug("Fan-out: %d nodes inspected, max fan-out %d.", len(records), records[0].fanout)
        return FanoutResult(
            top=top,
            total_analyzed=len(records),
            average_fanout=round(sum(r.fanout for r in records) / len(records), 2),
            max_fanout=records[0].fanout,
            distribution=self._distribution(records),
            recommendations=self._recommendations(top),
        )

    def severity(self, fanout: int, retained_size: int) -> Severity:
        if fanout >= self._config.fanout_critical_threshold or (
            fanout >= 100 and retained_size > 5 * MB
        ):
            return Severity.CRITICAL
        if fanout >= self._config.fanout_high_threshold or (
            fanout >= 25 and retained_size > 1 * MB
        ):
            return Severity.HIGH
        if fanout >= 20 or retained_size > 512 * KB:
            return Severity.MEDIUM
        return Severity.LOW

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record(self, node: HeapNode, fanout: int, kinds: Dict[str, int]) -> FanoutRecord:
        return FanoutRecord(
            node_id=node.id,
            name=node.display_name,
            kind=node.kind.value,
            fanout=fanout,
            retained_size=node.retained_size,
            reference_kinds=kinds,
            severity=self.severity(fanout, node.retained_size),
            confidence=self._confidence(fanout, node.retained_size),
            category=self._category(node),
            suspicious_tags=self._tags(node, fanout),
        )

    @staticmethod
    def _confidence(fanout: int, retained_size: int) -> float:
        confidence = 70.0
        if fanout > 100:
            confidence += 20
        if fanout > 500:
            confidence += 10
        if retained_size > 1 * MB:
            confidence += 15
        if fanout < 10:
            confidence -= 20
        return clamp_confidence(confidence)

    @staticmethod
    def _category(node: HeapNode) -> str:
        name = node.name.lower()
        if is_dom_like(node):
            return "DOM"
        if node.kind.value == "array" or "array" in name:
            return "Array"
        if "map" in name:
            return "Map"
        if "set" in name:
            return "Set"
        if any(p in name for p in ("cache", "store", "registry")):
            return "Cache"
        if any(p in name for p in ("event", "listener", "handler")):
            return "Events"
        if "window" in name or "global" in name:
            return "Global"
        return "Object"

    def _tags(self, node: HeapNode, fanout: int) -> List[str]:
        name = node.name.lower()
        tags = [f"name contains '{p}'" for p in SUSPICIOUS_NAME_PATTERNS if p in name]
        if fanout > self._config.fanout_critical_threshold:
            tags.append(f"extremely high fan-out ({fanout})")
        if fanout > 50 and ("array" in name or "list" in name):
            tags.append("large collection")
        return tags

    @staticmethod
    def _distribution(records: List[FanoutRecord]) -> Dict[str, int]:
        buckets = {"1-9": 0, "10-49": 0, "50-199": 0, "200+": 0}
        for r in records:
            if r.fanout >= 200:
                buckets["200+"] += 1
            elif r.fanout >= 50:
                buckets["50-199"] += 1
            elif r.fanout >= 10:
                buckets["10-49"] += 1
            else:
                buckets["1-9"] += 1
        return buckets

    @staticmethod
    def _recommendations(top: List[FanoutRecord]) -> List[str]:
        recs: List[str] = []
        hubs = [r for r in top if r.severity.rank >= Severity.HIGH.rank]
        if hubs:
            recs.append(
                f"{len(hubs)} object(s) reference {hubs[0].fanout}+ children; bound "
                "their size or evict entries (LRU, TTL)."
            )
        if any(r.category == "Cache" for r in hubs):
            recs.append("Caches with high fan-out need a size limit or a WeakMap-based key.")
        if any(r.category == "Events" for r in hubs):
            recs.append("Remove event listeners when their owners are torn down.")
        return recs
