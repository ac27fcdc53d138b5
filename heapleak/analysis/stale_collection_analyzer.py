"""Collections that keep stale entries alive.

A collection (array, Map, Set or a container-named object) is checked
entry by entry: an entry is stale when it is a detached DOM node or its
name marks it as disposed/expired/old.  Map and Set entries live in a
runtime backing table, so one level of internal edges into system nodes is
followed to reach them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from heapleak.analysis.thresholds import Severity, clamp_confidence, format_bytes
from heapleak.config import AnalysisConfig, MB
from heapleak.snapshot.filters import (
    DETACHED_PREFIX,
    clean_global_name,
    is_dom_like,
    is_system_internal,
)
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot, NodeKind, is_strong_edge

logger = logging.getLogger(__name__)

COLLECTION_NAME_PATTERNS = (
    "Array", "List", "Collection", "Set", "Map", "Cache", "Store", "Registry",
    "Queue", "Stack", "Buffer", "Pool", "Archive", "History",
)

STALE_WORDS = frozenset({
    "old", "stale", "expired", "unused", "obsolete", "previous", "backup",
    "temp", "tmp", "disposed", "destroyed", "removed", "closed",
})

_WORD_RE = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])")

_BACKING_EDGE_KINDS = (EdgeKind.internal, EdgeKind.hidden)


def name_words(name: str) -> List[str]:
    """Split camelCase / snake_case / spaced names into lower-case words."""
    return [w.lower() for w in _WORD_RE.findall(name)]


def is_collection(node: HeapNode) -> bool:
    if node.kind is NodeKind.array:
        return True
    if node.kind is not NodeKind.object:
        return False
    name = clean_global_name(node.name) or node.name
    return any(p in name for p in COLLECTION_NAME_PATTERNS)


def collection_type(node: HeapNode) -> str:
    if "Map" in node.name:
        return "Map"
    if "Set" in node.name:
        return "Set"
    if node.kind is NodeKind.array or "Array" in node.name:
        return "Array"
    return "Object"


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class StaleCollection:
    """A collection with at least one stale entry."""

    node_id: int
    name: str
    collection_type: str
    entry_count: int
    stale_ids: Tuple[int, ...]
    detached_count: int
    stale_retained_size: int
    severity: Severity
    confidence: float
    suggested_fix: str

    @property
    def stale_count(self) -> int:
        return len(self.stale_ids)

    @property
    def stale_percent(self) -> float:
        return self.stale_count / self.entry_count * 100.0 if self.entry_count else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "node_id": self.node_id,
            "name": self.name,
            "collection_type": self.collection_type,
            "entry_count": self.entry_count,
            "stale_count": self.stale_count,
            "stale_percent": round(self.stale_percent, 1),
            "detached_count": self.detached_count,
            "stale_retained_size": self.stale_retained_size,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "suggested_fix": self.suggested_fix,
            "stale_ids": list(self.stale_ids[:20]),
        }


@dataclass
class StaleCollectionResult:
    """Output of :class:`StaleCollectionAnalyzer`."""

    collections: List[StaleCollection]
    collections_checked: int
    recommendations: List[str] = field(default_factory=list)

    @property
    def total_stale_objects(self) -> int:
        return sum(c.stale_count for c in self.collections)

    @property
    def total_stale_size(self) -> int:
        return sum(c.stale_retained_size for c in self.collections)

    def to_dict(self) -> Dict[str, object]:
        return {
            "collections": [c.to_dict() for c in self.collections],
            "collections_checked": self.collections_checked,
            "total_stale_objects": self.total_stale_objects,
            "total_stale_size": self.total_stale_size,
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# Stale Collection Analyzer
# ============================================================================


class StaleCollectionAnalyzer:
    """Find collections whose entries are detached or dead.

    Usage::

        detached = DetachedAnalyzer(config).analyze(snapshot)
        result = StaleCollectionAnalyzer(config).analyze(snapshot, detached.detached_ids)
        for stale in result.collections:
            print(stale.name, stale.stale_count, stale.entry_count)
    """

    def __init__(self, config: Optional[AnalysisConfig] = None, top_n: int = 20) -> None:
        self._config = config or AnalysisConfig()
        self._top_n = top_n

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(
        self,
        snapshot: HeapSnapshot,
        detached_ids: Iterable[int] = (),
    ) -> StaleCollectionResult:
        """Check every collection; *detached_ids* marks nodes already known detached."""
        detached = frozenset(detached_ids)
        node_filter = self._config.exclusion_filter(min_retained_size=0)
        collections = [n for n in node_filter.apply(snapshot) if is_collection(n)]
        stale: List[StaleCollection] = []
        for node in collections:
            entries = self.entries(snapshot, node)
            record = self._check(node, entries, detached)
            if record is not None:
                stale.append(record)

        stale.sort(key=lambda c: (-c.stale_retained_size, -c.stale_count, c.node_id))
        logger.debug(
            "Stale collections: %d of %d collection(s) hold stale entries.",
            len(stale), len(collections),
        )
        return StaleCollectionResult(
            collections=stale[: self._top_n],
            collections_checked=len(collections),
            recommendations=self._recommendations(stale),
        )

    @staticmethod
    def entries(snapshot: HeapSnapshot, node: HeapNode) -> List[HeapNode]:
        """Strongly held entries, looking through runtime backing tables once."""
        found: Dict[int, HeapNode] = {}
        for edge in snapshot.outgoing(node.index):
            target = snapshot.node_at(edge.to_index)
            if is_strong_edge(edge.kind):
                if not is_system_internal(target):
                    found.setdefault(target.index, target)
                    continue
            elif edge.kind not in _BACKING_EDGE_KINDS or not is_system_internal(target):
                continue
            for inner in snapshot.outgoing(target.index):
                if inner.kind is EdgeKind.weak:
                    continue
                entry = snapshot.node_at(inner.to_index)
                if entry.index != node.index and not is_system_internal(entry):
                    found.setdefault(entry.index, entry)
        return list(found.values())

    @staticmethod
    def is_stale(node: HeapNode, detached: FrozenSet[int] = frozenset()) -> bool:
        if node.id in detached or node.name.startswith(DETACHED_PREFIX):
            return True
        return any(w in STALE_WORDS for w in name_words(node.name))

    @staticmethod
    def severity(stale_count: int, stale_size: int) -> Severity:
        if stale_count > 100 or stale_size > 10 * MB:
            return Severity.CRITICAL
        if stale_count > 50 or stale_size > 5 * MB:
            return Severity.HIGH
        if stale_count > 10 or stale_size > MB:
            return Severity.MEDIUM
        return Severity.LOW

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check(
        self, node: HeapNode, entries: List[HeapNode], detached: FrozenSet[int],
    ) -> Optional[StaleCollection]:
        stale = [e for e in entries if self.is_stale(e, detached)]
        if not stale:
            return None
        stale.sort(key=lambda e: (-e.retained_size, e.id))
        detached_count = sum(
            1 for e in stale
            if e.id in detached or (e.name.startswith(DETACHED_PREFIX) and is_dom_like(e))
        )
        size = sum(e.retained_size for e in stale)
        kind = collection_type(node)
        return StaleCollection(
            node_id=node.id,
            name=node.display_name,
            collection_type=kind,
            entry_count=len(entries),
            stale_ids=tuple(e.id for e in stale),
            detached_count=detached_count,
            stale_retained_size=size,
            severity=self.severity(len(stale), size),
            confidence=self._confidence(node, len(stale), len(entries), detached_count),
            suggested_fix=self._suggested_fix(node.display_name, kind),
        )

    @staticmethod
    def _confidence(node: HeapNode, stale: int, total: int, detached: int) -> float:
        confidence = 50.0 + 30.0 * stale / max(total, 1)
        confidence += min(detached * 10, 20)
        if total > 50:
            confidence += 10
        if total > 100:
            confidence += 10
        if "Cache" in node.name or "Store" in node.name:
            confidence += 15
        return clamp_confidence(min(confidence, 95.0))

    @staticmethod
    def _suggested_fix(name: str, kind: str) -> str:
        if kind == "Array":
            return f"Remove stale elements from {name} (splice/filter) when they are disposed."
        if kind == "Map":
            return f"Delete stale keys from {name}, or use a WeakMap keyed by the owner."
        if kind == "Set":
            return f"Delete stale items from {name}, or use a WeakSet."
        return f"Delete stale properties of {name} or hold large values through a WeakRef."

    @staticmethod
    def _recommendations(stale: List[StaleCollection]) -> List[str]:
        recs: List[str] = []
        if not stale:
            return recs
        top = stale[0]
        recs.append(
            f"'{top.name}' holds {top.stale_count} stale entr{'y' if top.stale_count == 1 else 'ies'} "
            f"({format_bytes(top.stale_retained_size)}); {top.suggested_fix}"
        )
        dom = [c for c in stale if c.detached_count]
        if dom:
            recs.append(
                f"{len(dom)} collection(s) hold detached DOM nodes; remove them when "
                "the component unmounts."
            )
        if any(c.collection_type in ("Map", "Set") for c in stale):
            recs.append("Map/Set caches keyed by objects can often become WeakMap/WeakSet.")
        return recs
