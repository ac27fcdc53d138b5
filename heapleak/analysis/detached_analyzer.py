"""Detached-object detection by backward reachability.

A candidate (by default every DOM-like node) is *detached* when no walk
backward along strong references (property and element edges) reaches a
root-equivalent node (document, window, global, or the graph root) within
``detached_max_depth`` hops.  Nodes the runtime already labelled
``Detached ...`` are reported as detached without a walk.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, asdict
from typing import Deque, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from heapleak.analysis.thresholds import Severity, format_bytes
from heapleak.config import AnalysisConfig, MB
from heapleak.snapshot.filters import DETACHED_PREFIX, is_dom_like, is_root_equivalent
from heapleak.snapshot.model import HeapNode, HeapSnapshot, is_strong_edge

logger = logging.getLogger(__name__)


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class DetachedNode:
    """A node with no strong path back to a root-equivalent."""

    node_id: int
    name: str
    retained_size: int
    reason: str

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class DetachedGroup:
    """Detached nodes sharing a name."""

    name: str
    count: int
    total_size: int

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class DetachedResult:
    """Output of :class:`DetachedAnalyzer`."""

    detached: List[DetachedNode]
    groups: List[DetachedGroup]
    candidates_checked: int
    total_detached_size: int
    severity: Severity
    recommendations: List[str]

    @property
    def detached_ids(self) -> FrozenSet[int]:
        return frozenset(d.node_id for d in self.detached)

    def to_dict(self) -> Dict[str, object]:
        return {
            "detached": [d.to_dict() for d in self.detached],
            "groups": [g.to_dict() for g in self.groups],
            "candidates_checked": self.candidates_checked,
            "total_detached_size": self.total_detached_size,
            "severity": self.severity.value,
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# Detached Analyzer
# ============================================================================


class DetachedAnalyzer:
    """Mark candidates that cannot reach a root through strong references.

    Usage::

        result = DetachedAnalyzer().analyze(snapshot)
        print(len(result.detached), format_bytes(result.total_detached_size))
    """

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self._config = config or AnalysisConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(
        self,
        snapshot: HeapSnapshot,
        candidate_ids: Optional[Iterable[int]] = None,
    ) -> DetachedResult:
        """Check *candidate_ids* (default: all DOM-like nodes) for detachment."""
        candidates = self._candidates(snapshot, candidate_ids)
        detached: List[DetachedNode] = []
        for node in candidates:
            if node.name.startswith(DETACHED_PREFIX):
                detached.append(
                    DetachedNode(node.id, node.name, node.retained_size, "marked detached by runtime")
                )
            elif not self.reaches_root(snapshot, node.index):
                detached.append(
                    DetachedNode(
                        node.id,
                        node.display_name,
                        node.retained_size,
                        f"no strong path to a root within {self._config.detached_max_depth} hops",
                    )
                )

        detached.sort(key=lambda d: (-d.retained_size, d.node_id))
        total = sum(d.retained_size for d in detached)
        groups = self._groups(detached)
        logger.debug(
            "Detached analysis: %d of %d candidates detached (%s).",
            len(detached), len(candidates), format_bytes(total),
        )
        return DetachedResult(
            detached=detached,
            groups=groups,
            candidates_checked=len(candidates),
            total_detached_size=total,
            severity=self._severity(len(detached), total),
            recommendations=self._recommendations(groups),
        )

    def reaches_root(self, snapshot: HeapSnapshot, start: int) -> bool:
        """Breadth-first walk backward along strong edges from *start*."""
        max_depth = self._config.detached_max_depth
        visited: Set[int] = {start}
        queue: Deque[Tuple[int, int]] = deque([(start, 0)])
        while queue:
            index, depth = queue.popleft()
            if index != start and is_root_equivalent(snapshot.node_at(index)):
                return True
            if depth >= max_depth:
                continue
            for edge in snapshot.incoming(index):
                if not is_strong_edge(edge.kind) or edge.from_index in visited:
                    continue
                visited.add(edge.from_index)
                queue.append((edge.from_index, depth + 1))
        return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _candidates(
        self, snapshot: HeapSnapshot, candidate_ids: Optional[Iterable[int]],
    ) -> List[HeapNode]:
        if candidate_ids is not None:
            nodes = (snapshot.get(node_id) for node_id in candidate_ids)
            return [n for n in nodes if n is not None]
        node_filter = self._config.exclusion_filter(min_retained_size=0)
        return [
            n for n in node_filter.apply(snapshot)
            if is_dom_like(n) and not is_root_equivalent(n)
        ]

    @staticmethod
    def _groups(detached: List[DetachedNode]) -> List[DetachedGroup]:
        by_name: Dict[str, List[int]] = {}
        for d in detached:
            name = d.name[len(DETACHED_PREFIX):] if d.name.startswith(DETACHED_PREFIX) else d.name
            by_name.setdefault(name, []).append(d.retained_size)
        groups = [DetachedGroup(name, len(sizes), sum(sizes)) for name, sizes in by_name.items()]
        groups.sort(key=lambda g: (-g.total_size, -g.count, g.name))
        return groups

    @staticmethod
    def _severity(count: int, total_size: int) -> Severity:
        if count >= 1000 or total_size >= 10 * MB:
            return Severity.CRITICAL
        if count >= 100 or total_size >= 1 * MB:
            return Severity.HIGH
        if count >= 10:
            return Severity.MEDIUM
        return Severity.LOW

    @staticmethod
    def _recommendations(groups: List[DetachedGroup]) -> List[str]:
        if not groups:
            return []
        top = groups[0]
        recs = [
            f"{top.count} detached '{top.name}' node(s) retain {format_bytes(top.total_size)}; "
            "clear references to removed elements (component state, caches, closures).",
            "Remove event listeners and observers before removing elements from the document.",
        ]
        return recs
