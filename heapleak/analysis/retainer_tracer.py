"""Retainer path reconstruction and per-object leak assessment.

Starting from one object, the tracer repeatedly follows the incoming edge
whose referrer retains the most memory until it reaches a root-equivalent
node, runs out of referrers, or hits the depth bound.  The path it reports
is plausible rather than globally shortest.  A visited set keeps the walk
finite on cyclic graphs.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from heapleak.analysis.leak_classifier import is_timer_name
from heapleak.analysis.thresholds import Severity, format_bytes
from heapleak.config import AnalysisConfig, KB, MB
from heapleak.snapshot.filters import DETACHED_PREFIX, is_dom_like, is_root_equivalent
from heapleak.snapshot.model import (
    EdgeKind,
    HeapEdge,
    HeapNode,
    HeapSnapshot,
    NodeKind,
    is_strong_edge,
)

logger = logging.getLogger(__name__)

_FRAMEWORK_FRAGMENTS = ("react", "fiber", "vue", "angular", "svelte", "zone.js", "component")

# Assessment score above which an object is reported as a likely leak.
_LIKELY_LEAK_SCORE: float = 0.5


class RootKind(str, Enum):
    """What ultimately keeps a traced object alive."""

    gc_root = "gc-root"
    global_ = "global"
    closure = "closure"
    dom = "dom"
    framework = "framework"
    unknown = "unknown"


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class PathHop:
    """One node on a retainer path and the edge leading to the next hop."""

    node_id: int
    name: str
    kind: str
    edge_name: Optional[str] = None
    edge_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "node_id": self.node_id,
            "name": self.name,
            "kind": self.kind,
            "edge_name": self.edge_name,
            "edge_kind": self.edge_kind,
        }


@dataclass(frozen=True)
class RetainerPath:
    """Hops ordered from the outermost retainer down to the traced object."""

    hops: Tuple[PathHop, ...]
    root_kind: RootKind
    reached_root: bool
    retainer_count: int
    has_cycle: bool

    @property
    def depth(self) -> int:
        return len(self.hops) - 1

    def describe(self) -> str:
        parts = []
        for hop in self.hops:
            label = hop.name or f"({hop.kind})"
            if hop.edge_name is not None:
                label += f".{hop.edge_name}" if hop.edge_kind != "element" else f"[{hop.edge_name}]"
            parts.append(label)
        return " -> ".join(parts)

    def to_dict(self) -> Dict[str, object]:
        return {
            "hops": [h.to_dict() for h in self.hops],
            "root_kind": self.root_kind.value,
            "reached_root": self.reached_root,
            "retainer_count": self.retainer_count,
            "has_cycle": self.has_cycle,
            "depth": self.depth,
        }


@dataclass
class HeapRatios:
    """Heap-wide composition used to spot distributed leaks."""

    node_count: int
    timer_ratio: float
    function_ratio: float
    array_ratio: float
    string_ratio: float
    # Sorted self sizes per node kind.
    sizes_by_kind: Dict[str, List[int]] = field(default_factory=dict, repr=False)

    @classmethod
    def from_snapshot(cls, snapshot: HeapSnapshot) -> HeapRatios:
        total = max(snapshot.node_count, 1)
        timers = functions = arrays = strings = 0
        sizes: Dict[str, List[int]] = {}
        for node in snapshot.nodes:
            if is_timer_name(node.name):
                timers += 1
            if node.kind is NodeKind.closure:
                functions += 1
            elif node.kind is NodeKind.array:
                arrays += 1
            elif node.kind is NodeKind.string:
                strings += 1
            sizes.setdefault(node.kind.value, []).append(node.self_size)
        for values in sizes.values():
            values.sort()
        return cls(
            node_count=snapshot.node_count,
            timer_ratio=timers / total,
            function_ratio=functions / total,
            array_ratio=arrays / total,
            string_ratio=strings / total,
            sizes_by_kind=sizes,
        )

    def similar_size_count(self, node: HeapNode) -> int:
        """Nodes of the same kind whose self size is within 10% of *node*'s."""
        values = self.sizes_by_kind.get(node.kind.value, [])
        margin = node.self_size * 0.1
        lo = bisect.bisect_right(values, node.self_size - margin)
        hi = bisect.bisect_left(values, node.self_size + margin)
        return max(0, hi - lo)

    def to_dict(self) -> Dict[str, object]:
        return {
            "node_count": self.node_count,
            "timer_ratio": round(self.timer_ratio, 4),
            "function_ratio": round(self.function_ratio, 4),
            "array_ratio": round(self.array_ratio, 4),
            "string_ratio": round(self.string_ratio, 4),
        }


@dataclass
class LeakAssessment:
    """Verdict on whether one object is leaking and what to do about it."""

    node_id: int
    name: str
    kind: str
    self_size: int
    retained_size: int
    path: RetainerPath
    is_likely_leak: bool
    confidence: float
    severity: Severity
    advice_category: str
    factors: List[str]
    explanation: str
    remediation: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "node_id": self.node_id,
            "name": self.name,
            "kind": self.kind,
            "self_size": self.self_size,
            "retained_size": self.retained_size,
            "path": self.path.to_dict(),
            "path_text": self.path.describe(),
            "is_likely_leak": self.is_likely_leak,
            "confidence": self.confidence,
            "severity": self.severity.value,
            "advice_category": self.advice_category,
            "factors": list(self.factors),
            "explanation": self.explanation,
            "remediation": self.remediation,
        }


_ADVICE: Dict[str, str] = {
    "timer": (
        "Store the timer handle and clear it (clearInterval/clearTimeout) when the "
        "owner is disposed; make sure the callback does not capture large state."
    ),
    "array": (
        "The array keeps accumulating: bound its length, drop consumed entries, or "
        "reset it when the owning view or request completes."
    ),
    "closure": (
        "The closure keeps its scope alive: unregister the callback, or avoid "
        "capturing large objects in long-lived handlers."
    ),
    "string": (
        "Large string data is retained: release parsed payloads and avoid "
        "concatenating into a long-lived buffer."
    ),
    "detached": (
        "The DOM node was removed from the document but is still referenced; clear "
        "the JavaScript references and listeners that point at it."
    ),
    "framework": (
        "A framework object outlived its component: check effect/teardown hooks and "
        "subscriptions created during mount."
    ),
    "generic": (
        "Follow the retainer path and break the reference closest to the root that "
        "should no longer hold this object."
    ),
}


# ============================================================================
# Retainer Tracer
# ============================================================================


class RetainerTracer:
    """Trace retainer paths and assess individual objects.

    Usage::

        tracer = RetainerTracer(config)
        assessment = tracer.assess(snapshot, node_id)
        if assessment and assessment.is_likely_leak:
            print(assessment.path.describe())
            print(assessment.remediation)
    """

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self._config = config or AnalysisConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def trace(self, snapshot: HeapSnapshot, node_id: int) -> Optional[RetainerPath]:
        """Reconstruct a retainer path for *node_id*, or ``None`` if absent."""
        start = snapshot.index_of(node_id)
        if start is None:
            return None

        max_depth = self._config.trace_max_depth
        visited: Set[int] = {start}
        chain: List[Tuple[int, Optional[HeapEdge]]] = [(start, None)]
        current = start
        reached_root = start != 0 and is_root_equivalent(snapshot.node_at(start))
        has_cycle = False
        retainer_count = sum(1 for e in snapshot.incoming(start) if e.kind is not EdgeKind.weak)

        while not reached_root and len(chain) <= max_depth:
            edge, saw_visited = self._strongest_incoming(snapshot, current, visited)
            has_cycle = has_cycle or saw_visited
            if edge is None:
                break
            current = edge.from_index
            visited.add(current)
            chain.append((current, edge))
            reached_root = is_root_equivalent(snapshot.node_at(current))

        hops: List[PathHop] = []
        # chain runs object -> root; each edge points from chain[i] to chain[i-1].
        for position in range(len(chain) - 1, -1, -1):
            index, _ = chain[position]
            node = snapshot.node_at(index)
            leading = chain[position][1] if position > 0 else None
            hops.append(
                PathHop(
                    node_id=node.id,
                    name=node.display_name,
                    kind=node.kind.value,
                    edge_name=leading.name if leading is not None else None,
                    edge_kind=leading.kind.value if leading is not None else None,
                )
            )

        path = RetainerPath(
            hops=tuple(hops),
            root_kind=self._root_kind(snapshot, [i for i, _ in chain], reached_root),
            reached_root=reached_root,
            retainer_count=retainer_count,
            has_cycle=has_cycle,
        )
        logger.debug(
            "Traced @%d: depth %d, root %s, reached=%s.",
            node_id, path.depth, path.root_kind.value, reached_root,
        )
        return path

    def heap_ratios(self, snapshot: HeapSnapshot) -> HeapRatios:
        return HeapRatios.from_snapshot(snapshot)

    def assess(
        self,
        snapshot: HeapSnapshot,
        node_id: int,
        ratios: Optional[HeapRatios] = None,
    ) -> Optional[LeakAssessment]:
        """Trace *node_id* and score how likely it is to be a leak."""
        path = self.trace(snapshot, node_id)
        if path is None:
            return None
        node = snapshot.get(node_id)
        if node is None:
            return None
        if ratios is None:
            ratios = self.heap_ratios(snapshot)
        return self._assess(node, path, ratios)

    def assess_many(
        self, snapshot: HeapSnapshot, node_ids: Iterable[int],
    ) -> List[LeakAssessment]:
        """Assess several objects, computing heap ratios once."""
        ratios = self.heap_ratios(snapshot)
        results: List[LeakAssessment] = []
        for node_id in node_ids:
            assessment = self.assess(snapshot, node_id, ratios)
            if assessment is not None:
                results.append(assessment)
        results.sort(key=lambda a: (-a.confidence, a.node_id))
        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _strongest_incoming(
        snapshot: HeapSnapshot, index: int, visited: Set[int],
    ) -> Tuple[Optional[HeapEdge], bool]:
        best: Optional[HeapEdge] = None
        best_key: Tuple[int, int, int] = (-1, -1, 0)
        saw_visited = False
        for edge in snapshot.incoming(index):
            if edge.kind is EdgeKind.weak:
                continue
            if edge.from_index in visited:
                saw_visited = True
                continue
            referrer = snapshot.node_at(edge.from_index)
            # Larger referrer first, strong edge kinds next, lower index last.
            key = (referrer.retained_size, 1 if is_strong_edge(edge.kind) else 0, -edge.from_index)
            if key > best_key:
                best, best_key = edge, key
        return best, saw_visited

    @staticmethod
    def _root_kind(snapshot: HeapSnapshot, chain: List[int], reached_root: bool) -> RootKind:
        nodes = [snapshot.node_at(i) for i in chain]
        retainers = nodes[1:]
        names = [n.name.lower() for n in retainers]
        if any(("window" in n or "global" in n) for n in names):
            return RootKind.global_
        if any(is_dom_like(n) or "document" in n.name.lower() for n in retainers):
            return RootKind.dom
        if any(any(f in n for f in _FRAMEWORK_FRAGMENTS) for n in names):
            return RootKind.framework
        if any(n.kind is NodeKind.closure for n in retainers):
            return RootKind.closure
        if (reached_root and nodes[-1].index == 0) or any(
            n.kind is NodeKind.synthetic for n in retainers
        ):
            return RootKind.gc_root
        return RootKind.unknown

    def _assess(self, node: HeapNode, path: RetainerPath, ratios: HeapRatios) -> LeakAssessment:
        score = 0.0
        factors: List[str] = []
        name = node.name
        lowered = name.lower()
        path_text = " ".join(h.name.lower() for h in path.hops)
        is_timer = is_timer_name(name) or "timer" in path_text or "interval" in path_text
        is_array = node.kind is NodeKind.array or "Array" in name
        is_closure = node.kind is NodeKind.closure or "Closure" in name or "Function" in name
        is_string = node.kind is NodeKind.string or "string" in lowered
        is_detached = name.startswith(DETACHED_PREFIX) or (
            is_dom_like(node) and not path.reached_root
        )
        size = max(node.self_size, node.retained_size)

        if size > 5 * MB:
            score += 0.4
            factors.append("extremely large (>5 MB)")
        elif size > 1 * MB:
            score += 0.2
            factors.append("large (>1 MB)")
        elif size > 100 * KB:
            score += 0.1
            factors.append("moderate size (>100 KB)")

        if is_timer:
            score += 0.4
            factors.append("timer/interval related")
            if path.root_kind is RootKind.closure:
                score += 0.3
                factors.append("timer callback captured by a closure")

        if is_array and node.self_size > 50 * KB:
            if node.self_size // 8 > 1000:
                score += 0.3
                factors.append(f"array with ~{node.self_size // 8} slots")
            if path.root_kind in (RootKind.closure, RootKind.global_):
                score += 0.2
                factors.append("array held by closure/global scope")

        if is_closure:
            score += 0.2
            factors.append("closure")
            if node.self_size > 200 * KB:
                score += 0.2
                factors.append("large captured scope")
            if path.root_kind is RootKind.global_:
                score += 0.2
                factors.append("closure retained globally")

        if is_string and size > 2 * MB:
            if path.root_kind in (RootKind.global_, RootKind.closure):
                score += 0.3
                factors.append("large string held in global/closure scope")
            else:
                score = max(0.0, score - 0.1)
                factors.append("large string, possibly a library bundle")

        if is_detached:
            score += 0.4
            factors.append("detached from the DOM tree")

        if path.root_kind is RootKind.framework and size > 500 * KB:
            score += 0.2
            factors.append("large framework object")

        if len(factors) >= 3:
            score += 0.1
            factors.append("multiple leak indicators")

        # Distributed patterns: many small objects sharing one cause.
        if is_timer and ratios.timer_ratio > 0.01:
            score += 0.2
            factors.append(f"timer-dense heap ({ratios.timer_ratio:.1%} of nodes)")
        if is_closure and ratios.function_ratio > 0.05:
            score += 0.15
            factors.append(f"closure-dense heap ({ratios.function_ratio:.1%} of nodes)")
        if is_array and ratios.array_ratio > 0.03:
            score += 0.1
            factors.append(f"array-dense heap ({ratios.array_ratio:.1%} of nodes)")
        similar = ratios.similar_size_count(node)
        if similar > 100 and node.self_size > KB:
            score += 0.15
            factors.append(f"{similar} similar {node.kind.value} objects")

        confidence = round(min(100.0, score * 100.0), 1)
        likely = score > _LIKELY_LEAK_SCORE
        category = self._advice_category(is_timer, is_detached, is_array, is_closure, is_string, path)
        explanation = (
            f"Confidence {confidence:.0f}%: " + ", ".join(factors)
            if factors else f"Confidence {confidence:.0f}%: no strong leak indicators"
        )
        return LeakAssessment(
            node_id=node.id,
            name=node.display_name,
            kind=node.kind.value,
            self_size=node.self_size,
            retained_size=node.retained_size,
            path=path,
            is_likely_leak=likely,
            confidence=confidence,
            severity=self._severity(size, score),
            advice_category=category,
            factors=factors,
            explanation=explanation,
            remediation=_ADVICE[category],
        )

    @staticmethod
    def _advice_category(
        is_timer: bool,
        is_detached: bool,
        is_array: bool,
        is_closure: bool,
        is_string: bool,
        path: RetainerPath,
    ) -> str:
        if is_timer:
            return "timer"
        if is_detached:
            return "detached"
        if is_array:
            return "array"
        if is_closure:
            return "closure"
        if is_string:
            return "string"
        if path.root_kind is RootKind.framework:
            return "framework"
        return "generic"

    @staticmethod
    def _severity(size: int, score: float) -> Severity:
        if size >= 10 * MB or score >= 1.0:
            return Severity.CRITICAL
        if size >= 5 * MB or score >= 0.75:
            return Severity.HIGH
        if size >= 1 * MB or score > _LIKELY_LEAK_SCORE:
            return Severity.MEDIUM
        return Severity.LOW


def summarize_assessments(assessments: List[LeakAssessment]) -> str:
    likely = [a for a in assessments if a.is_likely_leak]
    if not assessments:
        return "No objects traced."
    size = sum(a.retained_size for a in likely)
    return (
        f"{len(likely)} of {len(assessments)} traced object(s) look like leaks "
        f"({format_bytes(size)} retained)."
    )
