"""Structural-shape deduplication for a single snapshot.

Nodes are grouped by a *shape key*: class name, node kind and either a
coarse size bucket (default) or, in the deep variant, the node's own set of
``property name -> value kind`` pairs read from its outgoing property edges.
A shape with more than one member is *wasteful*: keeping a single canonical
copy would save ``(count - 1) / count`` of its total size.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from heapleak.analysis.thresholds import Severity, format_bytes
from heapleak.config import AnalysisConfig, KB, MB
from heapleak.snapshot.model import EdgeKind, HeapNode, HeapSnapshot

logger = logging.getLogger(__name__)

# Property pairs considered when building a deep shape key.
_MAX_DEEP_PROPERTIES: int = 32

# Example node ids kept per shape record.
_MAX_EXAMPLES: int = 5


def size_bucket(size: int) -> str:
    """Coarse size category used in shape keys."""
    if size > MB:
        return "LARGE"
    if size > 100 * KB:
        return "MEDIUM"
    if size > KB:
        return "SMALL"
    return "TINY"


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class ShapeRecord:
    """All nodes of a snapshot sharing one shape key."""

    shape_key: str
    name: str
    kind: str
    node_ids: Tuple[int, ...]
    total_size: int

    @property
    def count(self) -> int:
        return len(self.node_ids)

    @property
    def average_size(self) -> float:
        return self.total_size / self.count if self.count else 0.0

    @property
    def is_wasteful(self) -> bool:
        return self.count > 1

    @property
    def wasted_memory(self) -> int:
        """Bytes saved by keeping one canonical copy; never exceeds total_size."""
        if self.count <= 1:
            return 0
        return self.total_size * (self.count - 1) // self.count

    @property
    def impact(self) -> Severity:
        if self.total_size >= 10 * MB:
            return Severity.CRITICAL
        if self.total_size >= 5 * MB:
            return Severity.HIGH
        if self.total_size >= 1 * MB:
            return Severity.MEDIUM
        return Severity.LOW

    def to_dict(self) -> Dict[str, object]:
        return {
            "shape_key": self.shape_key,
            "name": self.name,
            "kind": self.kind,
            "count": self.count,
            "total_size": self.total_size,
            "average_size": round(self.average_size, 1),
            "wasted_memory": self.wasted_memory,
            "impact": self.impact.value,
            "example_ids": list(self.node_ids[:_MAX_EXAMPLES]),
        }


@dataclass
class ShapeAnalysisResult:
    """Output of :class:`ShapeAnalyzer`."""

    shapes: List[ShapeRecord]
    total_shapes: int
    total_objects: int
    total_memory: int
    total_wasted: int
    deep: bool
    recommendations: List[str]

    @property
    def wasteful_shapes(self) -> List[ShapeRecord]:
        return [s for s in self.shapes if s.is_wasteful]

    def to_dict(self) -> Dict[str, object]:
        return {
            "shapes": [s.to_dict() for s in self.shapes],
            "total_shapes": self.total_shapes,
            "total_objects": self.total_objects,
            "total_memory": self.total_memory,
            "total_wasted": self.total_wasted,
            "deep": self.deep,
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# Shape Analyzer
# ============================================================================


class ShapeAnalyzer:
    """Group structurally identical objects and measure duplication.

    Usage::

        result = ShapeAnalyzer().analyze(snapshot)
        for shape in result.wasteful_shapes[:10]:
            print(shape.shape_key, shape.count, shape.wasted_memory)
    """

    def __init__(self, config: Optional[AnalysisConfig] = None, deep: bool = False) -> None:
        self._config = config or AnalysisConfig()
        self._deep = deep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, snapshot: HeapSnapshot) -> ShapeAnalysisResult:
        groups = self.group(snapshot)
        shapes = [
            ShapeRecord(
                shape_key=key,
                name=members[0].name,
                kind=members[0].kind.value,
                node_ids=tuple(sorted(n.id for n in members)),
                total_size=sum(n.retained_size for n in members),
            )
            for key, members in groups.items()
        ]
        shapes.sort(key=lambda s: (-s.wasted_memory, -s.total_size, s.shape_key))

        total_wasted = sum(s.wasted_memory for s in shapes)
        logger.debug(
            "Shape analysis (%s): %d shapes, %s wasted.",
            "deep" if self._deep else "bucketed", len(shapes), format_bytes(total_wasted),
        )
        return ShapeAnalysisResult(
            shapes=shapes,
            total_shapes=len(shapes),
            total_objects=sum(s.count for s in shapes),
            total_memory=sum(s.total_size for s in shapes),
            total_wasted=total_wasted,
            deep=self._deep,
            recommendations=self._recommendations(shapes),
        )

    def group(self, snapshot: HeapSnapshot) -> Dict[str, List[HeapNode]]:
        """Map each shape key to its member nodes, in index order."""
        node_filter = self._config.exclusion_filter(
            min_retained_size=max(self._config.min_retained_size, self._config.min_shape_node_size),
        )
        groups: Dict[str, List[HeapNode]] = {}
        for node in node_filter.apply(snapshot):
            groups.setdefault(self.shape_key(snapshot, node), []).append(node)
        return groups

    def shape_key(self, snapshot: HeapSnapshot, node: HeapNode) -> str:
        if not self._deep:
            return f"{node.name}:{node.kind.value}:{size_bucket(node.retained_size)}"
        return f"{node.name}:{node.kind.value}:{{{self._property_signature(snapshot, node)}}}"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _property_signature(snapshot: HeapSnapshot, node: HeapNode) -> str:
        pairs = sorted(
            {
                (edge.name or "", snapshot.node_at(edge.to_index).kind.value)
                for edge in snapshot.outgoing(node.index)
                if edge.kind is EdgeKind.property
            }
        )[:_MAX_DEEP_PROPERTIES]
        return ",".join(f"{name}->{kind}" for name, kind in pairs)

    def _recommendations(self, shapes: List[ShapeRecord]) -> List[str]:
        recs: List[str] = []
        wasteful = [
            s for s in shapes if s.is_wasteful and s.count >= self._config.min_shape_count
        ]
        if not wasteful:
            return recs
        top = wasteful[0]
        recs.append(
            f"'{top.name or top.kind}' has {top.count} structurally identical copies "
            f"wasting {format_bytes(top.wasted_memory)}; share or intern a single instance."
        )
        if any(s.kind == "string" for s in wasteful[:10]):
            recs.append(
                "Duplicate strings dominate: intern repeated keys or avoid building "
                "the same string in a loop."
            )
        if any(s.count >= 1000 for s in wasteful):
            recs.append(
                "Some shapes have thousands of instances: consider pooling or "
                "a flyweight representation."
            )
        return recs
