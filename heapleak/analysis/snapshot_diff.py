"""Id-keyed difference between two snapshots of the same process."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from heapleak.analysis.thresholds import format_bytes
from heapleak.config import AnalysisConfig
from heapleak.snapshot.model import HeapNode, HeapSnapshot, is_strong_edge

logger = logging.getLogger(__name__)

# Rows kept in the per-group and per-object listings.
_MAX_GROUP_ROWS: int = 50
_MAX_GROWN_ROWS: int = 50


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class GroupDelta:
    """New objects sharing a ``name:kind`` group."""

    name: str
    kind: str
    count: int
    total_size: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind,
            "count": self.count,
            "total_size": self.total_size,
        }


@dataclass(frozen=True)
class GrownObject:
    """An object present in both snapshots whose retained size or fan-out grew."""

    node_id: int
    name: str
    kind: str
    before_size: int
    after_size: int
    before_fanout: int
    after_fanout: int

    @property
    def size_delta(self) -> int:
        return self.after_size - self.before_size

    @property
    def fanout_delta(self) -> int:
        return self.after_fanout - self.before_fanout

    def to_dict(self) -> Dict[str, object]:
        return {
            "node_id": self.node_id,
            "name": self.name,
            "kind": self.kind,
            "before_size": self.before_size,
            "after_size": self.after_size,
            "size_delta": self.size_delta,
            "before_fanout": self.before_fanout,
            "after_fanout": self.after_fanout,
            "fanout_delta": self.fanout_delta,
        }


@dataclass
class SnapshotDiff:
    """What changed between *before* and *after*.

    ``new_nodes`` holds every filtered node whose id is absent from the
    earlier snapshot; ``grown`` lists objects present in both (same name and
    kind) whose retained size or strong fan-out increased.
    """

    before_label: str
    after_label: str
    node_delta: int
    edge_delta: int
    size_delta: int
    new_nodes: List[HeapNode]
    removed_count: int
    grown: List[GrownObject]
    new_groups: List[GroupDelta] = field(default_factory=list)

    @property
    def new_count(self) -> int:
        return len(self.new_nodes)

    @property
    def new_size(self) -> int:
        return sum(n.retained_size for n in self.new_nodes)

    def to_dict(self) -> Dict[str, object]:
        return {
            "before_label": self.before_label,
            "after_label": self.after_label,
            "node_delta": self.node_delta,
            "edge_delta": self.edge_delta,
            "size_delta": self.size_delta,
            "new_count": self.new_count,
            "new_size": self.new_size,
            "removed_count": self.removed_count,
            "new_groups": [g.to_dict() for g in self.new_groups[:_MAX_GROUP_ROWS]],
            "grown": [g.to_dict() for g in self.grown[:_MAX_GROWN_ROWS]],
        }


def strong_fanout(snapshot: HeapSnapshot, index: int) -> int:
    return sum(1 for e in snapshot.outgoing(index) if is_strong_edge(e.kind))


def diff_snapshots(
    before: HeapSnapshot,
    after: HeapSnapshot,
    config: Optional[AnalysisConfig] = None,
) -> SnapshotDiff:
    """Compare two snapshots by node id.

    Only nodes passing the exclusion filter count as new or grown; the
    raw node, edge and self-size deltas cover the whole graph.
    """
    config = config or AnalysisConfig()
    node_filter = config.exclusion_filter(min_retained_size=0)

    new_nodes: List[HeapNode] = []
    grown: List[GrownObject] = []
    groups: Dict[Tuple[str, str], List[int]] = {}

    for node in after.nodes:
        previous = before.get(node.id)
        if previous is None:
            if not node_filter.accepts(node):
                continue
            new_nodes.append(node)
            key = (node.name, node.kind.value)
            groups.setdefault(key, []).append(node.retained_size)
            continue
        if previous.name != node.name or previous.kind is not node.kind:
            continue
        if not node_filter.accepts(node):
            continue
        after_fanout = strong_fanout(after, node.index)
        before_fanout = strong_fanout(before, previous.index)
        if node.retained_size > previous.retained_size or after_fanout > before_fanout:
            grown.append(
                GrownObject(
                    node_id=node.id,
                    name=node.display_name,
                    kind=node.kind.value,
                    before_size=previous.retained_size,
                    after_size=node.retained_size,
                    before_fanout=before_fanout,
                    after_fanout=after_fanout,
                )
            )

    removed = sum(1 for node in before.nodes if node.id not in after)
    grown.sort(key=lambda g: (-g.size_delta, -g.fanout_delta, g.node_id))
    new_groups = [
        GroupDelta(name=name, kind=kind, count=len(sizes), total_size=sum(sizes))
        for (name, kind), sizes in groups.items()
    ]
    new_groups.sort(key=lambda g: (-g.total_size, -g.count, g.name))

    diff = SnapshotDiff(
        before_label=before.label,
        after_label=after.label,
        node_delta=after.node_count - before.node_count,
        edge_delta=after.edge_count - before.edge_count,
        size_delta=after.total_self_size - before.total_self_size,
        new_nodes=new_nodes,
        removed_count=removed,
        grown=grown,
        new_groups=new_groups,
    )
    logger.debug(
        "Diff %s -> %s: %d new objects (%s), %d removed, %d grown.",
        before.label or "before", after.label or "after",
        diff.new_count, format_bytes(diff.new_size), removed, len(grown),
    )
    return diff
