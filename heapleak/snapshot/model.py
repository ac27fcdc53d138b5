"""Decoded heap snapshot graph.

Nodes live in a flat tuple (arena storage) addressed by their decode-order
``index``; edges refer to nodes by index as well as by runtime id, so cycles
in the object graph are plain data and traversals only need an index-based
visited set.  A :class:`HeapSnapshot` is immutable once constructed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
)

from heapleak.errors import UnresolvableReference

logger = logging.getLogger(__name__)


# ============================================================================
# Enums
# ============================================================================


class NodeKind(str, Enum):
    """Kind of a heap node, normalised from the runtime's type names."""

    object = "object"
    closure = "closure"
    array = "array"
    string = "string"
    number = "number"
    regexp = "regexp"
    code = "code"
    native = "native"
    synthetic = "synthetic"
    hidden = "hidden"

    @classmethod
    def from_type_name(cls, type_name: str) -> NodeKind:
        """Map a raw runtime type name onto a :class:`NodeKind`.

        String variants (``concatenated string``, ``sliced string``) collapse
        to :attr:`string`; anything unrecognised becomes :attr:`hidden`.
        """
        try:
            return cls(type_name)
        except ValueError:
            pass
        return _NODE_KIND_ALIASES.get(type_name, cls.hidden)


_NODE_KIND_ALIASES: Dict[str, NodeKind] = {
    "concatenated string": NodeKind.string,
    "sliced string": NodeKind.string,
    "cons string": NodeKind.string,
    "bigint": NodeKind.number,
    "heap number": NodeKind.number,
    "function": NodeKind.closure,
    "object shape": NodeKind.hidden,
    "symbol": NodeKind.hidden,
}


class EdgeKind(str, Enum):
    """Kind of a reference between two heap nodes."""

    property = "property"
    element = "element"
    internal = "internal"
    hidden = "hidden"
    weak = "weak"
    context = "context"
    shortcut = "shortcut"

    @classmethod
    def from_type_name(cls, type_name: str) -> EdgeKind:
        try:
            return cls(type_name)
        except ValueError:
            return cls.hidden


# Property and element edges are the references user code creates.  Kept at
# module level because the ``property`` member shadows the builtin inside
# the EdgeKind body.
STRONG_EDGE_KINDS = frozenset({EdgeKind.property, EdgeKind.element})


def is_strong_edge(kind: EdgeKind) -> bool:
    return kind in STRONG_EDGE_KINDS


class SizeMode(str, Enum):
    """How the ``retained_size`` of every node in a snapshot was obtained."""

    # retained_size == self_size; no dominator pass was run.
    self_size = "self_size"
    # Taken from a retained_size field supplied by the producer.
    provided = "provided"
    # Computed from the dominator tree of the decoded graph.
    dominator = "dominator"


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class HeapNode:
    """A single object in a heap snapshot."""

    id: int
    index: int
    kind: NodeKind
    name: str
    self_size: int
    retained_size: int

    @property
    def display_name(self) -> str:
        return self.name or f"({self.kind.value})"

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> HeapNode:
        return cls(
            id=int(data.get("id", 0)),
            index=int(data.get("index", 0)),
            kind=NodeKind.from_type_name(str(data.get("kind", "hidden"))),
            name=str(data.get("name", "")),
            self_size=int(data.get("self_size", 0)),
            retained_size=int(data.get("retained_size", 0)),
        )


@dataclass(frozen=True)
class HeapEdge:
    """A reference from one heap node to another.

    ``from_index``/``to_index`` address the owning snapshot's node arena;
    ``from_id``/``to_id`` are the runtime-assigned node ids.
    """

    from_id: int
    to_id: int
    from_index: int
    to_index: int
    kind: EdgeKind
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


# ============================================================================
# Snapshot
# ============================================================================


class HeapSnapshot:
    """An immutable, decoded heap graph.

    Outgoing edges are stored grouped by source node (CSR layout).  The
    reverse (incoming) index is built lazily on first use because only the
    detached-reachability walk and the retainer tracer need it.

    Usage::

        snapshot = HeapSnapshot.build(
            [HeapNode(1, 0, NodeKind.synthetic, "(root)", 0, 0), ...],
            [(1, 2, EdgeKind.property, "cache"), ...],
        )
        for edge in snapshot.outgoing(0):
            print(snapshot.node_at(edge.to_index).name)
    """

    def __init__(
        self,
        nodes: Sequence[HeapNode],
        edges: Sequence[HeapEdge],
        size_mode: SizeMode = SizeMode.self_size,
        diagnostics: Iterable[UnresolvableReference] = (),
        label: str = "",
    ) -> None:
        self._nodes: Tuple[HeapNode, ...] = tuple(nodes)
        self._size_mode = size_mode
        self._diagnostics: Tuple[UnresolvableReference, ...] = tuple(diagnostics)
        self._label = label

        self._id_to_index: Dict[int, int] = {}
        for node in self._nodes:
            self._id_to_index.setdefault(node.id, node.index)

        # Group edges by source index, preserving order within a source.
        buckets: List[List[HeapEdge]] = [[] for _ in self._nodes]
        for edge in edges:
            buckets[edge.from_index].append(edge)
        ordered: List[HeapEdge] = []
        offsets: List[int] = [0] * (len(self._nodes) + 1)
        for i, bucket in enumerate(buckets):
            ordered.extend(bucket)
            offsets[i + 1] = len(ordered)
        self._edges: Tuple[HeapEdge, ...] = tuple(ordered)
        self._out_offsets = offsets

        self._incoming: Optional[List[List[int]]] = None

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def build(
        cls,
        nodes: Sequence[HeapNode],
        links: Iterable[Tuple[int, int, EdgeKind, Optional[str]]],
        size_mode: SizeMode = SizeMode.self_size,
        label: str = "",
    ) -> HeapSnapshot:
        """Build a snapshot from nodes and ``(from_id, to_id, kind, name)`` links.

        Node ``index`` values must match their position in *nodes*.  Links
        whose endpoints are unknown ids raise ``KeyError``.
        """
        id_to_index = {node.id: node.index for node in nodes}
        edges = [
            HeapEdge(
                from_id=from_id,
                to_id=to_id,
                from_index=id_to_index[from_id],
                to_index=id_to_index[to_id],
                kind=kind,
                name=name,
            )
            for from_id, to_id, kind, name in links
        ]
        return cls(nodes, edges, size_mode=size_mode, label=label)

    def with_retained_sizes(
        self, retained_sizes: Sequence[int], size_mode: SizeMode,
    ) -> HeapSnapshot:
        """Return a copy whose nodes carry *retained_sizes* (indexed by node index)."""
        if len(retained_sizes) != len(self._nodes):
            raise ValueError(
                f"Expected {len(self._nodes)} retained sizes, got {len(retained_sizes)}."
            )
        nodes = [
            HeapNode(
                id=node.id,
                index=node.index,
                kind=node.kind,
                name=node.name,
                self_size=node.self_size,
                retained_size=max(int(size), node.self_size),
            )
            for node, size in zip(self._nodes, retained_sizes)
        ]
        return HeapSnapshot(
            nodes,
            self._edges,
            size_mode=size_mode,
            diagnostics=self._diagnostics,
            label=self._label,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> Tuple[HeapNode, ...]:
        return self._nodes

    @property
    def edges(self) -> Tuple[HeapEdge, ...]:
        return self._edges

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    @property
    def size_mode(self) -> SizeMode:
        """Which mode produced this snapshot's retained sizes."""
        return self._size_mode

    @property
    def diagnostics(self) -> Tuple[UnresolvableReference, ...]:
        return self._diagnostics

    @property
    def label(self) -> str:
        return self._label

    @property
    def root(self) -> Optional[HeapNode]:
        """The synthetic root node (first node in decode order), if any."""
        return self._nodes[0] if self._nodes else None

    @property
    def total_self_size(self) -> int:
        return sum(node.self_size for node in self._nodes)

    def node_at(self, index: int) -> HeapNode:
        return self._nodes[index]

    def get(self, node_id: int) -> Optional[HeapNode]:
        index = self._id_to_index.get(node_id)
        return None if index is None else self._nodes[index]

    def index_of(self, node_id: int) -> Optional[int]:
        return self._id_to_index.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._id_to_index

    def __len__(self) -> int:
        return len(self._nodes)

    # ------------------------------------------------------------------
    # Adjacency
    # ------------------------------------------------------------------

    def outgoing(self, index: int) -> Tuple[HeapEdge, ...]:
        """Edges whose source is the node at *index*."""
        return self._edges[self._out_offsets[index]:self._out_offsets[index + 1]]

    def out_degree(self, index: int) -> int:
        return self._out_offsets[index + 1] - self._out_offsets[index]

    def incoming(self, index: int) -> List[HeapEdge]:
        """Edges whose target is the node at *index*."""
        if self._incoming is None:
            self._incoming = self._build_incoming_index()
        return [self._edges[pos] for pos in self._incoming[index]]

    def _build_incoming_index(self) -> List[List[int]]:
        incoming: List[List[int]] = [[] for _ in self._nodes]
        for pos, edge in enumerate(self._edges):
            incoming[edge.to_index].append(pos)
        logger.debug(
            "Built incoming-edge index for %d nodes / %d edges.",
            len(self._nodes), len(self._edges),
        )
        return incoming

    # -- serialisation helpers ------------------------------------------------

    def summary(self) -> Dict[str, object]:
        return {
            "label": self._label,
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "total_self_size": self.total_self_size,
            "size_mode": self._size_mode.value,
            "diagnostics": len(self._diagnostics),
        }
