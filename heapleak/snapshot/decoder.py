"""Decoder for flat, field-offset-encoded heap snapshots.

The raw document follows the ``.heapsnapshot`` layout::

    {
      "snapshot": {"meta": {"node_fields": [...], "node_types": [...],
                            "edge_fields": [...], "edge_types": [...]}},
      "nodes": [...],      # node_count * len(node_fields) integers
      "edges": [...],      # edge_count * len(edge_fields) integers
      "strings": [...]
    }

Each array is walked once, in fixed-size chunks, and nothing from the raw
document is referenced by the returned :class:`HeapSnapshot`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from heapleak.errors import MalformedSnapshot, UnresolvableReference
from heapleak.snapshot.model import (
    EdgeKind,
    HeapEdge,
    HeapNode,
    HeapSnapshot,
    NodeKind,
    SizeMode,
)

logger = logging.getLogger(__name__)

# Called between chunks as ``checkpoint(records_done, records_total)``.
Checkpoint = Callable[[int, int], None]

_REQUIRED_NODE_FIELDS = ("type", "name", "self_size", "id")

# Records processed between two checkpoint calls.
_DEFAULT_CHUNK_SIZE: int = 50_000


class SnapshotDecoder:
    """Turn a raw snapshot document into a :class:`HeapSnapshot`.

    Structural problems (missing field names, ragged arrays, inconsistent
    edge ownership) raise :class:`MalformedSnapshot`.  Individual bad
    references are recovered in place and reported through
    ``snapshot.diagnostics``:

    * a name index outside the string table resolves to ``""``;
    * a type code outside the type table resolves to ``hidden``;
    * an edge whose endpoint is not a node is dropped.

    Usage::

        decoder = SnapshotDecoder(label="baseline.heapsnapshot")
        snapshot = decoder.decode(json.loads(raw_text))
    """

    def __init__(
        self,
        label: str = "",
        compute_retained_sizes: bool = False,
        chunk_size: int = _DEFAULT_CHUNK_SIZE,
        checkpoint: Optional[Checkpoint] = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._label = label
        self._compute_retained = compute_retained_sizes
        self._chunk_size = chunk_size
        self._checkpoint = checkpoint
        self._diagnostics: List[UnresolvableReference] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def decode(self, raw: Mapping[str, Any]) -> HeapSnapshot:
        """Decode *raw* and return an immutable snapshot."""
        self._diagnostics = []
        if not isinstance(raw, Mapping):
            raise MalformedSnapshot("snapshot document must be a JSON object", self._label)

        meta = self._extract_meta(raw)
        node_fields = self._field_list(meta, "node_fields")
        strings = self._array(raw, "strings", required=False)
        node_data = self._array(raw, "nodes")
        edge_data = self._array(raw, "edges", required=False)
        edge_fields = self._field_list(meta, "edge_fields") if edge_data else []

        missing = [f for f in _REQUIRED_NODE_FIELDS if f not in node_fields]
        if missing:
            raise MalformedSnapshot(
                f"node_fields is missing required field(s): {', '.join(missing)}",
                self._label,
            )

        node_stride = len(node_fields)
        if len(node_data) % node_stride != 0:
            raise MalformedSnapshot(
                f"node array length {len(node_data)} is not a multiple of "
                f"{node_stride} node fields",
                self._label,
            )
        node_count = len(node_data) // node_stride

        node_type_names = self._type_table(meta, "node_types", node_fields.index("type"))

        nodes, edge_counts = self._decode_nodes(
            node_data, node_fields, node_type_names, strings, node_count,
        )
        size_mode = SizeMode.provided if "retained_size" in node_fields else SizeMode.self_size

        edges: List[HeapEdge] = []
        if edge_data:
            edges = self._decode_edges(
                edge_data, edge_fields, meta, strings, nodes, node_stride, edge_counts,
            )
        elif edge_counts and sum(edge_counts) > 0:
            raise MalformedSnapshot(
                f"nodes declare {sum(edge_counts)} edges but the edge array is empty",
                self._label,
            )

        snapshot = HeapSnapshot(
            nodes,
            edges,
            size_mode=size_mode,
            diagnostics=self._diagnostics,
            label=self._label,
        )
        if self._diagnostics:
            logger.warning(
                "%s: recovered %d unresolvable reference(s) while decoding.",
                self._label or "snapshot", len(self._diagnostics),
            )

        if self._compute_retained and snapshot.node_count:
            from heapleak.snapshot.dominators import apply_dominator_sizes

            snapshot = apply_dominator_sizes(snapshot)

        logger.debug(
            "Decoded %s: %d nodes, %d edges, size mode %s.",
            self._label or "snapshot",
            snapshot.node_count,
            snapshot.edge_count,
            snapshot.size_mode.value,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Meta / table helpers
    # ------------------------------------------------------------------

    def _extract_meta(self, raw: Mapping[str, Any]) -> Mapping[str, Any]:
        header = raw.get("snapshot")
        meta: Any = None
        if isinstance(header, Mapping):
            meta = header.get("meta")
        if meta is None:
            meta = raw.get("meta")
        if not isinstance(meta, Mapping):
            raise MalformedSnapshot("missing snapshot meta descriptor", self._label)
        return meta

    def _field_list(self, meta: Mapping[str, Any], key: str) -> List[str]:
        fields = meta.get(key)
        if not isinstance(fields, list) or not fields:
            raise MalformedSnapshot(f"meta.{key} must be a non-empty list", self._label)
        return [str(f) for f in fields]

    def _array(self, raw: Mapping[str, Any], key: str, required: bool = True) -> Sequence[Any]:
        value = raw.get(key)
        if value is None:
            if required:
                raise MalformedSnapshot(f"missing '{key}' array", self._label)
            return []
        if not isinstance(value, (list, tuple)):
            raise MalformedSnapshot(f"'{key}' must be an array", self._label)
        return value

    def _type_table(self, meta: Mapping[str, Any], key: str, position: int) -> List[str]:
        types = meta.get(key)
        if not isinstance(types, list) or position >= len(types):
            raise MalformedSnapshot(f"meta.{key} has no type-name table", self._label)
        table = types[position]
        if not isinstance(table, list):
            raise MalformedSnapshot(
                f"meta.{key}[{position}] must list the type names", self._label,
            )
        return [str(t) for t in table]

    def _string_at(self, strings: Sequence[Any], value: int, position: int) -> str:
        if 0 <= value < len(strings):
            return str(strings[value])
        self._diagnostics.append(UnresolvableReference("strings", position, value))
        return ""

    def _tick(self, done: int, total: int) -> None:
        if self._checkpoint is not None:
            self._checkpoint(done, total)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _decode_nodes(
        self,
        data: Sequence[Any],
        fields: List[str],
        type_names: List[str],
        strings: Sequence[Any],
        count: int,
    ) -> Tuple[List[HeapNode], Optional[List[int]]]:
        stride = len(fields)
        type_off = fields.index("type")
        name_off = fields.index("name")
        id_off = fields.index("id")
        self_off = fields.index("self_size")
        retained_off = fields.index("retained_size") if "retained_size" in fields else -1
        edge_count_off = fields.index("edge_count") if "edge_count" in fields else -1

        nodes: List[HeapNode] = []
        edge_counts: Optional[List[int]] = [] if edge_count_off >= 0 else None
        kinds = [NodeKind.from_type_name(t) for t in type_names]

        for start in range(0, count, self._chunk_size):
            stop = min(start + self._chunk_size, count)
            for index in range(start, stop):
                base = index * stride
                try:
                    type_code = int(data[base + type_off])
                    name_idx = int(data[base + name_off])
                    node_id = int(data[base + id_off])
                    self_size = int(data[base + self_off])
                    retained = int(data[base + retained_off]) if retained_off >= 0 else self_size
                    edge_count = int(data[base + edge_count_off]) if edge_count_off >= 0 else 0
                except (TypeError, ValueError) as exc:
                    raise MalformedSnapshot(
                        f"non-integer value in node record {index}: {exc}", self._label,
                    ) from exc

                if 0 <= type_code < len(kinds):
                    kind = kinds[type_code]
                else:
                    self._diagnostics.append(
                        UnresolvableReference("node_types", base + type_off, type_code)
                    )
                    kind = NodeKind.hidden

                nodes.append(
                    HeapNode(
                        id=node_id,
                        index=index,
                        kind=kind,
                        name=self._string_at(strings, name_idx, base + name_off),
                        self_size=self_size,
                        retained_size=max(retained, self_size),
                    )
                )
                if edge_counts is not None:
                    edge_counts.append(edge_count)
            self._tick(stop, count)

        self._report_duplicate_ids(nodes)
        return nodes, edge_counts

    def _report_duplicate_ids(self, nodes: List[HeapNode]) -> None:
        seen: Dict[int, int] = {}
        for node in nodes:
            if node.id in seen:
                self._diagnostics.append(UnresolvableReference("node_ids", node.index, node.id))
            else:
                seen[node.id] = node.index

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def _decode_edges(
        self,
        data: Sequence[Any],
        fields: List[str],
        meta: Mapping[str, Any],
        strings: Sequence[Any],
        nodes: List[HeapNode],
        node_stride: int,
        edge_counts: Optional[List[int]],
    ) -> List[HeapEdge]:
        name_field = "name_or_index" if "name_or_index" in fields else "name"
        to_field = "to_node" if "to_node" in fields else "to"
        missing = [f for f in ("type", name_field, to_field) if f not in fields]
        if missing:
            raise MalformedSnapshot(
                f"edge_fields is missing required field(s): {', '.join(missing)}",
                self._label,
            )
        from_off = fields.index("from_node") if "from_node" in fields else -1
        if from_off < 0 and edge_counts is None:
            raise MalformedSnapshot(
                "edges present but neither node edge_count nor edge from_node is encoded",
                self._label,
            )

        stride = len(fields)
        if len(data) % stride != 0:
            raise MalformedSnapshot(
                f"edge array length {len(data)} is not a multiple of {stride} edge fields",
                self._label,
            )
        count = len(data) // stride

        owners: Optional[List[int]] = None
        if from_off < 0 and edge_counts is not None:
            owners = self._expand_owners(edge_counts, count)

        type_off = fields.index("type")
        name_off = fields.index(name_field)
        to_off = fields.index(to_field)
        kinds = [
            EdgeKind.from_type_name(t)
            for t in self._type_table(meta, "edge_types", type_off)
        ]
        node_count = len(nodes)

        edges: List[HeapEdge] = []
        for start in range(0, count, self._chunk_size):
            stop = min(start + self._chunk_size, count)
            for pos in range(start, stop):
                base = pos * stride
                try:
                    type_code = int(data[base + type_off])
                    name_or_index = int(data[base + name_off])
                    to_offset = int(data[base + to_off])
                    from_offset = int(data[base + from_off]) if from_off >= 0 else -1
                except (TypeError, ValueError) as exc:
                    raise MalformedSnapshot(
                        f"non-integer value in edge record {pos}: {exc}", self._label,
                    ) from exc

                if 0 <= type_code < len(kinds):
                    kind = kinds[type_code]
                else:
                    self._diagnostics.append(
                        UnresolvableReference("edge_types", base + type_off, type_code)
                    )
                    kind = EdgeKind.hidden

                if owners is not None:
                    from_index = owners[pos]
                else:
                    from_index = self._node_index(from_offset, node_stride, node_count)
                    if from_index < 0:
                        self._diagnostics.append(
                            UnresolvableReference("nodes", base + from_off, from_offset)
                        )
                        continue

                to_index = self._node_index(to_offset, node_stride, node_count)
                if to_index < 0:
                    self._diagnostics.append(
                        UnresolvableReference("nodes", base + to_off, to_offset)
                    )
                    continue

                if kind is EdgeKind.element:
                    name: Optional[str] = str(name_or_index)
                elif kind is EdgeKind.hidden:
                    name = None
                else:
                    name = self._string_at(strings, name_or_index, base + name_off)

                source = nodes[from_index]
                target = nodes[to_index]
                edges.append(
                    HeapEdge(
                        from_id=source.id,
                        to_id=target.id,
                        from_index=from_index,
                        to_index=to_index,
                        kind=kind,
                        name=name,
                    )
                )
            self._tick(stop, count)
        return edges

    def _expand_owners(self, edge_counts: List[int], edge_total: int) -> List[int]:
        declared = sum(edge_counts)
        if declared != edge_total or any(c < 0 for c in edge_counts):
            raise MalformedSnapshot(
                f"node edge_count total {declared} does not match {edge_total} edges",
                self._label,
            )
        owners: List[int] = []
        for index, n in enumerate(edge_counts):
            owners.extend([index] * n)
        return owners

    @staticmethod
    def _node_index(offset: int, stride: int, node_count: int) -> int:
        """Convert a node-array offset into a node index, or -1."""
        if offset < 0 or offset % stride != 0:
            return -1
        index = offset // stride
        return index if index < node_count else -1


def decode_snapshot(
    raw: Mapping[str, Any],
    label: str = "",
    compute_retained_sizes: bool = False,
    chunk_size: int = _DEFAULT_CHUNK_SIZE,
    checkpoint: Optional[Checkpoint] = None,
) -> HeapSnapshot:
    """Decode *raw* into a :class:`HeapSnapshot`.

    Parameters
    ----------
    raw:
        Parsed snapshot document.
    label:
        Name used in error messages and diagnostics (usually the file name).
    compute_retained_sizes:
        Run the dominator-tree pass so ``retained_size`` is the true
        transitive size.  Without it the snapshot keeps producer-provided
        sizes, or ``self_size`` when none were encoded.
    chunk_size:
        Number of records processed between *checkpoint* calls.
    checkpoint:
        Optional ``checkpoint(done, total)`` callable invoked between
        chunks; raising from it aborts the decode.

    Raises
    ------
    MalformedSnapshot
        If the document is structurally invalid.
    """
    decoder = SnapshotDecoder(
        label=label,
        compute_retained_sizes=compute_retained_sizes,
        chunk_size=chunk_size,
        checkpoint=checkpoint,
    )
    return decoder.decode(raw)
