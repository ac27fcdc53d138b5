"""Encode a :class:`HeapSnapshot` back into the flat snapshot layout.

Used to write synthetic fixtures and to export filtered graphs; the output
decodes with :func:`heapleak.snapshot.decoder.decode_snapshot`.
"""

from __future__ import annotations

from typing import Any, Dict, List

from heapleak.snapshot.model import EdgeKind, HeapSnapshot, NodeKind, SizeMode

NODE_TYPE_NAMES: List[str] = [kind.value for kind in NodeKind]
EDGE_TYPE_NAMES: List[str] = [kind.value for kind in EdgeKind]


class _StringTable:
    def __init__(self) -> None:
        self.strings: List[str] = []
        self._index: Dict[str, int] = {}

    def add(self, value: str) -> int:
        index = self._index.get(value)
        if index is None:
            index = len(self.strings)
            self._index[value] = index
            self.strings.append(value)
        return index


def encode_snapshot(snapshot: HeapSnapshot, include_retained: bool = False) -> Dict[str, Any]:
    """Return a raw snapshot document for *snapshot*.

    Parameters
    ----------
    snapshot:
        The graph to encode.
    include_retained:
        Also emit a ``retained_size`` node field.  Defaults to on when the
        snapshot's sizes are not plain self sizes.
    """
    with_retained = include_retained or snapshot.size_mode is not SizeMode.self_size
    node_fields = ["type", "name", "id", "self_size", "edge_count"]
    node_types: List[Any] = [NODE_TYPE_NAMES, "string", "number", "number", "number"]
    if with_retained:
        node_fields.append("retained_size")
        node_types.append("number")

    node_type_code = {name: i for i, name in enumerate(NODE_TYPE_NAMES)}
    edge_type_code = {name: i for i, name in enumerate(EDGE_TYPE_NAMES)}
    strings = _StringTable()
    stride = len(node_fields)

    nodes: List[int] = []
    for node in snapshot.nodes:
        nodes.extend([
            node_type_code[node.kind.value],
            strings.add(node.name),
            node.id,
            node.self_size,
            snapshot.out_degree(node.index),
        ])
        if with_retained:
            nodes.append(node.retained_size)

    edges: List[int] = []
    for edge in snapshot.edges:
        if edge.kind is EdgeKind.element:
            name_or_index = int(edge.name) if edge.name and edge.name.isdigit() else 0
        elif edge.kind is EdgeKind.hidden:
            name_or_index = 0
        else:
            name_or_index = strings.add(edge.name or "")
        edges.extend([edge_type_code[edge.kind.value], name_or_index, edge.to_index * stride])

    return {
        "snapshot": {
            "meta": {
                "node_fields": node_fields,
                "node_types": node_types,
                "edge_fields": ["type", "name_or_index", "to_node"],
                "edge_types": [EDGE_TYPE_NAMES, "string_or_number", "node"],
            },
            "node_count": snapshot.node_count,
            "edge_count": snapshot.edge_count,
        },
        "nodes": nodes,
        "edges": edges,
        "strings": strings.strings,
    }
