"""Heap snapshot graph model, decoder and encoder."""

from heapleak.snapshot.model import (
    EdgeKind,
    HeapEdge,
    HeapNode,
    HeapSnapshot,
    NodeKind,
    SizeMode,
)
from heapleak.snapshot.decoder import SnapshotDecoder, decode_snapshot
from heapleak.snapshot.encoder import encode_snapshot
from heapleak.snapshot.dominators import apply_dominator_sizes, compute_retained_sizes
from heapleak.snapshot.filters import ExclusionFilter

__all__ = [
    "EdgeKind",
    "HeapEdge",
    "HeapNode",
    "HeapSnapshot",
    "NodeKind",
    "SizeMode",
    "SnapshotDecoder",
    "decode_snapshot",
    "encode_snapshot",
    "apply_dominator_sizes",
    "compute_retained_sizes",
    "ExclusionFilter",
]
