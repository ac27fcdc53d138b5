"""Retained sizes from the dominator tree of a heap graph.

Implements the iterative algorithm of Cooper, Harvey and Kennedy ("A Simple,
Fast Dominance Algorithm").  A node's retained size is the sum of the self
sizes of every node it dominates, itself included.  Weak edges do not keep
objects alive and are ignored.  Nodes unreachable from the root keep their
self size.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from heapleak.snapshot.model import EdgeKind, HeapSnapshot, SizeMode

logger = logging.getLogger(__name__)

_UNDEFINED = -1


def _postorder(successors: Sequence[Sequence[int]], root: int) -> List[int]:
    """Iterative DFS postorder of nodes reachable from *root*."""
    order: List[int] = []
    visited = bytearray(len(successors))
    visited[root] = 1
    stack = [(root, 0)]
    while stack:
        node, child_pos = stack[-1]
        children = successors[node]
        if child_pos < len(children):
            stack[-1] = (node, child_pos + 1)
            child = children[child_pos]
            if not visited[child]:
                visited[child] = 1
                stack.append((child, 0))
        else:
            stack.pop()
            order.append(node)
    return order


def compute_retained_sizes(
    self_sizes: Sequence[int],
    successors: Sequence[Sequence[int]],
    root: int = 0,
) -> List[int]:
    """Return the retained size of every node.

    Parameters
    ----------
    self_sizes:
        Self size per node index.
    successors:
        Outgoing neighbour indices per node index (strong references only).
    root:
        Index of the graph root.

    Returns
    -------
    list[int]
        Retained size per node index.
    """
    n = len(self_sizes)
    retained = [int(s) for s in self_sizes]
    if n == 0:
        return retained

    postorder = _postorder(successors, root)
    post_number = [_UNDEFINED] * n
    for number, node in enumerate(postorder):
        post_number[node] = number

    predecessors: List[List[int]] = [[] for _ in range(n)]
    for node in postorder:
        for child in successors[node]:
            predecessors[child].append(node)

    idom = [_UNDEFINED] * n
    idom[root] = root
    reverse_postorder = postorder[::-1]

    def intersect(a: int, b: int) -> int:
        while a != b:
            while post_number[a] < post_number[b]:
                a = idom[a]
            while post_number[b] < post_number[a]:
                b = idom[b]
        return a

    changed = True
    passes = 0
    while changed:
        changed = False
        passes += 1
        for node in reverse_postorder:
            if node == root:
                continue
            new_idom = _UNDEFINED
            for pred in predecessors[node]:
                if idom[pred] == _UNDEFINED:
                    continue
                new_idom = pred if new_idom == _UNDEFINED else intersect(pred, new_idom)
            if new_idom != _UNDEFINED and idom[node] != new_idom:
                idom[node] = new_idom
                changed = True

    # Postorder visits every dominated node before its dominator.
    for node in postorder:
        if node != root:
            retained[idom[node]] += retained[node]

    logger.debug(
        "Dominator pass converged after %d iteration(s) over %d reachable nodes.",
        passes, len(postorder),
    )
    return retained


def apply_dominator_sizes(snapshot: HeapSnapshot) -> HeapSnapshot:
    """Return a copy of *snapshot* with dominator-derived retained sizes."""
    successors: List[List[int]] = [[] for _ in range(snapshot.node_count)]
    for edge in snapshot.edges:
        if edge.kind is not EdgeKind.weak:
            successors[edge.from_index].append(edge.to_index)
    sizes = compute_retained_sizes(
        [node.self_size for node in snapshot.nodes], successors, root=0,
    )
    return snapshot.with_retained_sizes(sizes, SizeMode.dominator)
