"""
Operation Projector
===================

Folds operations into a node mapping. The mapping is always a derived
projection; the operation log is the source of truth.

GUARANTEES:
===========
1. Total - apply_op never raises; an op naming an absent node is a no-op
2. Order-independent input - rebuild_state sorts by seq before folding
3. Deterministic - deleted_at comes from the op timestamp, never the clock
4. Acyclic - a move under the node itself or its descendant is ignored
"""

from __future__ import annotations
from typing import Iterable, Mapping, Optional

from ..contracts.nodes import Node, NodeMap
from ..contracts.ops import Operation, OpType, sort_by_seq
from ..core.tree import is_descendant


def apply_op(nodes: NodeMap, op: Operation) -> Optional[str]:
    """
    Apply one operation in place.

    Returns the affected node id, or None when the op changed nothing
    because its target is absent (or the move would create a cycle).
    """
    payload = op.payload
    node_id = payload.get("id")
    if node_id is None:
        return None

    if op.type is OpType.CREATE:
        nodes[node_id] = Node(
            id=node_id,
            parent_id=payload.get("parentId"),
            pos=payload.get("pos", ""),
            text=payload.get("text", ""),
            status=payload.get("status", "todo"),
            collapsed=bool(payload.get("collapsed", False)),
            deleted=False,
            deleted_at=None,
            tags=_unique(payload.get("tags") or []),
            due_date=payload.get("dueDate"),
        )
        return node_id

    node = nodes.get(node_id)
    if node is None:
        return None

    if op.type is OpType.UPDATE_TEXT:
        node.text = payload.get("text", "")
    elif op.type is OpType.MOVE:
        parent_id = payload.get("parentId")
        if parent_id is not None and is_descendant(nodes, parent_id, node_id):
            return None
        node.parent_id = parent_id
        node.pos = payload.get("pos", node.pos)
    elif op.type is OpType.SET_STATUS:
        node.status = payload.get("status", node.status)
    elif op.type is OpType.TOGGLE_COLLAPSED:
        node.collapsed = not node.collapsed
    elif op.type is OpType.TOMBSTONE:
        node.deleted = True
        node.deleted_at = op.ts
    elif op.type is OpType.RESTORE:
        node.deleted = False
        node.deleted_at = None
    elif op.type is OpType.ADD_TAG:
        tag = payload.get("tag")
        if tag and tag not in node.tags:
            node.tags.append(tag)
    elif op.type is OpType.REMOVE_TAG:
        tag = payload.get("tag")
        node.tags = [t for t in node.tags if t != tag]
    elif op.type is OpType.SET_DUE_DATE:
        node.due_date = payload.get("dueDate")
    return node_id


def rebuild_state(base_nodes: Iterable[Node], ops: Iterable[Operation]) -> NodeMap:
    """
    Copy base_nodes and fold ops over them in seq order.

    Pure: neither argument is mutated. Folding the full history equals
    folding a snapshot plus the ops after its seq_after.
    """
    nodes: NodeMap = {node.id: node.copy() for node in base_nodes}
    for op in sort_by_seq(ops):
        apply_op(nodes, op)
    return nodes


def find_root_id(nodes: Mapping[str, Node]) -> Optional[str]:
    """The live node without a parent, if any."""
    for node in nodes.values():
        if node.parent_id is None and not node.deleted:
            return node.id
    return None


def _unique(tags: Iterable[str]) -> list:
    out: list = []
    for tag in tags:
        if tag not in out:
            out.append(tag)
    return out
