"""
Undo History and Compensating Operations
========================================

Undo never rewinds the log. It appends explicit inverse operations so
the log alone always reproduces the visible state.

INVERSES:
=========
create          -> tombstone
updateText      -> updateText (old text)
move            -> move (old parent, old pos)
setStatus       -> setStatus (old status)
toggleCollapsed -> toggleCollapsed
tombstone       -> create (original fields, same id)
addTag          -> removeTag
removeTag       -> addTag
restore         -> tombstone
setDueDate      -> setDueDate (old value)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..contracts.nodes import Node
from ..contracts.ops import (
    Operation,
    OpType,
    create_payload,
    due_date_payload,
    id_payload,
    move_payload,
    set_status_payload,
    tag_payload,
    update_text_payload,
)
from ..temporal.sequence import OpFactory


@dataclass(frozen=True)
class UndoEntry:
    """One undoable step: the op plus copies of its targets before it ran."""
    op: Operation
    before_snapshots: Tuple[Node, ...] = field(default_factory=tuple)
    selection_before: Optional[str] = None


class UndoHistory:
    """Bounded undo stack plus redo stack."""

    def __init__(self, capacity: int = 200):
        self._capacity = capacity
        self._undo: List[UndoEntry] = []
        self._redo: List[UndoEntry] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def record(self, entry: UndoEntry) -> None:
        """Push a new forward action; invalidates redo history."""
        self._push_undo(entry)
        self._redo.clear()

    def _push_undo(self, entry: UndoEntry) -> None:
        self._undo.append(entry)
        if len(self._undo) > self._capacity:
            del self._undo[0]

    def pop_undo(self) -> Optional[UndoEntry]:
        return self._undo.pop() if self._undo else None

    def push_redo(self, entry: UndoEntry) -> None:
        self._redo.append(entry)

    def pop_redo(self) -> Optional[UndoEntry]:
        return self._redo.pop() if self._redo else None

    def push_after_redo(self, entry: UndoEntry) -> None:
        """Push onto undo without touching the remaining redo entries."""
        self._push_undo(entry)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()


def build_compensating_ops(entry: UndoEntry, factory: OpFactory) -> List[Operation]:
    """Inverse operations for entry, in the order they must be applied."""
    op = entry.op
    if op.type is OpType.CREATE:
        return [factory.make(OpType.TOMBSTONE, id_payload(op.node_id))]

    ops: List[Operation] = []
    for snap in entry.before_snapshots:
        inverse = _inverse_for(op, snap, factory)
        if inverse is not None:
            ops.append(inverse)
    return ops


def _inverse_for(op: Operation, snap: Node, factory: OpFactory) -> Optional[Operation]:
    kind = op.type
    if kind is OpType.UPDATE_TEXT:
        return factory.make(OpType.UPDATE_TEXT, update_text_payload(snap.id, snap.text))
    if kind is OpType.MOVE:
        return factory.make(OpType.MOVE, move_payload(snap.id, snap.parent_id, snap.pos))
    if kind is OpType.SET_STATUS:
        return factory.make(OpType.SET_STATUS, set_status_payload(snap.id, snap.status))
    if kind is OpType.TOGGLE_COLLAPSED:
        return factory.make(OpType.TOGGLE_COLLAPSED, id_payload(snap.id))
    if kind is OpType.TOMBSTONE:
        return factory.make(OpType.CREATE, create_payload(
            snap.id,
            snap.parent_id,
            snap.pos,
            text=snap.text,
            status=snap.status,
            tags=snap.tags,
            due_date=snap.due_date,
            collapsed=snap.collapsed,
        ))
    if kind is OpType.ADD_TAG:
        tag = op.payload.get("tag")
        # Adding a tag the node already had changed nothing
        if tag in snap.tags:
            return None
        return factory.make(OpType.REMOVE_TAG, tag_payload(snap.id, tag))
    if kind is OpType.REMOVE_TAG:
        tag = op.payload.get("tag")
        if tag not in snap.tags:
            return None
        return factory.make(OpType.ADD_TAG, tag_payload(snap.id, tag))
    if kind is OpType.RESTORE:
        if not snap.deleted:
            return None
        return factory.make(OpType.TOMBSTONE, id_payload(snap.id))
    if kind is OpType.SET_DUE_DATE:
        return factory.make(OpType.SET_DUE_DATE, due_date_payload(snap.id, snap.due_date))
    return None
