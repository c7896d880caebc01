"""
Document Engine
===============

Owns the authoritative in-memory tree of ONE document and is the only
writer of its operation log.

BOUNDARY ENFORCEMENT:
- Every mutation is an Operation folded through the projector
- Mutations are synchronous; durability is deferred (write buffer)
- Undo appends compensating operations, it never rewrites the log
- No module-level state: each open document gets its own engine

INVARIANTS:
- The log alone reproduces the tree (snapshots are checkpoints)
- A move never makes a node its own ancestor
- Only one snapshot write is in flight at a time
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple
import logging

from ..config import EngineConfig
from ..contracts.base import Error, ErrorCode, Result, new_id
from ..contracts.events import AuditEventType, AuditLogEntry
from ..contracts.nodes import (
    DEFAULT_STATUSES,
    Node,
    NodeMap,
    Snapshot,
    StatusDef,
    copy_nodes,
    default_status_id,
)
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
from ..core.rank import average_key_length, initial_rank, rank_after, rank_before, rank_between, spaced_ranks
from ..core.tree import (
    ancestors,
    children_index,
    is_descendant,
    ordered_children,
    subtree_ids,
    walk_depth_first,
)
from ..codec.export import (
    EXPORT_VERSION,
    ExportedDocument,
    ExportedNode,
    ExportedStatus,
    dump_document,
    load_document,
)
from ..codec.formats import EXPORTERS, IMPORTERS, flatten_import_nodes
from ..observability import AuditLog
from ..storage.buffer import OpWriteBuffer
from ..storage.stores import OpStore
from ..temporal.clock import AsyncioScheduler, Clock, Scheduler, SystemClock
from ..temporal.projector import apply_op, find_root_id, rebuild_state
from ..temporal.sequence import OpFactory
from .debounce import TextDebouncer
from .undo import UndoEntry, UndoHistory, build_compensating_ops

logger = logging.getLogger(__name__)

STATUS_SETTING = "statusConfig"
TAG_COLORS_SETTING = "tagColors"

ORIGIN_LOCAL = "local"
ORIGIN_EXTERNAL = "external"


@dataclass(frozen=True)
class ChangeSet:
    """
    What a mutation touched.

    Returned from dispatch and delivered to subscribers in place of
    object-identity change tracking.
    """
    node_ids: Tuple[str, ...] = field(default_factory=tuple)
    op_types: Tuple[OpType, ...] = field(default_factory=tuple)
    origin: str = ORIGIN_LOCAL
    schema_changed: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.node_ids and not self.schema_changed

    @property
    def node_id(self) -> Optional[str]:
        return self.node_ids[0] if self.node_ids else None

    def merge(self, other: ChangeSet) -> ChangeSet:
        ids = self.node_ids + tuple(i for i in other.node_ids if i not in self.node_ids)
        return ChangeSet(
            node_ids=ids,
            op_types=self.op_types + other.op_types,
            origin=self.origin,
            schema_changed=self.schema_changed or other.schema_changed,
        )

    @staticmethod
    def empty() -> ChangeSet:
        return ChangeSet()


Listener = Callable[[ChangeSet], None]


class DocumentEngine:
    """
    Per-document engine context.

    INTERFACE GROUPS:
    =================
    - Lifecycle: init, suspend, close
    - Dispatch: dispatch, undo, redo
    - Node actions: create_node, update_text, move_node, ...
    - Status schema: add_status, remove_status, ...
    - Persistence: take_snapshot, flush, export_json, import_json
    - External trees: adopt_tree
    """

    def __init__(
        self,
        store: OpStore,
        config: Optional[EngineConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Clock] = None,
        doc_id: str = "default",
    ):
        self._config = config or EngineConfig()
        self._store = store
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock or SystemClock()
        self.doc_id = doc_id

        self._nodes: NodeMap = {}
        self._root_id: str = ""
        self._selected_id: Optional[str] = None
        self._status_schema: List[StatusDef] = list(DEFAULT_STATUSES)
        self._tag_colors: Dict[str, str] = {}

        self._factory = OpFactory(self._config.client_id, self._clock)
        self._history = UndoHistory(self._config.max_undo)
        self._buffer = OpWriteBuffer(store, self._scheduler, self._config.op_flush_delay)
        self._debouncer = TextDebouncer(
            self._scheduler, self._config.text_debounce_delay, self._commit_text
        )
        self._text_before: Dict[str, Node] = {}

        self._last_seq = 0
        self._ops_since_snapshot = 0
        self._snapshot_in_flight = False
        self._rebalancing = False

        self._listeners: List[Listener] = []
        self._batch: Optional[List[ChangeSet]] = None
        self._audit = AuditLog("engine")
        self._ready = False

    # =========================================================================
    # STATE ACCESS
    # =========================================================================

    @property
    def nodes(self) -> Mapping[str, Node]:
        """Live node mapping. Treat as read-only; mutate through dispatch."""
        return self._nodes

    @property
    def root_id(self) -> str:
        return self._root_id

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def status_schema(self) -> List[StatusDef]:
        return list(self._status_schema)

    @property
    def tag_colors(self) -> Dict[str, str]:
        return dict(self._tag_colors)

    @property
    def last_seq(self) -> int:
        return self._last_seq

    @property
    def ops_since_snapshot(self) -> int:
        return self._ops_since_snapshot

    @property
    def history(self) -> UndoHistory:
        return self._history

    @property
    def store(self) -> OpStore:
        return self._store

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def factory(self) -> OpFactory:
        return self._factory

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def has_pending_writes(self) -> bool:
        return self._buffer.pending > 0 or bool(self._debouncer.pending_ids())

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def children(self, parent_id: Optional[str] = None) -> List[Node]:
        """Live children in pos order; defaults to the root's children."""
        return ordered_children(self._nodes, self._root_id if parent_id is None else parent_id)

    def snapshot_nodes(self) -> NodeMap:
        """Deep copy of the current tree."""
        return copy_nodes(self._nodes)

    def trashed_nodes(self) -> List[Node]:
        """Deleted non-root nodes, most recently deleted first."""
        trashed = [n for n in self._nodes.values() if n.deleted and n.parent_id is not None]
        trashed.sort(key=lambda n: n.deleted_at or 0, reverse=True)
        return trashed

    def all_tags(self) -> List[str]:
        tags = set()
        for node in self._nodes.values():
            if not node.deleted:
                tags.update(node.tags)
        return sorted(tags)

    def select(self, node_id: Optional[str]) -> None:
        if node_id is None or node_id in self._nodes:
            self._selected_id = node_id

    def make_op(self, op_type: OpType, payload: Mapping[str, Any]) -> Operation:
        """Stamp an operation with this document's sequence."""
        return self._factory.make(op_type, payload)

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, changes: ChangeSet) -> None:
        if changes.is_empty:
            return
        if self._batch is not None:
            self._batch.append(changes)
            return
        for listener in list(self._listeners):
            listener(changes)

    @contextmanager
    def _batched(self, origin: str = ORIGIN_LOCAL) -> Iterator[None]:
        """Deliver one merged ChangeSet for everything inside the block."""
        if self._batch is not None:
            yield
            return
        self._batch = []
        try:
            yield
        finally:
            collected, self._batch = self._batch, None
            merged = ChangeSet(origin=origin)
            for changes in collected:
                merged = merged.merge(changes)
            self._notify(merged)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def init(self) -> None:
        """
        Load the document.

        Latest snapshot plus later ops; else the full log; else a brand
        new document written as one batch of create ops.
        """
        self._load_settings()
        snapshot = self._store.get_latest_snapshot()

        if snapshot is not None:
            tail = self._store.query_after(snapshot.seq_after)
            self._nodes = rebuild_state(snapshot.nodes, tail)
            self._root_id = snapshot.root_id
            max_seq = max([snapshot.seq_after] + [op.seq for op in tail])
            source = "snapshot"
        else:
            ops = self._store.query_all()
            self._nodes = rebuild_state([], ops)
            self._root_id = find_root_id(self._nodes) or ""
            max_seq = ops[-1].seq if ops else 0
            source = "log" if ops else "new"

        self._factory.set_seq(max_seq)
        self._last_seq = max_seq
        self._ops_since_snapshot = 0

        if not self._root_id or self._root_id not in self._nodes:
            self._bootstrap()
            source = "new"

        if self._selected_id not in self._nodes:
            first = self.children()
            self._selected_id = first[0].id if first else None

        self._ready = True
        logger.info(
            "Document %s loaded from %s: %d nodes, seq %d",
            self.doc_id, source, len(self._nodes), self._last_seq
        )
        self._audit.record(
            "document_loaded", self.doc_id, (("source", source),), AuditEventType.SYSTEM
        )

    def _bootstrap(self) -> None:
        root_id = new_id()
        status = default_status_id(self._status_schema)
        ops = [
            self._factory.make(OpType.CREATE, create_payload(
                root_id, None, initial_rank(), text="Root", status=status
            )),
            self._factory.make(OpType.CREATE, create_payload(
                new_id(), root_id, initial_rank(), text="", status=status
            )),
        ]
        for op in ops:
            apply_op(self._nodes, op)
        result = self._store.append_batch(ops)
        if not result.success:
            logger.error("Failed to persist new document %s: %s", self.doc_id, result.error)
        self._root_id = root_id
        self._last_seq = ops[-1].seq

    def _load_settings(self) -> None:
        raw = self._store.get_setting(STATUS_SETTING)
        self._status_schema = _parse_status_setting(raw) or list(DEFAULT_STATUSES)
        colors = self._store.get_setting(TAG_COLORS_SETTING)
        self._tag_colors = dict(colors) if isinstance(colors, dict) else {}

    def flush(self) -> Result:
        """Commit pending text edits and write every buffered op now."""
        self._debouncer.flush()
        result = self._buffer.flush()
        if not result.success:
            return Result.failure(result.error)
        return Result.success(result.count)

    def suspend(self) -> Result:
        """Flush everything and cancel all timers (document switch)."""
        result = self.flush()
        self._debouncer.cancel_all()
        self._buffer.cancel()
        return result

    def close(self) -> Result:
        result = self.suspend()
        self._listeners.clear()
        self._ready = False
        return result

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, op: Operation, record_undo: bool = True) -> Result:
        """
        Apply op to the tree and persist it.

        Returns Result(ChangeSet). An op naming an absent node is a
        tolerated no-op (empty ChangeSet); invalid moves are rejected
        without touching state.
        """
        if op.type is not OpType.CREATE and op.payload.get("id") not in self._nodes:
            return Result.success(ChangeSet.empty())

        rejection = self._validate(op)
        if rejection is not None:
            logger.debug("Rejected %s on %s: %s", op.type.value, op.payload.get("id"), rejection.message)
            return Result.failure(rejection)

        if record_undo:
            self._history.record(UndoEntry(
                op=op,
                before_snapshots=self._capture(op),
                selection_before=self._selected_id,
            ))

        affected = apply_op(self._nodes, op)
        self._persist(op)

        changes = ChangeSet(
            node_ids=(affected,) if affected else (),
            op_types=(op.type,),
        )
        if op.type in (OpType.CREATE, OpType.MOVE) and not self._rebalancing:
            node = self._nodes.get(op.node_id)
            if node is not None and node.parent_id is not None:
                changes = changes.merge(self._rebalance(node.parent_id))

        self._notify(changes)
        return Result.success(changes)

    def _validate(self, op: Operation) -> Optional[Error]:
        node_id = op.payload.get("id")
        if op.type is OpType.MOVE:
            parent_id = op.payload.get("parentId")
            if node_id == self._root_id:
                return Error(ErrorCode.ROOT_IMMUTABLE, "The root node cannot be moved",
                             context=(("id", node_id),))
            if parent_id is None:
                return Error(ErrorCode.INVALID_MOVE, "Move needs a target parent",
                             context=(("id", node_id),))
            if parent_id not in self._nodes:
                return Error(ErrorCode.UNKNOWN_NODE, "Move target parent does not exist",
                             context=(("id", node_id), ("parentId", parent_id)))
            if is_descendant(self._nodes, parent_id, node_id):
                return Error(ErrorCode.CYCLIC_MOVE, "Cannot move a node under itself or its descendant",
                             context=(("id", node_id), ("parentId", parent_id)))
        elif op.type is OpType.TOMBSTONE and node_id == self._root_id:
            return Error(ErrorCode.ROOT_IMMUTABLE, "The root node cannot be deleted",
                         context=(("id", node_id),))
        return None

    def _capture(self, op: Operation) -> Tuple[Node, ...]:
        return tuple(
            self._nodes[node_id].copy()
            for node_id in op.target_ids()
            if node_id in self._nodes
        )

    def _persist(self, op: Operation) -> None:
        self._buffer.enqueue(op)
        self._last_seq = max(self._last_seq, op.seq)
        self._ops_since_snapshot += 1
        if self._ops_since_snapshot >= self._config.snapshot_interval:
            self.take_snapshot()

    def _rebalance(self, parent_id: str) -> ChangeSet:
        """Re-space sibling keys once they have grown too long."""
        siblings = ordered_children(self._nodes, parent_id)
        if average_key_length(n.pos for n in siblings) <= self._config.rank_rebalance_threshold:
            return ChangeSet.empty()

        changes = ChangeSet.empty()
        self._rebalancing = True
        try:
            for node, pos in zip(siblings, spaced_ranks(len(siblings))):
                if node.pos == pos:
                    continue
                op = self._factory.make(OpType.MOVE, move_payload(node.id, parent_id, pos))
                apply_op(self._nodes, op)
                self._persist(op)
                changes = changes.merge(ChangeSet((node.id,), (OpType.MOVE,)))
        finally:
            self._rebalancing = False
        logger.debug("Rebalanced %d sibling keys under %s", len(siblings), parent_id)
        return changes

    # =========================================================================
    # UNDO / REDO
    # =========================================================================

    def undo(self) -> Optional[ChangeSet]:
        """
        Revert the most recent undoable action.

        Pending text edits are committed first so they become the step
        that is undone. Returns None when there is nothing to undo.
        """
        self._debouncer.flush()
        entry = self._history.pop_undo()
        if entry is None:
            return None

        changes = ChangeSet.empty()
        for inverse in build_compensating_ops(entry, self._factory):
            affected = apply_op(self._nodes, inverse)
            self._persist(inverse)
            if affected:
                changes = changes.merge(ChangeSet((affected,), (inverse.type,)))

        self._selected_id = entry.selection_before
        self._history.push_redo(entry)
        self._audit.record("undo", entry.op.payload.get("id"), (("op", entry.op.type.value),))
        self._notify(changes)
        return changes

    def redo(self) -> Optional[ChangeSet]:
        """Re-issue the last undone op as a NEW operation (fresh id and seq)."""
        self._debouncer.flush()
        entry = self._history.pop_redo()
        if entry is None:
            return None

        op = self._factory.make(entry.op.type, entry.op.payload)
        self._history.push_after_redo(UndoEntry(
            op=op,
            before_snapshots=self._capture(op),
            selection_before=self._selected_id,
        ))
        affected = apply_op(self._nodes, op)
        self._persist(op)

        changes = ChangeSet((affected,), (op.type,)) if affected else ChangeSet.empty()
        self._audit.record("redo", op.payload.get("id"), (("op", op.type.value),))
        self._notify(changes)
        return changes

    # =========================================================================
    # NODE ACTIONS
    # =========================================================================

    def create_node(
        self,
        parent_id: str,
        pos: Optional[str] = None,
        text: str = "",
        status: Optional[str] = None,
    ) -> Optional[str]:
        """Create a node; pos defaults to after the last child. Returns the new id."""
        if parent_id not in self._nodes:
            return None
        if pos is None:
            kids = ordered_children(self._nodes, parent_id)
            pos = rank_after(kids[-1].pos) if kids else initial_rank()
        node_id = new_id()
        op = self._factory.make(OpType.CREATE, create_payload(
            node_id, parent_id, pos, text=text,
            status=status or default_status_id(self._status_schema),
        ))
        self.dispatch(op)
        return node_id

    def create_sibling_after(self, node_id: str, text: str = "") -> Optional[str]:
        node = self._nodes.get(node_id)
        if node is None or node.parent_id is None:
            return None
        return self.create_node(node.parent_id, self._pos_after(node), text=text)

    def update_text(self, node_id: str, text: str) -> None:
        """
        Apply a keystroke-level edit.

        Memory changes now; the updateText op is written after the node
        has been quiet for text_debounce_delay.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return
        if node_id not in self._text_before:
            self._text_before[node_id] = node.copy()
        node.text = text
        self._debouncer.touch(node_id)
        self._notify(ChangeSet((node_id,), (OpType.UPDATE_TEXT,)))

    def _commit_text(self, node_id: str) -> None:
        before = self._text_before.pop(node_id, None)
        node = self._nodes.get(node_id)
        if node is None or (before is not None and before.text == node.text):
            return
        op = self._factory.make(OpType.UPDATE_TEXT, update_text_payload(node_id, node.text))
        if before is not None:
            self._history.record(UndoEntry(op, (before,), self._selected_id))
        # Already applied in memory by update_text
        self._persist(op)

    def flush_text_edits(self) -> int:
        """Synchronously emit updateText ops for every debounced node."""
        return self._debouncer.flush()

    def move_node(self, node_id: str, parent_id: str, pos: Optional[str] = None) -> Result:
        if pos is None:
            kids = [k for k in ordered_children(self._nodes, parent_id) if k.id != node_id]
            pos = rank_after(kids[-1].pos) if kids else initial_rank()
        return self.dispatch(self._factory.make(OpType.MOVE, move_payload(node_id, parent_id, pos)))

    def set_status(self, node_id: str, status: str) -> Result:
        if not any(s.id == status for s in self._status_schema):
            return Result.failure(Error(ErrorCode.UNKNOWN_STATUS, f"Unknown status {status!r}",
                                        context=(("id", node_id),)))
        return self.dispatch(self._factory.make(OpType.SET_STATUS, set_status_payload(node_id, status)))

    def toggle_collapsed(self, node_id: str) -> Result:
        return self.dispatch(self._factory.make(OpType.TOGGLE_COLLAPSED, id_payload(node_id)))

    def duplicate_node(self, node_id: str) -> Optional[str]:
        """Clone text and status into a new sibling right after node_id."""
        node = self._nodes.get(node_id)
        if node is None or node.parent_id is None:
            return None
        new_node_id = self.create_node(node.parent_id, self._pos_after(node), node.text, node.status)
        self._selected_id = new_node_id
        return new_node_id

    def tombstone(self, node_id: str) -> ChangeSet:
        """
        Delete node_id and its whole live subtree.

        Children go first and every node gets its own op, so undo
        restores them one at a time.
        """
        if node_id not in self._nodes or node_id == self._root_id:
            return ChangeSet.empty()
        changes = ChangeSet.empty()
        with self._batched():
            for target in subtree_ids(self._nodes, node_id):
                result = self.dispatch(self._factory.make(OpType.TOMBSTONE, id_payload(target)))
                if result.is_success:
                    changes = changes.merge(result.value)
        if self._selected_id in changes.node_ids:
            self._selected_id = self._nearest_live(node_id)
        return changes

    def restore_node(self, node_id: str) -> Result:
        """Un-delete a node; reparent to the root first if its parent is deleted too."""
        node = self._nodes.get(node_id)
        if node is None or not node.deleted:
            return Result.success(ChangeSet.empty())
        with self._batched():
            parent = self._nodes.get(node.parent_id) if node.parent_id else None
            if parent is None or parent.deleted:
                kids = ordered_children(self._nodes, self._root_id)
                pos = rank_after(kids[-1].pos) if kids else initial_rank()
                self.dispatch(
                    self._factory.make(OpType.MOVE, move_payload(node_id, self._root_id, pos)),
                    record_undo=False,
                )
            result = self.dispatch(self._factory.make(OpType.RESTORE, id_payload(node_id)))
        return result

    def add_tag(self, node_id: str, tag: str) -> Result:
        tag = tag.strip()
        node = self._nodes.get(node_id)
        if not tag or node is None or tag in node.tags:
            return Result.success(ChangeSet.empty())
        return self.dispatch(self._factory.make(OpType.ADD_TAG, tag_payload(node_id, tag)))

    def remove_tag(self, node_id: str, tag: str) -> Result:
        node = self._nodes.get(node_id)
        if node is None or tag not in node.tags:
            return Result.success(ChangeSet.empty())
        return self.dispatch(self._factory.make(OpType.REMOVE_TAG, tag_payload(node_id, tag)))

    def set_due_date(self, node_id: str, due_date: Optional[int]) -> Result:
        return self.dispatch(self._factory.make(OpType.SET_DUE_DATE, due_date_payload(node_id, due_date)))

    def indent_node(self, node_id: str) -> Result:
        """Make node_id the last child of its previous sibling."""
        node = self._nodes.get(node_id)
        if node is None or node.parent_id is None:
            return Result.success(ChangeSet.empty())
        siblings = ordered_children(self._nodes, node.parent_id)
        index = next((i for i, s in enumerate(siblings) if s.id == node_id), -1)
        if index <= 0:
            return Result.success(ChangeSet.empty())
        new_parent = siblings[index - 1]
        result = self.move_node(node_id, new_parent.id)
        if result.is_success and new_parent.collapsed:
            self.toggle_collapsed(new_parent.id)
        return result

    def outdent_node(self, node_id: str) -> Result:
        """Move node_id to sit right after its parent."""
        node = self._nodes.get(node_id)
        if node is None or node.parent_id is None:
            return Result.success(ChangeSet.empty())
        parent = self._nodes.get(node.parent_id)
        if parent is None or parent.parent_id is None or parent.id == self._root_id:
            return Result.success(ChangeSet.empty())
        return self.move_node(node_id, parent.parent_id, self._pos_after(parent))

    def expand_to(self, node_id: str) -> ChangeSet:
        """Un-collapse every collapsed ancestor of node_id (not undoable)."""
        changes = ChangeSet.empty()
        for ancestor_id in ancestors(self._nodes, node_id):
            ancestor = self._nodes.get(ancestor_id)
            if ancestor is not None and ancestor.collapsed:
                result = self.dispatch(
                    self._factory.make(OpType.TOGGLE_COLLAPSED, id_payload(ancestor_id)),
                    record_undo=False,
                )
                if result.is_success:
                    changes = changes.merge(result.value)
        if node_id in self._nodes:
            self._selected_id = node_id
        return changes

    def _pos_after(self, node: Node) -> str:
        siblings = ordered_children(self._nodes, node.parent_id)
        for i, sibling in enumerate(siblings):
            if sibling.id == node.id and i + 1 < len(siblings):
                return rank_between(node.pos, siblings[i + 1].pos)
        return rank_after(node.pos)

    def _nearest_live(self, node_id: str) -> Optional[str]:
        for ancestor_id in ancestors(self._nodes, node_id):
            ancestor = self._nodes.get(ancestor_id)
            if ancestor is not None and not ancestor.deleted and ancestor_id != self._root_id:
                return ancestor_id
        first = self.children()
        return first[0].id if first else None

    # =========================================================================
    # STATUS SCHEMA
    # =========================================================================

    def add_status(self, status: StatusDef) -> Result:
        if any(s.id == status.id for s in self._status_schema):
            return Result.failure(Error(ErrorCode.UNKNOWN_STATUS, f"Status {status.id!r} already exists"))
        return self._set_schema(self._status_schema + [status])

    def remove_status(self, status_id: str, replacement_id: str) -> Result:
        """Drop a status, reassigning its nodes to replacement_id (not undoable)."""
        if status_id == replacement_id or not any(s.id == replacement_id for s in self._status_schema):
            return Result.failure(Error(ErrorCode.UNKNOWN_STATUS, f"Invalid replacement {replacement_id!r}"))
        with self._batched():
            for node in list(self._nodes.values()):
                if not node.deleted and node.status == status_id:
                    self.dispatch(
                        self._factory.make(OpType.SET_STATUS, set_status_payload(node.id, replacement_id)),
                        record_undo=False,
                    )
            result = self._set_schema([s for s in self._status_schema if s.id != status_id])
        return result

    def update_status(self, status_id: str, **changes: Any) -> Result:
        changes.pop("id", None)
        updated = [replace(s, **changes) if s.id == status_id else s for s in self._status_schema]
        return self._set_schema(updated)

    def reorder_statuses(self, ordered_ids: Sequence[str]) -> Result:
        by_id = {s.id: s for s in self._status_schema}
        return self._set_schema([by_id[i] for i in ordered_ids if i in by_id])

    def set_tag_color(self, tag: str, color: Optional[str]) -> None:
        if color is None:
            self._tag_colors.pop(tag, None)
        else:
            self._tag_colors[tag] = color
        self._store.put_setting(TAG_COLORS_SETTING, dict(self._tag_colors))
        self._notify(ChangeSet(schema_changed=True))

    def _set_schema(self, schema: List[StatusDef]) -> Result:
        if not schema:
            return Result.failure(Error(ErrorCode.UNKNOWN_STATUS, "Status schema cannot be empty"))
        self._status_schema = list(schema)
        written = self._store.put_setting(STATUS_SETTING, [s.to_dict() for s in schema])
        if not written.success:
            logger.warning("Status schema not persisted: %s", written.error)
        self._notify(ChangeSet(schema_changed=True))
        return Result.success(self.status_schema)

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def take_snapshot(self) -> Result:
        """
        Checkpoint the current tree.

        Pending text edits and buffered ops are written first so the
        snapshot never undercounts. Not reentrant.
        """
        if self._snapshot_in_flight:
            return Result.failure(Error(ErrorCode.SNAPSHOT_IN_PROGRESS, "Snapshot already in progress"))
        self._snapshot_in_flight = True
        try:
            self._debouncer.flush()
            flushed = self._buffer.flush()
            if not flushed.success:
                return Result.failure(flushed.error)

            snapshot = Snapshot(
                id=new_id(),
                nodes=tuple(node.copy() for node in self._nodes.values()),
                root_id=self._root_id,
                seq_after=self._last_seq,
                ts=self._clock.now_ms(),
            )
            written = self._store.put_snapshot(snapshot)
            if not written.success:
                return Result.failure(written.error)

            self._ops_since_snapshot = 0
            logger.debug("Snapshot %s written at seq %d", snapshot.id, snapshot.seq_after)
            self._audit.record(
                "snapshot_written", snapshot.id,
                (("seq_after", str(snapshot.seq_after)),), AuditEventType.PERSISTENCE
            )
            return Result.success(snapshot)
        finally:
            self._snapshot_in_flight = False

    # =========================================================================
    # EXTERNAL TREES (file mode)
    # =========================================================================

    def adopt_tree(
        self,
        nodes: Mapping[str, Node],
        root_id: str,
        status_schema: Optional[Sequence[StatusDef]] = None,
        tag_colors: Optional[Mapping[str, str]] = None,
    ) -> ChangeSet:
        """
        Replace the tree with an externally produced one.

        The difference is written as ordinary (non-undoable) ops, so the
        log still reproduces the tree. Ids present in both trees keep
        their history; undo stacks are kept.
        """
        self._debouncer.flush()
        if status_schema:
            self._status_schema = list(status_schema)
            self._store.put_setting(STATUS_SETTING, [s.to_dict() for s in self._status_schema])
        if tag_colors is not None:
            self._tag_colors = dict(tag_colors)
            self._store.put_setting(TAG_COLORS_SETTING, dict(self._tag_colors))

        with self._batched(ORIGIN_EXTERNAL):
            if root_id not in self._nodes:
                root = nodes[root_id]
                self.dispatch(self._factory.make(OpType.CREATE, create_payload(
                    root_id, None, root.pos or initial_rank(), text=root.text or "Root",
                    status=root.status,
                )), record_undo=False)
            self._root_id = root_id

            positions = self._plan_positions(nodes)
            incoming = set()
            self._rebalancing = True
            try:
                for node, _depth in walk_depth_first(nodes, root_id):
                    incoming.add(node.id)
                    for op in self._diff_ops(node, positions[node.id]):
                        self.dispatch(op, record_undo=False)
            finally:
                self._rebalancing = False

            for node_id in [i for i, n in self._nodes.items() if not n.deleted]:
                if node_id == root_id or node_id in incoming or self._nodes[node_id].deleted:
                    continue
                for target in subtree_ids(self._nodes, node_id):
                    self.dispatch(
                        self._factory.make(OpType.TOMBSTONE, id_payload(target)),
                        record_undo=False,
                    )

        if self._selected_id not in self._nodes or self._nodes[self._selected_id].deleted:
            first = self.children()
            self._selected_id = first[0].id if first else None
        self._audit.record("tree_adopted", root_id, (("nodes", str(len(incoming))),),
                           AuditEventType.FILE_SYNC)
        return ChangeSet(node_ids=tuple(incoming), origin=ORIGIN_EXTERNAL)

    def _plan_positions(self, nodes: Mapping[str, Node]) -> Dict[str, str]:
        """
        Sibling keys for an incoming tree.

        Nodes already under the same parent keep their keys while the
        kept keys stay ascending; newcomers are slotted between them.
        A reordered sibling list is re-spaced from scratch.
        """
        planned: Dict[str, str] = {}
        index = children_index(nodes)
        for parent_id, kids in index.items():
            if parent_id is None:
                continue
            kept: List[Optional[str]] = []
            for kid in kids:
                current = self._nodes.get(kid.id)
                same_place = current is not None and not current.deleted and current.parent_id == parent_id
                kept.append(current.pos if same_place else None)

            present = [k for k in kept if k is not None]
            if any(a >= b for a, b in zip(present, present[1:])):
                for kid, pos in zip(kids, spaced_ranks(len(kids))):
                    planned[kid.id] = pos
                continue

            previous: Optional[str] = None
            for i, kid in enumerate(kids):
                if kept[i] is not None:
                    pos = kept[i]
                else:
                    upcoming = next((k for k in kept[i + 1:] if k is not None), None)
                    if previous is None and upcoming is None:
                        pos = initial_rank()
                    elif previous is None:
                        pos = rank_before(upcoming)
                    elif upcoming is None:
                        pos = rank_after(previous)
                    else:
                        pos = rank_between(previous, upcoming)
                planned[kid.id] = pos
                previous = pos
        return planned

    def _diff_ops(self, target: Node, pos: str) -> List[Operation]:
        make = self._factory.make
        current = self._nodes.get(target.id)
        if current is None or current.deleted:
            return [make(OpType.CREATE, create_payload(
                target.id, target.parent_id, pos, text=target.text, status=target.status,
                tags=target.tags, due_date=target.due_date, collapsed=target.collapsed,
            ))]

        ops: List[Operation] = []
        if current.parent_id != target.parent_id or current.pos != pos:
            ops.append(make(OpType.MOVE, move_payload(target.id, target.parent_id, pos)))
        if current.text != target.text:
            ops.append(make(OpType.UPDATE_TEXT, update_text_payload(target.id, target.text)))
        if current.status != target.status:
            ops.append(make(OpType.SET_STATUS, set_status_payload(target.id, target.status)))
        if current.collapsed != target.collapsed:
            ops.append(make(OpType.TOGGLE_COLLAPSED, id_payload(target.id)))
        for tag in current.tags:
            if tag not in target.tags:
                ops.append(make(OpType.REMOVE_TAG, tag_payload(target.id, tag)))
        for tag in target.tags:
            if tag not in current.tags:
                ops.append(make(OpType.ADD_TAG, tag_payload(target.id, tag)))
        if current.due_date != target.due_date:
            ops.append(make(OpType.SET_DUE_DATE, due_date_payload(target.id, target.due_date)))
        return ops

    # =========================================================================
    # JSON EXPORT / IMPORT
    # =========================================================================

    def export_json(self) -> str:
        """Full-fidelity export: every node including tombstones."""
        self._debouncer.flush()
        document = ExportedDocument(
            version=EXPORT_VERSION,
            rootId=self._root_id,
            nodes=[ExportedNode.from_node(n) for n in self._nodes.values()],
            statusConfig=[ExportedStatus(**s.to_dict()) for s in self._status_schema],
            tagColors=dict(self._tag_colors),
            exportedAt=datetime.now(timezone.utc).isoformat(),
        )
        return dump_document(document)

    def import_json(self, text: str) -> ChangeSet:
        """
        Replace this document with an export.

        Raises DocumentValidationError before touching any state when
        the export is malformed.
        """
        document = load_document(text)

        self._debouncer.cancel_all()
        self._text_before.clear()
        self._buffer.cancel()
        self._store.clear()
        self._history.clear()
        self._factory.set_seq(0)
        self._nodes = {}

        ops: List[Operation] = []
        for exported in document.nodes:
            node = exported.to_node()
            ops.append(self._factory.make(OpType.CREATE, create_payload(
                node.id, node.parent_id, node.pos, text=node.text, status=node.status,
                tags=node.tags, due_date=node.due_date, collapsed=node.collapsed,
            )))
            if node.deleted:
                ops.append(self._factory.make(OpType.TOMBSTONE, id_payload(node.id)))
        for op in ops:
            apply_op(self._nodes, op)
        written = self._store.append_batch(ops)
        if not written.success:
            logger.error("Imported ops not persisted: %s", written.error)

        self._root_id = document.root_id
        self._last_seq = self._factory.current_seq
        self._ops_since_snapshot = 0
        if document.status_config:
            self._set_schema([s.to_status() for s in document.status_config])
        self._tag_colors = dict(document.tag_colors)
        self._store.put_setting(TAG_COLORS_SETTING, dict(self._tag_colors))
        first = self.children()
        self._selected_id = first[0].id if first else None

        changes = ChangeSet(node_ids=tuple(self._nodes), op_types=(OpType.CREATE,))
        self._audit.record("document_imported", self.doc_id, (("nodes", str(len(ops))),),
                           AuditEventType.PERSISTENCE)
        self._notify(changes)
        return changes

    # =========================================================================
    # INTERCHANGE FORMATS
    # =========================================================================

    def export_outline(self, fmt: str, zoom_id: Optional[str] = None) -> str:
        """Markdown, OPML or plain text rendering of the live tree (or a subtree)."""
        if fmt not in EXPORTERS:
            raise ValueError(f"Unknown export format {fmt!r}")
        self._debouncer.flush()
        return EXPORTERS[fmt](self._nodes, self._root_id, self._status_schema, zoom_id)

    def import_outline(self, text: str, fmt: str, parent_id: Optional[str] = None) -> List[str]:
        """
        Append the outline in text under parent_id (default: the root).

        Every node is an ordinary undoable create; statuses missing from
        the schema fall back to the default. Returns the new ids in
        creation order.
        """
        if fmt not in IMPORTERS:
            raise ValueError(f"Unknown import format {fmt!r}")
        trees = IMPORTERS[fmt](text)
        target = parent_id if parent_id in self._nodes else self._root_id
        kids = ordered_children(self._nodes, target)
        default_status = default_status_id(self._status_schema)
        known = {s.id for s in self._status_schema}

        flat = flatten_import_nodes(trees, target, default_status, kids[-1].pos if kids else None)
        with self._batched():
            self._rebalancing = True
            try:
                for node in flat:
                    status = node.status if node.status in known else default_status
                    self.dispatch(self._factory.make(OpType.CREATE, create_payload(
                        node.id, node.parent_id, node.pos, text=node.text, status=status, tags=node.tags,
                    )))
            finally:
                self._rebalancing = False
            for parent in dict.fromkeys([target] + [node.parent_id for node in flat]):
                self._notify(self._rebalance(parent))
        logger.info("Imported %d %s nodes into %s", len(flat), fmt, self.doc_id)
        return [node.id for node in flat]

    def get_audit_log(self) -> List[AuditLogEntry]:
        """Return copy of audit log entries."""
        return self._audit.entries()


def _parse_status_setting(raw: Any) -> Optional[List[StatusDef]]:
    """Malformed persisted schemas fall back to None (caller uses defaults)."""
    if not isinstance(raw, list) or not raw:
        return None
    try:
        return [StatusDef.from_dict(item) for item in raw]
    except (KeyError, TypeError, AttributeError):
        logger.warning("Ignoring malformed status schema setting")
        return None
