"""
Node, Status and Snapshot Contracts

The materialized outline model. Nodes are PROJECTIONS of the operation
log: the projector mutates them in place, everything else copies.

INVARIANTS:
- Node ids are immutable once assigned and never reused
- Exactly one live node has parent_id None (the root)
- pos strictly orders live siblings by plain string comparison
- tags are order-preserving with duplicates suppressed
- Snapshots hold copies, never live nodes
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


@dataclass
class Node:
    """
    One outline item.

    text may span several lines: the first line is the title,
    the rest is the body.
    """
    id: str
    parent_id: Optional[str]
    pos: str
    text: str = ""
    status: str = "todo"
    collapsed: bool = False
    deleted: bool = False
    deleted_at: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    due_date: Optional[int] = None

    @property
    def title(self) -> str:
        return self.text.split("\n", 1)[0]

    @property
    def body(self) -> List[str]:
        return self.text.split("\n")[1:]

    def copy(self) -> Node:
        """Deep copy (tags list is not shared)."""
        return Node(
            id=self.id,
            parent_id=self.parent_id,
            pos=self.pos,
            text=self.text,
            status=self.status,
            collapsed=self.collapsed,
            deleted=self.deleted,
            deleted_at=self.deleted_at,
            tags=list(self.tags),
            due_date=self.due_date,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "pos": self.pos,
            "text": self.text,
            "status": self.status,
            "collapsed": self.collapsed,
            "deleted": self.deleted,
            "deletedAt": self.deleted_at,
            "tags": list(self.tags),
            "dueDate": self.due_date,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Node:
        return Node(
            id=data["id"],
            parent_id=data.get("parentId"),
            pos=data.get("pos", ""),
            text=data.get("text", ""),
            status=data.get("status", "todo"),
            collapsed=bool(data.get("collapsed", False)),
            deleted=bool(data.get("deleted", False)),
            deleted_at=data.get("deletedAt"),
            tags=list(data.get("tags") or []),
            due_date=data.get("dueDate"),
        )


NodeMap = Dict[str, Node]


def copy_nodes(nodes: Mapping[str, Node]) -> NodeMap:
    """Deep copy a node mapping."""
    return {node_id: node.copy() for node_id, node in nodes.items()}


# =============================================================================
# STATUS SCHEMA
# =============================================================================

@dataclass(frozen=True)
class StatusDef:
    """
    One entry of the status schema.

    final marks a completion state; the markdown codec renders
    nodes in a final status as checked boxes.
    """
    id: str
    label: str
    color: str
    icon: str
    final: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "color": self.color,
            "icon": self.icon,
        }
        if self.final:
            data["final"] = True
        return data

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> StatusDef:
        return StatusDef(
            id=str(data["id"]),
            label=str(data.get("label", data["id"])),
            color=str(data.get("color", "#94a3b8")),
            icon=str(data.get("icon", "circle")),
            final=bool(data.get("final", False)),
        )


DEFAULT_STATUSES: Tuple[StatusDef, ...] = (
    StatusDef("todo", "Todo", "#94a3b8", "circle"),
    StatusDef("in_progress", "In Progress", "#3b82f6", "circle-dot"),
    StatusDef("blocked", "Blocked", "#ef4444", "circle-alert"),
    StatusDef("done", "Done", "#22c55e", "circle-check", final=True),
)


def default_status_id(schema: Sequence[StatusDef]) -> str:
    """The first schema entry is the implicit default."""
    return schema[0].id if schema else DEFAULT_STATUSES[0].id


def first_final_status_id(schema: Sequence[StatusDef]) -> Optional[str]:
    for status in schema:
        if status.final:
            return status.id
    return None


def is_default_schema(schema: Sequence[StatusDef]) -> bool:
    return tuple(schema) == DEFAULT_STATUSES


# =============================================================================
# SNAPSHOT (checkpoint, never a source of truth)
# =============================================================================

@dataclass(frozen=True)
class Snapshot:
    """
    Point-in-time materialization of the tree.

    seq_after is the last operation sequence folded into it; loading
    replays only operations with a greater seq.
    """
    id: str
    nodes: Tuple[Node, ...]
    root_id: str
    seq_after: int
    ts: int

    def node_map(self) -> NodeMap:
        return {node.id: node.copy() for node in self.nodes}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nodes": [node.to_dict() for node in self.nodes],
            "rootId": self.root_id,
            "seqAfter": self.seq_after,
            "ts": self.ts,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Snapshot:
        return Snapshot(
            id=data["id"],
            nodes=tuple(Node.from_dict(n) for n in data["nodes"]),
            root_id=data["rootId"],
            seq_after=int(data["seqAfter"]),
            ts=int(data.get("ts", 0)),
        )
