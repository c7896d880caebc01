"""
Operation Contracts

Operations are the single source of truth; the node mapping is always
a derived projection. An Operation is created once, appended to the
durable log, and never mutated.

PAYLOAD SHAPES (keys match the persisted log format):
- create:          id, parentId, pos, text, status
                   [tags, dueDate, collapsed] (carried by re-creation)
- updateText:      id, text
- move:            id, parentId, pos
- setStatus:       id, status
- toggleCollapsed: id
- tombstone:       id
- restore:         id
- addTag:          id, tag
- removeTag:       id, tag
- setDueDate:      id, dueDate (int ms or None)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional


class OpType(Enum):
    """Operation types; values are the persisted names."""
    CREATE = "create"
    UPDATE_TEXT = "updateText"
    MOVE = "move"
    SET_STATUS = "setStatus"
    TOGGLE_COLLAPSED = "toggleCollapsed"
    TOMBSTONE = "tombstone"
    RESTORE = "restore"
    ADD_TAG = "addTag"
    REMOVE_TAG = "removeTag"
    SET_DUE_DATE = "setDueDate"


@dataclass(frozen=True)
class Operation:
    """One immutable, sequenced state change."""
    op_id: str
    client_id: str
    seq: int
    ts: int
    type: OpType
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def node_id(self) -> str:
        return self.payload["id"]

    def target_ids(self) -> List[str]:
        """Ids whose prior state must be captured before applying."""
        return [self.payload["id"]] if "id" in self.payload else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "opId": self.op_id,
            "clientId": self.client_id,
            "seq": self.seq,
            "ts": self.ts,
            "type": self.type.value,
            "payload": dict(self.payload),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Operation:
        return Operation(
            op_id=data["opId"],
            client_id=data.get("clientId", ""),
            seq=int(data["seq"]),
            ts=int(data.get("ts", 0)),
            type=OpType(data["type"]),
            payload=dict(data.get("payload") or {}),
        )


def sort_by_seq(ops: Iterable[Operation]) -> List[Operation]:
    return sorted(ops, key=lambda op: op.seq)


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================

def create_payload(
    node_id: str,
    parent_id: Optional[str],
    pos: str,
    text: str = "",
    status: str = "todo",
    tags: Optional[Iterable[str]] = None,
    due_date: Optional[int] = None,
    collapsed: bool = False,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": node_id,
        "parentId": parent_id,
        "pos": pos,
        "text": text,
        "status": status,
    }
    tags = list(tags or [])
    if tags:
        payload["tags"] = tags
    if due_date is not None:
        payload["dueDate"] = due_date
    if collapsed:
        payload["collapsed"] = True
    return payload


def update_text_payload(node_id: str, text: str) -> Dict[str, Any]:
    return {"id": node_id, "text": text}


def move_payload(node_id: str, parent_id: Optional[str], pos: str) -> Dict[str, Any]:
    return {"id": node_id, "parentId": parent_id, "pos": pos}


def set_status_payload(node_id: str, status: str) -> Dict[str, Any]:
    return {"id": node_id, "status": status}


def tag_payload(node_id: str, tag: str) -> Dict[str, Any]:
    return {"id": node_id, "tag": tag}


def due_date_payload(node_id: str, due_date: Optional[int]) -> Dict[str, Any]:
    return {"id": node_id, "dueDate": due_date}


def id_payload(node_id: str) -> Dict[str, Any]:
    return {"id": node_id}
