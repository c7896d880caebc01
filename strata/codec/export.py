"""
JSON Export Documents

Pydantic models for the full-fidelity JSON export. Imports are validated
against these models before any engine state is touched.
"""

from __future__ import annotations
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..contracts.base import DocumentValidationError
from ..contracts.nodes import Node, StatusDef

EXPORT_VERSION = 3


class ExportedNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    pos: str = ""
    text: str = ""
    status: str = "todo"
    collapsed: bool = False
    deleted: bool = False
    deleted_at: Optional[int] = Field(default=None, alias="deletedAt")
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[int] = Field(default=None, alias="dueDate")

    @classmethod
    def from_node(cls, node: Node) -> ExportedNode:
        return cls(**node.to_dict())

    def to_node(self) -> Node:
        tags: List[str] = []
        for tag in self.tags:
            if tag not in tags:
                tags.append(tag)
        return Node(
            id=self.id,
            parent_id=self.parent_id,
            pos=self.pos,
            text=self.text,
            status=self.status,
            collapsed=self.collapsed,
            deleted=self.deleted,
            deleted_at=self.deleted_at,
            tags=tags,
            due_date=self.due_date,
        )


class ExportedStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    label: str
    color: str = "#94a3b8"
    icon: str = "circle"
    final: bool = False

    def to_status(self) -> StatusDef:
        return StatusDef(self.id, self.label, self.color, self.icon, self.final)


class ExportedDocument(BaseModel):
    """Top-level export shape: version, rootId and nodes are required."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int
    root_id: str = Field(alias="rootId", min_length=1)
    nodes: List[ExportedNode]
    status_config: Optional[List[ExportedStatus]] = Field(default=None, alias="statusConfig")
    tag_colors: Dict[str, str] = Field(default_factory=dict, alias="tagColors")
    exported_at: Optional[str] = Field(default=None, alias="exportedAt")


def dump_document(document: ExportedDocument) -> str:
    return document.model_dump_json(by_alias=True, indent=2)


def load_document(text: str) -> ExportedDocument:
    """
    Parse and validate an export.

    Raises DocumentValidationError describing the first problems found.
    """
    try:
        document = ExportedDocument.model_validate_json(text)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'document'}: {err['msg']}"
            for err in e.errors()[:5]
        )
        raise DocumentValidationError(
            f"Invalid Strata export file: {problems}"
        ) from e

    _check_tree(document)
    return document


def _check_tree(document: ExportedDocument) -> None:
    """Parent links must form one tree hanging from rootId."""
    parents: Dict[str, Optional[str]] = {}
    for node in document.nodes:
        if node.id in parents:
            raise DocumentValidationError(
                "Invalid Strata export file: duplicate node id", ("id", node.id)
            )
        parents[node.id] = node.parent_id

    root_id = document.root_id
    if root_id not in parents:
        raise DocumentValidationError(
            "Invalid Strata export file: rootId does not name a node", ("rootId", root_id)
        )
    if parents[root_id] is not None:
        raise DocumentValidationError(
            "Invalid Strata export file: the root node has a parent",
            ("rootId", root_id), ("parentId", parents[root_id]),
        )

    for node_id, parent_id in parents.items():
        if parent_id is None and node_id != root_id:
            raise DocumentValidationError(
                "Invalid Strata export file: node has no parent", ("id", node_id)
            )
        if parent_id is not None and parent_id not in parents:
            raise DocumentValidationError(
                "Invalid Strata export file: parentId does not name a node",
                ("id", node_id), ("parentId", parent_id),
            )

    reaches_root = {root_id}
    for node_id in parents:
        chain = []
        current = node_id
        while current not in reaches_root:
            if current in chain:
                raise DocumentValidationError(
                    "Invalid Strata export file: parent links form a cycle", ("id", node_id)
                )
            chain.append(current)
            current = parents[current]
        reaches_root.update(chain)
