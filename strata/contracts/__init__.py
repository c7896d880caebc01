"""
Contracts Module

Data types shared by every layer of the document engine. No module in
this package performs I/O or imports from another layer.

DESIGN PRINCIPLES:
==================
1. Errors are data (Error/Result); exceptions only at boundaries
2. Operations are immutable and carry their persisted field names
3. Nodes are projections and may be mutated only by the projector
"""

from .base import (
    ErrorCode,
    Error,
    Result,
    StrataError,
    DocumentValidationError,
    FileAdapterError,
    new_id,
    now_ms,
)
from .nodes import (
    Node,
    NodeMap,
    StatusDef,
    Snapshot,
    DEFAULT_STATUSES,
    copy_nodes,
    default_status_id,
    first_final_status_id,
    is_default_schema,
)
from .ops import OpType, Operation, sort_by_seq
from .events import StorageWriteResult, AuditEventType, AuditLogEntry

__all__ = [
    "ErrorCode", "Error", "Result", "StrataError",
    "DocumentValidationError", "FileAdapterError", "new_id", "now_ms",
    "Node", "NodeMap", "StatusDef", "Snapshot", "DEFAULT_STATUSES",
    "copy_nodes", "default_status_id", "first_final_status_id",
    "is_default_schema",
    "OpType", "Operation", "sort_by_seq",
    "StorageWriteResult", "AuditEventType", "AuditLogEntry",
]
