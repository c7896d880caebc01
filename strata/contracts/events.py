"""
Storage and Observability Contracts

Immutable records produced by the storage and engine layers:
write results and audit trail entries.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .base import Error


# =============================================================================
# STORAGE LAYER CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class StorageWriteResult:
    """Immutable result of a storage write operation."""
    success: bool
    count: int = 0
    error: Optional[Error] = None

    @staticmethod
    def ok(count: int = 1) -> StorageWriteResult:
        return StorageWriteResult(success=True, count=count)

    @staticmethod
    def failed(error: Error) -> StorageWriteResult:
        return StorageWriteResult(success=False, error=error)


# =============================================================================
# OBSERVABILITY LAYER CONTRACTS
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    STATE_CHANGE = "state_change"
    PERSISTENCE = "persistence"
    FILE_SYNC = "file_sync"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: datetime
    layer: str  # Which layer generated this
    action: str
    entity_id: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
