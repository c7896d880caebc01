"""
Observability
=============

Two channels:
- Diagnostics: standard logging, one module-level logger per module
- Audit trail: immutable AuditLogEntry records kept per component,
  readable through get_audit_log()
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Union
import hashlib
import itertools
import logging

from .contracts.events import AuditEventType, AuditLogEntry

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_entry_counter = itertools.count(1)


def configure_logging(level: Union[int, str] = logging.WARNING) -> None:
    """Attach a stream handler to the package logger."""
    logger = logging.getLogger("strata")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


class AuditLog:
    """Append-only collector of audit entries for one component."""

    def __init__(self, layer: str, capacity: Optional[int] = 10_000):
        self._layer = layer
        self._capacity = capacity
        self._entries: List[AuditLogEntry] = []

    def record(
        self,
        action: str,
        entity_id: Optional[str] = None,
        metadata: Tuple[Tuple[str, str], ...] = (),
        event_type: AuditEventType = AuditEventType.STATE_CHANGE,
    ) -> AuditLogEntry:
        """Add entry to the audit log."""
        timestamp = datetime.now(timezone.utc)
        digest = hashlib.sha256(
            f"{self._layer}_{action}|{timestamp.timestamp()}|{next(_entry_counter)}".encode()
        ).hexdigest()[:16]

        entry = AuditLogEntry(
            entry_id=f"audit_{digest}",
            event_type=event_type,
            timestamp=timestamp,
            layer=self._layer,
            action=action,
            entity_id=entity_id,
            metadata=metadata,
        )
        self._entries.append(entry)
        if self._capacity is not None and len(self._entries) > self._capacity:
            del self._entries[0]
        return entry

    def entries(self) -> List[AuditLogEntry]:
        """Return copy of audit log entries."""
        return list(self._entries)

    def actions(self) -> List[str]:
        return [entry.action for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
