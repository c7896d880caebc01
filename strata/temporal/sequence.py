"""
Operation Sequencing
====================

Per-document operation factory. Owns the sequence counter that stamps
every operation, so two open documents never share numbering.

INVARIANTS:
- seq never repeats or goes backward during normal operation
- The counter starts at 0; the first issued seq is 1
- set_seq is used only when re-deriving state from a loaded log
"""

from __future__ import annotations
from typing import Any, Mapping, Optional

from ..contracts.base import new_id
from ..contracts.ops import Operation, OpType
from .clock import Clock, SystemClock


class OpFactory:
    """Creates operations stamped with fresh ids, seqs and timestamps."""

    def __init__(self, client_id: Optional[str] = None, clock: Optional[Clock] = None):
        self.client_id = client_id or new_id()
        self.clock = clock or SystemClock()
        self._seq = 0

    @property
    def current_seq(self) -> int:
        """Last issued sequence number (0 before any op)."""
        return self._seq

    def next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def set_seq(self, seq: int) -> None:
        self._seq = seq

    def make(self, op_type: OpType, payload: Mapping[str, Any]) -> Operation:
        return Operation(
            op_id=new_id(),
            client_id=self.client_id,
            seq=self.next_seq(),
            ts=self.clock.now_ms(),
            type=op_type,
            payload=dict(payload),
        )
