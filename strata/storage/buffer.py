"""
Operation Write Buffer

Queues persisted operations and writes them as one batch after a short
delay, or immediately on flush(). Operations still queued when the
process dies are lost.
"""

from __future__ import annotations
from typing import List, Optional
import logging

from ..contracts.events import StorageWriteResult
from ..contracts.ops import Operation
from ..temporal.clock import Scheduler, TimerHandle
from .stores import OpStore

logger = logging.getLogger(__name__)


class OpWriteBuffer:
    """Batches op writes into a single append_batch per flush."""

    def __init__(self, store: OpStore, scheduler: Scheduler, delay: float = 0.05):
        self._store = store
        self._scheduler = scheduler
        self._delay = delay
        self._queue: List[Operation] = []
        self._timer: Optional[TimerHandle] = None
        self.last_error: Optional[StorageWriteResult] = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def enqueue(self, op: Operation) -> None:
        self._queue.append(op)
        if self._timer is None:
            self._timer = self._scheduler.call_later(self._delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def flush(self) -> StorageWriteResult:
        """Write everything queued now."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._queue:
            return StorageWriteResult.ok(0)

        batch, self._queue = self._queue, []
        result = self._store.append_batch(batch)
        if result.success:
            logger.debug("Flushed %d buffered ops", len(batch))
        else:
            # Keep the ops so a later flush can retry them
            self._queue = batch + self._queue
            self.last_error = result
            logger.error("Op flush failed: %s", result.error)
        return result

    def cancel(self) -> None:
        """Cancel the pending flush timer; queued ops stay queued."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
