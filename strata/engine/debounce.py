"""
Per-node text edit debouncing.

Keystrokes land in memory immediately; the commit callback runs once a
node has been quiet for the configured delay. Each node has its own
timer.
"""

from __future__ import annotations
from typing import Callable, Dict, List
import logging

from ..temporal.clock import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class TextDebouncer:

    def __init__(self, scheduler: Scheduler, delay: float, commit: Callable[[str], None]):
        self._scheduler = scheduler
        self._delay = delay
        self._commit = commit
        self._timers: Dict[str, TimerHandle] = {}

    def touch(self, node_id: str) -> None:
        """Restart the quiet period for node_id."""
        existing = self._timers.pop(node_id, None)
        if existing is not None:
            existing.cancel()
        self._timers[node_id] = self._scheduler.call_later(
            self._delay, lambda: self._fire(node_id)
        )

    def _fire(self, node_id: str) -> None:
        if self._timers.pop(node_id, None) is not None:
            self._commit(node_id)

    def is_pending(self, node_id: str) -> bool:
        return node_id in self._timers

    def pending_ids(self) -> List[str]:
        return list(self._timers)

    def flush(self) -> int:
        """Commit every pending node now. Returns how many were committed."""
        pending = list(self._timers.items())
        self._timers.clear()
        for node_id, timer in pending:
            timer.cancel()
            self._commit(node_id)
        if pending:
            logger.debug("Flushed %d pending text edits", len(pending))
        return len(pending)

    def cancel(self, node_id: str) -> None:
        timer = self._timers.pop(node_id, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
