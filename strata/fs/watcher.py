"""
Polling Watcher
===============

Detects created, modified and deleted markdown files in a workspace by
comparing modification times between scans.

Events for paths the engine itself just wrote are suppressed through
the adapter's WriteGuard.
"""

from __future__ import annotations
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Union
import asyncio
import logging

from .adapter import CREATED, DELETED, MODIFIED, FileEvent, WriteGuard, iter_markdown_files

logger = logging.getLogger(__name__)

EventCallback = Callable[[FileEvent], Awaitable[None]]


class PollingWatcher:
    """
    Polls a workspace directory and reports file changes.

    Works on every filesystem; the cost is one stat per file per poll.
    """

    def __init__(
        self,
        root: Union[str, Path],
        poll_interval: float = 0.5,
        guard: Optional[WriteGuard] = None,
    ):
        self.root = Path(root).resolve()
        self.poll_interval = poll_interval
        self.guard = guard
        self._mtimes: Dict[str, float] = {}
        self._callback: Optional[EventCallback] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def set_callback(self, callback: EventCallback) -> None:
        """Async callable invoked once per reported FileEvent."""
        self._callback = callback

    def _stat_all(self) -> Dict[str, float]:
        current: Dict[str, float] = {}
        for full in iter_markdown_files(self.root):
            try:
                current[full.relative_to(self.root).as_posix()] = full.stat().st_mtime
            except OSError as e:
                logger.warning("Cannot stat %s: %s", full, e)
        return current

    def prime(self) -> None:
        """Record current mtimes without reporting anything."""
        self._mtimes = self._stat_all()

    def scan(self) -> List[FileEvent]:
        """One polling pass: changes since the previous pass, minus our own writes."""
        current = self._stat_all()
        events: List[FileEvent] = []

        for path, mtime in current.items():
            previous = self._mtimes.get(path)
            if previous is None:
                events.append(FileEvent(CREATED, path))
            elif mtime != previous:
                events.append(FileEvent(MODIFIED, path))
        for path in self._mtimes.keys() - current.keys():
            events.append(FileEvent(DELETED, path))

        self._mtimes = current

        if self.guard is None:
            return events
        reported = []
        for event in events:
            if event.kind != DELETED and self.guard.consume(event.path):
                logger.debug("Ignoring own write to %s", event.path)
                continue
            reported.append(event)
        return reported

    async def start(self) -> None:
        if self._running:
            logger.warning("Watcher for %s already running", self.root)
            return
        self.prime()
        self._running = True
        self._task = asyncio.create_task(self._watch_loop())
        logger.info("Watching %s", self.root)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Stopped watching %s", self.root)

    async def _watch_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self.poll_interval)
                events = await asyncio.to_thread(self.scan)
                for event in events:
                    if self._callback is None:
                        continue
                    try:
                        await self._callback(event)
                    except Exception as e:
                        logger.error("File event handler failed for %s: %s", event.path, e)
        except asyncio.CancelledError:
            logger.debug("Watch loop cancelled")
            raise
