"""
File Document Sync
==================

Keeps one DocumentEngine and one markdown file in step.

- Local changes schedule a debounced save of the whole outline
- External edits are parsed, reconciled against the current tree so
  matching nodes keep their ids, then adopted by the engine
- Own writes are filtered out by the adapter's WriteGuard so a save
  never bounces back as a reload
- Only files carrying the strata frontmatter marker are adopted
- An attached PollingWatcher feeds handle_event and is stopped by close()
"""

from __future__ import annotations
from typing import Optional
import asyncio
import logging

from ..config import FileSyncConfig
from ..contracts.base import ErrorCode, FileAdapterError
from ..contracts.events import AuditEventType
from ..codec.markdown import is_strata_document, parse, serialize
from ..engine.document import ORIGIN_EXTERNAL, ChangeSet, DocumentEngine
from ..observability import AuditLog
from ..reconcile import reconcile
from ..temporal.clock import Scheduler, TimerHandle
from .adapter import DELETED, FileAdapter, FileEvent
from .watcher import PollingWatcher

logger = logging.getLogger(__name__)


class FileDocumentSync:
    def __init__(
        self,
        engine: DocumentEngine,
        adapter: FileAdapter,
        path: str,
        config: Optional[FileSyncConfig] = None,
        scheduler: Optional[Scheduler] = None,
        watcher: Optional[PollingWatcher] = None,
    ):
        self.engine = engine
        self.adapter = adapter
        self.path = path
        self.config = config or FileSyncConfig()
        self._scheduler = scheduler or engine.scheduler
        self._timer: Optional[TimerHandle] = None
        self._save_task: Optional[asyncio.Task] = None
        self._last_written: Optional[str] = None
        self._unsubscribe = engine.subscribe(self._on_change)
        self._audit = AuditLog("file_sync")
        self.watcher = watcher
        if watcher is not None:
            watcher.set_callback(self._on_file_event)

    @property
    def save_pending(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    @property
    def last_written(self) -> Optional[str]:
        return self._last_written

    async def load(self) -> ChangeSet:
        """
        Read the file into the engine.

        A missing or empty file is initialised from the engine's current
        (freshly bootstrapped) tree.
        """
        try:
            text = await self.adapter.read(self.path)
        except FileAdapterError as e:
            if e.code != ErrorCode.FILE_NOT_FOUND:
                raise
            text = ""
        if not text.strip():
            await self.save()
            return ChangeSet.empty()
        return self._adopt(text)

    async def refresh(self) -> ChangeSet:
        """Re-read the file after an external change."""
        text = await self.adapter.read(self.path)
        if text == self._last_written:
            return ChangeSet.empty()
        return self._adopt(text)

    def _adopt(self, text: str) -> ChangeSet:
        if not is_strata_document(text):
            raise FileAdapterError(
                ErrorCode.NOT_A_STRATA_FILE, "File has no strata frontmatter marker", self.path
            )
        parsed = parse(text)
        merged = reconcile(self.engine.nodes, self.engine.root_id, parsed)
        changes = self.engine.adopt_tree(
            merged.nodes, merged.root_id, merged.status_schema, merged.tag_colors
        )
        self._last_written = text
        self._audit.record("file_adopted", self.path, (("nodes", str(len(merged.nodes))),),
                           AuditEventType.FILE_SYNC)
        logger.info("Loaded %s into document %s", self.path, self.engine.doc_id)
        return changes

    async def save(self) -> bool:
        """Serialize the tree and write it; False when nothing changed."""
        self._cancel_timer()
        self.engine.flush_text_edits()
        text = serialize(
            self.engine.nodes, self.engine.root_id,
            self.engine.status_schema, self.engine.tag_colors,
        )
        if text == self._last_written:
            return False
        await self.adapter.write(self.path, text)
        self._last_written = text
        self._audit.record("file_saved", self.path, (("chars", str(len(text))),),
                           AuditEventType.FILE_SYNC)
        return True

    def schedule_save(self) -> None:
        """(Re)start the save timer."""
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self.config.save_delay, self._fire_save)

    def _fire_save(self) -> None:
        self._timer = None
        self._save_task = asyncio.ensure_future(self.save())
        self._save_task.add_done_callback(self._save_done)

    def _save_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Saving %s failed: %s", self.path, error)
            self._audit.record("file_save_failed", self.path, (("error", str(error)),),
                               AuditEventType.ERROR)

    async def wait_saved(self) -> None:
        """Wait for a save started by the timer, if any."""
        if self._save_task is not None:
            await asyncio.gather(self._save_task, return_exceptions=True)
            self._save_task = None

    def _on_change(self, changes: ChangeSet) -> None:
        if changes.origin == ORIGIN_EXTERNAL:
            return
        self.schedule_save()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def handle_event(self, event: FileEvent) -> ChangeSet:
        if event.path != self.path:
            return ChangeSet.empty()
        if event.kind == DELETED:
            logger.warning("%s was deleted outside the engine", self.path)
            return ChangeSet.empty()
        return await self.refresh()

    async def _on_file_event(self, event: FileEvent) -> None:
        await self.handle_event(event)

    async def start_watching(self) -> None:
        if self.watcher is None:
            return
        await self.watcher.start()

    async def close(self) -> None:
        """Stop watching, write any pending change, then detach from the engine."""
        if self.watcher is not None:
            await self.watcher.stop()
        pending = self.save_pending
        self._cancel_timer()
        await self.wait_saved()
        if pending:
            await self.save()
        self._unsubscribe()

    def get_audit_log(self):
        return self._audit.entries()
