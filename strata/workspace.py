"""
Workspace Orchestration Module

Coordinates the documents of one workspace. Every document has its own
engine (log, undo stacks, snapshot cadence); there is no shared mutable
state between them and no cross-document transaction. A DocumentRegistry
records which documents exist, their names and the active one.

DESIGN PRINCIPLES:
==================
1. Exactly one document is active at a time
2. Switching away from a document suspends it (flush, cancel timers)
3. Engines are created lazily and reused on return
4. The last remaining document cannot be deleted
"""

from __future__ import annotations
from pathlib import Path
from typing import Callable, Dict, List, Optional
import logging

from .config import StorageConfig, StrataConfig
from .contracts.base import Error, ErrorCode, Result
from .engine.document import DocumentEngine
from .observability import configure_logging
from .registry import DEFAULT_DOCUMENT_NAME, REGISTRY_FILE, DocumentMeta, DocumentRegistry
from .storage.stores import FileOpStore, InMemoryOpStore, OpStore
from .temporal.clock import Clock, Scheduler

logger = logging.getLogger(__name__)

StoreFactory = Callable[[str], OpStore]


def default_store_factory(config: StorageConfig) -> StoreFactory:
    """One store per document id: a sub-directory in file mode, else memory."""

    def factory(doc_id: str) -> OpStore:
        if config.backend_type == "file" and config.storage_dir:
            return FileOpStore(str(Path(config.storage_dir) / doc_id))
        return InMemoryOpStore()

    return factory


def default_registry(config: StorageConfig, clock: Optional[Clock] = None) -> DocumentRegistry:
    """The index file sits next to the document directories in file mode."""
    if config.backend_type == "file" and config.storage_dir:
        return DocumentRegistry(str(Path(config.storage_dir) / REGISTRY_FILE), clock=clock)
    return DocumentRegistry(clock=clock)


class Workspace:
    """
    Set of documents with a single active one.

    USAGE:
        workspace = Workspace(config=StrataConfig.from_env())
        engine = workspace.open("notes")
        engine.create_node(engine.root_id, text="First")
        workspace.switch("todo")
        workspace.close()
    """

    def __init__(
        self,
        store_factory: Optional[StoreFactory] = None,
        config: Optional[StrataConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Clock] = None,
        registry: Optional[DocumentRegistry] = None,
    ):
        self.config = config or StrataConfig()
        configure_logging(self.config.log_level)
        self._store_factory = store_factory or default_store_factory(self.config.storage)
        self._scheduler = scheduler
        self._clock = clock
        self.registry = registry or default_registry(self.config.storage, clock)
        self._engines: Dict[str, DocumentEngine] = {}
        self._active_id: Optional[str] = None

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active(self) -> Optional[DocumentEngine]:
        if self._active_id is None:
            return None
        return self._engines.get(self._active_id)

    def document_ids(self) -> List[str]:
        """Ids of the documents with a loaded engine."""
        return list(self._engines)

    def documents(self) -> List[DocumentMeta]:
        """Every registered document, most recently modified first."""
        return self.registry.sorted_documents()

    def is_open(self, doc_id: str) -> bool:
        return doc_id in self._engines

    def init(self) -> DocumentEngine:
        """Open the remembered active document, creating a first one if none exist."""
        if len(self.registry) == 0:
            return self.create_document(DEFAULT_DOCUMENT_NAME)
        doc_id = self.registry.active_id or self.registry.documents()[0].id
        return self.open(doc_id)

    def open(self, doc_id: str) -> DocumentEngine:
        """Activate doc_id, creating and loading its engine on first use.

        An id the registry has not seen is registered under its own name.
        """
        if doc_id == self._active_id and doc_id in self._engines:
            return self._engines[doc_id]
        self._suspend_active()

        if doc_id in self.registry:
            self.registry.set_active(doc_id)
            self.registry.touch(doc_id)
        else:
            self.registry.add(doc_id, doc_id=doc_id)

        engine = self._engines.get(doc_id)
        if engine is None:
            engine = DocumentEngine(
                self._store_factory(doc_id),
                config=self.config.engine,
                scheduler=self._scheduler,
                clock=self._clock,
                doc_id=doc_id,
            )
            engine.init()
            self._engines[doc_id] = engine
            logger.info("Opened document %s", doc_id)
        self._active_id = doc_id
        return engine

    def switch(self, doc_id: str) -> DocumentEngine:
        return self.open(doc_id)

    def _suspend_active(self) -> None:
        engine = self.active
        if engine is None:
            return
        result = engine.suspend()
        if result.is_failure:
            logger.error("Suspending %s left unwritten ops: %s", self._active_id, result.error)

    # -------------------------------------------------------------------------
    # Registry operations
    # -------------------------------------------------------------------------

    def create_document(self, name: str) -> DocumentEngine:
        """Register a new document under a fresh id and make it active."""
        meta = self.registry.add(name)
        logger.info("Created document %s (%s)", meta.id, name)
        return self.open(meta.id)

    def rename_document(self, doc_id: str, name: str) -> Result:
        if not self.registry.rename(doc_id, name):
            return Result.failure(self._unknown(doc_id))
        return Result.success(self.registry.get(doc_id))

    def delete_document(self, doc_id: str) -> Result:
        """
        Remove a document and its stored ops.

        Deleting the active document switches to another one first. The
        last remaining document is kept.
        """
        if doc_id not in self.registry:
            return Result.failure(self._unknown(doc_id))
        if len(self.registry) <= 1:
            return Result.failure(Error(
                ErrorCode.LAST_DOCUMENT, "Cannot delete the only document"
            ).with_context("id", doc_id))

        if doc_id == self._active_id or doc_id == self.registry.active_id:
            successor = next(m.id for m in self.registry.documents() if m.id != doc_id)
            self.open(successor)

        engine = self._engines.pop(doc_id, None)
        if engine is not None:
            engine.close()
            store = engine.store
        else:
            store = self._store_factory(doc_id)
        cleared = store.clear()
        if not cleared.success:
            logger.error("Failed to clear store of %s: %s", doc_id, cleared.error)
            return Result.failure(cleared.error.with_context("id", doc_id))

        self.registry.remove(doc_id)
        logger.info("Deleted document %s", doc_id)
        return Result.success(self._active_id)

    @staticmethod
    def _unknown(doc_id: str) -> Error:
        return Error(ErrorCode.UNKNOWN_DOCUMENT, "No such document").with_context("id", doc_id)

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def close_document(self, doc_id: str) -> Result:
        engine = self._engines.pop(doc_id, None)
        if engine is None:
            return Result.success()
        if doc_id == self._active_id:
            self._active_id = None
        return engine.close()

    def close(self) -> Result:
        """Close every engine; the first failure is reported."""
        failure: Optional[Result] = None
        for doc_id in list(self._engines):
            result = self.close_document(doc_id)
            if result.is_failure and failure is None:
                failure = result
        return failure or Result.success()
