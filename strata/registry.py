"""
Document Registry

Persisted index of the documents in a workspace: names, timestamps and
the active document id. Document contents live in their own op stores;
the registry only knows that they exist.

BOUNDARY ENFORCEMENT:
- An unreadable or malformed index loads as an empty registry
- The active id always names a registered document, or is None
- Write failures come back as StorageWriteResult, never as exceptions
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import json
import logging
import os

from .contracts.base import Error, ErrorCode, new_id
from .contracts.events import StorageWriteResult
from .temporal.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

REGISTRY_FILE = "registry.json"
DEFAULT_DOCUMENT_NAME = "My Document"


@dataclass
class DocumentMeta:
    id: str
    name: str
    created_at: int
    last_modified: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DocumentMeta:
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            created_at=int(data["createdAt"]),
            last_modified=int(data["lastModified"]),
        )


class DocumentRegistry:
    """
    Ordered set of DocumentMeta plus the active document id.

    With a path the index is a JSON file rewritten after every change;
    without one it lives in memory only.
    """

    def __init__(self, path: Optional[str] = None, clock: Optional[Clock] = None):
        self._path = path
        self._clock = clock or SystemClock()
        self._documents: List[DocumentMeta] = []
        self._active_id: Optional[str] = None
        if path is not None:
            self._load()

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, doc_id: str) -> bool:
        return self.get(doc_id) is not None

    def get(self, doc_id: str) -> Optional[DocumentMeta]:
        for meta in self._documents:
            if meta.id == doc_id:
                return meta
        return None

    def documents(self) -> List[DocumentMeta]:
        """Documents in registration order."""
        return list(self._documents)

    def sorted_documents(self) -> List[DocumentMeta]:
        """Most recently modified first."""
        return sorted(self._documents, key=lambda m: m.last_modified, reverse=True)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add(self, name: str, doc_id: Optional[str] = None) -> DocumentMeta:
        """Register a document and make it active."""
        now = self._clock.now_ms()
        meta = DocumentMeta(id=doc_id or new_id(), name=name, created_at=now, last_modified=now)
        self._documents.append(meta)
        self._active_id = meta.id
        self._save()
        return meta

    def remove(self, doc_id: str) -> bool:
        """Unregister doc_id; if it was active the first remaining one takes over."""
        meta = self.get(doc_id)
        if meta is None:
            return False
        self._documents.remove(meta)
        if self._active_id == doc_id:
            self._active_id = self._documents[0].id if self._documents else None
        self._save()
        return True

    def rename(self, doc_id: str, name: str) -> bool:
        meta = self.get(doc_id)
        if meta is None:
            return False
        meta.name = name
        meta.last_modified = self._clock.now_ms()
        self._save()
        return True

    def touch(self, doc_id: str) -> bool:
        meta = self.get(doc_id)
        if meta is None:
            return False
        meta.last_modified = self._clock.now_ms()
        self._save()
        return True

    def set_active(self, doc_id: str) -> bool:
        if doc_id not in self:
            return False
        self._active_id = doc_id
        self._save()
        return True

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documents": [meta.to_dict() for meta in self._documents],
            "activeDocumentId": self._active_id,
        }

    def _load(self) -> None:
        if not os.path.exists(self._path):
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
            documents = [DocumentMeta.from_dict(item) for item in data["documents"]]
            active_id = data.get("activeDocumentId")
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Ignoring malformed document index %s: %s", self._path, e)
            return

        self._documents = documents
        known = {meta.id for meta in documents}
        self._active_id = active_id if active_id in known else None

    def _save(self) -> StorageWriteResult:
        if self._path is None:
            return StorageWriteResult.ok()
        tmp_path = self._path + ".tmp"
        try:
            directory = os.path.dirname(self._path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write document index %s: %s", self._path, e)
            return StorageWriteResult.failed(Error(
                code=ErrorCode.STORAGE_FAILURE,
                message=f"Failed to write document index: {str(e)}",
                context=(("path", self._path),)
            ))
        return StorageWriteResult.ok()
