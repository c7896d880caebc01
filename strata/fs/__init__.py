"""
File Mode

Markdown files on disk as the source of truth for documents.
"""

from .adapter import (
    FileAdapter,
    LocalFileAdapter,
    FileEvent,
    WriteGuard,
    CREATED,
    MODIFIED,
    DELETED,
)
from .watcher import PollingWatcher
from .sync import FileDocumentSync

__all__ = [
    "FileAdapter", "LocalFileAdapter", "FileEvent", "WriteGuard",
    "CREATED", "MODIFIED", "DELETED",
    "PollingWatcher", "FileDocumentSync",
]
