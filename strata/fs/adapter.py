"""
File Adapter
============

Async access to a workspace directory of markdown documents.

All paths crossing this boundary are workspace-relative POSIX strings.
Blocking filesystem calls run in worker threads.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union
import asyncio
import logging
import os
import shutil
import tempfile
import time

from ..contracts.base import ErrorCode, FileAdapterError
from ..codec.markdown import is_strata_document

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset({"node_modules", "target", "__pycache__"})
DOCUMENT_SUFFIX = ".md"

CREATED = "created"
MODIFIED = "modified"
DELETED = "deleted"


@dataclass(frozen=True)
class FileEvent:
    """A change observed in the workspace."""
    kind: str
    path: str


class WriteGuard:
    """
    Recently-written markers, one per path.

    A marker is consumed by the first change event for its path, or
    expires after ttl seconds, whichever comes first.
    """

    def __init__(self, ttl: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._marks: Dict[str, float] = {}

    def mark(self, path: str) -> None:
        self._marks[path] = self._clock() + self.ttl

    def consume(self, path: str) -> bool:
        """True (and forget the marker) if path was written recently."""
        expires = self._marks.pop(path, None)
        return expires is not None and self._clock() <= expires

    def is_marked(self, path: str) -> bool:
        expires = self._marks.get(path)
        return expires is not None and self._clock() <= expires

    def clear(self) -> None:
        self._marks.clear()


def is_skipped_dir(name: str) -> bool:
    return name.startswith(".") or name in SKIP_DIRS


def iter_markdown_files(root: Path) -> List[Path]:
    """Every .md file under root, pruning hidden and tool directories."""
    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not is_skipped_dir(d))
        for name in sorted(filenames):
            if name.endswith(DOCUMENT_SUFFIX) and not name.startswith("."):
                found.append(Path(dirpath) / name)
    return found


def atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", delete=False, encoding="utf-8", dir=path.parent, prefix=".strata-", suffix=".tmp"
    ) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    os.replace(tmp_path, path)


class FileAdapter:
    """Workspace file operations used by the file-mode sync."""

    guard: Optional[WriteGuard] = None

    async def list(self) -> List[str]:
        raise NotImplementedError

    async def read(self, path: str) -> str:
        raise NotImplementedError

    async def write(self, path: str, text: str) -> None:
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        raise NotImplementedError

    async def rename(self, old_path: str, new_path: str) -> None:
        raise NotImplementedError

    async def ensure_dir(self, path: str) -> None:
        raise NotImplementedError


class LocalFileAdapter(FileAdapter):
    """FileAdapter over a local directory."""

    def __init__(self, root: Union[str, Path], guard: Optional[WriteGuard] = None):
        self.root = Path(root).resolve()
        self.guard = guard if guard is not None else WriteGuard()

    def resolve(self, path: str) -> Path:
        """Absolute path for a workspace-relative one; never outside root."""
        full = (self.root / path).resolve()
        if full != self.root and self.root not in full.parents:
            raise FileAdapterError(ErrorCode.FILE_IO_FAILURE, "Path escapes the workspace", path)
        return full

    def relative(self, full: Path) -> str:
        return full.resolve().relative_to(self.root).as_posix()

    async def _run(self, path: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except FileAdapterError:
            raise
        except FileNotFoundError as e:
            raise FileAdapterError(ErrorCode.FILE_NOT_FOUND, f"No such file: {path}", path) from e
        except OSError as e:
            logger.error("File operation failed for %s: %s", path, e)
            raise FileAdapterError(ErrorCode.FILE_IO_FAILURE, str(e), path) from e

    def _list_documents(self) -> List[str]:
        documents = []
        for full in iter_markdown_files(self.root):
            try:
                text = full.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("Skipping unreadable file %s: %s", full, e)
                continue
            if is_strata_document(text):
                documents.append(self.relative(full))
        return documents

    async def list(self) -> List[str]:
        """Relative paths of the markdown files that carry the document marker."""
        return await self._run(".", self._list_documents)

    async def read(self, path: str) -> str:
        full = self.resolve(path)
        return await self._run(path, full.read_text, "utf-8")

    async def write(self, path: str, text: str) -> None:
        full = self.resolve(path)
        if self.guard is not None:
            self.guard.mark(path)
        await self._run(path, atomic_write_text, full, text)
        logger.debug("Wrote %s (%d chars)", path, len(text))

    async def delete(self, path: str) -> None:
        full = self.resolve(path)
        await self._run(path, full.unlink)

    async def rename(self, old_path: str, new_path: str) -> None:
        source = self.resolve(old_path)
        target = self.resolve(new_path)
        if self.guard is not None:
            self.guard.mark(new_path)
        await self._run(old_path, self._move, source, target)

    @staticmethod
    def _move(source: Path, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))

    async def ensure_dir(self, path: str) -> None:
        full = self.resolve(path)
        await self._run(path, lambda: full.mkdir(parents=True, exist_ok=True))
