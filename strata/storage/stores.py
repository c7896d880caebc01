"""
Durable Operation Stores

BOUNDARY ENFORCEMENT:
- Operations are appended, never updated
- Snapshots are appended; the latest written one wins
- Reads return operations in ascending seq order
- Write failures come back as StorageWriteResult, never as exceptions
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional
import json
import logging
import os

from ..contracts.base import Error, ErrorCode
from ..contracts.events import StorageWriteResult
from ..contracts.nodes import Snapshot
from ..contracts.ops import Operation, sort_by_seq
from ..config import StorageConfig

logger = logging.getLogger(__name__)


# =============================================================================
# STORAGE INTERFACE (Dependency Inversion)
# =============================================================================

class OpStore:
    """
    Abstract durable op store.

    The engine depends only on this interface.
    """

    def append(self, op: Operation) -> StorageWriteResult:
        return self.append_batch([op])

    def append_batch(self, ops: Iterable[Operation]) -> StorageWriteResult:
        raise NotImplementedError

    def query_after(self, seq: int) -> List[Operation]:
        """Operations with seq strictly greater than seq, ascending."""
        raise NotImplementedError

    def query_all(self) -> List[Operation]:
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError

    def put_snapshot(self, snapshot: Snapshot) -> StorageWriteResult:
        raise NotImplementedError

    def get_latest_snapshot(self) -> Optional[Snapshot]:
        raise NotImplementedError

    def put_setting(self, key: str, value: Any) -> StorageWriteResult:
        raise NotImplementedError

    def get_setting(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def clear(self) -> StorageWriteResult:
        raise NotImplementedError


# =============================================================================
# IN-MEMORY STORE (Reference Implementation)
# =============================================================================

class InMemoryOpStore(OpStore):
    """
    In-memory implementation of the op store.

    Ops are keyed by op_id, so re-writing an op is idempotent.
    """

    def __init__(self):
        self._ops: Dict[str, Operation] = {}
        self._snapshots: List[Snapshot] = []
        self._settings: Dict[str, Any] = {}
        self.batch_writes: int = 0

    def append_batch(self, ops: Iterable[Operation]) -> StorageWriteResult:
        written = 0
        for op in ops:
            self._ops[op.op_id] = op
            written += 1
        self.batch_writes += 1
        return StorageWriteResult.ok(written)

    def query_after(self, seq: int) -> List[Operation]:
        return sort_by_seq(op for op in self._ops.values() if op.seq > seq)

    def query_all(self) -> List[Operation]:
        return sort_by_seq(self._ops.values())

    def count(self) -> int:
        return len(self._ops)

    def put_snapshot(self, snapshot: Snapshot) -> StorageWriteResult:
        self._snapshots.append(snapshot)
        return StorageWriteResult.ok()

    def get_latest_snapshot(self) -> Optional[Snapshot]:
        return self._snapshots[-1] if self._snapshots else None

    def snapshot_count(self) -> int:
        return len(self._snapshots)

    def put_setting(self, key: str, value: Any) -> StorageWriteResult:
        self._settings[key] = value
        return StorageWriteResult.ok()

    def get_setting(self, key: str, default: Any = None) -> Any:
        return self._settings.get(key, default)

    def clear(self) -> StorageWriteResult:
        self._ops.clear()
        self._snapshots.clear()
        return StorageWriteResult.ok(0)


# =============================================================================
# FILE-BASED STORE
# =============================================================================

class FileOpStore(OpStore):
    """
    File-based implementation of the op store.

    Uses append-only JSON Lines files. Indices are rebuilt on open;
    unreadable lines are skipped with a warning.
    """

    def __init__(self, storage_dir: str):
        self._storage_dir = storage_dir
        self._ops_file = os.path.join(storage_dir, "ops.jsonl")
        self._snapshots_file = os.path.join(storage_dir, "snapshots.jsonl")
        self._settings_file = os.path.join(storage_dir, "settings.json")

        os.makedirs(storage_dir, exist_ok=True)

        # In-memory indices (rebuilt on load)
        self._ops: Dict[str, Operation] = {}
        self._latest_snapshot: Optional[Snapshot] = None
        self._settings: Dict[str, Any] = {}

        self._rebuild_indices()

    @property
    def storage_dir(self) -> str:
        return self._storage_dir

    def _rebuild_indices(self):
        """Rebuild in-memory indices from storage files."""
        for data in self._read_lines(self._ops_file):
            try:
                op = Operation.from_dict(data)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping malformed op record in %s: %s", self._ops_file, e)
                continue
            self._ops[op.op_id] = op

        for data in self._read_lines(self._snapshots_file):
            try:
                self._latest_snapshot = Snapshot.from_dict(data)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping malformed snapshot in %s: %s", self._snapshots_file, e)

        self._settings = self._load_settings()

    def _load_settings(self) -> Dict[str, Any]:
        """Malformed settings fall back to an empty mapping."""
        if not os.path.exists(self._settings_file):
            return {}
        try:
            with open(self._settings_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable settings %s: %s", self._settings_file, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed settings %s", self._settings_file)
            return {}
        return data

    def _read_lines(self, path: str) -> Iterable[dict]:
        if not os.path.exists(path):
            return
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line %d in %s", line_no, path)

    def append_batch(self, ops: Iterable[Operation]) -> StorageWriteResult:
        """Append operations to the op file in one write."""
        fresh = [op for op in ops if op.op_id not in self._ops]
        if not fresh:
            return StorageWriteResult.ok(0)
        try:
            payload = "".join(json.dumps(op.to_dict()) + "\n" for op in fresh)
            with open(self._ops_file, "a", encoding="utf-8") as f:
                f.write(payload)
        except (OSError, TypeError, ValueError) as e:
            return StorageWriteResult.failed(Error(
                code=ErrorCode.STORAGE_FAILURE,
                message=f"Failed to write operations: {str(e)}",
                context=(("path", self._ops_file),)
            ))
        for op in fresh:
            self._ops[op.op_id] = op
        return StorageWriteResult.ok(len(fresh))

    def query_after(self, seq: int) -> List[Operation]:
        return sort_by_seq(op for op in self._ops.values() if op.seq > seq)

    def query_all(self) -> List[Operation]:
        return sort_by_seq(self._ops.values())

    def count(self) -> int:
        return len(self._ops)

    def put_snapshot(self, snapshot: Snapshot) -> StorageWriteResult:
        """Append snapshot to storage file."""
        try:
            with open(self._snapshots_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(snapshot.to_dict()) + "\n")
        except (OSError, TypeError, ValueError) as e:
            return StorageWriteResult.failed(Error(
                code=ErrorCode.STORAGE_FAILURE,
                message=f"Failed to write snapshot: {str(e)}",
                context=(("path", self._snapshots_file),)
            ))
        self._latest_snapshot = snapshot
        return StorageWriteResult.ok()

    def get_latest_snapshot(self) -> Optional[Snapshot]:
        return self._latest_snapshot

    def put_setting(self, key: str, value: Any) -> StorageWriteResult:
        settings = dict(self._settings)
        settings[key] = value
        try:
            with open(self._settings_file, "w", encoding="utf-8") as f:
                json.dump(settings, f, indent=2)
        except (OSError, TypeError, ValueError) as e:
            return StorageWriteResult.failed(Error(
                code=ErrorCode.STORAGE_FAILURE,
                message=f"Failed to write settings: {str(e)}",
                context=(("path", self._settings_file),)
            ))
        self._settings = settings
        return StorageWriteResult.ok()

    def get_setting(self, key: str, default: Any = None) -> Any:
        return self._settings.get(key, default)

    def clear(self) -> StorageWriteResult:
        try:
            for path in (self._ops_file, self._snapshots_file):
                if os.path.exists(path):
                    os.remove(path)
        except OSError as e:
            return StorageWriteResult.failed(Error(
                code=ErrorCode.STORAGE_FAILURE,
                message=f"Failed to clear store: {str(e)}",
                context=(("path", self._storage_dir),)
            ))
        self._ops.clear()
        self._latest_snapshot = None
        return StorageWriteResult.ok(0)


def create_store(config: Optional[StorageConfig] = None) -> OpStore:
    """Create an op store based on configuration."""
    config = config or StorageConfig()
    if config.backend_type == "file" and config.storage_dir:
        return FileOpStore(config.storage_dir)
    return InMemoryOpStore()
