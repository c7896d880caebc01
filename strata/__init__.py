"""
Strata Document Engine

A local-first outline document engine. Every change is an immutable
operation appended to a per-document log; the node tree is a projection
of that log.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Nodes, operations, snapshots, errors and audit entries
   - MUST NOT: Perform I/O or depend on any other layer

2. CORE ALGORITHMS (core/)
   - Fractional rank keys, tree queries
   - Pure functions only

3. TEMPORAL LAYER (temporal/)
   - Clocks, schedulers, op sequencing, the projector (replay)

4. STORAGE LAYER (storage/)
   - Append-only op stores, snapshots, settings, the write buffer
   - MUST NOT: Interpret operations

5. ENGINE (engine/)
   - One DocumentEngine per document: dispatch, undo/redo,
     text debounce, snapshots, schema, import/export

6. CODEC (codec/) and RECONCILER (reconcile.py)
   - Markdown outline with YAML frontmatter, JSON export,
     id-preserving merge of re-parsed trees

7. FILE MODE (fs/)
   - Local adapter, polling watcher, engine <-> file sync

8. WORKSPACE (workspace.py)
   - Multiple documents with one active engine
"""

from .config import StrataConfig, EngineConfig, StorageConfig, FileSyncConfig
from .contracts import ErrorCode, Error, Result, Node, Operation, OpType, StatusDef, Snapshot
from .engine import DocumentEngine, ChangeSet
from .storage import InMemoryOpStore, FileOpStore, create_store
from .codec import ParsedDocument, parse, serialize
from .reconcile import reconcile
from .workspace import Workspace
from .observability import configure_logging

__version__ = "0.1.0"

__all__ = [
    "StrataConfig", "EngineConfig", "StorageConfig", "FileSyncConfig",
    "ErrorCode", "Error", "Result", "Node", "Operation", "OpType", "StatusDef", "Snapshot",
    "DocumentEngine", "ChangeSet",
    "InMemoryOpStore", "FileOpStore", "create_store",
    "ParsedDocument", "parse", "serialize", "reconcile",
    "Workspace", "configure_logging",
]
