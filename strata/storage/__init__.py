"""
Storage Layer

Durable append-only op stores and the write buffer in front of them.

BOUNDARY ENFORCEMENT:
- ONLY performs append operations on the log
- Snapshots are checkpoints, reproducible from the log
- No engine state lives here
"""

from .stores import OpStore, InMemoryOpStore, FileOpStore, create_store
from .buffer import OpWriteBuffer

__all__ = [
    "OpStore", "InMemoryOpStore", "FileOpStore", "create_store",
    "OpWriteBuffer",
]
