"""
Document Engine Layer

The per-document engine plus its undo machinery and text debouncer.
"""

from .document import DocumentEngine, ChangeSet, ORIGIN_LOCAL, ORIGIN_EXTERNAL
from .undo import UndoEntry, UndoHistory, build_compensating_ops
from .debounce import TextDebouncer

__all__ = [
    "DocumentEngine", "ChangeSet", "ORIGIN_LOCAL", "ORIGIN_EXTERNAL",
    "UndoEntry", "UndoHistory", "build_compensating_ops", "TextDebouncer",
]
