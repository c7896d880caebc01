"""
Base Contracts and Shared Types

Foundational types used across all layers of the document engine.
Errors and results here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- Error/Result types are frozen dataclasses
- Exceptions are reserved for boundary functions (import, file I/O)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple
from enum import Enum, auto
import time
import uuid


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    Every rejected request carries one of these.
    """
    # Tree errors
    UNKNOWN_NODE = auto()
    CYCLIC_MOVE = auto()
    INVALID_MOVE = auto()
    ROOT_IMMUTABLE = auto()
    UNKNOWN_STATUS = auto()

    # Document errors
    INVALID_DOCUMENT = auto()
    SNAPSHOT_IN_PROGRESS = auto()

    # Storage errors
    STORAGE_FAILURE = auto()

    # Workspace errors
    UNKNOWN_DOCUMENT = auto()
    LAST_DOCUMENT = auto()

    # File mode errors
    FILE_NOT_FOUND = auto()
    FILE_IO_FAILURE = auto()
    NOT_A_STRATA_FILE = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and inspected.
    """
    code: ErrorCode
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def __str__(self) -> str:
        if not self.context:
            return f"{self.code.name}: {self.message}"
        details = ", ".join(f"{k}={v}" for k, v in self.context)
        return f"{self.code.name}: {self.message} ({details})"


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object = None) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


# =============================================================================
# BOUNDARY EXCEPTIONS (import and file I/O only)
# =============================================================================

class StrataError(Exception):
    """Base exception carrying a structured Error."""

    def __init__(self, error: Error):
        super().__init__(str(error))
        self.error = error

    @property
    def code(self) -> ErrorCode:
        return self.error.code


class DocumentValidationError(StrataError):
    """Raised when an imported document fails shape validation."""

    def __init__(self, message: str, *context: Tuple[str, str]):
        super().__init__(Error(
            code=ErrorCode.INVALID_DOCUMENT,
            message=message,
            context=tuple(context)
        ))


class FileAdapterError(StrataError):
    """Raised when a read/write/rename/delete fails in file mode."""

    def __init__(self, code: ErrorCode, message: str, path: str):
        super().__init__(Error(
            code=code,
            message=message,
            context=(("path", path),)
        ))
        self.path = path


# =============================================================================
# IDENTITY AND TIME
# =============================================================================

def new_id() -> str:
    """Generate a fresh, never reused identifier."""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Wall-clock time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)
