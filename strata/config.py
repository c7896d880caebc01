"""
Engine Configuration

Dataclass configuration for every layer. Sub-configs default in
__post_init__; from_env() overlays STRATA_* environment variables.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import os


@dataclass
class EngineConfig:
    """Document engine tuning."""
    snapshot_interval: int = 200        # Ops between automatic snapshots
    max_undo: int = 200                 # Undo stack capacity
    op_flush_delay: float = 0.05        # Seconds before buffered ops are written
    text_debounce_delay: float = 0.3    # Quiet period before an updateText op
    rank_rebalance_threshold: float = 16.0  # Average sibling key length
    client_id: Optional[str] = None


@dataclass
class StorageConfig:
    """Configuration for the durable op store."""
    backend_type: str = "memory"  # "memory" or "file"
    storage_dir: Optional[str] = None


@dataclass
class FileSyncConfig:
    """File mode timings."""
    save_delay: float = 1.0        # Debounce before writing the markdown file
    poll_interval: float = 0.5     # Watcher mtime polling period
    write_guard_ttl: float = 2.0   # Lifetime of a "recently written" marker


@dataclass
class StrataConfig:
    """Configuration for the complete engine."""
    engine: Optional[EngineConfig] = None
    storage: Optional[StorageConfig] = None
    files: Optional[FileSyncConfig] = None
    log_level: str = "WARNING"

    def __post_init__(self):
        if self.engine is None:
            self.engine = EngineConfig()
        if self.storage is None:
            self.storage = StorageConfig()
        if self.files is None:
            self.files = FileSyncConfig()

    @classmethod
    def from_env(cls) -> StrataConfig:
        """Build configuration from STRATA_* environment variables."""
        config = cls()
        storage_dir = os.environ.get("STRATA_STORAGE_DIR")
        if storage_dir:
            config.storage.storage_dir = storage_dir
            config.storage.backend_type = "file"
        config.storage.backend_type = os.environ.get(
            "STRATA_STORAGE_BACKEND", config.storage.backend_type
        )
        interval = os.environ.get("STRATA_SNAPSHOT_INTERVAL")
        if interval:
            config.engine.snapshot_interval = int(interval)
        config.log_level = os.environ.get("STRATA_LOG_LEVEL", config.log_level)
        return config
