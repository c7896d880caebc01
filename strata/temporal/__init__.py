"""
Temporal Layer

Time, sequencing and replay: clocks and schedulers, the per-document
operation factory, and the projector that folds operations into state.
"""

from .clock import (
    Clock,
    SystemClock,
    FixedClock,
    Scheduler,
    TimerHandle,
    AsyncioScheduler,
    ManualScheduler,
)
from .sequence import OpFactory
from .projector import apply_op, rebuild_state, find_root_id

__all__ = [
    "Clock", "SystemClock", "FixedClock", "Scheduler", "TimerHandle",
    "AsyncioScheduler", "ManualScheduler", "OpFactory",
    "apply_op", "rebuild_state", "find_root_id",
]
