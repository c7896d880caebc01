"""
Shared Test Fixtures

Deterministic engines for tests: virtual-time scheduler, stepping
clock, in-memory store. No real timers ever fire.
"""

from dataclasses import dataclass
from typing import List, Optional

from strata.config import EngineConfig
from strata.contracts.nodes import Node, NodeMap
from strata.contracts.ops import Operation, OpType
from strata.engine.document import DocumentEngine
from strata.storage.stores import InMemoryOpStore, OpStore
from strata.temporal.clock import FixedClock, ManualScheduler


# =============================================================================
# FIXED VALUES (deterministic)
# =============================================================================

CLIENT_ID = "client_test_001"
EPOCH_MS = 1_767_225_600_000        # 2026-01-01T00:00:00Z


@dataclass
class EngineHarness:
    engine: DocumentEngine
    store: OpStore
    scheduler: ManualScheduler
    clock: FixedClock

    def settle(self) -> None:
        """Let every debounce and flush timer fire."""
        self.scheduler.run_all()


def make_engine(
    store: Optional[OpStore] = None,
    scheduler: Optional[ManualScheduler] = None,
    **config_overrides,
) -> EngineHarness:
    """Initialised engine over an in-memory store unless one is given."""
    store = store if store is not None else InMemoryOpStore()
    scheduler = scheduler or ManualScheduler()
    clock = FixedClock(current=EPOCH_MS, step=1)
    config = EngineConfig(client_id=CLIENT_ID, **config_overrides)
    engine = DocumentEngine(store, config=config, scheduler=scheduler, clock=clock)
    engine.init()
    return EngineHarness(engine, store, scheduler, clock)


def add_items(engine: DocumentEngine, *titles: str, parent_id: Optional[str] = None) -> List[str]:
    """Append one child per title under parent_id (root by default)."""
    parent = parent_id or engine.root_id
    return [engine.create_node(parent, text=title) for title in titles]


def titles(engine: DocumentEngine, parent_id: Optional[str] = None) -> List[str]:
    return [n.text for n in engine.children(parent_id)]


def make_op(seq: int, op_type: OpType, payload: dict, ts: Optional[int] = None) -> Operation:
    return Operation(
        op_id=f"op_{seq:04d}",
        client_id=CLIENT_ID,
        seq=seq,
        ts=ts if ts is not None else EPOCH_MS + seq,
        type=op_type,
        payload=payload,
    )


def make_tree(*rows) -> NodeMap:
    """
    Build a node map from (id, parent_id, pos, text[, extra kwargs]) rows.
    """
    nodes: NodeMap = {}
    for row in rows:
        node_id, parent_id, pos, text = row[:4]
        extra = row[4] if len(row) > 4 else {}
        nodes[node_id] = Node(id=node_id, parent_id=parent_id, pos=pos, text=text, **extra)
    return nodes
