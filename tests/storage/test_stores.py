"""
Op Store Tests

INVARIANTS TESTED:
1. Appends are idempotent per op id
2. Queries come back in seq order
3. File stores survive restarts and skip corrupt records
4. Settings round-trip and malformed settings read as empty
"""

import json
import os

import pytest

from strata.config import StorageConfig
from strata.contracts.base import ErrorCode
from strata.contracts.nodes import Node, Snapshot
from strata.contracts.ops import OpType, create_payload, id_payload
from strata.storage.stores import FileOpStore, InMemoryOpStore, create_store

from tests.fixtures import make_op


def three_ops():
    return [
        make_op(3, OpType.TOGGLE_COLLAPSED, id_payload("a")),
        make_op(1, OpType.CREATE, create_payload("root", None, "n", text="Root")),
        make_op(2, OpType.CREATE, create_payload("a", "root", "n", text="A")),
    ]


def sample_snapshot(seq_after=2):
    return Snapshot(
        id="snap_1",
        nodes=(Node("root", None, "n", "Root"), Node("a", "root", "n", "A", tags=["t"])),
        root_id="root",
        seq_after=seq_after,
        ts=1000,
    )


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryOpStore()
    return FileOpStore(str(tmp_path / "doc"))


class TestStoreContract:

    def test_query_all_sorted_by_seq(self, store):
        store.append_batch(three_ops())
        assert [op.seq for op in store.query_all()] == [1, 2, 3]

    def test_query_after(self, store):
        store.append_batch(three_ops())
        assert [op.seq for op in store.query_after(1)] == [2, 3]
        assert store.query_after(3) == []

    def test_append_is_idempotent(self, store):
        ops = three_ops()
        store.append_batch(ops)
        store.append_batch(ops[:1])
        store.append(ops[1])
        assert store.count() == 3

    def test_latest_snapshot(self, store):
        assert store.get_latest_snapshot() is None
        store.put_snapshot(sample_snapshot(1))
        store.put_snapshot(sample_snapshot(2))
        latest = store.get_latest_snapshot()
        assert latest.seq_after == 2
        assert latest.node_map()["a"].tags == ["t"]

    def test_settings(self, store):
        assert store.get_setting("statusConfig") is None
        assert store.get_setting("missing", "fallback") == "fallback"
        store.put_setting("tagColors", {"work": "#ff0000"})
        assert store.get_setting("tagColors") == {"work": "#ff0000"}

    def test_clear(self, store):
        store.append_batch(three_ops())
        store.put_snapshot(sample_snapshot())
        assert store.clear().success
        assert store.count() == 0
        assert store.get_latest_snapshot() is None


class TestFileOpStore:

    def test_reopen_restores_log_and_snapshot(self, tmp_path):
        directory = str(tmp_path / "doc")
        first = FileOpStore(directory)
        first.append_batch(three_ops())
        first.put_snapshot(sample_snapshot())
        first.put_setting("tagColors", {"x": "#000"})

        reopened = FileOpStore(directory)
        assert [op.seq for op in reopened.query_all()] == [1, 2, 3]
        assert reopened.get_latest_snapshot().seq_after == 2
        assert reopened.get_setting("tagColors") == {"x": "#000"}

    def test_batch_is_one_write(self, tmp_path):
        store = FileOpStore(str(tmp_path / "doc"))
        store.append_batch(three_ops())
        with open(os.path.join(store.storage_dir, "ops.jsonl"), encoding="utf-8") as f:
            lines = [line for line in f if line.strip()]
        assert len(lines) == 3
        assert json.loads(lines[0])["opId"] == "op_0003"

    def test_corrupt_lines_are_skipped(self, tmp_path):
        directory = str(tmp_path / "doc")
        store = FileOpStore(directory)
        store.append_batch(three_ops())
        with open(os.path.join(directory, "ops.jsonl"), "a", encoding="utf-8") as f:
            f.write("{not json\n")
            f.write(json.dumps({"opId": "x"}) + "\n")
            f.write(json.dumps({"opId": "y", "seq": 9, "type": "explode"}) + "\n")

        reopened = FileOpStore(directory)
        assert reopened.count() == 3

    def test_malformed_settings_read_as_empty(self, tmp_path):
        directory = tmp_path / "doc"
        directory.mkdir()
        (directory / "settings.json").write_text("[1, 2", encoding="utf-8")
        store = FileOpStore(str(directory))
        assert store.get_setting("statusConfig") is None

    def test_write_failure_is_reported(self, tmp_path):
        store = FileOpStore(str(tmp_path / "doc"))
        os.mkdir(os.path.join(store.storage_dir, "blocker"))
        store._ops_file = os.path.join(store.storage_dir, "blocker")
        result = store.append_batch(three_ops())
        assert not result.success
        assert result.error.code is ErrorCode.STORAGE_FAILURE
        assert store.count() == 0


class TestCreateStore:

    def test_memory_by_default(self):
        assert isinstance(create_store(), InMemoryOpStore)

    def test_file_backend(self, tmp_path):
        store = create_store(StorageConfig(backend_type="file", storage_dir=str(tmp_path)))
        assert isinstance(store, FileOpStore)
