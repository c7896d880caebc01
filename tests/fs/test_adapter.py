"""
File Adapter and Watcher Tests
==============================

INVARIANTS TESTED:
1. Only marked markdown files are listed; hidden and tool dirs are skipped
2. Writes are atomic and leave no temporary files behind
3. I/O failures surface as FileAdapterError with a code
4. A write marker suppresses exactly one change event
"""

import asyncio
import os

import pytest

from strata.contracts.base import ErrorCode, FileAdapterError
from strata.fs.adapter import CREATED, DELETED, MODIFIED, FileEvent, LocalFileAdapter, WriteGuard
from strata.fs.watcher import PollingWatcher

DOCUMENT = "---\ndoc-type: strata\nformat: 2\n---\n\n- [ ] A\n"


class FakeTime:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def write(path, text=DOCUMENT):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


# =============================================================================
# WRITE GUARD
# =============================================================================

class TestWriteGuard:

    def test_marker_is_consumed_once(self):
        guard = WriteGuard(ttl=2.0, clock=FakeTime())
        guard.mark("a.md")
        assert guard.is_marked("a.md")
        assert guard.consume("a.md")
        assert not guard.consume("a.md")

    def test_marker_expires(self):
        time = FakeTime()
        guard = WriteGuard(ttl=2.0, clock=time)
        guard.mark("a.md")
        time.now += 2.5
        assert not guard.is_marked("a.md")
        assert not guard.consume("a.md")

    def test_markers_are_per_path(self):
        guard = WriteGuard(clock=FakeTime())
        guard.mark("a.md")
        assert not guard.consume("b.md")
        guard.clear()
        assert not guard.consume("a.md")


# =============================================================================
# LOCAL ADAPTER
# =============================================================================

class TestLocalFileAdapter:

    def test_write_then_read(self, tmp_path):
        adapter = LocalFileAdapter(tmp_path)

        async def scenario():
            await adapter.write("notes/today.md", DOCUMENT)
            return await adapter.read("notes/today.md")

        assert asyncio.run(scenario()) == DOCUMENT
        assert adapter.guard.is_marked("notes/today.md")
        assert os.listdir(tmp_path / "notes") == ["today.md"]

    def test_list_only_marked_documents(self, tmp_path):
        write(tmp_path / "notes.md")
        write(tmp_path / "sub" / "deep.md")
        write(tmp_path / "plain.md", "# Just markdown\n")
        write(tmp_path / "todo.txt")
        write(tmp_path / ".hidden" / "secret.md")
        write(tmp_path / "node_modules" / "pkg.md")

        listed = asyncio.run(LocalFileAdapter(tmp_path).list())
        assert sorted(listed) == ["notes.md", "sub/deep.md"]

    def test_missing_file(self, tmp_path):
        adapter = LocalFileAdapter(tmp_path)
        with pytest.raises(FileAdapterError) as excinfo:
            asyncio.run(adapter.read("missing.md"))
        assert excinfo.value.code is ErrorCode.FILE_NOT_FOUND
        assert excinfo.value.path == "missing.md"

    def test_paths_cannot_escape_root(self, tmp_path):
        adapter = LocalFileAdapter(tmp_path / "workspace")
        with pytest.raises(FileAdapterError) as excinfo:
            adapter.resolve("../outside.md")
        assert excinfo.value.code is ErrorCode.FILE_IO_FAILURE

    def test_rename_and_delete(self, tmp_path):
        write(tmp_path / "old.md")
        adapter = LocalFileAdapter(tmp_path)

        asyncio.run(adapter.rename("old.md", "archive/new.md"))
        assert not (tmp_path / "old.md").exists()
        assert (tmp_path / "archive" / "new.md").read_text(encoding="utf-8") == DOCUMENT
        assert adapter.guard.is_marked("archive/new.md")

        asyncio.run(adapter.delete("archive/new.md"))
        assert not (tmp_path / "archive" / "new.md").exists()

    def test_delete_missing_file(self, tmp_path):
        with pytest.raises(FileAdapterError) as excinfo:
            asyncio.run(LocalFileAdapter(tmp_path).delete("ghost.md"))
        assert excinfo.value.code is ErrorCode.FILE_NOT_FOUND

    def test_ensure_dir(self, tmp_path):
        asyncio.run(LocalFileAdapter(tmp_path).ensure_dir("a/b"))
        assert (tmp_path / "a" / "b").is_dir()


# =============================================================================
# POLLING WATCHER
# =============================================================================

class TestPollingWatcher:

    def test_reports_create_modify_delete(self, tmp_path):
        watcher = PollingWatcher(tmp_path)
        watcher.prime()

        write(tmp_path / "a.md")
        assert watcher.scan() == [FileEvent(CREATED, "a.md")]
        assert watcher.scan() == []

        os.utime(tmp_path / "a.md", (1_000_000, 1_000_000))
        assert watcher.scan() == [FileEvent(MODIFIED, "a.md")]

        (tmp_path / "a.md").unlink()
        assert watcher.scan() == [FileEvent(DELETED, "a.md")]

    def test_prime_reports_nothing(self, tmp_path):
        write(tmp_path / "a.md")
        watcher = PollingWatcher(tmp_path)
        watcher.prime()
        assert watcher.scan() == []

    def test_own_write_is_suppressed_once(self, tmp_path):
        guard = WriteGuard()
        watcher = PollingWatcher(tmp_path, guard=guard)
        watcher.prime()

        guard.mark("a.md")
        write(tmp_path / "a.md")
        assert watcher.scan() == []

        os.utime(tmp_path / "a.md", (1_000_000, 1_000_000))
        assert watcher.scan() == [FileEvent(MODIFIED, "a.md")]

    def test_deletes_are_never_suppressed(self, tmp_path):
        write(tmp_path / "a.md")
        guard = WriteGuard()
        watcher = PollingWatcher(tmp_path, guard=guard)
        watcher.prime()

        guard.mark("a.md")
        (tmp_path / "a.md").unlink()
        assert watcher.scan() == [FileEvent(DELETED, "a.md")]

    def test_watch_loop_delivers_events(self, tmp_path):
        async def scenario():
            watcher = PollingWatcher(tmp_path, poll_interval=0.01)
            seen = asyncio.Event()
            events = []

            async def on_event(event):
                events.append(event)
                seen.set()

            watcher.set_callback(on_event)
            await watcher.start()
            assert watcher.running
            write(tmp_path / "new.md")
            await asyncio.wait_for(seen.wait(), timeout=2.0)
            await watcher.stop()
            return events, watcher.running

        events, running = asyncio.run(scenario())
        assert events[0] == FileEvent(CREATED, "new.md")
        assert not running

    def test_failing_callback_does_not_stop_loop(self, tmp_path):
        async def scenario():
            watcher = PollingWatcher(tmp_path, poll_interval=0.01)
            calls = []
            second = asyncio.Event()

            async def on_event(event):
                calls.append(event.path)
                if len(calls) == 1:
                    raise RuntimeError("handler bug")
                second.set()

            watcher.set_callback(on_event)
            await watcher.start()
            write(tmp_path / "one.md")
            while not calls:
                await asyncio.sleep(0.01)
            write(tmp_path / "two.md")
            await asyncio.wait_for(second.wait(), timeout=2.0)
            await watcher.stop()
            return calls

        assert asyncio.run(scenario()) == ["one.md", "two.md"]
