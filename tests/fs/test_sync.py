"""
File Document Sync Tests
========================

INVARIANTS TESTED:
1. A missing file is created from the engine's tree
2. Loading a file keeps ids of nodes that still match
3. Local edits schedule one debounced save; external adoption does not
4. The sync's own writes never come back as reloads
5. Save failures are reported, not raised into the timer
6. Files without the strata marker are refused
7. An attached watcher feeds external edits in and stops on close
"""

import asyncio
import os

import pytest

from strata.config import FileSyncConfig
from strata.contracts.base import ErrorCode, FileAdapterError
from strata.codec.markdown import is_strata_document
from strata.fs.adapter import DELETED, MODIFIED, FileEvent, LocalFileAdapter
from strata.fs.sync import FileDocumentSync
from strata.fs.watcher import PollingWatcher

from tests.fixtures import add_items, make_engine, titles

CANONICAL = (
    "---\n"
    "doc-type: strata\n"
    "format: 2\n"
    "---\n"
    "\n"
    "- [ ] Alpha\n"
    "  - [ ] Beta\n"
    "- [x] Gamma !status(Done)\n"
)


class FailingAdapter(LocalFileAdapter):
    async def write(self, path, text):
        raise FileAdapterError(ErrorCode.FILE_IO_FAILURE, "read-only filesystem", path)


def make_sync(tmp_path, adapter=None, watcher=None):
    h = make_engine()
    adapter = adapter or LocalFileAdapter(tmp_path)
    sync = FileDocumentSync(
        h.engine, adapter, "notes.md", FileSyncConfig(save_delay=1.0), h.scheduler, watcher=watcher
    )
    return h, sync


def read(tmp_path):
    return (tmp_path / "notes.md").read_text(encoding="utf-8")


class TestLoad:

    def test_missing_file_is_created(self, tmp_path):
        h, sync = make_sync(tmp_path)
        changes = asyncio.run(sync.load())

        assert changes.is_empty
        text = read(tmp_path)
        assert is_strata_document(text)
        assert text.endswith("\n\n- [ ]\n")
        assert sync.last_written == text

    def test_file_contents_are_adopted(self, tmp_path):
        (tmp_path / "notes.md").write_text(CANONICAL, encoding="utf-8")
        h, sync = make_sync(tmp_path)
        bootstrapped = h.engine.children()[0].id

        asyncio.run(sync.load())
        e = h.engine
        assert titles(e) == ["Alpha", "Gamma"]
        assert e.children()[0].id == bootstrapped
        assert titles(e, bootstrapped) == ["Beta"]
        assert e.children()[1].status == "done"
        assert not sync.save_pending

    def test_canonical_file_is_not_rewritten(self, tmp_path):
        (tmp_path / "notes.md").write_text(CANONICAL, encoding="utf-8")
        h, sync = make_sync(tmp_path)

        async def scenario():
            await sync.load()
            return await sync.save()

        assert asyncio.run(scenario()) is False

    def test_unmarked_file_is_refused(self, tmp_path):
        (tmp_path / "notes.md").write_text("- [ ] Plain list\n", encoding="utf-8")
        h, sync = make_sync(tmp_path)

        with pytest.raises(FileAdapterError) as excinfo:
            asyncio.run(sync.load())
        assert excinfo.value.code is ErrorCode.NOT_A_STRATA_FILE
        assert titles(h.engine) == [""]
        assert read(tmp_path) == "- [ ] Plain list\n"

    def test_adoption_is_logged_as_ops(self, tmp_path):
        (tmp_path / "notes.md").write_text(CANONICAL, encoding="utf-8")
        h, sync = make_sync(tmp_path)
        asyncio.run(sync.load())
        h.engine.flush()

        reloaded = make_engine(store=h.store)
        assert titles(reloaded.engine) == ["Alpha", "Gamma"]


class TestSave:

    def test_local_edit_schedules_one_save(self, tmp_path):
        h, sync = make_sync(tmp_path)

        async def scenario():
            await sync.load()
            add_items(h.engine, "First", "Second")
            assert sync.save_pending
            h.settle()
            await sync.wait_saved()

        asyncio.run(scenario())
        assert not sync.save_pending
        assert read(tmp_path).endswith("- [ ]\n- [ ] First\n- [ ] Second\n")
        saves = [a for a in (e.action for e in sync.get_audit_log()) if a == "file_saved"]
        assert len(saves) == 2

    def test_pending_text_edits_are_saved(self, tmp_path):
        h, sync = make_sync(tmp_path)

        async def scenario():
            await sync.load()
            first = h.engine.children()[0].id
            h.engine.update_text(first, "typed")
            await sync.save()

        asyncio.run(scenario())
        assert "- [ ] typed" in read(tmp_path)

    def test_unchanged_tree_is_not_written(self, tmp_path):
        h, sync = make_sync(tmp_path)

        async def scenario():
            await sync.load()
            return await sync.save()

        assert asyncio.run(scenario()) is False

    def test_close_flushes_pending_save(self, tmp_path):
        h, sync = make_sync(tmp_path)

        async def scenario():
            await sync.load()
            add_items(h.engine, "Late")
            await sync.close()
            add_items(h.engine, "After close")
            return sync.save_pending

        assert asyncio.run(scenario()) is False
        assert "Late" in read(tmp_path)
        assert "After close" not in read(tmp_path)

    def test_failed_save_is_reported(self, tmp_path):
        h, sync = make_sync(tmp_path, FailingAdapter(tmp_path))

        async def scenario():
            sync.schedule_save()
            h.settle()
            await sync.wait_saved()

        asyncio.run(scenario())
        assert "file_save_failed" in [e.action for e in sync.get_audit_log()]
        assert not (tmp_path / "notes.md").exists()


class TestExternalChanges:

    def test_refresh_keeps_matching_ids(self, tmp_path):
        (tmp_path / "notes.md").write_text(CANONICAL, encoding="utf-8")
        h, sync = make_sync(tmp_path)

        async def scenario():
            await sync.load()
            before = {n.text: n.id for n in h.engine.children()}
            edited = CANONICAL.replace("- [ ] Alpha", "- [ ] Alpha #urgent") + "- [ ] Delta\n"
            (tmp_path / "notes.md").write_text(edited, encoding="utf-8")
            await sync.refresh()
            return before

        before = asyncio.run(scenario())
        e = h.engine
        assert titles(e) == ["Alpha", "Gamma", "Delta"]
        assert e.children()[0].id == before["Alpha"]
        assert e.children()[0].tags == ["urgent"]
        assert e.children()[1].id == before["Gamma"]
        assert not sync.save_pending

    def test_refresh_of_own_text_is_noop(self, tmp_path):
        h, sync = make_sync(tmp_path)

        async def scenario():
            await sync.load()
            return await sync.refresh()

        assert asyncio.run(scenario()).is_empty

    def test_handle_event_filters(self, tmp_path):
        h, sync = make_sync(tmp_path)

        async def scenario():
            await sync.load()
            other = await sync.handle_event(FileEvent(MODIFIED, "other.md"))
            deleted = await sync.handle_event(FileEvent(DELETED, "notes.md"))
            return other, deleted

        other, deleted = asyncio.run(scenario())
        assert other.is_empty and deleted.is_empty

    def test_own_save_is_not_seen_by_watcher(self, tmp_path):
        adapter = LocalFileAdapter(tmp_path)
        h, sync = make_sync(tmp_path, adapter)
        watcher = PollingWatcher(tmp_path, guard=adapter.guard)
        watcher.prime()

        async def scenario():
            await sync.load()
            assert watcher.scan() == []

            (tmp_path / "notes.md").write_text(CANONICAL, encoding="utf-8")
            os.utime(tmp_path / "notes.md", (2_000_000_000, 2_000_000_000))
            events = watcher.scan()
            assert events == [FileEvent(MODIFIED, "notes.md")]
            for event in events:
                await sync.handle_event(event)

        asyncio.run(scenario())
        assert titles(h.engine) == ["Alpha", "Gamma"]


# =============================================================================
# ATTACHED WATCHER
# =============================================================================

class TestWatching:

    def test_close_stops_watcher(self, tmp_path):
        adapter = LocalFileAdapter(tmp_path)
        watcher = PollingWatcher(tmp_path, poll_interval=0.01, guard=adapter.guard)
        h, sync = make_sync(tmp_path, adapter, watcher)

        async def scenario():
            await sync.load()
            await sync.start_watching()
            assert watcher.running
            await sync.close()

        asyncio.run(scenario())
        assert not watcher.running

    def test_external_edit_is_adopted(self, tmp_path):
        adapter = LocalFileAdapter(tmp_path)
        watcher = PollingWatcher(tmp_path, poll_interval=0.01, guard=adapter.guard)
        h, sync = make_sync(tmp_path, adapter, watcher)

        (tmp_path / "notes.md").write_text(CANONICAL, encoding="utf-8")
        expected = ["Alpha", "Gamma", "Delta"]

        async def scenario():
            await sync.load()
            await sync.start_watching()
            (tmp_path / "notes.md").write_text(CANONICAL + "- [ ] Delta\n", encoding="utf-8")
            os.utime(tmp_path / "notes.md", (2_000_000_000, 2_000_000_000))
            for _ in range(200):
                await asyncio.sleep(0.01)
                if titles(h.engine) == expected:
                    break
            await sync.close()

        asyncio.run(scenario())
        assert titles(h.engine) == expected

    def test_start_without_watcher_is_noop(self, tmp_path):
        h, sync = make_sync(tmp_path)
        asyncio.run(sync.start_watching())
        assert sync.watcher is None
