"""
Document Registry Tests
=======================

INVARIANTS TESTED:
1. Adding a document makes it active; removing the active one hands over
2. Renaming and touching move last_modified forward
3. The index survives a reload; a malformed index loads empty
"""

import json
import logging

from strata.registry import REGISTRY_FILE, DocumentMeta, DocumentRegistry
from strata.temporal.clock import FixedClock

from tests.fixtures import EPOCH_MS


def make_registry(path=None):
    return DocumentRegistry(path, clock=FixedClock(current=EPOCH_MS, step=1000))


# =============================================================================
# MUTATIONS
# =============================================================================

class TestRegistryMutations:

    def test_add_assigns_id_and_activates(self):
        registry = make_registry()
        first = registry.add("Notes")
        second = registry.add("Todo")

        assert first.id != second.id
        assert registry.active_id == second.id
        assert first.created_at == first.last_modified == EPOCH_MS
        assert [m.name for m in registry.documents()] == ["Notes", "Todo"]
        assert len(registry) == 2

    def test_add_with_explicit_id(self):
        registry = make_registry()
        meta = registry.add("notes", doc_id="notes")
        assert meta.id == "notes"
        assert "notes" in registry

    def test_remove_active_hands_over_to_first_remaining(self):
        registry = make_registry()
        a = registry.add("A")
        registry.add("B")
        c = registry.add("C")

        assert registry.remove(c.id)
        assert registry.active_id == a.id
        assert not registry.remove(c.id)

    def test_remove_last_clears_active(self):
        registry = make_registry()
        only = registry.add("Only")
        registry.remove(only.id)
        assert registry.active_id is None
        assert len(registry) == 0

    def test_rename_updates_last_modified(self):
        registry = make_registry()
        meta = registry.add("Draft")
        assert registry.rename(meta.id, "Final")

        renamed = registry.get(meta.id)
        assert renamed.name == "Final"
        assert renamed.last_modified > renamed.created_at
        assert not registry.rename("missing", "x")

    def test_sorted_documents_most_recent_first(self):
        registry = make_registry()
        a = registry.add("A")
        b = registry.add("B")
        registry.touch(a.id)
        assert [m.id for m in registry.sorted_documents()] == [a.id, b.id]

    def test_set_active_rejects_unknown(self):
        registry = make_registry()
        meta = registry.add("A")
        assert not registry.set_active("missing")
        assert registry.active_id == meta.id


# =============================================================================
# PERSISTENCE
# =============================================================================

class TestRegistryPersistence:

    def test_reload_restores_documents_and_active(self, tmp_path):
        path = str(tmp_path / REGISTRY_FILE)
        registry = make_registry(path)
        a = registry.add("A")
        registry.add("B")
        registry.set_active(a.id)

        reloaded = make_registry(path)
        assert [m.name for m in reloaded.documents()] == ["A", "B"]
        assert reloaded.active_id == a.id

    def test_index_uses_camel_case_keys(self, tmp_path):
        path = tmp_path / REGISTRY_FILE
        make_registry(str(path)).add("A", doc_id="a")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["activeDocumentId"] == "a"
        assert data["documents"][0] == {
            "id": "a", "name": "A", "createdAt": EPOCH_MS, "lastModified": EPOCH_MS,
        }

    def test_meta_dict_round_trip(self):
        meta = DocumentMeta(id="a", name="A", created_at=1, last_modified=2)
        assert DocumentMeta.from_dict(meta.to_dict()) == meta

    def test_malformed_index_loads_empty(self, tmp_path, caplog):
        path = tmp_path / REGISTRY_FILE
        path.write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="strata.registry"):
            registry = make_registry(str(path))
        assert len(registry) == 0
        assert registry.active_id is None
        assert "malformed document index" in caplog.text

    def test_wrong_shape_loads_empty(self, tmp_path):
        path = tmp_path / REGISTRY_FILE
        path.write_text(json.dumps({"documents": [{"id": "a"}]}), encoding="utf-8")
        assert len(make_registry(str(path))) == 0

    def test_dangling_active_id_is_dropped(self, tmp_path):
        path = tmp_path / REGISTRY_FILE
        path.write_text(json.dumps({"documents": [], "activeDocumentId": "gone"}), encoding="utf-8")
        assert make_registry(str(path)).active_id is None
