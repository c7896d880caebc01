"""
Tree Reconciler Tests
=====================

INVARIANTS TESTED:
1. A node whose first line is unchanged keeps its id
2. Edited nodes pair with the old node in the same position
3. Duplicate titles pair in order
4. Genuinely new nodes keep their parsed ids
5. collapsed comes from the old tree, everything else from the parse
"""

from strata.codec.markdown import parse, serialize
from strata.contracts.ops import OpType
from strata.core.tree import ordered_children
from strata.reconcile import reconcile

from tests.fixtures import EPOCH_MS, add_items, make_engine, make_tree


def by_text(document):
    return {n.text: n for n in document.nodes.values() if n.parent_id is not None}


def shopping_list():
    return make_tree(
        ("root", None, "n", "Root"),
        ("a", "root", "n", "Buy milk"),
        ("b", "root", "r", "Eggs"),
        ("c", "a", "n", "Whole"),
    )


class TestIdentity:

    def test_same_text_keeps_id_despite_metadata_changes(self):
        parsed = parse(
            "- [ ] Buy milk #errand @due(2026-01-01)\n"
            "  - [ ] Whole\n"
            "- [ ] Eggs\n"
        )
        result = reconcile(shopping_list(), "root", parsed)
        nodes = by_text(result)

        assert nodes["Buy milk"].id == "a"
        assert nodes["Buy milk"].tags == ["errand"]
        assert nodes["Buy milk"].due_date == EPOCH_MS
        assert nodes["Whole"].id == "c"
        assert nodes["Whole"].parent_id == "a"
        assert nodes["Eggs"].id == "b"

    def test_root_is_mapped(self):
        result = reconcile(shopping_list(), "root", parse("- [ ] Eggs\n"))
        assert result.root_id == "root"
        assert result.nodes["root"].parent_id is None
        assert by_text(result)["Eggs"].parent_id == "root"

    def test_edited_text_pairs_by_position(self):
        parsed = parse("- [ ] Buy oat milk\n  - [ ] Whole\n- [ ] Eggs\n")
        nodes = by_text(reconcile(shopping_list(), "root", parsed))
        assert nodes["Buy oat milk"].id == "a"
        assert nodes["Eggs"].id == "b"
        assert nodes["Whole"].id == "c"

    def test_body_edits_do_not_break_matching(self):
        parsed = parse("- [ ] Buy milk\n  two litres\n- [ ] Eggs\n")
        nodes = by_text(reconcile(shopping_list(), "root", parsed))
        assert nodes["Buy milk\ntwo litres"].id == "a"

    def test_reordered_siblings_keep_ids(self):
        parsed = parse("- [ ] Eggs\n- [ ] Buy milk\n")
        nodes = by_text(reconcile(shopping_list(), "root", parsed))
        assert nodes["Eggs"].id == "b"
        assert nodes["Buy milk"].id == "a"

    def test_duplicate_titles_pair_in_order(self):
        old = make_tree(
            ("root", None, "n", "Root"),
            ("x1", "root", "n", "Same"),
            ("x2", "root", "r", "Same"),
        )
        parsed = parse("- [ ] Same\n- [ ] Fresh\n- [ ] Same\n")
        result = reconcile(old, "root", parsed)
        kids = ordered_children(result.nodes, "root")

        assert [k.id for k in kids][0] == "x1"
        assert [k.id for k in kids][2] == "x2"
        assert kids[1].id not in ("x1", "x2")

    def test_new_subtree_keeps_parsed_ids(self):
        parsed = parse("- [ ] Buy milk\n- [ ] Eggs\n- [ ] Bread\n  - [ ] Rye\n")
        parsed_ids = {n.text: n.id for n in parsed.nodes.values()}
        nodes = by_text(reconcile(shopping_list(), "root", parsed))

        assert nodes["Bread"].id == parsed_ids["Bread"]
        assert nodes["Rye"].id == parsed_ids["Rye"]
        assert nodes["Rye"].parent_id == parsed_ids["Bread"]

    def test_removed_nodes_are_absent(self):
        result = reconcile(shopping_list(), "root", parse("- [ ] Eggs\n"))
        assert set(result.nodes) == {"root", "b"}

    def test_collapsed_comes_from_old_tree(self):
        old = shopping_list()
        old["a"].collapsed = True
        parsed = parse("- [ ] Buy milk\n- [ ] Eggs !collapsed\n")
        nodes = by_text(reconcile(old, "root", parsed))
        assert nodes["Buy milk"].collapsed is True
        assert nodes["Eggs"].collapsed is False

    def test_input_is_not_mutated(self):
        old = shopping_list()
        parsed = parse("- [ ] Buy milk\n")
        parsed_ids = set(parsed.nodes)
        reconcile(old, "root", parsed)
        assert set(parsed.nodes) == parsed_ids
        assert old["a"].text == "Buy milk"


class TestAdoptReconciled:
    """The reconciled tree applied to a live engine."""

    def test_external_edit_keeps_ids_and_history(self):
        h = make_engine()
        e = h.engine
        a, b = add_items(e, "Buy milk", "Eggs")
        depth = e.history.undo_depth

        text = serialize(e.nodes, e.root_id, e.status_schema)
        edited = text.replace("- [ ] Buy milk", "- [x] Buy milk #errand")
        result = reconcile(e.nodes, e.root_id, parse(edited))
        e.adopt_tree(result.nodes, result.root_id, result.status_schema, result.tag_colors)

        assert e.nodes[a].status == "done"
        assert e.nodes[a].tags == ["errand"]
        assert e.nodes[b].text == "Eggs"
        assert e.history.undo_depth == depth

        h.settle()
        adopted = [op.type for op in h.store.query_all()][-2:]
        assert sorted(t.value for t in adopted) == sorted([OpType.SET_STATUS.value, OpType.ADD_TAG.value])

    def test_unchanged_text_writes_no_ops(self):
        h = make_engine()
        e = h.engine
        add_items(e, "One", "Two")
        h.settle()
        count = h.store.count()

        text = serialize(e.nodes, e.root_id, e.status_schema)
        result = reconcile(e.nodes, e.root_id, parse(text))
        e.adopt_tree(result.nodes, result.root_id)
        h.settle()
        assert h.store.count() == count
