"""
Interchange Format Tests
========================

INVARIANTS TESTED:
1. Exports walk live nodes depth-first from the root or a zoomed node
2. OPML output is well-formed and escapes text through the XML writer
3. Imports nest by indentation or element structure
4. Flattened imports list parents before children with ascending keys
"""

import xml.etree.ElementTree as ET

import pytest

from strata.codec.formats import (
    ImportNode,
    export_markdown,
    export_opml,
    export_plaintext,
    flatten_import_nodes,
    format_for_filename,
    parse_markdown_import,
    parse_opml_import,
    parse_plaintext_import,
)
from strata.contracts.base import DocumentValidationError
from strata.contracts.nodes import DEFAULT_STATUSES

from tests.fixtures import make_tree


def sample_tree():
    return make_tree(
        ("root", None, "n", "Root"),
        ("a", "root", "a", "Task A", {"tags": ["urgent"]}),
        ("a1", "a", "a", "Subtask A1", {"status": "in_progress"}),
        ("b", "root", "b", "Task B\nExtra line", {"status": "done"}),
        ("c", "root", "c", "Task C"),
        ("gone", "root", "d", "Deleted", {"deleted": True}),
    )


def texts(trees):
    return [(node.text, texts(node.children)) for node in trees]


# =============================================================================
# EXPORT
# =============================================================================

class TestExportMarkdown:

    def test_glyphs_tags_and_nesting(self):
        lines = export_markdown(sample_tree(), "root").splitlines()
        assert lines == [
            "- [T] Task A #urgent",
            "  - [I] Subtask A1",
            "- [D] Task B",
            "  Extra line",
            "- [T] Task C",
        ]

    def test_zoom_limits_to_subtree(self):
        text = export_markdown(sample_tree(), "root", zoom_id="a")
        assert text == "- [I] Subtask A1\n"

    def test_empty_text_placeholder(self):
        nodes = make_tree(("root", None, "n", "Root"), ("e", "root", "n", ""))
        assert export_markdown(nodes, "root") == "- [T] (empty)\n"


class TestExportPlaintext:

    def test_labels_and_indentation(self):
        lines = export_plaintext(sample_tree(), "root", DEFAULT_STATUSES).splitlines()
        assert lines == [
            "[Todo] Task A",
            "  [In Progress] Subtask A1",
            "[Done] Task B",
            "  Extra line",
            "[Todo] Task C",
        ]

    def test_unknown_status_uses_id(self):
        nodes = make_tree(("root", None, "n", "Root"), ("x", "root", "n", "Test", {"status": "custom"}))
        assert export_plaintext(nodes, "root") == "[custom] Test\n"


class TestExportOpml:

    def test_structure(self):
        text = export_opml(sample_tree(), "root")
        assert text.startswith('<?xml version="1.0" encoding="UTF-8"?>\n')

        document = ET.fromstring(text)
        assert document.tag == "opml"
        assert document.get("version") == "2.0"
        assert document.findtext("head/title") == "Root"

        top = document.findall("body/outline")
        assert [o.get("text") for o in top] == ["Task A", "Task B\nExtra line", "Task C"]
        assert top[0].get("tags") == "urgent"
        assert top[0].find("outline").get("status") == "in_progress"
        assert top[2].find("outline") is None

    def test_special_characters_are_escaped(self):
        nodes = make_tree(("root", None, "n", "Root"), ("x", "root", "n", 'A & B <c> "d"'))
        text = export_opml(nodes, "root")
        assert "&amp;" in text and "&lt;" in text and "&quot;" in text
        assert ET.fromstring(text).find("body/outline").get("text") == 'A & B <c> "d"'

    def test_zoom_sets_title(self):
        document = ET.fromstring(export_opml(sample_tree(), "root", zoom_id="a"))
        assert document.findtext("head/title") == "Task A"
        assert [o.get("text") for o in document.findall("body/outline")] == ["Subtask A1"]


# =============================================================================
# IMPORT
# =============================================================================

class TestImportParsers:

    def test_markdown_bullets_and_tags(self):
        trees = parse_markdown_import(
            "# Heading\n"
            "- Groceries #home #home\n"
            "  * Milk\n"
            "  - Eggs\n"
            "    - Free range\n"
            "- Work #job\n"
        )
        assert texts(trees) == [
            ("Groceries", [("Milk", []), ("Eggs", [("Free range", [])])]),
            ("Work", []),
        ]
        assert trees[0].tags == ["home"]
        assert trees[1].tags == ["job"]

    def test_plaintext_indentation(self):
        trees = parse_plaintext_import("One\n  Two\n\n    Three\nFour\r\n")
        assert texts(trees) == [("One", [("Two", [("Three", [])])]), ("Four", [])]

    def test_opml_outlines(self):
        trees = parse_opml_import(
            '<?xml version="1.0"?>'
            '<opml version="2.0"><head><title>t</title></head><body>'
            '<outline text="A" status="done" tags="x, y,">'
            '<outline text="A1"/>'
            '</outline>'
            '<outline/>'
            '</body></opml>'
        )
        assert texts(trees) == [("A", [("A1", [])]), ("", [])]
        assert trees[0].status == "done"
        assert trees[0].tags == ["x", "y"]
        assert trees[1].status is None

    def test_opml_without_body(self):
        assert parse_opml_import("<opml><head/></opml>") == []

    def test_malformed_opml_is_rejected(self):
        with pytest.raises(DocumentValidationError) as excinfo:
            parse_opml_import("<opml><body>")
        assert "Invalid OPML file" in str(excinfo.value)

    def test_opml_export_reads_back(self):
        trees = parse_opml_import(export_opml(sample_tree(), "root"))
        assert texts(trees) == [
            ("Task A", [("Subtask A1", [])]),
            ("Task B\nExtra line", []),
            ("Task C", []),
        ]

    @pytest.mark.parametrize("filename, fmt", [
        ("outline.opml", "opml"),
        ("notes.MD", "markdown"),
        ("notes.markdown", "markdown"),
        ("list.txt", "plaintext"),
        ("README", "plaintext"),
    ])
    def test_format_for_filename(self, filename, fmt):
        assert format_for_filename(filename) == fmt


# =============================================================================
# FLATTEN
# =============================================================================

class TestFlattenImportNodes:

    def test_parents_before_children(self):
        trees = [
            ImportNode("A", children=[ImportNode("A1"), ImportNode("A2")]),
            ImportNode("B", status="done", tags=["t"]),
        ]
        flat = flatten_import_nodes(trees, "root", "todo")
        by_text = {n.text: n for n in flat}

        assert [n.text for n in flat] == ["A", "A1", "A2", "B"]
        assert by_text["A"].parent_id == "root"
        assert by_text["A1"].parent_id == by_text["A"].id
        assert by_text["A"].pos < by_text["B"].pos
        assert by_text["A1"].pos < by_text["A2"].pos
        assert by_text["A"].status == "todo"
        assert by_text["B"].status == "done"
        assert by_text["B"].tags == ["t"]
        assert len({n.id for n in flat}) == 4

    def test_placed_after_existing_sibling(self):
        flat = flatten_import_nodes([ImportNode("X"), ImportNode("Y")], "root", "todo", after_pos="nr")
        assert "nr" < flat[0].pos < flat[1].pos

    def test_after_a_very_high_key(self):
        flat = flatten_import_nodes([ImportNode("X"), ImportNode("Y")], "root", "todo", after_pos="zzz")
        assert "zzz" < flat[0].pos < flat[1].pos

    def test_empty_input(self):
        assert flatten_import_nodes([], "root", "todo") == []
