"""
Codec Layer

Text formats for documents: the markdown outline with YAML frontmatter,
the JSON export file, interchange formats (markdown, OPML, plain text),
and due date helpers.
"""

from .markdown import ParsedDocument, serialize, parse, is_strata_document, FORMAT_VERSION
from .frontmatter import split_frontmatter, load_frontmatter, render_frontmatter
from .export import ExportedDocument, ExportedNode, ExportedStatus, EXPORT_VERSION, dump_document, load_document
from .formats import (
    ImportNode, export_markdown, export_opml, export_plaintext, parse_markdown_import,
    parse_opml_import, parse_plaintext_import, flatten_import_nodes, format_for_filename,
)
from .due_date import format_due, parse_due, normalize_due, due_urgency, matches_due_filter

__all__ = [
    "ParsedDocument", "serialize", "parse", "is_strata_document", "FORMAT_VERSION",
    "split_frontmatter", "load_frontmatter", "render_frontmatter",
    "ExportedDocument", "ExportedNode", "ExportedStatus", "EXPORT_VERSION",
    "dump_document", "load_document",
    "ImportNode", "export_markdown", "export_opml", "export_plaintext",
    "parse_markdown_import", "parse_opml_import", "parse_plaintext_import",
    "flatten_import_nodes", "format_for_filename",
    "format_due", "parse_due", "normalize_due", "due_urgency", "matches_due_filter",
]
