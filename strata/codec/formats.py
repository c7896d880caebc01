"""
Interchange Formats
===================

One-way outline formats for moving content in and out of other tools.
Unlike the markdown codec these are lossy: no ids, no frontmatter, no
due dates.

EXPORT:
- markdown:  ``- [T] Title #tag`` with the status label's initial as glyph
- opml:      OPML 2.0 ``<outline text=... status=... tags=...>`` elements
- plaintext: ``[Label] Title`` indented two spaces per depth

IMPORT:
- Each parser returns ImportNode trees; flatten_import_nodes turns them
  into ready-to-create nodes under a target parent
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence
import re
import xml.etree.ElementTree as ET

from ..contracts.base import DocumentValidationError, new_id
from ..contracts.nodes import DEFAULT_STATUSES, Node, StatusDef
from ..core.rank import ALPHABET, DEFAULT_UPPER, generate_ranks
from ..core.tree import walk_depth_first

EMPTY_TEXT = "(empty)"
OPML_TITLE = "Strata Export"

MARKDOWN = "markdown"
OPML = "opml"
PLAINTEXT = "plaintext"

BULLET_RE = re.compile(r"^(\s*)[-*] (.*)$")
IMPORT_TAG_RE = re.compile(r"#([\w-]+)")
IMPORT_TAG_STRIP_RE = re.compile(r"\s*#[\w-]+")


@dataclass
class ImportNode:
    """Lightweight tree node produced by the import parsers."""
    text: str
    status: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    children: List[ImportNode] = field(default_factory=list)


def _labels(status_schema: Optional[Sequence[StatusDef]]) -> Dict[str, str]:
    schema = status_schema if status_schema is not None else DEFAULT_STATUSES
    return {s.id: s.label for s in schema}


def _split_text(node: Node):
    text = node.text or EMPTY_TEXT
    first, *rest = text.split("\n")
    return first, rest


# =============================================================================
# EXPORT
# =============================================================================

def export_markdown(
    nodes: Mapping[str, Node],
    root_id: str,
    status_schema: Optional[Sequence[StatusDef]] = None,
    zoom_id: Optional[str] = None,
) -> str:
    labels = _labels(status_schema)
    lines: List[str] = []
    for node, depth in walk_depth_first(nodes, zoom_id or root_id):
        indent = "  " * depth
        label = labels.get(node.status, node.status)
        glyph = f"[{label[:1].upper() or ' '}]"
        first, rest = _split_text(node)
        tags = "".join(f" #{tag}" for tag in node.tags)
        lines.append(f"{indent}- {glyph} {first}{tags}")
        lines.extend(f"{indent}  {line}" for line in rest)
    return "\n".join(lines) + "\n"


def export_plaintext(
    nodes: Mapping[str, Node],
    root_id: str,
    status_schema: Optional[Sequence[StatusDef]] = None,
    zoom_id: Optional[str] = None,
) -> str:
    labels = _labels(status_schema)
    lines: List[str] = []
    for node, depth in walk_depth_first(nodes, zoom_id or root_id):
        indent = "  " * depth
        first, rest = _split_text(node)
        lines.append(f"{indent}[{labels.get(node.status, node.status)}] {first}")
        lines.extend(f"{indent}  {line}" for line in rest)
    return "\n".join(lines) + "\n"


def export_opml(
    nodes: Mapping[str, Node],
    root_id: str,
    status_schema: Optional[Sequence[StatusDef]] = None,
    zoom_id: Optional[str] = None,
) -> str:
    """OPML 2.0 document; the head title is the start node's text."""
    start_id = zoom_id or root_id
    start = nodes.get(start_id)

    opml = ET.Element("opml", version="2.0")
    head = ET.SubElement(opml, "head")
    ET.SubElement(head, "title").text = (start.text if start and start.text else OPML_TITLE)
    body = ET.SubElement(opml, "body")

    parents = {start_id: body}
    for node, _ in walk_depth_first(nodes, start_id):
        outline = ET.SubElement(parents[node.parent_id], "outline")
        outline.set("text", node.text or EMPTY_TEXT)
        outline.set("status", node.status)
        if node.tags:
            outline.set("tags", ",".join(node.tags))
        parents[node.id] = outline

    ET.indent(opml, space="  ")
    text = ET.tostring(opml, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + text + "\n"


EXPORTERS: Dict[str, Callable[..., str]] = {
    MARKDOWN: export_markdown,
    OPML: export_opml,
    PLAINTEXT: export_plaintext,
}


# =============================================================================
# IMPORT
# =============================================================================

def _nest(entries) -> List[ImportNode]:
    """Attach (depth, node) entries to the nearest shallower predecessor."""
    roots: List[ImportNode] = []
    stack: List[tuple] = []
    for depth, node in entries:
        while stack and stack[-1][0] >= depth:
            stack.pop()
        if stack:
            stack[-1][1].children.append(node)
        else:
            roots.append(node)
        stack.append((depth, node))
    return roots


def parse_markdown_import(text: str) -> List[ImportNode]:
    """``-`` or ``*`` bullets, two spaces per level; other lines are skipped."""
    entries = []
    for raw_line in text.split("\n"):
        match = BULLET_RE.match(raw_line.rstrip("\r"))
        if not match:
            continue
        content = match.group(2)
        tags: List[str] = []
        for tag in IMPORT_TAG_RE.findall(content):
            if tag not in tags:
                tags.append(tag)
        if tags:
            content = IMPORT_TAG_STRIP_RE.sub("", content).rstrip()
        entries.append((len(match.group(1)) // 2, ImportNode(text=content, tags=tags)))
    return _nest(entries)


def parse_plaintext_import(text: str) -> List[ImportNode]:
    """Every non-blank line is a node; indentation sets the depth."""
    entries = []
    for raw_line in text.split("\n"):
        raw_line = raw_line.rstrip("\r")
        if not raw_line.strip():
            continue
        stripped = raw_line.lstrip()
        depth = (len(raw_line) - len(stripped)) // 2
        entries.append((depth, ImportNode(text=stripped)))
    return _nest(entries)


def parse_opml_import(text: str) -> List[ImportNode]:
    """
    Outlines under <body>, recursively.

    Raises DocumentValidationError when the text is not well-formed XML.
    A document without a body yields no nodes.
    """
    try:
        document = ET.fromstring(text)
    except ET.ParseError as e:
        raise DocumentValidationError(f"Invalid OPML file: {e}") from e

    body = document if document.tag == "body" else document.find("body")
    if body is None:
        return []

    def walk(parent: ET.Element) -> List[ImportNode]:
        found = []
        for outline in parent.findall("outline"):
            tags = [t.strip() for t in (outline.get("tags") or "").split(",") if t.strip()]
            found.append(ImportNode(
                text=outline.get("text", ""),
                status=outline.get("status"),
                tags=tags,
                children=walk(outline),
            ))
        return found

    return walk(body)


IMPORTERS: Dict[str, Callable[[str], List[ImportNode]]] = {
    MARKDOWN: parse_markdown_import,
    OPML: parse_opml_import,
    PLAINTEXT: parse_plaintext_import,
}


def format_for_filename(filename: str) -> str:
    """.opml and .md/.markdown are recognised; anything else is plain text."""
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension == "opml":
        return OPML
    if extension in ("md", "markdown"):
        return MARKDOWN
    return PLAINTEXT


def flatten_import_nodes(
    trees: Sequence[ImportNode],
    parent_id: str,
    default_status: str,
    after_pos: Optional[str] = None,
) -> List[Node]:
    """
    New nodes for trees under parent_id, parents before children.

    Top-level nodes are placed after after_pos; every sibling group gets
    its keys from one generate_ranks call.
    """
    result: List[Node] = []

    def walk(group: Sequence[ImportNode], group_parent: str, lower: Optional[str]) -> None:
        upper = lower + ALPHABET[-1] if lower is not None and lower >= DEFAULT_UPPER else None
        for item, pos in zip(group, generate_ranks(len(group), before=lower, after=upper)):
            node = Node(
                id=new_id(),
                parent_id=group_parent,
                pos=pos,
                text=item.text,
                status=item.status or default_status,
                tags=list(item.tags),
            )
            result.append(node)
            if item.children:
                walk(item.children, node.id, None)

    walk(trees, parent_id, after_pos)
    return result
