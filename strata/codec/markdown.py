"""
Markdown Codec
==============

Bidirectional mapping between a node tree (plus status schema) and a
markdown outline with YAML frontmatter.

FORMAT (version 2, the only version written):
=============================================
    ---
    doc-type: strata
    format: 2
    ---

    - [ ] Title !status(Label) #tag @due(YYYY-MM-DD) !collapsed
      body line
      - [x] Child

- Indentation is 2 spaces per depth; body lines sit at depth + 1
- [x] marks a node whose status is final
- Metadata order is fixed: status, tags, due date, collapsed
- The status marker is omitted only for the schema's default status
- A status token names an exact id first, then a label (any case); the
  label is written unless it contains parentheses or reads back as
  another status, in which case the id is written

Version 1 files (plain ``- Title`` bullets) are still read.

GUARANTEES:
- serialize(parse(serialize(T))) == serialize(T)
- Every written line is right-stripped
- A title that would otherwise read back as metadata ends with a
  single protecting backslash; a body line that would read back as a
  bullet starts with one
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import logging
import re

from ..contracts.base import new_id
from ..contracts.nodes import (
    DEFAULT_STATUSES,
    Node,
    NodeMap,
    StatusDef,
    default_status_id,
    first_final_status_id,
)
from ..core.rank import initial_rank, rank_after
from ..core.tree import walk_depth_first
from .due_date import format_due, parse_due
from .frontmatter import (
    has_doc_type_marker,
    load_frontmatter,
    render_frontmatter,
    split_frontmatter,
    statuses_from,
    tag_colors_from,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = 2
INDENT = "  "
ESCAPE = "\\"

CHECKBOX_RE = re.compile(r"^(\s*)- \[( |x|X)\](?: (.*))?$")
PLAIN_BULLET_RE = re.compile(r"^(\s*)- (.*)$")
BULLET_LIKE_RE = re.compile(r"^\s*- ")

# Trailing metadata, stripped from the end in reverse write order
COLLAPSED_END_RE = re.compile(r"\s*!collapsed$")
DUE_END_RE = re.compile(r"\s*@due\((\d{4}-\d{2}-\d{2})\)$")
TAG_SUFFIX_RE = re.compile(r"(?:\s+#[\w-]+)+\s*$")
STATUS_END_RE = re.compile(r"\s*!status\(([^()]+)\)$")

# Hand-written files may place markers anywhere in the line
STATUS_RE = re.compile(r"\s*!status\(([^()]+)\)")
COLLAPSED_RE = re.compile(r"\s*!collapsed\b")
DUE_RE = re.compile(r"\s*@due\((\d{4}-\d{2}-\d{2})\)")

TAG_RE = re.compile(r"^[\w-]+$")
TAG_TOKEN_RE = re.compile(r"#([\w-]+)")


@dataclass
class ParsedDocument:
    """Result of parsing: a fresh tree with newly generated ids."""
    nodes: NodeMap
    root_id: str
    status_schema: List[StatusDef] = field(default_factory=lambda: list(DEFAULT_STATUSES))
    tag_colors: Dict[str, str] = field(default_factory=dict)
    format_version: int = FORMAT_VERSION


@dataclass
class _Meta:
    text: str
    status_token: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    due: Optional[int] = None
    collapsed: bool = False

    @property
    def found(self) -> bool:
        return (
            self.status_token is not None
            or bool(self.tags)
            or self.due is not None
            or self.collapsed
        )


# =============================================================================
# METADATA SPLITTING (shared by reader and writer)
# =============================================================================

def _strip_trailing(content: str) -> _Meta:
    meta = _Meta(text=content)
    rest = content

    match = COLLAPSED_END_RE.search(rest)
    if match:
        meta.collapsed = True
        rest = rest[:match.start()]

    match = DUE_END_RE.search(rest)
    if match and parse_due(match.group(1)) is not None:
        meta.due = parse_due(match.group(1))
        rest = rest[:match.start()]

    match = TAG_SUFFIX_RE.search(rest)
    if match:
        for tag in TAG_TOKEN_RE.findall(match.group(0)):
            if tag not in meta.tags:
                meta.tags.append(tag)
        rest = rest[:match.start()]

    match = STATUS_END_RE.search(rest)
    if match:
        meta.status_token = match.group(1)
        rest = rest[:match.start()]

    meta.text = rest
    return meta


def _strip_anywhere(meta: _Meta) -> _Meta:
    rest = meta.text

    if meta.status_token is None:
        match = STATUS_RE.search(rest)
        if match:
            meta.status_token = match.group(1)
            rest = rest[:match.start()] + rest[match.end():]

    if not meta.collapsed:
        match = COLLAPSED_RE.search(rest)
        if match:
            meta.collapsed = True
            rest = rest[:match.start()] + rest[match.end():]

    if meta.due is None:
        match = DUE_RE.search(rest)
        if match and parse_due(match.group(1)) is not None:
            meta.due = parse_due(match.group(1))
            rest = rest[:match.start()] + rest[match.end():]

    meta.text = rest
    return meta


def split_metadata(content: str) -> _Meta:
    """
    Separate bullet content into title and metadata.

    A title protected by a trailing backslash is taken verbatim once
    the trailing metadata is removed.
    """
    meta = _strip_trailing(content)
    if meta.text.endswith(ESCAPE):
        meta.text = meta.text[:-1]
        return meta
    meta = _strip_anywhere(meta)
    meta.text = meta.text.rstrip()
    return meta


def _needs_guard(title: str) -> bool:
    if title.endswith(ESCAPE):
        return True
    split = split_metadata(title)
    return split.found or split.text != title


# =============================================================================
# SERIALIZE
# =============================================================================

def serialize(
    nodes: Mapping[str, Node],
    root_id: str,
    status_schema: Optional[Sequence[StatusDef]] = None,
    tag_colors: Optional[Mapping[str, str]] = None,
) -> str:
    """Render the live tree under root_id as a markdown outline."""
    schema = list(status_schema) if status_schema else list(DEFAULT_STATUSES)
    default_status = default_status_id(schema)
    finals = {s.id for s in schema if s.final}

    lines: List[str] = render_frontmatter(schema, tag_colors, FORMAT_VERSION).splitlines()
    lines.append("")

    for node, depth in walk_depth_first(nodes, root_id):
        indent = INDENT * depth
        title, *body = node.text.split("\n")
        title = title.rstrip()
        if _needs_guard(title):
            title += ESCAPE

        box = "[x]" if node.status in finals else "[ ]"
        meta = _metadata_tokens(node, default_status, schema)
        line = f"{indent}- {box} {title}"
        if meta:
            line += " " + " ".join(meta)
        lines.append(line.rstrip())

        while body and not body[-1].strip():
            body.pop()
        for body_line in body:
            body_line = body_line.rstrip()
            if not body_line:
                lines.append("")
                continue
            if body_line.startswith(ESCAPE) or BULLET_LIKE_RE.match(body_line):
                body_line = ESCAPE + body_line
            lines.append(f"{indent}{INDENT}{body_line}")

    return "\n".join(lines) + "\n"


def resolve_status_token(token: str, schema: Sequence[StatusDef]) -> str:
    """An exact id wins, then a case-insensitive label; anything else is kept as is."""
    token = token.strip()
    for status in schema:
        if status.id == token:
            return status.id
    lowered = token.lower()
    for status in schema:
        if status.label.strip().lower() == lowered:
            return status.id
    return token


def _status_token(status_id: str, schema: Sequence[StatusDef]) -> Optional[str]:
    """The label when it reads back as status_id, else the id."""
    label = next((s.label for s in schema if s.id == status_id), status_id)
    for candidate in (label.strip(), status_id):
        if (
            candidate
            and "(" not in candidate
            and ")" not in candidate
            and resolve_status_token(candidate, schema) == status_id
        ):
            return candidate
    return None


def _metadata_tokens(node: Node, default_status: str, schema: Sequence[StatusDef]) -> List[str]:
    tokens: List[str] = []
    if node.status != default_status:
        token = _status_token(node.status, schema)
        if token is None:
            logger.warning("Status %r has no markdown form; marker dropped", node.status)
        else:
            tokens.append(f"!status({token})")
    tokens.extend(f"#{tag}" for tag in node.tags if TAG_RE.match(tag))
    if node.due_date is not None:
        tokens.append(f"@due({format_due(node.due_date)})")
    if node.collapsed:
        tokens.append("!collapsed")
    return tokens


# =============================================================================
# PARSE
# =============================================================================

def parse(text: str) -> ParsedDocument:
    """
    Parse a markdown outline into a fresh tree.

    Ids are newly generated on every call; reconcile() maps them back
    onto a known tree.
    """
    raw, body = split_frontmatter(text)
    data = load_frontmatter(raw)
    schema = statuses_from(data)
    tag_colors = tag_colors_from(data)
    try:
        version = int(data.get("format", 1))
    except (TypeError, ValueError):
        version = 1

    default_status = default_status_id(schema)
    final_status = first_final_status_id(schema) or default_status

    root_id = new_id()
    nodes: NodeMap = {
        root_id: Node(id=root_id, parent_id=None, pos=initial_rank(), text="Root", status=default_status)
    }
    stack: List[Tuple[str, int]] = [(root_id, -1)]
    last_pos: Dict[str, str] = {}
    pending_blank = 0

    for raw_line in body.split("\n"):
        raw_line = raw_line.rstrip("\r")
        bullet = _match_bullet(raw_line)

        if bullet is None:
            if len(stack) == 1:
                continue
            node_id, depth = stack[-1]
            if not raw_line.strip():
                pending_blank += 1
                continue
            expected = INDENT * (depth + 1)
            if raw_line.startswith(expected):
                content = raw_line[len(expected):]
            elif raw_line[:1].isspace():
                content = raw_line.lstrip()
            else:
                continue
            if content.startswith(ESCAPE):
                content = content[1:]
            nodes[node_id].text += "\n" * (pending_blank + 1) + content.rstrip()
            pending_blank = 0
            continue

        pending_blank = 0
        indent, checked, content = bullet
        depth = len(indent) // 2
        meta = split_metadata(content)

        if meta.status_token is not None:
            status = resolve_status_token(meta.status_token, schema)
        elif checked:
            status = final_status
        else:
            status = default_status

        while len(stack) > 1 and stack[-1][1] >= depth:
            stack.pop()
        parent_id = stack[-1][0]
        previous = last_pos.get(parent_id)
        pos = rank_after(previous) if previous else initial_rank()
        last_pos[parent_id] = pos

        node_id = new_id()
        nodes[node_id] = Node(
            id=node_id,
            parent_id=parent_id,
            pos=pos,
            text=meta.text,
            status=status,
            collapsed=meta.collapsed,
            tags=meta.tags,
            due_date=meta.due,
        )
        stack.append((node_id, depth))

    return ParsedDocument(
        nodes=nodes,
        root_id=root_id,
        status_schema=schema,
        tag_colors=tag_colors,
        format_version=version,
    )


def _match_bullet(line: str) -> Optional[Tuple[str, bool, str]]:
    """(indent, checked, content) for a bullet line, else None."""
    match = CHECKBOX_RE.match(line)
    if match:
        return match.group(1), match.group(2) in ("x", "X"), match.group(3) or ""
    match = PLAIN_BULLET_RE.match(line)
    if match:
        return match.group(1), False, match.group(2)
    return None


def is_strata_document(text: str) -> bool:
    """True when the text carries the document-type marker."""
    return has_doc_type_marker(text)
