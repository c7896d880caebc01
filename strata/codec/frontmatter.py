"""
Frontmatter block handling.

A document starts with a YAML block delimited by ``---`` lines. The
``doc-type: strata`` marker identifies files that belong to the engine.
"""

from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging
import re

import yaml

from ..contracts.nodes import DEFAULT_STATUSES, StatusDef, is_default_schema

logger = logging.getLogger(__name__)

DOC_TYPE_KEY = "doc-type"
DOC_TYPE = "strata"
FORMAT_KEY = "format"
STATUSES_KEY = "statuses"
TAG_COLORS_KEY = "tag-colors"

FRONTMATTER_RE = re.compile(r"\A---\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
EMPTY_FRONTMATTER_RE = re.compile(r"\A---\r?\n---[ \t]*(?:\r?\n|\Z)")


def split_frontmatter(text: str) -> Tuple[Optional[str], str]:
    """(raw frontmatter or None, body)"""
    if text.startswith("\ufeff"):
        text = text[1:]
    match = FRONTMATTER_RE.match(text) or EMPTY_FRONTMATTER_RE.match(text)
    if match is None:
        return None, text
    raw = match.group(1) if match.groups() else ""
    return raw, text[match.end():]


def load_frontmatter(raw: Optional[str]) -> Dict[str, Any]:
    """YAML mapping; unparsable or non-mapping frontmatter reads as empty."""
    if not raw or not raw.strip():
        return {}
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logger.warning("Ignoring unparsable frontmatter: %s", e)
        return {}
    return data if isinstance(data, dict) else {}


def has_doc_type_marker(text: str) -> bool:
    raw, _body = split_frontmatter(text)
    if raw is None:
        return False
    return str(load_frontmatter(raw).get(DOC_TYPE_KEY, "")).strip() == DOC_TYPE


def statuses_from(data: Mapping[str, Any]) -> List[StatusDef]:
    """Status schema from frontmatter; defaults when absent or unusable."""
    raw = data.get(STATUSES_KEY)
    if not isinstance(raw, list):
        return list(DEFAULT_STATUSES)
    statuses: List[StatusDef] = []
    for item in raw:
        if not isinstance(item, dict) or not all(k in item for k in ("id", "label", "color", "icon")):
            continue
        statuses.append(StatusDef(
            id=str(item["id"]),
            label=str(item["label"]),
            color=str(item["color"]),
            icon=str(item["icon"]),
            final=item.get("final") is True or str(item.get("final", "")).lower() == "true",
        ))
    return statuses or list(DEFAULT_STATUSES)


def tag_colors_from(data: Mapping[str, Any]) -> Dict[str, str]:
    raw = data.get(TAG_COLORS_KEY)
    if not isinstance(raw, dict):
        return {}
    return {str(tag): str(color) for tag, color in raw.items()}


def render_frontmatter(
    statuses: Sequence[StatusDef],
    tag_colors: Optional[Mapping[str, str]] = None,
    version: int = 2,
) -> str:
    """
    Frontmatter block including both delimiters.

    The status list is written only when it differs from the defaults.
    """
    data: Dict[str, Any] = {DOC_TYPE_KEY: DOC_TYPE, FORMAT_KEY: version}
    if not is_default_schema(statuses):
        data[STATUSES_KEY] = [s.to_dict() for s in statuses]
    if tag_colors:
        data[TAG_COLORS_KEY] = {tag: tag_colors[tag] for tag in sorted(tag_colors)}
    body = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return "---\n" + body + "---\n"
