"""
Tree Reconciler
===============

Maps a freshly parsed tree onto the tree already in memory so that
unchanged nodes keep their ids across an external file edit.

MATCHING (per tree level):
==========================
1. First-line text match, scanning new children in order and only
   accepting an old child positioned after the previous match
2. Positional pairing of whatever remains on both sides

Matched pairs are reconciled one level deeper. New children without a
partner keep their parsed ids, and so do their descendants.
"""

from __future__ import annotations
from typing import Dict, List, Mapping, Optional, Tuple
import logging

from .contracts.nodes import Node, NodeMap
from .core.tree import ordered_children
from .codec.markdown import ParsedDocument

logger = logging.getLogger(__name__)


def _first_line(text: str) -> str:
    return text.split("\n", 1)[0]


def _match_level(old_kids: List[Node], new_kids: List[Node]) -> List[Tuple[Node, Node]]:
    """Pairs of (new, old) children for one level."""
    old_by_text: Dict[str, List[int]] = {}
    for index, kid in enumerate(old_kids):
        old_by_text.setdefault(_first_line(kid.text), []).append(index)

    pairs: List[Tuple[Node, Node]] = []
    matched_old = set()
    matched_new = set()
    last_old = -1

    for new_index, kid in enumerate(new_kids):
        for old_index in old_by_text.get(_first_line(kid.text), ()):
            if old_index > last_old and old_index not in matched_old:
                matched_old.add(old_index)
                matched_new.add(new_index)
                last_old = old_index
                pairs.append((kid, old_kids[old_index]))
                break

    unmatched_new = [kid for i, kid in enumerate(new_kids) if i not in matched_new]
    unmatched_old = [kid for i, kid in enumerate(old_kids) if i not in matched_old]
    pairs.extend(zip(unmatched_new, unmatched_old))
    return pairs


def reconcile(
    old_nodes: Mapping[str, Node],
    old_root_id: str,
    parsed: ParsedDocument,
) -> ParsedDocument:
    """
    Rewrite parsed ids onto old ids where nodes correspond.

    Returns a new ParsedDocument rooted at old_root_id; the collapsed
    flag of every matched node is taken from the old tree.
    """
    id_map: Dict[str, str] = {parsed.root_id: old_root_id}
    pending: List[Tuple[Optional[str], str]] = [(old_root_id, parsed.root_id)]

    while pending:
        old_parent, new_parent = pending.pop()
        new_kids = ordered_children(parsed.nodes, new_parent)
        if old_parent is None:
            pending.extend((None, kid.id) for kid in new_kids)
            continue
        old_kids = ordered_children(old_nodes, old_parent)
        pairs = _match_level(old_kids, new_kids)
        paired = set()
        for new_kid, old_kid in pairs:
            id_map[new_kid.id] = old_kid.id
            paired.add(new_kid.id)
            pending.append((old_kid.id, new_kid.id))
        pending.extend((None, kid.id) for kid in new_kids if kid.id not in paired)

    result: NodeMap = {}
    for new_id, node in parsed.nodes.items():
        resolved = node.copy()
        resolved.id = id_map.get(new_id, new_id)
        if node.parent_id is not None:
            resolved.parent_id = id_map.get(node.parent_id, node.parent_id)
        old = old_nodes.get(resolved.id)
        if old is not None:
            resolved.collapsed = old.collapsed
        result[resolved.id] = resolved

    logger.debug("Reconciled %d of %d parsed nodes onto existing ids", len(id_map), len(parsed.nodes))
    return ParsedDocument(
        nodes=result,
        root_id=old_root_id,
        status_schema=list(parsed.status_schema),
        tag_colors=dict(parsed.tag_colors),
        format_version=parsed.format_version,
    )
