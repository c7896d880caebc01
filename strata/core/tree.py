"""
Tree Traversal Helpers

Read-only queries over a node mapping. Deleted nodes are excluded
from ordering and traversal but remain addressable by id.
"""

from __future__ import annotations
from typing import Dict, Iterator, List, Mapping, Optional, Set, Tuple

from ..contracts.nodes import Node


def ordered_children(nodes: Mapping[str, Node], parent_id: Optional[str]) -> List[Node]:
    """Live children of parent_id sorted by pos."""
    kids = [n for n in nodes.values() if n.parent_id == parent_id and not n.deleted]
    kids.sort(key=lambda n: n.pos)
    return kids


def children_index(nodes: Mapping[str, Node]) -> Dict[Optional[str], List[Node]]:
    """parent_id -> ordered live children, built in one pass."""
    index: Dict[Optional[str], List[Node]] = {}
    for node in nodes.values():
        if not node.deleted:
            index.setdefault(node.parent_id, []).append(node)
    for kids in index.values():
        kids.sort(key=lambda n: n.pos)
    return index


def ancestors(nodes: Mapping[str, Node], node_id: str) -> List[str]:
    """
    Ancestor ids from the parent up to the root.

    Stops at a missing parent or a repeated id, so a corrupt mapping
    never loops.
    """
    chain: List[str] = []
    seen: Set[str] = {node_id}
    node = nodes.get(node_id)
    while node is not None and node.parent_id is not None:
        if node.parent_id in seen:
            break
        chain.append(node.parent_id)
        seen.add(node.parent_id)
        node = nodes.get(node.parent_id)
    return chain


def is_descendant(nodes: Mapping[str, Node], candidate_id: str, ancestor_id: str) -> bool:
    """True if candidate_id equals ancestor_id or sits somewhere below it."""
    if candidate_id == ancestor_id:
        return True
    return ancestor_id in ancestors(nodes, candidate_id)


def subtree_ids(nodes: Mapping[str, Node], node_id: str) -> List[str]:
    """Live subtree of node_id in post-order (children before parent)."""
    index = children_index(nodes)
    out: List[str] = []

    def walk(current: str) -> None:
        for child in index.get(current, []):
            walk(child.id)
        out.append(current)

    walk(node_id)
    return out


def walk_depth_first(
    nodes: Mapping[str, Node],
    root_id: str,
) -> Iterator[Tuple[Node, int]]:
    """Yield (node, depth) for every live descendant of root_id, pre-order."""
    index = children_index(nodes)
    stack = [(child, 0) for child in reversed(index.get(root_id, []))]
    while stack:
        node, depth = stack.pop()
        yield node, depth
        for child in reversed(index.get(node.id, [])):
            stack.append((child, depth + 1))


def next_sibling(nodes: Mapping[str, Node], node: Node) -> Optional[Node]:
    siblings = ordered_children(nodes, node.parent_id)
    for i, sibling in enumerate(siblings):
        if sibling.id == node.id:
            return siblings[i + 1] if i + 1 < len(siblings) else None
    return None


def previous_sibling(nodes: Mapping[str, Node], node: Node) -> Optional[Node]:
    siblings = ordered_children(nodes, node.parent_id)
    for i, sibling in enumerate(siblings):
        if sibling.id == node.id:
            return siblings[i - 1] if i > 0 else None
    return None
