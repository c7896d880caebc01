"""
Core Algorithms

Pure functions with no state: fractional rank keys and tree queries.
"""

from .rank import (
    initial_rank,
    rank_between,
    rank_before,
    rank_after,
    generate_ranks,
    spaced_ranks,
    average_key_length,
)
from .tree import (
    ordered_children,
    children_index,
    ancestors,
    is_descendant,
    subtree_ids,
    walk_depth_first,
)

__all__ = [
    "initial_rank", "rank_between", "rank_before", "rank_after",
    "generate_ranks", "spaced_ranks", "average_key_length",
    "ordered_children", "children_index", "ancestors", "is_descendant",
    "subtree_ids", "walk_depth_first",
]
