"""
btrscope - Leaf Search Utilities

Items in a leaf are sorted by key, so a scan for one objectid can stop as
soon as it sees a larger objectid. When a scan runs off the end of the leaf
without overshooting, matches may continue in the next leaf; the tree
navigator is responsible for fetching it.
"""

from typing import List, NamedTuple, Optional

from .node import LeafItem, LeafNode


class SearchResult(NamedTuple):
    item: Optional[LeafItem]
    exhausted: bool         # True when an objectid past the target was seen


def find_first(leaf: LeafNode, objectid: int, item_type: int) -> SearchResult:
    """
    Search for an item with given objectid and type in a leaf node.

    Args:
        leaf: Leaf node to scan
        objectid: Object id (inode number, tree id, ...) to search for
        item_type: Item type to search for

    Returns:
        SearchResult(item, False) on a match; SearchResult(None, True) once an
        item's objectid exceeds the target; SearchResult(None, False) when the
        leaf ended first and the next leaf must be consulted.
    """
    for item in leaf.items:
        if item.key.objectid > objectid:
            return SearchResult(None, True)
        if item.key.objectid == objectid and item.key.type == item_type:
            return SearchResult(item, False)
    return SearchResult(None, False)


def collect_all(leaf: LeafNode, objectid: int, item_type: int, found: List[LeafItem]) -> bool:
    """
    Append every not-yet-collected item matching (objectid, type) to found.

    Items are compared by identity, not payload equality.

    Returns:
        True if all items with the objectid have been seen (an objectid greater
        than the target was observed), False if the leaf ended first.
    """
    for item in leaf.items:
        if item.key.objectid > objectid:
            return True
        if item.key.objectid == objectid and item.key.type == item_type:
            if not any(existing is item for existing in found):
                found.append(item)
    return False
