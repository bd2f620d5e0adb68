"""
btrscope - Tree Navigator
Descends btrfs B-trees from a root logical address

Descent is an explicit loop over an ancestor stack, never recursion:
forensic input is untrusted, so the walk is bounded by max_depth no matter
what the headers claim, and a logical address seen twice in one walk is
reported as damage instead of being followed again.

The ancestor stack kept in each TreePath is also what provides "next leaf
in key order": pop ancestors until one has a pointer right of the one we
came through, then go down its leftmost edge.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Set, Tuple

from .chunks import ChunkMap
from .errors import StructuralDamageError, UnsupportedFeatureError
from .identifier import Endian
from .node import BtrfsNode, InternalNode, LeafItem, LeafNode, decode_node
from .search import collect_all, find_first
from .structures import BTRFS_MAX_LEVEL, MAX_KEY, MIN_KEY, BtrfsKey


@dataclass
class TreePath:
    """A leaf plus the internal nodes (and pointer indexes) leading to it"""
    leaf: LeafNode
    ancestors: List[Tuple[InternalNode, int]] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.ancestors)


class TreeNavigator:
    """
    Reads and walks trees of one assembled pool.

    Args:
        pool: Assembled Pool
        chunk_map: ChunkMap used to translate every node address
        endian: Byte order of the on-disk structures
        skip_damaged: Log and skip children that fail to read or decode
            instead of aborting the walk
        max_depth: Maximum number of nodes on any root-to-leaf path
        cache_size: Number of decoded nodes to keep (0 disables the cache)
    """

    def __init__(self, pool, chunk_map: ChunkMap, endian: Endian = Endian.LITTLE,
                 skip_damaged: bool = False, max_depth: int = BTRFS_MAX_LEVEL,
                 cache_size: int = 256):
        self.pool = pool
        self.chunk_map = chunk_map
        self.endian = endian
        self.skip_damaged = skip_damaged
        self.max_depth = max_depth
        self.nodesize = pool.canonical_superblock.nodesize
        self.logger = logging.getLogger(__name__)

        # Nodes are immutable once read, so concurrent fills of the same
        # address store equal values
        self.cache_size = cache_size
        self._cache: "OrderedDict[int, BtrfsNode]" = OrderedDict()
        self._cache_lock = threading.Lock()

        # (logical address, error) of every node skipped so far
        self.damaged: List[Tuple[int, Exception]] = []

    def read_node(self, logical: int) -> BtrfsNode:
        """
        Fetch and decode the node at a logical address.

        Raises:
            StructuralDamageError: unmapped address, undecodable node, or a
                header that does not describe this address / pool
            UnsupportedFeatureError: node lives in a multi-stripe chunk
            ImageReadError: the reader failed
        """
        if self.cache_size:
            with self._cache_lock:
                node = self._cache.get(logical)
                if node is not None:
                    self._cache.move_to_end(logical)
                    return node

        physical = self.chunk_map.translate(logical, self.pool, self.nodesize)
        data = self.pool.read_physical(physical.devid, physical.device_offset, self.nodesize)
        node = decode_node(self.endian, data, logical)

        if node.header.bytenr != logical:
            raise StructuralDamageError(
                f"Node header claims address 0x{node.header.bytenr:X}", logical)
        if node.header.fsid != self.pool.fsid:
            raise StructuralDamageError(
                f"Node belongs to filesystem {node.header.fsid.encode() or '<unused>'}", logical)

        if self.cache_size:
            with self._cache_lock:
                self._cache[logical] = node
                while len(self._cache) > self.cache_size:
                    self._cache.popitem(last=False)
        return node

    def _walk(self, ancestors: List[Tuple[InternalNode, int]], address: Optional[int],
              key: Optional[BtrfsKey], visited: Set[int]) -> Optional[TreePath]:
        """
        Go down to a leaf.

        Starting at `address` (below `ancestors`), follow the child selected by
        `key`, or the leftmost child when key is None. An address of None means
        "advance": move to the next sibling pointer of the deepest ancestor that
        has one. Returns None when the tree is exhausted.
        """
        while True:
            if address is None:
                while ancestors:
                    parent, index = ancestors.pop()
                    if index + 1 < len(parent.pointers):
                        ancestors.append((parent, index + 1))
                        address = parent.pointers[index + 1].blockptr
                        break
                if address is None:
                    return None
                key = None

            try:
                if len(ancestors) >= self.max_depth:
                    raise StructuralDamageError(
                        f"Tree deeper than {self.max_depth} levels", address)
                if address in visited:
                    raise StructuralDamageError("Node visited twice in one walk (cycle)", address)
                visited.add(address)

                node = self.read_node(address)
                if ancestors:
                    parent, index = ancestors[-1]
                    expected = parent.header.level - 1
                    if node.header.level != expected:
                        raise StructuralDamageError(
                            f"Child level {node.header.level}, parent expects {expected}", address)
                    if node.header.generation != parent.pointers[index].generation:
                        self.logger.warning(
                            f"Generation mismatch at 0x{address:X}: pointer says "
                            f"{parent.pointers[index].generation}, node has {node.header.generation}")
                if not node.is_leaf and not node.pointers:
                    raise StructuralDamageError("Internal node without pointers", address)
            except (StructuralDamageError, UnsupportedFeatureError) as e:
                if not self.skip_damaged or not ancestors:
                    raise
                self.logger.warning(f"Skipping damaged node 0x{address:X}: {e}")
                self.damaged.append((address, e))
                address = None
                continue

            if node.is_leaf:
                return TreePath(leaf=node, ancestors=list(ancestors))

            index = node.child_index(key) if key is not None else 0
            ancestors.append((node, index))
            address = node.pointers[index].blockptr

    def descend(self, root: int, key: BtrfsKey = MIN_KEY) -> Optional[TreePath]:
        """
        Find the leaf that would hold `key`.

        Args:
            root: Logical address of the tree root
            key: Search key

        Returns:
            Path to the leaf, or None when damaged subtrees were skipped and
            nothing remained
        """
        return self._walk([], root, key, set())

    def next_leaf(self, path: TreePath) -> Optional[TreePath]:
        """Path to the leaf following path.leaf in key order, or None at the end of the tree."""
        visited = {ancestor.header.bytenr for ancestor, _ in path.ancestors}
        visited.add(path.leaf.header.bytenr)
        return self._walk(list(path.ancestors), None, None, visited)

    def leaves(self, root: int, start: BtrfsKey = MIN_KEY) -> Iterator[LeafNode]:
        """Yield leaves in key order, beginning with the one that would hold `start`."""
        visited: Set[int] = set()
        path = self._walk([], root, start, visited)
        while path is not None:
            yield path.leaf
            path = self._walk(list(path.ancestors), None, None, visited)

    def items(self, root: int, start: BtrfsKey = MIN_KEY, end: BtrfsKey = MAX_KEY) -> Iterator[LeafItem]:
        """Yield items with start <= key <= end, across as many leaves as needed."""
        for leaf in self.leaves(root, start):
            for item in leaf.items:
                if item.key < start:
                    continue
                if item.key > end:
                    return
                yield item

    def find_item(self, root: int, objectid: int, item_type: int) -> Optional[LeafItem]:
        """First item matching (objectid, type), continuing into following leaves when needed."""
        for leaf in self.leaves(root, BtrfsKey(objectid, item_type, 0)):
            result = find_first(leaf, objectid, item_type)
            if result.item is not None:
                return result.item
            if result.exhausted:
                return None
        return None

    def collect_items(self, root: int, objectid: int, item_type: int) -> List[LeafItem]:
        """Every item matching (objectid, type), across leaf boundaries."""
        found: List[LeafItem] = []
        for leaf in self.leaves(root, BtrfsKey(objectid, item_type, 0)):
            if collect_all(leaf, objectid, item_type, found):
                break
        return found
