"""
btrscope - Chunk Translator
Maps logical addresses to physical (device, offset) pairs

Every address stored inside the tree is logical. The chunk items (first
the bootstrap copies in the superblock's system chunk array, then the full
chunk tree) say which device range backs each logical range.

Only single-stripe chunks are translated. DUP/RAID profiles raise
UnsupportedFeatureError so callers can skip them instead of aborting.
"""

import logging
from bisect import bisect_right, insort
from typing import Dict, List, NamedTuple, Optional

from .errors import StructuralDamageError, UnsupportedFeatureError
from .identifier import Endian
from .structures import (
    BTRFS_CHUNK_ITEM_KEY, BTRFS_DEV_ITEM_KEY, ChunkItem, DevItem, Superblock,
    parse_sys_chunk_array,
)


class PhysicalAddress(NamedTuple):
    devid: int
    device_offset: int      # Relative to the start of the device
    image_offset: int       # Absolute offset in the device's image


class ChunkMap:
    """Sorted collection of chunk items supporting logical -> physical lookups"""

    def __init__(self, chunks: Optional[List[ChunkItem]] = None):
        self.logger = logging.getLogger(__name__)
        self._starts: List[int] = []
        self._chunks: Dict[int, ChunkItem] = {}
        self.dev_items: Dict[int, DevItem] = {}
        for chunk in chunks or []:
            self.add(chunk)

    @classmethod
    def from_superblock(cls, endian: Endian, superblock: Superblock) -> "ChunkMap":
        """Seed the map with the system chunks embedded in the superblock."""
        chunk_map = cls(parse_sys_chunk_array(endian, superblock))
        chunk_map.logger.info(f"Loaded {len(chunk_map)} chunk(s) from the system chunk array")
        return chunk_map

    def __len__(self) -> int:
        return len(self._starts)

    def __iter__(self):
        return (self._chunks[start] for start in self._starts)

    def add(self, chunk: ChunkItem):
        """Add a chunk item; a later item with the same logical start replaces the earlier one."""
        if chunk.logical_start not in self._chunks:
            insort(self._starts, chunk.logical_start)
        self._chunks[chunk.logical_start] = chunk

    def find(self, logical: int) -> ChunkItem:
        """
        Chunk with the greatest logical start <= logical.

        Raises:
            StructuralDamageError: no chunk starts at or below the address
        """
        index = bisect_right(self._starts, logical) - 1
        if index < 0:
            raise StructuralDamageError(
                "Unable to map logical address to physical address: no chunk at or below it", logical)
        return self._chunks[self._starts[index]]

    def translate(self, logical: int, pool, length: int = 1) -> PhysicalAddress:
        """
        Translate a logical address.

        Args:
            logical: Logical address
            pool: Assembled Pool supplying device offsets and sizes
            length: Number of bytes that will be read from the address

        Returns:
            PhysicalAddress of the first byte

        Raises:
            StructuralDamageError: unmapped address, a range running past the
                chunk end, zero-stripe chunk, unknown device or a result outside
                the device
            UnsupportedFeatureError: the chunk has more than one stripe
        """
        chunk = self.find(logical)
        if logical + length > chunk.logical_end:
            raise StructuralDamageError(
                f"Range of {length} bytes runs past the end of chunk "
                f"[0x{chunk.logical_start:X}, 0x{chunk.logical_end:X})", logical)
        if not chunk.stripes:
            raise StructuralDamageError(
                f"Chunk at 0x{chunk.logical_start:X} has no stripes", logical)
        if len(chunk.stripes) > 1:
            raise UnsupportedFeatureError(
                f"Chunk at 0x{chunk.logical_start:X} has {len(chunk.stripes)} stripes "
                f"({chunk.profile}); only single-stripe chunks are supported")

        stripe = chunk.stripes[0]
        device_offset = stripe.offset + (logical - chunk.logical_start)
        size = pool.device_size(stripe.devid)
        if size and device_offset + length > size:
            raise StructuralDamageError(
                f"Mapped offset 0x{device_offset:X} (+{length}) lies outside device {stripe.devid} "
                f"of {size} bytes", logical)

        image_offset = pool.device_offset_in_image(stripe.devid) + device_offset
        return PhysicalAddress(stripe.devid, device_offset, image_offset)

    def load_chunk_tree(self, navigator, root: int) -> int:
        """
        Add every chunk item of the chunk tree and remember its device items.

        Args:
            navigator: TreeNavigator reading through this map
            root: Logical address of the chunk tree root

        Returns:
            Number of chunk items added
        """
        chunks = []
        for leaf in navigator.leaves(root):
            for item in leaf.items:
                if item.key.type == BTRFS_CHUNK_ITEM_KEY:
                    chunks.append(item.payload)
                elif item.key.type == BTRFS_DEV_ITEM_KEY:
                    self.dev_items[item.payload.devid] = item.payload
        for chunk in chunks:
            self.add(chunk)
        self.logger.info(f"Chunk tree loaded: {len(chunks)} chunk item(s), "
                         f"{len(self.dev_items)} device item(s), {len(self)} chunk(s) mapped")
        return len(chunks)
