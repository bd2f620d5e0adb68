"""
btrscope - Node Abstraction
Builds decoded leaf and internal nodes from a node's raw bytes

Leaf layout:
    [header 0x65][item header 0][item header 1]...   free space   ...[data 1][data 0]
Item data offsets are relative to the end of the header; the offset/size
pair is authoritative regardless of where the data physically sits.

Internal node layout:
    [header 0x65][key pointer 0][key pointer 1]...
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from .errors import StructuralDamageError
from .identifier import Endian
from .structures import (
    HEADER_SIZE, ITEM_HEADER_SIZE, KEY_POINTER_SIZE,
    BtrfsKey, KeyPointer, NodeHeader,
    decode_header, decode_item_header, decode_key_pointer, decode_payload,
)

logger = logging.getLogger(__name__)


@dataclass
class LeafItem:
    """One item of a leaf: its key, where its payload lives, and the decoded payload"""
    key: BtrfsKey
    data_offset: int        # Relative to the end of the node header
    data_size: int
    payload: object

    @property
    def objectid(self) -> int:
        return self.key.objectid

    @property
    def item_type(self) -> int:
        return self.key.type


@dataclass
class LeafNode:
    """Btrfs leaf node (level 0)"""
    header: NodeHeader
    items: List[LeafItem] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return True


@dataclass
class InternalNode:
    """Btrfs internal node (level > 0)"""
    header: NodeHeader
    pointers: List[KeyPointer] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return False

    def child_index(self, key: BtrfsKey) -> int:
        """
        Index of the rightmost pointer whose key is <= key.

        A key smaller than every pointer key maps to the first child.
        """
        index = 0
        for i, pointer in enumerate(self.pointers):
            if pointer.key > key:
                break
            index = i
        return index


BtrfsNode = Union[LeafNode, InternalNode]


def _check_count(header: NodeHeader, record_size: int, region_size: int, address: Optional[int]):
    needed = HEADER_SIZE + header.nritems * record_size
    if needed > region_size:
        raise StructuralDamageError(
            f"Item count {header.nritems} needs {needed} bytes, node holds {region_size}", address)


def build_leaf(endian: Endian, header: NodeHeader, data: bytes, address: Optional[int] = None) -> LeafNode:
    """
    Decode the item headers and payloads of a leaf.

    Args:
        endian: Byte order
        header: Already decoded node header
        data: The whole node region (header included)
        address: Logical address of the node, for error reports

    Raises:
        StructuralDamageError: item count or payload bounds leave the node region
    """
    _check_count(header, ITEM_HEADER_SIZE, len(data), address)
    data_region = len(data) - HEADER_SIZE
    leaf = LeafNode(header=header)
    offset = HEADER_SIZE

    for index in range(header.nritems):
        key, data_offset, data_size = decode_item_header(endian, data, offset)
        offset += ITEM_HEADER_SIZE

        if data_offset + data_size > data_region:
            raise StructuralDamageError(
                f"Item {index} {key} payload [{data_offset}, +{data_size}) exceeds data region of {data_region} bytes",
                address)

        start = HEADER_SIZE + data_offset
        try:
            payload = decode_payload(endian, key, data[start:start + data_size])
        except StructuralDamageError as e:
            raise StructuralDamageError(f"Item {index} {key}: {e}", address) from e

        leaf.items.append(LeafItem(key=key, data_offset=data_offset, data_size=data_size, payload=payload))

    return leaf


def build_internal(endian: Endian, header: NodeHeader, data: bytes, address: Optional[int] = None) -> InternalNode:
    """Decode the key pointers of an internal node."""
    _check_count(header, KEY_POINTER_SIZE, len(data), address)
    node = InternalNode(header=header)
    offset = HEADER_SIZE
    for _ in range(header.nritems):
        node.pointers.append(decode_key_pointer(endian, data, offset))
        offset += KEY_POINTER_SIZE
    return node


def build_node(endian: Endian, header: NodeHeader, data: bytes, address: Optional[int] = None) -> BtrfsNode:
    """Dispatch on the header's level field."""
    if header.level == 0:
        return build_leaf(endian, header, data, address)
    return build_internal(endian, header, data, address)


def decode_node(endian: Endian, data: bytes, address: Optional[int] = None) -> BtrfsNode:
    """
    Decode a complete node from its raw bytes.

    Args:
        endian: Byte order
        data: Node bytes (nodesize long when read from an image)
        address: Logical address the node was read from

    Returns:
        LeafNode or InternalNode
    """
    try:
        header = decode_header(endian, data)
    except StructuralDamageError as e:
        raise StructuralDamageError(str(e), address) from e
    node = build_node(endian, header, data, address)
    logger.debug(f"Decoded {'leaf' if header.level == 0 else 'internal'} node "
                 f"bytenr=0x{header.bytenr:X} owner={header.owner} items={header.nritems}")
    return node
