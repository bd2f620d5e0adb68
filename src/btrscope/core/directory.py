"""
Btrfs Directory Assembly
Builds the record of one directory from a filesystem tree

A directory is its INODE_ITEM, the INODE_REF naming it inside its parent,
and the DIR_ITEM entries listing its children. All of them share the
directory's inode number as key objectid.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .structures import (
    BTRFS_DIR_ITEM_KEY, BTRFS_FT_DIR, BTRFS_FT_REG_FILE, BTRFS_INODE_ITEM_KEY, BTRFS_INODE_REF_KEY,
    DirItem, InodeItem, InodeRef,
)

logger = logging.getLogger(__name__)


@dataclass
class DirContent:
    """Record of one directory"""
    inode_number: int
    inode: InodeItem
    ref: Optional[InodeRef]     # None when the tree holds no ref for the inode
    name: str
    children: List[DirItem] = field(default_factory=list)

    def regular_files(self) -> List[DirItem]:
        return [child for child in self.children if child.file_type == BTRFS_FT_REG_FILE]

    def subdirectories(self) -> List[DirItem]:
        return [child for child in self.children if child.file_type == BTRFS_FT_DIR]


def read_dir_content(navigator, root: int, inode: int) -> Optional[DirContent]:
    """
    Assemble a directory from the tree rooted at `root`.

    Args:
        navigator: TreeNavigator over the pool
        root: Logical address of the filesystem tree's root node
        inode: Inode number of the directory

    Returns:
        DirContent with children in key order, or None when the tree has no
        INODE_ITEM for the inode
    """
    inode_item = navigator.find_item(root, inode, BTRFS_INODE_ITEM_KEY)
    if inode_item is None:
        logger.info(f"No inode item for {inode} in tree at 0x{root:X}")
        return None

    ref_item = navigator.find_item(root, inode, BTRFS_INODE_REF_KEY)
    ref = ref_item.payload if ref_item is not None else None

    children: List[DirItem] = []
    for item in navigator.collect_items(root, inode, BTRFS_DIR_ITEM_KEY):
        children.extend(item.payload.entries)

    logger.debug(f"Directory {inode}: {len(children)} entries")
    return DirContent(
        inode_number=inode,
        inode=inode_item.payload,
        ref=ref,
        name=ref.name if ref is not None else "",
        children=children,
    )
