from .chunks import ChunkMap, PhysicalAddress
from .directory import DirContent, read_dir_content
from .errors import (
    BtrfsError, ImageReadError, PoolDeviceError, PoolError, PoolIncompleteError,
    PoolMismatchError, StructuralDamageError, UnsupportedFeatureError,
)
from .identifier import Endian, Identifier
from .image import BytesImageReader, FileImageReader, SplitImageReader, open_image
from .node import InternalNode, LeafItem, LeafNode, decode_node
from .pool import DeviceRecord, DeviceSource, Pool, assemble_pool
from .search import collect_all, find_first
from .structures import BtrfsKey, Superblock, decode_superblock
from .tree import TreeNavigator, TreePath
