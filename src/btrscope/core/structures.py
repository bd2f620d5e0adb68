"""
btrscope - Btrfs Structure Decoders
Pure decoders for the fixed-layout on-disk structures of btrfs

Structures decoded:
- Superblock (including the bootstrap system chunk array)
- Node header, disk key, leaf item header, internal key pointer
- Item payloads: inode, inode ref, dir item, dir index, root item,
  device item, chunk item, and an explicit unknown-type fallback

None of these functions touch the image: they take an endianness flag,
a buffer and an offset, and return dataclasses.
"""

import struct
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .errors import StructuralDamageError
from .identifier import Endian, Identifier


# Btrfs Constants
BTRFS_MAGIC = b'_BHRfS_M'
BTRFS_SUPER_INFO_OFFSET = 0x10000  # 64KB - Primary superblock
BTRFS_SUPER_INFO_SIZE = 0x1000
BTRFS_SYSTEM_CHUNK_ARRAY_SIZE = 2048
BTRFS_LABEL_SIZE = 256
BTRFS_MAX_LEVEL = 8

# Fixed record sizes
HEADER_SIZE = 0x65
KEY_SIZE = 0x11
ITEM_HEADER_SIZE = 0x19       # key + data offset (4) + data size (4)
KEY_POINTER_SIZE = 0x21       # key + block pointer (8) + generation (8)
DEV_ITEM_SIZE = 0x62
CHUNK_ITEM_BASE_SIZE = 0x30
STRIPE_SIZE = 0x20
INODE_ITEM_SIZE = 0xA0
DIR_ITEM_BASE_SIZE = 0x1E
INODE_REF_BASE_SIZE = 0x0A
ROOT_ITEM_BASE_SIZE = 0xEF
ROOT_ITEM_UUID_END = 0x127

# Item types
BTRFS_INODE_ITEM_KEY = 1
BTRFS_INODE_REF_KEY = 12
BTRFS_DIR_ITEM_KEY = 84        # Directory item (filename -> inode)
BTRFS_DIR_INDEX_KEY = 96       # Directory index
BTRFS_ROOT_ITEM_KEY = 132
BTRFS_DEV_ITEM_KEY = 216
BTRFS_CHUNK_ITEM_KEY = 228

# Special object IDs
BTRFS_ROOT_TREE_OBJECTID = 1   # Root tree
BTRFS_EXTENT_TREE_OBJECTID = 2 # Extent tree
BTRFS_CHUNK_TREE_OBJECTID = 3  # Chunk tree
BTRFS_DEV_TREE_OBJECTID = 4
BTRFS_FS_TREE_OBJECTID = 5     # Filesystem tree (where files live)
BTRFS_ROOT_TREE_DIR_OBJECTID = 6
BTRFS_CSUM_TREE_OBJECTID = 7   # Checksum tree
BTRFS_DEV_ITEMS_OBJECTID = 1
BTRFS_FIRST_CHUNK_TREE_OBJECTID = 256
BTRFS_FIRST_FREE_OBJECTID = 256  # First free inode number

# Chunk / block group type flags
BTRFS_BLOCK_GROUP_DATA = 1 << 0
BTRFS_BLOCK_GROUP_SYSTEM = 1 << 1
BTRFS_BLOCK_GROUP_METADATA = 1 << 2
BTRFS_BLOCK_GROUP_PROFILES = {
    1 << 3: "RAID0",
    1 << 4: "RAID1",
    1 << 5: "DUP",
    1 << 6: "RAID10",
    1 << 7: "RAID5",
    1 << 8: "RAID6",
    1 << 9: "RAID1C3",
    1 << 10: "RAID1C4",
}

ITEM_TYPE_NAMES = {
    BTRFS_INODE_ITEM_KEY: "INODE_ITEM",
    BTRFS_INODE_REF_KEY: "INODE_REF",
    BTRFS_DIR_ITEM_KEY: "DIR_ITEM",
    BTRFS_DIR_INDEX_KEY: "DIR_INDEX",
    BTRFS_ROOT_ITEM_KEY: "ROOT_ITEM",
    BTRFS_DEV_ITEM_KEY: "DEV_ITEM",
    BTRFS_CHUNK_ITEM_KEY: "CHUNK_ITEM",
}

# Directory entry file types
DIR_ENTRY_TYPES = {
    0: "unknown",
    1: "file",
    2: "dir",
    3: "char",
    4: "block",
    5: "fifo",
    6: "socket",
    7: "link",
    8: "xattr",
}
BTRFS_FT_REG_FILE = 1
BTRFS_FT_DIR = 2


def item_type_name(item_type: int) -> str:
    return ITEM_TYPE_NAMES.get(item_type, f"UNKNOWN({item_type})")


def _require(data: bytes, offset: int, size: int, what: str):
    """Raise StructuralDamageError if data[offset:offset+size] is not fully present."""
    if offset < 0 or offset + size > len(data):
        raise StructuralDamageError(
            f"{what} truncated: need {size} bytes at offset {offset}, buffer holds {len(data)}")


@dataclass(frozen=True, order=True)
class BtrfsKey:
    """Btrfs disk key structure, ordered by (objectid, type, offset)"""
    objectid: int
    type: int
    offset: int

    def __str__(self) -> str:
        return f"({self.objectid} {item_type_name(self.type)} {self.offset})"


MIN_KEY = BtrfsKey(0, 0, 0)
MAX_KEY = BtrfsKey(0xFFFFFFFFFFFFFFFF, 0xFF, 0xFFFFFFFFFFFFFFFF)


def decode_key(endian: Endian, data: bytes, offset: int = 0) -> BtrfsKey:
    """
    Parse a Btrfs disk key.

    Args:
        endian: Byte order
        data: Raw data containing key
        offset: Offset in data

    Returns:
        Parsed key structure
    """
    _require(data, offset, KEY_SIZE, "Key")
    objectid, key_type, key_offset = struct.unpack_from(f"{endian.value}QBQ", data, offset)
    return BtrfsKey(objectid=objectid, type=key_type, offset=key_offset)


@dataclass
class NodeHeader:
    """Btrfs node header"""
    csum: bytes
    fsid: Identifier
    bytenr: int             # Logical address of this node
    flags: int
    chunk_tree_uuid: Identifier
    generation: int
    owner: int              # Tree that owns this node
    nritems: int
    level: int              # 0 = leaf

    @property
    def is_leaf(self) -> bool:
        return self.level == 0


def decode_header(endian: Endian, data: bytes, offset: int = 0) -> NodeHeader:
    """
    Parse Btrfs node/leaf header.
    CSUM(32) + FSID(16) + BYTENR(8) + FLAGS(8) + CHUNK_UUID(16) + GEN(8) + OWNER(8) + NRITEMS(4) + LEVEL(1)
    """
    _require(data, offset, HEADER_SIZE, "Node header")
    e = endian.value
    bytenr, flags = struct.unpack_from(f"{e}QQ", data, offset + 0x30)
    generation, owner, nritems, level = struct.unpack_from(f"{e}QQIB", data, offset + 0x50)
    return NodeHeader(
        csum=bytes(data[offset:offset + 0x20]),
        fsid=Identifier.from_bytes(endian, data, offset + 0x20),
        bytenr=bytenr,
        flags=flags,
        chunk_tree_uuid=Identifier.from_bytes(endian, data, offset + 0x40),
        generation=generation,
        owner=owner,
        nritems=nritems,
        level=level,
    )


def decode_item_header(endian: Endian, data: bytes, offset: int = 0) -> Tuple[BtrfsKey, int, int]:
    """
    Parse a leaf item header.

    Returns:
        (key, data_offset, data_size); data_offset is relative to the end of the node header
    """
    _require(data, offset, ITEM_HEADER_SIZE, "Item header")
    key = decode_key(endian, data, offset)
    data_offset, data_size = struct.unpack_from(f"{endian.value}II", data, offset + KEY_SIZE)
    return key, data_offset, data_size


@dataclass
class KeyPointer:
    """Internal node record pointing at a child node"""
    key: BtrfsKey
    blockptr: int           # Logical address of the child
    generation: int


def decode_key_pointer(endian: Endian, data: bytes, offset: int = 0) -> KeyPointer:
    _require(data, offset, KEY_POINTER_SIZE, "Key pointer")
    key = decode_key(endian, data, offset)
    blockptr, generation = struct.unpack_from(f"{endian.value}QQ", data, offset + KEY_SIZE)
    return KeyPointer(key=key, blockptr=blockptr, generation=generation)


# ---------------------------------------------------------------------------
# Item payloads
# ---------------------------------------------------------------------------

@dataclass
class InodeItem:
    """Btrfs inode item structure"""
    generation: int
    transid: int
    size: int
    nbytes: int
    block_group: int
    nlink: int
    uid: int
    gid: int
    mode: int
    rdev: int
    flags: int
    sequence: int
    atime: int
    ctime: int
    mtime: int
    otime: int


@dataclass
class InodeRef:
    """Btrfs inode ref - name of an inode inside its parent directory"""
    index: int
    name_len: int
    name: str
    extra_refs: List["InodeRef"] = field(default_factory=list, repr=False)

    @property
    def refs(self) -> List["InodeRef"]:
        """Every packed ref of the item, this one first"""
        return [self] + self.extra_refs


@dataclass
class DirItem:
    """Btrfs directory item - maps filename to inode"""
    location: BtrfsKey      # Key of the inode (or root) this entry points to
    transid: int            # Transaction ID when created
    data_len: int           # Length of extra data
    name_len: int           # Length of filename
    file_type: int          # File type (regular, directory, etc.)
    name: str               # The actual filename
    data: bytes = b''
    # Further entries packed into the same item (colliding name hashes)
    extra_entries: List["DirItem"] = field(default_factory=list, repr=False)

    @property
    def entries(self) -> List["DirItem"]:
        return [self] + self.extra_entries

    @property
    def file_type_name(self) -> str:
        return DIR_ENTRY_TYPES.get(self.file_type, 'unknown')


@dataclass
class DirIndex(DirItem):
    """Btrfs directory index - same layout as DirItem, keyed by sequence index"""


@dataclass
class RootItem:
    """Btrfs root item - describes one tree (subvolume, extent tree, ...)"""
    inode: InodeItem
    generation: int
    root_dirid: int
    bytenr: int             # Logical address of the tree's root node
    byte_limit: int
    bytes_used: int
    last_snapshot: int
    flags: int
    refs: int
    drop_progress: BtrfsKey
    drop_level: int
    level: int
    generation_v2: Optional[int] = None
    uuid: Optional[Identifier] = None
    parent_uuid: Optional[Identifier] = None
    received_uuid: Optional[Identifier] = None


@dataclass
class DevItem:
    """Btrfs device item - one member device of the pool"""
    devid: int
    total_bytes: int
    bytes_used: int
    io_align: int
    io_width: int
    sector_size: int
    type: int
    generation: int
    start_offset: int
    dev_group: int
    seek_speed: int
    bandwidth: int
    uuid: Identifier
    fsid: Identifier


@dataclass
class Stripe:
    """One physical placement of a chunk"""
    devid: int
    offset: int             # Byte offset on the device
    dev_uuid: Identifier


@dataclass
class ChunkItem:
    """Btrfs chunk item structure"""
    logical_start: int      # From the key.offset
    length: int
    owner: int
    stripe_len: int
    type: int
    io_align: int
    io_width: int
    sector_size: int
    num_stripes: int
    sub_stripes: int
    stripes: List[Stripe] = field(default_factory=list)

    @property
    def logical_end(self) -> int:
        return self.logical_start + self.length

    @property
    def profile(self) -> str:
        for flag, name in BTRFS_BLOCK_GROUP_PROFILES.items():
            if self.type & flag:
                return name
        return "SINGLE"

    @property
    def usage(self) -> str:
        parts = []
        if self.type & BTRFS_BLOCK_GROUP_DATA:
            parts.append("DATA")
        if self.type & BTRFS_BLOCK_GROUP_SYSTEM:
            parts.append("SYSTEM")
        if self.type & BTRFS_BLOCK_GROUP_METADATA:
            parts.append("METADATA")
        return "|".join(parts) or "NONE"


@dataclass
class UnknownItem:
    """Payload of an item type with no decoder; raw bytes are preserved"""
    item_type: int
    raw: bytes


def decode_inode_item(endian: Endian, data: bytes, key: BtrfsKey = None, offset: int = 0) -> InodeItem:
    """
    Parse a Btrfs inode item.

    Args:
        endian: Byte order
        data: Raw data containing inode
        key: Key of the item (unused, kept for the dispatch signature)
        offset: Offset in data

    Returns:
        Parsed inode structure
    """
    _require(data, offset, INODE_ITEM_SIZE, "Inode item")
    e = endian.value
    (generation, transid, size, nbytes, block_group,
     nlink, uid, gid, mode,
     rdev, flags, sequence) = struct.unpack_from(f"{e}5Q4I3Q", data, offset)
    # 32 reserved bytes, then four (sec u64, nsec u32) timestamps
    times = []
    ts_offset = offset + 0x70
    for _ in range(4):
        times.append(struct.unpack_from(f"{e}Q", data, ts_offset)[0])
        ts_offset += 12
    atime, ctime, mtime, otime = times
    return InodeItem(
        generation=generation,
        transid=transid,
        size=size,
        nbytes=nbytes,
        block_group=block_group,
        nlink=nlink,
        uid=uid,
        gid=gid,
        mode=mode,
        rdev=rdev,
        flags=flags,
        sequence=sequence,
        atime=atime,
        ctime=ctime,
        mtime=mtime,
        otime=otime,
    )


def decode_inode_ref(endian: Endian, data: bytes, key: BtrfsKey = None, offset: int = 0) -> InodeRef:
    """
    Parse an inode ref. A file hard-linked several times in one directory
    packs one (index, name) record per link; all of them are decoded.
    """
    refs = []
    pos = offset
    while True:
        _require(data, pos, INODE_REF_BASE_SIZE, "Inode ref")
        index, name_len = struct.unpack_from(f"{endian.value}QH", data, pos)
        start = pos + INODE_REF_BASE_SIZE
        _require(data, start, name_len, "Inode ref name")
        name = bytes(data[start:start + name_len]).decode('utf-8', errors='replace')
        refs.append(InodeRef(index=index, name_len=name_len, name=name))
        pos = start + name_len
        if pos >= len(data):
            break
    first = refs[0]
    first.extra_refs = refs[1:]
    return first


def _decode_dir_entry(cls, endian: Endian, data: bytes, offset: int):
    # DIR_ITEM structure:
    # location (17 bytes): objectid(8) + type(1) + offset(8)
    # transid (8), data_len (2), name_len (2), type (1), name, data
    _require(data, offset, DIR_ITEM_BASE_SIZE, "Directory entry")
    location = decode_key(endian, data, offset)
    transid, data_len, name_len, file_type = struct.unpack_from(
        f"{endian.value}QHHB", data, offset + KEY_SIZE)
    start = offset + DIR_ITEM_BASE_SIZE
    _require(data, start, name_len + data_len, "Directory entry name")
    name = bytes(data[start:start + name_len]).decode('utf-8', errors='replace')
    extra = bytes(data[start + name_len:start + name_len + data_len])
    entry = cls(
        location=location,
        transid=transid,
        data_len=data_len,
        name_len=name_len,
        file_type=file_type,
        name=name,
        data=extra,
    )
    return entry, start + name_len + data_len


def _decode_dir_entries(cls, endian: Endian, data: bytes, offset: int):
    """Names whose hashes collide share one item; every packed entry is decoded."""
    entries = []
    pos = offset
    while True:
        entry, pos = _decode_dir_entry(cls, endian, data, pos)
        entries.append(entry)
        if pos >= len(data):
            break
    first = entries[0]
    first.extra_entries = entries[1:]
    return first


def decode_dir_item(endian: Endian, data: bytes, key: BtrfsKey = None, offset: int = 0) -> DirItem:
    return _decode_dir_entries(DirItem, endian, data, offset)


def decode_dir_index(endian: Endian, data: bytes, key: BtrfsKey = None, offset: int = 0) -> DirIndex:
    return _decode_dir_entries(DirIndex, endian, data, offset)


def decode_root_item(endian: Endian, data: bytes, key: BtrfsKey = None, offset: int = 0) -> RootItem:
    """
    Parse a root item. The uuid block was appended to the structure later,
    so it is only decoded when the item is long enough to hold it.
    """
    _require(data, offset, ROOT_ITEM_BASE_SIZE, "Root item")
    e = endian.value
    inode = decode_inode_item(endian, data, offset=offset)
    (generation, root_dirid, bytenr, byte_limit,
     bytes_used, last_snapshot, flags, refs) = struct.unpack_from(f"{e}7QI", data, offset + 0xA0)
    drop_progress = decode_key(endian, data, offset + 0xDC)
    drop_level, level = struct.unpack_from("BB", data, offset + 0xED)

    root = RootItem(
        inode=inode,
        generation=generation,
        root_dirid=root_dirid,
        bytenr=bytenr,
        byte_limit=byte_limit,
        bytes_used=bytes_used,
        last_snapshot=last_snapshot,
        flags=flags,
        refs=refs,
        drop_progress=drop_progress,
        drop_level=drop_level,
        level=level,
    )
    if len(data) - offset >= ROOT_ITEM_UUID_END:
        root.generation_v2 = struct.unpack_from(f"{e}Q", data, offset + 0xEF)[0]
        root.uuid = Identifier.from_bytes(endian, data, offset + 0xF7)
        root.parent_uuid = Identifier.from_bytes(endian, data, offset + 0x107)
        root.received_uuid = Identifier.from_bytes(endian, data, offset + 0x117)
    return root


def decode_dev_item(endian: Endian, data: bytes, key: BtrfsKey = None, offset: int = 0) -> DevItem:
    _require(data, offset, DEV_ITEM_SIZE, "Device item")
    e = endian.value
    (devid, total_bytes, bytes_used, io_align, io_width, sector_size,
     dev_type, generation, start_offset, dev_group,
     seek_speed, bandwidth) = struct.unpack_from(f"{e}3Q3I3QIBB", data, offset)
    return DevItem(
        devid=devid,
        total_bytes=total_bytes,
        bytes_used=bytes_used,
        io_align=io_align,
        io_width=io_width,
        sector_size=sector_size,
        type=dev_type,
        generation=generation,
        start_offset=start_offset,
        dev_group=dev_group,
        seek_speed=seek_speed,
        bandwidth=bandwidth,
        uuid=Identifier.from_bytes(endian, data, offset + 0x42),
        fsid=Identifier.from_bytes(endian, data, offset + 0x52),
    )


def decode_chunk_item(endian: Endian, data: bytes, key: BtrfsKey = None, offset: int = 0) -> ChunkItem:
    """
    Parse Btrfs chunk item.

    Args:
        endian: Byte order
        data: Raw data
        key: Item key; its offset field is the chunk's logical start
        offset: Offset in data
    """
    _require(data, offset, CHUNK_ITEM_BASE_SIZE, "Chunk item")
    e = endian.value
    (length, owner, stripe_len, type_,
     io_align, io_width, sector_size,
     num_stripes, sub_stripes) = struct.unpack_from(f"{e}4Q3I2H", data, offset)

    stripe_offset = offset + CHUNK_ITEM_BASE_SIZE
    _require(data, stripe_offset, num_stripes * STRIPE_SIZE, "Chunk stripe array")
    stripes = []
    for _ in range(num_stripes):
        devid, physical = struct.unpack_from(f"{e}QQ", data, stripe_offset)
        dev_uuid = Identifier.from_bytes(endian, data, stripe_offset + 16)
        stripes.append(Stripe(devid=devid, offset=physical, dev_uuid=dev_uuid))
        stripe_offset += STRIPE_SIZE

    return ChunkItem(
        logical_start=key.offset if key is not None else 0,
        length=length,
        owner=owner,
        stripe_len=stripe_len,
        type=type_,
        io_align=io_align,
        io_width=io_width,
        sector_size=sector_size,
        num_stripes=num_stripes,
        sub_stripes=sub_stripes,
        stripes=stripes,
    )


def chunk_item_size(num_stripes: int) -> int:
    return CHUNK_ITEM_BASE_SIZE + num_stripes * STRIPE_SIZE


PayloadDecoder = Callable[..., object]

# Selected purely by the item header's type field
ITEM_DECODERS: Dict[int, PayloadDecoder] = {
    BTRFS_INODE_ITEM_KEY: decode_inode_item,
    BTRFS_INODE_REF_KEY: decode_inode_ref,
    BTRFS_DIR_ITEM_KEY: decode_dir_item,
    BTRFS_DIR_INDEX_KEY: decode_dir_index,
    BTRFS_ROOT_ITEM_KEY: decode_root_item,
    BTRFS_DEV_ITEM_KEY: decode_dev_item,
    BTRFS_CHUNK_ITEM_KEY: decode_chunk_item,
}


def decode_payload(endian: Endian, key: BtrfsKey, data: bytes):
    """
    Decode an item payload according to its key type.

    Unmapped types never fail: they come back as UnknownItem.
    """
    decoder = ITEM_DECODERS.get(key.type)
    if decoder is None:
        return UnknownItem(item_type=key.type, raw=bytes(data))
    return decoder(endian, data, key)


# ---------------------------------------------------------------------------
# Superblock
# ---------------------------------------------------------------------------

@dataclass
class Superblock:
    """Btrfs Superblock structure"""
    csum: bytes
    fsid: Identifier
    bytenr: int
    flags: int
    magic: bytes
    generation: int
    root: int               # Root tree root (logical)
    chunk_root: int         # Chunk tree root (logical)
    log_root: int           # Log tree root (logical)
    total_bytes: int
    bytes_used: int
    root_dir_objectid: int
    num_devices: int
    sectorsize: int
    nodesize: int
    stripesize: int
    sys_chunk_array_size: int
    chunk_root_generation: int
    compat_flags: int
    compat_ro_flags: int
    incompat_flags: int
    csum_type: int
    root_level: int
    chunk_root_level: int
    log_root_level: int
    dev_item: DevItem
    label: str
    sys_chunk_array: bytes

    @property
    def has_valid_magic(self) -> bool:
        return self.magic == BTRFS_MAGIC


def decode_superblock(endian: Endian, data: bytes, offset: int = 0) -> Superblock:
    """
    Parse the Btrfs superblock.

    Args:
        endian: Byte order
        data: Buffer holding at least the superblock
        offset: Offset of the superblock in data

    Returns:
        Parsed superblock structure (magic is not validated here)
    """
    _require(data, offset, BTRFS_SUPER_INFO_SIZE, "Superblock")
    e = endian.value
    bytenr, flags = struct.unpack_from(f"{e}QQ", data, offset + 0x30)
    (generation, root, chunk_root, log_root, _log_root_transid,
     total_bytes, bytes_used, root_dir_objectid, num_devices) = struct.unpack_from(
        f"{e}9Q", data, offset + 0x48)
    (sectorsize, nodesize, _leafsize, stripesize,
     sys_chunk_array_size) = struct.unpack_from(f"{e}5I", data, offset + 0x90)
    (chunk_root_generation, compat_flags, compat_ro_flags,
     incompat_flags) = struct.unpack_from(f"{e}4Q", data, offset + 0xA4)
    csum_type, root_level, chunk_root_level, log_root_level = struct.unpack_from(
        f"{e}HBBB", data, offset + 0xC4)

    label_data = data[offset + 0x12B:offset + 0x12B + BTRFS_LABEL_SIZE]
    label = bytes(label_data).split(b'\x00')[0].decode('utf-8', errors='ignore')
    array_start = offset + 0x32B

    return Superblock(
        csum=bytes(data[offset:offset + 0x20]),
        fsid=Identifier.from_bytes(endian, data, offset + 0x20),
        bytenr=bytenr,
        flags=flags,
        magic=bytes(data[offset + 0x40:offset + 0x48]),
        generation=generation,
        root=root,
        chunk_root=chunk_root,
        log_root=log_root,
        total_bytes=total_bytes,
        bytes_used=bytes_used,
        root_dir_objectid=root_dir_objectid,
        num_devices=num_devices,
        sectorsize=sectorsize,
        nodesize=nodesize,
        stripesize=stripesize,
        sys_chunk_array_size=sys_chunk_array_size,
        chunk_root_generation=chunk_root_generation,
        compat_flags=compat_flags,
        compat_ro_flags=compat_ro_flags,
        incompat_flags=incompat_flags,
        csum_type=csum_type,
        root_level=root_level,
        chunk_root_level=chunk_root_level,
        log_root_level=log_root_level,
        dev_item=decode_dev_item(endian, data, offset=offset + 0xC9),
        label=label,
        sys_chunk_array=bytes(data[array_start:array_start + BTRFS_SYSTEM_CHUNK_ARRAY_SIZE]),
    )


def parse_sys_chunk_array(endian: Endian, superblock: Superblock) -> List[ChunkItem]:
    """
    Decode the (key, chunk) pairs embedded in the superblock.

    These map the SYSTEM chunks holding the chunk tree itself, so they are
    needed before any tree node can be located.
    """
    size = superblock.sys_chunk_array_size
    if size > BTRFS_SYSTEM_CHUNK_ARRAY_SIZE:
        raise StructuralDamageError(f"System chunk array size {size} exceeds {BTRFS_SYSTEM_CHUNK_ARRAY_SIZE}")

    array = superblock.sys_chunk_array[:size]
    chunks = []
    pos = 0
    while pos < size:
        key = decode_key(endian, array, pos)
        if key.type != BTRFS_CHUNK_ITEM_KEY:
            raise StructuralDamageError(f"Invalid item type in system chunk array: {key}")
        pos += KEY_SIZE
        chunk = decode_chunk_item(endian, array, key, pos)
        chunks.append(chunk)
        pos += chunk_item_size(chunk.num_stripes)
    return chunks
