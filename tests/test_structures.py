import dataclasses
import random
import struct
import uuid

import pytest

from btrscope.core.errors import StructuralDamageError
from btrscope.core.identifier import Endian
from btrscope.core.structures import (
    BTRFS_CHUNK_ITEM_KEY, BTRFS_DIR_INDEX_KEY, BTRFS_DIR_ITEM_KEY, BTRFS_INODE_ITEM_KEY,
    BTRFS_INODE_REF_KEY, BTRFS_ROOT_ITEM_KEY, MAX_KEY, MIN_KEY,
    BtrfsKey, ChunkItem, DirIndex, DirItem, InodeItem, InodeRef, RootItem, UnknownItem,
    decode_dev_item, decode_header, decode_key, decode_key_pointer, decode_payload,
    decode_superblock, item_type_name, parse_sys_chunk_array,
)

from image_builder import (
    CHUNK_LOGICAL, CHUNK_PHYSICAL, FSID, IMAGE_SIZE, ROOT_TREE_ROOT,
    pack_chunk, pack_dev_item, pack_dir_item, pack_header, pack_inode_item, pack_key,
    pack_root_item, pack_superblock,
)

LE = Endian.LITTLE


class TestKeys:
    def test_ordering_matches_tuple_ordering(self):
        rng = random.Random(1234)
        raw = [(rng.randrange(8), rng.choice([1, 12, 84, 96, 132]), rng.randrange(4)) for _ in range(200)]
        keys = [BtrfsKey(*t) for t in raw]
        assert [(k.objectid, k.type, k.offset) for k in sorted(keys)] == sorted(raw)

    def test_type_breaks_objectid_tie_before_offset(self):
        assert BtrfsKey(5, 1, 999) < BtrfsKey(5, 84, 0)
        assert BtrfsKey(5, 84, 0) < BtrfsKey(6, 0, 0)
        assert MIN_KEY <= BtrfsKey(0, 0, 0) <= MAX_KEY

    def test_decode_key_both_endians(self):
        assert decode_key(LE, pack_key(256, 228, 0x100000)) == BtrfsKey(256, 228, 0x100000)
        big = struct.pack('>QBQ', 7, 132, 3)
        assert decode_key(Endian.BIG, big) == BtrfsKey(7, 132, 3)

    def test_decode_key_truncated(self):
        with pytest.raises(StructuralDamageError):
            decode_key(LE, bytes(10))

    def test_item_type_name(self):
        assert item_type_name(BTRFS_ROOT_ITEM_KEY) == "ROOT_ITEM"
        assert item_type_name(0xFF) == "UNKNOWN(255)"


class TestNodeRecords:
    def test_decode_header(self):
        header = decode_header(LE, pack_header(FSID, 0x101000, nritems=3, level=1, owner=5, generation=42))
        assert header.bytenr == 0x101000
        assert header.nritems == 3
        assert header.level == 1
        assert header.owner == 5
        assert header.generation == 42
        assert header.fsid.encode() == str(uuid.UUID(bytes_le=FSID)).upper()
        assert not header.is_leaf

    def test_decode_header_truncated(self):
        with pytest.raises(StructuralDamageError):
            decode_header(LE, bytes(0x64))

    def test_decode_key_pointer(self):
        raw = pack_key(5, 132, 0) + struct.pack('<QQ', 0x103000, 9)
        pointer = decode_key_pointer(LE, raw)
        assert pointer.key == BtrfsKey(5, 132, 0)
        assert pointer.blockptr == 0x103000
        assert pointer.generation == 9


class TestPayloads:
    def test_inode_item(self):
        inode = decode_payload(LE, BtrfsKey(257, BTRFS_INODE_ITEM_KEY, 0),
                               pack_inode_item(size=4096, nlink=2, uid=1000, gid=100))
        assert isinstance(inode, InodeItem)
        assert inode.size == 4096
        assert inode.nlink == 2
        assert (inode.uid, inode.gid) == (1000, 100)
        assert inode.mode == 0o100644

    def test_inode_ref(self):
        raw = struct.pack('<QH', 3, 5) + b'notes'
        ref = decode_payload(LE, BtrfsKey(257, BTRFS_INODE_REF_KEY, 256), raw)
        assert ref == InodeRef(index=3, name_len=5, name="notes")

    def test_inode_ref_with_packed_links(self):
        raw = struct.pack('<QH', 3, 5) + b'notes' + struct.pack('<QH', 9, 4) + b'copy'
        ref = decode_payload(LE, BtrfsKey(257, BTRFS_INODE_REF_KEY, 256), raw)
        assert ref.name == "notes"
        assert [(r.index, r.name) for r in ref.refs] == [(3, "notes"), (9, "copy")]

    def test_inode_ref_trailing_partial_record(self):
        raw = struct.pack('<QH', 3, 5) + b'notes' + b'\x01\x02'
        with pytest.raises(StructuralDamageError):
            decode_payload(LE, BtrfsKey(257, BTRFS_INODE_REF_KEY, 256), raw)

    def test_dir_item_and_index(self):
        raw = pack_dir_item("report.pdf", location=(258, 1, 0), file_type=1, transid=7)
        item = decode_payload(LE, BtrfsKey(256, BTRFS_DIR_ITEM_KEY, 0x1234), raw)
        assert type(item) is DirItem
        assert item.name == "report.pdf"
        assert item.location == BtrfsKey(258, 1, 0)
        assert item.transid == 7
        assert item.file_type_name == "file"

        index = decode_payload(LE, BtrfsKey(256, BTRFS_DIR_INDEX_KEY, 2), raw)
        assert isinstance(index, DirIndex)
        assert index.name == "report.pdf"

    def test_dir_item_with_colliding_names(self):
        raw = (pack_dir_item("first", location=(257, 1, 0), file_type=1)
               + pack_dir_item("second", location=(258, 1, 0), file_type=2))
        for item_type, cls in ((BTRFS_DIR_ITEM_KEY, DirItem), (BTRFS_DIR_INDEX_KEY, DirIndex)):
            item = decode_payload(LE, BtrfsKey(256, item_type, 0x1234), raw)
            assert type(item) is cls
            assert item.name == "first"
            assert [entry.name for entry in item.entries] == ["first", "second"]
            assert [type(entry) for entry in item.entries] == [cls, cls]
            assert item.entries[1].location == BtrfsKey(258, 1, 0)
            assert item.entries[1].file_type_name == "dir"

    def test_single_dir_entry_has_no_extras(self):
        item = decode_payload(LE, BtrfsKey(256, BTRFS_DIR_ITEM_KEY, 0), pack_dir_item("solo"))
        assert item.entries == [item]

    def test_dir_item_name_past_payload(self):
        raw = pack_dir_item("abc")[:-1]
        with pytest.raises(StructuralDamageError):
            decode_payload(LE, BtrfsKey(256, BTRFS_DIR_ITEM_KEY, 0), raw)

    def test_root_item_without_uuid_block(self):
        root = decode_payload(LE, BtrfsKey(5, BTRFS_ROOT_ITEM_KEY, 0), pack_root_item(0x220000, level=1))
        assert isinstance(root, RootItem)
        assert root.bytenr == 0x220000
        assert root.level == 1
        assert root.root_dirid == 256
        assert root.refs == 1
        assert root.uuid is None

    def test_root_item_with_uuid_block(self):
        root = decode_payload(LE, BtrfsKey(5, BTRFS_ROOT_ITEM_KEY, 0),
                              pack_root_item(0x220000, generation=3, with_uuids=True))
        assert root.generation_v2 == 3
        assert root.uuid is not None and not root.uuid.is_unused()
        assert root.parent_uuid.is_unused()

    def test_dev_item(self):
        dev_uuid = uuid.UUID(int=7).bytes
        dev = decode_dev_item(LE, pack_dev_item(7, 0x40000000, dev_uuid))
        assert dev.devid == 7
        assert dev.total_bytes == 0x40000000
        assert dev.uuid.encode() == "00000000-0000-0000-0000-000000000007"
        assert dev.fsid.part4 == FSID[8:]

    def test_chunk_item_takes_start_from_key(self):
        raw = pack_chunk(0x10000, [(1, 0x4000), (1, 0x8000)], chunk_type=0x4 | 0x20)
        chunk = decode_payload(LE, BtrfsKey(256, BTRFS_CHUNK_ITEM_KEY, 0x500000), raw)
        assert isinstance(chunk, ChunkItem)
        assert chunk.logical_start == 0x500000
        assert chunk.logical_end == 0x510000
        assert [(s.devid, s.offset) for s in chunk.stripes] == [(1, 0x4000), (1, 0x8000)]
        assert chunk.profile == "DUP"
        assert chunk.usage == "METADATA"

    def test_chunk_item_stripes_truncated(self):
        raw = pack_chunk(0x10000, [(1, 0x4000), (2, 0x8000)])[:-8]
        with pytest.raises(StructuralDamageError):
            decode_payload(LE, BtrfsKey(256, BTRFS_CHUNK_ITEM_KEY, 0), raw)

    def test_unknown_type_keeps_raw_bytes(self):
        item = decode_payload(LE, BtrfsKey(1, 0xFF, 0), b'\xde\xad')
        assert item == UnknownItem(item_type=0xFF, raw=b'\xde\xad')

    def test_truncated_inode(self):
        with pytest.raises(StructuralDamageError):
            decode_payload(LE, BtrfsKey(257, BTRFS_INODE_ITEM_KEY, 0), bytes(0x9F))


class TestSuperblock:
    def test_decode_fields(self):
        sb = decode_superblock(LE, pack_superblock(num_devices=2, log_root=0x105000, generation=17))
        assert sb.has_valid_magic
        assert sb.generation == 17
        assert sb.root == ROOT_TREE_ROOT
        assert sb.chunk_root == CHUNK_LOGICAL
        assert sb.log_root == 0x105000
        assert sb.num_devices == 2
        assert sb.nodesize == 0x1000
        assert sb.total_bytes == IMAGE_SIZE
        assert sb.label == "evidence"
        assert sb.dev_item.devid == 1
        assert sb.fsid == sb.dev_item.fsid

    def test_bad_magic_is_decoded_not_rejected(self):
        sb = decode_superblock(LE, pack_superblock(magic=b'NOTBTRFS'))
        assert not sb.has_valid_magic

    def test_superblock_truncated(self):
        with pytest.raises(StructuralDamageError):
            decode_superblock(LE, bytes(0x800))

    def test_sys_chunk_array(self):
        sb = decode_superblock(LE, pack_superblock(sys_chunks=[
            (0x100000, pack_chunk(0x10000, [(1, CHUNK_PHYSICAL)])),
            (0x400000, pack_chunk(0x20000, [(2, 0x80000)])),
        ]))
        chunks = parse_sys_chunk_array(LE, sb)
        assert [c.logical_start for c in chunks] == [0x100000, 0x400000]
        assert chunks[1].stripes[0].devid == 2
        assert chunks[1].length == 0x20000

    def test_sys_chunk_array_rejects_other_item_types(self):
        sb = decode_superblock(LE, pack_superblock())
        entry = pack_key(256, 216, 0) + pack_chunk(0x10000, [(1, 0)])
        sb = dataclasses.replace(sb, sys_chunk_array=entry, sys_chunk_array_size=len(entry))
        with pytest.raises(StructuralDamageError):
            parse_sys_chunk_array(LE, sb)

    def test_sys_chunk_array_size_too_large(self):
        sb = dataclasses.replace(decode_superblock(LE, pack_superblock()), sys_chunk_array_size=4096)
        with pytest.raises(StructuralDamageError):
            parse_sys_chunk_array(LE, sb)
