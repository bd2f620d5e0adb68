import struct
import uuid

import pytest

from btrscope.core.errors import StructuralDamageError
from btrscope.core.image import BytesImageReader
from btrscope.core.partition_parser import SECTOR_SIZE, PartitionTableParser

LINUX_DATA = "0FC63DAF-8483-4772-8E79-3D69D8477DE4"
EFI_SYSTEM = "C12A7328-F81F-11D2-BA4B-00A0C93EC93B"


def gpt_image():
    """GPT disk: EFI partition at LBA 34, btrfs partition at LBA 64."""
    image = bytearray(0x8000 + 0x11000)
    image[510:512] = b'\x55\xaa'

    header = bytearray(SECTOR_SIZE)
    header[:8] = b'EFI PART'
    struct.pack_into('<QII', header, 72, 2, 4, 128)
    image[SECTOR_SIZE:2 * SECTOR_SIZE] = header

    def entry(index, type_guid, first, last, name):
        raw = bytearray(128)
        raw[:16] = uuid.UUID(type_guid).bytes_le
        raw[16:32] = uuid.uuid4().bytes_le
        struct.pack_into('<QQ', raw, 32, first, last)
        encoded = name.encode('utf-16-le')
        raw[56:56 + len(encoded)] = encoded
        start = 2 * SECTOR_SIZE + index * 128
        image[start:start + 128] = raw

    entry(0, EFI_SYSTEM, 34, 63, "EFI")
    entry(1, LINUX_DATA, 64, 64 + 0x88 - 1, "rootfs")
    image[0x8000 + 0x10040:0x8000 + 0x10048] = b'_BHRfS_M'
    return bytes(image)


def mbr_image():
    image = bytearray(0x800 + 0x11000)
    image[510:512] = b'\x55\xaa'
    entry = bytearray(16)
    entry[4] = 0x83
    struct.pack_into('<II', entry, 8, 4, 0x88)
    image[446:462] = entry
    image[0x800 + 0x10040:0x800 + 0x10048] = b'_BHRfS_M'
    return bytes(image)


def test_gpt_partitions():
    partitions = PartitionTableParser(BytesImageReader(gpt_image())).parse()
    assert [p.index for p in partitions] == [1, 2]

    efi, linux = partitions
    assert efi.type == 'gpt'
    assert efi.type_label == "EFI System partition"
    assert efi.name == "EFI"
    assert efi.offset == 34 * SECTOR_SIZE
    assert efi.size == 30 * SECTOR_SIZE
    assert not efi.is_btrfs

    assert linux.type_label == "Linux filesystem data"
    assert linux.type_guid.encode() == LINUX_DATA
    assert linux.name == "rootfs"
    assert linux.offset == 0x8000
    assert linux.is_btrfs


def test_mbr_partitions():
    partitions = PartitionTableParser(BytesImageReader(mbr_image())).parse()
    assert len(partitions) == 1
    part = partitions[0]
    assert part.type == 'mbr'
    assert part.type_label == "Linux"
    assert part.offset == 4 * SECTOR_SIZE
    assert part.size == 0x88 * SECTOR_SIZE
    assert part.is_btrfs


def test_no_partition_table():
    assert PartitionTableParser(BytesImageReader(bytes(0x2000))).parse() == []


def test_truncated_image():
    assert PartitionTableParser(BytesImageReader(bytes(100))).parse() == []


def gpt_with_geometry(num_entries, entry_size):
    image = bytearray(gpt_image())
    struct.pack_into('<II', image, SECTOR_SIZE + 80, num_entries, entry_size)
    return bytes(image)


@pytest.mark.parametrize("entry_size", [0, 64, 127, 130])
def test_gpt_rejects_bad_entry_size(entry_size):
    parser = PartitionTableParser(BytesImageReader(gpt_with_geometry(4, entry_size)))
    with pytest.raises(StructuralDamageError, match="entry size"):
        parser.parse()


def test_gpt_rejects_oversized_table():
    parser = PartitionTableParser(BytesImageReader(gpt_with_geometry(0xFFFFFFFF, 128)))
    with pytest.raises(StructuralDamageError, match="entries of 128 bytes"):
        parser.parse()
