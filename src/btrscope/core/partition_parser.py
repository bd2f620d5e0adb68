import struct
import logging
from dataclasses import dataclass
from typing import List, Optional

from .errors import ImageReadError, StructuralDamageError
from .identifier import Endian, Identifier
from .structures import BTRFS_MAGIC, BTRFS_SUPER_INFO_OFFSET

SECTOR_SIZE = 512
GPT_MIN_ENTRY_SIZE = 128
GPT_MAX_TABLE_SIZE = 0x100000  # 1 MiB of entries (8192 x 128 bytes)

# MBR type codes worth naming in a report
MBR_TYPES = {
    0x05: "Extended",
    0x07: "NTFS/exFAT",
    0x0B: "FAT32",
    0x0C: "FAT32 (LBA)",
    0x0F: "Extended (LBA)",
    0x82: "Linux swap",
    0x83: "Linux",
    0x8E: "Linux LVM",
    0xEE: "GPT protective",
    0xEF: "EFI System",
}


@dataclass
class Partition:
    offset: int
    size: int
    type: str  # 'mbr' or 'gpt'
    index: int
    type_label: str = ""
    type_guid: Optional[Identifier] = None
    name: str = ""
    is_btrfs: bool = False


class PartitionTableParser:
    """Parses MBR and GPT partition tables so btrfs devices inside a disk image can be located."""

    def __init__(self, reader):
        self.reader = reader
        self.logger = logging.getLogger(__name__)

    def parse(self) -> List[Partition]:
        """Auto-detect and parse partition table, then flag partitions holding btrfs."""
        partitions = []
        try:
            # GPT header lives at LBA 1
            gpt_header = self.reader.read(SECTOR_SIZE, SECTOR_SIZE)
            if gpt_header[:8] == b'EFI PART':
                self.logger.info("Found GPT Partition Table")
                partitions = self.parse_gpt(gpt_header)
            else:
                # Check for MBR (0x55AA at offset 510)
                mbr = self.reader.read(0, SECTOR_SIZE)
                if mbr[510:512] == b'\x55\xaa':
                    self.logger.info("Found MBR Partition Table")
                    partitions = self.parse_mbr(mbr)
        except ImageReadError as e:
            self.logger.error(f"Partition parsing failed: {e}")
            return []

        for partition in partitions:
            partition.is_btrfs = self.has_btrfs_magic(partition.offset)
        return partitions

    def has_btrfs_magic(self, offset: int) -> bool:
        try:
            magic = self.reader.read(offset + BTRFS_SUPER_INFO_OFFSET + 0x40, len(BTRFS_MAGIC))
        except ImageReadError:
            return False
        return magic == BTRFS_MAGIC

    def parse_mbr(self, mbr_data: bytes) -> List[Partition]:
        partitions = []
        # 4 partition entries of 16 bytes each, starting at offset 446
        for i in range(4):
            offset = 446 + (i * 16)
            entry = mbr_data[offset:offset+16]

            part_type = entry[4]
            lba_start, num_sectors = struct.unpack('<II', entry[8:16])

            if part_type != 0 and num_sectors > 0:
                partitions.append(Partition(
                    offset=lba_start * SECTOR_SIZE,
                    size=num_sectors * SECTOR_SIZE,
                    type='mbr',
                    index=i+1,
                    type_label=MBR_TYPES.get(part_type, f"0x{part_type:02X}"),
                ))
        return partitions

    def parse_gpt(self, header_data: bytes) -> List[Partition]:
        partitions = []

        # Partition entries starting LBA: offset 72 (8 bytes)
        # Number of partition entries: offset 80 (4 bytes)
        # Size of partition entry: offset 84 (4 bytes)
        part_entry_lba = struct.unpack('<Q', header_data[72:80])[0]
        num_entries = struct.unpack('<I', header_data[80:84])[0]
        entry_size = struct.unpack('<I', header_data[84:88])[0]

        if entry_size < GPT_MIN_ENTRY_SIZE or entry_size % 8:
            raise StructuralDamageError(f"GPT entry size {entry_size} is invalid", SECTOR_SIZE)
        if num_entries * entry_size > GPT_MAX_TABLE_SIZE:
            raise StructuralDamageError(
                f"GPT declares {num_entries} entries of {entry_size} bytes, "
                f"more than {GPT_MAX_TABLE_SIZE} bytes of table", SECTOR_SIZE)

        data = self.reader.read(part_entry_lba * SECTOR_SIZE, num_entries * entry_size)

        for i in range(num_entries):
            entry = data[i * entry_size:(i + 1) * entry_size]

            # GPT GUIDs are stored with little-endian leading fields
            type_guid = Identifier.from_bytes(Endian.LITTLE, entry, 0)
            if type_guid.is_unused():
                continue

            first_lba, last_lba = struct.unpack('<QQ', entry[32:48])
            # Name (72 bytes, utf-16le)
            name = entry[56:128].decode('utf-16-le', errors='ignore').split('\x00')[0]

            if last_lba >= first_lba:
                size_sectors = (last_lba - first_lba) + 1
                partitions.append(Partition(
                    offset=first_lba * SECTOR_SIZE,
                    size=size_sectors * SECTOR_SIZE,
                    type='gpt',
                    index=i+1,
                    type_label=type_guid.classify(),
                    type_guid=type_guid,
                    name=name,
                ))

        return partitions
