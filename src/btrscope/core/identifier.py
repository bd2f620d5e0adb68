"""
btrscope - Identifier Codec
Decodes 128-bit filesystem, device and partition-type identifiers

The first three fields honour the caller's endianness flag, the last
eight bytes are kept in on-disk order (the usual GUID mixed layout).
"""

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class Endian(Enum):
    """Byte order of multi-byte integers in the image"""
    LITTLE = "<"
    BIG = ">"

    @classmethod
    def from_name(cls, name: str) -> "Endian":
        """Resolve 'little' / 'big' (as used in config files)."""
        try:
            return cls[str(name).upper()]
        except KeyError:
            raise ValueError(f"Invalid endianness: {name}. Must be 'little' or 'big'")


class Variant(Enum):
    """RFC 4122 variant encoded in the high bits of clock_seq_hi"""
    NCS = "Network Computing System"
    STANDARD = "RFC 4122 Standard"
    MICROSOFT = "Microsoft COM"
    RESERVED = "Reserved"


UNKNOWN_TYPE = "[Unknown type]"

# (part1, part2, part3, part4 as big-endian u64) -> label
PARTITION_TYPES: Dict[Tuple[int, int, int, int], str] = {
    (0, 0, 0, 0): "Unused entry",
    (0x024DEE41, 0x33E7, 0x11D3, 0x9D690008C781F39F): "MBR partition scheme",
    (0xC12A7328, 0xF81F, 0x11D2, 0xBA4B00A0C93EC93B): "EFI System partition",
    (0x21686148, 0x6449, 0x6E6F, 0x744E656564454649): "BIOS Boot partition",
    (0xD3BFE2DE, 0x3DAF, 0x11DF, 0xBA40E3A556D89593): "Intel Fast Flash partition",
    (0xF4019732, 0x066E, 0x4E12, 0x8273346C5641494F): "Sony boot partition",
    (0xBFBFAFE7, 0xA34F, 0x448A, 0x9A5B6213EB736C22): "Lenovo boot partition",
    (0xE3C9E316, 0x0B5C, 0x4DB8, 0x817DF92DF00215AE): "Microsoft Reserved Partition",
    (0xDE94BBA4, 0x06D1, 0x4D40, 0xA16ABFD50179D6AC): "Windows Recovery Environment",
    (0xEBD0A0A2, 0xB9E5, 0x4433, 0x87C068B6B72699C7): "Basic data partition",
    (0x0FC63DAF, 0x8483, 0x4772, 0x8E793D69D8477DE4): "Linux filesystem data",
    (0x0657FD6D, 0xA4AB, 0x43C4, 0x84E50933C84B4F4F): "Linux swap partition",
    (0x933AC7E1, 0x2EB4, 0x4F13, 0xB8440E14E2AEF915): "Linux /home partition",
}

VERSION_NAMES = {
    1: "Ver 1: MAC address & date-time",
    2: "Ver 2: DCE security",
    3: "Ver 3: MD5 hash & namespace",
    4: "Ver 4: Random number",
    5: "Ver 5: SHA-1 hash & namespace",
}

IDENTIFIER_SIZE = 16


@dataclass(frozen=True)
class Identifier:
    """128-bit identifier split into its four on-disk fields"""
    part1: int      # 32 bits
    part2: int      # 16 bits
    part3: int      # 16 bits
    part4: bytes    # 8 raw bytes

    @classmethod
    def from_bytes(cls, endian: Endian, data: bytes, offset: int = 0) -> "Identifier":
        """
        Decode an identifier.

        Args:
            endian: Byte order of the first three fields
            data: Buffer holding the identifier
            offset: Offset of the identifier in data

        Returns:
            Decoded identifier
        """
        part1, part2, part3 = struct.unpack_from(f"{endian.value}IHH", data, offset)
        part4 = bytes(data[offset + 8:offset + IDENTIFIER_SIZE])
        return cls(part1, part2, part3, part4)

    @classmethod
    def unused(cls) -> "Identifier":
        return cls(0, 0, 0, bytes(8))

    @property
    def part4_value(self) -> int:
        return int.from_bytes(self.part4, "big")

    def match(self, part1: int, part2: int, part3: int, part4: int) -> bool:
        """Compare against a reference value with part4 given as a big-endian integer."""
        return (self.part1, self.part2, self.part3, self.part4_value) == (part1, part2, part3, part4)

    def is_unused(self) -> bool:
        return self.match(0, 0, 0, 0)

    def encode(self) -> str:
        """
        Canonical uppercase 8-4-4-4-12 rendering.

        Returns:
            Empty string for the unused identifier
        """
        if self.is_unused():
            return ""
        tail = self.part4.hex().upper()
        return f"{self.part1:08X}-{self.part2:04X}-{self.part3:04X}-{tail[:4]}-{tail[4:]}"

    def classify(self) -> str:
        """Label of a well-known partition-type identifier."""
        key = (self.part1, self.part2, self.part3, self.part4_value)
        return PARTITION_TYPES.get(key, UNKNOWN_TYPE)

    def variant(self) -> Variant:
        high = self.part4[0]
        if not high & 0x80:
            return Variant.NCS
        if not high & 0x40:
            return Variant.STANDARD
        if not high & 0x20:
            return Variant.MICROSOFT
        return Variant.RESERVED

    def version(self) -> int:
        return self.part3 >> 12

    def variant_info(self) -> str:
        return self.variant().value

    def version_info(self) -> str:
        # Version bits only mean something for the RFC 4122 layout
        if self.variant() != Variant.STANDARD:
            return "Invalid"
        return VERSION_NAMES.get(self.version(), "Unknown")

    def __str__(self) -> str:
        return self.encode()
