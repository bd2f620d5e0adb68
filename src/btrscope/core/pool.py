"""
btrscope - Pool Assembler
Reads every device's superblock and validates pool membership

A pool is either fully assembled (every declared device present, one
filesystem identifier) or construction raises; there is no partial pool.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import (
    ImageReadError, PoolDeviceError, PoolIncompleteError, PoolMismatchError,
    StructuralDamageError,
)
from .identifier import Endian, Identifier
from .structures import (
    BTRFS_SUPER_INFO_OFFSET, BTRFS_SUPER_INFO_SIZE, Superblock, decode_superblock,
)

logger = logging.getLogger(__name__)


@dataclass
class DeviceSource:
    """Where one pool member lives: a reader and the member's start offset in it"""
    reader: object
    image_offset: int = 0


@dataclass
class DeviceRecord:
    """One assembled pool member"""
    devid: int
    image_offset: int           # Byte offset of the device within its image
    dev_uuid: Identifier
    size: int                   # Device size in bytes, 0 if the superblock does not say
    superblock: Superblock
    reader: object = field(repr=False, default=None)

    def info(self) -> Dict:
        return {
            'devid': self.devid,
            'uuid': self.dev_uuid.encode(),
            'image_offset': self.image_offset,
            'size': self.size,
            'generation': self.superblock.generation,
        }


class Pool:
    """
    The set of devices forming one btrfs filesystem.

    Read-only after assemble_pool() returns; passed explicitly to the chunk
    translator and the tree navigator.
    """

    def __init__(self, fsid: Identifier, devices: Dict[int, DeviceRecord], canonical_superblock: Superblock):
        self.fsid = fsid
        self.devices = devices
        self.canonical_superblock = canonical_superblock
        self.logger = logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self.devices)

    def close(self):
        """Close every distinct reader backing the pool."""
        closed = set()
        for record in self.devices.values():
            if record.reader is not None and id(record.reader) not in closed:
                closed.add(id(record.reader))
                record.reader.close()

    def device(self, devid: int) -> DeviceRecord:
        try:
            return self.devices[devid]
        except KeyError:
            raise StructuralDamageError(f"Reference to device {devid}, which is not a pool member")

    def device_offset_in_image(self, devid: int) -> int:
        return self.device(devid).image_offset

    def device_size(self, devid: int) -> int:
        return self.device(devid).size

    def read_physical(self, devid: int, device_offset: int, length: int) -> bytes:
        """
        Read bytes at a device-relative offset.

        Args:
            devid: Pool member to read from
            device_offset: Offset within the device
            length: Number of bytes

        Returns:
            Exactly `length` bytes
        """
        record = self.device(devid)
        return record.reader.read(record.image_offset + device_offset, length)


def read_superblock(source: DeviceSource, endian: Endian = Endian.LITTLE) -> Superblock:
    """
    Read and decode the primary superblock of one device.

    Raises:
        ImageReadError: superblock region could not be read
        StructuralDamageError: magic signature missing
    """
    data = source.reader.read(source.image_offset + BTRFS_SUPER_INFO_OFFSET, BTRFS_SUPER_INFO_SIZE)
    superblock = decode_superblock(endian, data)
    if not superblock.has_valid_magic:
        raise StructuralDamageError(
            f"Not a Btrfs superblock (magic: {superblock.magic!r})",
            source.image_offset + BTRFS_SUPER_INFO_OFFSET)
    return superblock


def _select_canonical(devices: Dict[int, DeviceRecord]) -> Superblock:
    if 1 in devices:
        return devices[1].superblock
    newest = max(devices.values(), key=lambda record: record.superblock.generation)
    logger.warning(f"Device 1 not present, using superblock of device {newest.devid} "
                   f"(generation {newest.superblock.generation})")
    return newest.superblock


def assemble_pool(sources: Sequence[DeviceSource], endian: Endian = Endian.LITTLE) -> Pool:
    """
    Assemble and validate a pool from its member devices.

    Args:
        sources: One DeviceSource per pool member, in any order
        endian: Byte order of the on-disk structures

    Returns:
        Fully assembled Pool

    Raises:
        PoolDeviceError: one or more devices could not be read or lack a superblock
        PoolMismatchError: filesystem identifiers differ, or a device id repeats
        PoolIncompleteError: device count differs from the declared count
    """
    if not sources:
        raise ValueError("At least one device is required")

    failures: List[Tuple[int, Exception]] = []
    superblocks: List[Tuple[DeviceSource, Superblock]] = []
    for source in sources:
        try:
            superblocks.append((source, read_superblock(source, endian)))
        except (ImageReadError, StructuralDamageError) as e:
            logger.error(f"Device at offset 0x{source.image_offset:X} rejected: {e}")
            failures.append((source.image_offset, e))
    if failures:
        raise PoolDeviceError(failures)

    fsid: Optional[Identifier] = None
    devices: Dict[int, DeviceRecord] = {}
    for source, superblock in superblocks:
        if fsid is None:
            fsid = superblock.fsid
        elif superblock.fsid != fsid:
            raise PoolMismatchError(
                f"Found superblocks do not belong to the same pool: "
                f"{superblock.fsid.encode()} != {fsid.encode()}")

        dev = superblock.dev_item
        if dev.devid in devices:
            raise PoolMismatchError(
                f"Device id {dev.devid} supplied twice (image offsets "
                f"0x{devices[dev.devid].image_offset:X} and 0x{source.image_offset:X})")
        devices[dev.devid] = DeviceRecord(
            devid=dev.devid,
            image_offset=source.image_offset,
            dev_uuid=dev.uuid,
            size=dev.total_bytes,
            superblock=superblock,
            reader=source.reader,
        )

    for _, superblock in superblocks:
        if len(devices) != superblock.num_devices:
            raise PoolIncompleteError(found=len(devices), declared=superblock.num_devices)

    pool = Pool(fsid, devices, _select_canonical(devices))
    logger.info(f"All devices accepted. Device number: {len(devices)}, pool UUID: {fsid.encode()}")
    return pool
