"""
btrscope Utility Functions
System partition discovery and formatting helpers

Dependencies:
    pip install psutil
"""

import logging
from typing import List, Dict, Optional

import psutil

from .core.structures import BTRFS_MAGIC, BTRFS_SUPER_INFO_OFFSET

logger = logging.getLogger(__name__)


class PartitionDetector:
    """Detect and list Btrfs partitions on the system"""

    @staticmethod
    def get_all_partitions() -> List[Dict]:
        """
        Get all disk partitions on the system

        Returns:
            List of partition info dictionaries
        """
        partitions = []

        for partition in psutil.disk_partitions(all=True):
            part_info = {
                'device': partition.device,
                'mountpoint': partition.mountpoint,
                'fstype': partition.fstype,
                'opts': partition.opts,
            }

            # Get usage info if mounted
            try:
                usage = psutil.disk_usage(partition.mountpoint)
                part_info['total'] = usage.total
                part_info['used'] = usage.used
            except (PermissionError, OSError):
                part_info['total'] = 0
                part_info['used'] = 0

            partitions.append(part_info)

        return partitions

    @staticmethod
    def filter_btrfs_partitions(partitions: List[Dict]) -> List[Dict]:
        """Keep only partitions the OS reports as btrfs"""
        return [p for p in partitions if p['fstype'].lower() == 'btrfs']

    @staticmethod
    def detect_filesystem_type(device_path: str, offset: int = 0) -> Optional[str]:
        """
        Detect filesystem type by reading the btrfs magic number

        Args:
            device_path: Path to device or image file
            offset: Start of the filesystem within the image

        Returns:
            'btrfs', 'unknown', or None if the device cannot be read
        """
        try:
            with open(device_path, 'rb') as f:
                # Btrfs magic (_BHRfS_M at offset 0x10040)
                f.seek(offset + BTRFS_SUPER_INFO_OFFSET + 0x40)
                if f.read(8) == BTRFS_MAGIC:
                    return 'btrfs'
        except (IOError, PermissionError) as e:
            logger.warning(f"Cannot read device {device_path}: {e}")
            return None

        return 'unknown'

    @staticmethod
    def format_size(bytes_size: int) -> str:
        """
        Format byte size to human-readable format

        Args:
            bytes_size: Size in bytes

        Returns:
            Formatted string (e.g., "1.5 GB")
        """
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if bytes_size < 1024.0:
                return f"{bytes_size:.1f} {unit}"
            bytes_size /= 1024.0
        return f"{bytes_size:.1f} PB"


def list_btrfs_partitions() -> List[Dict]:
    """List all Btrfs partitions on the system"""
    detector = PartitionDetector()
    return detector.filter_btrfs_partitions(detector.get_all_partitions())


def format_bytes(size: int) -> str:
    """Format byte size to human-readable string"""
    return PartitionDetector.format_size(size)


def parse_offset(value: str) -> int:
    """Parse a byte offset given in decimal, 0x-hex, or with a 's' sector suffix (512-byte sectors)."""
    value = value.strip().lower()
    if value.endswith('s'):
        return int(value[:-1], 0) * 512
    return int(value, 0)
