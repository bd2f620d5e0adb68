"""
btrscope - Btrfs Forensic Metadata Examiner
Reconstructs the btrfs metadata tree directly from raw disk-image bytes
"""

__version__ = "1.0.0"
