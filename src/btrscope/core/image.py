"""
btrscope - Image Readers
Byte-range access to disk images

Readers expose read(offset, length) returning exactly `length` bytes or
raising ImageReadError, and a `size` property. Offsets are absolute within
the reader's address space. Reads are never retried here.
"""

import logging
import os
import threading
from bisect import bisect_right
from pathlib import Path
from typing import List, Sequence, Union

from .errors import ImageReadError


class FileImageReader:
    """Reads from a single image file or raw block device"""

    def __init__(self, image_path: Union[str, Path]):
        """
        Args:
            image_path: Path to disk image or device
        """
        self.image_path = Path(image_path)
        self.logger = logging.getLogger(__name__)
        self.file_handle = None
        self._size = None
        self._lock = threading.Lock()

    def open(self):
        """Open the image file"""
        try:
            self.file_handle = open(self.image_path, 'rb')
            self.logger.info(f"Image file opened: {self.image_path}")
        except OSError as e:
            self.logger.error(f"Failed to open image: {e}")
            raise ImageReadError(f"Cannot open image {self.image_path}: {e}") from e

    def close(self):
        """Close the image file"""
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None
            self.logger.info(f"Image file closed: {self.image_path}")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def size(self) -> int:
        if self._size is None:
            if not self.file_handle:
                self.open()
            # Block devices report st_size 0, seeking to the end works for both
            with self._lock:
                self._size = self.file_handle.seek(0, os.SEEK_END)
        return self._size

    def read(self, offset: int, length: int) -> bytes:
        if not self.file_handle:
            self.open()
        if offset < 0 or length < 0:
            raise ImageReadError(f"Invalid read request: offset={offset}, length={length}")
        try:
            with self._lock:
                self.file_handle.seek(offset)
                data = self.file_handle.read(length)
        except OSError as e:
            raise ImageReadError(f"Read of {length} bytes at 0x{offset:X} failed: {e}") from e
        if len(data) != length:
            raise ImageReadError(
                f"Short read at 0x{offset:X}: wanted {length} bytes, got {len(data)} from {self.image_path}")
        return data


class SplitImageReader:
    """
    Presents an ordered set of image parts (e.g. disk.001, disk.002, ...)
    as one contiguous address space.
    """

    def __init__(self, parts: Sequence[Union[str, Path, FileImageReader]]):
        if not parts:
            raise ValueError("At least one image part is required")
        self.parts: List[FileImageReader] = [
            p if isinstance(p, FileImageReader) else FileImageReader(p) for p in parts
        ]
        self.logger = logging.getLogger(__name__)
        self._starts: List[int] = []

    def open(self):
        start = 0
        self._starts = []
        try:
            for part in self.parts:
                part.open()
                self._starts.append(start)
                start += part.size
        except ImageReadError:
            self.close()
            raise
        self.logger.info(f"Split image opened: {len(self.parts)} parts, {start} bytes")

    def close(self):
        for part in self.parts:
            part.close()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def size(self) -> int:
        if not self._starts:
            self.open()
        return self._starts[-1] + self.parts[-1].size

    def read(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0 or offset + length > self.size:
            raise ImageReadError(
                f"Read of {length} bytes at 0x{offset:X} outside split image of {self.size} bytes")

        chunks = []
        index = bisect_right(self._starts, offset) - 1
        while length > 0:
            part = self.parts[index]
            local = offset - self._starts[index]
            take = min(length, part.size - local)
            chunks.append(part.read(local, take))
            offset += take
            length -= take
            index += 1
        return b''.join(chunks)


class BytesImageReader:
    """In-memory image, e.g. a region already extracted from evidence"""

    def __init__(self, data: bytes):
        self.data = bytes(data)

    def open(self):
        pass

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    @property
    def size(self) -> int:
        return len(self.data)

    def read(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0 or offset + length > len(self.data):
            raise ImageReadError(
                f"Read of {length} bytes at 0x{offset:X} outside image of {len(self.data)} bytes")
        return self.data[offset:offset + length]


def open_image(paths: Sequence[Union[str, Path]]):
    """Single path -> FileImageReader, several -> SplitImageReader (unopened)."""
    if len(paths) == 1:
        return FileImageReader(paths[0])
    return SplitImageReader(paths)
