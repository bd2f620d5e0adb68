"""
btrscope - Error Types

Every failure raised by the core derives from BtrfsError so front ends can
map each kind to its own diagnostic and exit status.
"""

from typing import List, Optional, Tuple


class BtrfsError(Exception):
    """Base class for all examination errors"""


class PoolError(BtrfsError):
    """The supplied devices do not form one usable pool"""


class PoolMismatchError(PoolError):
    """Device superblocks disagree on the filesystem identifier"""


class PoolIncompleteError(PoolError):
    """Fewer (or more) devices supplied than the superblocks declare"""

    def __init__(self, found: int, declared: int):
        self.found = found
        self.declared = declared
        super().__init__(
            f"Input incomplete: found {found} device(s), superblock declares {declared}")


class PoolDeviceError(PoolError):
    """One or more devices could not be read as pool members"""

    def __init__(self, failures: List[Tuple[int, Exception]]):
        # (image offset, error) per failed device
        self.failures = failures
        details = "; ".join(f"device at 0x{offset:X}: {err}" for offset, err in failures)
        super().__init__(f"{len(failures)} device(s) rejected: {details}")


class StructuralDamageError(BtrfsError):
    """A decoded structure violates a required invariant"""

    def __init__(self, message: str, address: Optional[int] = None):
        self.address = address
        if address is not None:
            message = f"{message} (at 0x{address:X})"
        super().__init__(message)


class UnsupportedFeatureError(BtrfsError):
    """Recognised on-disk feature that is not implemented (e.g. multi-stripe chunks)"""


class ImageReadError(BtrfsError):
    """The image reader could not satisfy a read request"""
