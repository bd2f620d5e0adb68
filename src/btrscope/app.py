"""
btrscope - Central Application Controller

Loads configuration, sets up logging, and coordinates an examination:
open the device images, assemble the pool, bootstrap the chunk map, and
hand out a tree navigator for the trees named by the canonical superblock.
"""

import logging
import json
from pathlib import Path
from typing import Optional, Dict, List, Any, Sequence, Union
from datetime import datetime

from .core.chunks import ChunkMap
from .core.identifier import Endian
from .core.directory import DirContent, read_dir_content
from .core.errors import StructuralDamageError
from .core.image import FileImageReader, open_image
from .core.node import LeafItem
from .core.pool import DeviceSource, Pool, assemble_pool
from .core.structures import (
    BTRFS_FIRST_FREE_OBJECTID, BTRFS_FS_TREE_OBJECTID, BTRFS_ROOT_ITEM_KEY, MAX_KEY, MIN_KEY,
    BtrfsKey, RootItem, Superblock,
)
from .core.tree import TreeNavigator


DEFAULT_CONFIG: Dict[str, Any] = {
    "version": "1.0.0",
    "log_level": "INFO",
    "console_log_level": "WARNING",
    "log_dir": "logs",
    "endian": "little",
    "skip_damaged_nodes": False,
    "node_cache_size": 256,
    "max_tree_depth": 8,
}


class Examination:
    """
    One examination of a btrfs pool.

    Owns the image readers it opens; closing the examination closes them.
    """

    def __init__(self, sources: List[DeviceSource], config: Dict[str, Any]):
        """
        Args:
            sources: Pool member locations
            config: Application configuration
        """
        self.sources = sources
        self.config = config
        self.endian = Endian.from_name(config.get("endian", "little"))
        self.logger = logging.getLogger(__name__)

        self.pool: Optional[Pool] = None
        self.chunk_map: Optional[ChunkMap] = None
        self.navigator: Optional[TreeNavigator] = None

    def open(self) -> "Examination":
        """
        Assemble the pool and load the chunk tree.

        Raises:
            PoolError, StructuralDamageError, UnsupportedFeatureError, ImageReadError
        """
        try:
            self.pool = assemble_pool(self.sources, self.endian)
            superblock = self.pool.canonical_superblock
            self.chunk_map = ChunkMap.from_superblock(self.endian, superblock)
            self.navigator = TreeNavigator(
                self.pool,
                self.chunk_map,
                self.endian,
                skip_damaged=self.config.get("skip_damaged_nodes", False),
                max_depth=self.config.get("max_tree_depth", 8),
                cache_size=self.config.get("node_cache_size", 256),
            )
            self.chunk_map.load_chunk_tree(self.navigator, superblock.chunk_root)
        except Exception:
            self.close()
            raise
        self.logger.info(f"Examination ready: pool {self.pool.fsid.encode()}, "
                         f"{len(self.pool)} device(s), {len(self.chunk_map)} chunk(s)")
        return self

    def close(self):
        if self.pool is not None:
            self.pool.close()
            return
        close_sources(self.sources)

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def superblock(self) -> Superblock:
        return self.pool.canonical_superblock

    def get_filesystem_info(self) -> Dict:
        """
        Get filesystem information.

        Returns:
            Dictionary with canonical superblock metadata
        """
        sb = self.superblock
        return {
            'filesystem': 'Btrfs',
            'label': sb.label,
            'uuid': sb.fsid.encode(),
            'generation': sb.generation,
            'root_tree': sb.root,
            'chunk_tree': sb.chunk_root,
            'log_tree': sb.log_root,
            'total_size': sb.total_bytes,
            'used_size': sb.bytes_used,
            'block_size': sb.sectorsize,
            'node_size': sb.nodesize,
            'num_devices': sb.num_devices,
        }

    def device_table(self) -> List[Dict]:
        return [self.pool.devices[devid].info() for devid in sorted(self.pool.devices)]

    def root_tree_items(self, start: BtrfsKey = MIN_KEY, end: BtrfsKey = MAX_KEY) -> List[LeafItem]:
        """Decoded items of the root tree, in key order."""
        return list(self.navigator.items(self.superblock.root, start, end))

    def tree_roots(self) -> Dict[int, RootItem]:
        """Root items of the root tree, keyed by tree objectid."""
        roots = {}
        for item in self.navigator.items(self.superblock.root):
            if item.key.type == BTRFS_ROOT_ITEM_KEY:
                roots[item.key.objectid] = item.payload
        return roots

    def log_tree_items(self) -> List[LeafItem]:
        """Items of the log tree; empty when the filesystem has no log."""
        if not self.superblock.log_root:
            return []
        return list(self.navigator.items(self.superblock.log_root))

    def tree_root(self, tree_id: int = BTRFS_FS_TREE_OBJECTID) -> int:
        """
        Logical address of a tree's root node, from its ROOT_ITEM.

        Raises:
            StructuralDamageError: the root tree has no ROOT_ITEM for tree_id
        """
        item = self.navigator.find_item(self.superblock.root, tree_id, BTRFS_ROOT_ITEM_KEY)
        if item is None:
            raise StructuralDamageError(f"Root tree holds no root item for tree {tree_id}")
        return item.payload.bytenr

    def dir_content(self, inode: int = BTRFS_FIRST_FREE_OBJECTID,
                    tree_id: int = BTRFS_FS_TREE_OBJECTID) -> Optional[DirContent]:
        """Directory `inode` of tree `tree_id` (default: the top directory of the filesystem tree)."""
        return read_dir_content(self.navigator, self.tree_root(tree_id), inode)


class ExaminerApp:
    """
    Main application class.

    Provides configuration and logging, and builds Examination objects
    from image paths.
    """

    def __init__(self, config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize the application.

        Args:
            config_path: Optional path to JSON configuration file
            overrides: Settings taking precedence over file and defaults
        """
        self.config = self._load_config(config_path)
        if overrides:
            self.config.update(overrides)
        self.logger = self._setup_logging()
        self.logger.info("btrscope application initialized")

    def _load_config(self, config_path: Optional[Path]) -> Dict[str, Any]:
        """
        Load application configuration.

        Args:
            config_path: Path to JSON configuration file

        Returns:
            Configuration dictionary with defaults
        """
        config = dict(DEFAULT_CONFIG)

        if config_path and Path(config_path).exists():
            try:
                with open(config_path, 'r') as f:
                    user_config = json.load(f)
                config.update(user_config)
            except (OSError, ValueError) as e:
                logging.warning(f"Failed to load config from {config_path}: {e}")

        return config

    def _setup_logging(self) -> logging.Logger:
        """
        Configure logging with an audit trail file.

        Returns:
            Configured logger instance
        """
        log_level = getattr(logging, str(self.config.get("log_level", "INFO")).upper(), logging.INFO)
        console_level = getattr(logging, str(self.config.get("console_log_level", "WARNING")).upper(),
                                logging.WARNING)

        logger = logging.getLogger("btrscope")
        logger.setLevel(log_level)

        # Repeated app construction must not stack handlers
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        log_dir = self.config.get("log_dir")
        if log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / f"btrscope_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(console_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        return logger

    def build_sources(self, image_paths: Sequence[Union[str, Path]], offset: int = 0,
                      device_offsets: Sequence[int] = (), split: bool = False) -> List[DeviceSource]:
        """
        Describe where the pool members live, opening their readers.

        Args:
            image_paths: One image per device, or the parts of one split image
            offset: Start offset of the filesystem within each image
            device_offsets: Several devices inside one image, at these offsets
            split: Treat image_paths as consecutive parts of a single image

        Returns:
            One DeviceSource per device

        Raises:
            ValueError: device offsets given for several images that are not a split image
            FileNotFoundError, ImageReadError
        """
        if not image_paths:
            raise ValueError("At least one image is required")
        if device_offsets and len(image_paths) > 1 and not split:
            raise ValueError("Device offsets address a single image; "
                             "pass several images with them only as parts of a split image")
        for path in image_paths:
            if not Path(path).exists():
                raise FileNotFoundError(f"Disk image not found: {path}")

        if split or device_offsets:
            reader = open_image(image_paths)
            reader.open()
            offsets = [offset + dev_offset for dev_offset in device_offsets] or [offset]
            return [DeviceSource(reader, start) for start in offsets]

        sources: List[DeviceSource] = []
        try:
            for path in image_paths:
                reader = FileImageReader(path)
                reader.open()
                sources.append(DeviceSource(reader, offset))
        except Exception:
            close_sources(sources)
            raise
        return sources

    def examine(self, image_paths: Sequence[Union[str, Path]], offset: int = 0,
                device_offsets: Sequence[int] = (), split: bool = False) -> Examination:
        """
        Open an examination (not yet assembled; use as a context manager or call open()).

        Raises:
            ValueError: invalid configuration or image arguments
        """
        # Settings are checked before any image is opened
        Endian.from_name(self.config.get("endian", "little"))
        sources = self.build_sources(image_paths, offset, device_offsets, split)
        self.logger.info(f"Examining {len(sources)} device(s) from {', '.join(map(str, image_paths))}")
        return Examination(sources, self.config)


def close_sources(sources: Sequence[DeviceSource]):
    """Close each distinct reader behind the sources."""
    closed = set()
    for source in sources:
        if id(source.reader) not in closed:
            closed.add(id(source.reader))
            source.reader.close()
