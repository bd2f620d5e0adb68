import pytest

from btrscope.core.chunks import ChunkMap
from btrscope.core.identifier import Endian, Identifier
from btrscope.core.image import BytesImageReader
from btrscope.core.pool import DeviceSource, assemble_pool
from btrscope.core.tree import TreeNavigator

from image_builder import FSID, build_device_image


@pytest.fixture
def device_image():
    """Mutable single-device image with chunk and root trees."""
    return build_device_image()


@pytest.fixture
def fsid():
    return Identifier.from_bytes(Endian.LITTLE, FSID)


@pytest.fixture
def single_source(device_image):
    return DeviceSource(BytesImageReader(device_image), 0)


@pytest.fixture
def open_navigator():
    """Factory: assemble a one-device pool from image bytes and return a navigator over it."""
    def _open(image, **kwargs):
        pool = assemble_pool([DeviceSource(BytesImageReader(image), 0)])
        chunk_map = ChunkMap.from_superblock(Endian.LITTLE, pool.canonical_superblock)
        return TreeNavigator(pool, chunk_map, Endian.LITTLE, **kwargs)
    return _open


@pytest.fixture
def image_file(tmp_path, device_image):
    path = tmp_path / "disk.img"
    path.write_bytes(bytes(device_image))
    return path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"log_dir": "%s", "log_level": "DEBUG"}' % (tmp_path / "logs").as_posix())
    return path
