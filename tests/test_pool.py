import pytest

from btrscope.core.errors import (
    PoolDeviceError, PoolIncompleteError, PoolMismatchError, StructuralDamageError,
)
from btrscope.core.image import BytesImageReader
from btrscope.core.pool import DeviceSource, assemble_pool, read_superblock

from image_builder import IMAGE_SIZE, OTHER_FSID, build_device_image


def source(image, offset=0):
    return DeviceSource(BytesImageReader(image), offset)


def test_single_device_pool(single_source, fsid):
    pool = assemble_pool([single_source])
    assert len(pool) == 1
    assert pool.fsid == fsid
    assert pool.canonical_superblock.dev_item.devid == 1
    assert pool.device_offset_in_image(1) == 0
    assert pool.device_size(1) == IMAGE_SIZE


def test_two_device_pool_any_order():
    second = build_device_image(devid=2, num_devices=2, with_trees=False)
    first = build_device_image(devid=1, num_devices=2)
    pool = assemble_pool([source(second), source(first)])
    assert len(pool) == 2
    assert sorted(pool.devices) == [1, 2]
    assert pool.canonical_superblock.dev_item.devid == 1


def test_devices_packed_in_one_image():
    image = bytes(build_device_image(devid=1, num_devices=2)) + bytes(build_device_image(devid=2, num_devices=2))
    reader = BytesImageReader(image)
    pool = assemble_pool([DeviceSource(reader, 0), DeviceSource(reader, IMAGE_SIZE)])
    assert pool.device_offset_in_image(2) == IMAGE_SIZE
    assert pool.read_physical(2, 0x10040, 8) == b'_BHRfS_M'


def test_missing_device_is_incomplete():
    with pytest.raises(PoolIncompleteError) as excinfo:
        assemble_pool([source(build_device_image(devid=1, num_devices=2))])
    assert excinfo.value.found == 1
    assert excinfo.value.declared == 2
    assert "Input incomplete" in str(excinfo.value)


def test_extra_device_is_incomplete():
    with pytest.raises(PoolIncompleteError):
        assemble_pool([
            source(build_device_image(devid=1, num_devices=1)),
            source(build_device_image(devid=2, num_devices=1, with_trees=False)),
        ])


def test_foreign_filesystem_is_mismatch():
    with pytest.raises(PoolMismatchError):
        assemble_pool([
            source(build_device_image(devid=1, num_devices=2)),
            source(build_device_image(devid=2, num_devices=2, fsid=OTHER_FSID, with_trees=False)),
        ])


def test_duplicate_devid_is_mismatch():
    image = build_device_image(devid=1, num_devices=2)
    with pytest.raises(PoolMismatchError):
        assemble_pool([source(image), source(image)])


def test_bad_magic_reports_every_failed_device():
    good = build_device_image(devid=1, num_devices=3)
    bad = build_device_image(devid=2, num_devices=3, magic=b'XXXXXXXX')
    short = bytes(0x8000)
    with pytest.raises(PoolDeviceError) as excinfo:
        assemble_pool([source(good), source(bad), source(short)])
    assert len(excinfo.value.failures) == 2
    assert isinstance(excinfo.value.failures[0][1], StructuralDamageError)


def test_canonical_superblock_falls_back_to_newest_generation():
    older = build_device_image(devid=2, num_devices=2, generation=5, with_trees=False)
    newer = build_device_image(devid=3, num_devices=2, generation=9, with_trees=False)
    pool = assemble_pool([source(older), source(newer)])
    assert pool.canonical_superblock.generation == 9


def test_unknown_device_lookup_is_damage(single_source):
    pool = assemble_pool([single_source])
    with pytest.raises(StructuralDamageError):
        pool.device(4)


def test_read_superblock_rejects_missing_magic():
    with pytest.raises(StructuralDamageError):
        read_superblock(source(bytes(IMAGE_SIZE)))


def test_no_sources():
    with pytest.raises(ValueError):
        assemble_pool([])
