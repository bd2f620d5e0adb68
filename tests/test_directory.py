from btrscope.core.directory import read_dir_content
from btrscope.core.structures import BtrfsKey, DirItem

from image_builder import (
    FS_TREE_ROOT, build_internal, build_leaf, pack_dir_item, pack_inode_item, pack_inode_ref, write_node,
)

DIRECTORY = 0o40755


def names(entries):
    return [entry.name for entry in entries]


def test_root_directory(device_image, open_navigator):
    nav = open_navigator(device_image)
    content = read_dir_content(nav, FS_TREE_ROOT, 256)

    assert content.inode_number == 256
    assert content.inode.mode == DIRECTORY
    assert content.ref.name == ".."
    assert content.name == ".."
    # Entries packed into one item (colliding hashes) all appear, in key order
    assert names(content.children) == ["notes.txt", "docs", "report.pdf"]
    assert all(isinstance(entry, DirItem) for entry in content.children)
    assert content.children[1].location == BtrfsKey(258, 1, 0)


def test_regular_files_and_subdirectories(device_image, open_navigator):
    content = read_dir_content(open_navigator(device_image), FS_TREE_ROOT, 256)
    assert names(content.regular_files()) == ["notes.txt", "report.pdf"]
    assert names(content.subdirectories()) == ["docs"]


def test_subdirectory(device_image, open_navigator):
    content = read_dir_content(open_navigator(device_image), FS_TREE_ROOT, 258)
    assert content.name == "docs"
    assert content.ref.index == 3
    assert names(content.children) == ["draft.odt"]


def test_regular_file_has_no_children(device_image, open_navigator):
    content = read_dir_content(open_navigator(device_image), FS_TREE_ROOT, 257)
    assert content.name == "notes.txt"
    assert content.inode.size == 12
    assert content.children == []


def test_missing_inode(device_image, open_navigator):
    assert read_dir_content(open_navigator(device_image), FS_TREE_ROOT, 999) is None


def test_inode_without_ref(device_image, open_navigator):
    leaf = 0x107000
    write_node(device_image, leaf, build_leaf(leaf, [
        ((256, 1, 0), pack_inode_item(mode=DIRECTORY)),
        ((256, 84, 0x10), pack_dir_item("orphan.bin", location=(300, 1, 0), file_type=1)),
    ], owner=5))
    content = read_dir_content(open_navigator(device_image), leaf, 256)
    assert content.ref is None
    assert content.name == ""
    assert names(content.children) == ["orphan.bin"]


def test_entries_spread_over_two_leaves(device_image, open_navigator):
    top, first, second = 0x107000, 0x108000, 0x109000
    write_node(device_image, first, build_leaf(first, [
        ((256, 1, 0), pack_inode_item(mode=DIRECTORY)),
        ((256, 12, 256), pack_inode_ref(0, "..")),
        ((256, 84, 0x1000), pack_dir_item("a.txt", location=(257, 1, 0), file_type=1)),
    ], owner=5))
    write_node(device_image, second, build_leaf(second, [
        ((256, 84, 0x2000), pack_dir_item("b.txt", location=(258, 1, 0), file_type=1)),
        ((257, 1, 0), pack_inode_item()),
    ], owner=5))
    write_node(device_image, top, build_internal(top, 1, [
        ((256, 1, 0), first),
        ((256, 84, 0x2000), second),
    ], owner=5))

    content = read_dir_content(open_navigator(device_image), top, 256)
    assert names(content.children) == ["a.txt", "b.txt"]
