"""
btrscope - Command-Line Interface
Rich terminal output for btrfs pool examination

Features:
- Pool assembly and validation from one or more device images
- Canonical superblock summary and device table
- Chunk map and decoded root-tree contents
- Directory listing from a filesystem tree
- Partition table listing with partition-type classification

Dependencies:
    pip install click rich
"""

import click
import sys
from pathlib import Path
from typing import List

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box
from rich.markup import escape

from .. import __version__
from ..app import ExaminerApp
from ..core.errors import (
    BtrfsError, ImageReadError, PoolError, StructuralDamageError, UnsupportedFeatureError,
)
from ..core.image import FileImageReader
from ..core.node import LeafItem
from ..core.partition_parser import PartitionTableParser
from ..core.pool import DeviceSource, read_superblock
from ..core.structures import (
    BTRFS_FIRST_FREE_OBJECTID, BTRFS_FS_TREE_OBJECTID,
    ChunkItem, DevItem, DirItem, InodeItem, InodeRef, RootItem, UnknownItem, item_type_name,
)
from ..utils import PartitionDetector, format_bytes, list_btrfs_partitions, parse_offset

console = Console()

# Exit status per error kind
EXIT_POOL = 2
EXIT_DAMAGE = 3
EXIT_UNSUPPORTED = 4
EXIT_IO = 5


def fail(error: Exception):
    """Print a diagnostic for an examination error and exit with its status"""
    if isinstance(error, PoolError):
        label, code = "Pool error", EXIT_POOL
    elif isinstance(error, StructuralDamageError):
        label, code = "Filesystem damaged", EXIT_DAMAGE
    elif isinstance(error, UnsupportedFeatureError):
        label, code = "Unsupported feature", EXIT_UNSUPPORTED
    elif isinstance(error, (ImageReadError, OSError)):
        label, code = "I/O error", EXIT_IO
    elif isinstance(error, ValueError):
        label, code = "Invalid input", 1
    else:
        label, code = "Error", 1
    console.print(f"[bold red]{label}:[/bold red] {escape(str(error))}")
    sys.exit(code)


def describe_payload(item: LeafItem) -> str:
    """One-line rendering of a decoded item payload"""
    payload = item.payload
    if isinstance(payload, InodeItem):
        return (f"size={payload.size} nlink={payload.nlink} mode={oct(payload.mode)} "
                f"uid={payload.uid} gid={payload.gid}")
    if isinstance(payload, InodeRef):
        return ", ".join(f"index={ref.index} name={ref.name}" for ref in payload.refs)
    if isinstance(payload, DirItem):
        return ", ".join(f"{entry.name} -> {entry.location} ({entry.file_type_name})"
                         for entry in payload.entries)
    if isinstance(payload, RootItem):
        return (f"bytenr=0x{payload.bytenr:X} level={payload.level} "
                f"root_dirid={payload.root_dirid} gen={payload.generation}")
    if isinstance(payload, DevItem):
        return f"devid={payload.devid} size={format_bytes(payload.total_bytes)} uuid={payload.uuid.encode()}"
    if isinstance(payload, ChunkItem):
        stripes = ", ".join(f"dev {s.devid}@0x{s.offset:X}" for s in payload.stripes)
        return f"length=0x{payload.length:X} {payload.usage} {payload.profile} [{stripes}]"
    if isinstance(payload, UnknownItem):
        return f"{len(payload.raw)} raw bytes"
    return repr(payload)


def items_table(title: str, items: List[LeafItem]) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Object ID", style="cyan", justify="right")
    table.add_column("Type", style="yellow")
    table.add_column("Offset", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Contents", style="white")
    for item in items:
        table.add_row(
            str(item.key.objectid),
            item_type_name(item.key.type),
            str(item.key.offset),
            str(item.data_size),
            escape(describe_payload(item)),
        )
    return table


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """btrscope - Btrfs forensic metadata examiner"""
    if ctx.invoked_subcommand is None:
        console.print(Panel(
            f"[bold white]Btrfs Forensic Metadata Examiner[/bold white]\n[dim]Version {__version__}[/dim]",
            border_style="blue", box=box.DOUBLE))
        console.print(ctx.get_help())


@cli.command()
def version():
    """Show version information"""
    version_info = Table(show_header=False, box=box.ROUNDED)
    version_info.add_column(style="cyan bold")
    version_info.add_column(style="white")

    version_info.add_row("Application", "btrscope")
    version_info.add_row("Version", __version__)
    version_info.add_row("Python", f"{sys.version.split()[0]}")

    console.print(Panel(version_info, title="[bold blue]Version Information[/bold blue]", border_style="blue"))


def source_options(command):
    """Arguments and options locating the pool members"""
    options = [
        click.argument('images', nargs=-1, required=True, type=click.Path(exists=True)),
        click.option('--offset', '-o', default='0',
                     help='Filesystem start offset in each image (bytes, 0x.., or Ns sectors)'),
        click.option('--device-offset', '-d', 'device_offsets', multiple=True,
                     help='Offset of one pool member inside the image (repeatable)'),
        click.option('--split', is_flag=True, help='Treat IMAGES as consecutive parts of one image'),
        click.option('--skip-damaged', is_flag=True, help='Skip damaged nodes instead of aborting'),
        click.option('--config', '-c', 'config_path', type=click.Path(), default=None,
                     help='JSON configuration file'),
    ]
    for option in reversed(options):
        command = option(command)
    return command


def open_examination(images, offset, device_offsets, split, skip_damaged, config_path):
    """Build the application and an unopened Examination from command-line values"""
    try:
        start = parse_offset(offset)
        dev_offsets = [parse_offset(value) for value in device_offsets]
    except ValueError as e:
        raise click.BadParameter(str(e))
    if dev_offsets and len(images) > 1 and not split:
        raise click.UsageError("--device-offset addresses one image; pass --split to join several parts")

    overrides = {"skip_damaged_nodes": True} if skip_damaged else None
    app = ExaminerApp(Path(config_path) if config_path else None, overrides)
    return app.examine(images, start, dev_offsets, split)


@cli.command()
@source_options
@click.option('--log-tree', is_flag=True, help='Also print the log tree contents')
def examine(images, offset, device_offsets, split, skip_damaged, config_path, log_tree):
    """Assemble the pool and print its superblock, devices, chunks and root tree"""
    try:
        with open_examination(images, offset, device_offsets, split, skip_damaged, config_path) as exam:
            info = exam.get_filesystem_info()
            console.print(f"\n[bold green]All devices accepted.[/bold green] Device number: {len(exam.pool)}")
            console.print(f"[bold]Pool UUID:[/bold] {info['uuid']}\n")

            summary = Table(title="Canonical Superblock", box=box.ROUNDED, show_header=False)
            summary.add_column(style="cyan bold")
            summary.add_column(style="white")
            summary.add_row("Label", escape(info['label']) or "-")
            summary.add_row("Generation", str(info['generation']))
            summary.add_row("Root tree root", f"0x{info['root_tree']:016X}")
            summary.add_row("Chunk tree root", f"0x{info['chunk_tree']:016X}")
            summary.add_row("Log tree root", f"0x{info['log_tree']:016X}")
            summary.add_row("Total size", format_bytes(info['total_size']))
            summary.add_row("Used", format_bytes(info['used_size']))
            summary.add_row("Node size", str(info['node_size']))
            console.print(summary)

            devices = Table(title="Devices", box=box.ROUNDED)
            devices.add_column("ID", style="cyan", justify="right")
            devices.add_column("UUID")
            devices.add_column("Image offset", justify="right")
            devices.add_column("Size", justify="right")
            for dev in exam.device_table():
                devices.add_row(str(dev['devid']), dev['uuid'], f"0x{dev['image_offset']:X}",
                                format_bytes(dev['size']))
            console.print(devices)

            chunks = Table(title="Chunk Map", box=box.ROUNDED)
            chunks.add_column("Logical start", justify="right")
            chunks.add_column("Length", justify="right")
            chunks.add_column("Type")
            chunks.add_column("Stripes")
            for chunk in exam.chunk_map:
                chunks.add_row(f"0x{chunk.logical_start:X}", f"0x{chunk.length:X}",
                               f"{chunk.usage} {chunk.profile}",
                               ", ".join(f"dev {s.devid}@0x{s.offset:X}" for s in chunk.stripes))
            console.print(chunks)

            console.print(items_table("Root Tree", exam.root_tree_items()))
            if log_tree:
                console.print(items_table("Log Tree", exam.log_tree_items()))

            if exam.navigator.damaged:
                console.print(f"\n[yellow]Skipped {len(exam.navigator.damaged)} damaged node(s):[/yellow]")
                for address, error in exam.navigator.damaged:
                    console.print(f"  • 0x{address:X}: {escape(str(error))}")
    except (BtrfsError, OSError, ValueError) as e:
        fail(e)


@cli.command(name='ls')
@source_options
@click.option('--inode', '-i', type=int, default=BTRFS_FIRST_FREE_OBJECTID, show_default=True,
              help='Inode number of the directory')
@click.option('--tree', '-t', 'tree_id', type=int, default=BTRFS_FS_TREE_OBJECTID, show_default=True,
              help='Objectid of the tree holding the directory')
@click.option('--files-only', is_flag=True, help='Print only the names of regular files')
def list_directory(images, offset, device_offsets, split, skip_damaged, config_path, inode, tree_id, files_only):
    """List one directory of a filesystem tree"""
    try:
        with open_examination(images, offset, device_offsets, split, skip_damaged, config_path) as exam:
            content = exam.dir_content(inode, tree_id)
    except (BtrfsError, OSError, ValueError) as e:
        fail(e)

    if content is None:
        console.print(f"[yellow]Tree {tree_id} has no inode {inode}[/yellow]")
        sys.exit(1)

    if files_only:
        for entry in content.regular_files():
            console.print(escape(entry.name), highlight=False)
        return

    table = Table(title=f"Directory {escape(content.name) or '-'} (inode {inode}, tree {tree_id})",
                  box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Inode", justify="right")
    table.add_column("Transid", justify="right")
    for entry in content.children:
        table.add_row(escape(entry.name), entry.file_type_name, str(entry.location.objectid), str(entry.transid))
    console.print(table)
    console.print(f"{len(content.children)} entries, {len(content.regular_files())} regular file(s), "
                  f"{len(content.subdirectories())} subdirectory(ies)")


@cli.command()
@click.argument('image', type=click.Path(exists=True))
@click.option('--offset', '-o', default='0', help='Filesystem start offset (bytes, 0x.., or Ns sectors)')
def superblock(image, offset):
    """Decode the primary superblock of a single device"""
    try:
        with FileImageReader(image) as reader:
            sb = read_superblock(DeviceSource(reader, parse_offset(offset)))
    except (BtrfsError, OSError, ValueError) as e:
        fail(e)

    table = Table(title=f"Superblock of {image}", box=box.ROUNDED, show_header=False)
    table.add_column(style="cyan bold")
    table.add_column(style="white")
    table.add_row("Filesystem UUID", sb.fsid.encode())
    table.add_row("UUID variant", sb.fsid.variant_info())
    table.add_row("UUID version", sb.fsid.version_info())
    table.add_row("Label", escape(sb.label) or "-")
    table.add_row("Generation", str(sb.generation))
    table.add_row("Root tree root", f"0x{sb.root:016X}")
    table.add_row("Chunk tree root", f"0x{sb.chunk_root:016X}")
    table.add_row("Log tree root", f"0x{sb.log_root:016X}")
    table.add_row("Devices", str(sb.num_devices))
    table.add_row("Device ID", str(sb.dev_item.devid))
    table.add_row("Device UUID", sb.dev_item.uuid.encode())
    console.print(table)


@cli.command()
@click.argument('image', type=click.Path(exists=True))
def partitions(image):
    """List MBR/GPT partitions and flag the ones holding btrfs"""
    try:
        with FileImageReader(image) as reader:
            found = PartitionTableParser(reader).parse()
    except (BtrfsError, OSError, ValueError) as e:
        fail(e)

    if not found:
        console.print("[yellow]No partition table found[/yellow]")
        return

    table = Table(title="Partitions", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Scheme")
    table.add_column("Offset", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Type")
    table.add_column("Btrfs")
    for part in found:
        table.add_row(str(part.index), part.type.upper(), str(part.offset), format_bytes(part.size),
                      part.type_label, "[green]yes[/green]" if part.is_btrfs else "no")
    console.print(table)


@cli.command()
def devices():
    """List btrfs partitions on this system"""
    found = list_btrfs_partitions()
    if not found:
        console.print("[yellow]No btrfs partitions found[/yellow]")
        return

    table = Table(title="Btrfs Partitions", box=box.ROUNDED)
    table.add_column("Device", style="cyan")
    table.add_column("Mount point")
    table.add_column("Size", justify="right")
    table.add_column("On-disk signature")
    for part in found:
        signature = PartitionDetector.detect_filesystem_type(part['device']) or "unreadable"
        table.add_row(part['device'], part['mountpoint'], format_bytes(part['total']), signature)
    console.print(table)


def main():
    """Main CLI entry point"""
    cli()


if __name__ == "__main__":
    main()
