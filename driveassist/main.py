"""Command-line entry point.

Lists devices and free space, and prints the exact commands a workflow
would run. Nothing destructive is executed from here.
"""

import argparse
import sys

from driveassist.domain.models import CreateFsRequest, FilesystemFamily
from driveassist.logging import LoggerFactory, setup_logging
from driveassist.services import planner
from driveassist.storage import devices
from driveassist.storage.exceptions import StorageError
from driveassist.storage.free_space import read_regions
from driveassist.storage.inventory import scan_inventory
from driveassist.storage.names import device_path
from driveassist.storage.validation import require_whole_disk

FAMILY_NAMES = [family.value for family in FilesystemFamily]


def _print_inventory(args):
    records = scan_inventory()
    print(f"{'NAME':<14}{'SIZE':>8}  {'TYPE':<6}{'FSTYPE':<8}{'MOUNTPOINT':<20}{'UUID':<38}MODEL")
    for record in records:
        name = record.name if record.is_disk else f"  {record.name}"
        print(
            f"{name:<14}{record.size:>8}  {record.device_type:<6}"
            f"{record.filesystem or '':<8}{record.mountpoint:<20}"
            f"{record.uuid or '':<38}{record.model or ''}"
        )
    return 0


def _print_areas(args):
    disk = device_path(args.disk)
    require_whole_disk(disk, "Free space view")
    print(f"{'#':>3} {'START':>10} {'END':>10} {'SIZE':>10}  {'TYPE':<9}FILESYSTEM")
    for region in read_regions(disk):
        number = "" if region.index is None else str(region.index)
        kind = "free" if region.is_free else (region.partition_type or "part")
        print(
            f"{number:>3} {region.start_mib:>8}Mi {region.end_mib:>8}Mi "
            f"{region.size_mib:>8}Mi  {kind:<9}{region.filesystem or ''}"
        )
    return 0


def _show(plan):
    description = plan.description
    print(f"# {description.action} on {description.target} [{plan.severity.value}]")
    print(f"# {description.consequences}")
    print(plan.preview(), end="" if plan.preview().endswith("\n") else "\n")
    return 0


def _plan_create(args):
    disk = device_path(args.disk)
    request = CreateFsRequest(
        disk_path=disk,
        start_mib=args.start,
        end_mib=args.end,
        family=FilesystemFamily(args.fs),
        sector_size=devices.query_sector_size(disk),
        size_mib=args.size,
        cluster_size=args.cluster,
        align=not args.no_align,
        label=args.label,
        quick=not args.full,
    )
    return _show(planner.plan_create_filesystem(request))


def _plan_format(args):
    return _show(
        planner.plan_format(
            device_path(args.partition),
            FilesystemFamily(args.fs),
            cluster_size=args.cluster,
            quick=not args.full,
            label=args.label,
        )
    )


def _plan_resize(args):
    request = planner.resize_request_for(device_path(args.partition), args.size)
    return _show(planner.plan_resize(request))


def _plan_repair(args):
    path = device_path(args.partition)
    filesystem = args.fs or devices.query_filesystem_type(path)
    if args.deep:
        return _show(planner.plan_deep_repair(path, filesystem))
    return _show(planner.plan_repair(path, filesystem))


def _plan_label(args):
    path = device_path(args.partition)
    filesystem = args.fs or devices.query_filesystem_type(path)
    return _show(planner.plan_label(path, filesystem, args.label))


def build_parser():
    parser = argparse.ArgumentParser(
        prog="driveassist", description="Partition and filesystem operation planner"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every skipped report line")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List disks and partitions").set_defaults(
        handler=_print_inventory
    )

    areas = commands.add_parser("areas", help="Show partitions and free space of a disk")
    areas.add_argument("disk")
    areas.set_defaults(handler=_print_areas)

    plan = commands.add_parser("plan", help="Print the commands for an operation")
    plans = plan.add_subparsers(dest="operation", required=True)

    create = plans.add_parser("create", help="New partition and filesystem in free space")
    create.add_argument("disk")
    create.add_argument("--start", type=int, required=True, help="Region start in MiB")
    create.add_argument("--end", type=int, required=True, help="Region end in MiB")
    create.add_argument("--size", type=int, help="Partition size in MiB (default: whole region)")
    create.add_argument("--fs", choices=FAMILY_NAMES, default="ext4")
    create.add_argument("--cluster", type=int, help="Block or cluster size")
    create.add_argument("--label")
    create.add_argument("--no-align", action="store_true", help="Do not align to 1 MiB")
    create.add_argument("--full", action="store_true", help="Full (not quick) NTFS format")
    create.set_defaults(handler=_plan_create)

    fmt = plans.add_parser("format", help="Format an existing partition")
    fmt.add_argument("partition")
    fmt.add_argument("--fs", choices=FAMILY_NAMES, default="ext4")
    fmt.add_argument("--cluster", type=int)
    fmt.add_argument("--label")
    fmt.add_argument("--full", action="store_true")
    fmt.set_defaults(handler=_plan_format)

    resize = plans.add_parser("resize", help="Shrink or grow a partition")
    resize.add_argument("partition")
    resize.add_argument("--size", type=int, required=True, help="Target size in MiB")
    resize.set_defaults(handler=_plan_resize)

    repair = plans.add_parser("repair", help="Check and repair a filesystem")
    repair.add_argument("partition")
    repair.add_argument("--fs", help="Filesystem type (default: detect with blkid)")
    repair.add_argument("--deep", action="store_true", help="Use a backup superblock (ext only)")
    repair.set_defaults(handler=_plan_repair)

    label = plans.add_parser("label", help="Change a filesystem label")
    label.add_argument("partition")
    label.add_argument("label")
    label.add_argument("--fs")
    label.set_defaults(handler=_plan_label)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace)
    log = LoggerFactory.for_system()
    log.debug(f"Running {args.command}")
    try:
        return args.handler(args)
    except StorageError as error:
        log.debug(f"{args.command} failed: {error}")
        print(f"Error: {error}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
