"""
ZFS dataset management functions.

The argument builders are pure; the runners execute `zfs` and raise
CommandError with the command's combined output on failure.
"""

import threading
from typing import List, Optional

from zfs_csi.cli.lib.command import CommandError, run_command
from zfs_csi.models import Volume

ZFS_CMD = "zfs"
ZFS_CREATE_ARG = "create"
ZFS_DESTROY_ARG = "destroy"


def build_create_args(volume: Volume) -> List[str]:
    """
    Build `zfs create` arguments for a volume.

    Order is fixed: quota, dedup (if set), compression (if set), target.

    Args:
        volume: Volume record

    Returns:
        Argument vector without the program name
    """
    args = [ZFS_CREATE_ARG, "-o", f"quota={int(volume.size)}"]

    if volume.dedup:
        args.extend(["-o", f"dedup={volume.dedup}"])
    if volume.compression:
        args.extend(["-o", f"compression={volume.compression}"])

    args.append(volume.dataset)
    return args


def build_destroy_args(volume: Volume) -> List[str]:
    """
    Build `zfs destroy` arguments for a volume.

    The recursive flag removes every descendant dataset and snapshot.
    """
    return [ZFS_DESTROY_ARG, "-R", volume.dataset]


def create_dataset(
    volume: Volume,
    zfs_cmd: str = ZFS_CMD,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Create the dataset backing a volume.

    Raises:
        CommandError: If `zfs create` fails
    """
    result = run_command([zfs_cmd] + build_create_args(volume), timeout=timeout, cancel=cancel)
    if result.returncode != 0:
        raise CommandError(
            f"Failed to create dataset {volume.dataset}",
            result.cmd,
            returncode=result.returncode,
            output=result.output,
        )


def destroy_dataset(
    volume: Volume,
    zfs_cmd: str = ZFS_CMD,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Recursively destroy the dataset backing a volume.

    Raises:
        CommandError: If `zfs destroy` fails
    """
    result = run_command([zfs_cmd] + build_destroy_args(volume), timeout=timeout, cancel=cancel)
    if result.returncode != 0:
        raise CommandError(
            f"Failed to destroy dataset {volume.dataset}",
            result.cmd,
            returncode=result.returncode,
            output=result.output,
        )
