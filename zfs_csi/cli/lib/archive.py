"""
Data population helpers: snapshot archives and directory tree copies.
"""

import os
import threading
from typing import Optional

from zfs_csi.cli.lib.command import CommandError, run_command


def is_dir_empty(path: str) -> bool:
    """
    Check whether a directory has no entries by reading at most one.

    Raises:
        OSError: If the directory cannot be opened
    """
    with os.scandir(path) as entries:
        for _ in entries:
            return False
    return True


def extract_archive(
    archive_path: str,
    dest_dir: str,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Extract a gzipped tar archive into a directory.

    Raises:
        CommandError: If tar fails
    """
    result = run_command(["tar", "zxvf", archive_path, "-C", dest_dir], timeout=timeout, cancel=cancel)
    if result.returncode != 0:
        raise CommandError(
            f"Failed to extract {archive_path}", result.cmd, returncode=result.returncode, output=result.output
        )


def create_archive(
    source_dir: str,
    archive_path: str,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Archive the contents of a directory into a gzipped tar file.

    Raises:
        CommandError: If tar fails
    """
    result = run_command(["tar", "czf", archive_path, "-C", source_dir, "."], timeout=timeout, cancel=cancel)
    if result.returncode != 0:
        raise CommandError(
            f"Failed to archive {source_dir}", result.cmd, returncode=result.returncode, output=result.output
        )


def copy_tree(
    source_dir: str,
    dest_dir: str,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Copy a directory's contents into another, preserving attributes.

    Raises:
        CommandError: If cp fails
    """
    src = source_dir.rstrip("/") + "/."
    dest = dest_dir.rstrip("/") + "/"
    result = run_command(["cp", "-a", src, dest], timeout=timeout, cancel=cancel)
    if result.returncode != 0:
        raise CommandError(
            f"Failed to copy {source_dir} to {dest_dir}", result.cmd, returncode=result.returncode, output=result.output
        )
