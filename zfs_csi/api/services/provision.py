"""
Volume provisioning with an optional content source.
"""

import logging
import threading
from typing import Optional

from zfs_csi.exceptions import InvalidArgument, SnapshotNotReady, ZFSCSIException
from zfs_csi.models import Volume

from .snapshot_service import SnapshotService
from .volume_service import VolumeService

LOG = logging.getLogger(__name__)


def provision_volume(
    volumes: VolumeService,
    snapshots: SnapshotService,
    volume_id: str,
    name: str,
    size: int,
    compression: str = "",
    dedup: str = "",
    pool: Optional[str] = None,
    ephemeral: bool = False,
    source_snapshot_id: Optional[str] = None,
    source_volume_id: Optional[str] = None,
    cancel: Optional[threading.Event] = None,
) -> Volume:
    """
    Create a volume and populate it from a snapshot or another volume.

    If population fails the new volume is deleted again, so a failed request
    leaves neither a dataset nor a record behind. A retry that finds the
    volume already created returns it without populating or deleting it.

    Raises:
        InvalidArgument: Both a snapshot and a volume source were given
        SnapshotNotFound, SnapshotNotReady: Bad snapshot source (checked first)
        ZFSCSIException: Any create or population failure
    """
    if source_snapshot_id and source_volume_id:
        raise InvalidArgument("Only one of source_snapshot_id and source_volume_id may be set")

    if source_snapshot_id:
        snapshot = snapshots.get_snapshot(source_snapshot_id)
        if not snapshot.ready_to_use:
            raise SnapshotNotReady(f"snapshot {source_snapshot_id} is not yet ready to use.")

    volume, created = volumes.ensure_volume(
        volume_id,
        name,
        size,
        compression=compression,
        dedup=dedup,
        pool=pool,
        ephemeral=ephemeral,
        cancel=cancel,
    )

    if not source_snapshot_id and not source_volume_id:
        return volume
    if not created:
        LOG.info("Volume %s already existed, not populating it again", volume_id)
        return volume

    try:
        if source_snapshot_id:
            snapshots.restore_from_snapshot(source_snapshot_id, volume.path, cancel=cancel)
        else:
            snapshots.clone_from_volume(source_volume_id, volume.path, cancel=cancel)
    except ZFSCSIException:
        LOG.warning("Populating volume %s failed, deleting it", volume_id)
        try:
            volumes.delete_volume(volume_id)
        except ZFSCSIException as cleanup_error:
            LOG.error("Cleanup of volume %s failed: %s", volume_id, cleanup_error)
        raise

    return volume
