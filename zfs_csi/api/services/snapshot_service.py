"""
Snapshot service layer.

Snapshots are gzipped tar archives of a volume's directory tree, tracked in a
SnapshotRegistry. Restoring extracts the archive into a new volume; this is
an interim strategy until snapshots map onto native ZFS snapshots and clones.
"""

import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from zfs_csi.cli.lib.archive import copy_tree, create_archive, extract_archive, is_dir_empty
from zfs_csi.cli.lib.command import CommandError
from zfs_csi.cli.lib.config import CSIConfig, load_config
from zfs_csi.cli.lib.state import atomic_write_json, load_json
from zfs_csi.cli.lib.validators import validate_name
from zfs_csi.exceptions import (
    InternalError,
    InvalidArgument,
    SnapshotAlreadyExists,
    SnapshotNotFound,
    SnapshotNotReady,
    VolumeNotFound,
)
from zfs_csi.models import Snapshot
from zfs_csi.records.base import RecordStore

from . import lookup
from .locks import KeyedLock

LOG = logging.getLogger(__name__)


class SnapshotRegistry:
    """Catalog of snapshots keyed by ID.

    All access goes through one mutex. With a `persist_path` the catalog is
    written to JSON after every change and reloaded on construction;
    otherwise it lives only as long as the process.
    """

    def __init__(self, persist_path: Optional[Path] = None):
        self.persist_path = persist_path
        self._lock = threading.Lock()
        self._snapshots: Dict[str, Snapshot] = {}
        if persist_path is not None:
            for item in load_json(persist_path, {"items": []}).get("items", []):
                snapshot = Snapshot.model_validate(item)
                self._snapshots[snapshot.id] = snapshot

    def _save(self) -> None:
        if self.persist_path is None:
            return
        items = [s.model_dump(mode="json") for s in sorted(self._snapshots.values(), key=lambda s: s.id)]
        atomic_write_json(self.persist_path, {"items": items})

    def add(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.id] = snapshot.model_copy()
            self._save()

    def get(self, snapshot_id: str) -> Snapshot:
        with self._lock:
            snapshot = self._snapshots.get(snapshot_id)
            if snapshot is None:
                raise SnapshotNotFound(f"cannot find snapshot {snapshot_id}", snapshot_id=snapshot_id)
            return snapshot.model_copy()

    def lookup_by_name(self, name: str) -> Snapshot:
        with self._lock:
            for snapshot in self._snapshots.values():
                if snapshot.name == name:
                    return snapshot.model_copy()
        raise SnapshotNotFound(f"snapshot name {name} does not exist in the snapshots list")

    def list(self, vol_id: Optional[str] = None) -> List[Snapshot]:
        with self._lock:
            snapshots = [s.model_copy() for s in self._snapshots.values()]
        if vol_id:
            snapshots = [s for s in snapshots if s.vol_id == vol_id]
        return sorted(snapshots, key=lambda s: s.creation_time)

    def mark_ready(self, snapshot_id: str, size_bytes: int) -> Snapshot:
        with self._lock:
            snapshot = self._snapshots.get(snapshot_id)
            if snapshot is None:
                raise SnapshotNotFound(f"cannot find snapshot {snapshot_id}", snapshot_id=snapshot_id)
            snapshot = snapshot.model_copy(update={"ready_to_use": True, "size_bytes": size_bytes})
            self._snapshots[snapshot_id] = snapshot
            self._save()
            return snapshot.model_copy()

    def remove(self, snapshot_id: str) -> bool:
        with self._lock:
            if self._snapshots.pop(snapshot_id, None) is None:
                return False
            self._save()
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)


class SnapshotService:
    """Snapshot catalog operations and data population for new volumes."""

    def __init__(
        self,
        store: RecordStore,
        registry: SnapshotRegistry,
        cfg: Optional[CSIConfig] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.registry = registry
        self.cfg = cfg or load_config()
        self.locks = locks or KeyedLock()

    @property
    def _timeout(self) -> Optional[float]:
        return self.cfg.command_timeout or None

    def lookup_snapshot(self, name: str) -> Snapshot:
        return self.registry.lookup_by_name(name)

    def get_snapshot(self, snapshot_id: str) -> Snapshot:
        return self.registry.get(snapshot_id)

    def list_snapshots(self, source_volume_id: Optional[str] = None) -> List[Snapshot]:
        return self.registry.list(vol_id=source_volume_id)

    def create_snapshot(
        self, name: str, source_volume_id: str, cancel: Optional[threading.Event] = None
    ) -> Snapshot:
        """
        Archive a volume's contents as a new snapshot.

        The snapshot is registered as not ready while the archive is written.
        Repeating the call for the same name and source returns the existing
        snapshot.

        Raises:
            InvalidArgument: Bad snapshot name
            SnapshotAlreadyExists: Name used by a snapshot of another volume
            VolumeNotFound: Unknown source volume
            InternalError: Archiving failed
        """
        try:
            validate_name(name)
        except ValueError as e:
            raise InvalidArgument(str(e))

        with self.locks.hold(source_volume_id):
            try:
                existing = self.registry.lookup_by_name(name)
            except SnapshotNotFound:
                existing = None
            if existing is not None:
                if existing.vol_id == source_volume_id:
                    return existing
                raise SnapshotAlreadyExists(f"snapshot {name} already exists for volume {existing.vol_id}")

            source = lookup.find_by_id(self.store, source_volume_id)

            snapshot_id = str(uuid.uuid4())
            archive_path = os.path.join(self.cfg.snapshot_dir, f"{snapshot_id}.tgz")
            try:
                os.makedirs(self.cfg.snapshot_dir, exist_ok=True)
            except OSError as e:
                raise InternalError(f"failed to create snapshot directory {self.cfg.snapshot_dir}: {e}")

            self.registry.add(Snapshot(id=snapshot_id, name=name, vol_id=source_volume_id, path=archive_path))
            try:
                create_archive(source.path, archive_path, timeout=self._timeout, cancel=cancel)
            except CommandError as e:
                self.registry.remove(snapshot_id)
                self._remove_archive(archive_path)
                raise InternalError(
                    f"failed to create snapshot {name} of volume {source_volume_id}: {e}: {e.output}", output=e.output
                )

            snapshot = self.registry.mark_ready(snapshot_id, size_bytes=os.path.getsize(archive_path))
            LOG.info("Created snapshot %s (%s) of volume %s", name, snapshot_id, source_volume_id)
            return snapshot

    def delete_snapshot(self, snapshot_id: str) -> None:
        """Delete a snapshot's archive and catalog entry. Unknown IDs are ignored."""
        try:
            snapshot = self.registry.get(snapshot_id)
        except SnapshotNotFound:
            LOG.debug("Snapshot %s not found, nothing to delete", snapshot_id)
            return

        # Waits for an archive of the same volume that is still being written
        with self.locks.hold(snapshot.vol_id):
            try:
                snapshot = self.registry.get(snapshot_id)
            except SnapshotNotFound:
                LOG.debug("Snapshot %s removed concurrently", snapshot_id)
                return
            self._remove_archive(snapshot.path)
            self.registry.remove(snapshot_id)
        LOG.info("Deleted snapshot %s", snapshot_id)

    def _remove_archive(self, path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise InternalError(f"failed to remove snapshot archive {path}: {e}")

    def restore_from_snapshot(
        self, snapshot_id: str, dest_path: str, cancel: Optional[threading.Event] = None
    ) -> None:
        """
        Populate `dest_path` with the contents of a snapshot.

        Raises:
            SnapshotNotFound: Unknown snapshot ID
            SnapshotNotReady: Snapshot is not ready to use
            InternalError: Extraction failed
        """
        snapshot = self.registry.get(snapshot_id)
        if not snapshot.ready_to_use:
            raise SnapshotNotReady(f"snapshot {snapshot_id} is not yet ready to use.")

        try:
            extract_archive(snapshot.path, dest_path, timeout=self._timeout, cancel=cancel)
        except CommandError as e:
            raise InternalError(
                f"failed pre-populate data from snapshot {snapshot_id}: {e}: {e.output}", output=e.output
            )
        LOG.info("Restored snapshot %s into %s", snapshot_id, dest_path)

    def clone_from_volume(
        self, source_volume_id: str, dest_path: str, cancel: Optional[threading.Event] = None
    ) -> None:
        """
        Populate `dest_path` with a copy of another volume's directory tree.

        An empty source is skipped: there is nothing to copy.

        Raises:
            VolumeNotFound: Unknown source volume
            InternalError: Source unreadable or copy failed
        """
        with self.locks.hold(source_volume_id):
            try:
                source = lookup.find_by_id(self.store, source_volume_id)
            except VolumeNotFound:
                raise VolumeNotFound(
                    f"source volume {source_volume_id} does not exist, "
                    "are source and destination in the same storage class?",
                    volume_id=source_volume_id,
                )

            try:
                empty = is_dir_empty(source.path)
            except OSError as e:
                raise InternalError(f"failed verification check of source volume: {source_volume_id}: {e}")

            if empty:
                LOG.info("Source volume %s is empty, skipping copy", source_volume_id)
                return

            try:
                copy_tree(source.path, dest_path, timeout=self._timeout, cancel=cancel)
            except CommandError as e:
                raise InternalError(
                    f"failed pre-populate data from volume {source_volume_id}: {e}: {e.output}", output=e.output
                )
            LOG.info("Cloned volume %s into %s", source_volume_id, dest_path)
