"""
Volume service layer.

Create, update and delete keep the ZFS dataset and the metadata record in
step: a record exists exactly when its dataset does. Operations on one volume
ID are serialized through a KeyedLock.
"""

import logging
import threading
from typing import List, Optional, Tuple

from zfs_csi.cli.lib import zfs
from zfs_csi.cli.lib.command import CommandError
from zfs_csi.cli.lib.config import CSIConfig, load_config
from zfs_csi.cli.lib.validators import (
    validate_compression,
    validate_dedup,
    validate_name,
    validate_pool,
    validate_size,
)
from zfs_csi.exceptions import (
    InternalError,
    InvalidArgument,
    RecordConflict,
    RecordNotFound,
    RecordStoreError,
    VolumeAlreadyExists,
    VolumeConflict,
    VolumeNotFound,
)
from zfs_csi.models import Volume, volume_path
from zfs_csi.records.base import RecordStore

from . import lookup
from .locks import KeyedLock

LOG = logging.getLogger(__name__)

# Properties a create retry must repeat exactly to get the existing volume back
MATCH_FIELDS = ("id", "size", "pool", "compression", "dedup", "ephemeral")


def _same_volume(existing: Volume, requested: Volume) -> bool:
    return all(getattr(existing, f) == getattr(requested, f) for f in MATCH_FIELDS)


class VolumeService:
    """Volume lifecycle orchestrator."""

    def __init__(self, store: RecordStore, cfg: Optional[CSIConfig] = None, locks: Optional[KeyedLock] = None):
        self.store = store
        self.cfg = cfg or load_config()
        self.locks = locks or KeyedLock()
        self._name_locks = KeyedLock()

    @property
    def _timeout(self) -> Optional[float]:
        return self.cfg.command_timeout or None

    def get_volume_by_id(self, volume_id: str) -> Volume:
        return lookup.find_by_id(self.store, volume_id)

    def get_volume_by_name(self, name: str) -> Volume:
        return lookup.find_by_name(self.store, name)

    def resolve_path(self, volume_id: str) -> str:
        return lookup.resolve_path(self.store, volume_id)

    def list_volumes(self, pool: Optional[str] = None) -> List[Volume]:
        try:
            volumes = self.store.list()
        except RecordStoreError as e:
            raise InternalError(f"Error while retrieving volumes: {e.message}")
        if pool:
            volumes = [v for v in volumes if v.pool == pool]
        return sorted(volumes, key=lambda v: v.name)

    def create_volume(
        self,
        volume_id: str,
        name: str,
        size: int,
        compression: str = "",
        dedup: str = "",
        pool: Optional[str] = None,
        ephemeral: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> Volume:
        """
        Create a ZFS dataset and persist its record.

        A retry with the same ID, name and properties returns the existing
        volume.

        Args:
            volume_id: Caller-assigned opaque ID
            name: Volume name (record key and dataset leaf)
            size: Capacity in bytes, set as the dataset quota
            compression: ZFS compression property, empty to leave unset
            dedup: ZFS dedup property, empty to leave unset
            pool: Pool to create the dataset in (default from config)
            ephemeral: Whether the volume lives only as long as its workload
            cancel: Event that aborts the running zfs command when set

        Returns:
            The persisted Volume

        Raises:
            InvalidArgument: Bad name, pool, size or property value
            VolumeAlreadyExists: Name or ID taken by a different volume
            InternalError: zfs create or record persistence failed
        """
        volume, _ = self.ensure_volume(
            volume_id,
            name,
            size,
            compression=compression,
            dedup=dedup,
            pool=pool,
            ephemeral=ephemeral,
            cancel=cancel,
        )
        return volume

    def ensure_volume(
        self,
        volume_id: str,
        name: str,
        size: int,
        compression: str = "",
        dedup: str = "",
        pool: Optional[str] = None,
        ephemeral: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[Volume, bool]:
        """Same as create_volume, also reporting whether this call created the dataset."""
        pool = pool or self.cfg.default_pool
        try:
            if not volume_id:
                raise ValueError("Volume ID cannot be empty")
            validate_name(name)
            validate_pool(pool)
            validate_size(size)
            validate_compression(compression)
            validate_dedup(dedup)
        except ValueError as e:
            raise InvalidArgument(str(e))

        volume = Volume(
            id=volume_id,
            name=name,
            size=size,
            path=volume_path(pool, name),
            pool=pool,
            compression=compression,
            dedup=dedup,
            ephemeral=ephemeral,
        )

        with self.locks.hold(volume_id), self._name_locks.hold(name):
            existing = self._find_existing(name)
            if existing is not None:
                if _same_volume(existing, volume):
                    LOG.info("Volume %s already exists with matching parameters", volume_id)
                    return existing, False
                raise VolumeAlreadyExists(
                    f"Volume name {name} is already used by volume {existing.id} with size {existing.size}"
                )

            try:
                other = lookup.find_by_id(self.store, volume_id)
            except VolumeNotFound:
                other = None
            if other is not None:
                raise VolumeAlreadyExists(f"Volume ID {volume_id} is already used by volume {other.name}")

            try:
                zfs.create_dataset(volume, zfs_cmd=self.cfg.zfs_cmd, timeout=self._timeout, cancel=cancel)
            except CommandError as e:
                raise InternalError(f"failed to allocate volume {volume_id}: {e}: {e.output}", output=e.output)

            try:
                stored = self.store.create(volume)
            except RecordStoreError as e:
                raise self._compensate_create(volume, e) from e

            LOG.info("Created volume %s at %s", volume_id, stored.path)
            return stored, True

    def _find_existing(self, name: str) -> Optional[Volume]:
        try:
            return lookup.find_by_name(self.store, name)
        except VolumeNotFound:
            return None

    def _compensate_create(self, volume: Volume, error: RecordStoreError) -> InternalError:
        """Destroy a dataset whose record could not be persisted; return the error to raise."""
        LOG.error("Failed to persist record for volume %s, destroying dataset %s: %s", volume.id, volume.dataset, error)
        message = f"failed to persist volume {volume.id}: {error.message}"
        try:
            # Not cancellable: the orphan must go even if the caller left
            zfs.destroy_dataset(volume, zfs_cmd=self.cfg.zfs_cmd, timeout=self._timeout)
        except CommandError as e:
            LOG.error("Compensating destroy of %s failed, dataset is orphaned: %s: %s", volume.dataset, e, e.output)
            message += f"; compensating destroy of {volume.dataset} failed: {e}: {e.output}"
            return InternalError(message, output=e.output)
        return InternalError(message)

    def update_volume(self, volume_id: str, volume: Volume) -> Volume:
        """
        Replace the metadata record of an existing volume.

        No zfs command is run; the dataset is neither resized nor retagged.

        Raises:
            VolumeNotFound: Unknown volume ID
            InvalidArgument: Record renames the volume or changes its ID
            VolumeConflict: Record's resource version is stale
            InternalError: The store request failed
        """
        with self.locks.hold(volume_id):
            current = lookup.find_by_id(self.store, volume_id)
            if volume.id != volume_id or volume.name != current.name:
                raise InvalidArgument(f"Volume {volume_id} cannot change its ID or name")
            try:
                validate_pool(volume.pool)
                validate_size(volume.size)
                validate_compression(volume.compression)
                validate_dedup(volume.dedup)
            except ValueError as e:
                raise InvalidArgument(str(e))

            updated = volume.with_canonical_path()
            if updated.resource_version is None:
                updated = updated.model_copy(update={"resource_version": current.resource_version})

            LOG.debug("Updating volume %s", volume_id)
            try:
                return self.store.update(updated)
            except RecordConflict as e:
                raise VolumeConflict(f"Volume {volume_id} was modified concurrently: {e.message}")
            except RecordNotFound:
                raise VolumeNotFound(f"Could not find volume: {volume_id}", volume_id=volume_id)
            except RecordStoreError as e:
                raise InternalError(f"failed to update volume {volume_id}: {e.message}")

    def delete_volume(self, volume_id: str, cancel: Optional[threading.Event] = None) -> None:
        """
        Destroy a volume's dataset (recursively) and remove its record.

        Deleting an unknown volume succeeds without side effects, as does a
        delete whose lookup fails. If zfs destroy fails the record is kept so
        the delete can be retried.

        Raises:
            InternalError: zfs destroy or record removal failed
        """
        with self.locks.hold(volume_id):
            try:
                volume = lookup.find_by_id(self.store, volume_id)
            except VolumeNotFound:
                LOG.debug("Volume %s not found, nothing to delete", volume_id)
                return
            except InternalError as e:
                LOG.warning("Lookup of volume %s failed, treating it as deleted: %s", volume_id, e.message)
                return

            try:
                zfs.destroy_dataset(volume, zfs_cmd=self.cfg.zfs_cmd, timeout=self._timeout, cancel=cancel)
            except CommandError as e:
                LOG.warning("Keeping record of volume %s after failed destroy of %s", volume_id, volume.dataset)
                raise InternalError(f"failed to delete volume {volume_id}: {e}: {e.output}", output=e.output)

            try:
                self.store.delete(volume.name)
            except RecordNotFound:
                LOG.debug("Record %s already removed", volume.name)
            except RecordStoreError as e:
                LOG.error("Dataset %s destroyed but record removal failed: %s", volume.dataset, e)
                raise InternalError(e.message) from e

            LOG.info("Deleted volume %s", volume_id)

