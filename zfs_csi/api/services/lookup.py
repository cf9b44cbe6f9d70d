"""
Volume lookup against the metadata record store.

Lookup by ID is a linear scan over every record; the store is keyed by name
and keeps no ID index.
"""

from zfs_csi.exceptions import InternalError, RecordNotFound, RecordStoreError, VolumeNotFound
from zfs_csi.models import Volume
from zfs_csi.records.base import RecordStore


def find_by_id(store: RecordStore, volume_id: str) -> Volume:
    """
    Find a volume by its opaque ID.

    Raises:
        VolumeNotFound: No record carries this ID
        InternalError: Listing records failed
    """
    try:
        volumes = store.list()
    except RecordStoreError as e:
        raise InternalError(f"Error while retrieving volumes: {volume_id}: {e.message}")

    for volume in volumes:
        if volume.id == volume_id:
            return volume
    raise VolumeNotFound(f"Could not find volume: {volume_id}", volume_id=volume_id)


def find_by_name(store: RecordStore, name: str) -> Volume:
    """
    Fetch a volume by name.

    Raises:
        VolumeNotFound: No record with this name
        InternalError: The store request failed
    """
    try:
        return store.get(name)
    except RecordNotFound:
        raise VolumeNotFound(f"Could not find volume: {name}")
    except RecordStoreError as e:
        raise InternalError(f"Error while retrieving volume: {name}: {e.message}")


def resolve_path(store: RecordStore, volume_id: str) -> str:
    """Return the canonical path of a volume; raises VolumeNotFound if unknown."""
    return find_by_id(store, volume_id).path
