"""Base class for metadata record stores."""

from abc import ABC, abstractmethod
from typing import List

from zfs_csi.models import Volume


class RecordStore(ABC):
    """Abstract base class for volume metadata record stores.

    Records are keyed by volume name. Implementations must give
    read-after-write consistency so a volume is visible to `get()` and
    `list()` as soon as `create()` returns.
    """

    @abstractmethod
    def create(self, volume: Volume) -> Volume:
        """Persist a new record.

        Returns:
            The stored record, carrying the store's resource version

        Raises:
            RecordConflict: A record with this name already exists
            RecordStoreError: The store could not be reached
        """
        pass

    @abstractmethod
    def update(self, volume: Volume) -> Volume:
        """Replace an existing record.

        If `volume.resource_version` is set it must match the stored
        version, otherwise the update is rejected.

        Raises:
            RecordNotFound: No record with this name
            RecordConflict: Stale resource version
            RecordStoreError: The store could not be reached
        """
        pass

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove a record.

        Raises:
            RecordNotFound: No record with this name
            RecordStoreError: The store could not be reached
        """
        pass

    @abstractmethod
    def get(self, name: str) -> Volume:
        """Fetch a record by name.

        Raises:
            RecordNotFound: No record with this name
            RecordStoreError: The store could not be reached
        """
        pass

    @abstractmethod
    def list(self) -> List[Volume]:
        """Return every record.

        Raises:
            RecordStoreError: The store could not be reached
        """
        pass
