"""
Domain models for volumes and snapshots.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def volume_path(pool: str, name: str) -> str:
    """Return the canonical mount path of a volume (``/<pool>/<name>``)."""
    return "/" + pool.strip("/") + "/" + name


class Volume(BaseModel):
    """A logical volume backed by a ZFS dataset."""

    id: str
    name: str
    size: int = Field(..., ge=0, description="Capacity in bytes")
    path: str = ""
    pool: str
    compression: str = ""
    dedup: str = ""
    ephemeral: bool = False
    resource_version: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def dataset(self) -> str:
        """ZFS dataset identifier (``pool/name``)."""
        return f"{self.pool}/{self.name}"

    def with_canonical_path(self) -> "Volume":
        return self.model_copy(update={"path": volume_path(self.pool, self.name)})


class Snapshot(BaseModel):
    """A point-in-time copy of a volume exported as an archive."""

    id: str
    name: str
    vol_id: str
    path: str
    creation_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    size_bytes: int = 0
    ready_to_use: bool = False
