"""
Pydantic models for API requests and responses.
"""

import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

NAME_RE = r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$"


def _check_name(v: str) -> str:
    if not re.match(NAME_RE, v):
        raise ValueError("Name must start with alphanumeric and contain only alphanumeric, dots, underscores, or hyphens")
    return v


# Volume Models


class VolumeCreate(BaseModel):
    """Request model for creating a volume."""

    id: str = Field(..., description="Caller-assigned volume ID", min_length=1)
    name: str = Field(..., description="Volume name", min_length=1, max_length=255)
    size: int = Field(..., description="Capacity in bytes", gt=0)
    pool: Optional[str] = Field(None, description="ZFS pool (default from config)")
    compression: str = Field("", description="ZFS compression property, empty to leave unset")
    dedup: str = Field("", description="ZFS dedup property, empty to leave unset")
    ephemeral: bool = Field(False, description="Volume lifetime tied to its workload")
    source_snapshot_id: Optional[str] = Field(None, description="Populate from this snapshot")
    source_volume_id: Optional[str] = Field(None, description="Populate from this volume")

    @field_validator("name")
    def validate_name(cls, v: str) -> str:
        return _check_name(v)

    @model_validator(mode="after")
    def validate_source(self) -> "VolumeCreate":
        if self.source_snapshot_id and self.source_volume_id:
            raise ValueError("Only one of source_snapshot_id and source_volume_id may be set")
        return self


class VolumeUpdate(BaseModel):
    """Request model for updating a volume record. Unset fields are kept."""

    size: Optional[int] = Field(None, description="Capacity in bytes", gt=0)
    compression: Optional[str] = Field(None, description="ZFS compression property")
    dedup: Optional[str] = Field(None, description="ZFS dedup property")
    ephemeral: Optional[bool] = Field(None, description="Volume lifetime tied to its workload")
    resource_version: Optional[str] = Field(None, description="Reject the update if the record changed since")


class VolumeRestore(BaseModel):
    """Request model for populating a volume from a snapshot."""

    snapshot_id: str = Field(..., description="Snapshot ID", min_length=1)


class VolumeClone(BaseModel):
    """Request model for populating a volume from another volume."""

    source_volume_id: str = Field(..., description="Source volume ID", min_length=1)


# Snapshot Models


class SnapshotCreate(BaseModel):
    """Request model for creating a snapshot."""

    name: str = Field(..., description="Snapshot name", min_length=1, max_length=255)
    source_volume_id: str = Field(..., description="Volume to snapshot", min_length=1)

    @field_validator("name")
    def validate_name(cls, v: str) -> str:
        return _check_name(v)


# Common Models


class SuccessResponse(BaseModel):
    """Generic success response."""

    request_id: str
    status: str
    data: dict


class ErrorResponse(BaseModel):
    """Generic error response."""

    request_id: str
    status: str
    error: dict
