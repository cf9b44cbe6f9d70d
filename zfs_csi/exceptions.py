"""Custom exceptions for the ZFS CSI lifecycle engine."""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-checkable error kinds."""

    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CONFLICT = "CONFLICT"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    INTERNAL = "INTERNAL"
    UNREADY = "UNREADY"


class ZFSCSIException(Exception):
    """Base exception for lifecycle engine errors."""

    code = ErrorCode.INTERNAL

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidArgument(ZFSCSIException):
    """Request arguments failed validation."""

    code = ErrorCode.INVALID_ARGUMENT


class VolumeNotFound(ZFSCSIException):
    """Volume not found."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, message: str, volume_id: Optional[str] = None):
        super().__init__(message)
        self.volume_id = volume_id


class VolumeAlreadyExists(ZFSCSIException):
    """Volume already exists with different parameters."""

    code = ErrorCode.ALREADY_EXISTS


class VolumeConflict(ZFSCSIException):
    """Volume record was modified concurrently."""

    code = ErrorCode.CONFLICT


class SnapshotNotFound(ZFSCSIException):
    """Snapshot not found."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, message: str, snapshot_id: Optional[str] = None):
        super().__init__(message)
        self.snapshot_id = snapshot_id


class SnapshotAlreadyExists(ZFSCSIException):
    """Snapshot already exists."""

    code = ErrorCode.ALREADY_EXISTS


class InternalError(ZFSCSIException):
    """A backend command or store call failed.

    ``output`` holds the combined stdout/stderr of the failed command, if any.
    """

    code = ErrorCode.INTERNAL

    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.output = output


class SnapshotNotReady(InternalError):
    """Snapshot exists but cannot be used as a restore source yet."""

    code = ErrorCode.UNREADY


# Record store errors


class RecordStoreError(Exception):
    """Base exception for metadata record store failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class RecordNotFound(RecordStoreError):
    """Record does not exist in the store."""

    pass


class RecordConflict(RecordStoreError):
    """Record already exists, or its resource version is stale."""

    pass
