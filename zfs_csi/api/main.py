"""
FastAPI main application.

Exposes the volume and snapshot lifecycle operations over REST.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from zfs_csi import __version__
from zfs_csi.api.models import (
    SnapshotCreate,
    SuccessResponse,
    VolumeClone,
    VolumeCreate,
    VolumeRestore,
    VolumeUpdate,
)
from zfs_csi.api.services import get_snapshot_service, get_volume_service
from zfs_csi.api.services.provision import provision_volume
from zfs_csi.exceptions import ErrorCode, ZFSCSIException

app = FastAPI(title="ZFS CSI Driver API", description="REST API for the ZFS volume lifecycle engine", version=__version__)
logger = logging.getLogger(__name__)

HTTP_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.UNREADY: 409,
    ErrorCode.INVALID_ARGUMENT: 400,
    ErrorCode.INTERNAL: 500,
}


def _ok(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"request_id": str(uuid.uuid4()), "status": "ok", "data": data}


@app.exception_handler(ZFSCSIException)
async def lifecycle_exception_handler(request: Request, exc: ZFSCSIException) -> JSONResponse:
    """Map lifecycle errors to HTTP status codes."""
    request_id = str(uuid.uuid4())
    details = {}
    output = getattr(exc, "output", None)
    if output:
        details["output"] = output
    if exc.code == ErrorCode.INTERNAL:
        logger.error("Request failed (request_id=%s, path=%s): %s", request_id, request.url.path, exc.message)
    return JSONResponse(
        status_code=HTTP_STATUS.get(exc.code, 500),
        content={
            "request_id": request_id,
            "status": "error",
            "error": {"code": exc.code.value, "message": exc.message, "details": details},
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    request_id = str(uuid.uuid4())
    logger.exception("Unhandled error (request_id=%s, path=%s)", request_id, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "request_id": request_id,
            "status": "error",
            "error": {"code": ErrorCode.INTERNAL.value, "message": "Internal server error", "details": {}},
        },
    )


# Volume endpoints


@app.post("/v1/volumes", response_model=SuccessResponse, status_code=201)
def create_volume(volume: VolumeCreate) -> Dict[str, Any]:
    """
    Create a volume, optionally populated from a snapshot or another volume.
    """
    result = provision_volume(
        get_volume_service(),
        get_snapshot_service(),
        volume.id,
        volume.name,
        volume.size,
        compression=volume.compression,
        dedup=volume.dedup,
        pool=volume.pool,
        ephemeral=volume.ephemeral,
        source_snapshot_id=volume.source_snapshot_id,
        source_volume_id=volume.source_volume_id,
    )
    return _ok({"volume": result.model_dump(mode="json")})


@app.get("/v1/volumes", response_model=SuccessResponse)
def list_volumes(
    pool: Optional[str] = Query(None, description="Filter by pool"),
    name: Optional[str] = Query(None, description="Look up a single volume by name"),
) -> Dict[str, Any]:
    """
    List volumes.
    """
    service = get_volume_service()
    if name:
        items = [service.get_volume_by_name(name)]
    else:
        items = service.list_volumes(pool=pool)
    return _ok({"items": [v.model_dump(mode="json") for v in items]})


@app.get("/v1/volumes/{volume_id}", response_model=SuccessResponse)
def get_volume(volume_id: str) -> Dict[str, Any]:
    """
    Get a volume by ID.
    """
    volume = get_volume_service().get_volume_by_id(volume_id)
    return _ok({"volume": volume.model_dump(mode="json")})


@app.patch("/v1/volumes/{volume_id}", response_model=SuccessResponse)
def update_volume(volume_id: str, update: VolumeUpdate) -> Dict[str, Any]:
    """
    Update a volume's metadata record. The dataset itself is not changed.
    """
    service = get_volume_service()
    current = service.get_volume_by_id(volume_id)
    changes = update.model_dump(exclude_none=True)
    result = service.update_volume(volume_id, current.model_copy(update=changes))
    return _ok({"volume": result.model_dump(mode="json")})


@app.delete("/v1/volumes/{volume_id}", response_model=SuccessResponse)
def delete_volume(volume_id: str) -> Dict[str, Any]:
    """
    Delete a volume. Deleting an unknown volume succeeds.
    """
    get_volume_service().delete_volume(volume_id)
    return _ok({"deleted": True})


@app.post("/v1/volumes/{volume_id}/restore", response_model=SuccessResponse)
def restore_volume(volume_id: str, restore: VolumeRestore) -> Dict[str, Any]:
    """
    Populate a volume from a snapshot.
    """
    path = get_volume_service().resolve_path(volume_id)
    get_snapshot_service().restore_from_snapshot(restore.snapshot_id, path)
    return _ok({"restored": True, "path": path})


@app.post("/v1/volumes/{volume_id}/clone", response_model=SuccessResponse)
def clone_volume(volume_id: str, clone: VolumeClone) -> Dict[str, Any]:
    """
    Populate a volume with a copy of another volume's contents.
    """
    path = get_volume_service().resolve_path(volume_id)
    get_snapshot_service().clone_from_volume(clone.source_volume_id, path)
    return _ok({"cloned": True, "path": path})


# Snapshot endpoints


@app.post("/v1/snapshots", response_model=SuccessResponse, status_code=201)
def create_snapshot(snapshot: SnapshotCreate) -> Dict[str, Any]:
    """
    Create a snapshot of a volume.
    """
    result = get_snapshot_service().create_snapshot(snapshot.name, snapshot.source_volume_id)
    return _ok({"snapshot": result.model_dump(mode="json")})


@app.get("/v1/snapshots", response_model=SuccessResponse)
def list_snapshots(
    source_volume_id: Optional[str] = Query(None, description="Filter by source volume ID"),
    name: Optional[str] = Query(None, description="Look up a single snapshot by name"),
) -> Dict[str, Any]:
    """
    List snapshots.
    """
    service = get_snapshot_service()
    if name:
        items = [service.lookup_snapshot(name)]
    else:
        items = service.list_snapshots(source_volume_id)
    return _ok({"items": [s.model_dump(mode="json") for s in items]})


@app.get("/v1/snapshots/{snapshot_id}", response_model=SuccessResponse)
def get_snapshot(snapshot_id: str) -> Dict[str, Any]:
    """
    Get a snapshot by ID.
    """
    snapshot = get_snapshot_service().get_snapshot(snapshot_id)
    return _ok({"snapshot": snapshot.model_dump(mode="json")})


@app.delete("/v1/snapshots/{snapshot_id}", response_model=SuccessResponse)
def delete_snapshot(snapshot_id: str) -> Dict[str, Any]:
    """
    Delete a snapshot. Deleting an unknown snapshot succeeds.
    """
    get_snapshot_service().delete_snapshot(snapshot_id)
    return _ok({"deleted": True})
