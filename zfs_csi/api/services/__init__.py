"""
Service layer shared by the API and the CLI.

One record store, lock table and snapshot registry are built per process
from configuration; tests replace them with `configure()`.
"""

from typing import Optional

from zfs_csi.cli.lib.config import CSIConfig, load_config
from zfs_csi.records import RecordStore, get_record_store

from .locks import KeyedLock
from .snapshot_service import SnapshotRegistry, SnapshotService
from .volume_service import VolumeService

_volume_service: Optional[VolumeService] = None
_snapshot_service: Optional[SnapshotService] = None


def configure(
    store: Optional[RecordStore] = None,
    cfg: Optional[CSIConfig] = None,
    registry: Optional[SnapshotRegistry] = None,
) -> None:
    """Build the process-wide services; arguments default from configuration."""
    global _volume_service, _snapshot_service

    cfg = cfg or load_config()
    store = store or get_record_store(cfg)
    if registry is None:
        registry = SnapshotRegistry(cfg.state_dir / "snapshots.json" if cfg.state_dir else None)
    locks = KeyedLock()

    _volume_service = VolumeService(store, cfg=cfg, locks=locks)
    _snapshot_service = SnapshotService(store, registry, cfg=cfg, locks=locks)


def get_volume_service() -> VolumeService:
    if _volume_service is None:
        configure()
    return _volume_service


def get_snapshot_service() -> SnapshotService:
    if _snapshot_service is None:
        configure()
    return _snapshot_service


__all__ = [
    "KeyedLock",
    "SnapshotRegistry",
    "SnapshotService",
    "VolumeService",
    "configure",
    "get_snapshot_service",
    "get_volume_service",
]
