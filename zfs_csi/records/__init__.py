"""Metadata record stores for volumes.

- LocalRecordStore: JSON file in the state directory
- KubeRecordStore: ZFSVolume custom resources on a Kubernetes cluster
"""

from typing import Optional

from zfs_csi.cli.lib.config import CSIConfig, load_config

from .base import RecordStore
from .kube import KubeRecordStore
from .local import LocalRecordStore


def get_record_store(cfg: Optional[CSIConfig] = None) -> RecordStore:
    """Build the record store selected by configuration."""
    cfg = cfg or load_config()
    if cfg.record_store == "kube":
        return KubeRecordStore.from_kubeconfig(
            cfg.kubeconfig_path, timeout=cfg.request_timeout, verify_ssl=cfg.verify_ssl
        )
    return LocalRecordStore(cfg.state_dir)


__all__ = ["RecordStore", "LocalRecordStore", "KubeRecordStore", "get_record_store"]
