"""
Fixtures for API and CLI tests.
"""

import pytest

from zfs_csi.api import services
from zfs_csi.api.services import SnapshotRegistry


@pytest.fixture
def configured(record_store, cfg):
    """Point the process-wide services at the temp record store."""
    services.configure(store=record_store, cfg=cfg, registry=SnapshotRegistry())
    yield services
    services._volume_service = None
    services._snapshot_service = None
