"""
Pytest configuration and fixtures.
"""

import shutil
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from zfs_csi.api.services import SnapshotRegistry, SnapshotService, VolumeService
from zfs_csi.cli.lib.command import CommandResult
from zfs_csi.cli.lib.config import CSIConfig
from zfs_csi.records.local import LocalRecordStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def cfg(temp_dir):
    """Driver config rooted in the temp directory."""
    return CSIConfig(state_dir=temp_dir, snapshot_dir=str(temp_dir / "snapshots"), default_pool="tank")


@pytest.fixture
def record_store(temp_dir):
    """JSON record store in the temp directory."""
    return LocalRecordStore(temp_dir)


@pytest.fixture
def mock_zfs():
    """Mock the command runner used for zfs; commands succeed by default."""
    with patch("zfs_csi.cli.lib.zfs.run_command") as mock:
        mock.return_value = CommandResult(cmd=["zfs"], returncode=0, output="")
        yield mock


@pytest.fixture
def mock_archive():
    """Mock the command runner used for tar and cp; commands succeed by default."""
    with patch("zfs_csi.cli.lib.archive.run_command") as mock:
        mock.return_value = CommandResult(cmd=["tar"], returncode=0, output="")
        yield mock


@pytest.fixture
def volume_service(record_store, cfg):
    return VolumeService(record_store, cfg=cfg)


@pytest.fixture
def snapshot_service(record_store, cfg, volume_service):
    return SnapshotService(record_store, SnapshotRegistry(), cfg=cfg, locks=volume_service.locks)
