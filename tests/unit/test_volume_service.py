"""
Unit tests for VolumeService.
"""

import threading
from unittest.mock import call, patch

import pytest

from zfs_csi.api.services import VolumeService
from zfs_csi.api.services.lookup import find_by_id
from zfs_csi.cli.lib.command import CommandResult
from zfs_csi.exceptions import (
    InternalError,
    InvalidArgument,
    RecordStoreError,
    VolumeAlreadyExists,
    VolumeConflict,
    VolumeNotFound,
)
from zfs_csi.records.local import LocalRecordStore

GIB = 1024**3

FAILED = CommandResult(cmd=["zfs"], returncode=1, output="cannot create 'tank/data1': pool is busy")
OK = CommandResult(cmd=["zfs"], returncode=0, output="")


class TestCreateVolume:
    """Tests for VolumeService.create_volume."""

    @pytest.mark.unit
    def test_create(self, volume_service, record_store, mock_zfs):
        volume = volume_service.create_volume("v1", "data1", 10 * GIB, compression="lz4")

        assert volume.id == "v1"
        assert volume.path == "/tank/data1"
        assert volume.pool == "tank"
        assert volume.resource_version == "1"
        assert find_by_id(record_store, "v1") == volume
        mock_zfs.assert_called_once_with(
            ["zfs", "create", "-o", f"quota={10 * GIB}", "-o", "compression=lz4", "tank/data1"],
            timeout=None,
            cancel=None,
        )

    @pytest.mark.unit
    def test_create_in_other_pool(self, volume_service, mock_zfs):
        volume = volume_service.create_volume("v1", "data1", GIB, pool="fast/csi")

        assert volume.path == "/fast/csi/data1"
        assert mock_zfs.call_args.args[0][-1] == "fast/csi/data1"

    @pytest.mark.unit
    def test_command_failure_leaves_no_record(self, volume_service, record_store, mock_zfs):
        mock_zfs.return_value = FAILED

        with pytest.raises(InternalError, match="failed to allocate volume v1") as exc_info:
            volume_service.create_volume("v1", "data1", GIB)

        assert "pool is busy" in exc_info.value.output
        assert record_store.list() == []

    @pytest.mark.unit
    def test_persist_failure_destroys_dataset(self, volume_service, record_store, mock_zfs):
        with patch.object(record_store, "create", side_effect=RecordStoreError("boom")):
            with pytest.raises(InternalError, match="failed to persist volume v1: boom"):
                volume_service.create_volume("v1", "data1", GIB)

        assert mock_zfs.call_count == 2
        assert mock_zfs.call_args_list[1] == call(
            ["zfs", "destroy", "-R", "tank/data1"], timeout=None, cancel=None
        )

    @pytest.mark.unit
    def test_persist_failure_reports_orphan(self, volume_service, record_store, mock_zfs):
        mock_zfs.side_effect = [OK, CommandResult(cmd=["zfs"], returncode=1, output="dataset is busy")]

        with patch.object(record_store, "create", side_effect=RecordStoreError("boom")):
            with pytest.raises(InternalError, match="compensating destroy of tank/data1 failed") as exc_info:
                volume_service.create_volume("v1", "data1", GIB)

        assert exc_info.value.output == "dataset is busy"

    @pytest.mark.unit
    def test_retry_returns_existing(self, volume_service, mock_zfs):
        first = volume_service.create_volume("v1", "data1", GIB)
        second = volume_service.create_volume("v1", "data1", GIB)

        assert second == first
        assert mock_zfs.call_count == 1

    @pytest.mark.unit
    def test_name_taken_by_other_volume(self, volume_service, mock_zfs):
        volume_service.create_volume("v1", "data1", GIB)

        with pytest.raises(VolumeAlreadyExists, match="already used by volume v1"):
            volume_service.create_volume("v2", "data1", GIB)
        assert mock_zfs.call_count == 1

    @pytest.mark.unit
    def test_same_id_different_size(self, volume_service, mock_zfs):
        volume_service.create_volume("v1", "data1", GIB)

        with pytest.raises(VolumeAlreadyExists):
            volume_service.create_volume("v1", "data1", 2 * GIB)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "changes",
        [{"pool": "fast"}, {"compression": "lz4"}, {"dedup": "on"}, {"ephemeral": True}],
    )
    def test_retry_with_other_properties(self, volume_service, mock_zfs, changes):
        volume_service.create_volume("v1", "data1", GIB)

        with pytest.raises(VolumeAlreadyExists):
            volume_service.create_volume("v1", "data1", GIB, **changes)
        assert mock_zfs.call_count == 1

    @pytest.mark.unit
    def test_id_taken_by_other_name(self, volume_service, record_store, mock_zfs):
        volume_service.create_volume("v1", "data1", GIB)

        with pytest.raises(VolumeAlreadyExists, match="Volume ID v1 is already used by volume data1"):
            volume_service.create_volume("v1", "data2", GIB)

        assert [v.name for v in record_store.list()] == ["data1"]
        assert mock_zfs.call_count == 1

    @pytest.mark.unit
    def test_ensure_reports_creation(self, volume_service, mock_zfs):
        first, created = volume_service.ensure_volume("v1", "data1", GIB)
        second, created_again = volume_service.ensure_volume("v1", "data1", GIB)

        assert created is True
        assert created_again is False
        assert second == first

    @pytest.mark.unit
    def test_unwritable_store_destroys_dataset(self, temp_dir, cfg, mock_zfs):
        blocker = temp_dir / "not-a-dir"
        blocker.write_text("")
        service = VolumeService(LocalRecordStore(blocker), cfg=cfg)

        with pytest.raises(InternalError, match="failed to persist volume v1"):
            service.create_volume("v1", "data1", GIB)

        assert [c.args[0][1] for c in mock_zfs.call_args_list] == ["create", "destroy"]

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"volume_id": "", "name": "data1", "size": GIB},
            {"volume_id": "v1", "name": "bad/name", "size": GIB},
            {"volume_id": "v1", "name": "data1", "size": 0},
            {"volume_id": "v1", "name": "data1", "size": GIB, "compression": "zip"},
            {"volume_id": "v1", "name": "data1", "size": GIB, "dedup": "maybe"},
        ],
    )
    def test_invalid_arguments(self, volume_service, mock_zfs, kwargs):
        with pytest.raises(InvalidArgument):
            volume_service.create_volume(**kwargs)
        mock_zfs.assert_not_called()


class TestUpdateVolume:
    """Tests for VolumeService.update_volume."""

    @pytest.mark.unit
    def test_update_record_only(self, volume_service, mock_zfs):
        created = volume_service.create_volume("v1", "data1", GIB)
        mock_zfs.reset_mock()

        updated = volume_service.update_volume("v1", created.model_copy(update={"size": 2 * GIB}))

        assert updated.size == 2 * GIB
        assert updated.resource_version == "2"
        mock_zfs.assert_not_called()

    @pytest.mark.unit
    def test_path_is_recomputed(self, volume_service, mock_zfs):
        created = volume_service.create_volume("v1", "data1", GIB)

        updated = volume_service.update_volume("v1", created.model_copy(update={"path": "/elsewhere"}))

        assert updated.path == "/tank/data1"

    @pytest.mark.unit
    def test_not_found(self, volume_service, mock_zfs):
        created = volume_service.create_volume("v1", "data1", GIB)

        with pytest.raises(VolumeNotFound):
            volume_service.update_volume("v9", created.model_copy(update={"id": "v9"}))

    @pytest.mark.unit
    def test_stale_version(self, volume_service, mock_zfs):
        created = volume_service.create_volume("v1", "data1", GIB)
        volume_service.update_volume("v1", created.model_copy(update={"size": 2 * GIB}))

        with pytest.raises(VolumeConflict):
            volume_service.update_volume("v1", created.model_copy(update={"size": 3 * GIB}))

    @pytest.mark.unit
    def test_rename_rejected(self, volume_service, mock_zfs):
        created = volume_service.create_volume("v1", "data1", GIB)

        with pytest.raises(InvalidArgument):
            volume_service.update_volume("v1", created.model_copy(update={"name": "data2"}))

    @pytest.mark.unit
    def test_invalid_compression_rejected(self, volume_service, mock_zfs):
        created = volume_service.create_volume("v1", "data1", GIB)

        with pytest.raises(InvalidArgument):
            volume_service.update_volume("v1", created.model_copy(update={"compression": "zip"}))


class TestDeleteVolume:
    """Tests for VolumeService.delete_volume."""

    @pytest.mark.unit
    def test_delete(self, volume_service, record_store, mock_zfs):
        volume_service.create_volume("v1", "data1", GIB)
        mock_zfs.reset_mock()

        volume_service.delete_volume("v1")

        mock_zfs.assert_called_once_with(["zfs", "destroy", "-R", "tank/data1"], timeout=None, cancel=None)
        assert record_store.list() == []

    @pytest.mark.unit
    def test_delete_unknown_is_noop(self, volume_service, mock_zfs):
        volume_service.delete_volume("v404")
        volume_service.delete_volume("v404")

        mock_zfs.assert_not_called()

    @pytest.mark.unit
    def test_destroy_failure_keeps_record(self, volume_service, record_store, mock_zfs):
        volume_service.create_volume("v1", "data1", GIB)
        mock_zfs.return_value = CommandResult(cmd=["zfs"], returncode=1, output="dataset is busy")

        with pytest.raises(InternalError, match="failed to delete volume v1"):
            volume_service.delete_volume("v1")

        assert find_by_id(record_store, "v1").name == "data1"

    @pytest.mark.unit
    def test_lookup_failure_is_success(self, volume_service, record_store, mock_zfs):
        with patch.object(record_store, "list", side_effect=RecordStoreError("connection refused")):
            volume_service.delete_volume("v1")

        mock_zfs.assert_not_called()

    @pytest.mark.unit
    def test_record_removal_failure(self, volume_service, record_store, mock_zfs):
        volume_service.create_volume("v1", "data1", GIB)

        error = RecordStoreError("etcd unavailable", status_code=503)
        with patch.object(record_store, "delete", side_effect=error):
            with pytest.raises(InternalError, match="etcd unavailable") as exc_info:
                volume_service.delete_volume("v1")

        assert exc_info.value.__cause__ is error
        assert exc_info.value.__cause__.status_code == 503


class TestListVolumes:
    """Tests for VolumeService.list_volumes."""

    @pytest.mark.unit
    def test_sorted_and_filtered(self, volume_service, mock_zfs):
        volume_service.create_volume("v2", "beta", GIB)
        volume_service.create_volume("v1", "alpha", GIB)
        volume_service.create_volume("v3", "gamma", GIB, pool="fast")

        assert [v.name for v in volume_service.list_volumes()] == ["alpha", "beta", "gamma"]
        assert [v.name for v in volume_service.list_volumes(pool="fast")] == ["gamma"]


class TestConcurrency:
    """Concurrent requests through VolumeService."""

    @staticmethod
    def _blocking_zfs(mock_zfs):
        """Make the first zfs call wait until released; return (entered, release)."""
        entered = threading.Event()
        release = threading.Event()

        def run(cmd, timeout=None, cancel=None):
            if not entered.is_set():
                entered.set()
                assert release.wait(timeout=5)
            return CommandResult(cmd=cmd, returncode=0, output="")

        mock_zfs.side_effect = run
        return entered, release

    @pytest.mark.unit
    def test_delete_waits_for_create(self, volume_service, record_store, mock_zfs):
        entered, release = self._blocking_zfs(mock_zfs)
        errors = []

        def create():
            try:
                volume_service.create_volume("v1", "data1", GIB)
            except Exception as e:
                errors.append(e)

        creator = threading.Thread(target=create)
        deleter = threading.Thread(target=volume_service.delete_volume, args=("v1",))
        creator.start()
        assert entered.wait(timeout=5)
        deleter.start()
        deleter.join(timeout=0.3)

        assert deleter.is_alive()
        assert mock_zfs.call_count == 1

        release.set()
        creator.join(timeout=5)
        deleter.join(timeout=5)

        assert errors == []
        assert [c.args[0][1] for c in mock_zfs.call_args_list] == ["create", "destroy"]
        assert record_store.list() == []

    @pytest.mark.unit
    def test_same_name_creates_one_dataset(self, volume_service, record_store, mock_zfs):
        entered, release = self._blocking_zfs(mock_zfs)
        results = {}

        def create(volume_id):
            try:
                results[volume_id] = volume_service.create_volume(volume_id, "data1", GIB)
            except VolumeAlreadyExists as e:
                results[volume_id] = e

        first = threading.Thread(target=create, args=("v1",))
        second = threading.Thread(target=create, args=("v2",))
        first.start()
        assert entered.wait(timeout=5)
        second.start()
        second.join(timeout=0.3)
        assert second.is_alive()

        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert results["v1"].name == "data1"
        assert isinstance(results["v2"], VolumeAlreadyExists)
        assert mock_zfs.call_count == 1
        assert [v.id for v in record_store.list()] == ["v1"]
