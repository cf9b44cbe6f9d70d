"""JSON file backed record store."""

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from zfs_csi.cli.lib.state import atomic_write_json, get_state_dir, load_json, utc_now_iso
from zfs_csi.exceptions import RecordConflict, RecordNotFound, RecordStoreError
from zfs_csi.models import Volume

from .base import RecordStore


class LocalRecordStore(RecordStore):
    """Record store kept in `<state_dir>/volumes.json`.

    Each record carries an integer resource version, bumped on every update,
    so stale writers are detected the same way as with the remote store.
    """

    def __init__(self, state_dir: Optional[Path] = None):
        self.path = Path(state_dir or get_state_dir()) / "volumes.json"
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        try:
            items = load_json(self.path, {"items": []}).get("items", [])
            return {item["name"]: item for item in items}
        except (OSError, ValueError, KeyError, AttributeError) as e:
            raise RecordStoreError(f"Failed to read records from {self.path}: {e}")

    def _save(self, records: Dict[str, Dict[str, Any]]) -> None:
        try:
            atomic_write_json(self.path, {"items": sorted(records.values(), key=lambda x: x.get("name", ""))})
        except (OSError, TypeError, ValueError) as e:
            raise RecordStoreError(f"Failed to write records to {self.path}: {e}")

    def _to_volume(self, item: Dict[str, Any]) -> Volume:
        try:
            return Volume.model_validate(item)
        except ValueError as e:
            raise RecordStoreError(f"Malformed record in {self.path}: {e}")

    def create(self, volume: Volume) -> Volume:
        with self._lock:
            records = self._load()
            if volume.name in records:
                raise RecordConflict(f"Record {volume.name} already exists", status_code=409)
            item = volume.model_dump(mode="json")
            item["resource_version"] = "1"
            if not item.get("created_at"):
                item["created_at"] = utc_now_iso()
            records[volume.name] = item
            self._save(records)
            return self._to_volume(item)

    def update(self, volume: Volume) -> Volume:
        with self._lock:
            records = self._load()
            current = records.get(volume.name)
            if current is None:
                raise RecordNotFound(f"Record {volume.name} not found", status_code=404)
            version = current.get("resource_version") or "0"
            if volume.resource_version is not None and volume.resource_version != version:
                raise RecordConflict(
                    f"Record {volume.name} was modified (have {volume.resource_version}, stored {version})",
                    status_code=409,
                )
            item = volume.model_dump(mode="json")
            try:
                item["resource_version"] = str(int(version) + 1)
            except ValueError:
                raise RecordStoreError(f"Record {volume.name} has a malformed resource version: {version}")
            item["created_at"] = current.get("created_at") or item.get("created_at")
            records[volume.name] = item
            self._save(records)
            return self._to_volume(item)

    def delete(self, name: str) -> None:
        with self._lock:
            records = self._load()
            if name not in records:
                raise RecordNotFound(f"Record {name} not found", status_code=404)
            del records[name]
            self._save(records)

    def get(self, name: str) -> Volume:
        with self._lock:
            item = self._load().get(name)
        if item is None:
            raise RecordNotFound(f"Record {name} not found", status_code=404)
        return self._to_volume(item)

    def list(self) -> List[Volume]:
        with self._lock:
            records = self._load()
        return [self._to_volume(item) for item in records.values()]
