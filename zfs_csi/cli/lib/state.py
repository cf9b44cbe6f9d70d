"""
Local persistent state helpers.

Used by the local record store and by the snapshot registry to keep JSON
documents under a single state directory.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from zfs_csi.cli.lib.config import load_config


def get_state_dir() -> Path:
    """
    Resolve the directory used for persistent state.

    Priority:
    1) `ZFS_CSI_STATE_DIR` env var or `state_dir` in the config file
    2) `/var/lib/zfs-csi` if writable
    3) `$XDG_STATE_HOME/zfs-csi` or `~/.local/state/zfs-csi` as fallback
    """
    cfg = load_config()
    if cfg.state_dir:
        return cfg.state_dir

    candidates: list[Path] = [Path("/var/lib/zfs-csi")]
    xdg_state_home = os.environ.get("XDG_STATE_HOME")
    if xdg_state_home:
        candidates.append(Path(xdg_state_home) / "zfs-csi")
    else:
        candidates.append(Path.home() / ".local" / "state" / "zfs-csi")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            probe = candidate / ".write_test"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    return Path(".zfs-csi-state")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with open(path, "r", encoding="utf-8") as file:
        return json.load(file)


def atomic_write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as file:
            json.dump(data, file, indent=2, ensure_ascii=False, sort_keys=True)
            file.write("\n")
        os.replace(tmp_path, path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
