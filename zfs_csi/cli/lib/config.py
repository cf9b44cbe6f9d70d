"""
Configuration loader for the ZFS CSI driver.

Environment-specific values (record store backend, kubeconfig, pool, state
directory, etc.) come from an INI file and a few environment overrides rather
than from code.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_PATH = Path("/etc/zfs-csi/driver.conf")
DEFAULT_KUBECONFIG_PATH = "~/.kube/config"

RECORD_STORES = ("local", "kube")


@dataclass(frozen=True)
class CSIConfig:
    record_store: str = "local"
    kubeconfig_path: str = DEFAULT_KUBECONFIG_PATH
    state_dir: Optional[Path] = None
    snapshot_dir: str = "/csi-data-dir"
    default_pool: str = "tank"
    zfs_cmd: str = "zfs"
    command_timeout: float = 0  # seconds, 0 disables
    api_host: str = "127.0.0.1"
    api_port: int = 8080
    log_level: str = "info"
    verify_ssl: bool = True
    request_timeout: int = 30


def _config_path() -> Path:
    env = os.environ.get("ZFS_CSI_CONFIG_PATH")
    if env:
        return Path(env)
    return DEFAULT_CONFIG_PATH


def _read_ini(path: Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path, encoding="utf-8")
    return parser


def load_config() -> CSIConfig:
    """
    Load config from `ZFS_CSI_CONFIG_PATH` or `/etc/zfs-csi/driver.conf`.

    `KUBECONFIG` and `ZFS_CSI_STATE_DIR` override the file. Missing files are
    not an error; defaults are returned.
    """
    parser = _read_ini(_config_path())
    section = parser["driver"] if parser.has_section("driver") else {}

    def _get(key: str, default: str) -> str:
        if isinstance(section, dict):
            return str(section.get(key, default)).strip()
        return str(section.get(key, fallback=default)).strip()

    def _get_int(key: str, default: int) -> int:
        try:
            return int(_get(key, str(default)))
        except ValueError:
            return default

    def _get_float(key: str, default: float) -> float:
        try:
            return max(float(_get(key, str(default))), 0.0)
        except ValueError:
            return default

    def _get_bool(key: str, default: bool) -> bool:
        raw = _get(key, "true" if default else "false").lower()
        if raw in ("1", "true", "yes", "on"):
            return True
        if raw in ("0", "false", "no", "off"):
            return False
        return default

    record_store = _get("record_store", "local").lower()
    if record_store not in RECORD_STORES:
        record_store = "local"

    kubeconfig_path = os.environ.get("KUBECONFIG") or _get("kubeconfig_path", DEFAULT_KUBECONFIG_PATH)

    state_dir_raw = os.environ.get("ZFS_CSI_STATE_DIR") or _get("state_dir", "")
    state_dir = Path(state_dir_raw) if state_dir_raw else None

    return CSIConfig(
        record_store=record_store,
        kubeconfig_path=kubeconfig_path,
        state_dir=state_dir,
        snapshot_dir=_get("snapshot_dir", "/csi-data-dir"),
        default_pool=_get("default_pool", "tank"),
        zfs_cmd=_get("zfs_cmd", "zfs"),
        command_timeout=_get_float("command_timeout", 0),
        api_host=_get("api_host", "127.0.0.1"),
        api_port=_get_int("api_port", 8080),
        log_level=_get("log_level", "info").lower(),
        verify_ssl=_get_bool("verify_ssl", True),
        request_timeout=_get_int("request_timeout", 30),
    )
