"""
Uvicorn server entrypoint for the ZFS CSI Driver API.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from zfs_csi.cli.lib.config import load_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zfs-csi-api", description="ZFS CSI Driver REST API server")
    parser.add_argument("--host", default=None, help="Bind host (default: from config or 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: from config or 8080)")
    parser.add_argument("--log-level", default=None, help="Log level (default: from config or info)")
    return parser


def main(argv: list[str] | None = None) -> int:
    cfg = load_config()
    args = build_parser().parse_args(argv)
    host = args.host or cfg.api_host
    port = args.port or cfg.api_port
    log_level = (args.log_level or cfg.log_level).lower()
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("zfs_csi.api.main:app", host=host, port=port, log_level=log_level)
    return 0
