#!/usr/bin/env python3
"""
Entry point for zfs-csi CLI tool.
"""

import sys

from zfs_csi.cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
