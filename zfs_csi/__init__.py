"""
ZFS CSI Driver - volume and snapshot lifecycle engine.

This package provisions ZFS datasets as storage volumes, keeps one metadata
record per volume in a record store, and populates new volumes from
snapshots or sibling volumes. It ships a REST API and a CLI over the engine.
"""

__version__ = "0.1.0"
__all__ = ["api", "cli", "records"]
