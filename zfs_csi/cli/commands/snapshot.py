"""
Snapshot management commands.
"""

from typing import Optional

import typer

from zfs_csi.api.services import get_snapshot_service
from zfs_csi.exceptions import ZFSCSIException

app = typer.Typer(help="Snapshot management commands")


@app.command()
def create(
    name: str = typer.Argument(..., help="Snapshot name"),
    volume_id: str = typer.Option(..., "--volume", help="Source volume ID"),
):
    """
    Create a snapshot archive of a volume.
    """
    try:
        typer.echo(f"Creating snapshot: {name} of volume: {volume_id}")
        snap = get_snapshot_service().create_snapshot(name, volume_id)
        typer.echo(f"  Archive: {snap.path} ({snap.size_bytes} bytes)")
        typer.echo(f"Snapshot {name} created successfully ({snap.id})")
    except ZFSCSIException as e:
        typer.echo(f"Error creating snapshot: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def delete(
    snapshot_id: str = typer.Argument(..., help="Snapshot ID"),
):
    """
    Delete a snapshot and its archive.
    """
    try:
        get_snapshot_service().delete_snapshot(snapshot_id)
        typer.echo(f"Snapshot {snapshot_id} deleted successfully")
    except ZFSCSIException as e:
        typer.echo(f"Error deleting snapshot: {e}", err=True)
        raise typer.Exit(1)


@app.command("list")
def list_snapshots(
    volume_id: Optional[str] = typer.Option(None, "--volume", help="Filter by source volume ID"),
):
    """
    List snapshots.
    """
    snapshots = get_snapshot_service().list_snapshots(volume_id)
    if not snapshots:
        typer.echo("No snapshots found")
        return
    for snap in snapshots:
        ready = "ready" if snap.ready_to_use else "pending"
        typer.echo(f"{snap.id} {snap.name} volume={snap.vol_id} size={snap.size_bytes} {ready}")
