"""
Volume management commands.
"""

import uuid
from typing import Optional

import typer

from zfs_csi.api.services import get_snapshot_service, get_volume_service
from zfs_csi.api.services.provision import provision_volume
from zfs_csi.cli.lib.validators import parse_size
from zfs_csi.exceptions import ZFSCSIException
from zfs_csi.models import Volume

app = typer.Typer(help="Volume management commands")


def _describe(vol: Volume) -> str:
    props = [f"size={vol.size}", f"path={vol.path}"]
    if vol.compression:
        props.append(f"compression={vol.compression}")
    if vol.dedup:
        props.append(f"dedup={vol.dedup}")
    if vol.ephemeral:
        props.append("ephemeral")
    return f"{vol.id} {vol.dataset} " + " ".join(props)


@app.command()
def create(
    name: str = typer.Argument(..., help="Volume name"),
    size: str = typer.Option(..., "--size", help="Size in bytes, or with a K/M/G/T suffix"),
    volume_id: Optional[str] = typer.Option(None, "--id", help="Volume ID (default: random UUID)"),
    pool: Optional[str] = typer.Option(None, "--pool", help="ZFS pool (default from config)"),
    compression: str = typer.Option("", "--compression", help="ZFS compression property"),
    dedup: str = typer.Option("", "--dedup", help="ZFS dedup property"),
    ephemeral: bool = typer.Option(False, "--ephemeral", help="Mark the volume ephemeral"),
    from_snapshot: Optional[str] = typer.Option(None, "--from-snapshot", help="Populate from snapshot ID"),
    from_volume: Optional[str] = typer.Option(None, "--from-volume", help="Populate from volume ID"),
):
    """
    Create a new volume.

    Creates a ZFS dataset with a quota, records it, and optionally fills it
    from a snapshot or another volume.
    """
    try:
        size_bytes = parse_size(size)
        volume_id = volume_id or str(uuid.uuid4())

        typer.echo(f"Creating volume: {name} ({volume_id})")

        vol = provision_volume(
            get_volume_service(),
            get_snapshot_service(),
            volume_id,
            name,
            size_bytes,
            compression=compression,
            dedup=dedup,
            pool=pool,
            ephemeral=ephemeral,
            source_snapshot_id=from_snapshot,
            source_volume_id=from_volume,
        )
        typer.echo(f"  Created dataset: {vol.dataset}")

        typer.echo(f"Volume {name} created successfully")

    except (ValueError, ZFSCSIException) as e:
        typer.echo(f"Error creating volume: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def update(
    volume_id: str = typer.Argument(..., help="Volume ID"),
    size: Optional[str] = typer.Option(None, "--size", help="New recorded size"),
    compression: Optional[str] = typer.Option(None, "--compression", help="New recorded compression"),
    dedup: Optional[str] = typer.Option(None, "--dedup", help="New recorded dedup"),
):
    """
    Update a volume's metadata record.

    Only the record changes; the dataset is not resized or retagged.
    """
    try:
        service = get_volume_service()
        current = service.get_volume_by_id(volume_id)

        changes = {}
        if size is not None:
            changes["size"] = parse_size(size)
        if compression is not None:
            changes["compression"] = compression
        if dedup is not None:
            changes["dedup"] = dedup

        vol = service.update_volume(volume_id, current.model_copy(update=changes))
        typer.echo(f"Volume {vol.name} updated successfully")

    except (ValueError, ZFSCSIException) as e:
        typer.echo(f"Error updating volume: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def delete(
    volume_id: str = typer.Argument(..., help="Volume ID"),
):
    """
    Delete a volume.

    Recursively destroys the ZFS dataset and removes its record.
    """
    try:
        typer.echo(f"Deleting volume: {volume_id}")
        get_volume_service().delete_volume(volume_id)
        typer.echo(f"Volume {volume_id} deleted successfully")

    except ZFSCSIException as e:
        typer.echo(f"Error deleting volume: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def get(
    volume_id: Optional[str] = typer.Argument(None, help="Volume ID"),
    name: Optional[str] = typer.Option(None, "--name", help="Look up by volume name instead"),
):
    """
    Show a volume.
    """
    try:
        service = get_volume_service()
        if name:
            vol = service.get_volume_by_name(name)
        elif volume_id:
            vol = service.get_volume_by_id(volume_id)
        else:
            raise ValueError("Provide a volume ID or --name")
        typer.echo(_describe(vol))

    except (ValueError, ZFSCSIException) as e:
        typer.echo(f"Error getting volume: {e}", err=True)
        raise typer.Exit(1)


@app.command("list")
def list_volumes(
    pool: Optional[str] = typer.Option(None, "--pool", help="Filter by pool"),
):
    """
    List volumes.
    """
    try:
        volumes = get_volume_service().list_volumes(pool=pool)
        if not volumes:
            typer.echo("No volumes found")
            return
        for vol in volumes:
            typer.echo(_describe(vol))
    except ZFSCSIException as e:
        typer.echo(f"Error listing volumes: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def restore(
    volume_id: str = typer.Argument(..., help="Volume ID to populate"),
    snapshot_id: str = typer.Option(..., "--snapshot", help="Snapshot ID"),
):
    """
    Populate a volume from a snapshot archive.
    """
    try:
        path = get_volume_service().resolve_path(volume_id)
        get_snapshot_service().restore_from_snapshot(snapshot_id, path)
        typer.echo(f"Restored snapshot {snapshot_id} into {path}")
    except ZFSCSIException as e:
        typer.echo(f"Error restoring snapshot: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def clone(
    volume_id: str = typer.Argument(..., help="Volume ID to populate"),
    source: str = typer.Option(..., "--source", help="Source volume ID"),
):
    """
    Populate a volume with a copy of another volume's contents.
    """
    try:
        path = get_volume_service().resolve_path(volume_id)
        get_snapshot_service().clone_from_volume(source, path)
        typer.echo(f"Cloned volume {source} into {path}")
    except ZFSCSIException as e:
        typer.echo(f"Error cloning volume: {e}", err=True)
        raise typer.Exit(1)
