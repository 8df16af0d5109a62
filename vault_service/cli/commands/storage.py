"""Storage engine commands.

This module provides CLI commands for the encrypted-object engine:
- Backend connectivity checks
- Storing an already-encrypted object, optionally verifying the round trip
- Metrics in Prometheus exposition format
"""

import base64
from pathlib import Path
import sys

import click
from pydantic import ValidationError

from vault_service.cli.utils import coro, error, format_bytes, info, section, success, warning
from vault_service.core.exceptions import AppException
from vault_service.core.settings import VaultSettings
from vault_service.infra.metrics.prometheus import render_latest
from vault_service.infra.storage import StorageEngine, StoredObjectRequest


def _load_settings() -> VaultSettings:
    try:
        return VaultSettings()
    except ValidationError as e:
        error(f"Configuration could not be loaded: {e}")
        sys.exit(1)


@click.group(name="storage")
def storage() -> None:
    """Encrypted-object storage commands."""


@storage.command(name="health")
@coro
async def health() -> None:
    """Initialize the engine and check every backend."""
    info("Checking storage backends...")

    engine = StorageEngine(_load_settings(), background_jobs=False)
    try:
        await engine.initialize()
        results = await engine.collect_metrics()
    except AppException as e:
        error(f"Storage engine failed to start: {e.detail}")
        sys.exit(1)
    finally:
        await engine.stop()

    section("Backend Health")
    for backend, healthy in results.items():
        if healthy:
            success(f"{backend}: healthy")
        else:
            error(f"{backend}: unhealthy")

    if not all(results.values()):
        sys.exit(1)


@storage.command(name="put")
@click.argument("ciphertext_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--object-id", required=True, help="Logical object id")
@click.option("--key", "object_key", required=True, help="Object key within the bucket")
@click.option("--wrapped-dek", required=True, help="Wrapped data-encryption key")
@click.option("--dek-id", default=None, help="Key id of the wrapping key")
@click.option("--iv", "iv_b64", required=True, help="Base64 initialization vector")
@click.option("--tag", "tag_b64", required=True, help="Base64 authentication tag")
@click.option("--bucket", default=None, help="Bucket override")
@click.option("--verify/--no-verify", default=False, help="Read the object back and compare")
@click.option("--wait/--no-wait", default=True, help="Wait for replication and backup copies")
@coro
async def put(
    ciphertext_file: Path,
    object_id: str,
    object_key: str,
    wrapped_dek: str,
    dek_id: str | None,
    iv_b64: str,
    tag_b64: str,
    bucket: str | None,
    verify: bool,
    wait: bool,
) -> None:
    """Store an already-encrypted object.

    CIPHERTEXT_FILE holds the raw ciphertext bytes.

    Examples:
        vault-service storage put doc.enc --object-id doc-1 --key users/42/doc-1.bin \\
            --wrapped-dek ... --iv ... --tag ...
    """
    try:
        request = StoredObjectRequest(
            object_id=object_id,
            object_key=object_key,
            bucket=bucket,
            wrapped_dek=wrapped_dek,
            dek_id=dek_id,
            ciphertext_b64=base64.b64encode(ciphertext_file.read_bytes()).decode("ascii"),
            iv_b64=iv_b64,
            tag_b64=tag_b64,
        )
    except ValidationError as e:
        error(f"Invalid request: {e}")
        sys.exit(1)

    engine = StorageEngine(_load_settings(), background_jobs=False)
    try:
        try:
            result = await engine.store_encrypted_object(request)
        except AppException as e:
            error(f"Upload failed [{e.type}]: {e.detail}")
            sys.exit(1)

        success(
            f"Stored {result.bucket}/{result.object_key} in {result.region} "
            f"({format_bytes(result.size)})"
        )
        click.echo(result.model_dump_json(indent=2))

        if verify:
            data = await engine.retrieve_encrypted_object(result.object_key, bucket=result.bucket)
            if data == request.payload():
                success("Round trip verified")
            else:
                error("Retrieved bytes differ from the uploaded payload")
                sys.exit(1)

        if wait:
            await engine.replication.wait_idle()
            await engine.backup.wait_idle()
            status = engine.get_object_status(result.object_key, bucket=result.bucket)
            click.echo(f"Replication: {status.replication_status.value}")
            click.echo(f"Backup:      {status.backup_status.value}")
            if "failed" in (status.replication_status.value, status.backup_status.value):
                warning("Some copies failed; they are retried by the periodic sweep")
    finally:
        await engine.stop()


@storage.command(name="metrics")
def metrics() -> None:
    """Print the storage metrics registry in Prometheus exposition format."""
    click.echo(render_latest().decode("utf-8"))
