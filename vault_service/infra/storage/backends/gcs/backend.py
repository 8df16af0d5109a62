"""Google Cloud Storage backend implementation.

The google-cloud-storage client is synchronous, so every call is off-loaded
to a worker thread with ``asyncio.to_thread``. GCS buckets are global; the
region only selects the bucket name.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage

from vault_service.infra.storage.exceptions import (
    BackendError,
    BackendUnavailableError,
    StorageError,
    StorageFileNotFoundError,
    StorageNotConfiguredError,
    StoragePermissionError,
    StorageTimeoutError,
    StorageValidationError,
)
from vault_service.infra.storage.metrics import storage_client_initializations

from ..protocol import PutResult

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from vault_service.core.settings.vault import StorageRegion, VaultSettings

logger = logging.getLogger(__name__)


def map_gcs_error(
    error: gcs_exceptions.GoogleAPICallError,
    operation: str,
    key: str,
    region: str,
) -> BackendError:
    """Map a google-api-core error onto the BackendError hierarchy."""
    metadata: dict[str, Any] = {
        "operation": operation,
        "region": region,
        "gcs_error_code": getattr(error, "code", None),
    }
    message = f"{operation.capitalize()} failed: {error.message}"

    match error:
        case gcs_exceptions.NotFound():
            return StorageFileNotFoundError(message, key=key, cause=error, metadata=metadata)
        case gcs_exceptions.Forbidden() | gcs_exceptions.Unauthorized():
            return StoragePermissionError(message, key=key, cause=error, metadata=metadata)
        case gcs_exceptions.RequestRangeNotSatisfiable() | gcs_exceptions.BadRequest():
            return StorageValidationError(message, key=key, cause=error, metadata=metadata)
        case gcs_exceptions.GatewayTimeout() | gcs_exceptions.DeadlineExceeded():
            return StorageTimeoutError(message, key=key, cause=error, metadata=metadata)
        case (
            gcs_exceptions.ServiceUnavailable()
            | gcs_exceptions.TooManyRequests()
            | gcs_exceptions.InternalServerError()
        ):
            return BackendUnavailableError(message, key=key, cause=error, metadata=metadata)
        case _:
            return BackendError(message, key=key, cause=error, metadata=metadata)


class GCSBackend:
    """Google Cloud Storage backend.

    Example:
        backend = GCSBackend(settings, regions, buckets)
        await backend.startup()
        await backend.put(region, "users/42/img.bin", data, bucket="vault-europe-west1")
        await backend.shutdown()
    """

    def __init__(
        self,
        settings: VaultSettings,
        regions: Sequence[StorageRegion],
        buckets: Mapping[str, str],
    ) -> None:
        if not settings.credentials.project_id:
            msg = "GCS backend needs credentials.project_id"
            raise StorageNotConfiguredError(msg)

        self.settings = settings
        self._regions = {region.id: region for region in regions}
        self._buckets = dict(buckets)
        self._client: storage.Client | None = None

    @property
    def backend_name(self) -> str:
        return "gcs"

    @property
    def is_ready(self) -> bool:
        return self._client is not None

    async def startup(self) -> None:
        if self._client is not None:
            logger.debug("GCS backend already initialized")
            return

        project_id = self.settings.credentials.project_id
        logger.info(
            "Initializing GCS backend",
            extra={"project_id": project_id, "regions": list(self._regions)},
        )
        try:
            self._client = await asyncio.to_thread(storage.Client, project=project_id)
        except Exception as e:
            storage_client_initializations.labels(backend=self.backend_name, status="error").inc()
            logger.exception("Failed to initialize GCS backend", extra={"error": str(e)})
            raise StorageError(
                f"Failed to initialize GCS backend: {e}",
                code="STORAGE_INITIALIZATION_ERROR",
            ) from e

        storage_client_initializations.labels(backend=self.backend_name, status="success").inc()
        logger.info("GCS backend initialized successfully")

    async def shutdown(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await asyncio.to_thread(client.close)
        except Exception as e:
            logger.warning(f"Error closing GCS client: {e}")
        logger.info("GCS backend shutdown complete")

    async def health_check(self) -> bool:
        if self._client is None:
            return False

        for region_id, bucket_name in self._buckets.items():
            try:
                exists = await asyncio.to_thread(self._client.bucket(bucket_name).exists)
            except Exception as e:
                logger.warning(
                    "GCS health check failed",
                    extra={"error": str(e), "bucket": bucket_name, "region": region_id},
                )
                return False
            if not exists:
                logger.warning(
                    "GCS bucket missing",
                    extra={"bucket": bucket_name, "region": region_id},
                )
                return False
        return True

    def _blob(self, bucket: str, key: str) -> storage.Blob:
        if self._client is None:
            raise BackendUnavailableError("GCS backend not initialized", key=key)
        return self._client.bucket(bucket).blob(key)

    async def put(
        self,
        region: StorageRegion,
        key: str,
        data: bytes,
        *,
        bucket: str,
        metadata: dict[str, str] | None = None,
    ) -> PutResult:
        blob = self._blob(bucket, key)
        if metadata:
            blob.metadata = metadata

        start = time.perf_counter()
        try:
            await asyncio.to_thread(
                blob.upload_from_string,
                data,
                content_type="application/octet-stream",
            )
        except gcs_exceptions.GoogleAPICallError as e:
            raise map_gcs_error(e, "put", key, region.id) from e
        except (ConnectionError, OSError) as e:
            raise BackendUnavailableError(
                f"GCS put failed for {key}: {e}",
                key=key,
                cause=e,
                metadata={"bucket": bucket, "region": region.id},
            ) from e

        latency = time.perf_counter() - start
        generation = blob.generation
        return PutResult(
            version_id=str(generation) if generation is not None else None,
            etag=blob.etag,
            latency=latency,
        )

    async def get(self, region: StorageRegion, key: str, *, bucket: str) -> bytes:
        blob = self._blob(bucket, key)
        try:
            return await asyncio.to_thread(blob.download_as_bytes)
        except gcs_exceptions.GoogleAPICallError as e:
            raise map_gcs_error(e, "get", key, region.id) from e
        except (ConnectionError, OSError) as e:
            raise BackendUnavailableError(
                f"GCS get failed for {key}: {e}",
                key=key,
                cause=e,
                metadata={"bucket": bucket, "region": region.id},
            ) from e

    async def delete(self, region: StorageRegion, key: str, *, bucket: str) -> None:
        blob = self._blob(bucket, key)
        try:
            await asyncio.to_thread(blob.delete)
        except gcs_exceptions.NotFound:
            logger.debug("GCS object already absent", extra={"key": key, "bucket": bucket})
        except gcs_exceptions.GoogleAPICallError as e:
            raise map_gcs_error(e, "delete", key, region.id) from e
        except (ConnectionError, OSError) as e:
            raise BackendUnavailableError(
                f"GCS delete failed for {key}: {e}",
                key=key,
                cause=e,
                metadata={"bucket": bucket, "region": region.id},
            ) from e
