"""S3-compatible storage backend implementation.

Implements the StorageBackend protocol for AWS S3, MinIO, and other
S3-compatible services using aioboto3. One client is opened per region so
that each region can point at its own endpoint.
"""

from __future__ import annotations

from contextlib import AsyncExitStack
import logging
import time
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from vault_service.core.settings.vault import CostTier, StorageProvider
from vault_service.infra.storage.exceptions import (
    BackendUnavailableError,
    StorageError,
    StorageNotConfiguredError,
    map_boto_error,
)
from vault_service.infra.storage.metrics import storage_client_initializations

from ..protocol import PutResult

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from vault_service.core.settings.vault import StorageRegion, VaultSettings

logger = logging.getLogger(__name__)

# AWS storage classes per cost tier; S3-compatible services only get STANDARD
_STORAGE_CLASSES = {
    CostTier.STANDARD: "STANDARD",
    CostTier.PREMIUM: "STANDARD",
    CostTier.ARCHIVE: "GLACIER_IR",
}


class S3Backend:
    """S3-compatible storage backend.

    Implements StorageBackend protocol for AWS S3 and MinIO.

    Example:
        backend = S3Backend(settings, regions, buckets)
        await backend.startup()
        result = await backend.put(region, "users/42/img.bin", data, bucket="vault-us-east-1")
        await backend.shutdown()
    """

    def __init__(
        self,
        settings: VaultSettings,
        regions: Sequence[StorageRegion],
        buckets: Mapping[str, str],
        *,
        provider: StorageProvider = StorageProvider.AWS_S3,
    ) -> None:
        """Initialize S3 backend.

        Args:
            settings: Engine settings carrying credentials and pool sizes
            regions: Regions served by this backend
            buckets: Default bucket name per region id, checked by health checks
            provider: AWS_S3 or MINIO

        Raises:
            StorageNotConfiguredError: If no region is served
        """
        if not regions:
            msg = "S3 backend needs at least one region"
            raise StorageNotConfiguredError(msg)

        self.settings = settings
        self.provider = provider
        self._regions = {region.id: region for region in regions}
        self._buckets = dict(buckets)
        self._session = aioboto3.Session()
        self._clients: dict[str, Any] = {}
        self._exit_stack: AsyncExitStack | None = None

    @property
    def backend_name(self) -> str:
        return "s3" if self.provider is StorageProvider.AWS_S3 else self.provider.value

    @property
    def is_ready(self) -> bool:
        return self._exit_stack is not None

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        """Open one S3 client per region."""
        if self._exit_stack is not None:
            logger.debug("S3 backend already initialized")
            return

        logger.info(
            "Initializing S3 backend",
            extra={"provider": self.provider.value, "regions": list(self._regions)},
        )

        # The engine owns retries; botocore gets a single attempt
        boto_config = Config(
            retries={"max_attempts": 1, "mode": "standard"},
            connect_timeout=self.settings.operation_timeout,
            read_timeout=self.settings.operation_timeout,
            max_pool_connections=self.settings.max_pool_connections,
        )

        stack = AsyncExitStack()
        try:
            for region in self._regions.values():
                client = await stack.enter_async_context(
                    self._session.client(
                        "s3",
                        **self._get_client_config(region),
                        config=boto_config,
                    )
                )
                self._clients[region.id] = client
        except Exception as e:
            await stack.aclose()
            self._clients.clear()
            storage_client_initializations.labels(backend=self.backend_name, status="error").inc()
            logger.exception("Failed to initialize S3 backend", extra={"error": str(e)})
            raise StorageError(
                f"Failed to initialize S3 backend: {e}",
                code="STORAGE_INITIALIZATION_ERROR",
            ) from e

        self._exit_stack = stack
        storage_client_initializations.labels(backend=self.backend_name, status="success").inc()
        logger.info("S3 backend initialized successfully")

    async def shutdown(self) -> None:
        """Close every client gracefully."""
        if self._exit_stack is None:
            logger.debug("S3 backend not initialized, nothing to shutdown")
            return

        logger.info("Shutting down S3 backend")
        try:
            await self._exit_stack.aclose()
        except Exception as e:
            logger.warning(f"Error closing S3 clients: {e}")
        finally:
            self._exit_stack = None
            self._clients.clear()

        logger.info("S3 backend shutdown complete")

    async def health_check(self) -> bool:
        """HEAD every regional bucket.

        Returns:
            True if every bucket is reachable, False otherwise
        """
        if self._exit_stack is None:
            return False

        for region_id, client in self._clients.items():
            bucket = self._buckets.get(region_id)
            if bucket is None:
                continue
            try:
                await client.head_bucket(Bucket=bucket)
            except Exception as e:
                logger.warning(
                    "S3 health check failed",
                    extra={"error": str(e), "bucket": bucket, "region": region_id},
                )
                return False
        return True

    def _get_client_config(self, region: StorageRegion) -> dict[str, Any]:
        config: dict[str, Any] = {"region_name": region.id}

        credentials = self.settings.credentials
        if credentials.access_key is not None and credentials.secret_key is not None:
            config["aws_access_key_id"] = credentials.access_key.get_secret_value()
            config["aws_secret_access_key"] = credentials.secret_key.get_secret_value()

        if region.endpoint:
            config["endpoint_url"] = region.endpoint

        return config

    def _client_for(self, region: StorageRegion, key: str) -> Any:
        client = self._clients.get(region.id)
        if client is None:
            raise BackendUnavailableError(
                f"S3 backend has no open client for region '{region.id}'",
                key=key,
                metadata={"region": region.id, "ready": self.is_ready},
            )
        return client

    # ========================================================================
    # Core Object Operations
    # ========================================================================

    async def put(
        self,
        region: StorageRegion,
        key: str,
        data: bytes,
        *,
        bucket: str,
        metadata: dict[str, str] | None = None,
    ) -> PutResult:
        """Upload an object with a single PutObject call.

        Raises:
            BackendError: If the upload fails
        """
        client = self._client_for(region, key)

        extra_args: dict[str, Any] = {}
        if metadata:
            extra_args["Metadata"] = metadata
        if self.provider is StorageProvider.AWS_S3:
            extra_args["StorageClass"] = _STORAGE_CLASSES[region.cost_tier]

        start = time.perf_counter()
        try:
            response = await client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType="application/octet-stream",
                **extra_args,
            )
        except ClientError as e:
            logger.warning(
                "Failed to upload object to S3",
                extra={"key": key, "bucket": bucket, "region": region.id, "error": str(e)},
            )
            raise map_boto_error(e, operation="put", key=key, region=region.id) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(
                f"S3 put failed for {key}: {e}",
                key=key,
                cause=e,
                metadata={"bucket": bucket, "region": region.id},
            ) from e

        latency = time.perf_counter() - start
        logger.debug(
            "Object uploaded to S3",
            extra={"key": key, "bucket": bucket, "region": region.id, "size_bytes": len(data)},
        )
        return PutResult(
            version_id=response.get("VersionId"),
            etag=response.get("ETag", "").strip('"') or None,
            latency=latency,
        )

    async def get(self, region: StorageRegion, key: str, *, bucket: str) -> bytes:
        """Download an object.

        Raises:
            StorageFileNotFoundError: If object doesn't exist
            BackendError: If download fails
        """
        client = self._client_for(region, key)

        try:
            response = await client.get_object(Bucket=bucket, Key=key)
            async with response["Body"] as stream:
                body = await stream.read()
        except ClientError as e:
            raise map_boto_error(e, operation="get", key=key, region=region.id) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(
                f"S3 get failed for {key}: {e}",
                key=key,
                cause=e,
                metadata={"bucket": bucket, "region": region.id},
            ) from e

        logger.debug(
            "Object downloaded from S3",
            extra={"key": key, "bucket": bucket, "region": region.id, "size_bytes": len(body)},
        )
        return bytes(body)

    async def delete(self, region: StorageRegion, key: str, *, bucket: str) -> None:
        """Delete an object. S3 reports success for missing keys."""
        client = self._client_for(region, key)

        try:
            await client.delete_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise map_boto_error(e, operation="delete", key=key, region=region.id) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(
                f"S3 delete failed for {key}: {e}",
                key=key,
                cause=e,
                metadata={"bucket": bucket, "region": region.id},
            ) from e

        logger.debug("Object deleted from S3", extra={"key": key, "bucket": bucket})
