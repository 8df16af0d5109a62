"""Unit tests for the S3 and GCS backend adapters.

Provider clients are replaced with mocks; no network access is needed.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from botocore.exceptions import ClientError, EndpointConnectionError
from google.api_core import exceptions as gcs_exceptions
import pytest

from vault_service.core.settings import (
    CostTier,
    ProviderCredentials,
    StorageProvider,
    StorageRegion,
)
from vault_service.infra.storage.backends.gcs.backend import GCSBackend, map_gcs_error
from vault_service.infra.storage.backends.s3.backend import S3Backend
from vault_service.infra.storage.exceptions import (
    BackendError,
    BackendUnavailableError,
    StorageFileNotFoundError,
    StoragePermissionError,
    StorageTimeoutError,
    StorageValidationError,
)

from tests.utils import make_settings

REGION = StorageRegion(id="us-east-1", primary=True)
ARCHIVE_REGION = StorageRegion(
    id="eu-north-1",
    endpoint="https://s3.eu-north-1.amazonaws.com",
    backup=True,
    cost_tier=CostTier.ARCHIVE,
)
BUCKET = "vault-us-east-1"


def _client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} message"},
            "ResponseMetadata": {"RequestId": "r"},
        },
        operation,
    )


# =============================================================================
# S3
# =============================================================================


@pytest.fixture
def s3_backend():
    settings = make_settings(
        provider=StorageProvider.AWS_S3,
        regions=(REGION, ARCHIVE_REGION),
        credentials=ProviderCredentials(access_key="AKIATEST", secret_key="secret"),
    )
    backend = S3Backend(
        settings,
        settings.regions,
        {REGION.id: BUCKET, ARCHIVE_REGION.id: "vault-eu-north-1"},
    )
    backend._clients = {REGION.id: AsyncMock(), ARCHIVE_REGION.id: AsyncMock()}
    return backend


@pytest.mark.unit
class TestS3Backend:
    """Test S3Backend against a mocked aioboto3 client."""

    def test_client_config_per_region(self, s3_backend):
        config = s3_backend._get_client_config(ARCHIVE_REGION)

        assert config == {
            "region_name": "eu-north-1",
            "aws_access_key_id": "AKIATEST",
            "aws_secret_access_key": "secret",
            "endpoint_url": "https://s3.eu-north-1.amazonaws.com",
        }
        assert "endpoint_url" not in s3_backend._get_client_config(REGION)

    @pytest.mark.asyncio
    async def test_put_returns_normalized_result(self, s3_backend):
        client = s3_backend._clients[REGION.id]
        client.put_object.return_value = {"ETag": '"abc123"', "VersionId": "v1"}

        result = await s3_backend.put(
            REGION, "a.bin", b"data", bucket=BUCKET, metadata={"checksum-sha256": "x"}
        )

        assert result.etag == "abc123"
        assert result.version_id == "v1"
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == BUCKET
        assert kwargs["Key"] == "a.bin"
        assert kwargs["Metadata"] == {"checksum-sha256": "x"}
        assert kwargs["StorageClass"] == "STANDARD"

    @pytest.mark.asyncio
    async def test_archive_region_uses_archive_storage_class(self, s3_backend):
        client = s3_backend._clients[ARCHIVE_REGION.id]
        client.put_object.return_value = {}

        result = await s3_backend.put(ARCHIVE_REGION, "a.bin", b"data", bucket="vault-eu-north-1")

        assert client.put_object.call_args.kwargs["StorageClass"] == "GLACIER_IR"
        assert result.etag is None

    @pytest.mark.asyncio
    async def test_minio_sends_no_storage_class(self, s3_backend):
        s3_backend.provider = StorageProvider.MINIO
        client = s3_backend._clients[REGION.id]
        client.put_object.return_value = {}

        await s3_backend.put(REGION, "a.bin", b"data", bucket=BUCKET)

        assert "StorageClass" not in client.put_object.call_args.kwargs

    @pytest.mark.asyncio
    async def test_get_reads_body(self, s3_backend):
        stream = MagicMock()
        stream.read = AsyncMock(return_value=b"payload")
        body = MagicMock()
        body.__aenter__ = AsyncMock(return_value=stream)
        body.__aexit__ = AsyncMock(return_value=False)
        s3_backend._clients[REGION.id].get_object.return_value = {"Body": body}

        assert await s3_backend.get(REGION, "a.bin", bucket=BUCKET) == b"payload"

    @pytest.mark.asyncio
    async def test_missing_object_maps_to_not_found(self, s3_backend):
        s3_backend._clients[REGION.id].get_object.side_effect = _client_error("NoSuchKey")

        with pytest.raises(StorageFileNotFoundError) as exc_info:
            await s3_backend.get(REGION, "a.bin", bucket=BUCKET)

        assert exc_info.value.key == "a.bin"
        assert exc_info.value.extra["aws_error_code"] == "NoSuchKey"
        assert isinstance(exc_info.value.cause, ClientError)

    @pytest.mark.asyncio
    async def test_throttling_maps_to_unavailable(self, s3_backend):
        s3_backend._clients[REGION.id].put_object.side_effect = _client_error(
            "SlowDown", "PutObject"
        )

        with pytest.raises(BackendUnavailableError) as exc_info:
            await s3_backend.put(REGION, "a.bin", b"data", bucket=BUCKET)

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_unavailable(self, s3_backend):
        s3_backend._clients[REGION.id].delete_object.side_effect = EndpointConnectionError(
            endpoint_url="https://s3.us-east-1.amazonaws.com"
        )

        with pytest.raises(BackendUnavailableError):
            await s3_backend.delete(REGION, "a.bin", bucket=BUCKET)

    @pytest.mark.asyncio
    async def test_region_without_client_is_unavailable(self, s3_backend):
        s3_backend._clients.clear()

        with pytest.raises(BackendUnavailableError, match="no open client"):
            await s3_backend.get(REGION, "a.bin", bucket=BUCKET)

    @pytest.mark.asyncio
    async def test_health_check_requires_startup(self, s3_backend):
        assert not s3_backend.is_ready
        assert await s3_backend.health_check() is False


# =============================================================================
# GCS
# =============================================================================


@pytest.fixture
def gcs_backend():
    settings = make_settings(
        provider=StorageProvider.GOOGLE_CLOUD_STORAGE,
        regions=(StorageRegion(id="europe-west1", primary=True),),
        credentials=ProviderCredentials(project_id="vault-project"),
    )
    backend = GCSBackend(settings, settings.regions, {"europe-west1": "vault-europe-west1"})
    backend._client = MagicMock()
    return backend


@pytest.mark.unit
class TestGCSBackend:
    """Test GCSBackend against a mocked google-cloud-storage client."""

    @pytest.fixture
    def region(self, gcs_backend):
        return gcs_backend.settings.regions[0]

    @pytest.fixture
    def blob(self, gcs_backend):
        blob = MagicMock()
        blob.generation = 7
        blob.etag = "etag-7"
        gcs_backend._client.bucket.return_value.blob.return_value = blob
        return blob

    @pytest.mark.asyncio
    async def test_put_uploads_blob(self, gcs_backend, region, blob):
        result = await gcs_backend.put(
            region, "a.bin", b"data", bucket="vault-europe-west1", metadata={"k": "v"}
        )

        blob.upload_from_string.assert_called_once_with(
            b"data", content_type="application/octet-stream"
        )
        assert blob.metadata == {"k": "v"}
        assert result.version_id == "7"
        assert result.etag == "etag-7"

    @pytest.mark.asyncio
    async def test_get_downloads_blob(self, gcs_backend, region, blob):
        blob.download_as_bytes.return_value = b"payload"

        assert await gcs_backend.get(region, "a.bin", bucket="vault-europe-west1") == b"payload"

    @pytest.mark.asyncio
    async def test_missing_blob_maps_to_not_found(self, gcs_backend, region, blob):
        blob.download_as_bytes.side_effect = gcs_exceptions.NotFound("no such object")

        with pytest.raises(StorageFileNotFoundError):
            await gcs_backend.get(region, "a.bin", bucket="vault-europe-west1")

    @pytest.mark.asyncio
    async def test_delete_of_missing_blob_succeeds(self, gcs_backend, region, blob):
        blob.delete.side_effect = gcs_exceptions.NotFound("no such object")

        await gcs_backend.delete(region, "a.bin", bucket="vault-europe-west1")

    @pytest.mark.asyncio
    async def test_uninitialized_backend_is_unavailable(self, gcs_backend, region):
        gcs_backend._client = None

        with pytest.raises(BackendUnavailableError):
            await gcs_backend.get(region, "a.bin", bucket="vault-europe-west1")

    @pytest.mark.asyncio
    async def test_health_check_checks_buckets(self, gcs_backend):
        gcs_backend._client.bucket.return_value.exists.return_value = False

        assert await gcs_backend.health_check() is False

        gcs_backend._client.bucket.return_value.exists.return_value = True
        assert await gcs_backend.health_check() is True

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (gcs_exceptions.NotFound("x"), StorageFileNotFoundError),
            (gcs_exceptions.Forbidden("x"), StoragePermissionError),
            (gcs_exceptions.BadRequest("x"), StorageValidationError),
            (gcs_exceptions.GatewayTimeout("x"), StorageTimeoutError),
            (gcs_exceptions.ServiceUnavailable("x"), BackendUnavailableError),
            (gcs_exceptions.TooManyRequests("x"), BackendUnavailableError),
            (gcs_exceptions.Conflict("x"), BackendError),
        ],
    )
    def test_error_mapping(self, error, expected):
        mapped = map_gcs_error(error, "get", "a.bin", "europe-west1")

        assert type(mapped) is expected
        assert mapped.key == "a.bin"
        assert mapped.extra["region"] == "europe-west1"
