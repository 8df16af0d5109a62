"""Storage backend protocol and normalized data structures.

This module defines:
- Protocol interface that all storage backends must implement
- Normalized put result for cross-backend compatibility

A backend serves every region of one provider family. The region is passed
on each call so a single client pool can route to per-region endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from vault_service.core.settings.vault import StorageRegion


@dataclass(frozen=True)
class PutResult:
    """Result of a put operation.

    Attributes:
        version_id: Version ID (for versioned buckets)
        etag: Entity tag of the stored object
        latency: Round-trip time of the provider call in seconds
    """

    version_id: str | None
    etag: str | None
    latency: float


class StorageBackend(Protocol):
    """Protocol interface for storage backends.

    All storage backends (S3, GCS, in-memory) implement this protocol.
    Uses structural typing (Protocol) rather than inheritance for flexibility.

    Every method raises ``BackendError`` subclasses wrapping the provider's
    native error with the logical key; callers never see vendor exceptions.
    """

    @property
    def backend_name(self) -> str:
        """Name of the backend (e.g., 's3', 'gcs', 'memory')."""
        ...

    @property
    def is_ready(self) -> bool:
        """Whether startup() completed and shutdown() has not been called."""
        ...

    async def startup(self) -> None:
        """Open client connections. Idempotent."""
        ...

    async def shutdown(self) -> None:
        """Release client connections. Idempotent."""
        ...

    async def health_check(self) -> bool:
        """Check that the backend is reachable. Never raises."""
        ...

    async def put(
        self,
        region: StorageRegion,
        key: str,
        data: bytes,
        *,
        bucket: str,
        metadata: dict[str, str] | None = None,
    ) -> PutResult:
        """Store ``data`` under ``key`` in ``bucket`` of ``region``."""
        ...

    async def get(self, region: StorageRegion, key: str, *, bucket: str) -> bytes:
        """Read the full object.

        Raises:
            StorageFileNotFoundError: The object does not exist.
        """
        ...

    async def delete(self, region: StorageRegion, key: str, *, bucket: str) -> None:
        """Delete the object. Deleting a missing object is not an error."""
        ...
