"""In-process storage backend for the ``local`` provider.

Keeps objects in a dictionary keyed by region, bucket and key. Suitable for
development and tests; nothing survives the process.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import TYPE_CHECKING
from uuid import uuid4

from vault_service.infra.storage.exceptions import StorageFileNotFoundError

from .protocol import PutResult

if TYPE_CHECKING:
    from vault_service.core.settings.vault import StorageRegion

logger = logging.getLogger(__name__)


class InMemoryBackend:
    """Dictionary-backed StorageBackend.

    Example:
        backend = InMemoryBackend()
        await backend.startup()
        await backend.put(region, "a.bin", b"data", bucket="vault-local")
        assert await backend.get(region, "a.bin", bucket="vault-local") == b"data"
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], bytes] = {}
        self._ready = False

    @property
    def backend_name(self) -> str:
        return "memory"

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def startup(self) -> None:
        self._ready = True

    async def shutdown(self) -> None:
        self._ready = False

    async def health_check(self) -> bool:
        return self._ready

    async def put(
        self,
        region: StorageRegion,
        key: str,
        data: bytes,
        *,
        bucket: str,
        metadata: dict[str, str] | None = None,
    ) -> PutResult:
        start = time.perf_counter()
        self._objects[(region.id, bucket, key)] = bytes(data)
        return PutResult(
            version_id=uuid4().hex,
            etag=hashlib.md5(data, usedforsecurity=False).hexdigest(),
            latency=time.perf_counter() - start,
        )

    async def get(self, region: StorageRegion, key: str, *, bucket: str) -> bytes:
        try:
            return self._objects[(region.id, bucket, key)]
        except KeyError:
            raise StorageFileNotFoundError(
                f"Object not found: {bucket}/{key}",
                key=key,
                metadata={"bucket": bucket, "region": region.id},
            ) from None

    async def delete(self, region: StorageRegion, key: str, *, bucket: str) -> None:
        self._objects.pop((region.id, bucket, key), None)

    def keys(self, region_id: str, bucket: str | None = None) -> list[str]:
        """Keys stored in a region, optionally restricted to one bucket."""
        return sorted(
            key
            for (rid, bkt, key) in self._objects
            if rid == region_id and (bucket is None or bkt == bucket)
        )

    def __len__(self) -> int:
        return len(self._objects)
