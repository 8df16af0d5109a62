"""Test utilities and helper functions.

Usage:
    from tests.utils import FlakyBackend, make_request, make_settings

    settings = make_settings(max_sweep_attempts=2)
    request = make_request("users/42/doc.bin", ciphertext=b"...")
"""

from __future__ import annotations

import base64
from typing import Any

from vault_service.core.settings import StorageProvider, StorageRegion, VaultSettings
from vault_service.infra.storage import InMemoryBackend, StoredObjectRequest
from vault_service.infra.storage.exceptions import BackendUnavailableError

PRIMARY = "local-a"
SECONDARY = "local-b"
PRIMARY_BUCKET = f"vault-{PRIMARY}"
SECONDARY_BUCKET = f"vault-{SECONDARY}"


# ============================================================================
# Settings
# ============================================================================


def make_settings(**overrides: Any) -> VaultSettings:
    """Build settings for two local regions with fast retries.

    Keyword arguments override any field, e.g. ``make_settings(max_sweep_attempts=2)``.
    """
    values: dict[str, Any] = {
        "provider": StorageProvider.LOCAL,
        "regions": (
            StorageRegion(id=PRIMARY, name="Local A", primary=True),
            StorageRegion(id=SECONDARY, name="Local B", backup=True),
        ),
        "bucket_prefix": "vault",
        "upload_retry_initial_delay": 0.0,
        "operation_timeout": 5.0,
        "sweep_operation_timeout": 5.0,
    }
    values.update(overrides)
    return VaultSettings(**values)


# ============================================================================
# Backends
# ============================================================================


class FlakyBackend(InMemoryBackend):
    """In-memory backend whose puts fail for selected regions."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_regions: set[str] = set()
        self.put_calls = 0
        self.startups = 0

    async def startup(self) -> None:
        self.startups += 1
        await super().startup()

    async def put(self, region, key, data, *, bucket, metadata=None):
        self.put_calls += 1
        if region.id in self.fail_regions:
            raise BackendUnavailableError(
                f"Simulated outage in {region.id}",
                key=key,
                metadata={"region": region.id},
            )
        return await super().put(region, key, data, bucket=bucket, metadata=metadata)


# ============================================================================
# Requests
# ============================================================================


def make_request(
    object_key: str = "users/42/doc.bin",
    *,
    ciphertext: bytes = b"ciphertext-" * 64,
    iv: bytes = b"0123456789ab",
    tag: bytes = b"tag-tag-tag-tag!",
    object_id: str | None = None,
    **overrides: Any,
) -> StoredObjectRequest:
    """Build a request whose payload is ``ciphertext + iv + tag``."""
    values: dict[str, Any] = {
        "object_id": object_id or object_key.rsplit("/", 1)[-1],
        "object_key": object_key,
        "wrapped_dek": base64.b64encode(b"wrapped-dek").decode(),
        "dek_id": "kek-1",
        "ciphertext_b64": base64.b64encode(ciphertext).decode(),
        "iv_b64": base64.b64encode(iv).decode(),
        "tag_b64": base64.b64encode(tag).decode(),
    }
    values.update(overrides)
    return StoredObjectRequest(**values)
