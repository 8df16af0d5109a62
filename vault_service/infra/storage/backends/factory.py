"""Backend factory for creating storage backends dynamically."""

from __future__ import annotations

from typing import TYPE_CHECKING

from vault_service.core.settings.vault import StorageProvider
from vault_service.infra.storage.exceptions import StorageNotConfiguredError

if TYPE_CHECKING:
    from vault_service.core.settings.vault import VaultSettings
    from vault_service.infra.storage.regions import RegionRegistry

    from .protocol import StorageBackend


def create_storage_backend(
    settings: VaultSettings,
    registry: RegionRegistry,
    provider: StorageProvider | None = None,
) -> StorageBackend:
    """Factory function to create the backend serving one provider family.

    Args:
        settings: Engine settings
        registry: Region registry used to pick the regions and buckets
        provider: Provider family (defaults to ``settings.provider``)

    Returns:
        Backend implementing the StorageBackend protocol (not started)

    Raises:
        StorageNotConfiguredError: If the provider is unsupported or serves no region

    Example:
        backend = create_storage_backend(settings, RegionRegistry(settings))
        await backend.startup()
        await backend.put(region, "users/42/img.bin", data, bucket="vault-us-east-1")
        await backend.shutdown()
    """
    provider = provider or settings.provider
    regions = [region for region in registry.regions if registry.provider_for(region) is provider]
    buckets = {region.id: registry.bucket_for(region) for region in regions}

    match provider:
        case StorageProvider.AWS_S3 | StorageProvider.MINIO:
            # Both S3 and MinIO use the same S3-compatible backend
            from .s3.backend import S3Backend

            return S3Backend(settings, regions, buckets, provider=provider)

        case StorageProvider.GOOGLE_CLOUD_STORAGE:
            from .gcs.backend import GCSBackend

            return GCSBackend(settings, regions, buckets)

        case StorageProvider.LOCAL:
            from .memory import InMemoryBackend

            return InMemoryBackend()

        case _:
            supported = [
                StorageProvider.AWS_S3,
                StorageProvider.MINIO,
                StorageProvider.GOOGLE_CLOUD_STORAGE,
                StorageProvider.LOCAL,
            ]
            msg = (
                f"Unsupported storage provider: {provider}. "
                f"Supported providers: {', '.join(p.value for p in supported)}"
            )
            raise StorageNotConfiguredError(msg, metadata={"provider": provider.value})


def create_storage_backends(
    settings: VaultSettings,
    registry: RegionRegistry,
) -> dict[StorageProvider, StorageBackend]:
    """Create one backend per provider family referenced by the regions."""
    providers = dict.fromkeys(registry.provider_for(region) for region in registry.regions)
    return {provider: create_storage_backend(settings, registry, provider) for provider in providers}
