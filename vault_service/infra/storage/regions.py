"""Region registry and configuration validation.

``validate_configuration`` runs once during engine initialization and is
fatal on failure. ``RegionRegistry`` answers placement questions for the
engine and the copy schedulers once the configuration is known to be valid.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import SecretStr

from vault_service.core.exceptions import (
    ConfigError,
    MissingCredentialsError,
    NoPrimaryRegionError,
)
from vault_service.core.settings.vault import CostTier, StorageProvider

if TYPE_CHECKING:
    from vault_service.core.settings.vault import (
        ProviderCredentials,
        StorageRegion,
        VaultSettings,
    )

logger = logging.getLogger(__name__)

# Monthly price multipliers relative to the baseline per-GB rate
COST_TIER_MULTIPLIERS: dict[CostTier, float] = {
    CostTier.STANDARD: 1.0,
    CostTier.PREMIUM: 1.5,
    CostTier.ARCHIVE: 0.4,
}

ARCHIVE_LIFECYCLE_POLICY = "archive-after-30-days"
STANDARD_LIFECYCLE_POLICY = "standard-lifecycle"

BYTES_PER_GB = 1024**3


def _missing_credentials(
    provider: StorageProvider, credentials: ProviderCredentials
) -> list[str]:
    match provider:
        case StorageProvider.AWS_S3 | StorageProvider.MINIO:
            required = {
                "access_key": credentials.access_key,
                "secret_key": credentials.secret_key,
            }
        case StorageProvider.GOOGLE_CLOUD_STORAGE:
            required = {"project_id": credentials.project_id}
        case StorageProvider.AZURE_BLOB_STORAGE:
            required = {"connection_string": credentials.connection_string}
        case _:
            required = {}

    missing = []
    for name, value in required.items():
        raw = value.get_secret_value() if isinstance(value, SecretStr) else value
        if not raw:
            missing.append(name)
    return missing


def validate_configuration(settings: VaultSettings) -> None:
    """Validate the engine configuration.

    Raises:
        NoPrimaryRegionError: No region carries the primary flag.
        ConfigError: More than one primary region, duplicate region ids, or
            a backup-policy target naming an unknown region.
        MissingCredentialsError: A provider in use lacks its credentials.
    """
    region_ids = [region.id for region in settings.regions]
    primaries = [region.id for region in settings.regions if region.primary]

    if not primaries:
        raise NoPrimaryRegionError(extra={"regions": region_ids})
    if len(primaries) > 1:
        raise ConfigError(
            f"Exactly one primary region is allowed, found {len(primaries)}",
            type="multiple-primary-regions",
            extra={"primary_regions": primaries},
        )

    duplicates = sorted({rid for rid in region_ids if region_ids.count(rid) > 1})
    if duplicates:
        raise ConfigError(
            f"Duplicate region ids: {', '.join(duplicates)}",
            type="duplicate-regions",
            extra={"duplicates": duplicates},
        )

    unknown = [rid for rid in settings.backup.replication_regions if rid not in region_ids]
    if unknown:
        raise ConfigError(
            f"Backup policy names unknown regions: {', '.join(unknown)}",
            type="unknown-regions",
            extra={"unknown_regions": unknown},
        )

    # Every provider that serves at least one region needs its credentials
    providers = dict.fromkeys(settings.provider_for(region) for region in settings.regions)
    for provider in providers:
        missing = _missing_credentials(provider, settings.credentials)
        if missing:
            raise MissingCredentialsError(provider=provider.value, missing=missing)

    logger.debug(
        "Storage configuration validated",
        extra={
            "primary_region": primaries[0],
            "regions": region_ids,
            "providers": [p.value for p in providers],
        },
    )


class RegionRegistry:
    """Read-only view over the configured regions.

    Built from a validated configuration; safe to share between tasks.

    Example:
        >>> registry = RegionRegistry(settings)
        >>> registry.primary.id
        'us-east-1'
        >>> registry.bucket_for(registry.primary)
        'vault-us-east-1'
    """

    def __init__(self, settings: VaultSettings) -> None:
        self._settings = settings
        self._regions = {region.id: region for region in settings.regions}

    @property
    def regions(self) -> tuple[StorageRegion, ...]:
        return self._settings.regions

    @property
    def primary(self) -> StorageRegion:
        for region in self._settings.regions:
            if region.primary:
                return region
        raise NoPrimaryRegionError(extra={"regions": list(self._regions)})

    def get(self, region_id: str) -> StorageRegion:
        try:
            return self._regions[region_id]
        except KeyError:
            raise ConfigError(
                f"Unknown storage region '{region_id}'",
                type="unknown-regions",
                extra={"region": region_id},
            ) from None

    def replication_targets(self) -> tuple[StorageRegion, ...]:
        """Regions receiving replication and backup copies.

        Uses the backup policy's target list, falling back to every region
        flagged ``backup``. The primary is never its own target.
        """
        targets = self._settings.backup.replication_regions
        if targets:
            candidates = [self.get(region_id) for region_id in targets]
        else:
            candidates = [region for region in self._settings.regions if region.backup]
        return tuple(region for region in candidates if not region.primary)

    def provider_for(self, region: StorageRegion) -> StorageProvider:
        return self._settings.provider_for(region)

    def bucket_for(self, region: StorageRegion) -> str:
        return f"{self._settings.bucket_prefix}-{region.id}"

    def lifecycle_policy_for(self, region: StorageRegion) -> str:
        if region.cost_tier is CostTier.ARCHIVE:
            return ARCHIVE_LIFECYCLE_POLICY
        return STANDARD_LIFECYCLE_POLICY

    def cost_multiplier(self, region: StorageRegion) -> float:
        return COST_TIER_MULTIPLIERS[region.cost_tier]

    def estimate_cost(self, size_bytes: int, region: StorageRegion) -> float:
        """Monthly cost estimate in USD, rounded to 4 decimal places.

        Non-decreasing in ``size_bytes`` for a fixed region.
        """
        size_gb = size_bytes / BYTES_PER_GB
        cost = self._settings.base_cost_per_gb * size_gb * self.cost_multiplier(region)
        return round(cost, 4)
