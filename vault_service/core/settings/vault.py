"""Encrypted-object storage engine configuration settings.

Environment variables use the VAULT_ prefix and ``__`` for nested fields.
Example: VAULT_PROVIDER="aws_s3"
         VAULT_CREDENTIALS__ACCESS_KEY="AKIA..."
         VAULT_BACKUP__RETENTION_DAYS=30

The region table is normally supplied through conf/vault.yaml:

    provider: aws_s3
    regions:
      - id: us-east-1
        name: US East (N. Virginia)
        primary: true
      - id: us-west-2
        name: US West (Oregon)
        endpoint: https://s3.us-west-2.amazonaws.com
        backup: true
    backup:
      replication_regions: [us-west-2]

Supports:
- AWS S3 and S3-compatible services (MinIO)
- Google Cloud Storage
- Azure Blob Storage (credentials validated, no adapter shipped)
- Local in-process storage for development and tests
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_vault_yaml_source


class StorageProvider(StrEnum):
    """Supported object-store provider families."""

    AWS_S3 = "aws_s3"
    GOOGLE_CLOUD_STORAGE = "google_cloud_storage"
    AZURE_BLOB_STORAGE = "azure_blob_storage"
    MINIO = "minio"
    LOCAL = "local"


class CostTier(StrEnum):
    """Pricing profile of a region."""

    STANDARD = "standard"
    PREMIUM = "premium"
    ARCHIVE = "archive"


class StorageRegion(BaseModel):
    """A configured storage region.

    Attributes:
        id: Region identifier (e.g., "us-east-1")
        name: Human-readable name
        endpoint: Endpoint URL; None uses the provider default
        provider: Provider override; None inherits the engine provider
        primary: Uploads are written synchronously to this region
        backup: Region is eligible as a replication/backup target
        cost_tier: Pricing profile used to scale cost estimates
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1, max_length=63)
    name: str = ""
    endpoint: str | None = None
    provider: StorageProvider | None = None
    primary: bool = False
    backup: bool = False
    cost_tier: CostTier = CostTier.STANDARD


class ProviderCredentials(BaseModel):
    """Opaque provider credentials. Never logged; redacted on dump."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    access_key: SecretStr | None = None
    secret_key: SecretStr | None = None
    project_id: str | None = None
    connection_string: SecretStr | None = None


class SecurityPolicy(BaseModel):
    """Integrity and durability switches."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    encryption: bool = True
    checksum: bool = True
    versioning: bool = True
    replication: bool = True


class OptimizationPolicy(BaseModel):
    """Content and cost optimization switches."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    compression: bool = True
    deduplication: bool = True
    lifecycle_management: bool = True
    cost_optimization: bool = True


class BackupPolicy(BaseModel):
    """Backup policy.

    ``replication_regions`` lists the target region ids for both replication
    and backup copies. When empty, every region flagged ``backup`` is used.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    retention_days: int = Field(default=90, ge=1, le=3650)
    replication_regions: tuple[str, ...] = ()


def _default_regions() -> tuple[StorageRegion, ...]:
    return (
        StorageRegion(
            id="us-east-1",
            name="US East (N. Virginia)",
            primary=True,
        ),
        StorageRegion(
            id="us-west-2",
            name="US West (Oregon)",
            backup=True,
        ),
    )


class VaultSettings(BaseSettings):
    """Storage engine settings.

    Environment variables use VAULT_ prefix.
    Example: VAULT_PROVIDER=minio

    Loaded once when the engine is constructed and frozen afterwards, so it is
    safe to read from concurrent tasks without locking.
    """

    # ──────────────────────────────────────────────────────────────
    # Provider and regions
    # ──────────────────────────────────────────────────────────────

    provider: StorageProvider = Field(
        default=StorageProvider.AWS_S3,
        description="Provider family used for every region without an explicit override",
    )

    regions: tuple[StorageRegion, ...] = Field(
        default_factory=_default_regions,
        description="Ordered region table; exactly one region must be primary",
    )

    credentials: ProviderCredentials = Field(
        default_factory=ProviderCredentials,
        description="Provider credentials (opaque, never logged)",
    )

    bucket_prefix: str = Field(
        default="vault",
        min_length=1,
        max_length=40,
        description="Bucket names are derived as '{bucket_prefix}-{region_id}'",
    )

    # ──────────────────────────────────────────────────────────────
    # Policies
    # ──────────────────────────────────────────────────────────────

    security: SecurityPolicy = Field(default_factory=SecurityPolicy)
    optimization: OptimizationPolicy = Field(default_factory=OptimizationPolicy)
    backup: BackupPolicy = Field(default_factory=BackupPolicy)

    # ──────────────────────────────────────────────────────────────
    # Cost accounting
    # ──────────────────────────────────────────────────────────────

    base_cost_per_gb: float = Field(
        default=0.023,
        ge=0.0,
        description="Baseline monthly price per GiB in USD (S3 Standard)",
    )

    # ──────────────────────────────────────────────────────────────
    # Timeouts and retries
    # ──────────────────────────────────────────────────────────────

    operation_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Default timeout in seconds for a single backend call",
    )

    upload_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for the primary put before giving up",
    )

    upload_retry_initial_delay: float = Field(
        default=0.5,
        ge=0.0,
        le=30.0,
        description="First backoff delay in seconds between primary put attempts",
    )

    sweep_operation_timeout: float = Field(
        default=60.0,
        gt=0.0,
        le=3600.0,
        description="Per-object timeout in seconds for replication/backup copies",
    )

    max_sweep_attempts: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Copy attempts before an object is marked terminally failed",
    )

    max_pool_connections: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum number of connections per backend client",
    )

    # ──────────────────────────────────────────────────────────────
    # Background jobs
    # ──────────────────────────────────────────────────────────────

    replication_interval_seconds: int = Field(default=3600, ge=1)
    backup_interval_seconds: int = Field(default=86400, ge=1)
    metrics_interval_seconds: int = Field(default=300, ge=1)

    event_log_size: int = Field(
        default=1000,
        ge=0,
        description="Number of recent storage events kept in memory",
    )

    # ──────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────

    def provider_for(self, region: StorageRegion) -> StorageProvider:
        """Resolve the provider serving a region."""
        return region.provider or self.provider

    def redacted(self) -> dict[str, Any]:
        """Dump settings with every credential masked.

        SecretStr fields serialize as '**********'; the project id is masked
        explicitly because it is a plain string.
        """
        data = self.model_dump(mode="json")
        creds = data.get("credentials", {})
        for name, value in creds.items():
            if value is not None:
                creds[name] = "**********"
        return data

    # ──────────────────────────────────────────────────────────────
    # Model Configuration
    # ──────────────────────────────────────────────────────────────

    model_config = SettingsConfigDict(
        env_prefix="VAULT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="forbid",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_vault_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )
