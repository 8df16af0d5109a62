"""Unit tests for Pydantic Settings v2 configuration."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from vault_service.core.settings import (
    BackupPolicy,
    CostTier,
    LoggingSettings,
    ProviderCredentials,
    StorageProvider,
    StorageRegion,
    VaultSettings,
    get_vault_settings,
)


@pytest.mark.unit
class TestVaultSettings:
    """Test suite for VaultSettings."""

    def test_defaults(self):
        """Test VaultSettings default values."""
        settings = VaultSettings()

        assert settings.provider is StorageProvider.AWS_S3
        assert [region.id for region in settings.regions] == ["us-east-1", "us-west-2"]
        assert settings.regions[0].primary
        assert settings.bucket_prefix == "vault"
        assert settings.security.checksum is True
        assert settings.optimization.compression is True
        assert settings.backup.retention_days == 90
        assert settings.upload_max_attempts == 3
        assert settings.max_sweep_attempts == 5

    def test_settings_frozen(self):
        """Test that settings instances are frozen (immutable)."""
        settings = VaultSettings()

        with pytest.raises(ValidationError):
            settings.provider = StorageProvider.LOCAL

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            VaultSettings(unknown_option=True)

    def test_bounds_are_enforced(self):
        with pytest.raises(ValidationError):
            VaultSettings(operation_timeout=0)
        with pytest.raises(ValidationError):
            VaultSettings(backup=BackupPolicy(retention_days=0))

    def test_provider_for_region(self):
        settings = VaultSettings(provider=StorageProvider.MINIO)

        assert settings.provider_for(StorageRegion(id="a")) is StorageProvider.MINIO
        gcs = StorageRegion(id="b", provider=StorageProvider.GOOGLE_CLOUD_STORAGE)
        assert settings.provider_for(gcs) is StorageProvider.GOOGLE_CLOUD_STORAGE

    def test_redacted_masks_every_credential(self):
        settings = VaultSettings(
            credentials=ProviderCredentials(
                access_key="AKIAEXAMPLE",
                secret_key="super-secret",
                project_id="acme-prod",
            )
        )

        data = settings.redacted()

        assert data["credentials"] == {
            "access_key": "**********",
            "secret_key": "**********",
            "project_id": "**********",
            "connection_string": None,
        }
        assert "super-secret" not in repr(data)
        assert data["provider"] == "aws_s3"

    def test_credentials_not_in_repr(self):
        settings = VaultSettings(
            credentials=ProviderCredentials(access_key="AKIAEXAMPLE", secret_key="super-secret")
        )

        assert "super-secret" not in repr(settings)


@pytest.mark.unit
class TestProviderCredentials:
    """Test credential validation."""

    def test_half_key_pair_is_accepted_when_loading(self):
        """Completeness is checked by the engine, not while loading settings."""
        credentials = ProviderCredentials(access_key="AKIAEXAMPLE")

        assert credentials.access_key.get_secret_value() == "AKIAEXAMPLE"
        assert credentials.secret_key is None

    def test_no_keys_is_valid(self):
        credentials = ProviderCredentials(project_id="acme")

        assert credentials.access_key is None
        assert credentials.secret_key is None


@pytest.mark.unit
class TestSettingsSources:
    """Test environment and YAML configuration sources."""

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("VAULT_PROVIDER", "local")
        monkeypatch.setenv("VAULT_BACKUP__RETENTION_DAYS", "30")
        monkeypatch.setenv(
            "VAULT_REGIONS", '[{"id": "dev-1", "primary": true, "cost_tier": "premium"}]'
        )

        settings = VaultSettings()

        assert settings.provider is StorageProvider.LOCAL
        assert settings.backup.retention_days == 30
        assert settings.regions == (
            StorageRegion(id="dev-1", primary=True, cost_tier=CostTier.PREMIUM),
        )

    def test_yaml_with_conf_d_overrides(self, monkeypatch, tmp_path):
        (tmp_path / "vault.yaml").write_text(
            "provider: local\n"
            "bucket_prefix: acme\n"
            "regions:\n"
            "  - id: local-a\n"
            "    primary: true\n"
            "  - id: local-b\n"
            "    backup: true\n"
        )
        (tmp_path / "vault.d").mkdir()
        (tmp_path / "vault.d" / "10-retention.yaml").write_text("backup:\n  retention_days: 7\n")
        monkeypatch.setenv("VAULT_CONFIG_DIR", str(tmp_path))
        monkeypatch.setenv("VAULT_BUCKET_PREFIX", "ignored")

        settings = VaultSettings()

        assert settings.provider is StorageProvider.LOCAL
        assert settings.bucket_prefix == "acme"
        assert [region.id for region in settings.regions] == ["local-a", "local-b"]
        assert settings.backup.retention_days == 7

    def test_init_kwargs_take_precedence(self, monkeypatch):
        monkeypatch.setenv("VAULT_BUCKET_PREFIX", "from-env")

        assert VaultSettings(bucket_prefix="explicit").bucket_prefix == "explicit"

    def test_loader_is_cached(self, monkeypatch):
        get_vault_settings.cache_clear()
        monkeypatch.setenv("VAULT_PROVIDER", "minio")
        try:
            first = get_vault_settings()
            monkeypatch.setenv("VAULT_PROVIDER", "local")

            assert get_vault_settings() is first
            assert first.provider is StorageProvider.MINIO
        finally:
            get_vault_settings.cache_clear()


@pytest.mark.unit
class TestLoggingSettings:
    """Test suite for LoggingSettings."""

    def test_logging_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LOG_SERVICE_NAME", "vault-worker")

        settings = LoggingSettings()

        kwargs = settings.to_logging_kwargs()
        assert kwargs["log_level"] == "DEBUG"
        assert kwargs["json_logs"] is True
        assert kwargs["service_name"] == "vault-worker"

    def test_invalid_level_rejected(self):
        with pytest.raises(ValidationError):
            LoggingSettings(level="LOUD")
