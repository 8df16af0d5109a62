"""Pydantic Settings v2 configuration.

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. YAML/conf.d files (conf/vault.yaml, conf/vault.d/*.yaml)
    3. Environment variables (VAULT_*, LOG_*)
    4. .env file (development only)
    5. secrets_dir (Kubernetes/Docker secrets)
"""

from __future__ import annotations

from .loader import get_logging_settings, get_vault_settings
from .logs import LoggingSettings
from .vault import (
    BackupPolicy,
    CostTier,
    OptimizationPolicy,
    ProviderCredentials,
    SecurityPolicy,
    StorageProvider,
    StorageRegion,
    VaultSettings,
)

__all__ = [
    "BackupPolicy",
    "CostTier",
    "LoggingSettings",
    "OptimizationPolicy",
    "ProviderCredentials",
    "SecurityPolicy",
    "StorageProvider",
    "StorageRegion",
    "VaultSettings",
    "get_logging_settings",
    "get_vault_settings",
]
