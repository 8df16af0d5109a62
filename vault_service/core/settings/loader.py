"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Testing:
    In tests, clear the cache to force reload:
    get_vault_settings.cache_clear()

    Or construct settings directly:
    settings = VaultSettings(provider="local", ...)
"""

from __future__ import annotations

from functools import lru_cache

from .logs import LoggingSettings
from .vault import VaultSettings


@lru_cache(maxsize=1)
def get_vault_settings() -> VaultSettings:
    """Get cached storage engine settings.

    Returns:
        Validated and frozen VaultSettings instance.
    """
    return VaultSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()
