from __future__ import annotations

from vault_service.utils.retry.decorator import retry
from vault_service.utils.retry.exceptions import RetryError, RetryStatistics
from vault_service.utils.retry.strategies import RetryStrategy

__all__ = ["retry", "RetryError", "RetryStatistics", "RetryStrategy"]
