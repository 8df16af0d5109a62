"""Prometheus metrics infrastructure."""

from vault_service.infra.metrics.prometheus import REGISTRY, render_latest
from vault_service.infra.metrics.tracking import (
    track_retry_attempt,
    track_retry_exhausted,
    track_retry_success,
)

__all__ = [
    "REGISTRY",
    "render_latest",
    "track_retry_attempt",
    "track_retry_exhausted",
    "track_retry_success",
]
