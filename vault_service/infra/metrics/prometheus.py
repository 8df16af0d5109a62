"""Prometheus registry shared by every vault_service metric."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, generate_latest

# Custom registry so the engine's metrics never collide with a host
# application's default registry
REGISTRY = CollectorRegistry()

# ============================================================================
# Retry Metrics
# ============================================================================

retry_attempts_total = Counter(
    "vault_retry_attempts_total",
    "Total number of retry attempts",
    ["operation", "attempt_number"],
    registry=REGISTRY,
)

retry_exhausted_total = Counter(
    "vault_retry_exhausted_total",
    "Total number of operations that exhausted all retries",
    ["operation"],
    registry=REGISTRY,
)

retry_success_after_failure_total = Counter(
    "vault_retry_success_after_failure_total",
    "Total number of operations that succeeded after retry",
    ["operation", "attempts_needed"],
    registry=REGISTRY,
)


def render_latest() -> bytes:
    """Render the registry in the Prometheus text exposition format."""
    return generate_latest(REGISTRY)
