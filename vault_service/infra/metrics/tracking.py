"""Helpers that record cross-cutting metrics (retries)."""

from __future__ import annotations

from vault_service.infra.metrics import prometheus


def track_retry_attempt(operation: str, attempt_number: int) -> None:
    """Track a retry attempt.

    Args:
        operation: Name of the operation being retried
        attempt_number: Current attempt number (1-indexed)
    """
    prometheus.retry_attempts_total.labels(
        operation=operation,
        attempt_number=str(attempt_number),
    ).inc()


def track_retry_exhausted(operation: str) -> None:
    """Track when all retry attempts are exhausted."""
    prometheus.retry_exhausted_total.labels(operation=operation).inc()


def track_retry_success(operation: str, attempts_needed: int) -> None:
    """Track successful operation after retries.

    Args:
        operation: Name of the operation
        attempts_needed: Number of attempts needed to succeed
    """
    prometheus.retry_success_after_failure_total.labels(
        operation=operation,
        attempts_needed=str(attempts_needed),
    ).inc()
