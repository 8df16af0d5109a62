"""Storage metrics for Prometheus monitoring.

This module provides metrics for monitoring the encrypted-object engine:
- Backend operation counters and timing (put, get, delete)
- Payload size distribution
- Storage events by type, as seen by the event bus
- Terminal replication/backup failures, for alerting
- Backend health as polled by the metrics collector

All metrics are registered with the shared REGISTRY from the prometheus module.

Usage:
    from vault_service.infra.storage.metrics import (
        record_operation_success,
        record_operation_error,
        record_terminal_failure,
    )

    record_operation_success("put", duration_seconds=0.12, size_bytes=1048576)
    record_operation_error("put", "BackendUnavailableError", duration_seconds=5.0)
    record_terminal_failure("replication", region="us-west-2")
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from vault_service.infra.metrics.prometheus import REGISTRY

# Object-store calls cross regions; covers 10ms to 60s
STORAGE_LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)

# Payload sizes from 1KB to 1GB
STORAGE_SIZE_BUCKETS = (
    1024,
    10240,
    102400,
    1048576,
    10485760,
    104857600,
    1073741824,
)

storage_operations_total = Counter(
    "vault_storage_operations_total",
    "Total storage operations",
    ["operation", "status"],  # operation: store/retrieve/delete/put/get, status: success/error
    registry=REGISTRY,
)

storage_operation_duration_seconds = Histogram(
    "vault_storage_operation_duration_seconds",
    "Storage operation duration in seconds",
    ["operation"],
    buckets=STORAGE_LATENCY_BUCKETS,
    registry=REGISTRY,
)

storage_payload_size_bytes = Histogram(
    "vault_storage_payload_size_bytes",
    "Size of stored/retrieved payloads in bytes",
    ["operation"],
    buckets=STORAGE_SIZE_BUCKETS,
    registry=REGISTRY,
)

storage_connections_active = Gauge(
    "vault_storage_operations_in_progress",
    "Number of storage operations currently in progress",
    registry=REGISTRY,
)

storage_errors_total = Counter(
    "vault_storage_errors_total",
    "Storage operation errors by type",
    ["operation", "error_type"],  # error_type: BackendUnavailableError, StorageTimeoutError, ...
    registry=REGISTRY,
)

storage_events_total = Counter(
    "vault_storage_events_total",
    "Storage events emitted on the event bus",
    ["type", "provider", "region"],
    registry=REGISTRY,
)

storage_cost_estimate_usd = Counter(
    "vault_storage_cost_estimate_usd_total",
    "Cumulative monthly cost estimate of stored objects in USD",
    ["region"],
    registry=REGISTRY,
)

storage_copy_terminal_failures_total = Counter(
    "vault_storage_copy_terminal_failures_total",
    "Objects whose replication or backup reached the retry ceiling",
    ["kind", "region"],  # kind: replication/backup
    registry=REGISTRY,
)

storage_copy_sweep_duration_seconds = Histogram(
    "vault_storage_copy_sweep_duration_seconds",
    "Duration of replication/backup sweeps in seconds",
    ["kind"],
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0),
    registry=REGISTRY,
)

storage_backend_healthy = Gauge(
    "vault_storage_backend_healthy",
    "1 when the last health check of a backend succeeded, 0 otherwise",
    ["backend"],
    registry=REGISTRY,
)

storage_client_initializations = Counter(
    "vault_storage_client_initializations_total",
    "Number of storage backend client initializations",
    ["backend", "status"],  # status: success/error
    registry=REGISTRY,
)


def record_operation_success(
    operation: str,
    duration_seconds: float,
    size_bytes: int | None = None,
) -> None:
    """Record a successful storage operation.

    Args:
        operation: The operation type (e.g., 'store', 'put', 'get')
        duration_seconds: Operation duration in seconds
        size_bytes: Optional payload size in bytes

    Example:
        >>> record_operation_success("put", 0.12, size_bytes=1048576)
        >>> record_operation_success("delete", 0.02)
    """
    storage_operations_total.labels(operation=operation, status="success").inc()
    storage_operation_duration_seconds.labels(operation=operation).observe(duration_seconds)
    if size_bytes is not None:
        storage_payload_size_bytes.labels(operation=operation).observe(size_bytes)


def record_operation_error(
    operation: str,
    error_type: str,
    duration_seconds: float,
) -> None:
    """Record a failed storage operation.

    Args:
        operation: The operation type (e.g., 'store', 'put', 'get')
        error_type: The error class name (e.g., 'StorageTimeoutError')
        duration_seconds: Operation duration in seconds before failure
    """
    storage_operations_total.labels(operation=operation, status="error").inc()
    storage_operation_duration_seconds.labels(operation=operation).observe(duration_seconds)
    storage_errors_total.labels(operation=operation, error_type=error_type).inc()


def record_terminal_failure(kind: str, region: str) -> None:
    """Count an object that exhausted its replication or backup attempts."""
    storage_copy_terminal_failures_total.labels(kind=kind, region=region).inc()


def record_backend_health(backend: str, healthy: bool) -> None:
    """Publish the outcome of a backend health check."""
    storage_backend_healthy.labels(backend=backend).set(1 if healthy else 0)
