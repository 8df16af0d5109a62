"""Storage operation instrumentation with OpenTelemetry and Prometheus metrics.

Every backend call and every engine operation runs inside
``track_storage_operation`` so that a span and the matching Prometheus
samples are recorded whether the call succeeds or fails.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry.trace import Status, StatusCode

from vault_service.infra.tracing.opentelemetry import get_tracer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_tracer = get_tracer("vault.storage")


@asynccontextmanager
async def track_storage_operation(
    operation: str,
    key: str | None = None,
    bucket: str | None = None,
    region: str | None = None,
    size_bytes: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Track a storage operation with OpenTelemetry spans and Prometheus metrics.

    The yielded dict can be updated by the caller; its entries are added to
    the span as ``storage.result.*`` attributes and ``result_size`` overrides
    the size recorded in the payload histogram.

    Args:
        operation: Operation name (store, retrieve, delete, put, get, replicate, backup)
        key: Object key
        bucket: Bucket name
        region: Region id
        size_bytes: Payload size in bytes
        metadata: Additional metadata to include in span

    Yields:
        A context dictionary that can be updated with additional attributes

    Example:
        async with track_storage_operation("put", key=key, region="us-east-1") as ctx:
            result = await backend.put(region, key, data)
            ctx["version_id"] = result.version_id
    """
    from . import metrics

    start_time = time.perf_counter()
    context: dict[str, Any] = {}

    span_attributes: dict[str, Any] = {
        "storage.operation": operation,
    }
    if key:
        span_attributes["storage.key"] = key
    if bucket:
        span_attributes["storage.bucket"] = bucket
    if region:
        span_attributes["storage.region"] = region
    if size_bytes is not None:
        span_attributes["storage.size_bytes"] = size_bytes
    if metadata:
        for k, v in metadata.items():
            span_attributes[f"storage.metadata.{k}"] = str(v)

    metrics.storage_connections_active.inc()

    with _tracer.start_as_current_span(
        f"vault.storage.{operation}",
        attributes=span_attributes,
    ) as span:
        try:
            yield context

            duration = time.perf_counter() - start_time

            for k, v in context.items():
                span.set_attribute(f"storage.result.{k}", str(v))

            metrics.record_operation_success(
                operation=operation,
                duration_seconds=duration,
                size_bytes=context.get("result_size", size_bytes),
            )
            span.set_status(Status(StatusCode.OK))

        except Exception as e:
            duration = time.perf_counter() - start_time
            metrics.record_operation_error(
                operation=operation,
                error_type=type(e).__name__,
                duration_seconds=duration,
            )
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise

        finally:
            metrics.storage_connections_active.dec()
