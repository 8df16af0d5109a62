"""Distributed tracing helpers."""

from vault_service.infra.tracing.opentelemetry import get_tracer

__all__ = ["get_tracer"]
