"""OpenTelemetry helpers.

The engine only depends on the OpenTelemetry API. Without an SDK configured
by the host application every span is a no-op, so instrumentation costs
nothing in tests or standalone use.
"""

from __future__ import annotations

from opentelemetry import trace


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for creating custom spans.

    Args:
        name: Tracer name, typically __name__ of the module.

    Returns:
        Tracer instance for creating spans.
    """
    return trace.get_tracer(name)
