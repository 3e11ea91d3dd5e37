"""OpenTelemetry bootstrap shared by services."""

from __future__ import annotations

import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

_TRACING_CONFIGURED = False


def configure_tracing(*, service_name: str) -> bool:
    """Install an OTLP span exporter when one is configured through the environment.

    Returns ``True`` when a tracer provider was installed. Without an OTLP
    endpoint this is a no-op, unless ``OTEL_TRACES_EXPORTER`` explicitly asks
    for an exporter, in which case the missing endpoint is an error.
    """

    global _TRACING_CONFIGURED
    if _TRACING_CONFIGURED:
        return False

    exporter_name = (os.getenv("OTEL_TRACES_EXPORTER") or "").strip().lower()
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT") or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    if exporter_name == "none" or (not endpoint and not exporter_name):
        _TRACING_CONFIGURED = True
        return False
    if not endpoint:
        raise RuntimeError(
            "Tracing enabled but OTLP endpoint missing: set OTEL_EXPORTER_OTLP_ENDPOINT "
            "or OTEL_TRACES_EXPORTER=none."
        )

    resolved_name = (os.getenv("OTEL_SERVICE_NAME") or service_name).strip()
    if not resolved_name:
        raise RuntimeError("service_name must be a non-empty string")

    provider = TracerProvider(resource=Resource.create({"service.name": resolved_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(provider)
    _TRACING_CONFIGURED = True
    return True


__all__ = ["configure_tracing"]
