from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from crm_access.context import is_acceptable_correlation_id
from crm_access.core.config import Settings


SERVICE_NAME = "crm-access-api"

_provider: TracerProvider | None = None
_exporting = False


def _tracer_provider(service_name: str, environment: str) -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": os.getenv("APP_VERSION", "0.1.0"),
                "deployment.environment": environment,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the global tracer provider; spans are exported when an OTLP endpoint is configured."""

    global _exporting

    if not settings.otel_enabled:
        return None

    provider = _tracer_provider(SERVICE_NAME, settings.app_env)
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint and not _exporting:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        _exporting = True
    return provider


def setup_inmemory_otel(service_name: str = SERVICE_NAME) -> InMemorySpanExporter:
    provider = _tracer_provider(service_name, os.getenv("APP_ENV", "local"))
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def correlation_request_hook(span: Any, scope: dict[str, Any]) -> None:
    # Server spans open before CorrelationIdMiddleware runs, so the header is read here.
    if span is None or not span.is_recording():
        return
    raw = dict(scope.get("headers", [])).get(b"x-correlation-id")
    if not raw:
        return
    value = raw.decode("latin-1")
    if is_acceptable_correlation_id(value):
        span.set_attribute("correlation_id", value)
