from __future__ import annotations

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor

from buildmart.core.config import Settings


logger = logging.getLogger("buildmart.otel")

_provider: TracerProvider | None = None


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the global tracer provider once. Exporters come from settings."""
    global _provider

    if not settings.otel_enabled:
        return None
    if _provider is not None:
        return _provider

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
    )
    if settings.otel_exporter_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _provider = provider
    logger.info("otel.configured", extra={"event_name": settings.otel_service_name})
    return provider


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def server_request_hook(span: Any, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    headers = dict(scope.get("headers") or [])
    correlation_raw = headers.get(b"x-correlation-id")
    if correlation_raw:
        span.set_attribute("correlation_id", correlation_raw.decode("latin-1"))
    forwarded = headers.get(b"x-forwarded-for")
    if forwarded:
        span.set_attribute("client.address", forwarded.decode("latin-1").split(",")[0].strip())
