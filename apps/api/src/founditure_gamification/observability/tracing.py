"""OpenTelemetry wiring for the HTTP surface and the reconciliation worker."""

from __future__ import annotations

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.semconv.resource import ResourceAttributes

# Probes hit these every few seconds; their spans are noise.
_EXCLUDED_URLS = "healthz,api/v1/health/readyz"

_provider: TracerProvider | None = None


def _span_exporter(endpoint: str | None, headers: str | None) -> SpanExporter:
    if not endpoint:
        return ConsoleSpanExporter()
    pairs = (pair.partition("=") for pair in (headers or "").split(","))
    parsed = {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}
    return OTLPSpanExporter(endpoint=endpoint, headers=parsed or None)


def configure_tracing(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str,
    environment: str,
    exporter_endpoint: str | None = None,
    exporter_headers: str | None = None,
    enabled: bool = True,
) -> TracerProvider | None:
    """Install the SDK provider once per process and instrument ``app``.

    Disabled tracing leaves the default no-op provider in place, so
    :func:`get_tracer` callers keep working without exporting anything.
    """

    global _provider

    if not enabled:
        return None

    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    ResourceAttributes.SERVICE_NAME: service_name,
                    ResourceAttributes.SERVICE_VERSION: service_version,
                    ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
                }
            )
        )
        _provider.add_span_processor(BatchSpanProcessor(_span_exporter(exporter_endpoint, exporter_headers)))
        trace.set_tracer_provider(_provider)
        LoggingInstrumentor().instrument(set_logging_format=False)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_provider, excluded_urls=_EXCLUDED_URLS)
    return _provider


def flush_tracing(timeout_millis: int = 5000) -> bool:
    """Push buffered spans out before shutdown; True when nothing was configured."""

    if _provider is None:
        return True
    return _provider.force_flush(timeout_millis=timeout_millis)


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


__all__ = ["configure_tracing", "flush_tracing", "get_tracer"]
