"""OpenTelemetry tracing setup."""

from typing import Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from shared.logging import get_logger

logger = get_logger("tracing")


def configure_tracing(
    service_name: str,
    otel_exporter: Optional[str] = None,
    *,
    enable_console: bool = False,
    app: Optional[FastAPI] = None,
) -> TracerProvider:
    """Install a tracer provider and instrument FastAPI and httpx."""
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if otel_exporter:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otel_exporter)))
    if enable_console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)

    logger.info("Tracing configured", service=service_name, exporter=otel_exporter, console=enable_console)
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the active provider."""
    return trace.get_tracer(name)
