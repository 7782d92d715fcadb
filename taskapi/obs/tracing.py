"""OpenTelemetry tracer provider construction."""

from typing import Optional

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
    SimpleSpanProcessor,
)


def build_tracer_provider(
    service_name: str = "tasks-api",
    console_export: bool = False,
    exporter: Optional[SpanExporter] = None,
) -> TracerProvider:
    """Create a provider owned by the caller; never installed as the global one.

    `exporter` is attached with a synchronous processor, which is what tests
    want when they read spans back from an in-memory exporter.
    """
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    return provider
