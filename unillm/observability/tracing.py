"""
unillm - OpenTelemetry Tracing

Spans for streaming provider calls.

Usage:
    from unillm.observability.tracing import setup_tracing, get_tracing_manager

    setup_tracing(service_name="my-app", console_export=True)

    span = get_tracing_manager().start_stream_span("openai", "gpt-4o", "openai")
    try:
        ...
    finally:
        span.end()
"""

import os
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

from .. import __version__


class TracingManager:
    """
    Owns the tracer provider used for stream spans.

    Stream spans are started explicitly and ended by the pipeline rather
    than attached as the current span, because an async generator may be
    resumed from different contexts between two events.
    """

    def __init__(
        self,
        service_name: str = "unillm",
        service_version: str = __version__,
        console_export: bool = False,
        span_processor: Optional[SpanProcessor] = None,
        set_global: bool = False,
    ):
        """
        Initialize tracing.

        Args:
            service_name: Name of the service
            service_version: Version of the service
            console_export: Whether to export spans to console (for debugging)
            span_processor: Extra span processor (e.g. an exporter for tests)
            set_global: Also install the provider as the global tracer provider
        """
        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if console_export:
            self.provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        if span_processor is not None:
            self.provider.add_span_processor(span_processor)

        if set_global:
            trace.set_tracer_provider(self.provider)

        self.tracer = self.provider.get_tracer("unillm", service_version)

    def start_stream_span(
        self,
        provider: str,
        model: str,
        dialect: str,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Span:
        """Start a client span covering one stream; the caller ends it."""
        span_attributes: Dict[str, Any] = {
            "ai.provider": provider,
            "ai.model": model,
            "ai.dialect": dialect,
            "ai.operation": "stream",
        }
        if attributes:
            span_attributes.update({k: v for k, v in attributes.items() if v is not None})
        return self.tracer.start_span(
            f"{provider}.stream",
            kind=SpanKind.CLIENT,
            attributes=span_attributes,
        )

    @staticmethod
    def record_exception(span: Span, exception: BaseException):
        """Record an exception on a span and mark it failed."""
        span.record_exception(exception)
        span.set_status(Status(StatusCode.ERROR, str(exception)))

    def shutdown(self):
        """Flush and shutdown the tracer provider."""
        self.provider.shutdown()


# Module-level instance
_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "unillm",
    console_export: bool = False,
    span_processor: Optional[SpanProcessor] = None,
    set_global: bool = False,
) -> TracingManager:
    """
    Setup tracing.

    OTEL_CONSOLE_EXPORT=true enables the console exporter.
    """
    global _tracing_instance

    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        console_export=console_export,
        span_processor=span_processor,
        set_global=set_global,
    )
    return _tracing_instance


def get_tracing_manager() -> TracingManager:
    """Get the tracing manager, creating a default one on first use."""
    global _tracing_instance
    if _tracing_instance is None:
        _tracing_instance = setup_tracing()
    return _tracing_instance


def reset_tracing():
    """Drop the module-level manager (for testing)."""
    global _tracing_instance
    _tracing_instance = None
