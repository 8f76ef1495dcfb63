"""
OpenTelemetry tracing configuration.

Spans are created for each pipeline stage (llm.generate, llm.parse,
maps.text_search, maps.get_details) and for inbound HTTP requests via the
FastAPI instrumentation.

Configuration:
- OTEL_SERVICE_NAME: Service name (default: place_search_api)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint; spans are only exported
  when this is set
"""
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode, Tracer

from place_search.core.logging import get_logger

logger = get_logger(__name__)

_tracer_provider: Optional[TracerProvider] = None

__all__ = [
    "StatusCode",
    "configure_tracing",
    "get_trace_id_from_context",
    "get_tracer",
    "instrument_fastapi",
    "record_exception",
    "set_span_attribute",
    "set_span_status",
    "shutdown_tracing",
]


def configure_tracing(
    service_name: str = "place_search_api",
    otlp_endpoint: Optional[str] = None,
) -> TracerProvider:
    """
    Install a tracer provider for the service.

    Without an OTLP endpoint spans are still created (trace ids show up in
    logs and response headers) but nothing is exported.
    """
    global _tracer_provider
    if _tracer_provider is not None:
        return _tracer_provider

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info("tracing_otlp_exporter_enabled", endpoint=otlp_endpoint)
    else:
        logger.info("tracing_export_disabled")

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    return provider


def get_tracer(name: str = "place_search") -> Tracer:
    return trace.get_tracer(name)


def instrument_fastapi(app: Any) -> None:
    FastAPIInstrumentor.instrument_app(app)


def shutdown_tracing() -> None:
    global _tracer_provider
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        _tracer_provider = None


def get_trace_id_from_context() -> Optional[str]:
    """Hex trace id of the current span, or None outside a recording span."""
    span = trace.get_current_span()
    context = span.get_span_context()
    if not context.is_valid:
        return None
    return format(context.trace_id, "032x")


def set_span_attribute(key: str, value: Any) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)


def set_span_status(code: StatusCode, description: Optional[str] = None) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.set_status(Status(code, description))


def record_exception(exc: BaseException) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.record_exception(exc)
