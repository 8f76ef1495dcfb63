"""
Middleware for trace ID propagation and request context management.

- Takes the trace ID from X-Trace-ID / X-Request-ID, the active OpenTelemetry
  span, or generates one
- Binds trace_id, request_id and client_id for structured logging
- Records RED metrics and echoes X-Trace-ID / X-Request-ID on the response
"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from place_search.core.logging import (
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_client_id,
    set_request_id,
    set_trace_id,
)
from place_search.core.metrics import record_http_request
from place_search.core.rate_limit import get_client_ip
from place_search.core.tracing import get_trace_id_from_context, set_span_attribute

logger = get_logger(__name__)


def _format_otel_trace_id(otel_trace_id: str) -> str:
    """Render a 32-char hex trace id in UUID layout."""
    t = otel_trace_id
    return f"{t[0:8]}-{t[8:12]}-{t[12:16]}-{t[16:20]}-{t[20:32]}"


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Bind per-request correlation ids and log request start/completion."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
        if not trace_id:
            otel_trace_id = get_trace_id_from_context()
            if otel_trace_id and len(otel_trace_id) == 32:
                trace_id = _format_otel_trace_id(otel_trace_id)
            else:
                trace_id = generate_trace_id()

        request_id = generate_request_id()
        client_id = get_client_ip(request)

        set_trace_id(trace_id)
        set_request_id(request_id)
        set_client_id(client_id)

        start_time = time.time()
        request.state.start_time = start_time
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=500,
                duration_seconds=process_time,
            )
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int(process_time * 1000),
                exc_info=True,
            )
            raise
        else:
            process_time = time.time() - start_time
            latency_ms = int(process_time * 1000)
            set_span_attribute("http.response.latency_ms", latency_ms)
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration_seconds=process_time,
            )
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=latency_ms,
            )
            response.headers["X-Trace-ID"] = trace_id
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            set_trace_id(None)
            set_request_id(None)
            set_client_id(None)
