"""
Structured logging configuration for the place search API.

JSON-structured logging via structlog with per-request correlation fields.

All logs include:
- timestamp (ISO 8601 format)
- level
- service (service name identifier)
- trace_id / request_id (when inside a request)
- client_id (the rate-limit identity of the caller, when known)
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_id_var: ContextVar[Optional[str]] = ContextVar("client_id", default=None)

SERVICE_NAME = "place_search_api"


def add_request_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Add request context (trace_id, request_id, client_id) to log entries.

    Runs as a structlog processor. Context variables that are unset are
    omitted; the service name and an ISO 8601 timestamp are always present.
    """
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id

    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    client_id = client_id_var.get()
    if client_id:
        event_dict["client_id"] = client_id

    event_dict["service"] = SERVICE_NAME

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name identifier (defaults to SERVICE_NAME)
        json_output: JSON lines when True, coloured console output otherwise
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        structlog logger; request correlation fields are added at render time
    """
    return structlog.get_logger(name)


def set_trace_id(trace_id: Optional[str]) -> None:
    """
    Set trace ID in context for the current request.

    Args:
        trace_id: Trace ID to set (or None to clear)
    """
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    """
    Get current trace ID from context.

    Returns:
        Current trace ID or None outside a request
    """
    return trace_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    """
    Set request ID in context for the current request.

    Args:
        request_id: Request ID to set (or None to clear)
    """
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    """
    Get current request ID from context.

    Returns:
        Current request ID or None
    """
    return request_id_var.get()


def set_client_id(client_id: Optional[str]) -> None:
    """
    Set the caller's rate-limit identity in context.

    Args:
        client_id: Client identifier, usually the resolved client IP (or None to clear)
    """
    client_id_var.set(client_id)


def get_client_id() -> Optional[str]:
    """
    Get the caller's rate-limit identity from context.

    Returns:
        Current client ID or None
    """
    return client_id_var.get()


def generate_request_id() -> str:
    """
    Generate a new unique request ID.

    Returns:
        UUID4 string
    """
    return str(uuid.uuid4())


def generate_trace_id() -> str:
    """
    Generate a new unique trace ID.

    Returns:
        UUID4 string
    """
    return str(uuid.uuid4())
