import asyncio
import contextlib
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# .env must be loaded before settings are read
load_dotenv()

from .core.config import get_settings  # noqa: E402
from .core.errors import (  # noqa: E402
    ParseError,
    PlaceSearchError,
    RateLimitExceeded,
    UpstreamUnavailable,
    ValidationError,
)
from .core.logging import configure_logging, get_logger, get_trace_id  # noqa: E402
from .core.middleware import TraceIDMiddleware  # noqa: E402
from .core.rate_limit import RateLimitMiddleware, get_rate_limiter  # noqa: E402
from .core.tracing import (  # noqa: E402
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from .routes import health, metrics, places, search  # noqa: E402

settings = get_settings()

configure_logging(
    log_level=settings.log_level,
    service_name=settings.service_name,
    json_output=settings.log_json,
)

logger = get_logger(__name__)

configure_tracing(service_name=settings.service_name, otlp_endpoint=settings.otlp_endpoint)

app = FastAPI(
    title="Place Search API",
    description="Natural-language place search backed by a local language model",
    version="1.0.0",
)

# Starlette runs the last added middleware first: CORS -> trace ids -> admission
app.add_middleware(RateLimitMiddleware, guarded_prefixes=("/places",))
app.add_middleware(TraceIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_origins != ["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
    expose_headers=["X-Trace-ID", "X-Request-ID", "Retry-After"],
)

instrument_fastapi(app)

# Error taxonomy -> HTTP status
ERROR_STATUS_CODES = {
    ValidationError: 400,
    ParseError: 422,
    RateLimitExceeded: 429,
    UpstreamUnavailable: 503,
}

_prune_task: Optional[asyncio.Task] = None


async def _prune_rate_windows() -> None:
    limiter = get_rate_limiter()
    while True:
        await asyncio.sleep(limiter.window_seconds)
        limiter.prune()


@app.on_event("startup")
async def startup_event():
    """Start background housekeeping."""
    global _prune_task
    logger.info(
        "app_startup_started",
        llm_api_base=settings.llm_api_base,
        llm_model=settings.llm_model,
        maps_api_key_configured=bool(settings.maps_api_key),
    )
    if not settings.maps_api_key:
        logger.warning(
            "app_startup_maps_key_missing",
            message="GOOGLE_MAPS_API_KEY is not set. Place searches will fail with 503.",
        )
    _prune_task = asyncio.create_task(_prune_rate_windows())
    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on application shutdown."""
    logger.info("app_shutdown_started")
    if _prune_task is not None:
        _prune_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _prune_task
    shutdown_tracing()
    logger.info("app_shutdown_completed")


def _error_body(status_code: int, detail: str, error: str, trace_id: Optional[str], **extra) -> dict:
    body = {
        "detail": detail,
        "error": error,
        "status_code": status_code,
        "trace_id": trace_id,
    }
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


@app.exception_handler(PlaceSearchError)
async def place_search_exception_handler(request: Request, exc: PlaceSearchError):
    """Render pipeline errors with a specific status and message."""
    status_code = next(
        (code for cls, code in ERROR_STATUS_CODES.items() if isinstance(exc, cls)),
        500,
    )
    trace_id = get_trace_id() or get_trace_id_from_context()
    detail = exc.message
    extra = {}
    headers = {}

    if isinstance(exc, ParseError):
        detail = "Could not understand the query. Please rephrase it."
        extra["reason"] = exc.reason
    elif isinstance(exc, ValidationError):
        extra["reason"] = exc.reason
    elif isinstance(exc, RateLimitExceeded):
        detail = "Too many requests. Please slow down."
        retry_after = int(exc.retry_after) + 1
        extra["retry_after"] = retry_after
        headers["Retry-After"] = str(retry_after)
    elif isinstance(exc, UpstreamUnavailable):
        if exc.source == "llm":
            detail = "The language model is unavailable. Please try again later."
        else:
            detail = "The places service is unavailable. Please try again later."
        extra["source"] = exc.source
        extra["reason"] = exc.reason

    set_span_status(StatusCode.ERROR if status_code >= 500 else StatusCode.OK, exc.error_code)
    logger.warning(
        "place_search_error",
        status_code=status_code,
        error=exc.error_code,
        reason=extra.get("reason"),
        path=request.url.path,
    )
    response = JSONResponse(
        status_code=status_code,
        content=_error_body(status_code, detail, exc.error_code, trace_id, **extra),
        headers=headers,
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Handle HTTP exceptions, including router 404/405.

    The request is counted once by TraceIDMiddleware, not here.
    """
    trace_id = get_trace_id() or get_trace_id_from_context()

    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, str(exc.detail))
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.status_code, str(exc.detail), "http_error", trace_id),
        headers=exc.headers,
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    trace_id = get_trace_id() or get_trace_id_from_context()

    record_exception(exc)
    set_span_status(StatusCode.ERROR, str(exc))

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    response = JSONResponse(
        status_code=500,
        content=_error_body(500, "Internal server error", "internal_error", trace_id),
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(search.router, prefix="/search", tags=["Search"])
app.include_router(places.router, prefix="/places", tags=["Places"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
