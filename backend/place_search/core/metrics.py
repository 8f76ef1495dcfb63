"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: HTTP rate, errors, duration
- Upstream Metrics: language model and places provider calls
- Pipeline Metrics: parse stages, rate-limit denials, enrichment failures
- Resource Metrics: process CPU and memory

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from place_search.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# UPSTREAM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of language model requests",
    ["model", "outcome"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Language model request latency in seconds",
    ["model"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
    registry=registry,
)

maps_requests_total = Counter(
    "maps_requests_total",
    "Total number of places provider requests",
    ["operation", "outcome"],
    registry=registry,
)

maps_request_duration_seconds = Histogram(
    "maps_request_duration_seconds",
    "Places provider request latency in seconds",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0 = closed, 1 = half_open, 2 = open)",
    ["name"],
    registry=registry,
)

# ============================================================================
# PIPELINE METRICS
# ============================================================================

llm_parse_outcomes_total = Counter(
    "llm_parse_outcomes_total",
    "Model output parse outcomes by stage (strict, permissive, heuristic, failed)",
    ["stage"],
    registry=registry,
)

rate_limit_denied_total = Counter(
    "rate_limit_denied_total",
    "Total number of requests denied admission",
    ["scope"],  # "client" or "global"
    registry=registry,
)

rate_limit_tracked_windows = Gauge(
    "rate_limit_tracked_windows",
    "Number of rate windows currently held in memory",
    registry=registry,
)

search_requests_total = Counter(
    "search_requests_total",
    "Search pipeline outcomes",
    ["outcome"],
    registry=registry,
)

enrichment_failures_total = Counter(
    "enrichment_failures_total",
    "Per-place detail lookups that failed during enrichment",
    ["reason"],
    registry=registry,
)

search_zero_results_total = Counter(
    "search_zero_results_total",
    "Searches where the places provider returned nothing",
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

process_cpu_usage_percent = Gauge(
    "process_cpu_usage_percent",
    "Process CPU usage percentage",
    registry=registry,
)

process_memory_rss_bytes = Gauge(
    "process_memory_rss_bytes",
    "Process resident memory in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Examples:
        /places/ChIJ123 -> /places/{place_id}
        /search?q=test -> /search
    """
    if "?" in path:
        path = path.split("?")[0]

    if path.startswith("/places/"):
        return "/places/{place_id}"

    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_llm_request(model: str, outcome: str, duration_seconds: float) -> None:
    llm_requests_total.labels(model=model, outcome=outcome).inc()
    llm_request_duration_seconds.labels(model=model).observe(duration_seconds)


def record_maps_request(operation: str, outcome: str, duration_seconds: float) -> None:
    maps_requests_total.labels(operation=operation, outcome=outcome).inc()
    maps_request_duration_seconds.labels(operation=operation).observe(duration_seconds)


def record_parse_outcome(stage: str) -> None:
    llm_parse_outcomes_total.labels(stage=stage).inc()


def record_rate_limit_denied(scope: str) -> None:
    rate_limit_denied_total.labels(scope=scope).inc()


def update_rate_limit_windows(count: int) -> None:
    rate_limit_tracked_windows.set(count)


def record_search_outcome(outcome: str) -> None:
    search_requests_total.labels(outcome=outcome).inc()


def record_enrichment_failure(reason: str) -> None:
    enrichment_failures_total.labels(reason=reason).inc()


def record_search_zero_result() -> None:
    search_zero_results_total.inc()


def record_circuit_state(name: str, state_value: int) -> None:
    circuit_breaker_state.labels(name=name).set(state_value)


def update_resource_metrics() -> None:
    """Update process resource metrics (CPU, memory)."""
    try:
        process = psutil.Process()
        process_cpu_usage_percent.set(process.cpu_percent(interval=None))
        process_memory_rss_bytes.set(process.memory_info().rss)
    except psutil.Error as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
