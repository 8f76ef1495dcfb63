"""
Prometheus metrics endpoint.

GET /metrics
Returns Prometheus-formatted metrics for scraping.
"""
from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from place_search.core.logging import get_logger
from place_search.core.metrics import get_metrics, get_metrics_content_type
from place_search.core.rate_limit import get_rate_limiter

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def metrics():
    """Prometheus metrics in text format; expired rate windows are pruned first."""
    get_rate_limiter().prune()
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
