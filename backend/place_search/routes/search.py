"""
Natural-language place search endpoint.

GET /search?q={query}&enrich={bool}
"""
from fastapi import APIRouter, Depends, Query, Request

from place_search.core.logging import get_logger
from place_search.core.rate_limit import get_client_ip
from place_search.models.responses import ErrorResponse, SearchResult
from place_search.services.search.orchestration import (
    QueryOrchestrator,
    get_query_orchestrator,
)

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=SearchResult,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def search(
    request: Request,
    q: str = Query("", description="Natural-language query, e.g. 'best tacos in Austin'"),
    enrich: bool = Query(False, description="Fetch details (phone, hours) for every result"),
    orchestrator: QueryOrchestrator = Depends(get_query_orchestrator),
):
    """
    Ask the language model to interpret the query, then search places.

    Pipeline errors (bad query, rate limit, unparseable model output,
    unavailable upstream) are rendered by the handlers in main.py.
    """
    client_id = get_client_ip(request)
    logger.info("search_started", query_chars=len(q), enrich=enrich)
    return await orchestrator.handle_search(q, client_id, enrich=enrich)
