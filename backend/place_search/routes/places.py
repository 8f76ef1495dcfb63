"""
Place details endpoint.

GET /places/{place_id}

Admission is enforced by RateLimitMiddleware ahead of this handler since it
calls the places provider without going through the search pipeline.
"""
from fastapi import APIRouter, Depends, Path

from place_search.core.logging import get_logger
from place_search.models.places import PlaceDetail
from place_search.models.responses import ErrorResponse
from place_search.services.search.orchestration import (
    QueryOrchestrator,
    get_query_orchestrator,
)

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/{place_id}",
    response_model=PlaceDetail,
    responses={429: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def place_details(
    place_id: str = Path(..., min_length=1, max_length=512),
    orchestrator: QueryOrchestrator = Depends(get_query_orchestrator),
):
    """Contact fields, open status and opening hours for one place."""
    detail = await orchestrator.get_place_details(place_id)
    logger.info("place_details_completed", place_id=place_id)
    return detail
