"""
Health check endpoint.
"""
from fastapi import APIRouter

from place_search.core.config import get_settings
from place_search.core.logging import get_logger
from place_search.services.ai.llm_client import get_llm_client
from place_search.services.places.client import get_places_client

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Liveness plus configuration presence and upstream circuit states.

    Upstreams are not called from here.
    """
    settings = get_settings()
    return {
        "status": "ok",
        "message": "API is running",
        "llm": {
            "api_base": settings.llm_api_base,
            "model": settings.llm_model,
            "circuit": get_llm_client().circuit_breaker.get_metrics()["state"],
        },
        "maps": {
            "api_key_configured": bool(settings.maps_api_key),
            "circuit": get_places_client().circuit_breaker.get_metrics()["state"],
        },
    }
