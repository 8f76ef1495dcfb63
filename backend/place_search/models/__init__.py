"""Pydantic models for search intents, places and API responses."""

from .intent import UNKNOWN_PLACE_TYPE, SearchIntent
from .places import Coordinates, PlaceDetail, PlaceSummary
from .responses import ErrorResponse, PartialEnrichmentFailure, SearchResult

__all__ = [
    "UNKNOWN_PLACE_TYPE",
    "Coordinates",
    "ErrorResponse",
    "PartialEnrichmentFailure",
    "PlaceDetail",
    "PlaceSummary",
    "SearchIntent",
    "SearchResult",
]
