"""
Response models for API endpoints.

These models define the structure of API responses.
"""
from typing import Annotated, List, Optional, Union

from pydantic import BaseModel, Field

from place_search.models.intent import SearchIntent
from place_search.models.places import PlaceDetail, PlaceSummary


class PartialEnrichmentFailure(BaseModel):
    """A detail lookup that failed for one place; the rest of the batch still succeeds."""
    place_id: str
    name: Optional[str] = None
    source: str = "maps"
    reason: str
    message: Optional[str] = None


class SearchResult(BaseModel):
    """Combined result of one natural-language search."""
    llm_response: str = Field(..., description="Raw model output, for transparency")
    intent: SearchIntent
    locations: List[
        Annotated[Union[PlaceDetail, PlaceSummary], Field(discriminator="kind")]
    ] = Field(default_factory=list)
    errors: List[PartialEnrichmentFailure] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    detail: str
    error: str
    status_code: int
    trace_id: Optional[str] = None
    source: Optional[str] = None
    reason: Optional[str] = None
    retry_after: Optional[int] = None
