"""
Place models built from places provider responses.

PlaceSummary objects are constructed fresh per search response and are frozen;
PlaceDetail extends a summary with contact fields, open status and hours.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class PlaceSummary(BaseModel):
    """One place from a text search."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["summary"] = "summary"
    place_id: str = Field(..., min_length=1, description="Opaque provider identifier")
    name: str
    address: str = ""
    coordinates: Optional[Coordinates] = None
    rating: Optional[float] = Field(None, ge=0.0, le=5.0)
    category_tags: List[str] = Field(
        default_factory=list,
        description="Provider category tags, unique, in provider order",
    )

    @field_validator("category_tags")
    @classmethod
    def dedupe_tags(cls, value: List[str]) -> List[str]:
        seen = set()
        tags = []
        for tag in value:
            if tag and tag not in seen:
                seen.add(tag)
                tags.append(tag)
        return tags


class PlaceDetail(PlaceSummary):
    """Summary plus contact fields, open/closed status and weekly hours."""

    kind: Literal["detail"] = "detail"

    phone: Optional[str] = None
    international_phone: Optional[str] = None
    website: Optional[str] = None
    maps_url: Optional[str] = None
    open_now: Optional[bool] = None
    hours: List[str] = Field(
        default_factory=list,
        description="Display strings, e.g. 'Monday: 9:00 AM – 5:00 PM'",
    )
