"""Structured search intent derived from language model output."""
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UNKNOWN_PLACE_TYPE = "unknown"


class SearchIntent(BaseModel):
    """
    What the user is looking for.

    place_type is a free-text category ("restaurant", "park", "museum", ...)
    or "unknown"; it is never rejected for being outside the known vocabulary.
    """

    model_config = ConfigDict(frozen=True)

    place_type: str = UNKNOWN_PLACE_TYPE
    location: str = ""
    keywords: List[str] = Field(default_factory=list)

    @field_validator("place_type")
    @classmethod
    def normalize_place_type(cls, value: str) -> str:
        v = " ".join(value.split()).lower()
        return v or UNKNOWN_PLACE_TYPE

    @field_validator("location")
    @classmethod
    def normalize_location(cls, value: str) -> str:
        return " ".join(value.split())

    @field_validator("keywords")
    @classmethod
    def normalize_keywords(cls, value: List[str]) -> List[str]:
        return [k for k in (" ".join(term.split()) for term in value) if k]

    @model_validator(mode="after")
    def require_type_or_location(self) -> "SearchIntent":
        if self.place_type == UNKNOWN_PLACE_TYPE and not self.location:
            raise ValueError("place_type and location cannot both be empty")
        return self

    def to_text_query(self) -> str:
        """Render the intent as a provider text query, e.g. 'tacos restaurant in Austin'."""
        parts = list(self.keywords)
        if self.place_type != UNKNOWN_PLACE_TYPE:
            parts.append(self.place_type)
        query = " ".join(parts)
        if self.location:
            query = f"{query} in {self.location}" if query else self.location
        return query
