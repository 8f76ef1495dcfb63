"""
Pydantic model for the JSON object the language model is asked to emit.

Expected shape (see prompts.SYSTEM_PROMPT):
{
  "type": "restaurant",
  "location": "Austin",
  "keywords": "tacos"        # or ["tacos", "late night"]
}
"""
import re
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from place_search.models.intent import SearchIntent

_KEYWORD_SPLIT = re.compile(r"[,;]")


def split_keywords(value: str) -> List[str]:
    """"tacos, late night" -> ["tacos", "late night"]"""
    return [term.strip() for term in _KEYWORD_SPLIT.split(value) if term.strip()]


class ModelIntentPayload(BaseModel):
    """Raw model output before conversion to a SearchIntent."""

    place_type: str = Field(
        "",
        validation_alias=AliasChoices("type", "place_type", "placeType", "category"),
    )
    location: str = Field(
        "",
        validation_alias=AliasChoices("location", "city", "near", "area"),
    )
    keywords: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("keywords", "keyword", "terms"),
    )

    @field_validator("place_type", "location", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            # First non-empty entry; a list here is the model hedging
            value = next((v for v in value if isinstance(v, str) and v.strip()), "")
        if not isinstance(value, str):
            raise ValueError("expected a string")
        return value.strip()

    @field_validator("keywords", mode="before")
    @classmethod
    def coerce_keywords(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return split_keywords(value)
        if isinstance(value, (list, tuple)):
            return [str(term).strip() for term in value if str(term).strip()]
        raise ValueError("keywords must be a string or a list of strings")

    def is_complete(self) -> bool:
        """Both required fields present and non-empty."""
        return bool(self.place_type) and bool(self.location)

    def to_intent(self) -> SearchIntent:
        return SearchIntent(
            place_type=self.place_type,
            location=self.location,
            keywords=self.keywords,
        )


def validate_model_payload(payload: Dict[str, Any]) -> Optional[ModelIntentPayload]:
    """Validate a decoded JSON object; None when it does not fit the schema."""
    try:
        return ModelIntentPayload.model_validate(payload)
    except ValidationError:
        return None
