"""
Staged parser turning language model output into a SearchIntent.

Model output is untrusted: it may be clean JSON, JSON wrapped in prose or
code fences, truncated JSON, or plain prose. Stages, in order:

1. strict      - the whole output is a JSON object with type and location
2. permissive  - the first well-formed {...} substring that validates
3. heuristic   - fields salvaged from partial JSON, then a known place-type
                 term and an "in <Place>" phrase found in the text
4. failure     - ParseError("no_locations_found")

Input is cut to MAX_SCAN_CHARS before any scanning and the permissive stage
inspects at most MAX_OBJECT_CANDIDATES brace positions, so cost stays bounded
for arbitrarily long output.

When several locations are mentioned the first one in the text wins.
"""
import json
import re
from typing import Any, Dict, Iterator, List, Optional

from place_search.core.errors import ParseError
from place_search.core.logging import get_logger
from place_search.core.metrics import record_parse_outcome
from place_search.models.intent import UNKNOWN_PLACE_TYPE, SearchIntent
from place_search.services.ai.schema import (
    ModelIntentPayload,
    split_keywords,
    validate_model_payload,
)

logger = get_logger(__name__)

MAX_SCAN_CHARS = 8000
MAX_OBJECT_CANDIDATES = 8

# Surface form -> canonical place type
PLACE_TYPE_VOCABULARY: Dict[str, str] = {
    "restaurant": "restaurant",
    "restaurants": "restaurant",
    "diner": "restaurant",
    "diners": "restaurant",
    "eatery": "restaurant",
    "eateries": "restaurant",
    "bistro": "restaurant",
    "steakhouse": "restaurant",
    "pizzeria": "restaurant",
    "cafe": "cafe",
    "cafes": "cafe",
    "café": "cafe",
    "coffee shop": "cafe",
    "coffee shops": "cafe",
    "bakery": "bakery",
    "bakeries": "bakery",
    "bar": "bar",
    "bars": "bar",
    "pub": "bar",
    "pubs": "bar",
    "park": "park",
    "parks": "park",
    "playground": "park",
    "dog park": "park",
    "hotel": "hotel",
    "hotels": "hotel",
    "motel": "hotel",
    "motels": "hotel",
    "inn": "hotel",
    "hostel": "hotel",
    "hostels": "hotel",
    "lodging": "hotel",
    "museum": "museum",
    "museums": "museum",
    "art gallery": "art_gallery",
    "gallery": "art_gallery",
    "library": "library",
    "libraries": "library",
    "gym": "gym",
    "gyms": "gym",
    "pharmacy": "pharmacy",
    "pharmacies": "pharmacy",
    "hospital": "hospital",
    "hospitals": "hospital",
    "supermarket": "supermarket",
    "grocery store": "supermarket",
    "shopping mall": "shopping_mall",
    "mall": "shopping_mall",
    "beach": "beach",
    "beaches": "beach",
    "zoo": "zoo",
    "campground": "campground",
}

# Longest forms first so "dog park" wins over "park" at the same position
_PLACE_TYPE_PATTERN = re.compile(
    r"\b("
    + "|".join(re.escape(term) for term in sorted(PLACE_TYPE_VOCABULARY, key=len, reverse=True))
    + r")\b",
    re.IGNORECASE,
)

# "in Austin", "near San Francisco, CA", "around Lower Manhattan"
_LOCATION_PATTERN = re.compile(
    r"\b(?:[Ii]n|[Nn]ear|[Aa]round)\s+"
    r"([A-Z][\w'\-]*(?:(?:\s+|,\s*)[A-Z][\w'\-]*){0,4})"
)

_FIELD_ALIASES = {
    "type": "place_type",
    "place_type": "place_type",
    "placeType": "place_type",
    "category": "place_type",
    "location": "location",
    "city": "location",
    "near": "location",
    "area": "location",
    "keywords": "keywords",
    "keyword": "keywords",
    "terms": "keywords",
}

# "key": "value" pairs, tolerant of truncated JSON around them
_FIELD_PATTERN = re.compile(
    r'"(' + "|".join(_FIELD_ALIASES) + r')"\s*:\s*"((?:[^"\\]|\\.)*)"'
)


def _decode_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        return value


def _match_brace(text: str, start: int) -> Optional[int]:
    """Index of the brace closing text[start], honouring JSON strings; None if unbalanced."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def iter_object_candidates(text: str) -> Iterator[str]:
    """
    Yield brace-delimited substrings in order of their opening brace.

    Each opening brace is tried once (outer objects before the objects nested
    in them), up to MAX_OBJECT_CANDIDATES openings.
    """
    start = text.find("{")
    attempts = 0
    while start != -1 and attempts < MAX_OBJECT_CANDIDATES:
        attempts += 1
        end = _match_brace(text, start)
        if end is not None:
            yield text[start:end + 1]
        start = text.find("{", start + 1)


class ResponseParser:
    """Parse raw model output into a SearchIntent or raise ParseError."""

    def parse(self, raw_model_output: str) -> SearchIntent:
        if not raw_model_output or not raw_model_output[:MAX_SCAN_CHARS].strip():
            record_parse_outcome("failed")
            raise ParseError("empty_response")

        text = raw_model_output[:MAX_SCAN_CHARS].strip()
        partial: Optional[ModelIntentPayload] = None

        # Stage 1: strict
        payload = self._validate(_decode_object(text))
        if payload is not None:
            if payload.is_complete():
                return self._accept(payload.to_intent(), "strict", raw_model_output)
            if payload.place_type or payload.location:
                partial = payload

        # Stage 2: permissive
        for candidate in iter_object_candidates(text):
            payload = self._validate(_decode_object(candidate))
            if payload is None:
                continue
            if payload.is_complete():
                return self._accept(payload.to_intent(), "permissive", raw_model_output)
            if partial is None and (payload.place_type or payload.location):
                partial = payload

        # Stage 3: heuristic
        intent = self._heuristic(text, partial)
        if intent is not None:
            return self._accept(intent, "heuristic", raw_model_output)

        record_parse_outcome("failed")
        logger.info("llm_output_unparseable", reason="no_locations_found", output_chars=len(raw_model_output))
        raise ParseError("no_locations_found")

    @staticmethod
    def _validate(obj: Optional[Dict[str, Any]]) -> Optional[ModelIntentPayload]:
        if obj is None:
            return None
        return validate_model_payload(obj)

    def _heuristic(self, text: str, partial: Optional[ModelIntentPayload]) -> Optional[SearchIntent]:
        fields = self._salvage_fields(text)
        place_type = (partial.place_type if partial else "") or fields.get("place_type", "")
        location = (partial.location if partial else "") or fields.get("location", "")
        keywords: List[str] = list(partial.keywords) if partial else []
        if not keywords and fields.get("keywords"):
            keywords = split_keywords(fields["keywords"])
        if place_type.lower() == UNKNOWN_PLACE_TYPE:
            place_type = ""

        if not place_type:
            match = _PLACE_TYPE_PATTERN.search(text)
            if match:
                place_type = PLACE_TYPE_VOCABULARY[match.group(1).lower()]

        if not location:
            match = _LOCATION_PATTERN.search(text)
            if match:
                location = match.group(1).strip(" ,")

        if not place_type and not location:
            return None

        return SearchIntent(
            place_type=place_type or UNKNOWN_PLACE_TYPE,
            location=location,
            keywords=keywords,
        )

    @staticmethod
    def _salvage_fields(text: str) -> Dict[str, str]:
        """First value for each known key found as a quoted "key": "value" pair."""
        fields: Dict[str, str] = {}
        for match in _FIELD_PATTERN.finditer(text):
            name = _FIELD_ALIASES[match.group(1)]
            value = _unescape(match.group(2)).strip()
            if value and name not in fields:
                fields[name] = value
        return fields

    @staticmethod
    def _accept(intent: SearchIntent, stage: str, raw: str) -> SearchIntent:
        record_parse_outcome(stage)
        logger.info(
            "llm_output_parsed",
            stage=stage,
            place_type=intent.place_type,
            location=intent.location,
            keyword_count=len(intent.keywords),
            output_chars=len(raw),
        )
        return intent


_response_parser: Optional[ResponseParser] = None


def get_response_parser() -> ResponseParser:
    """Global singleton accessor."""
    global _response_parser
    if _response_parser is None:
        _response_parser = ResponseParser()
    return _response_parser
