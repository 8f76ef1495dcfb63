"""
Async client for the Google Places Web Service.

Endpoints used:
- GET {MAPS_API_BASE}/textsearch/json?query=...   -> list[PlaceSummary]
- GET {MAPS_API_BASE}/details/json?place_id=...   -> PlaceDetail

Provider statuses (OVER_QUERY_LIMIT, REQUEST_DENIED, NOT_FOUND, ...), HTTP
errors, timeouts and an open circuit all surface as
UpstreamUnavailable("maps", reason). Nothing is retried here.
"""
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from place_search.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from place_search.core.config import get_settings
from place_search.core.errors import UpstreamUnavailable
from place_search.core.logging import get_logger
from place_search.core.metrics import record_maps_request
from place_search.models.intent import SearchIntent
from place_search.models.places import Coordinates, PlaceDetail, PlaceSummary

logger = get_logger(__name__)

SOURCE = "maps"

DETAIL_FIELDS = ",".join([
    "place_id",
    "name",
    "formatted_address",
    "geometry/location",
    "rating",
    "types",
    "formatted_phone_number",
    "international_phone_number",
    "website",
    "url",
    "opening_hours",
])

# Provider status -> error reason
_STATUS_REASONS = {
    "OVER_QUERY_LIMIT": "quota_exceeded",
    "OVER_DAILY_LIMIT": "quota_exceeded",
    "REQUEST_DENIED": "request_denied",
    "INVALID_REQUEST": "invalid_request",
    "NOT_FOUND": "not_found",
    "ZERO_RESULTS": "not_found",
    "UNKNOWN_ERROR": "provider_error",
}


def _coordinates(result: Dict[str, Any]) -> Optional[Coordinates]:
    try:
        location = (result.get("geometry") or {}).get("location") or {}
        return Coordinates(lat=location["lat"], lng=location["lng"])
    except (AttributeError, KeyError, TypeError, ValidationError):
        return None


def _rating(result: Dict[str, Any]) -> Optional[float]:
    rating = result.get("rating")
    if isinstance(rating, (int, float)) and 0.0 <= rating <= 5.0:
        return float(rating)
    return None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _summary_fields(result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "place_id": result.get("place_id") or "",
        "name": result.get("name") or "",
        "address": result.get("formatted_address") or result.get("vicinity") or "",
        "coordinates": _coordinates(result),
        "rating": _rating(result),
        "category_tags": _string_list(result.get("types")),
    }


def to_place_summary(result: Dict[str, Any]) -> Optional[PlaceSummary]:
    """Map one textsearch result; None when it lacks an id."""
    try:
        return PlaceSummary(**_summary_fields(result))
    except ValidationError:
        return None


def to_place_detail(result: Dict[str, Any]) -> PlaceDetail:
    """Map a details result (raises pydantic ValidationError when it lacks an id)."""
    hours = result.get("opening_hours")
    if not isinstance(hours, dict):
        hours = {}
    return PlaceDetail(
        **_summary_fields(result),
        phone=result.get("formatted_phone_number"),
        international_phone=result.get("international_phone_number"),
        website=result.get("website"),
        maps_url=result.get("url"),
        open_now=hours.get("open_now"),
        hours=_string_list(hours.get("weekday_text")),
    )


class PlacesClient:
    """Text search and details lookups against the Places Web Service."""

    def __init__(
        self,
        api_key: Optional[str],
        api_base: str = "https://maps.googleapis.com/maps/api/place",
        timeout_seconds: float = 10.0,
        max_results: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_results = max_results
        self._transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="maps",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
        )

    async def _get(self, path: str, params: Dict[str, str]) -> httpx.Response:
        """Low-level GET helper (isolated for circuit breaker)."""
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds, transport=self._transport
        ) as client:
            response = await client.get(
                f"{self.api_base}{path}",
                params={**params, "key": self.api_key or ""},
            )
            response.raise_for_status()
            return response

    async def _request(self, operation: str, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        if not self.api_key:
            record_maps_request(operation, "missing_api_key", 0.0)
            raise UpstreamUnavailable(SOURCE, "missing_api_key")

        start = time.monotonic()
        # stays "cancelled" when an outer wait_for abandons the call
        outcome = "cancelled"
        try:
            response: httpx.Response = await self.circuit_breaker.call_async(
                self._get, path, params
            )
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("response is not a JSON object")
            outcome = "success"
        except CircuitBreakerOpenError:
            outcome = "circuit_open"
            logger.warning("maps_circuit_open", operation=operation)
            raise UpstreamUnavailable(SOURCE, "circuit_open")
        except httpx.TimeoutException as exc:
            outcome = "timeout"
            logger.warning("maps_timeout", operation=operation, error_type=type(exc).__name__)
            raise UpstreamUnavailable(SOURCE, "timeout") from exc
        except httpx.HTTPStatusError as exc:
            outcome = "http_error"
            logger.warning(
                "maps_http_error",
                operation=operation,
                status_code=exc.response.status_code,
            )
            raise UpstreamUnavailable(SOURCE, f"http_{exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            outcome = "connection_error"
            logger.warning(
                "maps_connection_error",
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise UpstreamUnavailable(SOURCE, "connection_error") from exc
        except ValueError as exc:
            outcome = "invalid_response"
            logger.warning("maps_invalid_response", operation=operation, error=str(exc))
            raise UpstreamUnavailable(SOURCE, "invalid_response") from exc
        finally:
            record_maps_request(operation, outcome, time.monotonic() - start)

        return data

    def _raise_for_status(self, operation: str, data: Dict[str, Any]) -> None:
        provider_status = data.get("status", "UNKNOWN_ERROR")
        reason = _STATUS_REASONS.get(provider_status, "provider_error")
        logger.warning(
            "maps_provider_error",
            operation=operation,
            provider_status=provider_status,
            error_message=data.get("error_message"),
        )
        raise UpstreamUnavailable(SOURCE, reason)

    async def text_search(self, intent: SearchIntent) -> List[PlaceSummary]:
        """Search places matching the intent; an empty list when nothing matches."""
        query = intent.to_text_query()
        data = await self._request("text_search", "/textsearch/json", {"query": query})

        status = data.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            self._raise_for_status("text_search", data)

        places: List[PlaceSummary] = []
        for result in data.get("results") or []:
            if not isinstance(result, dict):
                continue
            place = to_place_summary(result)
            if place is None:
                logger.debug("maps_result_skipped", reason="missing_place_id")
                continue
            places.append(place)
            if len(places) >= self.max_results:
                break

        logger.info("maps_text_search_completed", query=query, results_count=len(places))
        return places

    async def get_details(self, place_id: str) -> PlaceDetail:
        """Fetch contact fields, open status and hours for one place."""
        data = await self._request(
            "get_details",
            "/details/json",
            {"place_id": place_id, "fields": DETAIL_FIELDS},
        )
        if data.get("status") != "OK":
            self._raise_for_status("get_details", data)

        result = data.get("result")
        if not isinstance(result, dict):
            raise UpstreamUnavailable(SOURCE, "invalid_response")
        result.setdefault("place_id", place_id)
        try:
            return to_place_detail(result)
        except ValidationError as exc:
            raise UpstreamUnavailable(SOURCE, "invalid_response") from exc


_places_client: Optional[PlacesClient] = None


def get_places_client() -> PlacesClient:
    """Global places client built from settings."""
    global _places_client
    if _places_client is None:
        settings = get_settings()
        _places_client = PlacesClient(
            api_key=settings.maps_api_key,
            api_base=settings.maps_api_base,
            timeout_seconds=settings.maps_timeout_seconds,
            max_results=settings.maps_max_results,
        )
    return _places_client
