"""
Search orchestration: natural-language query -> places.

Pipeline per request:
1. validate the raw query (no network)
2. rate-limit admission (no network)
3. language model generate         -> UpstreamUnavailable("llm") on failure
4. parse model output              -> ParseError, never re-prompted
5. places text search              -> UpstreamUnavailable("maps") on failure
6. optional detail enrichment, bounded concurrency, per-item failures kept
   as PartialEnrichmentFailure records

Stages 3 and 5 are strictly sequential; only stage 6 fans out.
"""
import asyncio
import time
from typing import List, Optional, Protocol, Sequence, Tuple, Union

from place_search.core.config import get_settings
from place_search.core.errors import (
    ParseError,
    RateLimitExceeded,
    UpstreamUnavailable,
    ValidationError,
)
from place_search.core.logging import get_logger
from place_search.core.metrics import (
    record_enrichment_failure,
    record_search_outcome,
    record_search_zero_result,
)
from place_search.core.rate_limit import RateLimiter, get_rate_limiter
from place_search.core.tracing import (
    StatusCode,
    get_tracer,
    set_span_attribute,
    set_span_status,
)
from place_search.models.intent import SearchIntent
from place_search.models.places import PlaceDetail, PlaceSummary
from place_search.models.responses import PartialEnrichmentFailure, SearchResult
from place_search.services.ai.llm_client import get_llm_client
from place_search.services.ai.parser import ResponseParser, get_response_parser
from place_search.services.ai.prompts import build_prompt
from place_search.services.places.client import get_places_client

logger = get_logger(__name__)


class LanguageModelClient(Protocol):
    async def generate(self, prompt: str) -> str: ...


class PlaceProvider(Protocol):
    async def text_search(self, intent: SearchIntent) -> List[PlaceSummary]: ...

    async def get_details(self, place_id: str) -> PlaceDetail: ...


class QueryOrchestrator:
    """Drive one search through the language model and the places provider."""

    def __init__(
        self,
        llm_client: LanguageModelClient,
        places_client: PlaceProvider,
        rate_limiter: RateLimiter,
        parser: Optional[ResponseParser] = None,
        max_query_length: int = 500,
        llm_timeout_seconds: float = 30.0,
        maps_timeout_seconds: float = 10.0,
        max_concurrent_details: int = 4,
    ):
        self._llm_client = llm_client
        self._places_client = places_client
        self._rate_limiter = rate_limiter
        self._parser = parser or get_response_parser()
        self.max_query_length = max_query_length
        self.llm_timeout_seconds = llm_timeout_seconds
        self.maps_timeout_seconds = maps_timeout_seconds
        self.max_concurrent_details = max_concurrent_details
        self._tracer = get_tracer(__name__)

    def validate_query(self, raw_query: Optional[str]) -> str:
        """Trimmed query, or ValidationError when empty or too long."""
        query = (raw_query or "").strip()
        if not query:
            raise ValidationError("empty_query", "Query must not be empty")
        if len(query) > self.max_query_length:
            raise ValidationError(
                "query_too_long",
                f"Query must be at most {self.max_query_length} characters",
            )
        return query

    async def handle_search(
        self,
        raw_query: str,
        client_id: str,
        enrich: bool = False,
    ) -> SearchResult:
        """
        Run the full pipeline for one query.

        Raises:
            ValidationError, RateLimitExceeded, UpstreamUnavailable, ParseError
        """
        start_time = time.monotonic()
        try:
            result = await self._run(raw_query, client_id, enrich)
        except (ValidationError, RateLimitExceeded, ParseError, UpstreamUnavailable) as exc:
            record_search_outcome(exc.error_code)
            raise
        record_search_outcome("partial" if result.errors else "success")
        logger.info(
            "search_completed",
            place_type=result.intent.place_type,
            location=result.intent.location,
            results_count=len(result.locations),
            enrichment_failures=len(result.errors),
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )
        return result

    async def _run(self, raw_query: str, client_id: str, enrich: bool) -> SearchResult:
        query = self.validate_query(raw_query)

        if not self._rate_limiter.admit(client_id):
            raise RateLimitExceeded(client_id, self._rate_limiter.retry_after(client_id))

        llm_response = await self._generate(query)
        intent = self._parse(llm_response)
        places = await self._search(intent)

        errors: List[PartialEnrichmentFailure] = []
        locations: List[Union[PlaceDetail, PlaceSummary]] = list(places)
        if enrich and places:
            locations, errors = await self.enrich(places)

        return SearchResult(
            llm_response=llm_response,
            intent=intent,
            locations=locations,
            errors=errors,
        )

    async def _generate(self, query: str) -> str:
        with self._tracer.start_as_current_span("llm.generate"):
            try:
                return await asyncio.wait_for(
                    self._llm_client.generate(build_prompt(query)),
                    timeout=self.llm_timeout_seconds,
                )
            except (asyncio.TimeoutError, TimeoutError) as exc:
                set_span_status(StatusCode.ERROR, "timeout")
                logger.warning("search_llm_timeout", timeout_seconds=self.llm_timeout_seconds)
                raise UpstreamUnavailable("llm", "timeout") from exc
            except ConnectionError as exc:
                set_span_status(StatusCode.ERROR, "connection_error")
                raise UpstreamUnavailable("llm", "connection_error") from exc
            except UpstreamUnavailable as exc:
                set_span_status(StatusCode.ERROR, exc.reason)
                raise

    def _parse(self, llm_response: str) -> SearchIntent:
        with self._tracer.start_as_current_span("llm.parse"):
            try:
                intent = self._parser.parse(llm_response)
            except ParseError as exc:
                set_span_status(StatusCode.ERROR, exc.reason)
                logger.info("search_query_not_understood", reason=exc.reason)
                raise
            set_span_attribute("search.place_type", intent.place_type)
            set_span_attribute("search.location", intent.location)
            return intent

    async def _search(self, intent: SearchIntent) -> List[PlaceSummary]:
        with self._tracer.start_as_current_span("maps.text_search"):
            try:
                places = await asyncio.wait_for(
                    self._places_client.text_search(intent),
                    timeout=self.maps_timeout_seconds,
                )
            except (asyncio.TimeoutError, TimeoutError) as exc:
                set_span_status(StatusCode.ERROR, "timeout")
                logger.warning("search_maps_timeout", timeout_seconds=self.maps_timeout_seconds)
                raise UpstreamUnavailable("maps", "timeout") from exc
            except ConnectionError as exc:
                set_span_status(StatusCode.ERROR, "connection_error")
                raise UpstreamUnavailable("maps", "connection_error") from exc
            except UpstreamUnavailable as exc:
                set_span_status(StatusCode.ERROR, exc.reason)
                raise
            set_span_attribute("search.results_count", len(places))
            if not places:
                record_search_zero_result()
            return list(places)

    async def get_place_details(self, place_id: str) -> PlaceDetail:
        """Single detail lookup, bounded by the maps timeout."""
        with self._tracer.start_as_current_span("maps.get_details"):
            try:
                return await asyncio.wait_for(
                    self._places_client.get_details(place_id),
                    timeout=self.maps_timeout_seconds,
                )
            except (asyncio.TimeoutError, TimeoutError) as exc:
                set_span_status(StatusCode.ERROR, "timeout")
                raise UpstreamUnavailable("maps", "timeout") from exc
            except ConnectionError as exc:
                raise UpstreamUnavailable("maps", "connection_error") from exc

    async def enrich(
        self, places: Sequence[PlaceSummary]
    ) -> Tuple[List[PlaceDetail], List[PartialEnrichmentFailure]]:
        """
        Fetch details for every place with at most max_concurrent_details in flight.

        Successful details keep search order; failures are returned separately
        and never fail the batch.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_details)

        async def fetch(place: PlaceSummary) -> Union[PlaceDetail, PartialEnrichmentFailure]:
            async with semaphore:
                try:
                    return await self.get_place_details(place.place_id)
                except UpstreamUnavailable as exc:
                    reason = exc.reason
                    message = exc.message
                except Exception as exc:
                    # a misbehaving provider must not sink the other items
                    reason = "unexpected_error"
                    message = str(exc)
                    logger.error(
                        "enrichment_unexpected_error",
                        place_id=place.place_id,
                        error_type=type(exc).__name__,
                        exc_info=True,
                    )
            record_enrichment_failure(reason)
            logger.warning("enrichment_item_failed", place_id=place.place_id, reason=reason)
            return PartialEnrichmentFailure(
                place_id=place.place_id,
                name=place.name,
                source="maps",
                reason=reason,
                message=message,
            )

        outcomes = await asyncio.gather(*(fetch(place) for place in places))

        details = [o for o in outcomes if isinstance(o, PlaceDetail)]
        errors = [o for o in outcomes if isinstance(o, PartialEnrichmentFailure)]
        return details, errors


_query_orchestrator: Optional[QueryOrchestrator] = None


def get_query_orchestrator() -> QueryOrchestrator:
    """Global orchestrator wired to the configured clients and rate limiter."""
    global _query_orchestrator
    if _query_orchestrator is None:
        settings = get_settings()
        _query_orchestrator = QueryOrchestrator(
            llm_client=get_llm_client(),
            places_client=get_places_client(),
            rate_limiter=get_rate_limiter(),
            max_query_length=settings.max_query_length,
            llm_timeout_seconds=settings.llm_timeout_seconds,
            maps_timeout_seconds=settings.maps_timeout_seconds,
            max_concurrent_details=settings.maps_max_concurrent_details,
        )
    return _query_orchestrator
