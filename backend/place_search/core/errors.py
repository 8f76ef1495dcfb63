"""
Error taxonomy for the search pipeline.

- ValidationError: bad input, raised before any network call
- RateLimitExceeded: admission denied for a client
- UpstreamUnavailable: timeout / connection / provider failure of a named upstream
- ParseError: model output not reducible to a SearchIntent

Per-item enrichment failures are not exceptions; they are carried in the
search result as PartialEnrichmentFailure records (see place_search.models.responses).
"""
from typing import Optional


class PlaceSearchError(Exception):
    """Base class for all pipeline errors."""

    error_code = "place_search_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PlaceSearchError):
    """Raised when a raw query is rejected before any upstream call."""

    error_code = "validation_error"

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason)
        self.reason = reason


class RateLimitExceeded(PlaceSearchError):
    """Raised when a client exceeded its admission window."""

    error_code = "rate_limit_exceeded"

    def __init__(self, client_id: str, retry_after: float = 0.0):
        super().__init__("Rate limit exceeded")
        self.client_id = client_id
        self.retry_after = retry_after


class UpstreamUnavailable(PlaceSearchError):
    """Raised when the language model ("llm") or places provider ("maps") fails."""

    error_code = "upstream_unavailable"

    def __init__(self, source: str, reason: str = "unavailable"):
        super().__init__(f"Upstream '{source}' unavailable: {reason}")
        self.source = source
        self.reason = reason


class ParseError(PlaceSearchError):
    """Raised when model output cannot be reduced to a SearchIntent."""

    error_code = "parse_error"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
