"""
Core application modules.
Configuration, error taxonomy, logging, metrics, tracing, rate limiting and
circuit breaking shared by the services and routes.
"""
from .errors import (
    ParseError,
    PlaceSearchError,
    RateLimitExceeded,
    UpstreamUnavailable,
    ValidationError,
)

__all__ = [
    "ParseError",
    "PlaceSearchError",
    "RateLimitExceeded",
    "UpstreamUnavailable",
    "ValidationError",
]
