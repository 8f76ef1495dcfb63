"""
Environment-driven configuration.

Environment configuration:
- LLM_API_BASE: Base URL of the local model server (default: http://localhost:11434/v1)
- LLM_API_STYLE: "openai" (/chat/completions) or "ollama" (/api/generate)
- LLM_API_KEY: Optional bearer token (most local servers need none)
- LLM_MODEL: Model name (default: llama3)
- LLM_TIMEOUT_SECONDS: Request timeout for the model server (default: 30)
- MAPS_API_BASE: Places Web Service base URL
- GOOGLE_MAPS_API_KEY: Places API key
- MAPS_TIMEOUT_SECONDS: Request timeout for the places provider (default: 10)
- MAPS_MAX_RESULTS: Max places returned per search (default: 10)
- MAPS_MAX_CONCURRENT_DETAILS: In-flight detail lookups per request (default: 4)
- RATE_LIMIT_MAX_REQUESTS / RATE_LIMIT_WINDOW_SECONDS: per-client admission window
- RATE_LIMIT_GLOBAL_MAX_REQUESTS: Optional cap shared by all clients
- MAX_QUERY_LENGTH: Longest accepted raw query (default: 500)
- CORS_ALLOW_ORIGINS: Comma separated origins (default: *)
"""
import os
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)) or default)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)) or default)


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return int(value)


class Settings(BaseModel):
    """Validated runtime settings."""

    llm_api_base: str = "http://localhost:11434/v1"
    llm_api_style: str = "openai"
    llm_api_key: Optional[str] = None
    llm_model: str = "llama3"
    llm_timeout_seconds: float = Field(30.0, gt=0)

    maps_api_base: str = "https://maps.googleapis.com/maps/api/place"
    maps_api_key: Optional[str] = None
    maps_timeout_seconds: float = Field(10.0, gt=0)
    maps_max_results: int = Field(10, ge=1, le=60)
    maps_max_concurrent_details: int = Field(4, ge=1)

    rate_limit_max_requests: int = Field(30, ge=1)
    rate_limit_window_seconds: float = Field(60.0, gt=0)
    rate_limit_global_max_requests: Optional[int] = Field(None, ge=1)

    max_query_length: int = Field(500, ge=1)

    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_json: bool = True
    service_name: str = "place_search_api"
    otlp_endpoint: Optional[str] = None

    @field_validator("llm_api_style")
    @classmethod
    def validate_api_style(cls, value: str) -> str:
        v = value.lower().strip()
        if v not in {"openai", "ollama"}:
            raise ValueError("llm_api_style must be 'openai' or 'ollama'")
        return v

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
        return cls(
            llm_api_base=os.getenv("LLM_API_BASE", "http://localhost:11434/v1"),
            llm_api_style=os.getenv("LLM_API_STYLE", "openai"),
            llm_api_key=os.getenv("LLM_API_KEY") or None,
            llm_model=os.getenv("LLM_MODEL", "llama3"),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 30.0),
            maps_api_base=os.getenv(
                "MAPS_API_BASE", "https://maps.googleapis.com/maps/api/place"
            ),
            maps_api_key=os.getenv("GOOGLE_MAPS_API_KEY") or None,
            maps_timeout_seconds=_env_float("MAPS_TIMEOUT_SECONDS", 10.0),
            maps_max_results=_env_int("MAPS_MAX_RESULTS", 10),
            maps_max_concurrent_details=_env_int("MAPS_MAX_CONCURRENT_DETAILS", 4),
            rate_limit_max_requests=_env_int("RATE_LIMIT_MAX_REQUESTS", 30),
            rate_limit_window_seconds=_env_float("RATE_LIMIT_WINDOW_SECONDS", 60.0),
            rate_limit_global_max_requests=_env_optional_int(
                "RATE_LIMIT_GLOBAL_MAX_REQUESTS"
            ),
            max_query_length=_env_int("MAX_QUERY_LENGTH", 500),
            cors_allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=os.getenv("LOG_JSON", "true").lower() == "true",
            service_name=os.getenv("OTEL_SERVICE_NAME", "place_search_api"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Global settings accessor, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None
