"""
Async client for a locally-hosted language model.

Design constraints:
- No vendor SDKs; plain HTTP via httpx
- Two wire styles: OpenAI-compatible /chat/completions (llama.cpp server,
  vLLM, LM Studio, Ollama's /v1) and Ollama's native /api/generate
- Single request, single response (no streaming)
- Timeouts and connection failures surface as UpstreamUnavailable("llm");
  nothing is retried here

Environment configuration (see place_search.core.config):
- LLM_API_BASE, LLM_API_STYLE, LLM_API_KEY, LLM_MODEL, LLM_TIMEOUT_SECONDS
"""
import time
from typing import Any, Dict, Optional

import httpx

from place_search.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from place_search.core.config import get_settings
from place_search.core.errors import UpstreamUnavailable
from place_search.core.logging import get_logger
from place_search.core.metrics import record_llm_request
from place_search.services.ai.prompts import SYSTEM_PROMPT

logger = get_logger(__name__)

SOURCE = "llm"


class LLMClient:
    """Async HTTP client exposing ``generate(prompt) -> str``."""

    def __init__(
        self,
        api_base: str,
        model: str,
        api_key: Optional[str] = None,
        api_style: str = "openai",
        timeout_seconds: float = 30.0,
        max_tokens: int = 256,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.api_style = api_style
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self._transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="llm",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
        )

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> httpx.Response:
        """Low-level POST helper (isolated for circuit breaker)."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds, transport=self._transport
        ) as client:
            response = await client.post(url, headers=headers, json=json_payload)
            response.raise_for_status()
            return response

    def _build_request(self, prompt: str) -> tuple:
        if self.api_style == "ollama":
            return "/api/generate", {
                "model": self.model,
                "system": SYSTEM_PROMPT,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {"temperature": 0.0, "num_predict": self.max_tokens},
            }
        return "/chat/completions", {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.0,
            "max_tokens": self.max_tokens,
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        if self.api_style == "ollama":
            return str(data.get("response") or "")
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message") or {}
        if not isinstance(message, dict):
            raise UpstreamUnavailable(SOURCE, "invalid_response")
        return str(message.get("content") or "")

    async def generate(self, prompt: str) -> str:
        """
        Send prompt to the model and return its raw text output.

        Raises:
            UpstreamUnavailable("llm") on timeout, connection failure, HTTP
            error status, open circuit or an unreadable response envelope.
        """
        path, payload = self._build_request(prompt)
        start = time.monotonic()
        # stays "cancelled" when an outer wait_for abandons the call
        outcome = "cancelled"

        try:
            response: httpx.Response = await self.circuit_breaker.call_async(
                self._post, path, json_payload=payload
            )
            outcome = "success"
        except CircuitBreakerOpenError:
            outcome = "circuit_open"
            logger.warning("llm_circuit_open", model=self.model)
            raise UpstreamUnavailable(SOURCE, "circuit_open")
        except httpx.TimeoutException as exc:
            outcome = "timeout"
            logger.warning("llm_timeout", model=self.model, error_type=type(exc).__name__)
            raise UpstreamUnavailable(SOURCE, "timeout") from exc
        except httpx.HTTPStatusError as exc:
            outcome = "http_error"
            logger.warning(
                "llm_http_error",
                model=self.model,
                status_code=exc.response.status_code,
            )
            raise UpstreamUnavailable(SOURCE, f"http_{exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            outcome = "connection_error"
            logger.warning(
                "llm_connection_error",
                model=self.model,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise UpstreamUnavailable(SOURCE, "connection_error") from exc
        finally:
            record_llm_request(self.model, outcome, time.monotonic() - start)

        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("llm_invalid_envelope", model=self.model, error=str(exc))
            raise UpstreamUnavailable(SOURCE, "invalid_response") from exc

        if not isinstance(data, dict):
            logger.warning("llm_invalid_envelope", model=self.model, error="not an object")
            raise UpstreamUnavailable(SOURCE, "invalid_response")

        text = self._extract_text(data)
        logger.debug("llm_generate_completed", model=self.model, output_chars=len(text))
        return text


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Global LLM client built from settings."""
    global _llm_client
    if _llm_client is None:
        settings = get_settings()
        _llm_client = LLMClient(
            api_base=settings.llm_api_base,
            model=settings.llm_model,
            api_key=settings.llm_api_key,
            api_style=settings.llm_api_style,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    return _llm_client
