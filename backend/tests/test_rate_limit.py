"""
Unit tests for per-client fixed-window rate limiting.
"""
import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from place_search.core.rate_limit import (
    GLOBAL_KEY,
    RateLimiter,
    RateLimitMiddleware,
    RateWindow,
    RateWindowStore,
    get_client_ip,
)


class FakeClock:
    def __init__(self, now: float = 500.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_get_client_ip_from_forwarded_for():
    """Test extracting IP from X-Forwarded-For header."""
    request = MagicMock()
    request.headers = Headers({"X-Forwarded-For": "192.168.1.1, 10.0.0.1"})
    request.client = None

    assert get_client_ip(request) == "192.168.1.1"


def test_get_client_ip_from_real_ip():
    """Test extracting IP from X-Real-IP header."""
    request = MagicMock()
    request.headers = Headers({"X-Real-IP": "192.168.1.2"})
    request.client = None

    assert get_client_ip(request) == "192.168.1.2"


def test_get_client_ip_from_client():
    """Test extracting IP from request client."""
    request = MagicMock()
    request.headers = Headers({})
    request.client = MagicMock()
    request.client.host = "192.168.1.3"

    assert get_client_ip(request) == "192.168.1.3"


def test_get_client_ip_unknown():
    request = MagicMock()
    request.headers = Headers({})
    request.client = None

    assert get_client_ip(request) == "unknown"


def test_rate_limiter_rejects_invalid_configuration():
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0, window_seconds=60)
    with pytest.raises(ValueError):
        RateLimiter(max_requests=5, window_seconds=0)


def test_admits_up_to_max_then_denies():
    """The (max+1)-th request inside one window is denied."""
    limiter = RateLimiter(max_requests=3, window_seconds=60, clock=FakeClock())

    assert [limiter.admit("client-a") for _ in range(4)] == [True, True, True, False]


def test_window_resets_after_elapsing():
    """A request after the window elapses starts a fresh window with count 1."""
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=clock)
    limiter.admit("client-a")
    limiter.admit("client-a")
    assert limiter.admit("client-a") is False

    clock.now += 60

    assert limiter.admit("client-a") is True
    window = limiter.store.get("client-a")
    assert window.count == 1
    assert window.window_start == clock.now


def test_denied_requests_do_not_extend_window():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_seconds=10, clock=clock)
    limiter.admit("client-a")

    clock.now += 5
    assert limiter.admit("client-a") is False
    clock.now += 5

    assert limiter.admit("client-a") is True


def test_clients_are_independent():
    """Exhausting one client's window never affects another client."""
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

    assert limiter.admit("client-a") is True
    assert limiter.admit("client-a") is False
    assert limiter.admit("client-b") is True


def test_global_cap_applies_across_clients():
    limiter = RateLimiter(
        max_requests=10,
        window_seconds=60,
        global_max_requests=2,
        clock=FakeClock(),
    )

    assert limiter.admit("client-a") is True
    assert limiter.admit("client-b") is True
    assert limiter.admit("client-c") is False
    assert limiter.global_store.get(GLOBAL_KEY).count == 3


def test_global_denial_does_not_charge_client_window():
    """A request refused by the global cap leaves the client's quota untouched."""
    clock = FakeClock()
    limiter = RateLimiter(
        max_requests=2,
        window_seconds=60,
        global_max_requests=1,
        clock=clock,
    )
    assert limiter.admit("client-a") is True

    clock.now += 20
    assert limiter.admit("client-b") is False
    assert limiter.admit("client-b") is False
    assert limiter.store.get("client-b") is None
    assert limiter.retry_after("client-b") == pytest.approx(40.0)

    clock.now += 40
    assert limiter.admit("client-b") is True
    assert limiter.admit("client-b") is False
    assert limiter.store.get("client-b").count == 1


def test_client_id_cannot_collide_with_global_window():
    limiter = RateLimiter(
        max_requests=1,
        window_seconds=60,
        global_max_requests=5,
        clock=FakeClock(),
    )

    assert limiter.admit(GLOBAL_KEY) is True
    assert limiter.admit("client-a") is True
    assert limiter.global_store.get(GLOBAL_KEY).count == 2


def test_retry_after_reports_remaining_window():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
    limiter.admit("client-a")
    clock.now += 15

    assert limiter.retry_after("client-a") == pytest.approx(45.0)
    assert limiter.retry_after("never-seen") == 0.0


def test_prune_drops_only_elapsed_windows():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window_seconds=60, clock=clock)
    limiter.admit("old-client")
    clock.now += 30
    limiter.admit("new-client")
    clock.now += 30

    assert limiter.prune() == 1
    assert limiter.store.get("old-client") is None
    assert limiter.store.get("new-client") is not None
    assert len(limiter.store) == 1


def test_prune_releases_idle_key_locks():
    """Locks for pruned clients are dropped so memory tracks active clients only."""
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window_seconds=60, clock=clock)
    for i in range(1000):
        limiter.admit(f"10.0.{i // 256}.{i % 256}")
    limiter.retry_after("never-seen")
    clock.now += 60

    assert limiter.prune() == 1000
    assert len(limiter.store) == 0
    assert len(limiter.store._key_locks) == 0


def test_prune_keeps_lock_of_live_window():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window_seconds=60, clock=clock)
    limiter.admit("old-client")
    clock.now += 30
    limiter.admit("new-client")
    clock.now += 30

    limiter.prune()

    assert list(limiter.store._key_locks) == ["new-client"]
    assert limiter.admit("new-client") is True
    assert limiter.store.get("new-client").count == 2


def test_store_update_returns_result_and_persists_window():
    store = RateWindowStore()

    result = store.update("k", lambda w: (RateWindow(count=7, window_start=1.0), "done"))

    assert result == "done"
    assert store.get("k") == RateWindow(count=7, window_start=1.0)


@pytest.mark.asyncio
async def test_concurrent_admissions_never_exceed_limit():
    """Concurrent requests for one client admit exactly max_requests."""
    limiter = RateLimiter(max_requests=5, window_seconds=60, clock=FakeClock())

    results = await asyncio.gather(
        *(asyncio.to_thread(limiter.admit, "client-a") for _ in range(20))
    )

    assert results.count(True) == 5
    assert limiter.store.get("client-a").count == 20


def _guarded_app(limiter: RateLimiter) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, rate_limiter=limiter, guarded_prefixes=("/places",))

    @app.get("/places/{place_id}")
    async def place(place_id: str):
        return {"place_id": place_id}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


def test_middleware_returns_429_with_retry_after():
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
    client = TestClient(_guarded_app(limiter))

    assert client.get("/places/abc").status_code == 200
    response = client.get("/places/abc")

    assert response.status_code == 429
    data = response.json()
    assert data["error"] == "rate_limit_exceeded"
    assert data["retry_after"] == 61
    assert response.headers["Retry-After"] == "61"
    assert response.headers["X-RateLimit-Limit"] == "1"


def test_middleware_ignores_unguarded_paths():
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
    client = TestClient(_guarded_app(limiter))

    for _ in range(3):
        assert client.get("/health").status_code == 200

    assert len(limiter.store) == 0
