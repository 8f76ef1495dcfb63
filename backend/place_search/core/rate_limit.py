"""
Per-client fixed-window rate limiting.

- RateWindowStore: keyed store of RateWindow state with per-key atomic updates
- RateLimiter: admission policy (max requests per window, optional global cap)
- RateLimitMiddleware: admission gate for endpoints that call the places
  provider directly (the search pipeline calls admit() itself)

Windows use a monotonic clock so wall-clock adjustments never reset them early
or late.
"""
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Dict, Iterator, Optional, Sequence, Tuple, TypeVar

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from place_search.core.config import get_settings
from place_search.core.logging import get_logger, get_trace_id
from place_search.core.metrics import record_rate_limit_denied, update_rate_limit_windows

logger = get_logger(__name__)

T = TypeVar("T")

GLOBAL_KEY = "__global__"


@dataclass
class RateWindow:
    """Request count for one client inside the current window."""
    count: int
    window_start: float


def get_client_ip(request: Request) -> str:
    """Extract client IP from request headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First hop is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def _mask(identifier: str) -> str:
    return identifier[:10] + "..." if len(identifier) > 10 else identifier


@dataclass
class _KeyLock:
    """Per-key lock plus the number of callers holding or waiting on it."""
    lock: Lock = field(default_factory=Lock)
    users: int = 0


class RateWindowStore:
    """
    In-memory map of client id -> RateWindow.

    update() runs its function while holding a lock owned by that key only,
    so concurrent requests for one client never interleave their
    read-modify-write while unrelated clients proceed in parallel.

    A key's lock is dropped by prune() once its window is gone and no caller
    holds or waits on it, so memory stays proportional to active clients.
    """

    def __init__(self):
        self._windows: Dict[str, RateWindow] = {}
        self._key_locks: Dict[str, _KeyLock] = {}
        # Guards the lock registry and the users counts only
        self._registry_lock = Lock()

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        with self._registry_lock:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._key_locks[key] = entry
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._registry_lock:
                entry.users -= 1

    def update(
        self,
        key: str,
        fn: Callable[[Optional[RateWindow]], Tuple[Optional[RateWindow], T]],
    ) -> T:
        """
        Atomically replace the window for key.

        fn receives the current window (or None) and returns (new_window, result).
        A new_window of None removes the key.
        """
        with self._locked(key):
            window, result = fn(self._windows.get(key))
            if window is None:
                self._windows.pop(key, None)
            else:
                self._windows[key] = window
            return result

    def get(self, key: str) -> Optional[RateWindow]:
        with self._locked(key):
            window = self._windows.get(key)
            if window is None:
                return None
            return RateWindow(count=window.count, window_start=window.window_start)

    def prune(self, is_expired: Callable[[RateWindow], bool]) -> int:
        """Drop windows for which is_expired returns True. Returns how many were dropped."""
        with self._registry_lock:
            keys = list(self._key_locks)

        removed = 0
        for key in keys:
            with self._locked(key):
                window = self._windows.get(key)
                if window is not None and is_expired(window):
                    del self._windows[key]
                    removed += 1

        with self._registry_lock:
            idle = [
                key for key, entry in self._key_locks.items()
                if entry.users == 0 and key not in self._windows
            ]
            for key in idle:
                del self._key_locks[key]
        return removed

    def __len__(self) -> int:
        return len(self._windows)


class RateLimiter:
    """
    Fixed-window admission gate.

    On the first request from a client, or once its window has elapsed, the
    counter resets to 1 and the window restarts now. Otherwise the counter
    increments and the request is denied once it exceeds max_requests.

    With global_max_requests set, every request that passes its client limit
    is also counted against one window shared by all clients. A request the
    global cap denies leaves the client's own window untouched.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        store: Optional[RateWindowStore] = None,
        global_max_requests: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if global_max_requests is not None and global_max_requests < 1:
            raise ValueError("global_max_requests must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.global_max_requests = global_max_requests
        self.store = store if store is not None else RateWindowStore()
        # Kept apart from client windows so no client id can collide with it
        self.global_store = RateWindowStore()
        self._clock = clock

    def _advance(self, window: Optional[RateWindow], now: float) -> RateWindow:
        if window is None or now - window.window_start >= self.window_seconds:
            return RateWindow(count=1, window_start=now)
        return RateWindow(count=window.count + 1, window_start=window.window_start)

    def _remaining(self, window: RateWindow, now: float) -> float:
        return max(0.0, self.window_seconds - (now - window.window_start))

    def _admit_global(self, now: float) -> bool:
        def step(window: Optional[RateWindow]) -> Tuple[RateWindow, bool]:
            updated = self._advance(window, now)
            return updated, updated.count <= self.global_max_requests

        return self.global_store.update(GLOBAL_KEY, step)

    def admit(self, client_id: str) -> bool:
        """Count one request for client_id and report whether it is admitted."""
        now = self._clock()
        denied_scope = None

        def step(window: Optional[RateWindow]) -> Tuple[Optional[RateWindow], bool]:
            nonlocal denied_scope
            updated = self._advance(window, now)
            if updated.count > self.max_requests:
                denied_scope = "client"
                return updated, False
            # Lock order is always client then global
            if self.global_max_requests is not None and not self._admit_global(now):
                denied_scope = "global"
                return window, False
            return updated, True

        admitted = self.store.update(client_id, step)
        if not admitted:
            record_rate_limit_denied(denied_scope)
            logger.warning("rate_limit_exceeded", identifier=_mask(client_id), scope=denied_scope)
            return False

        update_rate_limit_windows(len(self.store))
        return True

    def retry_after(self, client_id: str) -> float:
        """
        Seconds until the client may be admitted again.

        The longest wait among the exhausted limits (client and global);
        0 when neither is exhausted.
        """
        now = self._clock()
        waits = []
        window = self.store.get(client_id)
        if window is not None and window.count >= self.max_requests:
            waits.append(self._remaining(window, now))
        if self.global_max_requests is not None:
            shared = self.global_store.get(GLOBAL_KEY)
            if shared is not None and shared.count >= self.global_max_requests:
                waits.append(self._remaining(shared, now))
        return max(waits, default=0.0)

    def prune(self) -> int:
        """Forget windows that have fully elapsed."""
        now = self._clock()

        def is_expired(window: RateWindow) -> bool:
            return now - window.window_start >= self.window_seconds

        removed = self.store.prune(is_expired)
        self.global_store.prune(is_expired)
        update_rate_limit_windows(len(self.store))
        if removed:
            logger.debug("rate_limit_windows_pruned", removed=removed)
        return removed


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Request admission ahead of handlers that call the places provider directly.

    Only paths under guarded_prefixes are counted.
    """

    def __init__(
        self,
        app,
        rate_limiter: Optional[RateLimiter] = None,
        guarded_prefixes: Sequence[str] = ("/places",),
    ):
        super().__init__(app)
        self._rate_limiter = rate_limiter
        self.guarded_prefixes = tuple(guarded_prefixes)

    @property
    def rate_limiter(self) -> RateLimiter:
        if self._rate_limiter is None:
            self._rate_limiter = get_rate_limiter()
        return self._rate_limiter

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.guarded_prefixes):
            return await call_next(request)

        client_ip = get_client_ip(request)
        if self.rate_limiter.admit(client_ip):
            return await call_next(request)

        retry_after = int(self.rate_limiter.retry_after(client_ip)) + 1
        response = JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "detail": "Rate limit exceeded",
                "error": "rate_limit_exceeded",
                "status_code": status.HTTP_429_TOO_MANY_REQUESTS,
                "retry_after": retry_after,
                "trace_id": get_trace_id(),
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-RateLimit-Limit"] = str(self.rate_limiter.max_requests)
        return response


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Global rate limiter shared by the search pipeline and the middleware."""
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        _rate_limiter = RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
            global_max_requests=settings.rate_limit_global_max_requests,
        )
    return _rate_limiter
