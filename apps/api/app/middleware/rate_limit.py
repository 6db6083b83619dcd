from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.auth import ACCESS_TOKEN_COOKIE
from app.core.config import get_settings
from app.core.security import ACCESS_TOKEN_TYPE, decode_token


API_PREFIX = "/api/v1"
WINDOW_SECONDS = 60


@dataclass
class _BucketState:
    tokens: float
    last_refill: float


class _TokenBucketLimiter:
    """Per (caller, route group) token buckets refilled continuously over the window."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _BucketState] = {}
        self._last_sweep = time.monotonic()

    def take(self, caller: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        refill_rate = capacity / float(window_seconds)
        key = (caller, route_group)

        with self._lock:
            self._evict_idle(now, window_seconds)
            bucket = self._buckets.setdefault(key, _BucketState(tokens=float(capacity), last_refill=now))
            elapsed = max(0.0, now - bucket.last_refill)
            bucket.tokens = min(float(capacity), bucket.tokens + elapsed * refill_rate)
            bucket.last_refill = now

            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / refill_rate))

            bucket.tokens -= 1.0
            return True, 0

    def _evict_idle(self, now: float, window_seconds: int) -> None:
        # A bucket untouched for a whole window is full again; dropping it loses nothing.
        if now - self._last_sweep < window_seconds:
            return
        self._last_sweep = now
        idle = [key for key, bucket in self._buckets.items() if now - bucket.last_refill >= window_seconds]
        for key in idle:
            del self._buckets[key]

    def __len__(self) -> int:
        return len(self._buckets)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._last_sweep = time.monotonic()


_limiter = _TokenBucketLimiter()


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    mutating_methods = {"POST", "PUT", "PATCH", "DELETE"}
    exempt_groups = {"auth"}

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)

        path = request.url.path
        if not path.startswith(API_PREFIX) or request.method.upper() not in self.mutating_methods:
            return await call_next(request)

        route_group = _resolve_route_group(path)
        if route_group in self.exempt_groups:
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            caller=_resolve_caller(request),
            route_group=route_group,
            capacity=settings.rate_limit_mutations_per_minute,
            window_seconds=WINDOW_SECONDS,
        )
        if allowed:
            return await call_next(request)

        correlation_id = (
            get_correlation_id()
            or getattr(request.state, "correlation_id", None)
            or request.headers.get("x-correlation-id")
            or str(uuid.uuid4())
        )
        response = JSONResponse(
            status_code=429,
            content={
                "code": "RATE_LIMITED",
                "message": "Too many requests",
                "details": {"route_group": route_group, "retry_after": retry_after},
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["x-correlation-id"] = correlation_id
        return response


def _resolve_route_group(path: str) -> str:
    # /api/v1/<group>/...
    parts = [part for part in path[len(API_PREFIX):].split("/") if part]
    return parts[0] if parts else "root"


def _resolve_caller(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.removeprefix("Bearer ") if auth_header.startswith("Bearer ") else ""
    token = token or request.cookies.get(ACCESS_TOKEN_COOKIE, "")
    payload = decode_token(token, ACCESS_TOKEN_TYPE) if token else None
    if payload is None or payload.get("sub") is None:
        return f"anonymous:{request.client.host if request.client else 'unknown'}"
    return str(payload["sub"])


def reset_rate_limiter() -> None:
    _limiter.clear()
