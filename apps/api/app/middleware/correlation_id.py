from __future__ import annotations

import re
import uuid
from collections.abc import Mapping

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_correlation_id, set_correlation_id


CORRELATION_HEADERS = ("x-correlation-id", "x-request-id")

_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def inbound_correlation_id(headers: Mapping[str, str]) -> str | None:
    """First correlation header the caller sent, if it is safe to echo back and log."""

    for name in CORRELATION_HEADERS:
        candidate = headers.get(name)
        if candidate:
            return candidate if _VALID_CORRELATION_ID.match(candidate) else None
    return None


def resolve_correlation_id(request: Request) -> str:
    return inbound_correlation_id(request.headers) or str(uuid.uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = resolve_correlation_id(request)
        request.state.correlation_id = correlation_id
        token = set_correlation_id(correlation_id)
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)

        response.headers["x-correlation-id"] = correlation_id
        return response
