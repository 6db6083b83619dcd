from __future__ import annotations

import uuid
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


@dataclass
class RequestContext:
    """Per-request facts; the actor half is filled in once authentication resolves a user."""

    correlation_id: str
    client_host: str | None
    actor_id: str | None = None
    role: str | None = None

    def bind_actor(self, actor_id: uuid.UUID, role: str) -> None:
        self.actor_id = str(actor_id)
        self.role = role

    def log_fields(self) -> dict[str, str | None]:
        if self.actor_id is None:
            return {}
        return {"actor_id": self.actor_id, "role": self.role}


def get_request_context(request: Request) -> RequestContext | None:
    return getattr(request.state, "context", None)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = RequestContext(
            correlation_id=getattr(request.state, "correlation_id", None) or "",
            client_host=request.client.host if request.client else None,
        )
        request.state.context = context
        response = await call_next(request)
        response.headers["x-request-id"] = context.correlation_id
        return response
