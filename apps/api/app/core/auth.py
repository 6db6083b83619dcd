from dataclasses import dataclass
import uuid

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.business.organization.models import User
from app.context import get_correlation_id
from app.core.context import get_request_context
from app.core.database import get_db
from app.core.security import ACCESS_TOKEN_TYPE, decode_token
from app.platform.security.context import Actor, Role
from app.platform.security.errors import UnauthorizedError


ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"


@dataclass
class AuthUser:
    """Token subject only; the role is always reloaded from the user row."""

    sub: str


def _read_access_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.replace("Bearer ", "", 1)
    return request.cookies.get(ACCESS_TOKEN_COOKIE, "")


async def get_current_user(request: Request) -> AuthUser:
    token = _read_access_token(request)
    if not token:
        raise UnauthorizedError("Authentication required")

    payload = decode_token(token, ACCESS_TOKEN_TYPE)
    if payload is None:
        raise UnauthorizedError("Invalid or expired token")

    return AuthUser(sub=str(payload["sub"]))


def get_current_actor(
    request: Request,
    auth_user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Actor:
    try:
        user_id = uuid.UUID(auth_user.sub)
    except ValueError:
        raise UnauthorizedError("Invalid or expired token")

    user = db.scalar(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    if user is None:
        raise UnauthorizedError("Authentication required")

    context = get_request_context(request)
    if context is not None:
        context.bind_actor(user.id, user.role)

    return Actor(
        user_id=user.id,
        role=Role.parse(user.role),
        department_id=user.department_id,
        name=user.name,
        email=user.email,
        correlation_id=get_correlation_id() or (context.correlation_id if context is not None else None),
    )
