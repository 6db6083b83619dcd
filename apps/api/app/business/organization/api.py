from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, Response, status
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.business.organization.schemas import (
    AccessTokenResponse,
    DepartmentCreate,
    DepartmentRead,
    DepartmentUpdate,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordReset,
    RefreshRequest,
    UserCreate,
    UserRead,
    UserSummary,
    UserUpdate,
)
from app.business.organization.service import auth_service, department_service, user_service
from app.core.auth import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, get_current_actor
from app.core.config import get_settings
from app.core.database import get_db
from app.platform.security.context import Actor
from app.platform.security.errors import UnauthorizedError


auth_router = APIRouter(prefix="/auth", tags=["auth"])
users_router = APIRouter(prefix="/users", tags=["users"])
departments_router = APIRouter(prefix="/departments", tags=["departments"])


def _set_auth_cookies(response: Response, *, access_token: str, refresh_token: str | None = None) -> None:
    settings = get_settings()
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        access_token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    if refresh_token is not None:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            refresh_token,
            max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
        )


@auth_router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)) -> LoginResponse:
    result = auth_service.login(db, payload.email, payload.password)
    _set_auth_cookies(response, access_token=result.access_token, refresh_token=result.refresh_token)
    return result


@auth_router.post("/refresh", response_model=AccessTokenResponse)
def refresh(
    request: Request,
    response: Response,
    payload: RefreshRequest | None = Body(default=None),
    db: Session = Depends(get_db),
) -> AccessTokenResponse:
    token = request.cookies.get(REFRESH_TOKEN_COOKIE) or (payload.refresh_token if payload else None)
    if not token:
        raise UnauthorizedError("Refresh token required")
    result = auth_service.refresh(db, token)
    _set_auth_cookies(response, access_token=result.access_token)
    return result


@auth_router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    payload: RefreshRequest | None = Body(default=None),
    db: Session = Depends(get_db),
) -> MessageResponse:
    token = request.cookies.get(REFRESH_TOKEN_COOKIE) or (payload.refresh_token if payload else None)
    result = auth_service.logout(db, token)
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    response.delete_cookie(REFRESH_TOKEN_COOKIE)
    return result


@auth_router.get("/me", response_model=UserRead)
def me(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> UserRead:
    return auth_service.me(db, actor)


@users_router.get("", response_model=list[UserRead])
def list_users(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> list[UserRead]:
    return user_service.list_users(db, actor)


@users_router.get("/managers", response_model=list[UserSummary])
def list_managers(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> list[UserSummary]:
    return user_service.list_managers(db, actor)


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead:
    return user_service.create_user(db, actor, payload)


@users_router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead:
    return user_service.get_user(db, actor, user_id)


@users_router.put("/{user_id}", response_model=UserRead)
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead:
    return user_service.update_user(db, actor, user_id, payload)


@users_router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> MessageResponse:
    return user_service.delete_user(db, actor, user_id)


@users_router.post("/{user_id}/reset-password", response_model=MessageResponse)
def reset_password(
    user_id: uuid.UUID,
    payload: PasswordReset,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> MessageResponse:
    return user_service.reset_password(db, actor, user_id, payload.password)


@departments_router.get("", response_model=list[DepartmentRead])
def list_departments(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> list[DepartmentRead]:
    return department_service.list_departments(db, actor)


@departments_router.post("", response_model=DepartmentRead, status_code=status.HTTP_201_CREATED)
def create_department(
    payload: DepartmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> DepartmentRead:
    return department_service.create_department(db, actor, payload)


@departments_router.put("/{department_id}", response_model=DepartmentRead)
def update_department(
    department_id: uuid.UUID,
    payload: DepartmentUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> DepartmentRead:
    return department_service.update_department(db, actor, department_id, payload)
