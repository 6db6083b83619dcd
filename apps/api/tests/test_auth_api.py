from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.business.organization.models import Department, User, UserSession
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.core.security import create_access_token, hash_password
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


@pytest.fixture(autouse=True)
def _settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


PASSWORD = "password123"


@pytest.fixture()
def org(db_session: Session) -> dict[str, Any]:
    department = Department(name="Sales A")
    db_session.add(department)
    db_session.flush()
    password_hash = hash_password(PASSWORD)
    users = {
        "admin": User(email="admin@example.com", username="admin", name="Admin", role="ADMIN", password_hash=password_hash),
        "am1": User(
            email="am1@example.com",
            name="AM 1",
            role="AM",
            password_hash=password_hash,
            department_id=department.id,
        ),
    }
    db_session.add_all(users.values())
    db_session.commit()
    return {**users, "department": department}


def _login(client: TestClient, login: str, password: str = PASSWORD) -> Any:
    return client.post("/api/v1/auth/login", json={"email": login, "password": password})


def test_login_by_email_sets_cookies(client: TestClient, org: dict[str, Any]) -> None:
    response = _login(client, "AM1@example.com")

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == "am1@example.com"
    assert body["user"]["role"] == "AM"
    assert body["user"]["department"]["name"] == "Sales A"
    assert body["token_type"] == "bearer"
    assert body["access_token"] and body["refresh_token"]
    assert response.cookies.get("accessToken") == body["access_token"]
    assert response.cookies.get("refreshToken") == body["refresh_token"]
    assert "httponly" in response.headers.get("set-cookie", "").lower()


def test_login_by_username(client: TestClient, org: dict[str, Any]) -> None:
    response = _login(client, "admin")

    assert response.status_code == 200
    assert response.json()["user"]["id"] == str(org["admin"].id)


def test_login_with_wrong_password_is_unauthorized(client: TestClient, org: dict[str, Any]) -> None:
    response = _login(client, "am1@example.com", "wrong-password")

    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "unauthorized"
    assert body["message"] == "Invalid credentials"
    assert body["correlation_id"] == response.headers["x-correlation-id"]


def test_deleted_user_cannot_login(client: TestClient, db_session: Session, org: dict[str, Any]) -> None:
    org["am1"].deleted_at = org["am1"].created_at
    db_session.commit()

    assert _login(client, "am1@example.com").status_code == 401


def test_me_accepts_bearer_token_or_cookie(client: TestClient, org: dict[str, Any]) -> None:
    token = create_access_token(org["am1"].id, org["am1"].email, org["am1"].role)

    bearer = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert bearer.status_code == 200
    assert bearer.json()["email"] == "am1@example.com"

    _login(client, "admin")
    cookie = client.get("/api/v1/auth/me")
    assert cookie.status_code == 200
    assert cookie.json()["email"] == "admin@example.com"


def test_role_comes_from_user_row_not_token_claim(client: TestClient, org: dict[str, Any]) -> None:
    token = create_access_token(org["am1"].id, org["am1"].email, "ADMIN")
    headers = {"Authorization": f"Bearer {token}"}

    me = client.get("/api/v1/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["role"] == "AM"

    assert client.get("/api/v1/users", headers=headers).status_code == 403


def test_me_rejects_missing_or_garbage_tokens(client: TestClient, org: dict[str, Any]) -> None:
    assert client.get("/api/v1/auth/me").status_code == 401
    assert client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_refresh_token_is_not_an_access_token(client: TestClient, org: dict[str, Any]) -> None:
    refresh_token = _login(client, "am1@example.com").json()["refresh_token"]
    client.cookies.clear()

    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {refresh_token}"})
    assert response.status_code == 401


def test_refresh_via_cookie_and_body(client: TestClient, org: dict[str, Any]) -> None:
    refresh_token = _login(client, "am1@example.com").json()["refresh_token"]

    via_cookie = client.post("/api/v1/auth/refresh")
    assert via_cookie.status_code == 200
    assert via_cookie.json()["access_token"]

    client.cookies.clear()
    via_body = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
    assert via_body.status_code == 200
    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {via_body.json()['access_token']}"})
    assert me.json()["id"] == str(org["am1"].id)


def test_refresh_without_token_is_unauthorized(client: TestClient, org: dict[str, Any]) -> None:
    response = client.post("/api/v1/auth/refresh")

    assert response.status_code == 401
    assert response.json()["message"] == "Refresh token required"


def test_logout_invalidates_refresh_token(client: TestClient, db_session: Session, org: dict[str, Any]) -> None:
    refresh_token = _login(client, "am1@example.com").json()["refresh_token"]

    response = client.post("/api/v1/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully"}
    assert db_session.query(UserSession).count() == 0

    client.cookies.clear()
    again = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
    assert again.status_code == 401
