from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.business.customers.models import Customer
from app.business.organization.models import Department, User
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.core.events import InternalEvent
from app.core.security import create_access_token
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


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


@pytest.fixture()
def org(db_session: Session) -> dict[str, Any]:
    department = Department(name="D1")
    db_session.add(department)
    db_session.flush()
    users = {
        "admin": User(email="admin@example.com", name="Admin", role="ADMIN", password_hash="x"),
        "am1": User(email="am1@example.com", name="AM 1", role="AM", password_hash="x", department_id=department.id),
        "am2": User(email="am2@example.com", name="AM 2", role="AM", password_hash="x", department_id=department.id),
    }
    db_session.add_all(users.values())
    db_session.flush()
    customer = Customer(
        am_id=users["am1"].id,
        company_name="Acme",
        pic="Jane",
        phone="+621",
        potential=Decimal("100"),
        status="prospect",
    )
    db_session.add(customer)
    db_session.commit()
    return {**users, "department": department, "customer": customer}


def _auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email, user.role)}"}


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient, org: dict[str, Any]) -> None:
    response = client.get(f"/api/v1/customers/{uuid.uuid4()}", headers=_auth(org["am1"]))

    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert uuid.UUID(header_value)
    assert response.json()["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient, org: dict[str, Any]) -> None:
    response = client.get(
        f"/api/v1/customers/{uuid.uuid4()}",
        headers={**_auth(org["am1"]), "X-Correlation-Id": "abc-123"},
    )

    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_request_id_header_is_accepted(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-Id": "req-42"})

    assert response.status_code == 200
    assert response.headers.get("x-correlation-id") == "req-42"


def test_malformed_correlation_id_is_replaced(client: TestClient) -> None:
    for bad in ("has spaces in it", "x" * 129, "semi;colon"):
        response = client.get("/health", headers={"X-Correlation-Id": bad})

        assert response.status_code == 200
        assert response.headers["x-correlation-id"] != bad
        assert uuid.UUID(response.headers["x-correlation-id"])


def test_unauthorized_envelope_carries_correlation_id(client: TestClient) -> None:
    response = client.get("/api/v1/reports/dashboard", headers={"X-Correlation-Id": "corr-401"})

    assert response.status_code == 401
    assert response.json()["correlation_id"] == "corr-401"


def test_event_envelope_includes_correlation_id(client: TestClient, org: dict[str, Any]) -> None:
    received: list[InternalEvent] = []
    app.state.notifier.subscribe("progress.created", received.append)

    response = client.post(
        "/api/v1/progress",
        json={"customer_id": str(org["customer"].id), "description": "Call"},
        headers={**_auth(org["am1"]), "X-Correlation-Id": "corr-event-1"},
    )

    assert response.status_code == 201
    assert received
    assert received[-1].payload["correlation_id"] == "corr-event-1"


def test_rate_limited_response_includes_correlation_id(
    client: TestClient,
    org: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "1")
    get_settings.cache_clear()
    reset_rate_limiter()
    headers = {**_auth(org["am1"]), "X-Correlation-Id": "corr-rate-1"}
    payload = {"customer_id": str(org["customer"].id), "description": "Call"}

    first = client.post("/api/v1/progress", json=payload, headers=headers)
    assert first.status_code == 201

    second = client.post("/api/v1/progress", json=payload, headers=headers)
    assert second.status_code == 429
    assert second.json()["correlation_id"] == "corr-rate-1"
    assert second.headers.get("x-correlation-id") == "corr-rate-1"
