from __future__ import annotations

import os
from collections.abc import Generator
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app.business.customers.models import Customer
from app.business.organization.models import Department, User
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.core.security import create_access_token
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.otel import setup_inmemory_otel


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("sales-api")
    exporter.clear()
    return exporter


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


def test_request_span_contains_correlation_id(
    client: TestClient,
    org: dict[str, Any],
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.get("/api/v1/customers", headers={**_auth(org["am1"]), "X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_dashboard_build_span(
    client: TestClient,
    org: dict[str, Any],
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.get("/api/v1/reports/dashboard", headers=_auth(org["am1"]))
    assert response.status_code == 200

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "dashboard.build"]
    assert len(spans) == 1
    assert spans[0].attributes.get("actor_id") == str(org["am1"].id)
    assert spans[0].attributes.get("role") == "AM"


def test_target_upsert_span_records_outcome(
    client: TestClient,
    org: dict[str, Any],
    span_exporter: InMemorySpanExporter,
) -> None:
    payload = {"amount": 10, "month": 7, "year": 2026, "department_id": str(org["department"].id)}
    for _ in range(2):
        response = client.post("/api/v1/targets", json=payload, headers=_auth(org["admin"]))
        assert response.status_code == 201

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "target.upsert"]
    assert [span.attributes.get("outcome") for span in spans] == ["created", "updated"]
    assert all(span.attributes.get("period") == "2026-07" for span in spans)
    assert all(span.attributes.get("scope") == "department" for span in spans)
