from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal
from typing import Any

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.business.organization.models import Department, User
from app.business.targets.models import Target
from app.business.targets.repository import TargetRepository
from app.business.targets.schemas import TargetUpsert
from app.business.targets.service import TargetService
from app.core.database import Base
from app.core.events import NullNotifier
from app.platform.security.context import Actor, Role
from app.platform.security.errors import ConflictError, ForbiddenError, ValidationError


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to behave.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN")

    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def org(db_session: Session) -> dict[str, Any]:
    d1 = Department(name="D1")
    d2 = Department(name="D2")
    db_session.add_all([d1, d2])
    db_session.flush()
    users = {
        "admin": User(email="admin@example.com", name="Admin", role="ADMIN", password_hash="x"),
        "gm1": User(email="gm1@example.com", name="GM 1", role="GM", password_hash="x", department_id=d1.id),
        "am1": User(email="am1@example.com", name="AM 1", role="AM", password_hash="x", department_id=d1.id),
        "am3": User(email="am3@example.com", name="AM 3", role="AM", password_hash="x", department_id=d2.id),
    }
    db_session.add_all(users.values())
    db_session.commit()
    return {**users, "d1": d1, "d2": d2}


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any], list[str]]] = []

    def publish(self, event_name: str, payload: dict[str, Any], *, rooms: list[str] | None = None) -> None:
        self.events.append((event_name, payload, list(rooms or [])))


class RacingTargetRepository(TargetRepository):
    """Misses the existing row for the first ``misses`` lookups, like a concurrent writer would."""

    def __init__(self, misses: int) -> None:
        self.misses = misses

    def find_for_key(self, session: Session, **kwargs: Any) -> Target | None:
        if self.misses > 0:
            self.misses -= 1
            return None
        return super().find_for_key(session, **kwargs)


def _actor(user: User) -> Actor:
    return Actor(user_id=user.id, role=Role.parse(user.role), department_id=user.department_id)


def _count(session: Session) -> int:
    return session.scalar(select(func.count()).select_from(Target)) or 0


def _sample(outcome: str) -> float:
    return REGISTRY.get_sample_value("target_upserts_total", {"outcome": outcome}) or 0.0


def test_create_then_update_changes_amount_only(db_session: Session, org: dict[str, Any]) -> None:
    service = TargetService()
    actor = _actor(org["admin"])

    created = service.create_or_update(
        db_session,
        actor,
        TargetUpsert(amount=Decimal("1000"), currency="USD", month=3, year=2026, user_id=org["am1"].id),
        NullNotifier(),
    )
    updated = service.create_or_update(
        db_session,
        actor,
        TargetUpsert(amount=Decimal("2500.50"), month=3, year=2026, user_id=org["am1"].id),
        NullNotifier(),
    )

    assert updated.id == created.id
    assert updated.amount == Decimal("2500.50")
    assert updated.currency == "USD"
    assert (updated.month, updated.year) == (3, 2026)
    assert _count(db_session) == 1


def test_missing_currency_uses_default(db_session: Session, org: dict[str, Any]) -> None:
    created = TargetService().create_or_update(
        db_session,
        _actor(org["admin"]),
        TargetUpsert(amount=Decimal("10"), month=1, year=2026, department_id=org["d2"].id),
        NullNotifier(),
    )

    assert created.currency == "IDR"
    assert created.department is not None and created.department.name == "D2"


def test_concurrent_insert_is_retried_as_update(db_session: Session, org: dict[str, Any]) -> None:
    db_session.add(Target(amount=Decimal("100"), month=3, year=2026, user_id=org["am1"].id))
    db_session.commit()
    before = _sample("retried")

    service = TargetService(target_repository=RacingTargetRepository(misses=1))
    result = service.create_or_update(
        db_session,
        _actor(org["admin"]),
        TargetUpsert(amount=Decimal("200"), month=3, year=2026, user_id=org["am1"].id),
        NullNotifier(),
    )

    assert result.amount == Decimal("200")
    assert _count(db_session) == 1
    assert db_session.scalar(select(Target.amount)) == Decimal("200")
    assert _sample("retried") == before + 1


def test_repeated_conflicts_raise_conflict_error(db_session: Session, org: dict[str, Any]) -> None:
    db_session.add(Target(amount=Decimal("100"), month=3, year=2026, user_id=org["am1"].id))
    db_session.commit()
    before = _sample("conflict")

    service = TargetService(target_repository=RacingTargetRepository(misses=10))
    with pytest.raises(ConflictError):
        service.create_or_update(
            db_session,
            _actor(org["admin"]),
            TargetUpsert(amount=Decimal("200"), month=3, year=2026, user_id=org["am1"].id),
            NullNotifier(),
        )

    db_session.rollback()
    assert _count(db_session) == 1
    assert _sample("conflict") == before + 1


def test_gm_defaults_to_own_department(db_session: Session, org: dict[str, Any]) -> None:
    result = TargetService().create_or_update(
        db_session,
        _actor(org["gm1"]),
        TargetUpsert(amount=Decimal("5000"), month=4, year=2026),
        NullNotifier(),
    )

    assert result.department_id == org["d1"].id
    assert result.user_id is None


def test_gm_cannot_set_targets_outside_department(db_session: Session, org: dict[str, Any]) -> None:
    service = TargetService()
    actor = _actor(org["gm1"])

    with pytest.raises(ForbiddenError):
        service.create_or_update(
            db_session,
            actor,
            TargetUpsert(amount=Decimal("1"), month=4, year=2026, department_id=org["d2"].id),
            NullNotifier(),
        )
    with pytest.raises(ForbiddenError):
        service.create_or_update(
            db_session,
            actor,
            TargetUpsert(amount=Decimal("1"), month=4, year=2026, user_id=org["am3"].id),
            NullNotifier(),
        )

    result = service.create_or_update(
        db_session,
        actor,
        TargetUpsert(amount=Decimal("1"), month=4, year=2026, user_id=org["am1"].id),
        NullNotifier(),
    )
    assert result.user_id == org["am1"].id
    assert _count(db_session) == 1


def test_am_cannot_manage_targets(db_session: Session, org: dict[str, Any]) -> None:
    with pytest.raises(ForbiddenError):
        TargetService().create_or_update(
            db_session,
            _actor(org["am1"]),
            TargetUpsert(amount=Decimal("1"), month=4, year=2026, user_id=org["am1"].id),
            NullNotifier(),
        )
    assert _count(db_session) == 0


def test_target_scope_must_be_exactly_one(db_session: Session, org: dict[str, Any]) -> None:
    service = TargetService()
    actor = _actor(org["admin"])

    with pytest.raises(ValidationError):
        service.create_or_update(
            db_session,
            actor,
            TargetUpsert(amount=Decimal("1"), month=4, year=2026),
            NullNotifier(),
        )

    both = TargetUpsert.model_construct(
        amount=Decimal("1"),
        currency=None,
        month=4,
        year=2026,
        department_id=org["d1"].id,
        user_id=org["am1"].id,
    )
    with pytest.raises(ValidationError):
        service.create_or_update(db_session, actor, both, NullNotifier())

    with pytest.raises(ValueError):
        TargetUpsert(amount=Decimal("1"), month=4, year=2026, department_id=org["d1"].id, user_id=org["am1"].id)

    assert _count(db_session) == 0


def test_unknown_scope_owner_is_rejected(db_session: Session, org: dict[str, Any]) -> None:
    service = TargetService()
    actor = _actor(org["admin"])

    with pytest.raises(ValidationError) as exc_info:
        service.create_or_update(
            db_session,
            actor,
            TargetUpsert(amount=Decimal("1"), month=4, year=2026, user_id=org["d1"].id),
            NullNotifier(),
        )
    assert exc_info.value.fields == {"user_id": "User not found"}


def test_upsert_publishes_target_updated(db_session: Session, org: dict[str, Any]) -> None:
    notifier = RecordingNotifier()
    result = TargetService().create_or_update(
        db_session,
        _actor(org["gm1"]),
        TargetUpsert(amount=Decimal("75"), month=5, year=2026, user_id=org["am1"].id),
        notifier,
    )

    assert len(notifier.events) == 1
    name, envelope, rooms = notifier.events[0]
    assert name == "target.updated"
    assert envelope["event_type"] == "target.updated"
    assert envelope["actor_user_id"] == str(org["gm1"].id)
    assert envelope["payload"]["id"] == str(result.id)
    assert set(rooms) == {"role:ADMIN", f"user:{org['am1'].id}", f"department:{org['d1'].id}"}
