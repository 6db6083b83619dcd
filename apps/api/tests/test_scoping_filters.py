from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.business.customers.models import Customer, Progress
from app.business.customers.repository import CustomerRepository, ProgressRepository
from app.business.organization.models import Department, User
from app.business.organization.repository import UserRepository
from app.business.targets.models import Target
from app.business.targets.repository import TargetRepository
from app.core.database import Base
from app.platform.security.context import Actor, Role
from app.platform.security.repository import BaseRepository


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
def org(db_session: Session) -> dict[str, User]:
    d1 = Department(name="D1")
    d2 = Department(name="D2")
    db_session.add_all([d1, d2])
    db_session.flush()

    users = {
        "admin": User(email="admin@example.com", name="Admin", role="ADMIN", password_hash="x"),
        "gm1": User(email="gm1@example.com", name="GM 1", role="GM", password_hash="x", department_id=d1.id),
        "gm2": User(email="gm2@example.com", name="GM 2", role="GM", password_hash="x", department_id=d2.id),
        "am1": User(email="am1@example.com", name="AM 1", role="AM", password_hash="x", department_id=d1.id),
        "am2": User(email="am2@example.com", name="AM 2", role="AM", password_hash="x", department_id=d1.id),
        "am3": User(email="am3@example.com", name="AM 3", role="AM", password_hash="x", department_id=d2.id),
        "legacy": User(email="legacy@example.com", name="Legacy", role="SUPERVISOR", password_hash="x", department_id=d1.id),
    }
    db_session.add_all(users.values())
    db_session.flush()

    for owner in ("am1", "am1", "am2", "am3"):
        db_session.add(
            Customer(
                am_id=users[owner].id,
                company_name=f"{owner} co {uuid.uuid4().hex[:6]}",
                pic="PIC",
                phone="+620000",
                potential=Decimal("100"),
                status="prospect",
            )
        )
    db_session.commit()
    return users


def _actor(user: User) -> Actor:
    return Actor(user_id=user.id, role=Role.parse(user.role), department_id=user.department_id)


def _owners(session: Session, actor: Actor) -> list[uuid.UUID]:
    repository = CustomerRepository()
    return sorted(session.scalars(repository.scoped(select(Customer.am_id), actor)).all())


def test_customer_scope_per_role(db_session: Session, org: dict[str, User]) -> None:
    repository = CustomerRepository()

    assert _owners(db_session, _actor(org["am1"])) == sorted([org["am1"].id, org["am1"].id])
    assert set(_owners(db_session, _actor(org["gm1"]))) == {org["am1"].id, org["am2"].id}
    assert set(_owners(db_session, _actor(org["gm2"]))) == {org["am3"].id}
    assert len(_owners(db_session, _actor(org["admin"]))) == 4

    rows, total = repository.list_page(db_session, _actor(org["gm1"]), status=None, page=1, limit=20)
    assert total == 3
    assert len(rows) == 3


def test_unknown_role_and_gm_without_department_fail_closed(db_session: Session, org: dict[str, User]) -> None:
    assert _owners(db_session, _actor(org["legacy"])) == []

    detached_gm = Actor(user_id=org["gm1"].id, role=Role.GM, department_id=None)
    assert _owners(db_session, detached_gm) == []


def test_base_repository_scope_defaults_to_deny(db_session: Session, org: dict[str, User]) -> None:
    class UnscopedRepository(BaseRepository):
        model = Customer

    rows = db_session.scalars(UnscopedRepository().scoped(select(Customer), _actor(org["admin"]))).all()
    assert rows == []


def test_scope_filter_is_idempotent_and_commutes_with_soft_delete(db_session: Session, org: dict[str, User]) -> None:
    repository = CustomerRepository()
    actor = _actor(org["gm1"])
    victim = db_session.scalar(select(Customer).where(Customer.am_id == org["am2"].id))
    assert victim is not None
    victim.deleted_at = datetime.now(timezone.utc)
    db_session.commit()

    once = repository.apply_scope_query(select(Customer.id), actor)
    twice = repository.apply_scope_query(once, actor)
    assert sorted(db_session.scalars(once).all()) == sorted(db_session.scalars(twice).all())

    scope_then_active = repository.apply_active_query(repository.apply_scope_query(select(Customer.id), actor))
    active_then_scope = repository.apply_scope_query(repository.apply_active_query(select(Customer.id)), actor)
    left = sorted(db_session.scalars(scope_then_active).all())
    right = sorted(db_session.scalars(active_then_scope).all())
    assert left == right
    assert victim.id not in left
    assert len(left) == 2


def test_same_clause_narrows_count_and_group_by(db_session: Session, org: dict[str, User]) -> None:
    clause = CustomerRepository().scope_clause(_actor(org["gm1"]))

    count = db_session.scalar(select(func.count(Customer.id)).where(clause))
    grouped = dict(
        db_session.execute(select(Customer.am_id, func.count(Customer.id)).where(clause).group_by(Customer.am_id)).all()
    )
    assert count == 3
    assert grouped == {org["am1"].id: 2, org["am2"].id: 1}


def test_progress_scope_follows_parent_customer(db_session: Session, org: dict[str, User]) -> None:
    for customer in db_session.scalars(select(Customer)).all():
        db_session.add(Progress(customer_id=customer.id, am_id=customer.am_id, description="call", status="prospect"))
    db_session.commit()

    repository = ProgressRepository()
    am3_rows = repository.list_recent(db_session, _actor(org["am3"]), limit=10)
    gm1_rows = repository.list_recent(db_session, _actor(org["gm1"]), limit=10)

    assert {row.am_id for row in am3_rows} == {org["am3"].id}
    assert len(gm1_rows) == 3
    assert repository.list_recent(db_session, _actor(org["legacy"]), limit=10) == []


def test_target_scope_for_gm_covers_department_and_its_users(db_session: Session, org: dict[str, User]) -> None:
    d1 = org["gm1"].department_id
    d2 = org["gm2"].department_id
    db_session.add_all(
        [
            Target(amount=Decimal("1000"), month=3, year=2026, department_id=d1),
            Target(amount=Decimal("2000"), month=3, year=2026, department_id=d2),
            Target(amount=Decimal("300"), month=3, year=2026, user_id=org["am1"].id),
            Target(amount=Decimal("400"), month=3, year=2026, user_id=org["am3"].id),
        ]
    )
    db_session.commit()

    repository = TargetRepository()
    gm1_targets = repository.list_for_period(db_session, _actor(org["gm1"]), month=3, year=2026)
    am1_targets = repository.list_for_period(db_session, _actor(org["am1"]), month=3, year=2026)
    admin_targets = repository.list_for_period(db_session, _actor(org["admin"]), month=3, year=2026)

    assert {(item.department_id, item.user_id) for item in gm1_targets} == {(d1, None), (None, org["am1"].id)}
    assert [item.user_id for item in am1_targets] == [org["am1"].id]
    assert len(admin_targets) == 4
    assert repository.list_for_period(db_session, _actor(org["admin"]), month=4, year=2026) == []


def test_user_scope_matches_customer_scope_rules(db_session: Session, org: dict[str, User]) -> None:
    repository = UserRepository()
    gm_visible = set(db_session.scalars(repository.scoped(select(User.id), _actor(org["gm1"]))).all())

    assert gm_visible == {org["gm1"].id, org["am1"].id, org["am2"].id, org["legacy"].id}
    assert set(db_session.scalars(repository.scoped(select(User.id), _actor(org["am1"]))).all()) == {org["am1"].id}
