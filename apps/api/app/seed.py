"""Demo data: ``python -m app.seed`` after ``alembic upgrade head``.

Creates an admin, two departments each led by a GM, three AMs, current-period targets, sample
customers and a few progress notes. Running it again is a no-op once the admin exists.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.business.customers.models import Customer, Progress
from app.business.organization.models import Department, User
from app.business.targets.models import Target
from app.core.database import SessionLocal
from app.core.security import hash_password
from app.logging import configure_logging
from app.platform.security.context import Role


logger = logging.getLogger("app.seed")

DEFAULT_PASSWORD = "password123"
ADMIN_EMAIL = "admin@example.com"


def _user(email: str, name: str, role: Role, password_hash: str, **extra: object) -> User:
    return User(email=email, name=name, role=role.value, password_hash=password_hash, **extra)


def seed(session: Session, *, now: datetime | None = None) -> bool:
    """Insert the demo data set; ``False`` when it is already present."""

    if session.scalar(select(User).where(User.email == ADMIN_EMAIL)) is not None:
        logger.info("seed.skipped", extra={"outcome": "already_seeded"})
        return False

    current = now or datetime.now(timezone.utc)
    password_hash = hash_password(DEFAULT_PASSWORD)

    session.add(_user(ADMIN_EMAIL, "Admin User", Role.ADMIN, password_hash, username="admin"))

    dept_a = Department(name="Sales Department A")
    dept_b = Department(name="Sales Department B")
    session.add_all([dept_a, dept_b])
    session.flush()

    gm1 = _user("gm1@example.com", "General Manager 1", Role.GM, password_hash, department_id=dept_a.id)
    gm2 = _user("gm2@example.com", "General Manager 2", Role.GM, password_hash, department_id=dept_b.id)
    session.add_all([gm1, gm2])
    session.flush()
    dept_a.gm_id = gm1.id
    dept_b.gm_id = gm2.id

    am1 = _user("am1@example.com", "Account Manager 1", Role.AM, password_hash, department_id=dept_a.id, manager_id=gm1.id)
    am2 = _user("am2@example.com", "Account Manager 2", Role.AM, password_hash, department_id=dept_a.id, manager_id=gm1.id)
    am3 = _user("am3@example.com", "Account Manager 3", Role.AM, password_hash, department_id=dept_b.id, manager_id=gm2.id)
    session.add_all([am1, am2, am3])
    session.flush()

    period = {"month": current.month, "year": current.year, "currency": "IDR"}
    session.add_all(
        [
            Target(amount=Decimal("500000000"), department_id=dept_a.id, **period),
            Target(amount=Decimal("300000000"), department_id=dept_b.id, **period),
            Target(amount=Decimal("150000000"), user_id=am1.id, **period),
            Target(amount=Decimal("120000000"), user_id=am2.id, **period),
        ]
    )

    next_month = date(current.year + current.month // 12, current.month % 12 + 1, 1)
    customers = [
        Customer(am_id=am1.id, company_name="PT Maju Jaya", pic="Budi Santoso", phone="+62812345678",
                 email="budi@majujaya.com", potential=Decimal("50000000"), status="ongoing",
                 timeline=next_month.replace(day=15)),
        Customer(am_id=am1.id, company_name="CV Sukses Abadi", pic="Siti Rahayu", phone="+62812345679",
                 email="siti@suksesabadi.com", potential=Decimal("75000000"), status="proposal",
                 timeline=next_month.replace(day=20)),
        Customer(am_id=am1.id, company_name="PT Global Tech", pic="Ahmad Hidayat", phone="+62812345680",
                 potential=Decimal("100000000"), status="closed-won"),
        Customer(am_id=am2.id, company_name="PT Sentosa Makmur", pic="Dewi Lestari", phone="+62812345681",
                 email="dewi@sentosa.com", potential=Decimal("60000000"), status="negotiation",
                 timeline=next_month.replace(day=5)),
        Customer(am_id=am2.id, company_name="CV Berkah Jaya", pic="Eko Prasetyo", phone="+62812345682",
                 potential=Decimal("45000000"), status="prospect"),
        Customer(am_id=am3.id, company_name="PT Indo Sejahtera", pic="Rina Wijaya", phone="+62812345683",
                 email="rina@indosejahtera.com", potential=Decimal("80000000"), status="ongoing",
                 timeline=next_month.replace(day=25)),
        Customer(am_id=am3.id, company_name="CV Prima Mandiri", pic="Hadi Gunawan", phone="+62812345684",
                 potential=Decimal("55000000"), status="closed-won"),
    ]
    session.add_all(customers)
    session.flush()

    for index, customer in enumerate(customers[:5]):
        session.add(
            Progress(
                customer_id=customer.id,
                am_id=customer.am_id,
                description=f"Initial contact with {customer.pic}. Discussed product requirements and pricing.",
                status=customer.status,
                date=current - timedelta(days=index * 2),
            )
        )
    for customer in customers[:3]:
        session.add(
            Progress(
                customer_id=customer.id,
                am_id=customer.am_id,
                description="Follow-up meeting scheduled. Sent proposal document.",
                status=customer.status,
                date=current - timedelta(days=1),
            )
        )

    session.commit()
    logger.info("seed.completed", extra={"outcome": "seeded"})
    return True


def main() -> None:
    configure_logging()
    with SessionLocal() as session:
        seed(session)


if __name__ == "__main__":
    main()
