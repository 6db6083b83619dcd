from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import ColumnElement, Select, func, select
from sqlalchemy.orm import Session, selectinload

from app.business.customers.models import Customer, Progress
from app.business.organization.repository import department_member_ids
from app.platform.security.context import Actor
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import owner_scope_clause


class CustomerRepository(BaseRepository):
    resource = "sales.customer"
    model = Customer

    def scope_clause(self, actor: Actor) -> ColumnElement[bool]:
        return owner_scope_clause(actor, Customer.am_id, department_member_ids)

    def get_active(self, session: Session, customer_id: uuid.UUID) -> Customer | None:
        return session.scalar(
            select(Customer)
            .where(Customer.id == customer_id, Customer.deleted_at.is_(None))
            .options(selectinload(Customer.am))
        )

    def list_page(
        self,
        session: Session,
        actor: Actor,
        *,
        status: str | None,
        page: int,
        limit: int,
    ) -> tuple[list[Customer], int]:
        stmt = self.scoped(select(Customer), actor)
        if status is not None:
            stmt = stmt.where(Customer.status == status)

        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.options(selectinload(Customer.am))
            .order_by(Customer.created_at.desc(), Customer.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return list(rows), int(total)

    def visible_ids(self, actor: Actor) -> Select[Any]:
        return self.scoped(select(Customer.id), actor)


class ProgressRepository(BaseRepository):
    resource = "sales.progress"
    model = Progress

    def __init__(self, customer_repository: CustomerRepository | None = None) -> None:
        self.customer_repository = customer_repository or CustomerRepository()

    def scope_clause(self, actor: Actor) -> ColumnElement[bool]:
        return Progress.customer_id.in_(self.customer_repository.visible_ids(actor))

    def create(self, session: Session, progress: Progress) -> Progress:
        session.add(progress)
        session.flush()
        return progress

    def list_for_customer(self, session: Session, customer_id: uuid.UUID, *, limit: int | None = None) -> list[Progress]:
        stmt = (
            select(Progress)
            .where(Progress.customer_id == customer_id)
            .options(selectinload(Progress.am), selectinload(Progress.customer))
            .order_by(Progress.date.desc(), Progress.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt).all())

    def list_recent(self, session: Session, actor: Actor, *, limit: int) -> list[Progress]:
        stmt = (
            self.apply_scope_query(select(Progress), actor)
            .options(selectinload(Progress.am), selectinload(Progress.customer))
            .order_by(Progress.date.desc(), Progress.created_at.desc())
            .limit(limit)
        )
        return list(session.scalars(stmt).all())
