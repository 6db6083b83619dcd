from __future__ import annotations

import uuid

from sqlalchemy import ColumnElement, select
from sqlalchemy.orm import Session, selectinload

from app.business.organization.repository import department_member_ids
from app.business.targets.models import Target
from app.platform.security.context import Actor
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import department_or_owner_scope_clause


class TargetRepository(BaseRepository):
    resource = "sales.target"
    model = Target

    def scope_clause(self, actor: Actor) -> ColumnElement[bool]:
        return department_or_owner_scope_clause(actor, Target.department_id, Target.user_id, department_member_ids)

    def find_for_key(
        self,
        session: Session,
        *,
        month: int,
        year: int,
        department_id: uuid.UUID | None,
        user_id: uuid.UUID | None,
    ) -> Target | None:
        stmt = select(Target).where(Target.month == month, Target.year == year)
        if user_id is not None:
            stmt = stmt.where(Target.user_id == user_id)
        elif department_id is not None:
            stmt = stmt.where(Target.department_id == department_id)
        else:
            return None
        return session.scalar(stmt)

    def list_for_period(self, session: Session, actor: Actor, *, month: int, year: int) -> list[Target]:
        stmt = (
            self.scoped(select(Target), actor)
            .where(
                Target.month == month,
                Target.year == year,
                (Target.department_id.is_not(None)) | (Target.user_id.is_not(None)),
            )
            .options(selectinload(Target.user), selectinload(Target.department))
            .order_by(Target.department_id.is_(None), Target.created_at.asc())
        )
        return list(session.scalars(stmt).all())
