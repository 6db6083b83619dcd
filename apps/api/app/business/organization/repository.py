from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import ColumnElement, Select, delete, or_, select, true
from sqlalchemy.orm import Session, selectinload

from app.business.organization.models import Department, User, UserSession
from app.platform.security.context import Actor
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import owner_scope_clause


def department_member_ids(department_id: uuid.UUID) -> Select[Any]:
    return select(User.id).where(User.department_id == department_id)


class UserRepository(BaseRepository):
    resource = "organization.user"
    model = User

    def scope_clause(self, actor: Actor) -> ColumnElement[bool]:
        return owner_scope_clause(actor, User.id, department_member_ids)

    def get_active(self, session: Session, user_id: uuid.UUID) -> User | None:
        return session.scalar(
            select(User)
            .where(User.id == user_id, User.deleted_at.is_(None))
            .options(selectinload(User.department))
        )

    def find_by_login(self, session: Session, login: str) -> User | None:
        normalized = login.strip()
        return session.scalar(
            select(User)
            .where(
                or_(User.email == normalized.lower(), User.username == normalized),
                User.deleted_at.is_(None),
            )
            .options(selectinload(User.department))
        )

    def find_conflict(
        self,
        session: Session,
        *,
        email: str | None,
        username: str | None,
        exclude_id: uuid.UUID | None = None,
    ) -> User | None:
        conditions = []
        if email:
            conditions.append(User.email == email)
        if username:
            conditions.append(User.username == username)
        if not conditions:
            return None

        stmt = select(User).where(or_(*conditions), User.deleted_at.is_(None))
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return session.scalar(stmt.limit(1))


class DepartmentRepository(BaseRepository):
    resource = "organization.department"
    model = Department

    def scope_clause(self, actor: Actor) -> ColumnElement[bool]:
        return true()

    def get(self, session: Session, department_id: uuid.UUID) -> Department | None:
        return session.get(Department, department_id)

    def find_by_name(self, session: Session, name: str) -> Department | None:
        return session.scalar(select(Department).where(Department.name == name))


class SessionRepository:
    def create(self, session: Session, record: UserSession) -> UserSession:
        session.add(record)
        session.flush()
        return record

    def find_by_token(self, session: Session, token: str) -> UserSession | None:
        return session.scalar(select(UserSession).where(UserSession.token == token))

    def delete_by_token(self, session: Session, token: str) -> int:
        result = session.execute(delete(UserSession).where(UserSession.token == token))
        return int(result.rowcount or 0)

    def delete_for_user(self, session: Session, user_id: uuid.UUID) -> int:
        result = session.execute(delete(UserSession).where(UserSession.user_id == user_id))
        return int(result.rowcount or 0)
