from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any, assert_never

from sqlalchemy import ColumnElement, false, or_, true
from sqlalchemy.sql import Select

from app.platform.security.context import Actor, Role


DepartmentMembers = Callable[[uuid.UUID], Select[Any]]


def owner_scope_clause(
    actor: Actor,
    owner_column: Any,
    department_members: DepartmentMembers,
) -> ColumnElement[bool]:
    """Row filter restricting an owner-keyed table to what ``actor`` may see.

    ``department_members`` builds a select of user ids belonging to a department. The clause
    is a plain boolean expression so the same value narrows list, count and group-by queries.
    """

    match actor.role:
        case Role.ADMIN:
            return true()
        case Role.GM:
            if actor.department_id is None:
                return false()
            return owner_column.in_(department_members(actor.department_id))
        case Role.AM:
            return owner_column == actor.user_id
        case None:
            return false()
        case _:
            assert_never(actor.role)


def department_or_owner_scope_clause(
    actor: Actor,
    department_column: Any,
    owner_column: Any,
    department_members: DepartmentMembers,
) -> ColumnElement[bool]:
    """Like :func:`owner_scope_clause` but GMs also see rows keyed directly on their department."""

    match actor.role:
        case Role.GM:
            if actor.department_id is None:
                return false()
            return or_(
                department_column == actor.department_id,
                owner_column.in_(department_members(actor.department_id)),
            )
        case Role.ADMIN | Role.AM | None:
            return owner_scope_clause(actor, owner_column, department_members)
        case _:
            assert_never(actor.role)


def apply_rls_filter(query: Select[Any], clause: ColumnElement[bool]) -> Select[Any]:
    return query.where(clause)


def exclude_soft_deleted(query: Select[Any], model: Any) -> Select[Any]:
    deleted_at = getattr(model, "deleted_at", None)
    if deleted_at is None:
        return query
    return query.where(deleted_at.is_(None))
