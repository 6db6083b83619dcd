from __future__ import annotations

import logging
import uuid
from typing import assert_never

from app.metrics import observe_access_denied
from app.platform.security.context import Actor, ResourceOwner, Role
from app.platform.security.errors import ForbiddenError


logger = logging.getLogger("app.security")


def can_access_customer(actor: Actor, owner: ResourceOwner) -> bool:
    """Whether ``actor`` may see or mutate a customer owned by ``owner``."""

    match actor.role:
        case Role.ADMIN:
            return True
        case Role.GM:
            return actor.department_id is not None and owner.department_id == actor.department_id
        case Role.AM:
            return owner.user_id == actor.user_id
        case None:
            return False
        case _:
            assert_never(actor.role)


def can_manage_target(actor: Actor) -> bool:
    match actor.role:
        case Role.ADMIN | Role.GM:
            return True
        case Role.AM | None:
            return False
        case _:
            assert_never(actor.role)


def can_set_target_for(
    actor: Actor,
    *,
    department_id: uuid.UUID | None,
    target_user: ResourceOwner | None,
) -> bool:
    """Whether ``actor`` may write a target for the given department or user.

    ``target_user`` is the resolved user when the target is user-scoped. A GM is bound to
    its own department on both paths; a GM that names neither is defaulted to its own
    department by :func:`resolve_target_scope` before this check runs.
    """

    match actor.role:
        case Role.ADMIN:
            return True
        case Role.GM:
            if actor.department_id is None:
                return False
            if department_id is not None and department_id != actor.department_id:
                return False
            if target_user is not None and target_user.department_id != actor.department_id:
                return False
            return True
        case Role.AM | None:
            return False
        case _:
            assert_never(actor.role)


def resolve_target_scope(
    actor: Actor,
    *,
    department_id: uuid.UUID | None,
    user_id: uuid.UUID | None,
) -> tuple[uuid.UUID | None, uuid.UUID | None]:
    if department_id is None and user_id is None and actor.role == Role.GM:
        return actor.department_id, None
    return department_id, user_id


def can_manage_users(actor: Actor) -> bool:
    match actor.role:
        case Role.ADMIN:
            return True
        case Role.GM | Role.AM | None:
            return False
        case _:
            assert_never(actor.role)


def can_create_customer_for(actor: Actor, owner: ResourceOwner) -> bool:
    """AMs create for themselves, GMs for AMs of their department, ADMIN for anyone."""

    return can_access_customer(actor, owner)


def _deny(check: str, actor: Actor, message: str, resource_id: object | None = None) -> ForbiddenError:
    observe_access_denied(check, actor.role_label)
    logger.info(
        "access.denied",
        extra={
            "check": check,
            "actor_id": str(actor.user_id),
            "role": actor.role_label,
            "resource_id": str(resource_id) if resource_id is not None else None,
        },
    )
    return ForbiddenError(message)


def ensure_can_access_customer(actor: Actor, owner: ResourceOwner, *, customer_id: object | None = None) -> None:
    if not can_access_customer(actor, owner):
        raise _deny("customer.access", actor, "Not allowed to access this customer", customer_id)


def ensure_can_create_customer_for(actor: Actor, owner: ResourceOwner) -> None:
    if not can_create_customer_for(actor, owner):
        raise _deny("customer.create", actor, "Cannot create customer for this account manager", owner.user_id)


def ensure_can_manage_target(actor: Actor) -> None:
    if not can_manage_target(actor):
        raise _deny("target.manage", actor, "Only admins and GMs can set targets")


def ensure_can_set_target_for(
    actor: Actor,
    *,
    department_id: uuid.UUID | None,
    target_user: ResourceOwner | None,
) -> None:
    if not can_set_target_for(actor, department_id=department_id, target_user=target_user):
        resource_id = target_user.user_id if target_user is not None else department_id
        raise _deny("target.scope", actor, "GMs can only set targets within their own department", resource_id)


def ensure_can_manage_users(actor: Actor) -> None:
    if not can_manage_users(actor):
        raise _deny("user.manage", actor, "Insufficient permissions")
