from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.business.organization.repository import DepartmentRepository, UserRepository
from app.business.targets.models import Target
from app.business.targets.repository import TargetRepository
from app.business.targets.schemas import TargetRead, TargetUpsert
from app.core.config import get_settings
from app.core.events import Notifier
from app.events import department_room, publish, role_room, user_room
from app.metrics import observe_target_upsert
from app.platform.security.context import Actor, ResourceOwner, Role
from app.platform.security.errors import ConflictError, ValidationError
from app.platform.security.policies import ensure_can_manage_target, ensure_can_set_target_for, resolve_target_scope


logger = logging.getLogger("app.sales")
tracer = trace.get_tracer("app.sales.targets")

UPSERT_ATTEMPTS = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TargetService:
    target_repository: TargetRepository = TargetRepository()
    user_repository: UserRepository = UserRepository()
    department_repository: DepartmentRepository = DepartmentRepository()

    def list_targets(
        self,
        session: Session,
        actor: Actor,
        *,
        month: int | None = None,
        year: int | None = None,
        now: datetime | None = None,
    ) -> list[TargetRead]:
        current = now or utcnow()
        rows = self.target_repository.list_for_period(
            session,
            actor,
            month=month or current.month,
            year=year or current.year,
        )
        return [TargetRead.model_validate(item) for item in rows]

    def create_or_update(
        self,
        session: Session,
        actor: Actor,
        dto: TargetUpsert,
        notifier: Notifier,
    ) -> TargetRead:
        """Write the target for (scope, month, year), updating only ``amount`` when it already exists."""

        ensure_can_manage_target(actor)
        if dto.department_id is not None and dto.user_id is not None:
            raise ValidationError(
                "A target belongs to a department or a user, not both",
                fields={"department_id": "Set either department_id or user_id"},
            )

        department_id, user_id = resolve_target_scope(actor, department_id=dto.department_id, user_id=dto.user_id)
        target_user = self._resolve_scope_owner(session, department_id=department_id, user_id=user_id)
        ensure_can_set_target_for(actor, department_id=department_id, target_user=target_user)

        with tracer.start_as_current_span("target.upsert") as span:
            span.set_attribute("actor_id", str(actor.user_id))
            span.set_attribute("period", f"{dto.year:04d}-{dto.month:02d}")
            span.set_attribute("scope", "user" if user_id is not None else "department")
            try:
                target, outcome = self._upsert(
                    session,
                    month=dto.month,
                    year=dto.year,
                    department_id=department_id,
                    user_id=user_id,
                    amount=dto.amount,
                    currency=dto.currency or get_settings().default_currency,
                )
            except ConflictError:
                span.set_attribute("outcome", "conflict")
                raise
            span.set_attribute("outcome", outcome)
            session.commit()

        session.refresh(target)
        observe_target_upsert(outcome)
        logger.info(
            "target.upserted",
            extra={
                "actor_id": str(actor.user_id),
                "role": actor.role_label,
                "resource_id": str(target.id),
                "outcome": outcome,
            },
        )

        result = TargetRead.model_validate(target)
        rooms = [role_room(Role.ADMIN.value)]
        if target.user_id is not None:
            rooms.append(user_room(target.user_id))
            if target_user is not None and target_user.department_id is not None:
                rooms.append(department_room(target_user.department_id))
        if target.department_id is not None:
            rooms.append(department_room(target.department_id))
        publish(
            notifier,
            "target.updated",
            actor_user_id=actor.user_id,
            payload=result.model_dump(mode="json"),
            rooms=rooms,
        )
        return result

    def _resolve_scope_owner(
        self,
        session: Session,
        *,
        department_id: uuid.UUID | None,
        user_id: uuid.UUID | None,
    ) -> ResourceOwner | None:
        if department_id is None and user_id is None:
            raise ValidationError(
                "A target needs a department or a user",
                fields={"department_id": "Set either department_id or user_id"},
            )
        if user_id is not None:
            user = self.user_repository.get_active(session, user_id)
            if user is None:
                raise ValidationError("Invalid user", fields={"user_id": "User not found"})
            return ResourceOwner(user_id=user.id, department_id=user.department_id)
        if self.department_repository.get(session, department_id) is None:
            raise ValidationError("Invalid department", fields={"department_id": "Department not found"})
        return None

    def _upsert(
        self,
        session: Session,
        *,
        month: int,
        year: int,
        department_id: uuid.UUID | None,
        user_id: uuid.UUID | None,
        amount: Decimal,
        currency: str,
    ) -> tuple[Target, str]:
        for attempt in range(UPSERT_ATTEMPTS):
            existing = self.target_repository.find_for_key(
                session,
                month=month,
                year=year,
                department_id=department_id,
                user_id=user_id,
            )
            if existing is not None:
                existing.amount = amount
                existing.updated_at = utcnow()
                session.flush()
                return existing, "updated" if attempt == 0 else "retried"

            target = Target(
                amount=amount,
                currency=currency,
                month=month,
                year=year,
                department_id=department_id,
                user_id=user_id,
            )
            try:
                with session.begin_nested():
                    session.add(target)
                    session.flush()
            except IntegrityError:
                logger.info(
                    "target.upsert_conflict",
                    extra={"outcome": "retry" if attempt + 1 < UPSERT_ATTEMPTS else "conflict"},
                )
                continue
            return target, "created"

        observe_target_upsert("conflict")
        raise ConflictError("Target was modified concurrently, please retry")


target_service = TargetService()
