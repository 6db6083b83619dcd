from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, assert_never

from sqlalchemy.orm import Session

from app.business.customers.models import Customer, Progress
from app.business.customers.repository import CustomerRepository, ProgressRepository
from app.business.customers.schemas import (
    NON_NULLABLE_UPDATE_FIELDS,
    CustomerCreate,
    CustomerDetail,
    CustomerListResponse,
    CustomerRead,
    CustomerUpdate,
    ProgressCreate,
    ProgressRead,
)
from app.business.organization.repository import UserRepository
from app.core.events import Notifier
from app.events import department_room, publish, role_room, user_room
from app.platform.security.context import Actor, ResourceOwner, Role
from app.platform.security.errors import ForbiddenError, NotFoundError, ValidationError
from app.platform.security.policies import ensure_can_access_customer, ensure_can_create_customer_for


logger = logging.getLogger("app.sales")

CUSTOMER_DETAIL_PROGRESS_LIMIT = 10
RECENT_PROGRESS_LIST_LIMIT = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def customer_owner(customer: Customer) -> ResourceOwner:
    return ResourceOwner(
        user_id=customer.am_id,
        department_id=customer.am.department_id if customer.am is not None else None,
    )


def _customer_rooms(customer: Customer) -> list[str]:
    rooms = [user_room(customer.am_id), role_room(Role.ADMIN.value)]
    if customer.am is not None and customer.am.department_id is not None:
        rooms.append(department_room(customer.am.department_id))
    return rooms


@dataclass(slots=True)
class CustomerService:
    customer_repository: CustomerRepository = CustomerRepository()
    user_repository: UserRepository = UserRepository()

    def list_customers(
        self,
        session: Session,
        actor: Actor,
        *,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> CustomerListResponse:
        rows, total = self.customer_repository.list_page(session, actor, status=status, page=page, limit=limit)
        return CustomerListResponse(
            customers=[CustomerRead.model_validate(item) for item in rows],
            total=total,
            page=page,
            limit=limit,
        )

    def get_customer(self, session: Session, actor: Actor, customer_id: uuid.UUID) -> CustomerDetail:
        customer = self.get_visible_customer(session, actor, customer_id)
        progress = ProgressRepository(self.customer_repository).list_for_customer(
            session,
            customer.id,
            limit=CUSTOMER_DETAIL_PROGRESS_LIMIT,
        )
        return CustomerDetail(
            **CustomerRead.model_validate(customer).model_dump(),
            progress=[ProgressRead.model_validate(item) for item in progress],
        )

    def get_visible_customer(self, session: Session, actor: Actor, customer_id: uuid.UUID) -> Customer:
        """Load a customer for reading; out-of-scope rows are reported as missing."""

        customer = self.customer_repository.get_active(session, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found")
        try:
            ensure_can_access_customer(actor, customer_owner(customer), customer_id=customer.id)
        except ForbiddenError:
            raise NotFoundError("Customer not found") from None
        return customer

    def get_writable_customer(self, session: Session, actor: Actor, customer_id: uuid.UUID) -> Customer:
        customer = self.customer_repository.get_active(session, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found")
        ensure_can_access_customer(actor, customer_owner(customer), customer_id=customer.id)
        return customer

    def create_customer(
        self,
        session: Session,
        actor: Actor,
        dto: CustomerCreate,
        notifier: Notifier,
    ) -> CustomerRead:
        am_id = self._resolve_owner_id(actor, dto.am_id)
        am = self.user_repository.get_active(session, am_id)
        if am is None or Role.parse(am.role) != Role.AM:
            raise ValidationError("Invalid AM", fields={"am_id": "Customer owner must be an active account manager"})
        ensure_can_create_customer_for(actor, ResourceOwner(user_id=am.id, department_id=am.department_id))

        customer = Customer(
            am_id=am.id,
            company_name=dto.company_name,
            pic=dto.pic,
            phone=dto.phone,
            email=str(dto.email) if dto.email is not None else None,
            potential=dto.potential,
            timeline=dto.timeline,
            status=dto.status,
        )
        customer.am = am
        session.add(customer)
        session.commit()
        session.refresh(customer)

        logger.info(
            "customer.created",
            extra={"actor_id": str(actor.user_id), "role": actor.role_label, "resource_id": str(customer.id)},
        )
        result = CustomerRead.model_validate(customer)
        self._publish(notifier, "customer.created", actor, customer, result.model_dump(mode="json"))
        return result

    def update_customer(
        self,
        session: Session,
        actor: Actor,
        customer_id: uuid.UUID,
        dto: CustomerUpdate,
        notifier: Notifier,
    ) -> CustomerRead:
        customer = self.get_writable_customer(session, actor, customer_id)
        changes = dto.model_dump(exclude_unset=True)
        for field_name in NON_NULLABLE_UPDATE_FIELDS:
            if field_name in changes:
                setattr(customer, field_name, changes[field_name])
        if "email" in changes:
            customer.email = str(dto.email) if dto.email is not None else None
        if "timeline" in changes:
            customer.timeline = dto.timeline
        customer.updated_at = utcnow()
        session.commit()
        session.refresh(customer)

        logger.info(
            "customer.updated",
            extra={"actor_id": str(actor.user_id), "role": actor.role_label, "resource_id": str(customer.id)},
        )
        result = CustomerRead.model_validate(customer)
        self._publish(notifier, "customer.updated", actor, customer, result.model_dump(mode="json"))
        return result

    def delete_customer(self, session: Session, actor: Actor, customer_id: uuid.UUID, notifier: Notifier) -> None:
        customer = self.get_writable_customer(session, actor, customer_id)
        customer.deleted_at = utcnow()
        session.commit()

        logger.info(
            "customer.deleted",
            extra={"actor_id": str(actor.user_id), "role": actor.role_label, "resource_id": str(customer.id)},
        )
        self._publish(notifier, "customer.deleted", actor, customer, {"id": str(customer.id)})

    def _resolve_owner_id(self, actor: Actor, requested_am_id: uuid.UUID | None) -> uuid.UUID:
        match actor.role:
            case Role.AM:
                if requested_am_id is not None and requested_am_id != actor.user_id:
                    ensure_can_create_customer_for(actor, ResourceOwner(user_id=requested_am_id))
                return actor.user_id
            case Role.GM | Role.ADMIN:
                if requested_am_id is None:
                    raise ValidationError("AM ID is required", fields={"am_id": "Required"})
                return requested_am_id
            case None:
                ensure_can_create_customer_for(actor, ResourceOwner(user_id=requested_am_id or actor.user_id))
                raise ForbiddenError("Cannot create customer for this account manager")
            case _:
                assert_never(actor.role)

    def _publish(
        self,
        notifier: Notifier,
        event_type: str,
        actor: Actor,
        customer: Customer,
        payload: dict[str, Any],
    ) -> None:
        publish(
            notifier,
            event_type,
            actor_user_id=actor.user_id,
            payload=payload,
            rooms=_customer_rooms(customer),
        )


@dataclass(slots=True)
class ProgressService:
    customer_service: CustomerService = field(default_factory=CustomerService)
    progress_repository: ProgressRepository = ProgressRepository()

    def create_progress(
        self,
        session: Session,
        actor: Actor,
        dto: ProgressCreate,
        notifier: Notifier,
    ) -> ProgressRead:
        customer = self.customer_service.get_writable_customer(session, actor, dto.customer_id)
        progress = self.progress_repository.create(
            session,
            Progress(
                customer_id=customer.id,
                am_id=actor.user_id,
                date=dto.date or utcnow(),
                description=dto.description,
                status=dto.status or customer.status,
            ),
        )
        session.commit()
        session.refresh(progress)

        logger.info(
            "progress.created",
            extra={"actor_id": str(actor.user_id), "role": actor.role_label, "resource_id": str(progress.id)},
        )
        result = ProgressRead.model_validate(progress)
        rooms = _customer_rooms(customer)
        if customer.am_id != actor.user_id:
            rooms.append(user_room(actor.user_id))
        publish(
            notifier,
            "progress.created",
            actor_user_id=actor.user_id,
            payload=result.model_dump(mode="json"),
            rooms=rooms,
        )
        return result

    def list_progress(
        self,
        session: Session,
        actor: Actor,
        *,
        customer_id: uuid.UUID | None = None,
    ) -> list[ProgressRead]:
        if customer_id is not None:
            customer = self.customer_service.get_visible_customer(session, actor, customer_id)
            rows = self.progress_repository.list_for_customer(session, customer.id)
        else:
            rows = self.progress_repository.list_recent(session, actor, limit=RECENT_PROGRESS_LIST_LIMIT)
        return [ProgressRead.model_validate(item) for item in rows]


customer_service = CustomerService()
progress_service = ProgressService()
