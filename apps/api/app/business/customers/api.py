from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.business.customers.schemas import (
    CustomerCreate,
    CustomerDetail,
    CustomerListResponse,
    CustomerRead,
    CustomerStatus,
    CustomerUpdate,
    ProgressCreate,
    ProgressRead,
)
from app.business.customers.service import customer_service, progress_service
from app.core.auth import get_current_actor
from app.core.database import get_db
from app.core.events import Notifier, get_notifier
from app.platform.security.context import Actor


router = APIRouter(prefix="/customers", tags=["customers"])
progress_router = APIRouter(prefix="/progress", tags=["progress"])


@router.get("", response_model=CustomerListResponse)
def list_customers(
    status_filter: CustomerStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CustomerListResponse:
    return customer_service.list_customers(db, actor, status=status_filter, page=page, limit=limit)


@router.get("/{customer_id}", response_model=CustomerDetail)
def get_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CustomerDetail:
    return customer_service.get_customer(db, actor, customer_id)


@router.post("", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
) -> CustomerRead:
    return customer_service.create_customer(db, actor, payload, notifier)


@router.put("/{customer_id}", response_model=CustomerRead)
def update_customer(
    customer_id: uuid.UUID,
    payload: CustomerUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
) -> CustomerRead:
    return customer_service.update_customer(db, actor, customer_id, payload, notifier)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
) -> Response:
    customer_service.delete_customer(db, actor, customer_id, notifier)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@progress_router.get("", response_model=list[ProgressRead])
def list_progress(
    customer_id: uuid.UUID | None = Query(default=None, alias="customerId"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[ProgressRead]:
    return progress_service.list_progress(db, actor, customer_id=customer_id)


@progress_router.post("", response_model=ProgressRead, status_code=status.HTTP_201_CREATED)
def create_progress(
    payload: ProgressCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
) -> ProgressRead:
    return progress_service.create_progress(db, actor, payload, notifier)
