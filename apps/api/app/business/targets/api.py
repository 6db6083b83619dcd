from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.business.targets.schemas import TargetRead, TargetUpsert
from app.business.targets.service import target_service
from app.core.auth import get_current_actor
from app.core.database import get_db
from app.core.events import Notifier, get_notifier
from app.platform.security.context import Actor


router = APIRouter(prefix="/targets", tags=["targets"])


@router.get("", response_model=list[TargetRead])
def list_targets(
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[TargetRead]:
    return target_service.list_targets(db, actor, month=month, year=year)


@router.post("", response_model=TargetRead, status_code=status.HTTP_201_CREATED)
def upsert_target(
    payload: TargetUpsert,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
) -> TargetRead:
    return target_service.create_or_update(db, actor, payload, notifier)
