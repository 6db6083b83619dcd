from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.business.reporting.dashboard.schemas import DashboardStatsRead, TargetReportRead
from app.business.reporting.dashboard.service import dashboard_service
from app.core.auth import get_current_actor
from app.core.database import get_db
from app.platform.security.context import Actor


router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/dashboard", response_model=DashboardStatsRead)
def dashboard_stats(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> DashboardStatsRead:
    return dashboard_service.get_dashboard_stats(db, actor)


@router.get("/targets", response_model=TargetReportRead)
def target_report(
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> TargetReportRead:
    return dashboard_service.get_target_report(db, actor, month=month, year=year)
