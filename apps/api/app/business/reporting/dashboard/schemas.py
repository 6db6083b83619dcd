from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from app.business.targets.schemas import TargetRead


class StatusBucket(BaseModel):
    status: str
    count: int
    value: Decimal


class FollowUpCustomer(BaseModel):
    id: UUID
    company_name: str
    pic: str
    phone: str
    status: str
    potential: Decimal
    last_progress_at: datetime | None = None


class RecentProgressItem(BaseModel):
    id: UUID
    customer_id: UUID
    company_name: str
    date: datetime
    description: str
    status: str


class DashboardStatsRead(BaseModel):
    month: int
    year: int
    target_amount: Decimal
    actual_amount: Decimal
    pipeline_value: Decimal
    active_customers: int
    customers_by_status: list[StatusBucket]
    needs_follow_up: list[FollowUpCustomer]
    recent_progress: list[RecentProgressItem]


class TargetReportRow(BaseModel):
    target: TargetRead
    actual_amount: Decimal
    achievement_pct: float | None = None


class TargetReportRead(BaseModel):
    month: int
    year: int
    rows: list[TargetReportRow]
