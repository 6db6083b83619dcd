from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, assert_never

from opentelemetry import trace
from sqlalchemy import ColumnElement, exists, func, select
from sqlalchemy.orm import Session

from app.business.customers.models import CLOSED_WON, CUSTOMER_STATUSES, OPEN_STATUSES, Customer, Progress
from app.business.organization.repository import department_member_ids
from app.business.reporting.dashboard.repository import DashboardRepository
from app.business.reporting.dashboard.schemas import (
    DashboardStatsRead,
    FollowUpCustomer,
    RecentProgressItem,
    StatusBucket,
    TargetReportRead,
    TargetReportRow,
)
from app.business.targets.models import Target
from app.business.targets.repository import TargetRepository
from app.business.targets.schemas import TargetRead
from app.core.config import get_settings
from app.metrics import observe_dashboard_build
from app.platform.security.context import Actor, Role


logger = logging.getLogger("app.reporting")
tracer = trace.get_tracer("app.reporting.dashboard")

ZERO = Decimal("0")


def _money(value: Any) -> Decimal:
    if value is None:
        return ZERO.quantize(Decimal("0.01"))
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def period_bounds(now: datetime) -> tuple[datetime, datetime]:
    """[first of month, first of next month) in UTC for the month containing ``now``."""

    current = _as_utc(now)
    start = datetime(current.year, current.month, 1, tzinfo=timezone.utc)
    if current.month == 12:
        end = datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)
    return start, end


@dataclass(slots=True)
class DashboardService:
    customer_repository: DashboardRepository = DashboardRepository()
    target_repository: TargetRepository = TargetRepository()

    def get_dashboard_stats(self, session: Session, actor: Actor, *, now: datetime | None = None) -> DashboardStatsRead:
        """Aggregate the caller's visible pipeline for the month containing ``now``.

        Every sub-query shares the single ``now`` captured here, so month boundaries and the
        follow-up cutoff cannot drift between them. The call only reads.
        """

        current = _as_utc(now or datetime.now(timezone.utc))
        started = time.perf_counter()

        with tracer.start_as_current_span("dashboard.build") as span:
            span.set_attribute("actor_id", str(actor.user_id))
            span.set_attribute("role", actor.role_label)

            visible = self._visible_customer_filters(actor)
            period_start, period_end = period_bounds(current)

            target_amount = self._target_amount(session, actor, month=current.month, year=current.year)
            actual_amount = self._closed_won_total(session, visible, period_start, period_end)
            pipeline_value, active_customers = self._open_pipeline(session, visible)
            customers_by_status = self._status_buckets(session, visible)

            needs_follow_up: list[FollowUpCustomer] = []
            recent_progress: list[RecentProgressItem] = []
            if actor.role == Role.AM:
                needs_follow_up = self._needs_follow_up(session, actor, current)
                recent_progress = self._recent_progress(session, actor)

        duration = time.perf_counter() - started
        observe_dashboard_build(actor.role_label, duration)
        logger.info(
            "dashboard.built",
            extra={
                "actor_id": str(actor.user_id),
                "role": actor.role_label,
                "duration_ms": round(duration * 1000, 3),
            },
        )

        return DashboardStatsRead(
            month=current.month,
            year=current.year,
            target_amount=target_amount,
            actual_amount=actual_amount,
            pipeline_value=pipeline_value,
            active_customers=active_customers,
            customers_by_status=customers_by_status,
            needs_follow_up=needs_follow_up,
            recent_progress=recent_progress,
        )

    def get_target_report(
        self,
        session: Session,
        actor: Actor,
        *,
        month: int | None = None,
        year: int | None = None,
        now: datetime | None = None,
    ) -> TargetReportRead:
        current = _as_utc(now or datetime.now(timezone.utc))
        report_month = month or current.month
        report_year = year or current.year
        period_start, period_end = period_bounds(datetime(report_year, report_month, 1, tzinfo=timezone.utc))
        visible = self._visible_customer_filters(actor)

        rows: list[TargetReportRow] = []
        for target in self.target_repository.list_for_period(session, actor, month=report_month, year=report_year):
            actual = self._closed_won_total(
                session,
                [*visible, self._target_owner_filter(target)],
                period_start,
                period_end,
            )
            amount = _money(target.amount)
            rows.append(
                TargetReportRow(
                    target=TargetRead.model_validate(target),
                    actual_amount=actual,
                    achievement_pct=round(float(actual / amount * 100), 2) if amount > ZERO else None,
                )
            )
        return TargetReportRead(month=report_month, year=report_year, rows=rows)

    def _visible_customer_filters(self, actor: Actor) -> list[ColumnElement[bool]]:
        return [Customer.deleted_at.is_(None), self.customer_repository.scope_clause(actor)]

    def _target_owner_filter(self, target: Target) -> ColumnElement[bool]:
        if target.user_id is not None:
            return Customer.am_id == target.user_id
        return Customer.am_id.in_(department_member_ids(target.department_id))

    def _target_amount(self, session: Session, actor: Actor, *, month: int, year: int) -> Decimal:
        department_id: uuid.UUID | None = None
        user_id: uuid.UUID | None = None
        match actor.role:
            case Role.AM:
                user_id = actor.user_id
            case Role.GM:
                if actor.department_id is None:
                    return _money(None)
                department_id = actor.department_id
            case Role.ADMIN | None:
                return _money(None)
            case _:
                assert_never(actor.role)

        target = self.target_repository.find_for_key(
            session,
            month=month,
            year=year,
            department_id=department_id,
            user_id=user_id,
        )
        return _money(target.amount if target is not None else None)

    def _closed_won_total(
        self,
        session: Session,
        filters: list[ColumnElement[bool]],
        period_start: datetime,
        period_end: datetime,
    ) -> Decimal:
        # updated_at stands in for the close date.
        total = session.scalar(
            select(func.coalesce(func.sum(Customer.potential), 0)).where(
                *filters,
                Customer.status == CLOSED_WON,
                Customer.updated_at >= period_start,
                Customer.updated_at < period_end,
            )
        )
        return _money(total)

    def _open_pipeline(self, session: Session, filters: list[ColumnElement[bool]]) -> tuple[Decimal, int]:
        row = session.execute(
            select(func.coalesce(func.sum(Customer.potential), 0), func.count(Customer.id)).where(
                *filters,
                Customer.status.in_(OPEN_STATUSES),
            )
        ).one()
        return _money(row[0]), int(row[1] or 0)

    def _status_buckets(self, session: Session, filters: list[ColumnElement[bool]]) -> list[StatusBucket]:
        grouped = {
            status: (int(count or 0), _money(value))
            for status, count, value in session.execute(
                select(Customer.status, func.count(Customer.id), func.coalesce(func.sum(Customer.potential), 0))
                .where(*filters)
                .group_by(Customer.status)
            ).all()
        }
        empty = (0, _money(None))
        buckets: list[StatusBucket] = []
        for status in CUSTOMER_STATUSES:
            count, value = grouped.get(status, empty)
            buckets.append(StatusBucket(status=status, count=count, value=value))
        return buckets

    def _needs_follow_up(self, session: Session, actor: Actor, now: datetime) -> list[FollowUpCustomer]:
        cutoff = now - timedelta(days=get_settings().follow_up_days)
        recent_activity = exists().where(Progress.customer_id == Customer.id, Progress.date >= cutoff)
        last_progress_at = (
            select(func.max(Progress.date)).where(Progress.customer_id == Customer.id).scalar_subquery()
        )
        rows = session.execute(
            select(Customer, last_progress_at)
            .where(
                Customer.deleted_at.is_(None),
                Customer.am_id == actor.user_id,
                Customer.status.in_(OPEN_STATUSES),
                ~recent_activity,
            )
            .order_by(Customer.updated_at.asc(), Customer.id)
        ).all()
        return [
            FollowUpCustomer(
                id=customer.id,
                company_name=customer.company_name,
                pic=customer.pic,
                phone=customer.phone,
                status=customer.status,
                potential=_money(customer.potential),
                last_progress_at=last_at,
            )
            for customer, last_at in rows
        ]

    def _recent_progress(self, session: Session, actor: Actor) -> list[RecentProgressItem]:
        rows = session.execute(
            select(Progress, Customer.company_name)
            .join(Customer, Customer.id == Progress.customer_id)
            .where(Progress.am_id == actor.user_id, Customer.deleted_at.is_(None))
            .order_by(Progress.date.desc(), Progress.created_at.desc())
            .limit(get_settings().recent_progress_limit)
        ).all()
        return [
            RecentProgressItem(
                id=progress.id,
                customer_id=progress.customer_id,
                company_name=company_name,
                date=progress.date,
                description=progress.description,
                status=progress.status,
            )
            for progress, company_name in rows
        ]


dashboard_service = DashboardService()
