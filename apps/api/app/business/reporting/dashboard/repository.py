from __future__ import annotations

from app.business.customers.repository import CustomerRepository


class DashboardRepository(CustomerRepository):
    """Customer visibility reused for aggregate reads."""

    resource = "reports.dashboard"
