from app.business.customers.api import progress_router, router
from app.business.customers.models import CLOSED_WON, CUSTOMER_STATUSES, OPEN_STATUSES, Customer, Progress
from app.business.customers.schemas import (
    CustomerCreate,
    CustomerDetail,
    CustomerListResponse,
    CustomerRead,
    CustomerUpdate,
    ProgressCreate,
    ProgressRead,
)
from app.business.customers.service import CustomerService, ProgressService, customer_service, progress_service

__all__ = [
    "router",
    "progress_router",
    "Customer",
    "Progress",
    "CUSTOMER_STATUSES",
    "OPEN_STATUSES",
    "CLOSED_WON",
    "CustomerCreate",
    "CustomerDetail",
    "CustomerListResponse",
    "CustomerRead",
    "CustomerUpdate",
    "ProgressCreate",
    "ProgressRead",
    "CustomerService",
    "ProgressService",
    "customer_service",
    "progress_service",
]
