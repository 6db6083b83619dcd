from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.business.customers.api import progress_router, router as customers_router
from app.business.organization.api import auth_router, departments_router, users_router
from app.business.reporting.dashboard.api import router as dashboard_router
from app.business.targets.api import router as targets_router
from app.core.auth import get_current_actor
from app.core.config import get_settings
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.context import Actor
from app.platform.security.errors import NotFoundError
from app.platform.security.policies import ensure_can_manage_users

API_PREFIX = "/api/v1"

v1_router = APIRouter(prefix=API_PREFIX)
v1_router.include_router(auth_router)
v1_router.include_router(users_router)
v1_router.include_router(departments_router)
v1_router.include_router(customers_router)
v1_router.include_router(progress_router)
v1_router.include_router(targets_router)
v1_router.include_router(dashboard_router)

system_router = APIRouter(tags=["system"])


@system_router.get("/health")
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@system_router.get("/metrics")
def metrics(actor: Actor = Depends(get_current_actor)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise NotFoundError("not found")
    ensure_can_manage_users(actor)
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())


v1_router.include_router(system_router)

router = APIRouter()
router.include_router(system_router)
router.include_router(v1_router)
