from app.business.targets.api import router
from app.business.targets.models import Target
from app.business.targets.schemas import TargetRead, TargetUpsert
from app.business.targets.service import TargetService, target_service

__all__ = [
    "router",
    "Target",
    "TargetRead",
    "TargetUpsert",
    "TargetService",
    "target_service",
]
