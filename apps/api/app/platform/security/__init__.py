from app.platform.security.context import Actor, ResourceOwner, Role
from app.platform.security.errors import (
    AppError,
    AuthorizationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import (
    apply_rls_filter,
    department_or_owner_scope_clause,
    exclude_soft_deleted,
    owner_scope_clause,
)
from app.platform.security.policies import (
    can_access_customer,
    can_manage_target,
    can_manage_users,
    can_set_target_for,
    resolve_target_scope,
)

__all__ = [
    "Actor",
    "ResourceOwner",
    "Role",
    "AppError",
    "AuthorizationError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "UnauthorizedError",
    "ValidationError",
    "BaseRepository",
    "apply_rls_filter",
    "department_or_owner_scope_clause",
    "exclude_soft_deleted",
    "owner_scope_clause",
    "can_access_customer",
    "can_manage_target",
    "can_manage_users",
    "can_set_target_for",
    "resolve_target_scope",
]
