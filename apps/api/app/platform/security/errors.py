from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base for failures that map onto an HTTP status and error envelope."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class AuthorizationError(AppError):
    """Base authorization error for policy and scope enforcement failures."""

    status_code = 403
    code = "forbidden"


class UnauthorizedError(AuthorizationError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(AuthorizationError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ValidationError(AppError):
    """Malformed input; ``fields`` maps a field name to its message."""

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, *, fields: dict[str, str] | None = None) -> None:
        self.fields = dict(fields or {})
        details = [{"field": name, "message": text} for name, text in self.fields.items()] or None
        super().__init__(message, details=details)


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
