from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.config import get_settings
from app.platform.security.errors import AppError


logger = logging.getLogger("app.request")


def _correlation_id(request: Request) -> str:
    return (
        get_correlation_id()
        or getattr(request.state, "correlation_id", None)
        or request.headers.get("x-correlation-id")
        or str(uuid.uuid4())
    )


def error_response(request: Request, status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    correlation_id = _correlation_id(request)
    response = JSONResponse(
        status_code=status_code,
        content={
            "code": code,
            "message": message,
            "details": details,
            "correlation_id": correlation_id,
        },
    )
    response.headers["x-correlation-id"] = correlation_id
    return response


def _field_name(loc: tuple[Any, ...] | list[Any]) -> str:
    parts = [str(item) for item in loc if item not in ("body", "query", "path", "header", "cookie")]
    return ".".join(parts) or "body"


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("app.error", extra={"error": exc.message, "status_code": exc.status_code})
    return error_response(request, exc.status_code, exc.code, exc.message, exc.details)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"field": _field_name(error.get("loc", ())), "message": str(error.get("msg", ""))} for error in exc.errors()]
    return error_response(request, 400, "validation_error", "Validation error", details)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", extra={"error": str(exc)[:500]})
    message = str(exc) if get_settings().app_debug else "Internal server error"
    return error_response(request, 500, "internal_error", message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, handle_app_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unexpected_error)
