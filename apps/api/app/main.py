from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from app.api.errors import register_exception_handlers
from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.context import RequestContextMiddleware
from app.core.events import InProcessEventBus, InternalEvent
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import MutationRateLimitMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")
events_logger = logging.getLogger("app.events")


def _log_notification(event: InternalEvent) -> None:
    events_logger.info(
        "notification.published",
        extra={"event_name": event.name, "rooms": event.rooms},
    )


def build_notifier() -> InProcessEventBus:
    notifier = InProcessEventBus()
    notifier.subscribe("*", _log_notification)
    return notifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.notifier = build_notifier()
    logger.info("system.started", extra={"event_name": "system.started"})
    try:
        yield
    finally:
        logger.info("system.stopped", extra={"event_name": "system.stopped"})
        app.state.notifier = None


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel()

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
