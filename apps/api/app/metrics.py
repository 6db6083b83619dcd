from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

access_denied_total = Counter(
    "access_denied_total",
    "Total access policy denials by check and role",
    ["check", "role"],
)

target_upserts_total = Counter(
    "target_upserts_total",
    "Total target upserts by outcome",
    ["outcome"],
)

dashboard_build_duration_seconds = Histogram(
    "dashboard_build_duration_seconds",
    "Dashboard aggregation duration in seconds",
    ["role"],
)

notifications_published_total = Counter(
    "notifications_published_total",
    "Total notifications handed to the notifier",
    ["event"],
)

notification_delivery_failures_total = Counter(
    "notification_delivery_failures_total",
    "Total notification subscriber failures",
    ["event"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def _with_mount_prefix(template: str, path: str) -> str:
    """Prepend the leading segments of ``path`` that ``template`` does not cover.

    Depending on the framework version an included router's template may or may not carry
    its ``/api/v1`` prefix; the label has to be the same either way.
    """

    template_parts = [part for part in template.split("/") if part]
    path_parts = [part for part in path.split("/") if part]
    prefix = path_parts[: max(len(path_parts) - len(template_parts), 0)]
    return "/" + "/".join(prefix + template_parts)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        template = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(template, str):
            return _with_mount_prefix(_normalize_route_template(template), request.url.path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_access_denied(check: str, role: str | None) -> None:
    access_denied_total.labels(check=check, role=role or "unknown").inc()


def observe_target_upsert(outcome: str) -> None:
    target_upserts_total.labels(outcome=outcome).inc()


def observe_dashboard_build(role: str | None, duration: float) -> None:
    dashboard_build_duration_seconds.labels(role=role or "unknown").observe(duration)


def observe_notification_published(event: str) -> None:
    notifications_published_total.labels(event=event).inc()


def observe_notification_failure(event: str) -> None:
    notification_delivery_failures_total.labels(event=event).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
