from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from starlette.requests import Request

from app.metrics import observe_notification_failure, observe_notification_published


logger = logging.getLogger("app.events")


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]
    rooms: list[str] = field(default_factory=list)


EventHandler = Callable[[InternalEvent], None]


class Notifier(Protocol):
    """Fire-and-forget publish interface handed to services that emit domain events."""

    def publish(self, event_name: str, payload: dict[str, Any], *, rooms: list[str] | None = None) -> None:
        ...


class InProcessEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._subscribers[event_name].append(handler)

    def publish(self, event_name: str, payload: dict[str, Any], *, rooms: list[str] | None = None) -> None:
        event = InternalEvent(name=event_name, payload=payload, rooms=list(rooms or []))
        observe_notification_published(event_name)
        for handler in [*self._subscribers.get(event_name, []), *self._subscribers.get("*", [])]:
            try:
                handler(event)
            except Exception as exc:
                observe_notification_failure(event_name)
                logger.exception("notification_delivery_failed", extra={"event_name": event_name, "error": str(exc)})


class NullNotifier:
    def publish(self, event_name: str, payload: dict[str, Any], *, rooms: list[str] | None = None) -> None:
        return None


def get_notifier(request: Request) -> Notifier:
    """Notifier owned by the running application; a no-op one when none was installed."""

    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        return NullNotifier()
    return notifier
