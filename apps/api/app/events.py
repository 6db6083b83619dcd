from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id
from app.core.events import Notifier


def user_room(user_id: uuid.UUID | str) -> str:
    return f"user:{user_id}"


def role_room(role: str) -> str:
    return f"role:{role}"


def department_room(department_id: uuid.UUID | str) -> str:
    return f"department:{department_id}"


def publish(
    notifier: Notifier,
    event_type: str,
    *,
    actor_user_id: uuid.UUID | str,
    payload: dict[str, Any],
    rooms: list[str],
) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": str(actor_user_id),
        "correlation_id": get_correlation_id(),
        "payload": payload,
    }
    notifier.publish(event_type, envelope, rooms=list(dict.fromkeys(rooms)))
    return envelope
