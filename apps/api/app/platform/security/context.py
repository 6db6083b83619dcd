from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    ADMIN = "ADMIN"
    GM = "GM"
    AM = "AM"

    @classmethod
    def parse(cls, value: object) -> Role | None:
        """Resolve a stored role value; anything unrecognised maps to ``None``."""

        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


@dataclass(slots=True)
class Actor:
    """Already-authenticated caller as seen by policy evaluation and scoping."""

    user_id: uuid.UUID
    role: Role | None
    department_id: uuid.UUID | None = None
    name: str | None = None
    email: str | None = None
    correlation_id: str | None = None

    @property
    def role_label(self) -> str:
        return self.role.value if self.role is not None else "unknown"


@dataclass(slots=True, frozen=True)
class ResourceOwner:
    """The user a row belongs to, with the department that user sits in."""

    user_id: uuid.UUID
    department_id: uuid.UUID | None = None
