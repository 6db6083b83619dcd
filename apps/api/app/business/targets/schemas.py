from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TargetUserRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    role: str


class TargetDepartmentRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class TargetUpsert(BaseModel):
    amount: Decimal = Field(ge=0, max_digits=18, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    department_id: UUID | None = None
    user_id: UUID | None = None

    @model_validator(mode="after")
    def _single_scope(self) -> TargetUpsert:
        if self.department_id is not None and self.user_id is not None:
            raise ValueError("Set either department_id or user_id, not both")
        return self


class TargetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    currency: str
    month: int
    year: int
    department_id: UUID | None
    user_id: UUID | None
    created_at: datetime
    updated_at: datetime
    user: TargetUserRef | None = None
    department: TargetDepartmentRef | None = None
