from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator


CustomerStatus = Literal["prospect", "ongoing", "proposal", "negotiation", "closed-won", "closed-lost"]

# Surrounding whitespace is dropped before the length check, so "   " is empty.
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
Phone = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]
NoteText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

NON_NULLABLE_UPDATE_FIELDS = ("company_name", "pic", "phone", "potential", "status")


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class UserRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class CustomerRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_name: str


class CustomerCreate(BaseModel):
    am_id: UUID | None = None
    company_name: Name
    pic: Name
    phone: Phone
    email: EmailStr | None = None
    potential: Decimal = Field(ge=0, max_digits=18, decimal_places=2)
    timeline: date | None = None
    status: CustomerStatus = "prospect"

    @field_validator("email", "timeline", mode="before")
    @classmethod
    def _empty_is_missing(cls, value: object) -> object:
        return _blank_to_none(value)


class CustomerUpdate(BaseModel):
    company_name: Name | None = None
    pic: Name | None = None
    phone: Phone | None = None
    email: EmailStr | None = None
    potential: Decimal | None = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    timeline: date | None = None
    status: CustomerStatus | None = None

    @field_validator("email", "timeline", mode="before")
    @classmethod
    def _empty_is_missing(cls, value: object) -> object:
        return _blank_to_none(value)

    @field_validator(*NON_NULLABLE_UPDATE_FIELDS)
    @classmethod
    def _omit_rather_than_null(cls, value: object) -> object:
        if value is None:
            raise ValueError("may be omitted but not set to null")
        return value


class ProgressRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    am_id: UUID
    date: datetime
    description: str
    status: str
    created_at: datetime
    am: UserRef | None = None
    customer: CustomerRef | None = None


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    am_id: UUID
    company_name: str
    pic: str
    phone: str
    email: str | None
    potential: Decimal
    timeline: date | None
    status: str
    created_at: datetime
    updated_at: datetime
    am: UserRef | None = None


class CustomerDetail(CustomerRead):
    progress: list[ProgressRead] = Field(default_factory=list)


class CustomerListResponse(BaseModel):
    customers: list[CustomerRead]
    total: int
    page: int
    limit: int


class ProgressCreate(BaseModel):
    customer_id: UUID
    description: NoteText
    status: CustomerStatus | None = None
    date: datetime | None = None
