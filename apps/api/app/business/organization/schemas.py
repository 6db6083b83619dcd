from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.platform.security.context import Role


class DepartmentRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class DepartmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    gm_id: UUID | None = None


class DepartmentUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    gm_id: UUID | None = None


class DepartmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    gm_id: UUID | None
    created_at: datetime
    updated_at: datetime


class UserCreate(BaseModel):
    email: EmailStr
    username: str | None = Field(default=None, min_length=1, max_length=150)
    name: str = Field(min_length=1)
    password: str = Field(min_length=6)
    role: Role
    department_id: UUID | None = None
    manager_id: UUID | None = None


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    username: str | None = Field(default=None, min_length=1, max_length=150)
    name: str | None = Field(default=None, min_length=1)
    role: Role | None = None
    department_id: UUID | None = None
    manager_id: UUID | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    username: str | None
    name: str
    role: str
    department_id: UUID | None
    manager_id: UUID | None
    department: DepartmentRef | None = None
    created_at: datetime
    updated_at: datetime


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: str


class PasswordReset(BaseModel):
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, description="Email address or username")
    password: str = Field(min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str | None = None


class LoginResponse(BaseModel):
    user: UserRead
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    message: str
