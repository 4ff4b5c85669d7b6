from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RoleSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class CurrentUserRead(BaseModel):
    id: UUID
    email: str
    name: str
    role: RoleSummary | None
    is_ojt: bool
    permissions: list[str]


class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=8)
    role_id: UUID | None = None
    is_ojt: bool = False


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=8)
    role_id: UUID | None = None
    is_ojt: bool | None = None
    is_active: bool | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: RoleSummary | None
    is_ojt: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PermissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    module: str


class RoleCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    permission_ids: list[UUID] = Field(default_factory=list)


class RolePermissionsUpdate(BaseModel):
    permission_ids: list[UUID]


class RoleRead(BaseModel):
    id: UUID
    name: str
    description: str | None
    permissions: list[str]
    user_count: int
    created_at: datetime
