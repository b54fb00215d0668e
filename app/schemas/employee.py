"""Pydantic schemas for Employee CRUD."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator

_VALID_ROLES = {"admin", "employee"}


def _normalise_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v:
        raise ValueError("Invalid email address")
    return v


class EmployeeCreate(BaseModel):
    email: str
    password: str
    full_name: str | None = None
    department: str | None = None
    position: str | None = None
    role: str = "employee"

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str) -> str:
        if v not in _VALID_ROLES:
            raise ValueError(f"Role must be one of: {_VALID_ROLES}")
        return v

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _normalise_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        if len(v.encode("utf-8")) > 72:
            raise ValueError("Password must not exceed 72 bytes")
        return v


class EmployeeUpdate(BaseModel):
    full_name: str | None = None
    department: str | None = None
    position: str | None = None
    role: str | None = None
    is_active: bool | None = None
    password: str | None = None

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str | None) -> str | None:
        if v is not None and v not in _VALID_ROLES:
            raise ValueError(f"Role must be one of: {_VALID_ROLES}")
        return v


class EmployeeRead(BaseModel):
    id: int
    email: str
    full_name: str | None
    department: str | None
    position: str | None
    role: str
    is_active: bool
    created_at: datetime | None

    model_config = {"from_attributes": True}


class DeleteResponse(BaseModel):
    success: bool
    message: str
