from __future__ import annotations

import unicodedata
from datetime import date, datetime
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from clinigate.logging import get_correlation_id
from clinigate.service.identity import IdentityContext
from clinigate.service.roles import Role
from clinigate.storage.models import SessionInfo, User


_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "unauthorized",
    "session_expired",
    "forbidden",
    "not_found",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: Literal["ok", "error"]
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=1, max_length=1024)

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        normalized = unicodedata.normalize("NFKC", value).strip()
        if not normalized:
            raise ValueError("username must not be blank")
        return normalized


class RegisterUserRequest(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=1, max_length=1024)
    name: str = Field(min_length=1, max_length=128)
    email: Optional[str] = Field(default=None, max_length=254)
    role: Role = Role.CUSTOMER
    department: Optional[str] = Field(default=None, max_length=32)
    # Receptionist-only delegation fields
    parent_customer_id: Optional[str] = Field(default=None, max_length=128)
    can_book_media_day: bool = False

    @field_validator("username", "name")
    @classmethod
    def _normalize_text(cls, value: str) -> str:
        normalized = unicodedata.normalize("NFKC", value).strip()
        if not normalized:
            raise ValueError("must not be blank")
        return normalized

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        normalized = unicodedata.normalize("NFKC", value).strip().lower()
        local, sep, domain = normalized.partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("invalid email address")
        return normalized

    @field_validator("department")
    @classmethod
    def _normalize_department(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower() or None


class UserResponse(BaseModel):
    id: str
    name: str
    username: str
    email: Optional[str] = None
    role: str
    department: Optional[str] = None
    parent_customer_id: Optional[str] = None
    can_book_media_day: Optional[bool] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        body = cls(
            id=user.id,
            name=user.name,
            username=user.username,
            email=user.email,
            role=user.role.value,
            department=user.department,
        )
        # Delegation fields are only meaningful for receptionists
        if user.role.value == "receptionist":
            body.parent_customer_id = user.parent_customer_id
            body.can_book_media_day = user.can_book_media_day is True
        return body


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse


class IdentityResponse(BaseModel):
    user_id: str
    role: str
    name: Optional[str] = None
    can_book_media_day: bool = False
    parent_customer_id: Optional[str] = None

    @classmethod
    def from_context(cls, ctx: IdentityContext) -> "IdentityResponse":
        return cls(
            user_id=ctx.user_id,
            role=ctx.role.value,
            name=ctx.name,
            can_book_media_day=ctx.can_book_media_day,
            parent_customer_id=ctx.parent_customer_id,
        )


class SessionInfoResponse(BaseModel):
    role: str
    created_at: datetime
    last_activity_at: datetime
    login_date: date

    @classmethod
    def from_info(cls, info: SessionInfo) -> "SessionInfoResponse":
        return cls(
            role=info.role.value,
            created_at=info.created_at,
            last_activity_at=info.last_activity_at,
            login_date=info.login_date,
        )


class SessionListResponse(BaseModel):
    user_id: str
    items: List[SessionInfoResponse]


class BookingAccessResponse(BaseModel):
    allowed: bool = True
    role: str


class EffectiveCustomerResponse(BaseModel):
    effective_customer_id: str
    acting_user_id: str
    role: str


class SweepResponse(BaseModel):
    cleaned: int
    daily_reset: int
    remaining: int
