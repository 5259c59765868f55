from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from clinigate.service.roles import Role


@dataclass
class User:
    id: str
    username: str
    name: str
    role: Role = Role.CUSTOMER
    email: Optional[str] = None
    department: Optional[str] = None
    # Receptionist-only: the customer (clinic) this account acts for
    parent_customer_id: Optional[str] = None
    can_book_media_day: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(cls, username: str, name: str, role: Role, **kwargs) -> "User":
        return cls(id=str(uuid.uuid4()), username=username, name=name, role=role, **kwargs)


@dataclass
class SessionRecord:
    """Authoritative server-side entry for one (user_id, role) pair."""

    user_id: str
    role: Role
    token: str
    created_at: datetime
    last_activity_at: datetime
    login_date: date


@dataclass(frozen=True)
class SessionInfo:
    """Token-free view of a SessionRecord."""

    role: Role
    created_at: datetime
    last_activity_at: datetime
    login_date: date

    @classmethod
    def from_record(cls, record: SessionRecord) -> "SessionInfo":
        return cls(
            role=record.role,
            created_at=record.created_at,
            last_activity_at=record.last_activity_at,
            login_date=record.login_date,
        )
