from __future__ import annotations

import threading
from typing import Dict, List, Optional

from clinigate.logging import get_logger
from clinigate.service.roles import Role
from clinigate.storage.errors import ConstraintViolation
from clinigate.storage.models import User


class MemoryStore:
    """In-memory user and credential store."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self._usernames: Dict[str, str] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self._data_lock = threading.RLock()

    def create_user(
        self,
        username: str,
        name: str,
        *,
        role: Role = Role.CUSTOMER,
        email: Optional[str] = None,
        department: Optional[str] = None,
        parent_customer_id: Optional[str] = None,
        can_book_media_day: bool = False,
    ) -> User:
        normalized = username.strip().lower()
        if not normalized:
            raise ConstraintViolation("username is required", {"field": "username"})
        with self._data_lock:
            if normalized in self._usernames:
                raise ConstraintViolation(
                    "user already exists", {"field": "username", "value": normalized}
                )
            if email:
                lowered = email.strip().lower()
                if any((u.email or "").lower() == lowered for u in self.users.values()):
                    raise ConstraintViolation("user already exists", {"field": "email"})
            user = User.new(
                normalized,
                name,
                Role(role),
                email=email,
                department=department,
                parent_customer_id=parent_customer_id,
                can_book_media_day=can_book_media_day is True,
            )
            self.users[user.id] = user
            self._usernames[normalized] = user.id
        self.logger.info("user_created", user_id=user.id, role=user.role.value)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            user_id = self._usernames.get(username.strip().lower())
            return self.users.get(user_id) if user_id else None

    def list_users(self, role: Optional[Role] = None) -> List[User]:
        with self._data_lock:
            users = list(self.users.values())
        if role is not None:
            users = [u for u in users if u.role == role]
        return users

    def update_user_role(self, user_id: str, role: Role) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.role = Role(role)
            return user

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user not found", {"user_id": user_id})
            self.credentials[user_id] = (password_hash, password_algo)

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)
