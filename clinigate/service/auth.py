from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from clinigate.config import Settings
from clinigate.logging import get_logger
from clinigate.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
)
from clinigate.service.identity import IdentityContext
from clinigate.service.roles import Role
from clinigate.service.sessions import SessionRegistry
from clinigate.service.tokens import TokenCodec
from clinigate.storage.models import User

logger = get_logger(__name__)

# Employee departments accepted at registration
DEPARTMENTS = frozenset({"photography", "web", "social"})


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


class AuthStore(Protocol):
    def create_user(self, username: str, name: str, **fields) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...


@dataclass
class LoginResult:
    user: User
    token: str


class AuthService:
    """Password login and logout on top of the token codec and session registry."""

    def __init__(
        self,
        store: AuthStore,
        codec: TokenCodec,
        sessions: SessionRegistry,
        settings: Settings,
    ) -> None:
        self.store: AuthStore = store
        self.codec = codec
        self.sessions = sessions
        self.settings = settings
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self.logger = logger

    def login(self, username: str, password: str) -> LoginResult:
        user = self.store.get_user_by_username(username)
        if not user or not self.verify_password(user.id, password):
            self.logger.info("login_failed", username=username)
            raise AuthenticationError("invalid credentials")

        token = self.issue_token(user)
        limit = self.settings.max_concurrent_sessions
        if not self.sessions.add_session_within_limit(
            user.id, user.role, token, limit=limit
        ):
            raise ConflictError(
                f"Maximum {limit} concurrent sessions allowed. "
                "Please log out from another device first.",
                detail={"max_sessions": limit},
            )
        self.logger.info("login_succeeded", user_id=user.id, role=user.role.value)
        return LoginResult(user=user, token=token)

    def register(
        self,
        username: str,
        password: str,
        *,
        name: str,
        role: Role = Role.CUSTOMER,
        email: Optional[str] = None,
        department: Optional[str] = None,
        parent_customer_id: Optional[str] = None,
        can_book_media_day: bool = False,
    ) -> User:
        """Create an account with an argon2id password record.

        Department is kept only for employees, where it is required. The
        delegation link and Media Day grant are kept only for receptionists,
        whose parent must be an existing customer account.

        Raises:
            BadRequestError: weak password, missing department or bad parent link
            ConstraintViolation: username or email already taken
        """
        role = Role(role)
        if not validate_password(password):
            raise BadRequestError(
                "password must be at least 12 characters with 3+ character classes",
                detail={"field": "password"},
            )

        if role is Role.EMPLOYEE:
            if department not in DEPARTMENTS:
                raise BadRequestError(
                    "employees need a department",
                    detail={"field": "department", "allowed": sorted(DEPARTMENTS)},
                )
        else:
            department = None

        if role is Role.RECEPTIONIST:
            parent = self.store.get_user(parent_customer_id) if parent_customer_id else None
            if parent is None or parent.role is not Role.CUSTOMER:
                raise BadRequestError(
                    "receptionists must be linked to an existing customer",
                    detail={"field": "parent_customer_id"},
                )
        else:
            parent_customer_id = None
            can_book_media_day = False

        user = self.store.create_user(
            username,
            name,
            role=role,
            email=email,
            department=department,
            parent_customer_id=parent_customer_id,
            can_book_media_day=can_book_media_day is True,
        )
        self.save_password(user.id, password)
        self.logger.info("user_registered", user_id=user.id, role=role.value)
        return user

    def issue_token(self, user: User) -> str:
        if user.role is Role.RECEPTIONIST:
            return self.codec.issue(
                user.id,
                user.role,
                name=user.name,
                parent_customer_id=user.parent_customer_id,
                can_book_media_day=user.can_book_media_day is True,
            )
        return self.codec.issue(user.id, user.role, name=user.name)

    def logout(self, ctx: IdentityContext) -> None:
        self.sessions.remove_session(ctx.user_id, ctx.role)
        self.logger.info("logout", user_id=ctx.user_id, role=ctx.role.value)

    def _hash_password(self, password: str) -> Tuple[str, str]:
        algo = "argon2id"
        digest = self._pwd_hasher.hash(password)
        return digest, algo

    def verify_password(self, user_id: str, password: str) -> bool:
        """Verify a user's password against stored hash."""
        record = self.store.get_password_record(user_id)
        if not record:
            self.logger.warning("password_record_missing", user_id=user_id)
            return False
        stored_hash, algo = record
        if algo != "argon2id":
            self.logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            return False
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerificationError):
            return False

    def save_password(self, user_id: str, password: str) -> None:
        """Hash and save a new password for a user."""
        pwd_hash, algo = self._hash_password(password)
        self.store.save_password(user_id, pwd_hash, algo)
