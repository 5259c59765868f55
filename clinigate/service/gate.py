from __future__ import annotations

from typing import Any, Optional

from clinigate.logging import get_logger
from clinigate.service.errors import (
    InvalidCredentialError,
    MissingCredentialError,
    SessionExpiredError,
    TokenVerificationError,
)
from clinigate.service.identity import IdentityContext
from clinigate.service.roles import parse_role
from clinigate.service.sessions import SessionRegistry
from clinigate.service.tokens import TokenCodec

logger = get_logger(__name__)

# Subject id claim names accepted from token payloads, in priority order
_SUBJECT_FIELDS = ("sub", "id", "_id", "user_id")


def extract_bearer(header: Optional[str]) -> Optional[str]:
    """Return the credential from an ``Authorization`` header value.

    A bare token without the ``Bearer`` scheme is accepted as-is.
    """
    if not header or not header.strip():
        return None
    parts = header.strip().split(None, 1)
    if len(parts) == 2:
        if parts[0].lower() != "bearer":
            return None
        return parts[1].strip() or None
    if parts[0].lower() == "bearer":
        return None
    return parts[0]


def _subject_id(claims: dict[str, Any]) -> Optional[str]:
    for field in _SUBJECT_FIELDS:
        value = claims.get(field)
        if value is None or isinstance(value, (bool, dict, list)):
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    value = str(value).strip()
    return value or None


class AuthenticationGate:
    """Per-request check: token verification plus session registry validation."""

    def __init__(self, codec: TokenCodec, sessions: SessionRegistry) -> None:
        self.codec = codec
        self.sessions = sessions

    def authenticate(self, authorization: Optional[str]) -> IdentityContext:
        token = extract_bearer(authorization)
        if not token:
            raise MissingCredentialError("access token required")

        try:
            claims = self.codec.verify(token)
        except TokenVerificationError as exc:
            logger.info("auth_token_rejected", reason=exc.kind)
            raise InvalidCredentialError("invalid or expired token", kind=exc.kind) from exc

        ctx = self._context_from_claims(claims)

        if not self.sessions.is_valid_session(ctx.user_id, token, ctx.role):
            logger.info(
                "auth_session_rejected", user_id=ctx.user_id, role=ctx.role.value
            )
            raise SessionExpiredError("session expired or logged in elsewhere")
        return ctx

    def _context_from_claims(self, claims: dict[str, Any]) -> IdentityContext:
        user_id = _subject_id(claims)
        if not user_id:
            raise InvalidCredentialError("token has no subject", kind="malformed")
        try:
            role = parse_role(claims.get("role"))
        except ValueError:
            logger.warning("auth_unknown_role", user_id=user_id, role=claims.get("role"))
            raise InvalidCredentialError("token role is not recognized", kind="malformed") from None
        return IdentityContext(
            user_id=user_id,
            role=role,
            can_book_media_day=claims.get("canBookMediaDay") is True,
            parent_customer_id=_optional_str(claims.get("parentCustomerId")),
            name=_optional_str(claims.get("name")),
        )
