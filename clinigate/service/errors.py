from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - validation_error (400): request values rejected by a service rule
    - unauthorized (401): no credential, or a credential that does not verify
    - session_expired (403): credential verifies but its session is gone
    - forbidden (403): identity present but denied by policy
    - conflict (409): concurrent session limit reached at login
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Request is well-formed but its values are not acceptable (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class MissingCredentialError(AuthenticationError):
    """No bearer credential on the request (401)."""
    pass


class InvalidCredentialError(AuthenticationError):
    """Bearer credential failed token verification (401).

    ``kind`` carries the codec failure: ``malformed``, ``signature_invalid``
    or ``expired``.
    """

    def __init__(self, message: str, *, kind: str) -> None:
        super().__init__(message, detail={"reason": kind})
        self.kind = kind


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class SessionExpiredError(ForbiddenError):
    """Token verified but no live session backs it (403)."""
    error_code = "session_expired"


class ConflictError(ServiceError):
    """Resource conflict, e.g. too many concurrent sessions (409)."""
    status_code = 409
    error_code = "conflict"


class TokenVerificationError(Exception):
    """Raised by the token codec; never surfaced to HTTP directly."""

    kind: str = "malformed"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MalformedTokenError(TokenVerificationError):
    kind = "malformed"


class SignatureInvalidError(TokenVerificationError):
    kind = "signature_invalid"


class TokenExpiredError(TokenVerificationError):
    kind = "expired"


__all__ = [
    "ServiceError",
    "BadRequestError",
    "AuthenticationError",
    "MissingCredentialError",
    "InvalidCredentialError",
    "ForbiddenError",
    "SessionExpiredError",
    "ConflictError",
    "TokenVerificationError",
    "MalformedTokenError",
    "SignatureInvalidError",
    "TokenExpiredError",
]
