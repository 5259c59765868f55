from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
from datetime import timedelta
from typing import Any, Optional

from clinigate.logging import get_logger
from clinigate.service.clock import Clock, SystemClock
from clinigate.service.errors import (
    MalformedTokenError,
    SignatureInvalidError,
    TokenExpiredError,
)
from clinigate.service.roles import Role

logger = get_logger(__name__)

_ALGORITHM = "HS256"


class TokenCodec:
    """Signs and verifies HS256 identity tokens.

    The embedded ``exp`` only bounds how long a token can ever be honored;
    the session registry decides whether it is honored right now.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        audience: str,
        ttl: timedelta = timedelta(days=7),
        clock: Optional[Clock] = None,
    ) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.ttl = ttl
        self.clock: Clock = clock or SystemClock()

    def issue(
        self,
        user_id: str,
        role: Role,
        *,
        can_book_media_day: Optional[bool] = None,
        parent_customer_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> str:
        now = self.clock.now()
        payload: dict[str, Any] = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": str(user_id),
            "role": Role(role).value,
            "iat": int(now.timestamp()),
            "exp": int((now + self.ttl).timestamp()),
        }
        if name is not None:
            payload["name"] = name
        if can_book_media_day is not None:
            payload["canBookMediaDay"] = can_book_media_day is True
        if parent_customer_id is not None:
            payload["parentCustomerId"] = str(parent_customer_id)
        return self._encode(payload)

    def verify(self, token: str) -> dict[str, Any]:
        """Return the token's claims or raise a TokenVerificationError subclass."""
        if not isinstance(token, str):
            raise MalformedTokenError("token must be a string")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise MalformedTokenError("token must have three segments") from None

        # Pin the algorithm to prevent algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            raise MalformedTokenError("token header is not valid JSON") from None
        if not isinstance(header, dict) or header.get("alg") != _ALGORITHM:
            logger.warning(
                "token_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise MalformedTokenError("unsupported token algorithm")

        try:
            provided_sig = self._decode_segment(sig_b64)
        except ValueError:
            raise MalformedTokenError("token signature is not valid base64") from None
        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, provided_sig):
            raise SignatureInvalidError("token signature mismatch")

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("token_payload_decode_failed", error=str(exc))
            raise MalformedTokenError("token payload is not valid JSON") from None
        if not isinstance(payload, dict):
            raise MalformedTokenError("token payload must be an object")
        if payload.get("iss") != self.issuer:
            raise MalformedTokenError("token issuer mismatch")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise MalformedTokenError("token audience mismatch")

        exp = payload.get("exp")
        if exp is None or isinstance(exp, bool):
            raise MalformedTokenError("token has no expiry")
        try:
            exp_ts = float(exp)
        except (TypeError, ValueError, OverflowError):
            raise MalformedTokenError("token expiry is not numeric") from None
        if not math.isfinite(exp_ts):
            raise MalformedTokenError("token expiry is not finite")
        if exp_ts <= self.clock.now().timestamp():
            raise TokenExpiredError("token has expired")
        return payload

    def _sign(self, signing_input: str) -> bytes:
        return hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()

    def _encode(self, payload: dict[str, Any]) -> str:
        header = {"alg": _ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._encode_segment(self._sign(signing_input))}"

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        try:
            return base64.urlsafe_b64decode(segment + padding)
        except (ValueError, TypeError) as exc:
            raise ValueError("invalid base64 segment") from exc
