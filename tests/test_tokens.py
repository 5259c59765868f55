"""Unit tests for the identity token codec."""

import base64
import json
from datetime import timedelta

import pytest

from clinigate.service.errors import (
    MalformedTokenError,
    SignatureInvalidError,
    TokenExpiredError,
)
from clinigate.service.roles import Role
from clinigate.service.tokens import TokenCodec

SECRET = "Codec-Test-Secret_for-Automation-Only-123456789!"


@pytest.fixture
def codec(clock):
    return TokenCodec(
        SECRET,
        issuer="clinigate",
        audience="portal-clients",
        ttl=timedelta(days=7),
        clock=clock,
    )


def _segment(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


class TestIssue:
    def test_round_trip_carries_identity_and_flags(self, codec):
        token = codec.issue(
            "R1",
            Role.RECEPTIONIST,
            can_book_media_day=True,
            parent_customer_id="C1",
            name="Front Desk",
        )

        claims = codec.verify(token)

        assert claims["sub"] == "R1"
        assert claims["role"] == "receptionist"
        assert claims["canBookMediaDay"] is True
        assert claims["parentCustomerId"] == "C1"
        assert claims["name"] == "Front Desk"

    def test_optional_claims_omitted_when_not_given(self, codec):
        claims = codec.verify(codec.issue("U1", Role.EMPLOYEE))

        assert "canBookMediaDay" not in claims
        assert "parentCustomerId" not in claims

    def test_expiry_uses_injected_clock(self, codec, clock):
        claims = codec.verify(codec.issue("U1", Role.ADMIN))

        assert claims["iat"] == int(clock.now().timestamp())
        assert claims["exp"] == int((clock.now() + timedelta(days=7)).timestamp())

    def test_issue_is_deterministic_for_same_inputs(self, codec):
        assert codec.issue("U1", Role.CUSTOMER) == codec.issue("U1", Role.CUSTOMER)

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenCodec("", issuer="i", audience="a")


class TestVerifyFailures:
    @pytest.mark.parametrize(
        "token",
        ["", "not-a-token", "a.b", "a.b.c.d", "!!!.@@@.###"],
    )
    def test_structurally_invalid_is_malformed(self, codec, token):
        with pytest.raises(MalformedTokenError):
            codec.verify(token)

    def test_non_string_is_malformed(self, codec):
        with pytest.raises(MalformedTokenError):
            codec.verify(None)

    def test_tampered_payload_fails_signature(self, codec):
        header, _, signature = codec.issue("U1", Role.CUSTOMER).split(".")
        forged_payload = _segment(
            {
                "iss": "clinigate",
                "aud": "portal-clients",
                "sub": "U1",
                "role": "admin",
                "exp": 9999999999,
            }
        )

        with pytest.raises(SignatureInvalidError):
            codec.verify(f"{header}.{forged_payload}.{signature}")

    def test_token_from_other_secret_fails_signature(self, codec, clock):
        other = TokenCodec(
            "another-secret-entirely-0987654321",
            issuer="clinigate",
            audience="portal-clients",
            clock=clock,
        )

        with pytest.raises(SignatureInvalidError):
            codec.verify(other.issue("U1", Role.CUSTOMER))

    def test_alg_none_is_rejected(self, codec):
        _, payload, signature = codec.issue("U1", Role.CUSTOMER).split(".")
        header = _segment({"alg": "none", "typ": "JWT"})

        with pytest.raises(MalformedTokenError):
            codec.verify(f"{header}.{payload}.{signature}")

    def test_expired_token(self, codec, clock):
        token = codec.issue("U1", Role.CUSTOMER)
        clock.advance(days=7, seconds=1)

        with pytest.raises(TokenExpiredError):
            codec.verify(token)

    def test_token_valid_just_before_expiry(self, codec, clock):
        token = codec.issue("U1", Role.CUSTOMER)
        clock.advance(days=6, hours=23)

        assert codec.verify(token)["sub"] == "U1"

    def test_wrong_audience_is_malformed(self, codec, clock):
        other = TokenCodec(
            SECRET, issuer="clinigate", audience="someone-else", clock=clock
        )

        with pytest.raises(MalformedTokenError):
            codec.verify(other.issue("U1", Role.CUSTOMER))

    @pytest.mark.parametrize("exp", [10**400, float("inf"), float("nan"), "soon"])
    def test_signed_token_with_unusable_expiry_is_malformed(self, codec, exp):
        token = codec._encode(
            {"iss": "clinigate", "aud": "portal-clients", "sub": "U1", "role": "customer", "exp": exp}
        )

        with pytest.raises(MalformedTokenError):
            codec.verify(token)

    def test_failure_kinds(self):
        assert MalformedTokenError("x").kind == "malformed"
        assert SignatureInvalidError("x").kind == "signature_invalid"
        assert TokenExpiredError("x").kind == "expired"
