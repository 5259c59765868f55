"""Unit tests for the per-request authentication gate."""

import pytest

from clinigate.service.errors import (
    InvalidCredentialError,
    MissingCredentialError,
    SessionExpiredError,
)
from clinigate.service.gate import AuthenticationGate, extract_bearer
from clinigate.service.roles import Role
from clinigate.service.sessions import SessionRegistry
from clinigate.service.tokens import TokenCodec


@pytest.fixture
def codec(clock):
    return TokenCodec(
        "gate-test-secret-value-0123456789",
        issuer="clinigate",
        audience="portal-clients",
        clock=clock,
    )


@pytest.fixture
def sessions(clock):
    return SessionRegistry(clock)


@pytest.fixture
def gate(codec, sessions):
    return AuthenticationGate(codec, sessions)


def _login(codec, sessions, user_id, role, **claims):
    token = codec.issue(user_id, role, **claims)
    sessions.add_session(user_id, role, token)
    return token


class TestExtractBearer:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            ("  Bearer   abc  ", "abc"),
            ("abc.def.ghi", "abc.def.ghi"),
            ("Basic dXNlcjpwYXNz", None),
            ("Bearer", None),
            ("Bearer   ", None),
            ("", None),
            (None, None),
        ],
    )
    def test_header_forms(self, header, expected):
        assert extract_bearer(header) == expected


class TestAuthenticate:
    def test_missing_header(self, gate):
        with pytest.raises(MissingCredentialError) as exc:
            gate.authenticate(None)

        assert exc.value.status_code == 401
        assert exc.value.message == "access token required"

    def test_garbage_token(self, gate):
        with pytest.raises(InvalidCredentialError) as exc:
            gate.authenticate("Bearer not-a-token")

        assert exc.value.status_code == 401
        assert exc.value.detail == {"reason": "malformed"}

    def test_expired_token(self, gate, codec, sessions, clock):
        token = _login(codec, sessions, "U1", Role.CUSTOMER)
        clock.advance(days=8)

        with pytest.raises(InvalidCredentialError) as exc:
            gate.authenticate(f"Bearer {token}")

        assert exc.value.detail == {"reason": "expired"}

    def test_signature_mismatch(self, gate, sessions, clock):
        forged = TokenCodec(
            "some-other-secret-value-987654321",
            issuer="clinigate",
            audience="portal-clients",
            clock=clock,
        ).issue("U1", Role.ADMIN)
        sessions.add_session("U1", Role.ADMIN, forged)

        with pytest.raises(InvalidCredentialError) as exc:
            gate.authenticate(f"Bearer {forged}")

        assert exc.value.detail == {"reason": "signature_invalid"}

    def test_oversized_expiry_is_unauthorized(self, gate, codec, sessions):
        token = codec._encode(
            {"iss": "clinigate", "aud": "portal-clients", "sub": "U1", "role": "customer", "exp": 10**400}
        )
        sessions.add_session("U1", Role.CUSTOMER, token)

        with pytest.raises(InvalidCredentialError) as exc:
            gate.authenticate(f"Bearer {token}")

        assert exc.value.detail == {"reason": "malformed"}

    def test_valid_token_without_session_is_expired_session(self, gate, codec):
        token = codec.issue("U1", Role.CUSTOMER)

        with pytest.raises(SessionExpiredError) as exc:
            gate.authenticate(f"Bearer {token}")

        assert exc.value.status_code == 403
        assert exc.value.error_code == "session_expired"

    def test_superseded_token_rejected(self, gate, codec, sessions, clock):
        first = _login(codec, sessions, "U1", Role.CUSTOMER)
        clock.advance(seconds=5)
        second = _login(codec, sessions, "U1", Role.CUSTOMER)

        with pytest.raises(SessionExpiredError):
            gate.authenticate(f"Bearer {first}")
        assert gate.authenticate(f"Bearer {second}").user_id == "U1"

    def test_success_builds_context(self, gate, codec, sessions):
        token = _login(
            codec,
            sessions,
            "R1",
            Role.RECEPTIONIST,
            can_book_media_day=True,
            parent_customer_id="C1",
            name="Front Desk",
        )

        ctx = gate.authenticate(f"Bearer {token}")

        assert ctx.user_id == "R1"
        assert ctx.role is Role.RECEPTIONIST
        assert ctx.can_book_media_day is True
        assert ctx.parent_customer_id == "C1"
        assert ctx.name == "Front Desk"

    def test_bare_token_accepted(self, gate, codec, sessions):
        token = _login(codec, sessions, "U1", Role.EMPLOYEE)

        assert gate.authenticate(token).role is Role.EMPLOYEE

    def test_success_refreshes_activity(self, gate, codec, sessions, clock):
        token = _login(codec, sessions, "U1", Role.CUSTOMER)
        later = clock.advance(minutes=30)

        gate.authenticate(f"Bearer {token}")

        [info] = sessions.get_user_sessions("U1")
        assert info.last_activity_at == later

    def test_flag_must_be_literal_true(self, gate, codec, sessions):
        token = codec.issue("R1", Role.RECEPTIONIST, can_book_media_day="yes")
        sessions.add_session("R1", Role.RECEPTIONIST, token)

        assert gate.authenticate(token).can_book_media_day is False

    def test_missing_flags_default_to_no_grant(self, gate, codec, sessions):
        token = _login(codec, sessions, "E1", Role.EMPLOYEE)

        ctx = gate.authenticate(token)

        assert ctx.can_book_media_day is False
        assert ctx.parent_customer_id is None


class TestClaimNormalization:
    """Subject and role claims from differently shaped payloads."""

    def test_subject_from_legacy_id_field(self, gate, codec, sessions, monkeypatch):
        claims = {"iss": "clinigate", "aud": "portal-clients", "id": "U7", "role": "customer"}
        monkeypatch.setattr(codec, "verify", lambda token: dict(claims))
        sessions.add_session("U7", Role.CUSTOMER, "opaque")

        assert gate.authenticate("Bearer opaque").user_id == "U7"

    def test_subject_from_underscore_id_field(self, gate, codec, sessions, monkeypatch):
        monkeypatch.setattr(
            codec, "verify", lambda token: {"_id": 42, "role": "Employee"}
        )
        sessions.add_session("42", Role.EMPLOYEE, "opaque")

        ctx = gate.authenticate("Bearer opaque")

        assert ctx.user_id == "42"
        assert ctx.role is Role.EMPLOYEE

    def test_missing_subject_is_malformed(self, gate, codec, monkeypatch):
        monkeypatch.setattr(codec, "verify", lambda token: {"role": "admin"})

        with pytest.raises(InvalidCredentialError) as exc:
            gate.authenticate("Bearer opaque")

        assert exc.value.detail == {"reason": "malformed"}

    def test_unknown_role_is_malformed(self, gate, codec, monkeypatch):
        monkeypatch.setattr(codec, "verify", lambda token: {"sub": "U1", "role": "superuser"})

        with pytest.raises(InvalidCredentialError) as exc:
            gate.authenticate("Bearer opaque")

        assert exc.value.detail == {"reason": "malformed"}
