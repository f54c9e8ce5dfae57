"""
Tests for identity resolution and the registered session lifecycle.

Run locally:
    python -m pytest vidlib/tests/test_identity_service.py -v
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from vidlib.db import DatabaseConnectionError
from vidlib.errors import StoreUnavailable
from vidlib.services.identity_service import (
    AnonymousIdentity,
    IdentityResolver,
    RegisteredIdentity,
    RequestCredentials,
    generate_anonymous_id,
    generate_user_session_token,
    is_valid_anonymous_id,
)
from vidlib.tests.fakes import make_anon_id


class TestTokenFormats:
    def test_generated_anonymous_id_is_valid(self):
        session_id = generate_anonymous_id()
        assert session_id.startswith("anon_")
        assert is_valid_anonymous_id(session_id)

    def test_generated_ids_differ(self):
        assert generate_anonymous_id() != generate_anonymous_id()

    def test_anonymous_id_shape(self):
        epoch_ms, suffix = generate_anonymous_id()[len("anon_"):].split("_")
        assert epoch_ms.isdigit()
        assert len(suffix) == 24
        int(suffix, 16)

    @pytest.mark.parametrize("value", [
        None,
        "",
        "anon_",
        "anon_123",
        "anon_abc_0123456789abcdef01234567",
        "anon_1717000000000_XYZ456789abcdef01234567",
        "anon_1717000000000_0123456789abcdef0123456",
        "session_1717000000000_0123456789abcdef01234567",
        "anon_1717000000000_0123456789abcdef01234567; DROP TABLE",
    ])
    def test_rejects_malformed_ids(self, value):
        assert not is_valid_anonymous_id(value)

    def test_user_session_token_shape(self):
        token = generate_user_session_token()
        assert token.startswith("session_")
        assert len(token) == len("session_") + 64


class TestResolveAnonymous:
    def test_no_credentials_creates_new_session(self, services, sessions):
        identity = services.identity.resolve(RequestCredentials())

        assert isinstance(identity, AnonymousIdentity)
        assert identity.is_new
        row = sessions.anonymous[identity.session_id]
        assert row["video_count"] == 0

    def test_records_user_agent_and_ip(self, services, sessions):
        identity = services.identity.resolve(
            RequestCredentials(user_agent="pytest-agent", ip_address="10.0.0.7")
        )
        row = sessions.anonymous[identity.session_id]
        assert row["user_agent"] == "pytest-agent"
        assert row["ip_address"] == "10.0.0.7"

    def test_known_token_is_reused_and_touched(self, services, sessions, clock):
        sid = make_anon_id(1)
        sessions.add_anonymous(sid, last_active_at=clock() - timedelta(days=3))

        identity = services.identity.resolve(RequestCredentials(anonymous_token=sid))

        assert identity == AnonymousIdentity(session_id=sid, is_new=False)
        assert sessions.anonymous[sid]["last_active_at"] == clock()
        assert len(sessions.anonymous) == 1

    def test_unknown_token_gets_fresh_id(self, services, sessions):
        sid = make_anon_id(2)

        identity = services.identity.resolve(RequestCredentials(anonymous_token=sid))

        assert identity.is_new
        assert identity.session_id != sid
        assert sid not in sessions.anonymous

    def test_malformed_token_gets_fresh_id(self, services, sessions):
        identity = services.identity.resolve(RequestCredentials(anonymous_token="not-a-session"))

        assert identity.is_new
        assert "not-a-session" not in sessions.anonymous


class TestCollisions:
    def test_collision_is_retried_with_new_id(self, sessions):
        taken = make_anon_id(10)
        fresh = make_anon_id(11)
        sessions.add_anonymous(taken, video_count=2)
        ids = iter([taken, fresh])
        resolver = IdentityResolver(sessions, id_factory=lambda: next(ids))

        identity = resolver.resolve(RequestCredentials())

        assert identity == AnonymousIdentity(session_id=fresh, is_new=True)
        # The existing row is untouched
        assert sessions.anonymous[taken]["video_count"] == 2

    def test_gives_up_after_max_attempts(self, sessions):
        taken = make_anon_id(12)
        sessions.add_anonymous(taken)
        resolver = IdentityResolver(sessions, id_factory=lambda: taken)

        assert resolver.resolve(RequestCredentials()) is None
        assert len(sessions.anonymous) == 1


class TestResolveRegistered:
    def test_valid_user_token(self, services, sessions, clock):
        sessions.add_user(7)
        row = services.identity.create_user_session(7)
        clock.advance(days=1)

        creds = RequestCredentials(user_token=row["session_token"], anonymous_token=make_anon_id(3))
        identity = services.identity.resolve(creds)

        assert identity == RegisteredIdentity(user_id=7, session_token=row["session_token"])
        assert not creds.clear_user_token
        assert sessions.user_sessions[row["session_token"]]["last_active_at"] == clock()
        # Registered callers do not mint anonymous sessions
        assert sessions.anonymous == {}

    def test_expired_token_is_deleted_and_cleared(self, services, sessions, clock):
        row = services.identity.create_user_session(7)
        clock.advance(days=15)

        creds = RequestCredentials(user_token=row["session_token"])
        identity = services.identity.resolve(creds)

        assert isinstance(identity, AnonymousIdentity)
        assert identity.is_new
        assert creds.clear_user_token
        assert row["session_token"] not in sessions.user_sessions

    def test_token_expiring_exactly_now_is_expired(self, services, sessions, clock):
        row = services.identity.create_user_session(7)
        clock.now = row["expires_at"]

        creds = RequestCredentials(user_token=row["session_token"])
        assert isinstance(services.identity.resolve(creds), AnonymousIdentity)
        assert creds.clear_user_token

    def test_unknown_token_falls_back_to_anonymous(self, services, sessions):
        sid = make_anon_id(4)
        sessions.add_anonymous(sid)

        creds = RequestCredentials(user_token="session_" + "0" * 64, anonymous_token=sid)
        identity = services.identity.resolve(creds)

        assert identity == AnonymousIdentity(session_id=sid, is_new=False)
        assert creds.clear_user_token

    def test_header_token_used_when_cookie_token_is_stale(self, services, sessions):
        row = services.identity.create_user_session(7)

        creds = RequestCredentials(user_token="session_" + "1" * 64, header_user_token=row["session_token"])
        identity = services.identity.resolve(creds)

        assert identity == RegisteredIdentity(user_id=7, session_token=row["session_token"])
        assert creds.clear_user_token
        assert sessions.anonymous == {}


class TestFailClosed:
    def test_store_outage_returns_none(self, services, sessions):
        sessions.unavailable = True
        assert services.identity.resolve(RequestCredentials()) is None

    def test_outage_with_anonymous_token_returns_none(self, services, sessions):
        sid = make_anon_id(5)
        sessions.add_anonymous(sid)
        sessions.unavailable = True
        assert services.identity.resolve(RequestCredentials(anonymous_token=sid)) is None

    def test_outage_is_logged(self, sessions):
        resolver = IdentityResolver(sessions)
        sessions.unavailable = True
        with patch.object(resolver, "logger") as mock_logger:
            assert resolver.resolve(RequestCredentials()) is None
        mock_logger.error.assert_called_once()


class TestUserSessionLifecycle:
    def test_create_sets_ttl(self, services, clock):
        row = services.identity.create_user_session(7, user_agent="ua", ip_address="1.2.3.4")
        assert row["user_id"] == 7
        assert row["expires_at"] == clock() + timedelta(days=14)

    def test_invalidate(self, services, sessions):
        row = services.identity.create_user_session(7)
        assert services.identity.invalidate_user_session(row["session_token"]) is True
        assert services.identity.invalidate_user_session(row["session_token"]) is False
        assert sessions.user_sessions == {}

    def test_invalidate_all_keeps_exception(self, services, sessions):
        keep = services.identity.create_user_session(7)
        services.identity.create_user_session(7)
        services.identity.create_user_session(7)
        other = services.identity.create_user_session(8)

        count = services.identity.invalidate_all_user_sessions(7, except_token=keep["session_token"])

        assert count == 2
        assert set(sessions.user_sessions) == {keep["session_token"], other["session_token"]}

    def test_create_raises_store_unavailable(self, services, sessions):
        sessions.unavailable = True
        with pytest.raises(StoreUnavailable) as exc_info:
            services.identity.create_user_session(7)
        assert isinstance(exc_info.value.original_error, DatabaseConnectionError)
