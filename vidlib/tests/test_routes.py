"""
Tests for the identity middleware and the HTTP endpoints.

Run locally:
    python -m pytest vidlib/tests/test_routes.py -v
"""

from datetime import timedelta

import pytest

from vidlib.config import config
from vidlib.tests.conftest import ADMIN_TOKEN
from vidlib.tests.fakes import make_anon_id

ANON_HEADER = config.ANON_SESSION_HEADER


def _set_cookies(response):
    return response.headers.getlist("Set-Cookie")


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True}

    def test_health_does_not_create_sessions(self, client, sessions):
        client.get("/api/health")
        assert sessions.anonymous == {}


class TestIdentityMiddleware:
    def test_new_visitor_gets_anonymous_session(self, client, sessions):
        resp = client.get("/api/me")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["identity"]["type"] == "anonymous"
        assert body["identity"]["is_new"] is True
        sid = body["identity"]["session_id"]
        assert sid in sessions.anonymous
        assert resp.headers[ANON_HEADER] == sid
        assert any(c.startswith(f"{config.ANON_SESSION_COOKIE_NAME}={sid}") for c in _set_cookies(resp))
        assert "no-store" in resp.headers["Cache-Control"]

    def test_header_credential_is_reused(self, client, sessions):
        sid = make_anon_id(1)
        sessions.add_anonymous(sid)

        resp = client.get("/api/me", headers={ANON_HEADER: sid})

        body = resp.get_json()
        assert body["identity"] == {"type": "anonymous", "session_id": sid, "is_new": False}
        assert ANON_HEADER not in resp.headers
        assert body["quota"]["limit"] == 3

    def test_cookie_credential_is_reused(self, client, sessions):
        sid = make_anon_id(2)
        sessions.add_anonymous(sid)
        client.set_cookie(config.ANON_SESSION_COOKIE_NAME, sid)

        body = client.get("/api/me").get_json()
        assert body["identity"]["session_id"] == sid

    def test_registered_bearer_token(self, client, services, sessions):
        row = services.identity.create_user_session(9)

        resp = client.get("/api/me", headers={"Authorization": f"Bearer {row['session_token']}"})

        assert resp.get_json()["identity"] == {"type": "registered", "user_id": 9}
        assert "quota" not in resp.get_json()
        assert sessions.anonymous == {}

    def test_registered_session_header(self, client, services):
        row = services.identity.create_user_session(9)
        resp = client.get("/api/me", headers={config.USER_SESSION_HEADER: row["session_token"]})
        assert resp.get_json()["identity"]["type"] == "registered"

    def test_expired_user_cookie_is_cleared(self, client, services, clock):
        row = services.identity.create_user_session(9)
        clock.advance(days=20)
        client.set_cookie(config.USER_SESSION_COOKIE_NAME, row["session_token"])

        resp = client.get("/api/me")

        assert resp.get_json()["identity"]["type"] == "anonymous"
        cleared = [c for c in _set_cookies(resp) if c.startswith(f"{config.USER_SESSION_COOKIE_NAME}=;")]
        assert cleared

    def test_bearer_token_wins_over_stale_cookie(self, client, services, sessions, clock):
        stale = services.identity.create_user_session(9)
        clock.advance(days=20)
        live = services.identity.create_user_session(9)
        client.set_cookie(config.USER_SESSION_COOKIE_NAME, stale["session_token"])

        resp = client.get("/api/me", headers={"Authorization": f"Bearer {live['session_token']}"})

        assert resp.get_json()["identity"] == {"type": "registered", "user_id": 9}
        assert sessions.anonymous == {}

    def test_store_outage_is_401_no_session(self, client, sessions):
        sessions.unavailable = True

        resp = client.get("/api/me")

        assert resp.status_code == 401
        body = resp.get_json()
        assert body["ok"] is False
        assert body["error"]["code"] == "NO_SESSION"


class TestVideoCount:
    def test_count_is_drift_corrected(self, client, sessions, resources):
        sid = make_anon_id(3)
        sessions.add_anonymous(sid, video_count=3)
        resources.add_video(anonymous_session_id=sid)

        resp = client.get("/api/anonymous/videos/count", headers={ANON_HEADER: sid})

        assert resp.status_code == 200
        assert resp.get_json() == {
            "ok": True,
            "count": 1,
            "max_allowed": 3,
            "remaining": 2,
            "at_limit": False,
        }
        assert sessions.anonymous[sid]["video_count"] == 1

    def test_registered_caller_rejected(self, client, services):
        row = services.identity.create_user_session(9)
        resp = client.get(
            "/api/anonymous/videos/count",
            headers={"Authorization": f"Bearer {row['session_token']}"},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "NOT_ANONYMOUS"


class TestCreateVideo:
    def test_anonymous_quota_boundary(self, client, sessions, resources):
        sid = make_anon_id(4)
        sessions.add_anonymous(sid)

        for expected in (1, 2, 3):
            resp = client.post("/api/videos", json={"title": f"v{expected}"}, headers={ANON_HEADER: sid})
            assert resp.status_code == 201
            assert resp.get_json()["quota"]["count"] == expected

        resp = client.post("/api/videos", json={"title": "v4"}, headers={ANON_HEADER: sid})

        assert resp.status_code == 403
        body = resp.get_json()
        assert body["ok"] is False
        assert body["error"]["code"] == "ANONYMOUS_LIMIT_REACHED"
        assert body["action"] == "register"
        assert resources.count_by_session(sid) == 3

    def test_registered_bypasses_quota(self, client, services, resources):
        row = services.identity.create_user_session(9)
        headers = {"Authorization": f"Bearer {row['session_token']}"}

        for _ in range(5):
            assert client.post("/api/videos", json={"title": "x"}, headers=headers).status_code == 201

        assert len(resources.owned_by_user(9)) == 5

    def test_title_required(self, client):
        resp = client.post("/api/videos", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"

    def test_resource_store_outage_is_503(self, client, sessions, resources):
        sid = make_anon_id(5)
        sessions.add_anonymous(sid)
        resources.unavailable = True

        resp = client.post("/api/videos", json={"title": "x"}, headers={ANON_HEADER: sid})

        assert resp.status_code == 503
        assert resp.get_json()["error"]["code"] == "STORE_UNAVAILABLE"


class TestMigrateEndpoint:
    @pytest.fixture
    def user_headers(self, services, sessions):
        sessions.add_user(9)
        row = services.identity.create_user_session(9)
        return {"Authorization": f"Bearer {row['session_token']}"}

    def test_migrates_from_body(self, client, sessions, resources, user_headers):
        sid = make_anon_id(6)
        sessions.add_anonymous(sid, video_count=2)
        resources.add_video(anonymous_session_id=sid)
        resources.add_video(anonymous_session_id=sid)

        resp = client.post("/api/anonymous/migrate", json={"sessionId": sid}, headers=user_headers)

        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True, "migrated_count": 2, "retired": True}
        assert len(resources.owned_by_user(9)) == 2

    def test_migrates_from_anonymous_header(self, client, sessions, resources, user_headers):
        sid = make_anon_id(7)
        sessions.add_anonymous(sid, video_count=1)
        resources.add_video(anonymous_session_id=sid)

        resp = client.post("/api/anonymous/migrate", headers={**user_headers, ANON_HEADER: sid})

        assert resp.get_json()["migrated_count"] == 1

    def test_repeat_is_noop(self, client, sessions, resources, user_headers):
        sid = make_anon_id(8)
        sessions.add_anonymous(sid, video_count=1)
        resources.add_video(anonymous_session_id=sid)
        client.post("/api/anonymous/migrate", json={"sessionId": sid}, headers=user_headers)

        resp = client.post("/api/anonymous/migrate", json={"sessionId": sid}, headers=user_headers)

        assert resp.status_code == 200
        assert resp.get_json()["migrated_count"] == 0

    def test_login_without_anonymous_credential_leaves_no_session(self, app, sessions):
        from vidlib.middleware import apply_identity_cookies, resolve_request_identity
        from vidlib.routes.auth import start_user_session

        sessions.add_user(7)

        with app.test_request_context("/api/auth/login", method="POST"):
            resolve_request_identity()
            assert len(sessions.anonymous) == 1
            resp = apply_identity_cookies(start_user_session(7))

        assert resp.get_json()["migrated_count"] == 0
        assert sessions.anonymous == {}
        anon_cookies = [
            c for c in _set_cookies(resp) if c.startswith(f"{config.ANON_SESSION_COOKIE_NAME}=")
        ]
        assert all(c.startswith(f"{config.ANON_SESSION_COOKIE_NAME}=;") for c in anon_cookies)
        assert config.ANON_SESSION_HEADER not in resp.headers

    def test_login_after_migration_does_not_reissue_anonymous_cookie(self, app, sessions, resources):
        from vidlib.middleware import apply_identity_cookies, resolve_request_identity
        from vidlib.routes.auth import start_user_session

        sid = make_anon_id(14)
        sessions.add_anonymous(sid, video_count=1)
        resources.add_video(anonymous_session_id=sid)
        sessions.add_user(7)

        with app.test_request_context("/api/auth/login", method="POST", headers={ANON_HEADER: sid}):
            resolve_request_identity()
            resp = apply_identity_cookies(start_user_session(7))

        anon_cookies = [
            c for c in _set_cookies(resp) if c.startswith(f"{config.ANON_SESSION_COOKIE_NAME}=")
        ]
        assert len(anon_cookies) == 1
        assert anon_cookies[0].startswith(f"{config.ANON_SESSION_COOKIE_NAME}=;")
        assert list(sessions.anonymous) == [sid]

    def test_requires_registered(self, client):
        resp = client.post("/api/anonymous/migrate", json={"sessionId": make_anon_id(1)})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.parametrize("session_id,status,code", [
        ("bogus", 400, "INVALID_SESSION"),
        (make_anon_id(99), 404, "SESSION_NOT_FOUND"),
    ])
    def test_validation_errors(self, client, user_headers, session_id, status, code):
        resp = client.post("/api/anonymous/migrate", json={"sessionId": session_id}, headers=user_headers)
        assert resp.status_code == status
        assert resp.get_json()["error"]["code"] == code

    def test_missing_session_id(self, client, user_headers):
        resp = client.post("/api/anonymous/migrate", json={}, headers=user_headers)
        assert resp.status_code == 400

    def test_transfer_failure_is_migration_failed(self, client, sessions, resources, user_headers):
        sid = make_anon_id(10)
        sessions.add_anonymous(sid, video_count=1)
        resources.add_video(anonymous_session_id=sid)
        resources.fail_reassign = True

        resp = client.post("/api/anonymous/migrate", json={"sessionId": sid}, headers=user_headers)

        assert resp.status_code == 500
        body = resp.get_json()
        assert body["error"]["code"] == "MIGRATION_FAILED"
        assert body["error"]["message"] == "could not transfer your prior activity"


class TestAuthEndpoints:
    def test_logout(self, client, services, sessions):
        row = services.identity.create_user_session(9)
        headers = {"Authorization": f"Bearer {row['session_token']}"}

        resp = client.post("/api/auth/logout", headers=headers)

        assert resp.status_code == 200
        assert row["session_token"] not in sessions.user_sessions

    def test_logout_all(self, client, services, sessions):
        row = services.identity.create_user_session(9)
        services.identity.create_user_session(9)

        resp = client.post("/api/auth/logout-all", headers={"Authorization": f"Bearer {row['session_token']}"})

        assert resp.get_json()["sessions_invalidated"] == 2
        assert sessions.user_sessions == {}

    def test_logout_requires_registered(self, client):
        assert client.post("/api/auth/logout").status_code == 401

    def test_start_user_session_migrates_anonymous(self, app, sessions, resources, clock):
        from vidlib.middleware import resolve_request_identity
        from vidlib.routes.auth import start_user_session

        sid = make_anon_id(11)
        sessions.add_anonymous(sid, video_count=1)
        resources.add_video(anonymous_session_id=sid)
        sessions.add_user(9)

        with app.test_request_context("/api/auth/login", method="POST", headers={ANON_HEADER: sid}):
            resolve_request_identity()
            resp = start_user_session(9)

        body = resp.get_json()
        assert body["migrated_count"] == 1
        assert body["expires_at"] == (clock() + timedelta(days=14)).isoformat()
        assert body["session_token"] in sessions.user_sessions
        assert any(c.startswith(f"{config.USER_SESSION_COOKIE_NAME}=") for c in _set_cookies(resp))

    def test_start_user_session_survives_failed_migration(self, app, sessions, resources):
        from vidlib.middleware import resolve_request_identity
        from vidlib.routes.auth import start_user_session

        sid = make_anon_id(12)
        sessions.add_anonymous(sid, video_count=1)
        resources.add_video(anonymous_session_id=sid)
        resources.fail_reassign = True
        sessions.add_user(9)

        with app.test_request_context("/api/auth/login", method="POST", headers={ANON_HEADER: sid}):
            resolve_request_identity()
            resp = start_user_session(9)

        assert resp.status_code == 200
        assert resp.get_json()["migrated_count"] == 0


class TestAdminEndpoints:
    def _headers(self):
        return {"X-Admin-Token": ADMIN_TOKEN}

    def test_requires_token(self, client):
        assert client.post("/api/admin/sessions/sweep").status_code == 401

    def test_rejects_wrong_token(self, client):
        resp = client.post("/api/admin/sessions/sweep", headers={"X-Admin-Token": "nope"})
        assert resp.status_code == 403

    def test_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(config, "ADMIN_TOKEN", "")
        resp = client.post("/api/admin/sessions/sweep", headers=self._headers())
        assert resp.status_code == 503

    def test_sweep(self, client, sessions, resources, clock):
        sid = make_anon_id(13)
        sessions.add_anonymous(sid, last_active_at=clock() - timedelta(days=45))
        resources.add_video(anonymous_session_id=sid)

        resp = client.post("/api/admin/sessions/sweep", json={}, headers=self._headers())

        body = resp.get_json()
        assert body["ok"] is True
        assert body["anonymous_sessions_removed"] == 1
        assert sid not in sessions.anonymous

    def test_sweep_dry_run(self, client, sessions, clock):
        sid = make_anon_id(14)
        sessions.add_anonymous(sid, last_active_at=clock() - timedelta(days=10))

        resp = client.post("/api/admin/sessions/sweep", json={"days": 7, "dry_run": True}, headers=self._headers())

        assert resp.get_json()["candidates"] == 1
        assert sid in sessions.anonymous

    def test_sweep_rejects_negative_days(self, client):
        resp = client.post("/api/admin/sessions/sweep", json={"days": -3}, headers=self._headers())
        assert resp.status_code == 400

    def test_sweep_store_outage(self, client, sessions):
        sessions.unavailable = True
        resp = client.post("/api/admin/sessions/sweep", json={}, headers=self._headers())
        assert resp.status_code == 503
        assert resp.get_json()["error"]["code"] == "STORE_UNAVAILABLE"

    def test_audit(self, client, sessions):
        sid = make_anon_id(15)
        sessions.add_anonymous(sid, video_count=2)

        resp = client.post("/api/admin/sessions/audit", json={"dry_run": False}, headers=self._headers())

        body = resp.get_json()
        assert body["drifts_found"] == 1
        assert body["repairs_applied"] == 1
        assert sessions.anonymous[sid]["video_count"] == 0

    def test_admin_does_not_mint_sessions(self, client, sessions):
        client.post("/api/admin/sessions/audit", json={}, headers=self._headers())
        assert sessions.anonymous == {}
