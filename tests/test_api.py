import pyotp
import pytest

from core.config import settings
from models.user import User

from conftest import PASSWORD

API = "/api/v1"


def _cleared(resp, name):
    """True if the response expires cookie *name*."""
    return any(
        h.startswith(f"{name}=") and "max-age=0" in h.lower()
        for h in resp.headers.get_list("set-cookie")
    )


def _login(client, email="alice@example.com", password=PASSWORD, **extra):
    return client.post(f"{API}/auth/login", json={"email": email, "password": password, **extra})


def _bearer(resp):
    return {"Authorization": f"Bearer {resp.json()['accessToken']}"}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestRegistrationAndLogin:
    def test_register_verify_login_me(self, client, outbox):
        resp = client.post(
            f"{API}/auth/register",
            json={"fullName": "Alice", "email": "Alice@Example.com", "password": PASSWORD},
        )
        assert resp.status_code == 201
        assert "userId" in resp.json()

        blocked = _login(client)
        assert blocked.status_code == 403
        assert blocked.json()["detail"]["code"] == "EmailNotVerified"

        token = outbox[0]["link"].split("token=", 1)[1]
        assert client.post(f"{API}/auth/verify-email", json={"token": token}).json() == {"ok": True}

        resp = _login(client)
        assert resp.status_code == 200
        body = resp.json()
        assert body["tokenType"] == "bearer"
        assert body["user"]["email"] == "alice@example.com"
        assert "passwordHash" not in body["user"]
        assert client.cookies.get("refresh_token")

        me = client.get(f"{API}/auth/me", headers=_bearer(resp))
        assert me.json()["fullName"] == "Alice"

    def test_duplicate_registration(self, client, make_user):
        make_user()
        resp = client.post(
            f"{API}/auth/register",
            json={"fullName": "Alice", "email": "alice@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ER_DUP_EMAIL"

    def test_request_validation(self, client):
        resp = client.post(
            f"{API}/auth/register",
            json={"fullName": "Alice", "email": "not-an-email", "password": "short"},
        )
        assert resp.status_code == 422

    @pytest.mark.parametrize("email", ["x@.com", "a@b.c@evil.com", "a@b..c", "<script>@x.y"])
    def test_register_rejects_malformed_email(self, client, db, email):
        resp = client.post(
            f"{API}/auth/register",
            json={"fullName": "Alice", "email": email, "password": PASSWORD},
        )
        assert resp.status_code == 422
        assert db.query(User).count() == 0

    def test_bad_credentials_are_generic(self, client, make_user):
        make_user()
        wrong = _login(client, password="WrongHorse9")
        unknown = _login(client, email="ghost@example.com")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_forgot_always_ok(self, client, make_user, outbox):
        make_user()
        for email in ("alice@example.com", "ghost@example.com"):
            resp = client.post(f"{API}/auth/forgot", json={"email": email})
            assert resp.json() == {"ok": True}
        assert len(outbox) == 1

    def test_reset_password_over_http(self, client, make_user, outbox):
        make_user()
        client.post(f"{API}/auth/forgot", json={"email": "alice@example.com"})
        token = outbox[-1]["link"].split("token=", 1)[1]

        resp = client.post(f"{API}/auth/reset", json={"token": token, "password": "BatteryStaple7"})
        assert resp.json() == {"ok": True}
        assert _login(client, password="BatteryStaple7").status_code == 200
        assert _login(client).status_code == 401


class TestSessionsOverHttp:
    def test_refresh_rotates_and_reuse_kills_everything(self, client, make_user):
        make_user()
        _login(client, remember=True)
        first = client.cookies.get("refresh_token")

        resp = client.post(f"{API}/auth/refresh")
        assert resp.status_code == 200
        assert resp.json()["accessToken"]
        second = client.cookies.get("refresh_token")
        assert second and second != first

        # an attacker replays the stolen, already-rotated token
        replay = client.post(f"{API}/auth/refresh", headers={"Cookie": f"refresh_token={first}"})
        assert replay.status_code == 401
        assert replay.json()["detail"]["code"] == "TokenReuse"
        assert _cleared(replay, "refresh_token")

        # and the legitimate holder is signed out too
        after = client.post(f"{API}/auth/refresh", headers={"Cookie": f"refresh_token={second}"})
        assert after.status_code == 401
        assert after.json()["detail"]["code"] == "InvalidSession"

    def test_refresh_without_cookie(self, client):
        resp = client.post(f"{API}/auth/refresh")
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "NoRefresh"

    def test_refresh_cookie_is_session_cookie_unless_remembered(self, client, make_user):
        make_user()
        short = _login(client)
        header = next(h for h in short.headers.get_list("set-cookie") if h.startswith("refresh_token="))
        assert "max-age" not in header.lower()
        assert "httponly" in header.lower()
        assert "path=/api" in header.lower()

        remembered = _login(client, remember=True)
        header = next(h for h in remembered.headers.get_list("set-cookie") if h.startswith("refresh_token="))
        assert "max-age" in header.lower()

    def test_logout_clears_cookie_and_session(self, client, make_user):
        make_user()
        _login(client)
        token = client.cookies.get("refresh_token")

        resp = client.post(f"{API}/auth/logout")
        assert resp.status_code == 204
        assert _cleared(resp, "refresh_token")

        again = client.post(f"{API}/auth/refresh", headers={"Cookie": f"refresh_token={token}"})
        assert again.json()["detail"]["code"] == "InvalidSession"

    def test_logout_all_requires_auth_and_clears_both_cookies(self, client, make_user):
        make_user()
        assert client.post(f"{API}/auth/logout-all").status_code == 401

        resp = _login(client)
        out = client.post(f"{API}/auth/logout-all", headers=_bearer(resp))
        assert out.status_code == 204
        assert _cleared(out, "refresh_token")
        assert _cleared(out, "trusted_device")

    def test_change_password_signs_out(self, client, make_user):
        make_user()
        resp = _login(client)
        token = client.cookies.get("refresh_token")

        changed = client.post(
            f"{API}/auth/change-password",
            json={"oldPassword": PASSWORD, "newPassword": "BatteryStaple7"},
            headers=_bearer(resp),
        )
        assert changed.json() == {"ok": True}
        again = client.post(f"{API}/auth/refresh", headers={"Cookie": f"refresh_token={token}"})
        assert again.status_code == 401


class TestAuthorizationGate:
    def test_no_credential(self, client):
        resp = client.get(f"{API}/auth/me")
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "NoToken"

    def test_bad_bearer_token(self, client):
        resp = client.get(f"{API}/auth/me", headers={"Authorization": "Bearer nonsense"})
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "InvalidToken"

    def test_refresh_cookie_fallback(self, client, make_user):
        make_user()
        _login(client)
        resp = client.get(f"{API}/auth/me")
        assert resp.status_code == 200
        assert resp.json()["email"] == "alice@example.com"

    def test_disabled_user_token_stops_working(self, client, make_user, db):
        user = make_user()
        resp = _login(client)
        user.status = "disabled"
        db.commit()

        me = client.get(f"{API}/auth/me", headers=_bearer(resp))
        assert me.status_code == 401

    def test_user_cannot_reach_admin_routes(self, client, make_user):
        make_user()
        resp = _login(client)
        denied = client.get(f"{API}/admin/users", headers=_bearer(resp))
        assert denied.status_code == 403


class TestMfaOverHttp:
    def _enable(self, client, login_resp):
        started = client.post(f"{API}/auth/mfa/setup/start", headers=_bearer(login_resp)).json()
        secret = started["secretBase32"]
        verified = client.post(
            f"{API}/auth/mfa/setup/verify",
            json={"challengeId": started["challengeId"], "code": pyotp.TOTP(secret).now()},
            headers=_bearer(login_resp),
        )
        assert verified.status_code == 200
        return secret, verified.json()["backupCodes"]

    def test_enroll_then_login_needs_second_factor(self, client, make_user):
        make_user()
        secret, codes = self._enable(client, _login(client))
        assert len(codes) == 10

        challenge = _login(client)
        body = challenge.json()
        assert body["mfaRequired"] is True
        assert body["method"] == "totp_or_backup"
        assert "accessToken" not in body

        done = client.post(
            f"{API}/auth/mfa/login/verify",
            json={"challengeId": body["challengeId"], "code": pyotp.TOTP(secret).now()},
        )
        assert done.status_code == 200
        assert done.json()["user"]["mfaEnabled"] is True

        status = client.get(f"{API}/auth/mfa/status", headers=_bearer(done)).json()
        assert status == {"enabled": True, "backupCodesRemaining": 10}

    def test_wrong_code_keeps_challenge(self, client, make_user, wrong_totp):
        make_user()
        secret, _ = self._enable(client, _login(client))
        challenge_id = _login(client).json()["challengeId"]

        bad = client.post(
            f"{API}/auth/mfa/login/verify", json={"challengeId": challenge_id, "code": wrong_totp(secret)}
        )
        assert bad.status_code == 400
        assert bad.json()["detail"]["code"] == "InvalidCode"

        good = client.post(
            f"{API}/auth/mfa/login/verify", json={"challengeId": challenge_id, "code": pyotp.TOTP(secret).now()}
        )
        assert good.status_code == 200

    def test_remembered_device_skips_mfa_until_untrusted(self, client, make_user):
        make_user()
        secret, _ = self._enable(client, _login(client))
        challenge_id = _login(client).json()["challengeId"]

        done = client.post(
            f"{API}/auth/mfa/login/verify",
            json={"challengeId": challenge_id, "code": pyotp.TOTP(secret).now(), "rememberDevice": True},
        )
        assert client.cookies.get("trusted_device")

        bypass = _login(client)
        assert "accessToken" in bypass.json()

        listed = client.get(f"{API}/auth/trusted-devices", headers=_bearer(done)).json()["items"]
        assert len(listed) == 1 and listed[0]["current"] is True

        out = client.post(f"{API}/auth/trusted-devices/untrust-current", headers=_bearer(bypass))
        assert out.json() == {"ok": True}
        assert _cleared(out, "trusted_device")
        assert _login(client).json()["mfaRequired"] is True

    def test_disable_mfa_signs_out_everywhere(self, client, make_user):
        make_user()
        _, codes = self._enable(client, _login(client))
        challenge_id = _login(client).json()["challengeId"]
        done = client.post(f"{API}/auth/mfa/login/verify", json={"challengeId": challenge_id, "code": codes[0]})

        off = client.post(
            f"{API}/auth/mfa/disable",
            json={"password": PASSWORD, "code": codes[1]},
            headers=_bearer(done),
        )
        assert off.json() == {"ok": True}
        assert _cleared(off, "refresh_token")
        assert "accessToken" in _login(client).json()

    def test_setup_verify_rejects_non_numeric_code(self, client, make_user):
        make_user()
        resp = _login(client)
        started = client.post(f"{API}/auth/mfa/setup/start", headers=_bearer(resp)).json()
        bad = client.post(
            f"{API}/auth/mfa/setup/verify",
            json={"challengeId": started["challengeId"], "code": "abcdef"},
            headers=_bearer(resp),
        )
        assert bad.status_code == 422


class TestTrustedDevicesOverHttp:
    def test_revoke_unknown_device_is_404(self, client, make_user):
        make_user()
        resp = _login(client)
        missing = client.post(f"{API}/auth/trusted-devices/revoke", json={"id": "0" * 32}, headers=_bearer(resp))
        assert missing.status_code == 404

    def test_untrust_without_cookie(self, client, make_user):
        make_user()
        resp = _login(client)
        out = client.post(f"{API}/auth/trusted-devices/untrust-current", headers=_bearer(resp))
        assert out.status_code == 400
        assert out.json()["detail"]["code"] == "NoTrustedDevice"

    def test_revoke_all(self, client, make_user):
        make_user()
        resp = _login(client)
        out = client.post(f"{API}/auth/trusted-devices/revoke-all", headers=_bearer(resp))
        assert out.json() == {"ok": True, "revoked": 0}


class TestRateLimits:
    def test_login_is_limited_per_email(self, client, make_user, monkeypatch):
        monkeypatch.setattr(settings, "login_rate_limit_per_email", "3/minute")
        make_user()
        for _ in range(3):
            assert _login(client, password="WrongHorse9").status_code == 401

        blocked = _login(client)
        assert blocked.status_code == 429
        assert blocked.json()["detail"]["code"] == "RateLimited"
        assert int(blocked.headers["retry-after"]) >= 1
        # other accounts behind the same address are unaffected
        assert _login(client, email="ghost@example.com").status_code == 401

    def test_login_is_limited_per_ip(self, client, monkeypatch):
        monkeypatch.setattr(settings, "login_rate_limit_per_ip", "2/minute")
        assert _login(client, email="a@example.com").status_code == 401
        assert _login(client, email="b@example.com").status_code == 401
        assert _login(client, email="c@example.com").status_code == 429
        # a different client address has its own budget
        other = client.post(
            f"{API}/auth/login",
            json={"email": "c@example.com", "password": PASSWORD},
            headers={"X-Forwarded-For": "198.51.100.9"},
        )
        assert other.status_code == 401

    def test_forgot_and_resend_are_limited(self, client, monkeypatch, outbox):
        monkeypatch.setattr(settings, "email_link_rate_limit_per_email", "2/hour")
        for _ in range(2):
            assert client.post(f"{API}/auth/forgot", json={"email": "ghost@example.com"}).status_code == 200
        assert client.post(f"{API}/auth/forgot", json={"email": "ghost@example.com"}).status_code == 429

        for _ in range(2):
            resp = client.post(f"{API}/auth/verify-email/resend", json={"email": "ghost@example.com"})
            assert resp.status_code == 200
        resp = client.post(f"{API}/auth/verify-email/resend", json={"email": "ghost@example.com"})
        assert resp.status_code == 429

    def test_mfa_login_verify_is_limited_per_ip(self, client, monkeypatch):
        monkeypatch.setattr(settings, "mfa_verify_rate_limit_per_ip", "2/minute")
        body = {"challengeId": "0" * 32, "code": "123456"}
        for _ in range(2):
            assert client.post(f"{API}/auth/mfa/login/verify", json=body).status_code == 400
        resp = client.post(f"{API}/auth/mfa/login/verify", json=body)
        assert resp.status_code == 429
        assert resp.json()["detail"]["code"] == "RateLimited"
