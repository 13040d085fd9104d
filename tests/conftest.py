import base64
import os
import time

# Settings are read at import time; point them at an in-memory database and
# fixed test secrets before any application module is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-access-secret"
os.environ["REFRESH_SECRET_KEY"] = "test-refresh-secret"
os.environ["MASTER_ENCRYPTION_KEY"] = base64.b64encode(b"k" * 32).decode("ascii")
os.environ["BACKUP_CODE_HMAC_SECRET"] = "test-backup-secret"
os.environ["TRUSTED_DEVICE_LEGACY_SECRET"] = "test-legacy-secret"
os.environ["OAUTH_STATE_SECRET"] = "test-oauth-state-secret"
os.environ["GOOGLE_CLIENT_ID"] = "client-id.apps.googleusercontent.com"
os.environ["GOOGLE_CLIENT_SECRET"] = "client-secret"
os.environ["SMTP_HOST"] = ""

import pyotp  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import models.audit_log  # noqa: F401, E402
import models.auth_session  # noqa: F401, E402
import models.mfa  # noqa: F401, E402
import models.one_time_token  # noqa: F401, E402
import models.runtime_flag  # noqa: F401, E402
import models.trusted_device  # noqa: F401, E402
from core import mailer as mailer_module  # noqa: E402
from core.clock import utcnow  # noqa: E402
from core.ratelimit import rate_limiter  # noqa: E402
from core.runtime import runtime_flags  # noqa: E402
from core.security import RequestContext, hash_password  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from main import app  # noqa: E402
from models.user import User  # noqa: E402
from services import mfa  # noqa: E402

PASSWORD = "CorrectHorse9"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    runtime_flags.reload(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def fresh_rate_limits():
    rate_limiter.reset()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Capture outbound email instead of logging it."""
    sent = []
    monkeypatch.setattr(
        mailer_module.mailer,
        "send",
        lambda to, subject, link: sent.append({"to": to, "subject": subject, "link": link}),
    )
    return sent


@pytest.fixture
def ctx():
    return RequestContext(user_agent="Mozilla/5.0 (pytest)", ip="203.0.113.7")


@pytest.fixture
def make_user(db):
    def _make(email="alice@example.com", password=PASSWORD, role="user", verified=True, phone=None):
        user = User(
            full_name=email.split("@")[0].title(),
            email=email,
            phone=phone,
            password_hash=hash_password(password),
            role=role,
            status="active",
            mfa_enabled=False,
            email_verified_at=utcnow() if verified else None,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def enroll_mfa(db):
    """Run the real enrollment flow; returns (secret_base32, backup_codes)."""

    def _enroll(user_id):
        started = mfa.start_setup(db, user_id)
        code = pyotp.TOTP(started.secret_base32).now()
        return started.secret_base32, mfa.verify_setup(db, user_id, started.challenge_id, code)

    return _enroll


def wrong_totp(secret):
    """A six-digit code outside the acceptance window around now."""
    totp = pyotp.TOTP(secret)
    now = int(time.time())
    valid = {totp.at(now + k * 30) for k in range(-2, 3)}
    for candidate in ("000000", "111111", "123456", "654321", "999999", "424242"):
        if candidate not in valid:
            return candidate
    raise AssertionError("no unused code candidate")


@pytest.fixture(name="wrong_totp")
def wrong_totp_fixture():
    return wrong_totp
