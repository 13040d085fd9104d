from core.config import settings
from models.user import User

import seed_admin


def test_seed_creates_verified_admin_once(db, monkeypatch):
    monkeypatch.setattr(settings, "first_admin_email", " Root@Example.com ")
    monkeypatch.setattr(settings, "first_admin_password", "BootstrapPass1")

    assert seed_admin.seed() is True
    assert seed_admin.seed() is False

    admin = db.query(User).filter(User.email == "root@example.com").one()
    assert admin.role == "admin"
    assert admin.email_verified_at is not None
    assert admin.mfa_enabled is False


def test_seed_without_credentials_does_nothing(db, monkeypatch):
    monkeypatch.setattr(settings, "first_admin_email", "")
    assert seed_admin.seed() is False
    assert db.query(User).count() == 0
