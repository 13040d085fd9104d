from datetime import timedelta

import pyotp
import pytest

from core.clock import utcnow
from core.config import settings
from core.errors import Forbidden, StateViolation
from models.auth_session import AuthSession
from models.mfa import BackupCode, MfaEnrollmentChallenge, MfaLoginChallenge
from models.trusted_device import TrustedDevice
from models.user import User
from services import devices, mfa, sessions


def _user(db, user_id):
    db.expire_all()
    return db.query(User).filter(User.id == user_id).one()


def _code(secret):
    return pyotp.TOTP(secret).now()


class TestEnrollment:
    def test_full_setup_enables_mfa_and_returns_ten_codes(self, db, make_user):
        user = make_user()
        started = mfa.start_setup(db, user.id)
        assert started.otpauth_url.startswith("otpauth://totp/")

        codes = mfa.verify_setup(db, user.id, started.challenge_id, _code(started.secret_base32))

        assert len(codes) == 10
        fresh = _user(db, user.id)
        assert fresh.mfa_enabled
        assert fresh.mfa_secret_enc and started.secret_base32 not in fresh.mfa_secret_enc
        assert mfa.remaining_backup_codes(db, user.id) == 10

    def test_wrong_code_leaves_mfa_off_and_challenge_open(self, db, make_user, wrong_totp):
        user = make_user()
        started = mfa.start_setup(db, user.id)

        with pytest.raises(StateViolation) as exc:
            mfa.verify_setup(db, user.id, started.challenge_id, wrong_totp(started.secret_base32))
        assert exc.value.code == "InvalidCode"
        assert not _user(db, user.id).mfa_enabled

        mfa.verify_setup(db, user.id, started.challenge_id, _code(started.secret_base32))
        assert _user(db, user.id).mfa_enabled

    def test_challenge_is_single_use(self, db, make_user):
        user = make_user()
        started = mfa.start_setup(db, user.id)
        mfa.verify_setup(db, user.id, started.challenge_id, _code(started.secret_base32))

        with pytest.raises(StateViolation) as exc:
            mfa.verify_setup(db, user.id, started.challenge_id, _code(started.secret_base32))
        assert exc.value.code == "InvalidChallenge"

    def test_challenge_of_another_user_is_invalid(self, db, make_user):
        alice = make_user("alice@example.com")
        bob = make_user("bob@example.com")
        started = mfa.start_setup(db, alice.id)

        with pytest.raises(StateViolation) as exc:
            mfa.verify_setup(db, bob.id, started.challenge_id, _code(started.secret_base32))
        assert exc.value.code == "InvalidChallenge"

    def test_expired_challenge(self, db, make_user):
        user = make_user()
        started = mfa.start_setup(db, user.id)
        db.query(MfaEnrollmentChallenge).filter(MfaEnrollmentChallenge.id == started.challenge_id).update(
            {"expires_at": utcnow() - timedelta(seconds=1)}
        )
        db.commit()

        with pytest.raises(StateViolation) as exc:
            mfa.verify_setup(db, user.id, started.challenge_id, _code(started.secret_base32))
        assert exc.value.code == "ChallengeExpired"

    def test_already_enabled(self, db, make_user, enroll_mfa):
        user = make_user()
        enroll_mfa(user.id)
        with pytest.raises(StateViolation) as exc:
            mfa.start_setup(db, user.id)
        assert exc.value.code == "MfaAlreadyEnabled"

    def test_second_pending_challenge_cannot_enable_twice(self, db, make_user):
        user = make_user()
        first = mfa.start_setup(db, user.id)
        second = mfa.start_setup(db, user.id)
        mfa.verify_setup(db, user.id, first.challenge_id, _code(first.secret_base32))

        with pytest.raises(StateViolation) as exc:
            mfa.verify_setup(db, user.id, second.challenge_id, _code(second.secret_base32))
        assert exc.value.code == "MfaAlreadyEnabled"

    def test_enrollment_marks_leftover_backup_codes_used(self, db, make_user, enroll_mfa):
        user = make_user()
        db.add(BackupCode(user_id=user.id, code_hash="0" * 64))
        db.commit()

        enroll_mfa(user.id)

        db.expire_all()
        leftover = db.query(BackupCode).filter(BackupCode.code_hash == "0" * 64).one()
        assert leftover.used_at is not None
        assert mfa.remaining_backup_codes(db, user.id) == 10

    def test_enabling_revokes_trusted_devices(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        devices.issue(db, user.id, ctx)
        enroll_mfa(user.id)

        db.expire_all()
        live = db.query(TrustedDevice).filter(
            TrustedDevice.user_id == user.id, TrustedDevice.revoked_at.is_(None)
        )
        assert live.count() == 0


class TestLoginChallenge:
    def test_totp_completes_login_and_consumes_challenge(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        secret, _ = enroll_mfa(user.id)
        challenge = mfa.create_login_challenge(db, user, True, ctx)
        assert challenge.method == "totp_or_backup"

        grant = mfa.verify_login_challenge(db, challenge.challenge_id, _code(secret), False, ctx)

        assert grant.user.id == user.id
        assert grant.session.remember is True
        assert grant.device is None
        assert _user(db, user.id).last_login is not None
        with pytest.raises(StateViolation) as exc:
            mfa.verify_login_challenge(db, challenge.challenge_id, _code(secret), False, ctx)
        assert exc.value.code == "InvalidChallenge"

    def test_wrong_code_keeps_challenge_usable(self, db, make_user, enroll_mfa, ctx, wrong_totp):
        user = make_user()
        secret, _ = enroll_mfa(user.id)
        challenge = mfa.create_login_challenge(db, user, False, ctx)

        with pytest.raises(StateViolation) as exc:
            mfa.verify_login_challenge(db, challenge.challenge_id, wrong_totp(secret), False, ctx)
        assert exc.value.code == "InvalidCode"

        db.expire_all()
        row = db.query(MfaLoginChallenge).filter(MfaLoginChallenge.id == challenge.challenge_id).one()
        assert row.consumed_at is None
        assert row.failed_attempts == 1
        assert mfa.verify_login_challenge(db, challenge.challenge_id, _code(secret), False, ctx)

    def test_challenge_is_burned_after_too_many_wrong_codes(self, db, make_user, enroll_mfa, ctx, wrong_totp):
        user = make_user()
        secret, _ = enroll_mfa(user.id)
        challenge = mfa.create_login_challenge(db, user, False, ctx)

        for _ in range(settings.mfa_login_max_attempts):
            with pytest.raises(StateViolation) as exc:
                mfa.verify_login_challenge(db, challenge.challenge_id, wrong_totp(secret), False, ctx)
            assert exc.value.code == "InvalidCode"

        # even the right code is refused now; the password has to be entered again
        with pytest.raises(StateViolation) as exc:
            mfa.verify_login_challenge(db, challenge.challenge_id, _code(secret), False, ctx)
        assert exc.value.code == "InvalidChallenge"
        db.expire_all()
        assert db.query(AuthSession).filter(AuthSession.user_id == user.id).count() == 0

    def test_remember_device_issues_trusted_device(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        secret, _ = enroll_mfa(user.id)
        challenge = mfa.create_login_challenge(db, user, False, ctx)

        grant = mfa.verify_login_challenge(db, challenge.challenge_id, _code(secret), True, ctx)

        assert grant.device is not None
        assert grant.session.remember is False

    def test_backup_code_is_single_use(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        _, codes = enroll_mfa(user.id)

        first = mfa.create_login_challenge(db, user, False, ctx)
        mfa.verify_login_challenge(db, first.challenge_id, codes[0], False, ctx)
        assert mfa.remaining_backup_codes(db, user.id) == 9

        second = mfa.create_login_challenge(db, user, False, ctx)
        with pytest.raises(StateViolation) as exc:
            mfa.verify_login_challenge(db, second.challenge_id, codes[0], False, ctx)
        assert exc.value.code == "InvalidCode"

    def test_backup_code_accepted_without_hyphen_and_in_lowercase(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        _, codes = enroll_mfa(user.id)
        challenge = mfa.create_login_challenge(db, user, False, ctx)

        assert mfa.verify_login_challenge(db, challenge.challenge_id, codes[3].replace("-", "").lower(), False, ctx)
        assert mfa.remaining_backup_codes(db, user.id) == 9

    def test_unknown_and_expired_challenges(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        secret, _ = enroll_mfa(user.id)

        with pytest.raises(StateViolation) as exc:
            mfa.verify_login_challenge(db, "0" * 32, _code(secret), False, ctx)
        assert exc.value.code == "InvalidChallenge"

        challenge = mfa.create_login_challenge(db, user, False, ctx)
        db.query(MfaLoginChallenge).filter(MfaLoginChallenge.id == challenge.challenge_id).update(
            {"expires_at": utcnow() - timedelta(seconds=1)}
        )
        db.commit()
        with pytest.raises(StateViolation) as exc:
            mfa.verify_login_challenge(db, challenge.challenge_id, _code(secret), False, ctx)
        assert exc.value.code == "ChallengeExpired"

    def test_disabled_account_cannot_finish_login(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        secret, _ = enroll_mfa(user.id)
        challenge = mfa.create_login_challenge(db, user, False, ctx)
        user.status = "disabled"
        db.commit()

        with pytest.raises(Forbidden) as exc:
            mfa.verify_login_challenge(db, challenge.challenge_id, _code(secret), False, ctx)
        assert exc.value.code == "AccountDisabled"


class TestDisableAndRegenerate:
    def test_disable_requires_password_and_code(self, db, make_user, enroll_mfa, wrong_totp):
        user = make_user()
        secret, _ = enroll_mfa(user.id)

        with pytest.raises(StateViolation) as exc:
            mfa.disable(db, user.id, "WrongPassword1", _code(secret))
        assert exc.value.code == "InvalidPassword"

        with pytest.raises(StateViolation) as exc:
            mfa.disable(db, user.id, "CorrectHorse9", wrong_totp(secret))
        assert exc.value.code == "InvalidCode"
        assert _user(db, user.id).mfa_enabled

    def test_disable_clears_secret_codes_devices_and_sessions(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        secret, _ = enroll_mfa(user.id)
        devices.issue(db, user.id, ctx)
        sessions.create_session(db, user.id, user.role, False, ctx)

        mfa.disable(db, user.id, "CorrectHorse9", _code(secret))

        fresh = _user(db, user.id)
        assert not fresh.mfa_enabled
        assert fresh.mfa_secret_enc is None and fresh.mfa_secret_iv is None
        assert db.query(BackupCode).filter(BackupCode.user_id == user.id).count() == 0
        assert (
            db.query(TrustedDevice)
            .filter(TrustedDevice.user_id == user.id, TrustedDevice.revoked_at.is_(None))
            .count()
            == 0
        )
        assert (
            db.query(AuthSession)
            .filter(AuthSession.user_id == user.id, AuthSession.revoked_at.is_(None))
            .count()
            == 0
        )

    def test_disable_with_backup_code(self, db, make_user, enroll_mfa):
        user = make_user()
        _, codes = enroll_mfa(user.id)
        mfa.disable(db, user.id, "CorrectHorse9", codes[5])
        assert not _user(db, user.id).mfa_enabled

    def test_disable_when_not_enabled(self, db, make_user):
        user = make_user()
        with pytest.raises(StateViolation) as exc:
            mfa.disable(db, user.id, "CorrectHorse9", "123456")
        assert exc.value.code == "MfaNotEnabled"

    def test_regenerate_invalidates_old_codes(self, db, make_user, enroll_mfa, ctx):
        user = make_user()
        _, old_codes = enroll_mfa(user.id)

        new_codes = mfa.regenerate_backup_codes(db, user.id)

        assert len(new_codes) == 10
        assert set(new_codes).isdisjoint(old_codes)
        assert mfa.remaining_backup_codes(db, user.id) == 10

        challenge = mfa.create_login_challenge(db, user, False, ctx)
        with pytest.raises(StateViolation):
            mfa.verify_login_challenge(db, challenge.challenge_id, old_codes[0], False, ctx)
        assert mfa.verify_login_challenge(db, challenge.challenge_id, new_codes[0], False, ctx)

    def test_regenerate_requires_mfa(self, db, make_user):
        user = make_user()
        with pytest.raises(StateViolation) as exc:
            mfa.regenerate_backup_codes(db, user.id)
        assert exc.value.code == "MfaNotEnabled"
