# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
MFA engine – TOTP enrollment, backup codes, disablement and the login-time
second-factor challenge.

Per-user state:   disabled → enrolling → enabled → (disable) → disabled
Login sub-flow:   password verified → trusted-device bypass | challenge issued
                  → challenge verified → session issued

Every operation below commits exactly once.  When a step fails after an
earlier one has been written (a backup code consumed, a challenge marked
used), the whole unit of work is rolled back.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from core import totp
from core.clock import expires_in, utcnow
from core.config import settings
from core.errors import (
    Forbidden,
    StateViolation,
    challenge_expired,
    invalid_challenge,
    invalid_code,
    user_not_found,
)
from core.logger import logger
from core.security import RequestContext, decrypt_value, encrypt_value, new_id, verify_password
from models.mfa import BackupCode, MfaEnrollmentChallenge, MfaLoginChallenge
from models.user import User
from services import audit, devices, sessions
from services.devices import IssuedDevice
from services.sessions import IssuedSession

LOGIN_METHOD = "totp_or_backup"


@dataclass(frozen=True)
class SetupStart:
    challenge_id: str
    secret_base32: str
    otpauth_url: str
    expires_at: datetime


@dataclass(frozen=True)
class LoginChallenge:
    challenge_id: str
    method: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionGrant:
    """A successful sign-in: the user, a new session and maybe a trust cookie."""

    user: User
    session: IssuedSession
    device: Optional[IssuedDevice] = None


def _load_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise user_not_found()
    return user


def _mint_backup_codes(db: Session, user_id: int) -> list[str]:
    codes, hashes = totp.generate_backup_codes()
    for code_hash in hashes:
        db.add(BackupCode(user_id=user_id, code_hash=code_hash))
    return codes


def _invalidate_backup_codes(db: Session, user_id: int) -> None:
    """Mark every unused backup code of the user as used."""
    db.query(BackupCode).filter(BackupCode.user_id == user_id, BackupCode.used_at.is_(None)).update(
        {"used_at": utcnow()}, synchronize_session=False
    )


def _consume_backup_code(db: Session, user_id: int, code: str) -> bool:
    """Mark at most one matching unused backup code as used."""
    for candidate in totp.candidate_encodings(code):
        row = (
            db.query(BackupCode)
            .filter(
                BackupCode.user_id == user_id,
                BackupCode.code_hash == totp.backup_hash(candidate),
                BackupCode.used_at.is_(None),
            )
            .first()
        )
        if row is None:
            continue
        won = (
            db.query(BackupCode)
            .filter(BackupCode.id == row.id, BackupCode.used_at.is_(None))
            .update({"used_at": utcnow()}, synchronize_session=False)
        )
        if won == 1:
            return True
    return False


def _user_secret(user: User) -> str:
    if not user.mfa_secret_enc or not user.mfa_secret_iv:
        raise StateViolation("MfaMisconfigured", "MFA misconfigured")
    return decrypt_value(user.mfa_secret_enc, user.mfa_secret_iv)


def check_second_factor(db: Session, user: User, code: str) -> bool:
    """
    Verify a TOTP code (when the input is six digits) or else consume one
    backup code.  The consumption is left uncommitted.
    """
    code = (code or "").strip()
    if totp.is_totp_shaped(code) and totp.verify_totp(code, _user_secret(user)):
        return True
    return _consume_backup_code(db, user.id, code)


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


def start_setup(db: Session, user_id: int) -> SetupStart:
    """
    Generate a candidate secret and park it, encrypted, on an enrollment
    challenge.  The base32 secret is returned for display only.
    """
    user = _load_user(db, user_id)
    if user.mfa_enabled:
        raise StateViolation("MfaAlreadyEnabled", "MFA already enabled")

    secret = totp.generate_secret()
    secret_enc, secret_iv = encrypt_value(secret)
    challenge = MfaEnrollmentChallenge(
        id=new_id(),
        user_id=user.id,
        secret_enc=secret_enc,
        secret_iv=secret_iv,
        expires_at=expires_in(settings.mfa_challenge_ttl_sec),
    )
    db.add(challenge)
    db.commit()
    logger.info("MFA setup started user_id=%s challenge_id=%s", user.id, challenge.id)
    return SetupStart(
        challenge_id=challenge.id,
        secret_base32=secret,
        otpauth_url=totp.provisioning_uri(secret, user.email),
        expires_at=challenge.expires_at,
    )


def verify_setup(db: Session, user_id: int, challenge_id: str, code: str) -> list[str]:
    """
    Confirm the first TOTP code, enable MFA and return ten backup codes.

    Enabling MFA revokes every trusted device of the user.
    """
    challenge = (
        db.query(MfaEnrollmentChallenge)
        .filter(MfaEnrollmentChallenge.id == challenge_id, MfaEnrollmentChallenge.user_id == user_id)
        .first()
    )
    if challenge is None or challenge.consumed_at is not None:
        raise invalid_challenge()
    if challenge.expires_at <= utcnow():
        raise challenge_expired()

    secret = decrypt_value(challenge.secret_enc, challenge.secret_iv)
    if not totp.verify_totp(code, secret):
        raise invalid_code()

    user = _load_user(db, user_id)
    if user.mfa_enabled:
        raise StateViolation("MfaAlreadyEnabled", "MFA already enabled")

    won = (
        db.query(MfaEnrollmentChallenge)
        .filter(MfaEnrollmentChallenge.id == challenge.id, MfaEnrollmentChallenge.consumed_at.is_(None))
        .update({"consumed_at": utcnow()}, synchronize_session=False)
    )
    if won != 1:
        db.rollback()
        raise invalid_challenge()

    user.mfa_secret_enc = challenge.secret_enc
    user.mfa_secret_iv = challenge.secret_iv
    user.mfa_enabled = True
    # leftovers from an earlier enrollment must not survive
    _invalidate_backup_codes(db, user.id)
    codes = _mint_backup_codes(db, user.id)
    devices.revoke_all(db, user.id, commit=False)
    audit.record(db, "mfa_enabled", user.id)
    db.commit()
    logger.info("MFA enabled user_id=%s", user.id)
    return codes


# ---------------------------------------------------------------------------
# Disablement and backup codes
# ---------------------------------------------------------------------------


def disable(db: Session, user_id: int, password: str, code: str) -> None:
    """
    Turn MFA off.  Needs the password *and* a second factor in the same call.

    Clears the secret, deletes every backup code, and revokes all trusted
    devices and all sessions in a single transaction.
    """
    user = _load_user(db, user_id)
    if not user.mfa_enabled:
        raise StateViolation("MfaNotEnabled", "MFA not enabled")
    if not verify_password(password, user.password_hash):
        raise StateViolation("InvalidPassword", "Invalid password")
    if not check_second_factor(db, user, code):
        db.rollback()
        raise invalid_code()

    user.mfa_enabled = False
    user.mfa_secret_enc = None
    user.mfa_secret_iv = None
    db.query(BackupCode).filter(BackupCode.user_id == user.id).delete(synchronize_session=False)
    devices.revoke_all(db, user.id, commit=False)
    sessions.revoke_all(db, user.id, commit=False)
    audit.record(db, "mfa_disabled", user.id)
    db.commit()
    logger.info("MFA disabled user_id=%s", user.id)


def regenerate_backup_codes(db: Session, user_id: int) -> list[str]:
    """Invalidate every unused backup code, then mint a fresh batch."""
    user = _load_user(db, user_id)
    if not user.mfa_enabled:
        raise StateViolation("MfaNotEnabled", "MFA not enabled")
    _invalidate_backup_codes(db, user.id)
    codes = _mint_backup_codes(db, user.id)
    audit.record(db, "backup_codes_regenerated", user.id)
    db.commit()
    logger.info("Backup codes regenerated user_id=%s", user.id)
    return codes


def remaining_backup_codes(db: Session, user_id: int) -> int:
    return (
        db.query(BackupCode)
        .filter(BackupCode.user_id == user_id, BackupCode.used_at.is_(None))
        .count()
    )


# ---------------------------------------------------------------------------
# Login-time challenge
# ---------------------------------------------------------------------------


def create_login_challenge(
    db: Session,
    user: User,
    remember: bool,
    ctx: RequestContext,
) -> LoginChallenge:
    challenge = MfaLoginChallenge(
        id=new_id(),
        user_id=user.id,
        remember=bool(remember),
        user_agent=ctx.user_agent[:512] if ctx.user_agent else None,
        ip=ctx.ip[:45] if ctx.ip else None,
        expires_at=expires_in(settings.mfa_login_ttl_sec),
    )
    db.add(challenge)
    db.commit()
    logger.info("MFA login challenge issued user_id=%s challenge_id=%s", user.id, challenge.id)
    return LoginChallenge(challenge_id=challenge.id, method=LOGIN_METHOD, expires_at=challenge.expires_at)


def _count_failed_attempt(db: Session, challenge_id: str, user_id: int) -> None:
    """Record a wrong code; the last allowed one consumes the challenge."""
    live = (MfaLoginChallenge.id == challenge_id, MfaLoginChallenge.consumed_at.is_(None))
    db.query(MfaLoginChallenge).filter(*live).update(
        {"failed_attempts": MfaLoginChallenge.failed_attempts + 1}, synchronize_session=False
    )
    burned = (
        db.query(MfaLoginChallenge)
        .filter(*live, MfaLoginChallenge.failed_attempts >= settings.mfa_login_max_attempts)
        .update({"consumed_at": utcnow()}, synchronize_session=False)
    )
    db.commit()
    if burned:
        logger.warning("MFA login challenge burned user_id=%s challenge_id=%s", user_id, challenge_id)
    else:
        logger.info("MFA login code rejected user_id=%s challenge_id=%s", user_id, challenge_id)


def verify_login_challenge(
    db: Session,
    challenge_id: str,
    code: str,
    remember_device: bool,
    ctx: RequestContext,
) -> SessionGrant:
    """
    Finish an MFA login.  On success the challenge is consumed, a session is
    opened with the ``remember`` flag of the original login, and a trusted
    device is issued if asked for.  A wrong code leaves the challenge usable
    until it expires or has absorbed ``mfa_login_max_attempts`` wrong codes,
    whichever comes first.
    """
    challenge = db.query(MfaLoginChallenge).filter(MfaLoginChallenge.id == challenge_id).first()
    if challenge is None or challenge.consumed_at is not None:
        raise invalid_challenge()
    if challenge.expires_at <= utcnow():
        raise challenge_expired()

    user = db.query(User).filter(User.id == challenge.user_id).first()
    if user is None or not user.mfa_enabled:
        raise invalid_challenge()
    if not user.is_active:
        raise Forbidden("AccountDisabled", "Account disabled")

    if not check_second_factor(db, user, code):
        db.rollback()
        _count_failed_attempt(db, challenge_id, user.id)
        raise invalid_code()

    won = (
        db.query(MfaLoginChallenge)
        .filter(MfaLoginChallenge.id == challenge_id, MfaLoginChallenge.consumed_at.is_(None))
        .update({"consumed_at": utcnow()}, synchronize_session=False)
    )
    if won != 1:
        # a concurrent request finished this challenge first; keep our backup code
        db.rollback()
        raise invalid_challenge()

    issued = sessions.create_session(db, user.id, user.role, bool(challenge.remember), ctx, commit=False)
    device = devices.issue(db, user.id, ctx, commit=False) if remember_device else None
    user.last_login = utcnow()
    audit.record(db, "login", user.id, detail="mfa", ip=ctx.ip)
    db.commit()
    logger.info("MFA login verified user_id=%s trusted_device=%s", user.id, bool(device))
    return SessionGrant(user=user, session=issued, device=device)
