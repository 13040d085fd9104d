# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Credential lifecycle – registration, login orchestration, logout, password
change and reset, email verification and the user's own profile.

Security notes
--------------
* Login returns the *same* error whether the email doesn't exist or the
  password is wrong.  Disabled and unverified accounts get their own codes,
  but only after the password has been checked.
* Password change, password reset and logout-all all end with zero live
  sessions and zero live trusted devices for the user.
* Forgot-password and resend-verification answer the same way whether or not
  the email is known.
"""

import smtplib
from typing import Callable, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.clock import expires_in, utcnow
from core.config import settings
from core.errors import (
    Conflict,
    Forbidden,
    StateViolation,
    invalid_credentials,
    invalid_token,
    password_reuse,
    user_not_found,
)
from core.logger import logger, redact
from core.mailer import mailer
from core.runtime import RuntimeFlags
from core.security import (
    RequestContext,
    hash_password,
    random_token,
    sha256_hex,
    verify_password,
)
from models.one_time_token import EmailVerification, PasswordReset
from models.user import User
from services import audit, devices, mfa, sessions
from services.mfa import LoginChallenge, SessionGrant

LoginResult = Union[SessionGrant, LoginChallenge]


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _normalize_phone(phone: Optional[str]) -> Optional[str]:
    phone = (phone or "").strip()
    return phone or None


def _find_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def _load_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise user_not_found()
    return user


def _phone_taken(db: Session, phone: Optional[str], exclude_user_id: Optional[int] = None) -> bool:
    if not phone:
        return False
    query = db.query(User.id).filter(User.phone == phone)
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    return query.first() is not None


def _dup_email() -> Conflict:
    return Conflict("ER_DUP_EMAIL", "Email already registered")


def _dup_phone() -> Conflict:
    return Conflict("ER_DUP_PHONE", "Phone already registered")


# ---------------------------------------------------------------------------
# Emailed one-time tokens
# ---------------------------------------------------------------------------


def _issue_one_time_token(db: Session, model, user_id: int, ttl_minutes: int) -> str:
    """Invalidate the user's outstanding tokens of this kind, then add a new one."""
    db.query(model).filter(model.user_id == user_id, model.used_at.is_(None)).update(
        {"used_at": utcnow()}, synchronize_session=False
    )
    token = random_token(32)
    db.add(model(user_id=user_id, token_hash=sha256_hex(token), expires_at=expires_in(ttl_minutes * 60)))
    return token


def _consume_one_time_token(db: Session, model, token: str):
    """Return the live row for *token* after marking it used, or raise InvalidToken."""
    row = (
        db.query(model)
        .filter(model.token_hash == sha256_hex(token or ""), model.used_at.is_(None))
        .first()
    )
    if row is None or row.expires_at <= utcnow():
        raise invalid_token()
    won = (
        db.query(model)
        .filter(model.id == row.id, model.used_at.is_(None))
        .update({"used_at": utcnow()}, synchronize_session=False)
    )
    if won != 1:
        db.rollback()
        raise invalid_token()
    return row


def _send_best_effort(to: str, subject: str, link: str) -> None:
    try:
        mailer.send(to, subject, link)
    except (smtplib.SMTPException, OSError):
        logger.warning("Email delivery failed to=%s subject=%r", redact(to), subject, exc_info=True)


def _send_verification(user: User, token: str) -> None:
    link = f"{settings.frontend_base_url}/verify-email?token={token}"
    _send_best_effort(user.email, "Verify your email address", link)


def _send_reset(user: User, token: str) -> None:
    link = f"{settings.frontend_base_url}/reset-password?token={token}"
    _send_best_effort(user.email, "Reset your password", link)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register(db: Session, full_name: str, email: str, password: str, phone: Optional[str] = None) -> User:
    """Create an active, unverified ``user`` and email a verification link."""
    email = normalize_email(email)
    phone = _normalize_phone(phone)

    if _find_by_email(db, email) is not None:
        raise _dup_email()
    if _phone_taken(db, phone):
        raise _dup_phone()

    user = User(
        full_name=full_name.strip(),
        email=email,
        phone=phone,
        password_hash=hash_password(password),
        role="user",
        status="active",
        mfa_enabled=False,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        # lost a race against a concurrent registration
        db.rollback()
        if _find_by_email(db, email) is not None:
            raise _dup_email()
        raise _dup_phone()

    token = _issue_one_time_token(db, EmailVerification, user.id, settings.email_verification_ttl_minutes)
    db.commit()
    db.refresh(user)
    logger.info("User registered user_id=%s email=%s", user.id, redact(email))
    _send_verification(user, token)
    return user


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def complete_login(
    db: Session,
    user: User,
    remember: bool,
    ctx: RequestContext,
    trust_cookie: Optional[str],
    flags: RuntimeFlags,
    defer: Optional[Callable[..., None]] = None,
    method: str = "password",
) -> LoginResult:
    """
    Second half of every first-factor login (password or Google).

    Without MFA a session is issued at once.  With MFA a trusted device may
    bypass the second factor; anything else yields a login challenge.
    """
    if user.mfa_enabled:
        try:
            trusted = devices.validate(db, trust_cookie, user.id, user.role, ctx, flags, defer=defer)
        except (SQLAlchemyError, ValueError):
            db.rollback()
            logger.warning("Trusted device check failed user_id=%s; requiring MFA", user.id, exc_info=True)
            trusted = False
        if not trusted:
            return mfa.create_login_challenge(db, user, remember, ctx)
        method = f"{method}+trusted_device"

    user.last_login = utcnow()
    audit.record(db, "login", user.id, detail=method, ip=ctx.ip)
    issued = sessions.create_session(db, user.id, user.role, remember, ctx)
    logger.info("Login ok user_id=%s method=%s", user.id, method)
    return SessionGrant(user=user, session=issued)


def login(
    db: Session,
    email: str,
    password: str,
    remember: bool,
    ctx: RequestContext,
    trust_cookie: Optional[str],
    flags: RuntimeFlags,
    defer: Optional[Callable[..., None]] = None,
) -> LoginResult:
    user = _find_by_email(db, email)
    # Unified failure path – no information leaks about whether the email exists
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Login failed email=%s", redact(normalize_email(email)))
        raise invalid_credentials()
    if not user.is_active:
        raise Forbidden("AccountDisabled", "Account disabled")
    if user.email_verified_at is None:
        raise Forbidden("EmailNotVerified", "Please verify your email before signing in")
    return complete_login(db, user, remember, ctx, trust_cookie, flags, defer=defer)


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


def logout(db: Session, refresh_token: Optional[str]) -> bool:
    """Revoke the session behind *refresh_token*; an invalid token is not an error."""
    if not refresh_token:
        return False
    return sessions.revoke_by_token(db, refresh_token)


def logout_all(db: Session, user_id: int, ip: Optional[str] = None) -> None:
    n_sessions = sessions.revoke_all(db, user_id, commit=False)
    n_devices = devices.revoke_all(db, user_id, commit=False)
    audit.record(db, "logout_all", user_id, detail=f"sessions={n_sessions} devices={n_devices}", ip=ip)
    db.commit()


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def _set_password(db: Session, user: User, new_password: str) -> None:
    user.password_hash = hash_password(new_password)
    sessions.revoke_all(db, user.id, commit=False)
    devices.revoke_all(db, user.id, commit=False)


def change_password(db: Session, user_id: int, old_password: str, new_password: str) -> None:
    user = _load_user(db, user_id)
    if not verify_password(old_password, user.password_hash):
        raise StateViolation("InvalidPassword", "Invalid current password")
    if verify_password(new_password, user.password_hash):
        raise password_reuse()
    _set_password(db, user, new_password)
    audit.record(db, "password_changed", user.id)
    db.commit()
    logger.info("Password changed user_id=%s", user.id)


def request_password_reset(db: Session, email: str) -> None:
    """
    Email a reset link if the address belongs to an active user.  Trusted
    devices are revoked on request.  Silent either way.
    """
    user = _find_by_email(db, email)
    if user is None or not user.is_active:
        logger.info("Password reset requested for unknown/inactive email=%s", redact(normalize_email(email)))
        return
    token = _issue_one_time_token(db, PasswordReset, user.id, settings.password_reset_ttl_minutes)
    devices.revoke_all(db, user.id, commit=False)
    db.commit()
    logger.info("Password reset requested user_id=%s", user.id)
    _send_reset(user, token)


def reset_password(db: Session, token: str, new_password: str) -> None:
    row = (
        db.query(PasswordReset)
        .filter(PasswordReset.token_hash == sha256_hex(token or ""), PasswordReset.used_at.is_(None))
        .first()
    )
    if row is None or row.expires_at <= utcnow():
        raise invalid_token()
    user = _load_user(db, row.user_id)
    # checked before consuming so a rejected reuse leaves the token usable
    if verify_password(new_password, user.password_hash):
        raise password_reuse()

    _consume_one_time_token(db, PasswordReset, token)
    _set_password(db, user, new_password)
    audit.record(db, "password_reset", user.id)
    db.commit()
    logger.info("Password reset completed user_id=%s", user.id)


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


def verify_email(db: Session, token: str) -> User:
    row = _consume_one_time_token(db, EmailVerification, token)
    user = _load_user(db, row.user_id)
    if user.email_verified_at is None:
        user.email_verified_at = utcnow()
    devices.revoke_all(db, user.id, commit=False)
    audit.record(db, "email_verified", user.id)
    db.commit()
    logger.info("Email verified user_id=%s", user.id)
    return user


def resend_verification(db: Session, email: str) -> None:
    user = _find_by_email(db, email)
    if user is None or user.email_verified_at is not None:
        return
    token = _issue_one_time_token(db, EmailVerification, user.id, settings.email_verification_ttl_minutes)
    devices.revoke_all(db, user.id, commit=False)
    db.commit()
    _send_verification(user, token)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


def get_user_profile(db: Session, user_id: int) -> User:
    return _load_user(db, user_id)


def update_user_profile(db: Session, user_id: int, full_name: str, phone: Optional[str] = None) -> User:
    user = _load_user(db, user_id)
    phone = _normalize_phone(phone)
    if _phone_taken(db, phone, exclude_user_id=user.id):
        raise _dup_phone()
    user.full_name = full_name.strip()
    user.phone = phone
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise _dup_phone()
    db.refresh(user)
    return user
