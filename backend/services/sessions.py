# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Session ledger – refresh-token sessions.

Rotation (the security-critical path)
-------------------------------------
A refresh token is a signed ``{sub, sid}`` JWT whose sha256 is stored on the
session row.  Every refresh revokes the presented row, points its
``replaced_by`` at a freshly inserted successor, and hands out a new token.
The revoke step is a compare-and-swap keyed by session id *and* the expected
token hash, so two requests racing on the same token produce exactly one
winner.

Presenting a token whose row was already superseded is a replay: the whole
lineage, including the current head, is revoked and ``TokenReuse`` is
raised.  The legitimate holder of the newest token is therefore logged out as
well, and has to sign in again.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from core.clock import expires_in, utcnow
from core.config import settings
from core.errors import TokenReuseDetected, invalid_session
from core.logger import logger
from core.security import (
    Identity,
    RequestContext,
    TokenError,
    constant_time_equals,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    new_id,
    sha256_hex,
)
from models.auth_session import AuthSession
from models.user import User


@dataclass(frozen=True)
class IssuedSession:
    session_id: str
    user_id: int
    role: str
    access_token: str
    refresh_token: str
    ttl_seconds: int
    remember: bool


def ttl_for_role(role: str, remember: bool) -> int:
    """Refresh-token lifetime in seconds.  Admins always get the shorter pair."""
    if role == "admin":
        return settings.admin_refresh_token_ttl_sec if remember else settings.admin_session_refresh_ttl_sec
    return settings.user_refresh_token_ttl_sec if remember else settings.user_session_refresh_ttl_sec


def _clip(value: Optional[str], size: int) -> Optional[str]:
    return value[:size] if value else value


def _insert_session(
    db: Session,
    session_id: str,
    user_id: int,
    role: str,
    remember: bool,
    ctx: RequestContext,
) -> IssuedSession:
    ttl = ttl_for_role(role, remember)
    refresh = create_refresh_token(user_id, session_id, ttl)
    db.add(
        AuthSession(
            id=session_id,
            user_id=user_id,
            refresh_hash=sha256_hex(refresh),
            user_agent=_clip(ctx.user_agent, 512),
            ip=_clip(ctx.ip, 45),
            remember=bool(remember),
            expires_at=expires_in(ttl),
        )
    )
    return IssuedSession(
        session_id=session_id,
        user_id=user_id,
        role=role,
        access_token=create_access_token(user_id, role),
        refresh_token=refresh,
        ttl_seconds=ttl,
        remember=bool(remember),
    )


def create_session(
    db: Session,
    user_id: int,
    role: str,
    remember: bool,
    ctx: RequestContext,
    commit: bool = True,
) -> IssuedSession:
    """
    Open a new session lineage.  With ``commit=False`` the row is only
    flushed, so the caller can fold it into a larger transaction.
    """
    issued = _insert_session(db, new_id(), user_id, role, remember, ctx)
    if commit:
        db.commit()
    else:
        db.flush()
    logger.info("Session created user_id=%s sid=%s remember=%s", user_id, issued.session_id, remember)
    return issued


def _find(db: Session, session_id: str, user_id: int) -> Optional[AuthSession]:
    return (
        db.query(AuthSession)
        .filter(AuthSession.id == session_id, AuthSession.user_id == user_id)
        .first()
    )


def _revoke_lineage(db: Session, row: AuthSession) -> list[str]:
    """Revoke *row* and every successor reachable through ``replaced_by``."""
    now = utcnow()
    revoked = []
    seen = set()
    current = row
    while current is not None and current.id not in seen:
        seen.add(current.id)
        if current.revoked_at is None:
            current.revoked_at = now
            revoked.append(current.id)
        if not current.replaced_by:
            break
        current = db.query(AuthSession).filter(AuthSession.id == current.replaced_by).first()
    return revoked


def _reuse_detected(db: Session, row: AuthSession) -> TokenReuseDetected:
    revoked = _revoke_lineage(db, row)
    db.commit()
    logger.warning(
        "Refresh token reuse detected user_id=%s sid=%s revoked=%s",
        row.user_id,
        row.id,
        ",".join(revoked) or "-",
    )
    return TokenReuseDetected()


def rotate(db: Session, refresh_token: str, ctx: RequestContext) -> IssuedSession:
    """
    Exchange a refresh token for a new access token and a new refresh token.

    Raises ``InvalidSession`` for unknown, revoked, expired or undecodable
    tokens and ``TokenReuse`` for replays.  Both are 401s.
    """
    try:
        claims = decode_refresh_token(refresh_token)
    except TokenError:
        raise invalid_session()

    row = _find(db, claims.session_id, claims.user_id)
    if row is None:
        raise invalid_session()

    presented = sha256_hex(refresh_token)
    now = utcnow()

    if row.revoked_at is not None:
        if row.replaced_by and constant_time_equals(presented, row.refresh_hash):
            raise _reuse_detected(db, row)
        raise invalid_session()
    if row.expires_at <= now:
        raise invalid_session()
    if not constant_time_equals(presented, row.refresh_hash):
        raise _reuse_detected(db, row)

    user = db.query(User).filter(User.id == claims.user_id).first()
    if user is None or not user.is_active:
        row.revoked_at = now
        db.commit()
        raise invalid_session()

    new_sid = new_id()
    won = (
        db.query(AuthSession)
        .filter(
            AuthSession.id == row.id,
            AuthSession.revoked_at.is_(None),
            AuthSession.refresh_hash == presented,
        )
        .update({"revoked_at": now, "replaced_by": new_sid}, synchronize_session=False)
    )
    if won != 1:
        # Another request rotated this token between our read and our write
        db.rollback()
        row = _find(db, claims.session_id, claims.user_id)
        raise _reuse_detected(db, row)

    issued = _insert_session(db, new_sid, user.id, user.role, bool(row.remember), ctx)
    db.commit()
    logger.info("Session rotated user_id=%s sid=%s -> %s", user.id, row.id, new_sid)
    return issued


def validate(db: Session, refresh_token: str) -> Optional[Identity]:
    """
    Resolve the caller behind a refresh token without rotating it.

    Returns None whenever the token does not designate a live session.  A
    hash mismatch on a live row revokes that row, as in :func:`rotate`.
    """
    try:
        claims = decode_refresh_token(refresh_token)
    except TokenError:
        return None

    row = _find(db, claims.session_id, claims.user_id)
    if row is None or row.revoked_at is not None or row.expires_at <= utcnow():
        return None
    if not constant_time_equals(sha256_hex(refresh_token), row.refresh_hash):
        row.revoked_at = utcnow()
        db.commit()
        logger.warning("Refresh cookie hash mismatch user_id=%s sid=%s", row.user_id, row.id)
        return None

    user = db.query(User).filter(User.id == claims.user_id).first()
    if user is None or not user.is_active:
        return None
    return Identity(id=user.id, role=user.role)


def revoke(db: Session, session_id: str, user_id: Optional[int] = None, commit: bool = True) -> bool:
    """Revoke one session.  Returns False if it was unknown or already revoked."""
    query = db.query(AuthSession).filter(AuthSession.id == session_id, AuthSession.revoked_at.is_(None))
    if user_id is not None:
        query = query.filter(AuthSession.user_id == user_id)
    count = query.update({"revoked_at": utcnow()}, synchronize_session=False)
    if commit:
        db.commit()
    return count > 0


def revoke_by_token(db: Session, refresh_token: str) -> bool:
    """Logout helper: revoke the session a refresh token names, if any."""
    try:
        claims = decode_refresh_token(refresh_token)
    except TokenError:
        return False
    return revoke(db, claims.session_id, user_id=claims.user_id)


def revoke_all(db: Session, user_id: int, commit: bool = True) -> int:
    """Revoke every live session of a user.  Returns the number revoked."""
    count = (
        db.query(AuthSession)
        .filter(AuthSession.user_id == user_id, AuthSession.revoked_at.is_(None))
        .update({"revoked_at": utcnow()}, synchronize_session=False)
    )
    if commit:
        db.commit()
    if count:
        logger.info("Revoked %d session(s) user_id=%s", count, user_id)
    return count
