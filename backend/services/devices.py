# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Trusted device registry.

A trusted device is a convenience: it lets a browser skip the second factor
until it expires.  Validation therefore never raises and never revokes – any
doubt degrades to "ask for MFA again".

Cookie formats
--------------
``<device_id>.<token>``   current format, backed by a ``trusted_devices`` row
``<body>.<sig>``          legacy format: base64url JSON ``{sub, exp}`` (exp in
                          epoch milliseconds) signed with HMAC-SHA256.  Checked
                          by signature and expiry only; there is no way to
                          revoke it.

Fingerprint policy
------------------
The fingerprint is sha256(user-agent | ip-prefix).  It is enforced for every
admin, and for every user while the ``trusted_device_fp_enforce_all`` runtime
flag is on.  A mismatch fails validation but leaves the row alone, so a
laptop that changes networks is only asked for MFA, not untrusted.
"""

import json
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.clock import isoformat_utc, utcnow
from core.config import settings
from core.errors import NotFound, ValidationFailed
from core.logger import logger
from core.runtime import RuntimeFlags
from core.security import (
    RequestContext,
    b64url_decode,
    b64url_encode,
    constant_time_equals,
    device_fingerprint,
    hmac_sha256_b64url,
    new_id,
    random_token,
    sha256_hex,
)
from database import SessionLocal
from models.trusted_device import TrustedDevice

_DEVICE_ID = re.compile(r"^[0-9a-f]{32}$")

# BackgroundTasks.add_task has this shape
Defer = Callable[..., None]


@dataclass(frozen=True)
class IssuedDevice:
    device_id: str
    cookie_value: str
    expires_at: datetime

    @property
    def max_age_seconds(self) -> int:
        return max(0, int((self.expires_at - utcnow()).total_seconds()))


def parse_cookie(cookie: Optional[str]) -> Optional[tuple[str, str]]:
    """Split ``id.token``; None when the value is not in the current format."""
    if not cookie or "." not in cookie:
        return None
    device_id, token = cookie.split(".", 1)
    if not _DEVICE_ID.match(device_id) or not token:
        return None
    return device_id, token


def current_device_id(cookie: Optional[str]) -> Optional[str]:
    parsed = parse_cookie(cookie)
    return parsed[0] if parsed else None


def issue(db: Session, user_id: int, ctx: RequestContext, commit: bool = True) -> IssuedDevice:
    token = random_token(32)
    device_id = new_id()
    expires_at = utcnow() + timedelta(days=settings.trusted_device_ttl_days)
    db.add(
        TrustedDevice(
            id=device_id,
            user_id=user_id,
            token_hash=sha256_hex(token),
            fingerprint=device_fingerprint(ctx.user_agent, ctx.ip),
            user_agent=ctx.user_agent[:512] if ctx.user_agent else None,
            ip=ctx.ip[:45] if ctx.ip else None,
            expires_at=expires_at,
        )
    )
    if commit:
        db.commit()
    else:
        db.flush()
    logger.info("Trusted device issued user_id=%s device_id=%s", user_id, device_id)
    return IssuedDevice(device_id=device_id, cookie_value=f"{device_id}.{token}", expires_at=expires_at)


def fingerprint_required(role: str, flags: RuntimeFlags) -> bool:
    return role == "admin" or flags.trusted_device_fp_enforce_all


def touch(device_id: str) -> None:
    """Stamp ``last_used_at`` in a session of its own (background task)."""
    db = SessionLocal()
    try:
        db.query(TrustedDevice).filter(TrustedDevice.id == device_id).update(
            {"last_used_at": utcnow()}, synchronize_session=False
        )
        db.commit()
    finally:
        db.close()


def validate(
    db: Session,
    cookie: Optional[str],
    user_id: int,
    role: str,
    ctx: RequestContext,
    flags: RuntimeFlags,
    defer: Optional[Defer] = None,
) -> bool:
    """
    True when *cookie* lets *user_id* skip MFA from the current request.

    ``defer`` schedules the ``last_used_at`` touch off the request path;
    without it the touch is left on the caller's unit of work.
    """
    if not cookie:
        logger.info("Trusted device check user_id=%s result=no_cookie", user_id)
        return False

    parsed = parse_cookie(cookie)
    if parsed is None:
        return _validate_legacy(cookie, user_id)

    device_id, token = parsed
    rec = db.query(TrustedDevice).filter(TrustedDevice.id == device_id).first()
    reason = None
    if rec is None:
        reason = "not_found"
    elif rec.user_id != user_id:
        reason = "user_mismatch"
    elif rec.revoked_at is not None:
        reason = "revoked"
    elif rec.expires_at <= utcnow():
        reason = "expired"
    elif not constant_time_equals(sha256_hex(token), rec.token_hash):
        reason = "token_mismatch"
    elif fingerprint_required(role, flags) and rec.fingerprint:
        current = device_fingerprint(ctx.user_agent, ctx.ip)
        if not constant_time_equals(current, rec.fingerprint):
            reason = "fingerprint_mismatch"
    if reason:
        logger.info("Trusted device check user_id=%s device_id=%s result=%s", user_id, device_id, reason)
        return False

    if defer is not None:
        defer(touch, device_id)
    else:
        rec.last_used_at = utcnow()
    logger.info("Trusted device check user_id=%s device_id=%s role=%s result=ok", user_id, device_id, role)
    return True


def sign_legacy_cookie(user_id: int, expires_at_ms: int) -> str:
    body = b64url_encode(json.dumps({"sub": str(user_id), "exp": expires_at_ms}).encode("utf-8"))
    return f"{body}.{hmac_sha256_b64url(settings.trusted_device_legacy_secret, body)}"


def _validate_legacy(cookie: str, user_id: int) -> bool:
    if not settings.trusted_device_legacy_secret or cookie.count(".") != 1:
        logger.info("Trusted device check user_id=%s result=invalid_format", user_id)
        return False
    body, sig = cookie.split(".", 1)
    expected = hmac_sha256_b64url(settings.trusted_device_legacy_secret, body)
    if not constant_time_equals(expected, sig):
        logger.info("Trusted device check user_id=%s result=legacy_bad_signature", user_id)
        return False
    try:
        payload = json.loads(b64url_decode(body).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return False
    if not isinstance(payload, dict):
        return False
    sub, exp = payload.get("sub"), payload.get("exp")
    if not isinstance(sub, str) or not isinstance(exp, (int, float)):
        return False
    ok = sub == str(user_id) and exp > time.time() * 1000
    logger.info("Trusted device check user_id=%s result=%s", user_id, "legacy_ok" if ok else "legacy_rejected")
    return ok


def revoke(db: Session, user_id: int, device_id: str) -> None:
    """Revoke one of the caller's live devices.  404 if there is none."""
    count = (
        db.query(TrustedDevice)
        .filter(
            TrustedDevice.id == device_id,
            TrustedDevice.user_id == user_id,
            TrustedDevice.revoked_at.is_(None),
        )
        .update({"revoked_at": utcnow()}, synchronize_session=False)
    )
    if not count:
        db.rollback()
        raise NotFound("DeviceNotFound", "Device not found")
    db.commit()
    logger.info("Trusted device revoked user_id=%s device_id=%s", user_id, device_id)


def revoke_all(db: Session, user_id: int, commit: bool = True) -> int:
    count = (
        db.query(TrustedDevice)
        .filter(TrustedDevice.user_id == user_id, TrustedDevice.revoked_at.is_(None))
        .update({"revoked_at": utcnow()}, synchronize_session=False)
    )
    if commit:
        db.commit()
    if count:
        logger.info("Revoked %d trusted device(s) user_id=%s", count, user_id)
    return count


def untrust_current(db: Session, cookie: Optional[str], user_id: int) -> None:
    """Revoke the device named by the caller's own trust cookie."""
    if not cookie:
        raise ValidationFailed(
            "NoTrustedDevice",
            "No trusted device cookie found. This device is not currently trusted.",
        )
    device_id = current_device_id(cookie)
    if device_id is None:
        raise ValidationFailed("InvalidCookie", "Invalid trusted device cookie format")
    db.query(TrustedDevice).filter(
        TrustedDevice.id == device_id,
        TrustedDevice.user_id == user_id,
        TrustedDevice.revoked_at.is_(None),
    ).update({"revoked_at": utcnow()}, synchronize_session=False)
    db.commit()
    logger.info("Current device untrusted user_id=%s device_id=%s", user_id, device_id)


def list_devices(db: Session, user_id: int, current_cookie: Optional[str]) -> list[dict]:
    current_id = current_device_id(current_cookie)
    rows = (
        db.query(TrustedDevice)
        .filter(TrustedDevice.user_id == user_id)
        .order_by(TrustedDevice.created_at.desc())
        .all()
    )
    return [
        {
            "id": d.id,
            "user_agent": d.user_agent,
            "ip": d.ip,
            "created_at": isoformat_utc(d.created_at),
            "last_used_at": isoformat_utc(d.last_used_at),
            "expires_at": isoformat_utc(d.expires_at),
            "revoked_at": isoformat_utc(d.revoked_at),
            "current": d.id == current_id,
        }
        for d in rows
    ]
