# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""Audit trail helper.  Rows join the caller's unit of work; nothing commits here."""

from typing import Optional

from sqlalchemy.orm import Session

from models.audit_log import AuditLog

ACTIONS = (
    "login",
    "logout_all",
    "mfa_enabled",
    "mfa_disabled",
    "backup_codes_regenerated",
    "password_changed",
    "password_reset",
    "email_verified",
    "user_disabled",
    "user_enabled",
    "fingerprint_policy_changed",
)


def record(
    db: Session,
    action: str,
    target_user_id: Optional[int],
    actor_id: Optional[int] = None,
    detail: Optional[str] = None,
    ip: Optional[str] = None,
) -> None:
    if action not in ACTIONS:
        raise ValueError(f"unknown audit action {action!r}")
    db.add(
        AuditLog(
            actor_id=actor_id if actor_id is not None else target_user_id,
            target_user_id=target_user_id,
            action=action,
            detail=detail,
            request_ip=ip[:45] if ip else None,
        )
    )
