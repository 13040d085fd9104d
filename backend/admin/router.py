# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Admin endpoints – account status, the trusted-device fingerprint policy and
the audit trail.

Every endpoint in this router is guarded by ``require_admin``.  A request
that carries a valid token but belongs to a ``user`` role will receive 403
before any business logic runs.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, aliased

from admin.schemas import (
    AuditLogListResponse,
    AuditLogRow,
    FingerprintPolicyRequest,
    FingerprintPolicyResponse,
    UserListResponse,
    UserRow,
)
from auth.schemas import OkResponse
from core.authz import require_admin
from core.errors import StateViolation, user_not_found
from core.logger import logger
from core.runtime import RuntimeFlags, get_runtime_flags, runtime_flags
from core.security import RequestContext, get_request_context
from database import get_db
from models.audit_log import AuditLog
from models.user import User
from services import audit, devices, sessions

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# /admin/security/trusted-devices/fingerprint  – runtime fingerprint policy
# ---------------------------------------------------------------------------


@router.get("/security/trusted-devices/fingerprint", response_model=FingerprintPolicyResponse)
def get_fingerprint_policy(
    admin: User = Depends(require_admin),
    flags: RuntimeFlags = Depends(get_runtime_flags),
):
    """Admins are always fingerprint-checked; ``enforceAll`` extends it to everyone."""
    return FingerprintPolicyResponse(enforce_all=flags.trusted_device_fp_enforce_all)


@router.post("/security/trusted-devices/fingerprint", response_model=FingerprintPolicyResponse)
def set_fingerprint_policy(
    body: FingerprintPolicyRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Persist the flag.  Other instances pick it up on their next refresh."""
    audit.record(
        db,
        "fingerprint_policy_changed",
        None,
        actor_id=admin.id,
        detail=f"enforce_all={body.enforce_all}",
        ip=ctx.ip,
    )
    flags = runtime_flags.persist(db, "trusted_device_fp_enforce_all", body.enforce_all)
    logger.info("Fingerprint policy changed by admin_id=%s enforce_all=%s", admin.id, body.enforce_all)
    return FingerprintPolicyResponse(enforce_all=flags.trusted_device_fp_enforce_all)


# ---------------------------------------------------------------------------
# GET /admin/users  – list all accounts
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
def list_users(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    users = db.query(User).order_by(User.id).all()
    return UserListResponse(users=[UserRow.model_validate(u) for u in users])


# ---------------------------------------------------------------------------
# PUT /admin/users/{id}/disable  /  PUT /admin/users/{id}/enable
# ---------------------------------------------------------------------------


@router.put("/users/{user_id}/disable", response_model=OkResponse)
def disable_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Set ``status = disabled`` and revoke every session and trusted device of
    the account, so it is signed out everywhere at once.

    Guard: an admin cannot disable their own account.
    """
    if user_id == admin.id:
        raise StateViolation("CannotDisableSelf", "Cannot disable yourself")

    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise user_not_found()

    target.status = "disabled"
    sessions.revoke_all(db, target.id, commit=False)
    devices.revoke_all(db, target.id, commit=False)
    audit.record(db, "user_disabled", target.id, actor_id=admin.id, ip=ctx.ip)
    db.commit()
    return OkResponse()


@router.put("/users/{user_id}/enable", response_model=OkResponse)
def enable_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Set ``status = active`` so the user can log in again."""
    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise user_not_found()

    target.status = "active"
    audit.record(db, "user_enabled", target.id, actor_id=admin.id, ip=ctx.ip)
    db.commit()
    return OkResponse()


# ---------------------------------------------------------------------------
# GET /admin/audit-logs  – audit trail with optional filters
# ---------------------------------------------------------------------------


@router.get("/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    emails: list[str] | None = Query(None, description="Filter by exact email(s) – repeated param"),
    action: str | None = Query(None, description="Filter by action name"),
    since: datetime | None = Query(None, description="ISO-8601 start of time window"),
    until: datetime | None = Query(None, description="ISO-8601 end of time window"),
    limit: int = Query(200, ge=1, le=1000),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Return audit log rows newest-first.  Supports optional filters:

    * ``emails`` – one or more exact email addresses; match rows where
                   *either* actor_id or target_user_id belongs to one of them.
    * ``action`` – e.g. ``mfa_disabled``.
    * ``since`` / ``until`` – ISO-8601 bounds on ``created_at``.
    * ``limit`` – max rows returned (default 200, cap 1000).
    """
    Actor = aliased(User)
    Target = aliased(User)

    q = (
        db.query(AuditLog, Actor.email, Target.email)
        .outerjoin(Actor, AuditLog.actor_id == Actor.id)
        .outerjoin(Target, AuditLog.target_user_id == Target.id)
    )

    if emails:
        lowered = [e.strip().lower() for e in emails]
        q = q.filter(Actor.email.in_(lowered) | Target.email.in_(lowered))
    if action:
        q = q.filter(AuditLog.action == action)
    if since:
        q = q.filter(AuditLog.created_at >= since)
    if until:
        q = q.filter(AuditLog.created_at <= until)

    rows = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return AuditLogListResponse(
        logs=[
            AuditLogRow(
                id=row.id,
                actor_email=actor_email,
                target_email=target_email,
                action=row.action,
                detail=row.detail,
                request_ip=row.request_ip,
                created_at=row.created_at,
            )
            for row, actor_email, target_email in rows
        ]
    )
