# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""AuditLog ORM model – security events (logins, MFA changes, password events)."""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey

from core.clock import utcnow
from database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Who performed the action (the user themself, or an admin)
    actor_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # Whose account the action touched
    target_user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action = Column(String(64), nullable=False, index=True)   # e.g. "mfa_disabled"
    detail = Column(Text, nullable=True)
    request_ip = Column(String(45), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
