# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
AuthSession ORM model – one outstanding refresh-token grant.

Rows are append-only: rotation revokes the current row (pointing
``replaced_by`` at its successor) and inserts a new one.  The token hash of a
row is never rewritten.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey

from core.clock import utcnow
from database import Base


class AuthSession(Base):
    __tablename__ = "sessions"

    id = Column(String(32), primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # sha256 of the full refresh token – never the token itself
    refresh_hash = Column(String(64), nullable=False)
    user_agent = Column(String(512), nullable=True)
    ip = Column(String(45), nullable=True)
    remember = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    replaced_by = Column(String(32), nullable=True)
