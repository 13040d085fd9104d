# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Single-use emailed tokens: email verification and password reset.

Both tables share one shape.  Only the sha256 of the token is stored, and
issuing a new token marks every outstanding one for the same user as used.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from core.clock import utcnow
from database import Base


class _OneTimeTokenMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    token_hash = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)


class EmailVerification(_OneTimeTokenMixin, Base):
    __tablename__ = "email_verifications"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class PasswordReset(_OneTimeTokenMixin, Base):
    __tablename__ = "password_resets"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
