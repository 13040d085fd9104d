# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""MFA ORM models – enrollment challenges, login challenges, backup codes."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text

from core.clock import utcnow
from database import Base


class MfaEnrollmentChallenge(Base):
    """Bridges "start setup" and "verify setup".  Single use, TTL-bound."""

    __tablename__ = "mfa_challenges"

    id = Column(String(32), primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # candidate TOTP secret, AES-256-GCM encrypted
    secret_enc = Column(Text, nullable=False)
    secret_iv = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime, nullable=True)


class MfaLoginChallenge(Base):
    """Bridges "password verified" and "second factor verified"."""

    __tablename__ = "mfa_login_challenges"

    id = Column(String(32), primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # carried through from the original login request
    remember = Column(Boolean, nullable=False, default=False)
    user_agent = Column(String(512), nullable=True)
    ip = Column(String(45), nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime, nullable=True)


class BackupCode(Base):
    __tablename__ = "mfa_backup_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # HMAC-SHA256 of the hyphenated code
    code_hash = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    used_at = Column(DateTime, nullable=True)
