# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""User ORM model – the identity root.  Users are never hard-deleted."""

from sqlalchemy import Column, Integer, String, Boolean, Enum, DateTime, Text

from core.clock import utcnow
from database import Base

ROLES = ("user", "admin")
STATUSES = ("active", "disabled")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(191), nullable=False)
    # Always stored lower-cased; uniqueness is therefore case-insensitive
    email = Column(String(191), unique=True, nullable=False, index=True)
    phone = Column(String(32), unique=True, nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(*ROLES, name="user_role"), nullable=False, default="user")
    status = Column(Enum(*STATUSES, name="user_status"), nullable=False, default="active")

    mfa_enabled = Column(Boolean, nullable=False, default=False)
    # AES-256-GCM ciphertext of the base32 TOTP secret; NULL unless mfa_enabled
    mfa_secret_enc = Column(Text, nullable=True)
    mfa_secret_iv = Column(String(64), nullable=True)

    email_verified_at = Column(DateTime, nullable=True)
    google_sub = Column(String(191), unique=True, nullable=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status == "active"
