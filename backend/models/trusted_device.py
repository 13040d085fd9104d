# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""TrustedDevice ORM model – a browser allowed to skip MFA until expiry."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from core.clock import utcnow
from database import Base


class TrustedDevice(Base):
    __tablename__ = "trusted_devices"

    id = Column(String(32), primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = Column(String(64), nullable=False)
    # sha256( user-agent | ip-prefix ) at issue time
    fingerprint = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    ip = Column(String(45), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
