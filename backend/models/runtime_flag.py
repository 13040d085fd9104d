# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""RuntimeFlag ORM model – admin-toggled booleans read by core.runtime."""

from sqlalchemy import Column, String, Boolean, DateTime

from core.clock import utcnow
from database import Base


class RuntimeFlag(Base):
    __tablename__ = "runtime_flags"

    flag_key = Column(String(64), primary_key=True)
    bool_value = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
