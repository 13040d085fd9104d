# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Runtime feature flags.

Flags are persisted in the ``runtime_flags`` table so an admin can flip them
without a redeploy.  Each process keeps a cached, immutable
:class:`RuntimeFlags` snapshot and re-reads the table once the snapshot is
older than ``settings.runtime_flags_refresh_sec``; other instances pick up a
change eventually, not immediately.

Services never read the store directly.  Routers obtain a snapshot through
the ``get_runtime_flags`` dependency and pass it down, so tests hand a
``RuntimeFlags(...)`` value straight to the service under test.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace

from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import settings
from core.logger import logger
from database import get_db
from models.runtime_flag import RuntimeFlag


@dataclass(frozen=True)
class RuntimeFlags:
    # Require a fingerprint match on trusted devices for every role
    # (admins are always enforced).
    trusted_device_fp_enforce_all: bool = False


# flag_key column values, kept identical to the rows written by migration 0001
_COLUMN_KEYS = {
    "trusted_device_fp_enforce_all": "trustedDeviceFpEnforceAll",
}


def default_flags() -> RuntimeFlags:
    return RuntimeFlags(trusted_device_fp_enforce_all=settings.trusted_device_fingerprint_enabled)


class RuntimeFlagStore:
    def __init__(self, refresh_seconds: int):
        self._refresh_seconds = refresh_seconds
        self._lock = threading.Lock()
        self._flags = default_flags()
        self._loaded_at = 0.0
        self._pinned = False

    def snapshot(self) -> RuntimeFlags:
        return self._flags

    def reload(self, db: Session) -> RuntimeFlags:
        """Re-read every known flag.  On a storage error keep the last snapshot."""
        try:
            rows = db.query(RuntimeFlag).all()
        except SQLAlchemyError:
            db.rollback()
            logger.warning("Failed to load runtime flags; keeping previous values", exc_info=True)
            return self._flags

        values = {}
        by_column = {column: attr for attr, column in _COLUMN_KEYS.items()}
        for row in rows:
            attr = by_column.get(row.flag_key)
            if attr:
                values[attr] = bool(row.bool_value)
        with self._lock:
            if not self._pinned:
                self._flags = replace(default_flags(), **values)
            self._loaded_at = time.monotonic()
        return self._flags

    def current(self, db: Session) -> RuntimeFlags:
        """Cached snapshot, reloaded when stale."""
        if not self._pinned and time.monotonic() - self._loaded_at >= self._refresh_seconds:
            return self.reload(db)
        return self._flags

    def persist(self, db: Session, name: str, value: bool) -> RuntimeFlags:
        """Write one flag and update the local snapshot.  Commits."""
        if name not in {f.name for f in fields(RuntimeFlags)}:
            raise KeyError(name)
        column = _COLUMN_KEYS[name]
        row = db.query(RuntimeFlag).filter(RuntimeFlag.flag_key == column).first()
        if row is None:
            row = RuntimeFlag(flag_key=column)
            db.add(row)
        row.bool_value = bool(value)
        row.updated_at = utcnow()
        db.commit()
        with self._lock:
            self._flags = replace(self._flags, **{name: bool(value)})
            self._loaded_at = time.monotonic()
        return self._flags

    @contextmanager
    def override(self, **values):
        """Pin flag values for the duration of the block (scripts and tests)."""
        with self._lock:
            previous, previous_pinned = self._flags, self._pinned
            self._flags = replace(self._flags, **values)
            self._pinned = True
        try:
            yield self._flags
        finally:
            with self._lock:
                self._flags, self._pinned = previous, previous_pinned


runtime_flags = RuntimeFlagStore(refresh_seconds=settings.runtime_flags_refresh_sec)


def get_runtime_flags(db: Session = Depends(get_db)) -> RuntimeFlags:
    """FastAPI dependency returning the current flag snapshot."""
    return runtime_flags.current(db)
