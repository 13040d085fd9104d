# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Bootstrap script – creates the first admin user.

Run once after the initial migration:
    python bin/seed_admin.py

The script reads FIRST_ADMIN_EMAIL, FIRST_ADMIN_PASSWORD and
FIRST_ADMIN_NAME from the etc/app.conf file.  After the row is inserted those
values are no longer used by the application.

The admin starts with a verified email so it can sign in immediately, and
without MFA; enrolling a second factor is the first thing to do.
"""

import sys
import os

# ---------------------------------------------------------------------------
# Path setup so backend modules are importable
# ---------------------------------------------------------------------------
# bin/seed_admin.py  →  ../  →  project root
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_BACKEND_DIR  = os.path.join(_PROJECT_ROOT, "backend")
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from core.clock import utcnow             # noqa: E402
from core.config import settings          # noqa: E402
from core.logger import logger            # noqa: E402
from core.security import hash_password   # noqa: E402
from database import SessionLocal         # noqa: E402
from models.user import User              # noqa: E402


def seed() -> bool:
    """Create the admin row.  Returns True if a row was inserted."""
    if not settings.first_admin_email or not settings.first_admin_password:
        print("[seed_admin] FIRST_ADMIN_EMAIL or FIRST_ADMIN_PASSWORD not set in etc/app.conf – nothing to do.")
        return False

    email = settings.first_admin_email.strip().lower()
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            print(f"[seed_admin] Admin '{email}' already exists – skipping.")
            return False

        admin = User(
            full_name=settings.first_admin_name,
            email=email,
            password_hash=hash_password(settings.first_admin_password),
            role="admin",
            status="active",
            mfa_enabled=False,
            email_verified_at=utcnow(),
        )
        db.add(admin)
        db.commit()
        logger.info("Bootstrap admin created user_id=%s", admin.id)
        print(f"[seed_admin] Admin '{email}' created successfully.")
        return True
    finally:
        db.close()


if __name__ == "__main__":
    seed()
