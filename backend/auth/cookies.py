# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Refresh and trust cookies.

refresh  HttpOnly, path ``/api``; persistent only when the user asked to be
         remembered, otherwise a browser-session cookie.
trust    HttpOnly, site-wide, lives as long as the trusted device row.
"""

from fastapi import Response

from core.config import settings
from services.devices import IssuedDevice
from services.sessions import IssuedSession

REFRESH_COOKIE_PATH = "/api"
TRUST_COOKIE_PATH = "/"


def _common() -> dict:
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "lax",
        "domain": settings.cookie_domain or None,
    }


def set_refresh_cookie(response: Response, issued: IssuedSession) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=issued.refresh_token,
        max_age=issued.ttl_seconds if issued.remember else None,
        path=REFRESH_COOKIE_PATH,
        **_common(),
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.refresh_cookie_name, path=REFRESH_COOKIE_PATH, **_common())


def set_trust_cookie(response: Response, device: IssuedDevice) -> None:
    response.set_cookie(
        key=settings.trusted_cookie_name,
        value=device.cookie_value,
        max_age=device.max_age_seconds,
        path=TRUST_COOKIE_PATH,
        **_common(),
    )


def clear_trust_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.trusted_cookie_name, path=TRUST_COOKIE_PATH, **_common())
