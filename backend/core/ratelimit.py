# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Request rate limits for the endpoints an anonymous caller can hammer:
login, forgot, verify-email/resend and the MFA login verify step.

Each route counts the request under one or more keys (client IP, email)
and gets a 429 ``RateLimited`` once any of them is over its rule.  Rules are
``limits`` strings such as ``"10/minute"``.
"""

import time
from typing import Optional

from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from core.config import settings
from core.errors import TooManyRequests
from core.logger import logger, redact


class RateLimiter:
    def __init__(self, storage_uri: str, enabled: bool = True):
        self.enabled = enabled
        self._storage = storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)

    def hit(self, scope: str, rule: str, key: Optional[str]) -> None:
        """Count one request for *key* in *scope*; raise once *rule* is exceeded."""
        if not self.enabled or not rule:
            return
        item = parse(rule)
        key = key or "unknown"
        if self._strategy.hit(item, scope, key):
            return
        reset_at, _ = self._strategy.get_window_stats(item, scope, key)
        logger.warning("Rate limit exceeded scope=%s key=%s rule=%s", scope, redact(key), rule)
        raise TooManyRequests(max(1, int(reset_at - time.time())))

    def reset(self) -> None:
        self._storage.reset()


rate_limiter = RateLimiter(settings.rate_limit_storage_uri, enabled=settings.rate_limit_enabled)


def limit_login(ip: Optional[str], email: str) -> None:
    rate_limiter.hit("login:ip", settings.login_rate_limit_per_ip, ip)
    rate_limiter.hit("login:email", settings.login_rate_limit_per_email, email)


def limit_email_link(kind: str, ip: Optional[str], email: str) -> None:
    rate_limiter.hit(f"{kind}:ip", settings.email_link_rate_limit_per_ip, ip)
    rate_limiter.hit(f"{kind}:email", settings.email_link_rate_limit_per_email, email)


def limit_mfa_verify(ip: Optional[str]) -> None:
    rate_limiter.hit("mfa-verify:ip", settings.mfa_verify_rate_limit_per_ip, ip)
