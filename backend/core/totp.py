# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
TOTP and backup-code primitives.

TOTP follows RFC 6238 through pyotp: SHA-1, 30-second step, 6 digits.
Verification accepts the current step plus ``settings.totp_valid_window``
steps either side (±1 by default).

Backup codes are 8 characters from an unambiguous alphabet, shown to the
user as ``XXXX-XXXX``.  Only an HMAC of the hyphenated form is stored.
"""

import re
import secrets

import pyotp

from core.config import settings
from core.security import hmac_sha256_hex

_SIX_DIGITS = re.compile(r"^\d{6}$")

# No 0/O, 1/I/L: codes are read off paper and typed by hand
_BACKUP_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
_BACKUP_LEN = 8


def generate_secret() -> str:
    """Fresh base32 TOTP secret (160 bits)."""
    return pyotp.random_base32(length=32)


def provisioning_uri(secret_base32: str, account: str) -> str:
    return pyotp.TOTP(secret_base32).provisioning_uri(name=account, issuer_name=settings.mfa_issuer)


def is_totp_shaped(code: str) -> bool:
    return bool(_SIX_DIGITS.match(code or ""))


def verify_totp(code: str, secret_base32: str, valid_window: int | None = None) -> bool:
    if not is_totp_shaped(code):
        return False
    window = settings.totp_valid_window if valid_window is None else valid_window
    return pyotp.TOTP(secret_base32).verify(code, valid_window=window)


def _format_backup(raw: str) -> str:
    return f"{raw[:4]}-{raw[4:]}"


def generate_backup_codes(count: int | None = None) -> tuple[list[str], list[str]]:
    """Return ``(plaintext_codes, hashes)``; the plaintext is shown once."""
    codes = []
    for _ in range(count or settings.backup_code_count):
        raw = "".join(secrets.choice(_BACKUP_ALPHABET) for _ in range(_BACKUP_LEN))
        codes.append(_format_backup(raw))
    return codes, [backup_hash(c) for c in codes]


def backup_hash(code: str) -> str:
    return hmac_sha256_hex(settings.backup_code_hmac_secret, code)


def candidate_encodings(user_input: str) -> list[str]:
    """
    Encodings of a typed backup code, tried in order.

    The input is trimmed and uppercased and tried as typed.  If it carries no
    hyphen and is long enough, the hyphenated ``XXXX-XXXX`` form follows, since
    users often skip the separator.
    """
    raw = (user_input or "").strip().upper()
    if not raw:
        return []
    candidates = [raw]
    if "-" not in raw and len(raw) > 4:
        candidates.append(_format_backup(raw))
    return candidates
