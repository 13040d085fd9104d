# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Central security module.  All cryptographic primitives live here.  No other
module should touch raw crypto directly.

Responsibilities
----------------
1. Password hashing / verification          (passlib argon2)
2. Secret encryption / decryption           (AES-256-GCM)
3. Access + refresh token codec             (PyJWT / HS256)
4. One-way token hashes and random tokens   (SHA-256 / HMAC-SHA256)
5. Request context: client IP, user agent, IP prefix
"""

import base64
import hashlib
import hmac
import ipaddress
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as _jwt        # PyJWT
from passlib.context import CryptContext
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from fastapi import Request

from core.config import settings

# ---------------------------------------------------------------------------
# 1.  argon2 – password hashing
# ---------------------------------------------------------------------------
# argon2 is memory-hard; passlib embeds the salt and parameters in the hash
# string, so one column is enough.
# ---------------------------------------------------------------------------

_pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain: str) -> str:
    """Hash a plaintext password.  Returns the full ``$argon2id$...`` string."""
    return _pwd_context.hash(plain)


def verify_password(plain: str, stored_hash: Optional[str]) -> bool:
    """
    Constant-time verification of *plain* against an argon2 hash.  A missing
    or unparsable hash never verifies.
    """
    if not stored_hash:
        return False
    try:
        return _pwd_context.verify(plain, stored_hash)
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# 2.  AES-256-GCM – TOTP secrets at rest
# ---------------------------------------------------------------------------


def _get_master_key() -> bytes:
    """
    Decode the base64-encoded MASTER_ENCRYPTION_KEY.  Called at use-time so
    the key is never cached at module load.  Must be exactly 32 bytes.
    """
    key = base64.b64decode(settings.master_encryption_key)
    if len(key) != 32:
        raise RuntimeError("MASTER_ENCRYPTION_KEY must decode to exactly 32 bytes")
    return key


def encrypt_value(plaintext: str) -> tuple[str, str]:
    """
    Encrypt *plaintext* with AES-256-GCM under a fresh 96-bit nonce.

    Returns
    -------
    encrypted_b64 : str   base64( ciphertext || 16-byte GCM tag )
    iv_b64        : str   base64( 12-byte nonce )
    """
    iv = secrets.token_bytes(12)
    ct_and_tag = AESGCM(_get_master_key()).encrypt(iv, plaintext.encode("utf-8"), None)
    return (
        base64.b64encode(ct_and_tag).decode("ascii"),
        base64.b64encode(iv).decode("ascii"),
    )


def decrypt_value(encrypted_b64: str, iv_b64: str) -> str:
    """
    Decrypt a value produced by :func:`encrypt_value`.

    Raises ``ValueError`` if the GCM tag does not match (tampered data or the
    wrong key).
    """
    iv = base64.b64decode(iv_b64)
    ct_and_tag = base64.b64decode(encrypted_b64)
    try:
        plaintext_bytes = AESGCM(_get_master_key()).decrypt(iv, ct_and_tag, None)
    except Exception as exc:
        raise ValueError("Decryption failed – data may be tampered") from exc
    return plaintext_bytes.decode("utf-8")


# ---------------------------------------------------------------------------
# 3.  JWT – access and refresh tokens
# ---------------------------------------------------------------------------
# Access tokens are stateless: {sub, role}.  Refresh tokens are bound to a
# row in the sessions table: {sub, sid}.  Each kind has its own secret and a
# ``typ`` claim so one can never be replayed as the other.
# ---------------------------------------------------------------------------

_ALGORITHM = "HS256"


class TokenError(Exception):
    """Signature, expiry or shape check failed."""


@dataclass(frozen=True)
class RefreshClaims:
    user_id: int
    session_id: str


def create_access_token(user_id: int, role: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {"sub": str(user_id), "role": role, "typ": "access", "iat": now, "exp": expire}
    return _jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify an access token.  Raises :class:`TokenError` on any failure."""
    try:
        payload = _jwt.decode(token, settings.secret_key, algorithms=[_ALGORITHM])
    except _jwt.PyJWTError as exc:
        raise TokenError(str(exc)) from exc
    if payload.get("typ") != "access" or "sub" not in payload or "role" not in payload:
        raise TokenError("not an access token")
    return payload


def create_refresh_token(user_id: int, session_id: str, ttl_seconds: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "sid": session_id,
        "typ": "refresh",
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    return _jwt.encode(payload, settings.refresh_secret_key, algorithm=_ALGORITHM)


def decode_refresh_token(token: str) -> RefreshClaims:
    """
    Verify a refresh token's signature and expiry and return its claims.
    The claims are NOT trusted until checked against the sessions table.
    """
    try:
        payload = _jwt.decode(token, settings.refresh_secret_key, algorithms=[_ALGORITHM])
    except _jwt.PyJWTError as exc:
        raise TokenError(str(exc)) from exc
    if payload.get("typ") != "refresh":
        raise TokenError("not a refresh token")
    try:
        return RefreshClaims(user_id=int(payload["sub"]), session_id=str(payload["sid"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenError("malformed refresh claims") from exc


# ---------------------------------------------------------------------------
# 4.  Hashes and random tokens
# ---------------------------------------------------------------------------


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hmac_sha256_hex(key: str, value: str) -> str:
    return hmac.new(key.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


def hmac_sha256_b64url(key: str, value: str) -> str:
    digest = hmac.new(key.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).digest()
    return b64url_encode(digest)


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def random_token(nbytes: int = 32) -> str:
    """URL-safe random token for email links and trust cookies."""
    return secrets.token_urlsafe(nbytes)


def new_id() -> str:
    """Primary key for sessions, devices and challenges."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# 5.  Request context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestContext:
    user_agent: Optional[str] = None
    ip: Optional[str] = None


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from the request.
    Checks X-Forwarded-For first (for proxies), then falls back to the
    socket peer.  Returns "unknown" when neither is available.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, take the first (original client)
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency: user agent + client IP of the current request."""
    return RequestContext(
        user_agent=request.headers.get("user-agent"),
        ip=get_client_ip(request),
    )


def ip_prefix(ip: Optional[str]) -> str:
    """
    Network prefix used by device fingerprints: /24 for IPv4, /64 for IPv6.
    IPv4-mapped IPv6 addresses are treated as IPv4.  Anything that does not
    parse as an address is returned unchanged.
    """
    if not ip:
        return ""
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return ip
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    if isinstance(addr, ipaddress.IPv4Address):
        return str(ipaddress.ip_network(f"{addr}/24", strict=False).network_address)
    return str(ipaddress.ip_network(f"{addr}/64", strict=False).network_address)


def device_fingerprint(user_agent: Optional[str], ip: Optional[str]) -> str:
    return sha256_hex(f"{user_agent or ''}|{ip_prefix(ip)}")


@dataclass(frozen=True)
class Identity:
    """Who is calling: resolved by the authorization gate."""

    id: int
    role: str
