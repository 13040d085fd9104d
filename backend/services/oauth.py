# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Google sign-in (OpenID Connect authorization-code flow).

The ``state`` parameter is a signed ``{next, remember, nonce}`` blob, so the
callback needs no server-side storage.  The ID token is verified against
Google's published JWKS; its ``nonce`` must match the one in the state and
its ``email_verified`` claim must be true.

Accounts are linked by ``google_sub`` first, then by email.  Otherwise a new
verified ``user`` is created with a random password it will never use.
"""

import json
import secrets
from dataclasses import asdict, dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
import jwt as _jwt        # PyJWT
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import settings
from core.errors import ValidationFailed
from core.logger import logger, redact
from core.security import (
    b64url_decode,
    b64url_encode,
    constant_time_equals,
    hash_password,
    hmac_sha256_b64url,
    random_token,
)
from models.user import User

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
ISSUERS = ("https://accounts.google.com", "accounts.google.com")

DEFAULT_NEXT = "/account"

_jwks_client: Optional[_jwt.PyJWKClient] = None


class OAuthError(ValidationFailed):
    def __init__(self, message: str):
        super().__init__("OAuthFailed", message)


@dataclass(frozen=True)
class OAuthState:
    next: str
    remember: bool
    nonce: str


def is_configured() -> bool:
    return bool(settings.google_client_id and settings.google_client_secret and settings.oauth_state_secret)


def safe_next(value: Optional[str]) -> str:
    """Only same-site absolute paths; ``//host`` would leave the site."""
    if isinstance(value, str) and value.startswith("/") and not value.startswith("//"):
        return value
    return DEFAULT_NEXT


def new_state(next_path: Optional[str], remember: bool) -> OAuthState:
    return OAuthState(next=safe_next(next_path), remember=bool(remember), nonce=secrets.token_urlsafe(16))


def sign_state(state: OAuthState) -> str:
    body = b64url_encode(json.dumps(asdict(state)).encode("utf-8"))
    return f"{body}.{hmac_sha256_b64url(settings.oauth_state_secret, body)}"


def verify_state(raw: Optional[str]) -> Optional[OAuthState]:
    if not raw or not settings.oauth_state_secret or raw.count(".") != 1:
        return None
    body, sig = raw.split(".", 1)
    if not constant_time_equals(hmac_sha256_b64url(settings.oauth_state_secret, body), sig):
        return None
    try:
        parsed = json.loads(b64url_decode(body).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    if (
        not isinstance(parsed, dict)
        or not isinstance(parsed.get("next"), str)
        or not isinstance(parsed.get("remember"), bool)
        or not isinstance(parsed.get("nonce"), str)
    ):
        return None
    return OAuthState(next=safe_next(parsed["next"]), remember=parsed["remember"], nonce=parsed["nonce"])


def authorize_url(redirect_uri: str, state: OAuthState) -> str:
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": "openid email profile",
        "state": sign_state(state),
        "prompt": "select_account",
        "nonce": state.nonce,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def frontend_redirect(**params: Optional[str]) -> str:
    query = urlencode({k: v for k, v in params.items() if v})
    url = f"{settings.frontend_base_url}/oauth/google"
    return f"{url}?{query}" if query else url


def _get_jwks_client() -> _jwt.PyJWKClient:
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = _jwt.PyJWKClient(JWKS_URL)
    return _jwks_client


def exchange_code(code: str, redirect_uri: str) -> str:
    """Trade the authorization code for an ID token."""
    data = {
        "code": code,
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }
    try:
        with httpx.Client(timeout=10.0, follow_redirects=False) as client:
            resp = client.post(TOKEN_URL, data=data, headers={"Accept": "application/json"})
            resp.raise_for_status()
            payload = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Google token exchange failed: %s", exc)
        raise OAuthError("Token exchange failed") from exc
    id_token = payload.get("id_token") if isinstance(payload, dict) else None
    if not id_token:
        raise OAuthError("No id_token")
    return id_token


def verify_id_token(id_token: str, nonce: str) -> dict:
    """Verify signature, audience and issuer, then the nonce and email claims."""
    try:
        signing_key = _get_jwks_client().get_signing_key_from_jwt(id_token)
        claims = _jwt.decode(
            id_token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.google_client_id,
            issuer=ISSUERS,
        )
    except _jwt.PyJWTError as exc:
        logger.warning("Google id_token rejected: %s", exc)
        raise OAuthError("Invalid id_token") from exc
    return check_claims(claims, nonce)


def check_claims(claims: dict, nonce: str) -> dict:
    if not claims.get("sub"):
        raise OAuthError("Invalid id_token payload")
    if not claims.get("nonce") or not constant_time_equals(str(claims["nonce"]), nonce):
        raise OAuthError("Nonce mismatch")
    if claims.get("email_verified") is not True:
        raise OAuthError("Email not verified")
    if not claims.get("email"):
        raise OAuthError("Google account missing email")
    return claims


def fetch_identity(code: str, redirect_uri: str, state: OAuthState) -> dict:
    return verify_id_token(exchange_code(code, redirect_uri), state.nonce)


def _display_name(claims: dict, email: str) -> str:
    name = (claims.get("name") or "").strip()
    if not name:
        name = f"{claims.get('given_name') or ''} {claims.get('family_name') or ''}".strip()
    return (name or email.split("@")[0])[:191]


def resolve_user(db: Session, claims: dict) -> User:
    """Find the account behind verified Google claims, linking or creating one."""
    google_sub = str(claims["sub"])
    email = str(claims["email"]).strip().lower()

    user = db.query(User).filter(User.google_sub == google_sub).first()
    if user is not None:
        return user

    user = db.query(User).filter(User.email == email).first()
    if user is not None:
        user.google_sub = google_sub
        if user.email_verified_at is None:
            user.email_verified_at = utcnow()
        db.commit()
        logger.info("Google account linked user_id=%s", user.id)
        return user

    user = User(
        full_name=_display_name(claims, email),
        email=email,
        password_hash=hash_password(random_token(16)),
        role="user",
        status="active",
        mfa_enabled=False,
        email_verified_at=utcnow(),
        google_sub=google_sub,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("User created from Google sign-in user_id=%s email=%s", user.id, redact(email))
    return user
