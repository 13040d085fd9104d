# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Authorization gate – FastAPI dependency guards.

A request may carry one of two credentials:

* ``Authorization: Bearer <access token>``  – preferred, stateless.
* the refresh cookie                        – fallback for flows that never
  held an access token.  Validated against the session ledger *without*
  rotating it.

:func:`extract_credential` turns the request into exactly one credential
variant and :func:`resolve_identity` turns that into an :class:`Identity` or
an :class:`Unauthenticated` reason.  Routes depend on
``get_current_identity``, ``get_current_user``, ``require_role(...)`` or
``require_at_least(...)`` and never look at headers or cookies themselves.
"""

from dataclasses import dataclass
from typing import Union

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import AuthenticationFailed, Forbidden
from core.security import Identity, TokenError, decode_access_token
from database import get_db
from models.user import User
from services import sessions

# Roles are totally ordered
RANK = {"user": 1, "admin": 2}

# The tokenUrl here is only used by the auto-generated OpenAPI docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


@dataclass(frozen=True)
class BearerCredential:
    token: str


@dataclass(frozen=True)
class RefreshCookieCredential:
    token: str


@dataclass(frozen=True)
class NoCredential:
    pass


Credential = Union[BearerCredential, RefreshCookieCredential, NoCredential]


@dataclass(frozen=True)
class Unauthenticated:
    code: str
    message: str

    def to_error(self) -> AuthenticationFailed:
        return AuthenticationFailed(self.code, self.message)


def extract_credential(request: Request) -> Credential:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return BearerCredential(token.strip())
    cookie = request.cookies.get(settings.refresh_cookie_name)
    if cookie:
        return RefreshCookieCredential(cookie)
    return NoCredential()


def resolve_identity(request: Request, db: Session) -> Union[Identity, Unauthenticated]:
    credential = extract_credential(request)

    if isinstance(credential, BearerCredential):
        try:
            payload = decode_access_token(credential.token)
            return Identity(id=int(payload["sub"]), role=str(payload["role"]))
        except (TokenError, ValueError):
            return Unauthenticated("InvalidToken", "Invalid token")

    if isinstance(credential, RefreshCookieCredential):
        identity = sessions.validate(db, credential.token)
        if identity is None:
            return Unauthenticated("InvalidSession", "Invalid session")
        return identity

    return Unauthenticated("NoToken", "Authentication required")


def get_current_identity(
    request: Request,
    _token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Identity:
    """Dependency: who is calling.  Raises 401 if nobody is."""
    result = resolve_identity(request, db)
    if isinstance(result, Unauthenticated):
        raise result.to_error()
    return result


def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    """
    Dependency: the caller's User row.  Raises 401 if the account is gone or
    disabled, so a still-valid access token stops working after disable.
    """
    user = db.query(User).filter(User.id == identity.id).first()
    if user is None or not user.is_active:
        raise AuthenticationFailed("InvalidSession", "User not found or inactive")
    return user


def require_role(role: str):
    """Dependency factory: the caller must hold exactly *role*."""
    if role not in RANK:
        raise ValueError(f"unknown role {role!r}")

    def _guard(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role != role:
            raise Forbidden("Forbidden", "Forbidden")
        return identity

    return _guard


def require_at_least(role: str):
    """Dependency factory: the caller's role must rank at or above *role*."""
    if role not in RANK:
        raise ValueError(f"unknown role {role!r}")

    def _guard(identity: Identity = Depends(get_current_identity)) -> Identity:
        if RANK.get(identity.role, 0) < RANK[role]:
            raise Forbidden("Forbidden", "Forbidden")
        return identity

    return _guard


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency: an active admin's User row.  403 for everyone else."""
    if RANK.get(user.role, 0) < RANK["admin"]:
        raise Forbidden("Forbidden", "Admin access required")
    return user

