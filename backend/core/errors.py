# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Error taxonomy shared by every service.

Each error is an ``HTTPException`` so FastAPI renders it without extra
plumbing.  The body is always ``{"detail": {"code": ..., "message": ...}}``
and ``code`` is the stable value clients switch on.

Families
--------
ValidationFailed       400  malformed input, rejected before storage
AuthenticationFailed   401  always generic (InvalidCredentials, InvalidSession, NoToken)
Forbidden              403  authenticated but not allowed
NotFound               404
Conflict               409  duplicate email / phone
StateViolation         400  business-rule violation (MfaAlreadyEnabled, PasswordReuse, ...)
TokenReuseDetected     401  security signal; the session lineage is already revoked
TooManyRequests        429  rate limit exceeded; carries Retry-After
"""

from fastapi import HTTPException, status


class AuthError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, code: str, message: str, status_code: int | None = None):
        self.code = code
        self.message = message
        super().__init__(
            status_code=status_code or type(self).status_code,
            detail={"code": code, "message": message},
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r})"


class ValidationFailed(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationFailed(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(AuthError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(AuthError):
    status_code = status.HTTP_409_CONFLICT


class StateViolation(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST


class TokenReuseDetected(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self):
        super().__init__("TokenReuse", "Token reuse detected")


class TooManyRequests(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int):
        super().__init__("RateLimited", "Too many requests, try again later")
        self.headers = {"Retry-After": str(retry_after)}


# Frequently raised instances are built through small factories so the
# code/message pairs live in one place.


def invalid_credentials() -> AuthenticationFailed:
    return AuthenticationFailed("InvalidCredentials", "Invalid credentials")


def invalid_session() -> AuthenticationFailed:
    return AuthenticationFailed("InvalidSession", "Invalid session")


def no_token() -> AuthenticationFailed:
    return AuthenticationFailed("NoToken", "Authentication required")


def invalid_challenge() -> StateViolation:
    return StateViolation("InvalidChallenge", "Invalid challenge")


def challenge_expired() -> StateViolation:
    return StateViolation("ChallengeExpired", "Challenge expired")


def invalid_code() -> StateViolation:
    return StateViolation("InvalidCode", "Invalid 2FA or backup code")


def invalid_token() -> ValidationFailed:
    return ValidationFailed("InvalidToken", "Invalid or expired token")


def password_reuse() -> StateViolation:
    return StateViolation("PasswordReuse", "New password must be different from the current password")


def user_not_found() -> NotFound:
    return NotFound("UserNotFound", "User not found")
