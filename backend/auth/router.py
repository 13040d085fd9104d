# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Auth endpoints – registration, login, refresh, logout, password and email
flows, the caller's own profile, and Google sign-in.

Security notes
--------------
* Login returns the *same* error whether the email doesn't exist or the
  password is wrong.  This prevents user-enumeration attacks.
* Login never hands out tokens to an MFA user without a second factor or a
  trusted device; it answers with a challenge id instead.
* A refresh that fails (invalid session or token reuse) also clears the
  refresh cookie so the browser stops presenting it.
* forgot / verify-email/resend always answer ``{"ok": true}``.
* login, forgot and resend are rate limited per client IP and per email
  (429 ``RateLimited``).
"""

from typing import Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from auth.cookies import (
    clear_refresh_cookie,
    clear_trust_cookie,
    set_refresh_cookie,
    set_trust_cookie,
)
from auth.schemas import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MfaChallengeResponse,
    OkResponse,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenRequest,
    UpdateProfileRequest,
    UserInfoResponse,
)
from core.authz import get_current_user
from core.config import settings
from core.errors import AuthError, AuthenticationFailed
from core.logger import logger
from core.ratelimit import limit_email_link, limit_login
from core.runtime import RuntimeFlags, get_runtime_flags
from core.security import RequestContext, get_request_context
from database import get_db
from models.user import User
from services import credentials, oauth, sessions
from services.mfa import LoginChallenge, SessionGrant

router = APIRouter(prefix="/auth", tags=["auth"])


def grant_response(response: Response, grant: SessionGrant) -> LoginResponse:
    """Set the cookies for a successful sign-in and build the body."""
    set_refresh_cookie(response, grant.session)
    if grant.device is not None:
        set_trust_cookie(response, grant.device)
    return LoginResponse(
        access_token=grant.session.access_token,
        user=UserInfoResponse.model_validate(grant.user),
    )


def challenge_response(challenge: LoginChallenge) -> MfaChallengeResponse:
    return MfaChallengeResponse(
        challenge_id=challenge.challenge_id,
        method=challenge.method,
        expires_at=challenge.expires_at,
    )


# ---------------------------------------------------------------------------
# POST /auth/register
# ---------------------------------------------------------------------------


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account.  A verification link is emailed; login waits for it."""
    user = credentials.register(db, body.full_name, body.email, body.password, phone=body.phone)
    return RegisterResponse(user_id=user.id)


# ---------------------------------------------------------------------------
# POST /auth/login
# ---------------------------------------------------------------------------


@router.post("/login", response_model=Union[LoginResponse, MfaChallengeResponse])
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    flags: RuntimeFlags = Depends(get_runtime_flags),
):
    limit_login(ctx.ip, body.email)
    result = credentials.login(
        db,
        body.email,
        body.password,
        body.remember,
        ctx,
        request.cookies.get(settings.trusted_cookie_name),
        flags,
        defer=background_tasks.add_task,
    )
    if isinstance(result, LoginChallenge):
        return challenge_response(result)
    return grant_response(response, result)


# ---------------------------------------------------------------------------
# POST /auth/refresh
# ---------------------------------------------------------------------------


@router.post("/refresh", response_model=RefreshResponse)
def refresh(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Rotate the refresh cookie and mint a new access token."""
    token = request.cookies.get(settings.refresh_cookie_name)
    if not token:
        raise AuthenticationFailed("NoRefresh", "No refresh token")
    try:
        issued = sessions.rotate(db, token, ctx)
    except AuthError as exc:
        failed = JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
        clear_refresh_cookie(failed)
        return failed
    set_refresh_cookie(response, issued)
    return RefreshResponse(access_token=issued.access_token)


# ---------------------------------------------------------------------------
# POST /auth/logout  /  POST /auth/logout-all
# ---------------------------------------------------------------------------


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(request: Request, db: Session = Depends(get_db)):
    credentials.logout(db, request.cookies.get(settings.refresh_cookie_name))
    resp = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(resp)
    return resp


@router.post("/logout-all", status_code=status.HTTP_204_NO_CONTENT)
def logout_all(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Sign out everywhere: every session and every trusted device."""
    credentials.logout_all(db, current_user.id, ip=ctx.ip)
    resp = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(resp)
    clear_trust_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# GET /auth/me  /  POST /auth/me/update
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserInfoResponse)
def me(current_user: User = Depends(get_current_user)):
    """Return the authenticated user's public profile (no secrets)."""
    return current_user


@router.post("/me/update", response_model=UserInfoResponse)
def update_me(
    body: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return credentials.update_user_profile(db, current_user.id, body.full_name, phone=body.phone)


# ---------------------------------------------------------------------------
# POST /auth/change-password
# ---------------------------------------------------------------------------


@router.post("/change-password", response_model=OkResponse)
def change_password(
    body: ChangePasswordRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Change the authenticated user's password.  Every session and trusted
    device is revoked, this one included.
    """
    credentials.change_password(db, current_user.id, body.old_password, body.new_password)
    clear_refresh_cookie(response)
    clear_trust_cookie(response)
    return OkResponse()


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/verify-email", response_model=OkResponse)
def verify_email(body: TokenRequest, db: Session = Depends(get_db)):
    credentials.verify_email(db, body.token)
    return OkResponse()


@router.post("/verify-email/resend", response_model=OkResponse)
def resend_verification(
    body: EmailRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    limit_email_link("resend", ctx.ip, body.email)
    credentials.resend_verification(db, body.email)
    return OkResponse()


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/forgot", response_model=OkResponse)
def forgot_password(
    body: EmailRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    limit_email_link("forgot", ctx.ip, body.email)
    credentials.request_password_reset(db, body.email)
    return OkResponse()


@router.post("/reset", response_model=OkResponse)
def reset_password(body: ResetPasswordRequest, response: Response, db: Session = Depends(get_db)):
    credentials.reset_password(db, body.token, body.password)
    clear_refresh_cookie(response)
    clear_trust_cookie(response)
    return OkResponse()


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


def _callback_uri(request: Request) -> str:
    return str(request.url_for("google_callback"))


@router.get("/google/start")
def google_start(request: Request, next: Optional[str] = None, remember: Optional[str] = None):
    if not oauth.is_configured():
        raise AuthError("OAuthNotConfigured", "Google sign-in is not configured", status_code=503)
    state = oauth.new_state(next, remember in ("1", "true"))
    return RedirectResponse(oauth.authorize_url(_callback_uri(request), state), status_code=status.HTTP_302_FOUND)


@router.get("/google/callback", name="google_callback")
def google_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    code: str = "",
    state: str = "",
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    flags: RuntimeFlags = Depends(get_runtime_flags),
):
    parsed = oauth.verify_state(state)
    if not code or parsed is None:
        raise oauth.OAuthError("Invalid OAuth state")

    claims = oauth.fetch_identity(code, _callback_uri(request), parsed)
    user = oauth.resolve_user(db, claims)
    if not user.is_active:
        return RedirectResponse(f"{settings.frontend_base_url}/signin?error=AccountDisabled", status_code=302)

    result = credentials.complete_login(
        db,
        user,
        parsed.remember,
        ctx,
        request.cookies.get(settings.trusted_cookie_name),
        flags,
        defer=background_tasks.add_task,
        method="google",
    )
    if isinstance(result, LoginChallenge):
        logger.info("Google sign-in needs MFA user_id=%s", user.id)
        return RedirectResponse(
            oauth.frontend_redirect(mfaChallengeId=result.challenge_id, next=parsed.next),
            status_code=status.HTTP_302_FOUND,
        )
    redirect = RedirectResponse(oauth.frontend_redirect(next=parsed.next), status_code=status.HTTP_302_FOUND)
    set_refresh_cookie(redirect, result.session)
    return redirect
