# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
MFA endpoints – TOTP enrollment, backup codes, disablement and the
second step of an MFA login.

Only ``/login/verify`` is reachable without authentication; the challenge
id it consumes was handed out by ``POST /auth/login`` after the password
check.  It is rate limited per client IP, and each challenge only absorbs
a few wrong codes before it is burned.
"""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from auth.cookies import clear_refresh_cookie, clear_trust_cookie
from auth.router import grant_response
from auth.schemas import LoginResponse, OkResponse
from core.authz import get_current_user
from core.ratelimit import limit_mfa_verify
from core.security import RequestContext, get_request_context
from database import get_db
from mfa.schemas import (
    BackupCodesResponse,
    DisableRequest,
    LoginVerifyRequest,
    MfaStatusResponse,
    SetupStartResponse,
    SetupVerifyRequest,
)
from models.user import User
from services import mfa

router = APIRouter(prefix="/auth/mfa", tags=["mfa"])


@router.get("/status", response_model=MfaStatusResponse)
def mfa_status(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return MfaStatusResponse(
        enabled=bool(current_user.mfa_enabled),
        backup_codes_remaining=mfa.remaining_backup_codes(db, current_user.id) if current_user.mfa_enabled else 0,
    )


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


@router.post("/setup/start", response_model=SetupStartResponse)
def setup_start(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Begin enrollment.  The secret is shown once, for the authenticator app."""
    started = mfa.start_setup(db, current_user.id)
    return SetupStartResponse(
        challenge_id=started.challenge_id,
        secret_base32=started.secret_base32,
        otpauth_url=started.otpauth_url,
        expires_at=started.expires_at,
    )


@router.post("/setup/verify", response_model=BackupCodesResponse)
def setup_verify(
    body: SetupVerifyRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Finish enrollment.  The backup codes in the response are never shown again."""
    codes = mfa.verify_setup(db, current_user.id, body.challenge_id, body.code)
    clear_trust_cookie(response)
    return BackupCodesResponse(backup_codes=codes)


# ---------------------------------------------------------------------------
# Disable / regenerate
# ---------------------------------------------------------------------------


@router.post("/disable", response_model=OkResponse)
def disable(
    body: DisableRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Needs the password and a TOTP or backup code.  Signs out everywhere."""
    mfa.disable(db, current_user.id, body.password, body.code)
    clear_refresh_cookie(response)
    clear_trust_cookie(response)
    return OkResponse()


@router.post("/backup-codes/regen", response_model=BackupCodesResponse)
def regenerate_backup_codes(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return BackupCodesResponse(backup_codes=mfa.regenerate_backup_codes(db, current_user.id))


# ---------------------------------------------------------------------------
# POST /auth/mfa/login/verify
# ---------------------------------------------------------------------------


@router.post("/login/verify", response_model=LoginResponse)
def login_verify(
    body: LoginVerifyRequest,
    response: Response,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    limit_mfa_verify(ctx.ip)
    grant = mfa.verify_login_challenge(db, body.challenge_id, body.code, body.remember_device, ctx)
    return grant_response(response, grant)
