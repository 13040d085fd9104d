# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Trusted-device endpoints – list, revoke one, revoke all, untrust this
browser.  Revoking the device behind the caller's own cookie also clears
that cookie.
"""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from auth.cookies import clear_trust_cookie
from auth.schemas import OkResponse
from core.authz import get_current_user
from core.config import settings
from database import get_db
from devices.schemas import (
    RevokeAllResponse,
    RevokeDeviceRequest,
    TrustedDeviceListResponse,
    TrustedDeviceRow,
)
from models.user import User
from services import devices

router = APIRouter(prefix="/auth/trusted-devices", tags=["trusted-devices"])


@router.get("", response_model=TrustedDeviceListResponse)
def list_trusted_devices(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = devices.list_devices(db, current_user.id, request.cookies.get(settings.trusted_cookie_name))
    return TrustedDeviceListResponse(items=[TrustedDeviceRow(**row) for row in rows])


@router.post("/revoke", response_model=OkResponse)
def revoke_trusted_device(
    body: RevokeDeviceRequest,
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    devices.revoke(db, current_user.id, body.id)
    if devices.current_device_id(request.cookies.get(settings.trusted_cookie_name)) == body.id:
        clear_trust_cookie(response)
    return OkResponse()


@router.post("/revoke-all", response_model=RevokeAllResponse)
def revoke_all_trusted_devices(
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    count = devices.revoke_all(db, current_user.id)
    clear_trust_cookie(response)
    return RevokeAllResponse(revoked=count)


@router.post("/untrust-current", response_model=OkResponse)
def untrust_current_device(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    devices.untrust_current(db, request.cookies.get(settings.trusted_cookie_name), current_user.id)
    clear_trust_cookie(response)
    return OkResponse()
