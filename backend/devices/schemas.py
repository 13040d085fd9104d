# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the trusted-device endpoints."""

from typing import List, Optional

from pydantic import Field

from auth.schemas import ApiModel


class RevokeDeviceRequest(ApiModel):
    id: str = Field(min_length=1, max_length=64)


class TrustedDeviceRow(ApiModel):
    id: str
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    created_at: Optional[str] = None
    last_used_at: Optional[str] = None
    expires_at: Optional[str] = None
    revoked_at: Optional[str] = None
    current: bool = False


class TrustedDeviceListResponse(ApiModel):
    items: List[TrustedDeviceRow]


class RevokeAllResponse(ApiModel):
    ok: bool = True
    revoked: int
