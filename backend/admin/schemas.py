# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the admin endpoints."""

from datetime import datetime
from typing import List, Optional

from auth.schemas import ApiModel


# -- Requests --------------------------------------------------------------


class FingerprintPolicyRequest(ApiModel):
    enforce_all: bool


# -- Responses -------------------------------------------------------------


class FingerprintPolicyResponse(ApiModel):
    enforce_all: bool
    enforce_admins_always: bool = True


class UserRow(ApiModel):
    id: int
    full_name: str
    email: str
    role: str
    status: str
    mfa_enabled: bool
    email_verified_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: datetime


class UserListResponse(ApiModel):
    users: List[UserRow]


# -- Audit log responses ---------------------------------------------------


class AuditLogRow(ApiModel):
    id: int
    actor_email: Optional[str] = None       # resolved from actor_id join
    target_email: Optional[str] = None      # resolved from target_user_id join
    action: str
    detail: Optional[str] = None
    request_ip: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(ApiModel):
    logs: List[AuditLogRow]
