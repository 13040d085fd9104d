# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the MFA endpoints."""

from datetime import datetime

from pydantic import Field

from auth.schemas import ApiModel


# -- Requests --------------------------------------------------------------


class SetupVerifyRequest(ApiModel):
    challenge_id: str = Field(min_length=1, max_length=64)
    code: str = Field(pattern=r"^\d{6}$")


class DisableRequest(ApiModel):
    password: str = Field(min_length=8, max_length=128)
    code: str = Field(min_length=4, max_length=64)


class LoginVerifyRequest(ApiModel):
    challenge_id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=4, max_length=64)
    remember_device: bool = False


# -- Responses -------------------------------------------------------------


class SetupStartResponse(ApiModel):
    challenge_id: str
    secret_base32: str
    otpauth_url: str
    expires_at: datetime


class BackupCodesResponse(ApiModel):
    backup_codes: list[str]


class MfaStatusResponse(ApiModel):
    enabled: bool
    backup_codes_remaining: int
