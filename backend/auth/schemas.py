# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Pydantic request / response models for the auth endpoints.

JSON on the wire is camelCase (``fullName``, ``challengeId``); requests may
also use the snake_case field names.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


EmailAddress = Annotated[EmailStr, Field(max_length=191), AfterValidator(str.lower)]


# -- Requests --------------------------------------------------------------


class RegisterRequest(ApiModel):
    full_name: str = Field(min_length=2, max_length=191)
    email: EmailAddress
    phone: Optional[str] = Field(default=None, min_length=7, max_length=32)
    password: str = Field(min_length=8, max_length=128)


class LoginRequest(ApiModel):
    email: EmailAddress
    password: str = Field(min_length=8, max_length=128)
    remember: bool = False


class ChangePasswordRequest(ApiModel):
    old_password: str = Field(min_length=8, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class UpdateProfileRequest(ApiModel):
    full_name: str = Field(min_length=2, max_length=191)
    phone: Optional[str] = Field(default=None, min_length=7, max_length=32)


class TokenRequest(ApiModel):
    token: str = Field(min_length=32, max_length=256)


class EmailRequest(ApiModel):
    email: EmailAddress


class ResetPasswordRequest(ApiModel):
    token: str = Field(min_length=32, max_length=256)
    password: str = Field(min_length=8, max_length=128)


# -- Responses -------------------------------------------------------------


class OkResponse(ApiModel):
    ok: bool = True


class RegisterResponse(ApiModel):
    user_id: int


class UserInfoResponse(ApiModel):
    id: int
    full_name: str
    email: str
    phone: Optional[str] = None
    role: str
    status: str
    mfa_enabled: bool
    email_verified_at: Optional[datetime] = None


class LoginResponse(ApiModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user: UserInfoResponse


class MfaChallengeResponse(ApiModel):
    mfa_required: Literal[True] = True
    challenge_id: str
    method: str
    expires_at: datetime


class RefreshResponse(ApiModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
