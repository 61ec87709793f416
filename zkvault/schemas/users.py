from pydantic import BaseModel, Field, field_validator
from typing import Literal, Union
from datetime import datetime

from zkvault.core.config import (
    MIN_USERNAME_LENGTH, MAX_USERNAME_BYTES, MAX_SALT_BYTES, MAX_VERIFIER_BYTES
)


def check_max_bytes(value: str, limit: int, name: str) -> str:
    """Length caps are on the UTF-8 encoding, not on characters"""
    if len(value.encode("utf-8")) > limit:
        raise ValueError(f"{name} too long")
    return value


class SrpCredentials(BaseModel):
    srp_salt: str = Field(..., min_length=1)
    srp_verifier: str = Field(..., min_length=1)

    @field_validator("srp_salt")
    @classmethod
    def salt_length(cls, v: str) -> str:
        return check_max_bytes(v, MAX_SALT_BYTES, "Salt")

    @field_validator("srp_verifier")
    @classmethod
    def verifier_length(cls, v: str) -> str:
        return check_max_bytes(v, MAX_VERIFIER_BYTES, "Verifier")


class RegisterRequest(SrpCredentials):
    username: str = Field(..., min_length=MIN_USERNAME_LENGTH)

    @field_validator("username")
    @classmethod
    def username_length(cls, v: str) -> str:
        return check_max_bytes(v, MAX_USERNAME_BYTES, "Username")


class UpdateUsernameRequest(RegisterRequest):
    pass


class UpdatePasswordRequest(SrpCredentials):
    pass


class SrpChallengeRequest(BaseModel):
    username: str

    @field_validator("username")
    @classmethod
    def username_length(cls, v: str) -> str:
        return check_max_bytes(v, MAX_USERNAME_BYTES, "Username")


class SrpChallengeResponse(BaseModel):
    salt: str
    server_public_key: str


class LoginRequest(BaseModel):
    username: str
    client_public_key: str = Field(..., min_length=1)
    client_proof: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def username_length(cls, v: str) -> str:
        return check_max_bytes(v, MAX_USERNAME_BYTES, "Username")

    @field_validator("client_public_key", "client_proof")
    @classmethod
    def srp_value_length(cls, v: str) -> str:
        return check_max_bytes(v, MAX_VERIFIER_BYTES, "SRP value")


class SessionLoginResponse(BaseModel):
    """SRP succeeded and the account has no second factor"""
    server_proof: str
    token: str


class TwoFactorLoginResponse(BaseModel):
    """SRP succeeded; finish with /auth/verify-2fa"""
    server_proof: str
    requires_2fa: Literal[True] = True
    temp_token: str


LoginResponse = Union[SessionLoginResponse, TwoFactorLoginResponse]


class Verify2FARequest(BaseModel):
    temp_token: str = Field(..., max_length=128)
    totp_code: str = Field(pattern=r"^[0-9]{6}$")


class RegisterResponse(BaseModel):
    message: str
    token: str


class TokenResponse(BaseModel):
    token: str


class MessageResponse(BaseModel):
    message: str


class MeResponse(BaseModel):
    id: int
    username: str
    has_2fa: bool


class TwoFactorSetupResponse(BaseModel):
    secret: str
    qr_code_url: str


class TwoFactorEnableRequest(BaseModel):
    secret: str = Field(..., max_length=128)
    token: str = Field(..., max_length=16)


class TwoFactorDisableRequest(BaseModel):
    token: str = Field(..., max_length=16)


class SessionInfo(BaseModel):
    id: int
    device_name: str
    ip_address: str
    created_at: datetime
    expires_at: datetime
    is_current: bool


class SessionsDeletedResponse(BaseModel):
    message: str
    count: int


