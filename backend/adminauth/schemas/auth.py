from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=128)


class InitiateLoginResponse(BaseModel):
    status: str
    challenge_id: str
    provisioning_uri: str | None = None
    expire_at: datetime


class OtpRequest(BaseModel):
    challenge_id: str = Field(..., min_length=1, max_length=128)
    # Format is checked by the TOTP validator so bad input still costs an attempt
    otp: str = Field(..., max_length=16)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    issued_at: datetime
    expires_at: datetime
    username: str


class CurrentAdminResponse(BaseModel):
    username: str
    roles: list[str]
    key_id: str
    expires_at: datetime | None = None


class ReloadKeysResponse(BaseModel):
    message: str
    active_key_id: str
    verification_key_ids: list[str]
    loaded_at: datetime


class ErrorResponse(BaseModel):
    code: str
    detail: str
