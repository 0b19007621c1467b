from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from pixelist.logging import get_correlation_id

_VALID_ERROR_CODES = {
    "unauthorized",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "server_error",
}


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with a stable ``code`` clients can branch on."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class LoginRequest(BaseModel):
    # Blank values reach the service so it can answer with its own message
    username: str = Field(default="", max_length=150)
    password: str = Field(default="", max_length=1024)


class LoginResponse(BaseModel):
    requires_two_factor: bool = False
    challenge_token: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None


class TwoFactorVerifyRequest(BaseModel):
    challenge_token: str = Field(default="", max_length=4096)
    code: str = Field(default="", max_length=10)

    @field_validator("code")
    @classmethod
    def _strip_code(cls, value: str) -> str:
        # Authenticator apps often display "123 456"
        return value.replace(" ", "").strip()


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., max_length=1024)
    new_password: str = Field(..., max_length=1024)


class TwoFactorSetupResponse(BaseModel):
    secret: str
    otpauth_uri: str
    qr_code: str = Field(..., description="PNG QR code as a data: URI")


class TwoFactorEnableRequest(BaseModel):
    code: str = Field(..., max_length=10)
    secret: str = Field(..., min_length=16, max_length=128)

    @field_validator("code")
    @classmethod
    def _strip_code(cls, value: str) -> str:
        return value.replace(" ", "").strip()


class TwoFactorStatusResponse(BaseModel):
    enabled: bool


class ProfileResponse(BaseModel):
    id: str
    username: str
    name: Optional[str] = None
    profile_pic: Optional[str] = None
    two_factor_enabled: bool = False


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    profile_pic: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("profile_pic")
    @classmethod
    def _validate_profile_pic(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("https://", "http://", "/")):
            raise ValueError("profile_pic must be an http(s) URL or a site-relative path")
        return value
