"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Field-level policy (password strength, language codes, display name length)
is enforced by the domain so every caller gets the same error list; the
models here only check shape.
"""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from portal_auth.domain.ports import Region


class RequestSignupRequest(BaseModel):
    """Request model for starting a signup."""

    email: EmailStr
    home_region: Region | None = Field(
        default=None, description="Region that will hold the account (defaults to this deployment)"
    )


class RequestSignupResponse(BaseModel):
    """Response model for an issued signup token."""

    message: str
    expires_at: datetime


class CompleteSignupRequest(BaseModel):
    """Request model for completing a signup with the emailed token."""

    signup_token: str = Field(..., description="64-hex token from the verification email")
    password: str
    display_name: str
    preferred_language: str = "en-US"


class CompleteSignupResponse(BaseModel):
    """Response model for a created account with its first session."""

    session_token: str
    handle: str


class LoginRequest(BaseModel):
    """Request model for the password step of login."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    tfa_token: str


class TFARequest(BaseModel):
    """Request model for the second login factor."""

    tfa_token: str
    tfa_code: str = Field(..., description="6-digit code from the login email")
    remember_me: bool = False


class SessionResponse(BaseModel):
    session_token: str
    preferred_language: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class RequestPasswordResetRequest(BaseModel):
    email: EmailStr


class CompletePasswordResetRequest(BaseModel):
    reset_token: str
    new_password: str


class RequestEmailChangeRequest(BaseModel):
    new_email: EmailStr


class CompleteEmailChangeRequest(BaseModel):
    verification_token: str


class SetLanguageRequest(BaseModel):
    language: str


class MyInfoResponse(BaseModel):
    """Profile of the session's user."""

    handle: str
    email: str
    display_name: str
    preferred_language: str
    home_region: Region
    roles: list[str]


class RegionsResponse(BaseModel):
    regions: list[Region]


class SupportedLanguagesResponse(BaseModel):
    languages: list[str]
    default: str


class UserStatusRequest(BaseModel):
    """Request model for enabling or disabling another user of the portal."""

    email: EmailStr


class MessageResponse(BaseModel):
    message: str


class FieldErrorModel(BaseModel):
    field: str
    message: str


class ValidationErrorResponse(BaseModel):
    """Error response listing every rejected field."""

    detail: str = "Validation failed"
    errors: list[FieldErrorModel]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
