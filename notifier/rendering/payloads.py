"""Payload models for each notification kind.

Payloads arrive from the message bus in camelCase (``firstName``,
``otpCode``); every model accepts both that form and the snake_case field
names. Validated payloads are stored in snake_case.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class NotificationPayload(BaseModel):
    """Base class for kind payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class VerificationCodePayload(NotificationPayload):
    """One-time code sent for sign-in or account verification."""

    otp_code: str = Field(..., min_length=4, max_length=12)
    purpose: str = Field("account verification", min_length=1)
    expiry_minutes: int = Field(10, ge=1, le=1440)

    @field_validator("otp_code")
    @classmethod
    def code_is_alphanumeric(cls, v: str) -> str:
        if not v.isalnum():
            raise ValueError("otp_code must be alphanumeric")
        return v


class WelcomePayload(NotificationPayload):
    first_name: str = Field("User", min_length=1)
    last_name: str = ""


class CredentialIssuePayload(NotificationPayload):
    """Initial credentials for an account created by an administrator."""

    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    temporary_password: str = Field(..., min_length=1)
    role: Optional[str] = None
    login_url: Optional[str] = None


class PasswordResetPayload(NotificationPayload):
    """Temporary password issued after a reset."""

    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    temporary_password: str = Field(..., min_length=1)
    login_url: Optional[str] = None
