"""Auth request and response models with validation.

JSON bodies use camelCase (the SPA's convention); snake_case field names are
accepted on input as well.
"""

import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agency_crm.models.account import Account, Role

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email address")
    return v


def _check_new_password(v: str) -> str:
    if not v.strip():
        raise ValueError("Password cannot be empty or whitespace only")
    if len(v.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(
            f"Password must not exceed {BCRYPT_MAX_PASSWORD_BYTES} bytes"
        )
    return v


class CamelModel(BaseModel):
    """Base model serializing to camelCase and accepting either case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    """New account registration.

    Attributes:
        email: Unique email address, compared case-insensitively
        password: Plain-text password (8-72 bytes)
        first_name: Given name
        last_name: Family name
    """

    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def email_valid(cls, v: str) -> str:
        """Lowercase and sanity-check the email address."""
        return _normalize_email(v)

    @field_validator("password")
    @classmethod
    def password_valid(cls, v: str) -> str:
        """Ensure password is non-blank and fits bcrypt's input limit."""
        return _check_new_password(v)


class LoginRequest(CamelModel):
    """Login credentials for authentication.

    No password policy is applied here: a wrong password of any shape is a
    401, not a 400.
    """

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.strip().lower()


class AccountProfile(CamelModel):
    """Public account representation; never includes security state."""

    id: UUID
    email: str
    first_name: str
    last_name: str
    display_name: str
    role: Role
    is_active: bool
    is_verified: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountProfile":
        return cls(
            id=account.id,
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            display_name=account.display_name,
            role=account.role,
            is_active=account.is_active,
            is_verified=account.is_verified,
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )


class RegisterResponse(CamelModel):
    """Result of a successful registration."""

    user: AccountProfile
    message: str = "Registration successful"


class LoginResponse(CamelModel):
    """Successful authentication response with token pair.

    Attributes:
        user: Profile of the authenticated account
        access_token: Short-lived JWT for API access
        refresh_token: Long-lived token for obtaining new access tokens
        token_type: Always "bearer"
        expires_in: Access token lifetime in seconds
    """

    user: AccountProfile
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(ge=1, description="Access token lifetime in seconds")


class RefreshRequest(CamelModel):
    """Request to exchange a refresh token for a new access token."""

    refresh_token: str = Field(..., min_length=1)


class RefreshResponse(CamelModel):
    """New access token; refresh_token is only set when rotation is enabled."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(ge=1)
    refresh_token: Optional[str] = None


class LogoutRequest(CamelModel):
    """Logout body; a missing token is accepted and ignored."""

    refresh_token: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    """Password change for the authenticated account."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def new_password_valid(cls, v: str) -> str:
        return _check_new_password(v)


class ForgotPasswordRequest(CamelModel):
    """Request a password reset email."""

    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.strip().lower()


class ResetPasswordRequest(CamelModel):
    """Complete a password reset with the emailed token."""

    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)

    @field_validator("password")
    @classmethod
    def password_valid(cls, v: str) -> str:
        return _check_new_password(v)


class UpdateProfileRequest(CamelModel):
    """Profile update; only provided fields are changed."""

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class MessageResponse(CamelModel):
    """Plain acknowledgement."""

    message: str
