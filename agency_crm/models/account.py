"""Account and refresh token models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class Role(str, Enum):
    """Coarse-grained authorization tag consumed by downstream routers."""

    ADMIN = "ADMIN"
    AGENT = "AGENT"
    READONLY = "READONLY"


DEFAULT_ROLE = Role.AGENT


class Account(BaseModel):
    """A CRM user account including its security state."""

    id: UUID
    email: str
    password_hash: str
    first_name: str
    last_name: str
    display_name: str
    role: Role = DEFAULT_ROLE
    is_active: bool = True
    is_verified: bool = False
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class RefreshTokenRecord(BaseModel):
    """A persisted refresh token, keyed by the SHA-256 of its value."""

    id: UUID
    user_id: UUID
    token_hash: str
    expires_at: datetime
    is_revoked: bool = False
    revoked_at: Optional[datetime] = None
    replaced_by: Optional[UUID] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime

    def is_usable(self, now: datetime) -> bool:
        """True when the token is neither revoked nor past its expiry."""
        return not self.is_revoked and self.expires_at > now


class ClientMetadata(BaseModel):
    """Advisory information about the client that requested a session."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


class AccessClaims(BaseModel):
    """Verified claims carried by an access token."""

    account_id: UUID
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime
