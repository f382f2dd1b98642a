"""Models package exports."""

from agency_crm.models.account import (
    AccessClaims,
    Account,
    ClientMetadata,
    RefreshTokenRecord,
    Role,
)
from agency_crm.models.auth import (
    AccountProfile,
    LoginResponse,
    RefreshResponse,
    RegisterResponse,
)

__all__ = [
    "AccessClaims",
    "Account",
    "AccountProfile",
    "ClientMetadata",
    "LoginResponse",
    "RefreshResponse",
    "RefreshTokenRecord",
    "RegisterResponse",
    "Role",
]
