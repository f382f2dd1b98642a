"""FastAPI dependencies for authentication and authorization."""

from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from agency_crm.errors import ForbiddenError, UnauthorizedError
from agency_crm.models.account import Account, ClientMetadata, Role
from agency_crm.services.session_manager import SessionManager

# auto_error=False so a missing header is a 401 from our handler, not a 403
bearer_scheme = HTTPBearer(auto_error=False)

READ_ONLY_METHODS = {"GET", "HEAD", "OPTIONS"}


def get_session_manager(request: Request) -> SessionManager:
    """Return the process-wide SessionManager built during startup."""
    return request.app.state.session_manager


def get_client_metadata(request: Request) -> ClientMetadata:
    """Collect advisory client details recorded with new refresh tokens."""
    return ClientMetadata(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session_manager: SessionManager = Depends(get_session_manager),
) -> Account:
    """Extract and validate the current account from a Bearer access token.

    Raises:
        UnauthorizedError: If the header is missing, the token is invalid or
            expired, or the account is missing or deactivated
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing bearer token")

    return await session_manager.authenticate(credentials.credentials)


def require_roles(*roles: Role) -> Callable:
    """Build a dependency admitting only accounts with one of ``roles``.

    Usage:
        @router.get("/audit-logs", dependencies=[Depends(require_roles(Role.ADMIN))])
    """
    allowed = set(roles)

    async def _require_roles(
        current_account: Account = Depends(get_current_account),
    ) -> Account:
        if current_account.role not in allowed:
            raise ForbiddenError("Insufficient permissions")
        return current_account

    return _require_roles


async def require_write_access(
    request: Request,
    current_account: Account = Depends(get_current_account),
) -> Account:
    """Reject mutating requests from READONLY accounts.

    Raises:
        ForbiddenError: If a READONLY account sends a non-read method
    """
    if current_account.role == Role.READONLY and request.method not in READ_ONLY_METHODS:
        raise ForbiddenError("Read-only accounts cannot modify data")
    return current_account
