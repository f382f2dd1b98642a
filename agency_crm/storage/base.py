"""Credential store contract shared by the Postgres and in-memory backends."""

import hashlib
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from agency_crm.models.account import Account, ClientMetadata, RefreshTokenRecord

# Columns update_account is allowed to touch
UPDATABLE_ACCOUNT_FIELDS = frozenset(
    {
        "password_hash",
        "first_name",
        "last_name",
        "display_name",
        "failed_login_attempts",
        "locked_until",
        "last_login_at",
        "password_reset_token",
        "password_reset_expires",
    }
)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store and look up opaque tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def check_update_fields(fields: dict[str, Any]) -> None:
    """Reject attempts to update columns outside the allowed set."""
    unknown = set(fields) - UPDATABLE_ACCOUNT_FIELDS
    if unknown:
        raise ValueError(f"Cannot update account fields: {sorted(unknown)}")


class CredentialStore(ABC):
    """Persistence for accounts and refresh tokens.

    Email lookups are case-insensitive. Refresh token arguments are raw
    values and stores only ever persist ``hash_token(value)``. Password reset
    tokens arrive already hashed, since they travel through
    ``update_account`` like any other column.
    """

    @abstractmethod
    async def find_account_by_email(self, email: str) -> Optional[Account]:
        ...

    @abstractmethod
    async def find_account_by_id(self, account_id: UUID) -> Optional[Account]:
        ...

    @abstractmethod
    async def find_account_by_reset_token(
        self, token_hash: str, now: datetime
    ) -> Optional[Account]:
        """Return the account holding this reset token hash, if not expired."""

    @abstractmethod
    async def create_account(
        self,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        display_name: str,
        role: str,
    ) -> Account:
        """Insert an account.

        Raises:
            ConflictError: If the email is already registered
        """

    @abstractmethod
    async def update_account(
        self, account_id: UUID, **fields: Any
    ) -> Optional[Account]:
        """Apply a partial update; returns None if the account is gone."""

    @abstractmethod
    async def record_failed_login(
        self, account_id: UUID, threshold: int, locked_until: datetime
    ) -> Optional[Account]:
        """Atomically increment the failure counter.

        When the incremented counter reaches ``threshold`` the account's
        ``locked_until`` is set to the given value, otherwise it is cleared.
        """

    @abstractmethod
    async def create_refresh_token(
        self,
        account_id: UUID,
        token: str,
        expires_at: datetime,
        client: ClientMetadata,
    ) -> RefreshTokenRecord:
        ...

    @abstractmethod
    async def find_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        ...

    @abstractmethod
    async def revoke_refresh_token(
        self, token: str, replaced_by: Optional[UUID] = None
    ) -> bool:
        """Revoke one token. Returns False if it was unknown or already revoked."""

    @abstractmethod
    async def revoke_all_refresh_tokens(self, account_id: UUID) -> int:
        """Revoke every live token owned by the account; returns the count."""

    async def health_check(self) -> bool:
        return True
