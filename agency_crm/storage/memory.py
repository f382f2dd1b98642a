"""In-process credential store for development and tests."""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

import structlog

from agency_crm.errors import ConflictError
from agency_crm.models.account import Account, ClientMetadata, RefreshTokenRecord
from agency_crm.storage.base import CredentialStore, check_update_fields, hash_token

logger = structlog.get_logger(__name__)


class MemoryCredentialStore(CredentialStore):
    """Dictionary-backed store.

    Every method mutates state under a lock and without awaiting, so each
    call is atomic with respect to both the event loop and worker threads.
    Returned models are copies; callers cannot mutate stored state.
    """

    def __init__(self) -> None:
        self.accounts: Dict[UUID, Account] = {}
        self.refresh_tokens: Dict[str, RefreshTokenRecord] = {}
        self._lock = threading.Lock()

    def _by_email(self, email: str) -> Optional[Account]:
        email = email.lower()
        for account in self.accounts.values():
            if account.email.lower() == email:
                return account
        return None

    @staticmethod
    def _copy(model):
        return model.model_copy() if model is not None else None

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        with self._lock:
            return self._copy(self._by_email(email))

    async def find_account_by_id(self, account_id: UUID) -> Optional[Account]:
        with self._lock:
            return self._copy(self.accounts.get(account_id))

    async def find_account_by_reset_token(
        self, token_hash: str, now: datetime
    ) -> Optional[Account]:
        with self._lock:
            for account in self.accounts.values():
                if (
                    account.password_reset_token == token_hash
                    and account.password_reset_expires is not None
                    and account.password_reset_expires > now
                ):
                    return self._copy(account)
        return None

    async def create_account(
        self,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        display_name: str,
        role: str,
    ) -> Account:
        now = datetime.now(timezone.utc)
        with self._lock:
            if self._by_email(email) is not None:
                raise ConflictError("Email already registered")
            account = Account(
                id=uuid4(),
                email=email.lower(),
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                display_name=display_name,
                role=role,
                created_at=now,
                updated_at=now,
            )
            self.accounts[account.id] = account
            return self._copy(account)

    async def update_account(
        self, account_id: UUID, **fields: Any
    ) -> Optional[Account]:
        check_update_fields(fields)
        with self._lock:
            account = self.accounts.get(account_id)
            if account is None:
                return None
            if fields:
                account = account.model_copy(
                    update={**fields, "updated_at": datetime.now(timezone.utc)}
                )
                self.accounts[account_id] = account
            return self._copy(account)

    async def record_failed_login(
        self, account_id: UUID, threshold: int, locked_until: datetime
    ) -> Optional[Account]:
        with self._lock:
            account = self.accounts.get(account_id)
            if account is None:
                return None
            attempts = account.failed_login_attempts + 1
            account = account.model_copy(
                update={
                    "failed_login_attempts": attempts,
                    "locked_until": locked_until if attempts >= threshold else None,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self.accounts[account_id] = account
            return self._copy(account)

    async def create_refresh_token(
        self,
        account_id: UUID,
        token: str,
        expires_at: datetime,
        client: ClientMetadata,
    ) -> RefreshTokenRecord:
        record = RefreshTokenRecord(
            id=uuid4(),
            user_id=account_id,
            token_hash=hash_token(token),
            expires_at=expires_at,
            user_agent=client.user_agent,
            ip_address=client.ip_address,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            if record.token_hash in self.refresh_tokens:
                raise ConflictError("Refresh token already stored")
            self.refresh_tokens[record.token_hash] = record
        return self._copy(record)

    async def find_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        with self._lock:
            return self._copy(self.refresh_tokens.get(hash_token(token)))

    async def revoke_refresh_token(
        self, token: str, replaced_by: Optional[UUID] = None
    ) -> bool:
        token_hash = hash_token(token)
        with self._lock:
            record = self.refresh_tokens.get(token_hash)
            if record is None or record.is_revoked:
                return False
            self.refresh_tokens[token_hash] = record.model_copy(
                update={
                    "is_revoked": True,
                    "revoked_at": datetime.now(timezone.utc),
                    "replaced_by": replaced_by,
                }
            )
        return True

    async def revoke_all_refresh_tokens(self, account_id: UUID) -> int:
        now = datetime.now(timezone.utc)
        revoked = 0
        with self._lock:
            for token_hash, record in self.refresh_tokens.items():
                if record.user_id == account_id and not record.is_revoked:
                    self.refresh_tokens[token_hash] = record.model_copy(
                        update={"is_revoked": True, "revoked_at": now}
                    )
                    revoked += 1
        return revoked
