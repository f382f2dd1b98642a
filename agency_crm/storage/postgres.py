"""asyncpg-backed credential store."""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from agency_crm.database import get_pool, health_check
from agency_crm.errors import ConflictError
from agency_crm.models.account import Account, ClientMetadata, RefreshTokenRecord
from agency_crm.storage.base import CredentialStore, check_update_fields, hash_token

logger = structlog.get_logger(__name__)

ACCOUNT_COLUMNS = """
    id, email, password_hash, first_name, last_name, display_name, role,
    is_active, is_verified, failed_login_attempts, locked_until, last_login_at,
    password_reset_token, password_reset_expires, created_at, updated_at
"""

REFRESH_TOKEN_COLUMNS = """
    id, user_id, token_hash, expires_at, is_revoked, revoked_at, replaced_by,
    user_agent, ip_address, created_at
"""


def _account_from_row(row) -> Optional[Account]:
    if row is None:
        return None
    return Account(**dict(row))


def _refresh_token_from_row(row) -> Optional[RefreshTokenRecord]:
    if row is None:
        return None
    return RefreshTokenRecord(**dict(row))


def _rows_affected(status: str) -> int:
    """Parse the row count out of an asyncpg status string like 'UPDATE 3'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PostgresCredentialStore(CredentialStore):
    """Credential store over the ``users`` and ``refresh_tokens`` tables."""

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {ACCOUNT_COLUMNS}
                FROM users
                WHERE LOWER(email) = LOWER($1)
                """,
                email,
            )

        return _account_from_row(row)

    async def find_account_by_id(self, account_id: UUID) -> Optional[Account]:
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {ACCOUNT_COLUMNS}
                FROM users
                WHERE id = $1
                """,
                account_id,
            )

        return _account_from_row(row)

    async def find_account_by_reset_token(
        self, token_hash: str, now: datetime
    ) -> Optional[Account]:
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {ACCOUNT_COLUMNS}
                FROM users
                WHERE password_reset_token = $1 AND password_reset_expires > $2
                """,
                token_hash,
                now,
            )

        return _account_from_row(row)

    async def create_account(
        self,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        display_name: str,
        role: str,
    ) -> Account:
        account_id = uuid4()
        now = datetime.now(timezone.utc)

        pool = await get_pool()

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users (
                        id, email, password_hash, first_name, last_name,
                        display_name, role, created_at, updated_at
                    )
                    VALUES ($1, LOWER($2), $3, $4, $5, $6, $7, $8, $8)
                    RETURNING {ACCOUNT_COLUMNS}
                    """,
                    account_id,
                    email,
                    password_hash,
                    first_name,
                    last_name,
                    display_name,
                    role,
                    now,
                )
        except asyncpg.UniqueViolationError:
            raise ConflictError("Email already registered")

        return _account_from_row(row)

    async def update_account(
        self, account_id: UUID, **fields: Any
    ) -> Optional[Account]:
        check_update_fields(fields)

        if not fields:
            return await self.find_account_by_id(account_id)

        set_clauses = []
        params: list[Any] = []
        for param_idx, (column, value) in enumerate(fields.items(), start=1):
            set_clauses.append(f"{column} = ${param_idx}")
            params.append(value)

        set_clauses.append(f"updated_at = ${len(params) + 1}")
        params.append(datetime.now(timezone.utc))
        params.append(account_id)

        query = f"""
            UPDATE users
            SET {', '.join(set_clauses)}
            WHERE id = ${len(params)}
            RETURNING {ACCOUNT_COLUMNS}
        """

        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)

        if row is None:
            logger.warning("account_update_not_found", account_id=str(account_id))
            return None

        logger.debug(
            "account_updated",
            account_id=str(account_id),
            fields_updated=sorted(fields),
        )
        return _account_from_row(row)

    async def record_failed_login(
        self, account_id: UUID, threshold: int, locked_until: datetime
    ) -> Optional[Account]:
        # Single statement so concurrent failures cannot lose an increment
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE users
                SET failed_login_attempts = failed_login_attempts + 1,
                    locked_until = CASE
                        WHEN failed_login_attempts + 1 >= $2 THEN $3
                        ELSE NULL
                    END,
                    updated_at = NOW()
                WHERE id = $1
                RETURNING {ACCOUNT_COLUMNS}
                """,
                account_id,
                threshold,
                locked_until,
            )

        return _account_from_row(row)

    async def create_refresh_token(
        self,
        account_id: UUID,
        token: str,
        expires_at: datetime,
        client: ClientMetadata,
    ) -> RefreshTokenRecord:
        token_id = uuid4()
        now = datetime.now(timezone.utc)

        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO refresh_tokens (
                    id, user_id, token_hash, expires_at, user_agent, ip_address, created_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING {REFRESH_TOKEN_COLUMNS}
                """,
                token_id,
                account_id,
                hash_token(token),
                expires_at,
                client.user_agent,
                client.ip_address,
                now,
            )

        return _refresh_token_from_row(row)

    async def find_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        pool = await get_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {REFRESH_TOKEN_COLUMNS}
                FROM refresh_tokens
                WHERE token_hash = $1
                """,
                hash_token(token),
            )

        return _refresh_token_from_row(row)

    async def revoke_refresh_token(
        self, token: str, replaced_by: Optional[UUID] = None
    ) -> bool:
        now = datetime.now(timezone.utc)

        pool = await get_pool()

        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE refresh_tokens
                SET is_revoked = TRUE, revoked_at = $1, replaced_by = $2
                WHERE token_hash = $3 AND is_revoked = FALSE
                """,
                now,
                replaced_by,
                hash_token(token),
            )

        return _rows_affected(result) > 0

    async def revoke_all_refresh_tokens(self, account_id: UUID) -> int:
        now = datetime.now(timezone.utc)

        pool = await get_pool()

        async with pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE refresh_tokens
                SET is_revoked = TRUE, revoked_at = $1
                WHERE user_id = $2 AND is_revoked = FALSE
                """,
                now,
                account_id,
            )

        return _rows_affected(result)

    async def health_check(self) -> bool:
        return await health_check()
