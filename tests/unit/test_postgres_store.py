"""Unit tests for PostgresCredentialStore.

Tests query shape and row mapping with a mocked asyncpg pool.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import asyncpg
import pytest

from agency_crm.errors import ConflictError
from agency_crm.models.account import Account, ClientMetadata, RefreshTokenRecord, Role
from agency_crm.storage.base import hash_token
from agency_crm.storage.postgres import PostgresCredentialStore, _rows_affected


# ---------------------------------------------------------------------------
# asyncpg mock helpers
# ---------------------------------------------------------------------------

class MockConnection:
    """Mock asyncpg connection with common query methods."""

    def __init__(self):
        self.execute = AsyncMock()
        self.fetchrow = AsyncMock()
        self.fetchval = AsyncMock()
        self.fetch = AsyncMock()


class MockPool:
    """Mock asyncpg pool with acquire() context manager."""

    def __init__(self, conn: MockConnection):
        self._conn = conn

    def acquire(self):
        return _MockPoolAcquire(self._conn)


class _MockPoolAcquire:
    def __init__(self, conn):
        self._conn = conn

    async def __aenter__(self):
        return self._conn

    async def __aexit__(self, *args):
        pass


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_pool():
    """Patch get_pool and return the mocked connection."""
    conn = MockConnection()
    pool = MockPool(conn)
    with patch(
        "agency_crm.storage.postgres.get_pool", new_callable=AsyncMock
    ) as mock_get_pool:
        mock_get_pool.return_value = pool
        yield conn


@pytest.fixture
def pg_store():
    return PostgresCredentialStore()


def _make_account_row(account_id=None, email="alice@example.com", **overrides):
    """Create a dict that mimics an asyncpg Record for a users row."""
    now = datetime.now(timezone.utc)
    row = {
        "id": account_id or uuid4(),
        "email": email,
        "password_hash": "$2b$04$hashedpasswordhere0000000000000000000000000000000000",
        "first_name": "Alice",
        "last_name": "Agent",
        "display_name": "Alice Agent",
        "role": "AGENT",
        "is_active": True,
        "is_verified": False,
        "failed_login_attempts": 0,
        "locked_until": None,
        "last_login_at": None,
        "password_reset_token": None,
        "password_reset_expires": None,
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def _make_token_row(user_id=None, **overrides):
    now = datetime.now(timezone.utc)
    row = {
        "id": uuid4(),
        "user_id": user_id or uuid4(),
        "token_hash": "a" * 64,
        "expires_at": now + timedelta(days=7),
        "is_revoked": False,
        "revoked_at": None,
        "replaced_by": None,
        "user_agent": None,
        "ip_address": None,
        "created_at": now,
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

class TestFindAccount:
    @pytest.mark.asyncio
    async def test_by_email_is_case_insensitive_query(self, pg_store, mock_pool):
        mock_pool.fetchrow.return_value = _make_account_row()

        account = await pg_store.find_account_by_email("Alice@Example.com")

        assert isinstance(account, Account)
        assert account.role is Role.AGENT
        query, email = mock_pool.fetchrow.call_args.args
        assert "LOWER(email) = LOWER($1)" in query
        assert email == "Alice@Example.com"

    @pytest.mark.asyncio
    async def test_by_email_missing_returns_none(self, pg_store, mock_pool):
        mock_pool.fetchrow.return_value = None
        assert await pg_store.find_account_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_by_id(self, pg_store, mock_pool):
        account_id = uuid4()
        mock_pool.fetchrow.return_value = _make_account_row(account_id)

        account = await pg_store.find_account_by_id(account_id)

        assert account.id == account_id
        assert mock_pool.fetchrow.call_args.args[1] == account_id

    @pytest.mark.asyncio
    async def test_by_reset_token_filters_expiry(self, pg_store, mock_pool):
        now = datetime.now(timezone.utc)
        mock_pool.fetchrow.return_value = None

        await pg_store.find_account_by_reset_token("f" * 64, now)

        query, token_hash, passed_now = mock_pool.fetchrow.call_args.args
        assert "password_reset_expires > $2" in query
        assert token_hash == "f" * 64
        assert passed_now == now


class TestCreateAccount:
    @pytest.mark.asyncio
    async def test_inserts_and_returns_account(self, pg_store, mock_pool):
        mock_pool.fetchrow.return_value = _make_account_row()

        account = await pg_store.create_account(
            email="alice@example.com",
            password_hash="hash",
            first_name="Alice",
            last_name="Agent",
            display_name="Alice Agent",
            role="AGENT",
        )

        assert account.email == "alice@example.com"
        query = mock_pool.fetchrow.call_args.args[0]
        assert "INSERT INTO users" in query
        assert "RETURNING" in query

    @pytest.mark.asyncio
    async def test_unique_violation_maps_to_conflict(self, pg_store, mock_pool):
        mock_pool.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(ConflictError):
            await pg_store.create_account(
                email="alice@example.com",
                password_hash="hash",
                first_name="Alice",
                last_name="Agent",
                display_name="Alice Agent",
                role="AGENT",
            )


class TestUpdateAccount:
    @pytest.mark.asyncio
    async def test_builds_set_clause(self, pg_store, mock_pool):
        account_id = uuid4()
        mock_pool.fetchrow.return_value = _make_account_row(account_id, first_name="Alicia")

        account = await pg_store.update_account(account_id, first_name="Alicia", last_name="B")

        assert account.first_name == "Alicia"
        query, *params = mock_pool.fetchrow.call_args.args
        assert "first_name = $1" in query
        assert "last_name = $2" in query
        assert "updated_at = $3" in query
        assert "WHERE id = $4" in query
        assert params[0] == "Alicia"
        assert params[1] == "B"
        assert params[-1] == account_id

    @pytest.mark.asyncio
    async def test_missing_row_returns_none(self, pg_store, mock_pool):
        mock_pool.fetchrow.return_value = None
        assert await pg_store.update_account(uuid4(), first_name="X") is None

    @pytest.mark.asyncio
    async def test_rejects_unknown_column(self, pg_store, mock_pool):
        with pytest.raises(ValueError):
            await pg_store.update_account(uuid4(), role="ADMIN")
        mock_pool.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_update_reads_row(self, pg_store, mock_pool):
        account_id = uuid4()
        mock_pool.fetchrow.return_value = _make_account_row(account_id)

        await pg_store.update_account(account_id)

        assert "SELECT" in mock_pool.fetchrow.call_args.args[0]


class TestRecordFailedLogin:
    @pytest.mark.asyncio
    async def test_single_atomic_statement(self, pg_store, mock_pool):
        account_id = uuid4()
        locked_until = datetime.now(timezone.utc) + timedelta(minutes=30)
        mock_pool.fetchrow.return_value = _make_account_row(
            account_id, failed_login_attempts=5, locked_until=locked_until
        )

        account = await pg_store.record_failed_login(account_id, 5, locked_until)

        assert account.failed_login_attempts == 5
        assert mock_pool.fetchrow.call_count == 1
        query, *params = mock_pool.fetchrow.call_args.args
        assert "failed_login_attempts = failed_login_attempts + 1" in query
        assert "failed_login_attempts + 1 >= $2" in query
        assert params == [account_id, 5, locked_until]


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------

class TestRefreshTokens:
    @pytest.mark.asyncio
    async def test_create_stores_hash_only(self, pg_store, mock_pool):
        account_id = uuid4()
        mock_pool.fetchrow.return_value = _make_token_row(
            account_id, token_hash=hash_token("raw-token"), user_agent="ua"
        )

        record = await pg_store.create_refresh_token(
            account_id,
            "raw-token",
            datetime.now(timezone.utc) + timedelta(days=7),
            ClientMetadata(user_agent="ua", ip_address="127.0.0.1"),
        )

        assert isinstance(record, RefreshTokenRecord)
        params = mock_pool.fetchrow.call_args.args[1:]
        assert hash_token("raw-token") in params
        assert "raw-token" not in params

    @pytest.mark.asyncio
    async def test_find_by_hash(self, pg_store, mock_pool):
        mock_pool.fetchrow.return_value = None

        assert await pg_store.find_refresh_token("raw-token") is None
        assert mock_pool.fetchrow.call_args.args[1] == hash_token("raw-token")

    @pytest.mark.asyncio
    async def test_revoke_reports_whether_row_changed(self, pg_store, mock_pool):
        replacement = uuid4()
        mock_pool.execute.return_value = "UPDATE 1"

        assert await pg_store.revoke_refresh_token("raw-token", replaced_by=replacement) is True
        query, _, replaced_by, token_hash = mock_pool.execute.call_args.args
        assert "is_revoked = FALSE" in query
        assert replaced_by == replacement
        assert token_hash == hash_token("raw-token")

        mock_pool.execute.return_value = "UPDATE 0"
        assert await pg_store.revoke_refresh_token("raw-token") is False

    @pytest.mark.asyncio
    async def test_revoke_all_returns_count(self, pg_store, mock_pool):
        mock_pool.execute.return_value = "UPDATE 3"
        assert await pg_store.revoke_all_refresh_tokens(uuid4()) == 3


class TestRowsAffected:
    @pytest.mark.parametrize(
        "status,expected",
        [("UPDATE 3", 3), ("UPDATE 0", 0), ("", 0), (None, 0)],
    )
    def test_parse(self, status, expected):
        assert _rows_affected(status) == expected
