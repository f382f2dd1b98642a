"""Unit tests for the asyncpg pool lifecycle and migration runner."""

from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from agency_crm import database


class MockConnection:
    """Mock asyncpg connection with execute/fetchval and a transaction() context."""

    def __init__(self):
        self.execute = AsyncMock()
        self.fetchval = AsyncMock(return_value=1)

    def transaction(self):
        return _AsyncNullContext()


class _AsyncNullContext:
    def __init__(self, value=None):
        self._value = value

    async def __aenter__(self):
        return self._value

    async def __aexit__(self, *args):
        pass


class MockPool:
    def __init__(self, conn):
        self._conn = conn
        self.close = AsyncMock()

    def acquire(self):
        return _AsyncNullContext(self._conn)


@pytest.fixture
def conn():
    return MockConnection()


@pytest.fixture
def open_pool(conn):
    """Install a mocked pool as the module-level pool for one test."""
    pool = MockPool(conn)
    with patch.object(database, "_pool", pool):
        yield pool


@pytest.fixture
def no_pool():
    with patch.object(database, "_pool", None):
        yield


class TestInitDatabase:
    @pytest.mark.asyncio
    async def test_pool_sized_from_settings(self, make_settings, no_pool):
        settings = make_settings(
            postgres_url="postgresql://u:p@db:5432/crm",
            postgres_pool_min_size=1,
            postgres_pool_max_size=4,
            postgres_command_timeout=5,
        )
        pool = MockPool(MockConnection())

        with patch("asyncpg.create_pool", new_callable=AsyncMock, return_value=pool) as mock_create:
            result = await database.init_database(settings)
            await database.close_database()

        assert result is pool
        mock_create.assert_awaited_once_with(
            "postgresql://u:p@db:5432/crm", min_size=1, max_size=4, command_timeout=5.0
        )
        pool.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_pool_is_reused(self, open_pool, settings):
        with patch("asyncpg.create_pool", new_callable=AsyncMock) as mock_create:
            assert await database.init_database(settings) is open_pool
        mock_create.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_pool_before_init_raises(self, no_pool):
        with pytest.raises(RuntimeError, match="not initialized"):
            await database.get_pool()


class TestRunMigrations:
    @pytest.mark.asyncio
    async def test_applies_files_in_name_order(self, tmp_path, open_pool, conn):
        (tmp_path / "002_second.sql").write_text("SELECT 2;")
        (tmp_path / "001_first.sql").write_text("SELECT 1;")
        (tmp_path / "notes.txt").write_text("ignored")

        applied = await database.run_migrations(tmp_path)

        assert applied == ["001_first.sql", "002_second.sql"]
        assert [c.args[0] for c in conn.execute.await_args_list] == ["SELECT 1;", "SELECT 2;"]

    @pytest.mark.asyncio
    async def test_failure_propagates(self, tmp_path, open_pool, conn):
        (tmp_path / "001_bad.sql").write_text("NOT SQL;")
        conn.execute.side_effect = asyncpg.PostgresSyntaxError("syntax error")

        with pytest.raises(asyncpg.PostgresError):
            await database.run_migrations(tmp_path)

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path, open_pool, conn):
        assert await database.run_migrations(tmp_path / "absent") == []
        conn.execute.assert_not_called()

    def test_shipped_migrations_exist(self):
        names = sorted(p.name for p in database.MIGRATIONS_DIR.glob("*.sql"))
        assert names == ["001_users.sql", "002_refresh_tokens.sql"]


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, open_pool):
        assert await database.health_check() is True

    @pytest.mark.asyncio
    async def test_no_pool(self, no_pool):
        assert await database.health_check() is False

    @pytest.mark.asyncio
    async def test_connection_error(self, open_pool, conn):
        conn.fetchval.side_effect = OSError("connection refused")
        assert await database.health_check() is False
