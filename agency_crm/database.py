"""asyncpg pool lifecycle and SQL migrations for the credential store."""

from pathlib import Path
from typing import Optional

import asyncpg
import structlog

from agency_crm.config import Settings, get_settings

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"

# Process-wide pool, created in the app lifespan or by the CLI
_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """Return the pool opened by ``init_database``.

    Raises:
        RuntimeError: If the pool has not been opened yet
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_database() first.")
    return _pool


async def init_database(settings: Optional[Settings] = None) -> asyncpg.Pool:
    """Open the pool sized from ``POSTGRES_POOL_*`` settings; a no-op when open."""
    global _pool

    if _pool is not None:
        return _pool

    settings = settings or get_settings()

    try:
        _pool = await asyncpg.create_pool(
            settings.postgres_url,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
            command_timeout=settings.postgres_command_timeout,
        )
    except (asyncpg.PostgresError, OSError) as e:
        logger.error("database_pool_creation_failed", error=str(e))
        raise

    logger.info(
        "database_pool_created",
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    return _pool


async def close_database() -> None:
    global _pool

    if _pool is None:
        return
    await _pool.close()
    _pool = None
    logger.info("database_pool_closed")


async def run_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply every ``*.sql`` file in name order, each in its own transaction.

    The users and refresh_tokens scripts only use ``IF NOT EXISTS`` DDL, so
    re-running them on every startup is harmless.

    Returns:
        Names of the files applied
    """
    files = sorted(migrations_dir.glob("*.sql")) if migrations_dir.is_dir() else []
    if not files:
        logger.warning("no_migrations_found", path=str(migrations_dir))
        return []

    pool = await get_pool()
    applied = []

    async with pool.acquire() as conn:
        for path in files:
            try:
                async with conn.transaction():
                    await conn.execute(path.read_text(encoding="utf-8"))
            except asyncpg.PostgresError as e:
                logger.error("migration_failed", file=path.name, error=str(e))
                raise
            applied.append(path.name)

    logger.info("migrations_applied", files=applied)
    return applied


async def health_check() -> bool:
    """True when the pool is open and answers ``SELECT 1``."""
    if _pool is None:
        return False

    try:
        async with _pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except (asyncpg.PostgresError, OSError) as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
