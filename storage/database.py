"""Async PostgreSQL connection pool manager."""

import asyncpg
import structlog
from pathlib import Path
from config.settings import settings

log = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    """Get or create the connection pool."""
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
        log.info("database_pool_created")
    return _pool


async def close_pool() -> None:
    """Close the connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        log.info("database_pool_closed")


async def run_migrations(pool: asyncpg.Pool | None = None) -> list[str]:
    """Apply the profiles schema migrations in filename order.

    Each file under ``storage/migrations`` runs once in its own transaction and
    is recorded in ``_migrations``. Returns the filenames applied on this call.
    """
    pool = pool or await get_pool()
    applied_now: list[str] = []

    async with pool.acquire() as conn:
        # Create migrations tracking table
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS _migrations (
                filename VARCHAR(255) PRIMARY KEY,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        applied = {
            row["filename"]
            for row in await conn.fetch("SELECT filename FROM _migrations")
        }
        log.debug("migrations_already_applied", count=len(applied))

        for migration_file in sorted(MIGRATIONS_DIR.glob("*.sql")):
            if migration_file.name in applied:
                continue

            log.info("applying_migration", filename=migration_file.name, schema="profiles")
            sql = migration_file.read_text()
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO _migrations (filename) VALUES ($1)",
                    migration_file.name,
                )
            applied_now.append(migration_file.name)
            log.info("migration_applied", filename=migration_file.name)

    return applied_now
