"""Entry point: apply bundled SQL migrations to the configured database."""

import asyncio
import structlog
from config.logging_config import setup_logging
from storage.database import get_pool, close_pool, run_migrations

log = structlog.get_logger(__name__)


async def migrate() -> list[str]:
    setup_logging()
    log.info("starting_migrations")
    try:
        await get_pool()
        applied = await run_migrations()
    finally:
        await close_pool()
    log.info("migrations_complete", applied=len(applied))
    return applied


def main() -> None:
    """Run migrations."""
    asyncio.run(migrate())


if __name__ == "__main__":
    main()
