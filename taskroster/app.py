"""Process lifecycle for hosting taskroster inside a server."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from taskroster.core import db_client
from taskroster.core.logging import configure_logfire


logger = logging.getLogger(__name__)


async def startup(*, db_path: str | None = None) -> None:
    """Configure tracing and make sure the schema exists."""
    # Configure logging first so schema setup logs are captured
    configure_logfire()

    await db_client.init_db(db_path=db_path)
    logger.info("Database initialized", extra={"db_path": str(db_client.get_db_path(db_path))})


async def shutdown(*, db_path: str | None = None) -> None:
    """Close the store connection for the current loop."""
    await db_client.close_connection(db_path=db_path)
    logger.info("Database connection closed")


@asynccontextmanager
async def lifespan(*, db_path: str | None = None) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    await startup(db_path=db_path)
    try:
        yield
    finally:
        await shutdown(db_path=db_path)
