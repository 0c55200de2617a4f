"""SQLite schema management (code-first approach)."""

import logging

from taskroster.core import db_client
from taskroster.core.config import constants


logger = logging.getLogger(__name__)


# Central list of all collections in the schema
COLLECTIONS = [
    constants.TASKS_COLLECTION,
    constants.USERS_COLLECTION,
]

_INDEXES: dict[str, list[str]] = {
    constants.USERS_COLLECTION: [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users (json_extract(data, '$.email'))",
    ],
    constants.TASKS_COLLECTION: [
        "CREATE INDEX IF NOT EXISTS idx_tasks_assigned_user ON tasks (json_extract(data, '$.assignedUser'))",
    ],
}


def _table_definition(collection: str) -> str:
    return (
        f"CREATE TABLE IF NOT EXISTS {collection} ("
        "id TEXT PRIMARY KEY, "
        "data TEXT NOT NULL CHECK (json_valid(data)))"
    )


async def init_db(*, db_path: str | None = None) -> None:
    """Create every collection table and its indexes if they do not exist yet."""
    conn = await db_client.get_connection(db_path=db_path)

    for collection in COLLECTIONS:
        await conn.execute(_table_definition(collection))
        for index in _INDEXES.get(collection, []):
            await conn.execute(index)
        logger.info("Ensured collection", extra={"collection": collection})
