"""Database repository for the persisted publish-tag cache."""

import logging

from notepress.ingestion.schemas import PublishTagCacheEntry
from notepress.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS publish_tag_cache (
    owner_id          TEXT PRIMARY KEY,
    account_id        TEXT NOT NULL,
    publish_tag_guid  TEXT NOT NULL,
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_GET_SQL = """
SELECT owner_id, account_id, publish_tag_guid, updated_at
FROM publish_tag_cache
WHERE owner_id = $1
"""

# Last write wins
_UPSERT_SQL = """
INSERT INTO publish_tag_cache (owner_id, account_id, publish_tag_guid)
VALUES ($1, $2, $3)
ON CONFLICT (owner_id) DO UPDATE SET
    account_id = EXCLUDED.account_id,
    publish_tag_guid = EXCLUDED.publish_tag_guid,
    updated_at = NOW()
"""

_DELETE_SQL = "DELETE FROM publish_tag_cache WHERE owner_id = $1"


def _record_to_entry(record) -> PublishTagCacheEntry:
    return PublishTagCacheEntry(
        owner_id=record["owner_id"],
        account_id=record["account_id"],
        publish_tag_guid=record["publish_tag_guid"],
        updated_at=record["updated_at"],
    )


class PublishTagCacheRepository:
    """Get/upsert/delete for the publish_tag_cache table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Publish tag cache table ensured")

    async def get(self, owner_id: str) -> PublishTagCacheEntry | None:
        record = await self._db.fetchrow(_GET_SQL, owner_id)
        return _record_to_entry(record) if record else None

    async def upsert(self, owner_id: str, account_id: str, publish_tag_guid: str) -> None:
        await self._db.execute(_UPSERT_SQL, owner_id, account_id, publish_tag_guid)

    async def delete(self, owner_id: str) -> None:
        await self._db.execute(_DELETE_SQL, owner_id)
