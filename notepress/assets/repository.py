"""Database repository for asset records."""

import logging

from notepress.assets.schemas import (
    AssetRecord,
    DateSource,
    NamingDecision,
    NamingStrategy,
)
from notepress.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS assets (
    content_hash       TEXT PRIMARY KEY,
    caller_hash        TEXT NOT NULL,
    owner_id           TEXT NOT NULL,
    filename           TEXT NOT NULL,
    storage_key        TEXT NOT NULL UNIQUE,
    mime_type          TEXT NOT NULL,
    size               BIGINT NOT NULL,
    url                TEXT NOT NULL,
    naming_strategy    TEXT NOT NULL,
    naming_reason      TEXT NOT NULL DEFAULT '',
    original_title     TEXT,
    original_filename  TEXT,
    capture_date       DATE,
    date_source        TEXT,
    camera_make        TEXT,
    camera_model       TEXT,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at         TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_assets_caller
    ON assets(caller_hash, owner_id);
CREATE INDEX IF NOT EXISTS idx_assets_strategy
    ON assets(naming_strategy);

CREATE TABLE IF NOT EXISTS asset_references (
    content_hash  TEXT NOT NULL REFERENCES assets(content_hash) ON DELETE CASCADE,
    owner_id      TEXT NOT NULL,
    storage_key   TEXT NOT NULL,
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (content_hash, owner_id)
);

CREATE INDEX IF NOT EXISTS idx_asset_references_key
    ON asset_references(storage_key);
"""

_COLUMNS = """
    content_hash, caller_hash, owner_id, filename, storage_key, mime_type,
    size, url, naming_strategy, naming_reason, original_title,
    original_filename, capture_date, date_source, camera_make, camera_model,
    created_at, updated_at
"""

_GET_BY_CALLER_SQL = f"""
SELECT {_COLUMNS}
FROM assets
WHERE caller_hash = $1 AND owner_id = $2
ORDER BY created_at DESC
LIMIT 1
"""

_GET_BY_CONTENT_HASH_SQL = f"""
SELECT {_COLUMNS}
FROM assets
WHERE content_hash = $1
"""

# Concurrent stores of the same bytes race on the unique hash; first one wins
_INSERT_SQL = f"""
INSERT INTO assets (
    content_hash, caller_hash, owner_id, filename, storage_key, mime_type,
    size, url, naming_strategy, naming_reason, original_title,
    original_filename, capture_date, date_source, camera_make, camera_model
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
ON CONFLICT (content_hash) DO NOTHING
RETURNING {_COLUMNS}
"""

_UPDATE_NAMING_SQL = f"""
UPDATE assets SET
    filename = $2,
    storage_key = $3,
    url = $4,
    naming_strategy = $5,
    naming_reason = $6,
    original_title = $7,
    original_filename = $8,
    capture_date = $9,
    date_source = $10,
    camera_make = $11,
    camera_model = $12,
    updated_at = NOW()
WHERE content_hash = $1
RETURNING {_COLUMNS}
"""

_COUNT_BY_STRATEGY_SQL = """
SELECT naming_strategy, COUNT(*) AS count
FROM assets
GROUP BY naming_strategy
"""

# One row per owner that was handed an asset, with the key its URL points at
_ADD_REFERENCE_SQL = """
INSERT INTO asset_references (content_hash, owner_id, storage_key)
VALUES ($1, $2, $3)
ON CONFLICT (content_hash, owner_id) DO UPDATE SET
    storage_key = EXCLUDED.storage_key,
    updated_at = NOW()
"""

_COUNT_OTHER_REFERENCES_SQL = """
SELECT COUNT(*)
FROM asset_references
WHERE storage_key = $1 AND owner_id <> $2
"""


def _record_to_asset(record) -> AssetRecord:
    """Convert an asyncpg Record to an AssetRecord dataclass."""
    return AssetRecord(
        content_hash=record["content_hash"],
        caller_hash=record["caller_hash"],
        owner_id=record["owner_id"],
        filename=record["filename"],
        storage_key=record["storage_key"],
        mime_type=record["mime_type"],
        size=record["size"],
        url=record["url"],
        naming_strategy=NamingStrategy(record["naming_strategy"]),
        naming_reason=record["naming_reason"],
        original_title=record["original_title"],
        original_filename=record["original_filename"],
        capture_date=record["capture_date"],
        date_source=DateSource(record["date_source"]) if record["date_source"] else None,
        camera_make=record["camera_make"],
        camera_model=record["camera_model"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _decision_args(decision: NamingDecision) -> tuple:
    return (
        decision.strategy.value,
        decision.reason,
        decision.original_title,
        decision.original_filename,
        decision.capture_date,
        decision.date_source.value if decision.date_source else None,
        decision.camera_make,
        decision.camera_model,
    )


class AssetRepository:
    """Lookups and writes for the assets table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Asset tables ensured")

    async def get_by_caller(self, caller_hash: str, owner_id: str) -> AssetRecord | None:
        record = await self._db.fetchrow(_GET_BY_CALLER_SQL, caller_hash, owner_id)
        return _record_to_asset(record) if record else None

    async def get_by_content_hash(self, content_hash: str) -> AssetRecord | None:
        record = await self._db.fetchrow(_GET_BY_CONTENT_HASH_SQL, content_hash)
        return _record_to_asset(record) if record else None

    async def insert(self, asset: AssetRecord) -> AssetRecord | None:
        """
        Insert a new asset.

        Returns:
            The stored record, or None if another record already holds
            this content hash
        """
        record = await self._db.fetchrow(
            _INSERT_SQL,
            asset.content_hash,
            asset.caller_hash,
            asset.owner_id,
            asset.filename,
            asset.storage_key,
            asset.mime_type,
            asset.size,
            asset.url,
            asset.naming_strategy.value,
            asset.naming_reason,
            asset.original_title,
            asset.original_filename,
            asset.capture_date,
            asset.date_source.value if asset.date_source else None,
            asset.camera_make,
            asset.camera_model,
        )
        return _record_to_asset(record) if record else None

    async def update_naming(
        self,
        content_hash: str,
        filename: str,
        storage_key: str,
        url: str,
        decision: NamingDecision,
    ) -> AssetRecord | None:
        """Point an asset at its renamed object and record the new decision."""
        record = await self._db.fetchrow(
            _UPDATE_NAMING_SQL,
            content_hash,
            filename,
            storage_key,
            url,
            *_decision_args(decision),
        )
        return _record_to_asset(record) if record else None

    async def count_by_strategy(self) -> dict[str, int]:
        """Number of assets per naming strategy."""
        rows = await self._db.fetch(_COUNT_BY_STRATEGY_SQL)
        return {row["naming_strategy"]: row["count"] for row in rows}

    async def add_reference(self, content_hash: str, owner_id: str, storage_key: str) -> None:
        """Record that `owner_id` now links to the object at `storage_key`."""
        await self._db.execute(_ADD_REFERENCE_SQL, content_hash, owner_id, storage_key)

    async def count_other_references(self, storage_key: str, owner_id: str) -> int:
        """Owners other than `owner_id` still linking to `storage_key`."""
        count = await self._db.fetchval(_COUNT_OTHER_REFERENCES_SQL, storage_key, owner_id)
        return int(count or 0)
