"""Note-service credentials per owner."""

import logging
from dataclasses import dataclass
from typing import Protocol

from notepress.ingestion.errors import UnauthorizedError
from notepress.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS note_credentials (
    owner_id        TEXT PRIMARY KEY,
    access_token    TEXT NOT NULL,
    note_store_url  TEXT,
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_GET_SQL = """
SELECT access_token, note_store_url
FROM note_credentials
WHERE owner_id = $1
"""

_LIST_OWNERS_SQL = """
SELECT owner_id FROM note_credentials ORDER BY owner_id
"""

_UPSERT_SQL = """
INSERT INTO note_credentials (owner_id, access_token, note_store_url)
VALUES ($1, $2, $3)
ON CONFLICT (owner_id) DO UPDATE SET
    access_token = EXCLUDED.access_token,
    note_store_url = EXCLUDED.note_store_url,
    updated_at = NOW()
"""


@dataclass(frozen=True)
class NoteCredentials:
    access_token: str
    note_store_url: str | None = None

    def __repr__(self) -> str:
        return f"NoteCredentials(access_token='***', note_store_url={self.note_store_url!r})"


class CredentialStore(Protocol):
    async def get_credentials(self, owner_id: str) -> NoteCredentials:
        """Return the owner's credentials or raise UnauthorizedError."""
        ...

    async def list_owner_ids(self) -> list[str]:
        """Owners that have connected a note-service account."""
        ...


class PostgresCredentialStore:
    """Credentials kept in the note_credentials table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Note credentials table ensured")

    async def get_credentials(self, owner_id: str) -> NoteCredentials:
        record = await self._db.fetchrow(_GET_SQL, owner_id)
        if record is None:
            raise UnauthorizedError(f"No note service connection for owner {owner_id}")
        return NoteCredentials(
            access_token=record["access_token"],
            note_store_url=record["note_store_url"],
        )

    async def list_owner_ids(self) -> list[str]:
        rows = await self._db.fetch(_LIST_OWNERS_SQL)
        return [row["owner_id"] for row in rows]

    async def save_credentials(self, owner_id: str, credentials: NoteCredentials) -> None:
        await self._db.execute(
            _UPSERT_SQL, owner_id, credentials.access_token, credentials.note_store_url
        )
