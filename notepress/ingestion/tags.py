"""
Publish-tag resolution.

A note is published when it carries the publish marker tag (default
"published", matched case-insensitively). Resolving the marker's guid lets
the metadata search filter on the server; the guid is persisted per owner
together with the external account id it was resolved against, so a
reconnected account never reuses a stale guid. A cached guid is confirmed
with one tag lookup per pass before it is used to filter.

Tag names for individual notes are looked up through a TagCache that lives
for a single sync pass and is passed explicitly to whoever needs it.
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import Protocol

from notepress.ingestion.errors import NotFoundError, TransientError
from notepress.ingestion.repository import PublishTagCacheRepository
from notepress.ingestion.schemas import NoteTag

logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_MARKER = "published"


class TagSource(Protocol):
    async def list_tags(self) -> list[NoteTag]: ...

    async def get_tag(self, guid: str) -> NoteTag: ...

    async def get_user_id(self) -> str: ...


class TagCache:
    """Tag guid to name map for one sync pass."""

    def __init__(self, tag_fetch_delay: float = 0.1):
        self.tag_fetch_delay = tag_fetch_delay
        self._names: dict[str, str] = {}
        self._lookups = 0

    def __contains__(self, guid: str) -> bool:
        return guid in self._names

    def __len__(self) -> int:
        return len(self._names)

    def get(self, guid: str) -> str | None:
        return self._names.get(guid)

    def seed(self, tags: Iterable[NoteTag]) -> None:
        for tag in tags:
            self._names[tag.guid] = tag.name

    async def resolve_names(self, client: TagSource, guids: Iterable[str]) -> list[str]:
        """
        Return the names for `guids`, fetching unknown tags one at a time.

        A tag that cannot be fetched (deleted, transient failure) is left
        out of the result. Rate-limit and auth errors propagate.
        """
        names: list[str] = []
        for guid in guids:
            if guid not in self._names:
                if self._lookups and self.tag_fetch_delay > 0:
                    await asyncio.sleep(self.tag_fetch_delay)
                self._lookups += 1
                try:
                    tag = await client.get_tag(guid)
                except (NotFoundError, TransientError) as e:
                    logger.warning(f"Could not resolve tag {guid}: {e}")
                    continue
                self._names[guid] = tag.name
            names.append(self._names[guid])
        return names


class PublishTagResolver:
    """Finds the publish marker's guid, caching it per owner and account."""

    def __init__(
        self,
        repository: PublishTagCacheRepository,
        marker: str = DEFAULT_PUBLISH_MARKER,
    ):
        self._repository = repository
        self.marker = marker

    def is_marker(self, name: str) -> bool:
        return name.strip().lower() == self.marker.strip().lower()

    def has_marker(self, names: Iterable[str]) -> bool:
        return any(self.is_marker(name) for name in names)

    async def resolve(
        self,
        client: TagSource,
        owner_id: str,
        tag_cache: TagCache,
    ) -> str | None:
        """
        Return the publish marker's guid for this account, or None if the
        account has no such tag.

        Args:
            client: Authenticated note-service client
            owner_id: Local owner the cache entry belongs to
            tag_cache: Session cache, seeded with the full tag list on a miss
        """
        account_id = await client.get_user_id()

        cached = await self._repository.get(owner_id)
        if cached is not None:
            if cached.account_id == account_id:
                if await self._still_marker(client, cached.publish_tag_guid, tag_cache):
                    return cached.publish_tag_guid
                logger.info(
                    f"Cached publish tag {cached.publish_tag_guid} for owner {owner_id} "
                    f"is no longer '{self.marker}'; re-resolving"
                )
            else:
                logger.info(
                    f"Publish tag cache for owner {owner_id} belongs to account "
                    f"{cached.account_id}, now {account_id}; re-resolving"
                )
            await self._repository.delete(owner_id)

        tags = await client.list_tags()
        tag_cache.seed(tags)

        for tag in tags:
            if self.is_marker(tag.name):
                await self._repository.upsert(owner_id, account_id, tag.guid)
                return tag.guid

        logger.info(f"No '{self.marker}' tag found for owner {owner_id}")
        return None

    async def _still_marker(self, client: TagSource, guid: str, tag_cache: TagCache) -> bool:
        """One lookup to confirm a cached guid still names the marker tag."""
        try:
            tag = await client.get_tag(guid)
        except NotFoundError:
            return False
        tag_cache.seed([tag])
        return self.is_marker(tag.name)
