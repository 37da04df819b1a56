"""
Content-addressed asset store.

Every binary is identified by the SHA-256 of its bytes, so the same image
referenced from several posts is stored once. Callers also pass their own
stable hash (the note resource's body hash, or a hash of the remote URL)
so that re-running a sync finds the asset it stored last time, and can
rename it in place when the naming inputs changed instead of uploading a
second copy.
"""

import hashlib
import re
from datetime import date, datetime

import structlog

from notepress.assets.backends import ObjectStorage, ObjectStorageError
from notepress.assets.config import AssetConfig
from notepress.assets.naming import derive_naming_decision
from notepress.assets.repository import AssetRepository
from notepress.assets.schemas import (
    AssetAction,
    AssetRecord,
    NamingDecision,
    StoredAsset,
)
from notepress.errors import NotepressError
from notepress.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


class AssetStorageError(NotepressError):
    """Bytes could not be written to object storage."""

    pass


def content_hash_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def matches_decision(filename: str, decision: NamingDecision) -> bool:
    """
    True if `filename` is what `decision` would produce, allowing for the
    uniqueness suffix (`_002`.. or `_<hash8>`) added on collision.
    """
    stem, _, extension = filename.rpartition(".")
    if not stem or extension != decision.extension:
        return False
    if stem == decision.base_name:
        return True
    pattern = re.escape(decision.base_name) + r"_(\d{3,}|[0-9a-f]{8})"
    return re.fullmatch(pattern, stem) is not None


class AssetStore:
    """
    Stores binaries once per content hash and keeps their names current.

    Usage:
        store = AssetStore(LocalObjectStorage(root), AssetRepository(db))
        asset = await store.store(data, resource.body_hash, "image/png", post_id,
                                  title=post.title)
        asset.url, asset.action
    """

    def __init__(
        self,
        storage: ObjectStorage,
        repository: AssetRepository,
        config: AssetConfig | None = None,
    ):
        self._storage = storage
        self._repository = repository
        self._config = config or AssetConfig()

    def _key(self, filename: str) -> str:
        prefix = self._config.key_prefix.strip("/")
        return f"{prefix}/{filename}" if prefix else filename

    def _decide(
        self,
        data: bytes,
        content_hash: str,
        mime_type: str,
        title: str | None,
        original_filename: str | None,
        content_date: datetime | date | None,
    ) -> NamingDecision:
        return derive_naming_decision(
            data,
            content_hash,
            mime_type,
            title=title,
            original_filename=original_filename,
            content_date=content_date,
            prefix=self._config.filename_prefix,
            max_length=self._config.max_name_length,
        )

    async def _unique_filename(self, decision: NamingDecision, content_hash: str) -> str:
        """First free filename for `decision`: base, base_002.., then base_<hash8>."""
        if await self._storage.head(self._key(decision.filename)) is None:
            return decision.filename

        for n in range(2, self._config.max_collisions + 1):
            candidate = f"{decision.base_name}_{n:03d}.{decision.extension}"
            if await self._storage.head(self._key(candidate)) is None:
                return candidate

        return f"{decision.base_name}_{content_hash[:8]}.{decision.extension}"

    async def store(
        self,
        data: bytes,
        caller_hash: str,
        mime_type: str,
        owner_id: str,
        title: str | None = None,
        original_filename: str | None = None,
        content_date: datetime | date | None = None,
    ) -> StoredAsset:
        """
        Store `data`, reusing, renaming or deduplicating where possible.

        Args:
            data: Raw bytes
            caller_hash: Caller's stable identifier for this binary
            mime_type: Detected MIME type
            owner_id: Id of the post the asset is stored for
            title: Title used for naming
            original_filename: Source filename used for naming
            content_date: Date of the owning content, last-resort date

        Returns:
            StoredAsset describing the object and what was done

        Raises:
            AssetStorageError: If the bytes could not be written
        """
        content_hash = content_hash_of(data)
        metrics = get_metrics()

        existing = await self._repository.get_by_caller(caller_hash, owner_id)
        if existing is not None and existing.content_hash == content_hash:
            decision = self._decide(
                data, content_hash, mime_type, title, original_filename, content_date
            )
            if matches_decision(existing.filename, decision):
                metrics.record_asset_action(AssetAction.REUSED.value)
                return StoredAsset(
                    url=existing.url,
                    filename=existing.filename,
                    content_hash=content_hash,
                    size=existing.size,
                    decision=existing.decision,
                    action=AssetAction.REUSED,
                )
            return await self._rename(existing, data, decision)

        duplicate = await self._repository.get_by_content_hash(content_hash)
        if duplicate is not None:
            await self._repository.add_reference(content_hash, owner_id, duplicate.storage_key)
            metrics.record_asset_action(AssetAction.DEDUPLICATED.value)
            logger.debug(
                "Asset deduplicated",
                content_hash=content_hash[:16],
                filename=duplicate.filename,
            )
            return StoredAsset(
                url=duplicate.url,
                filename=duplicate.filename,
                content_hash=content_hash,
                size=duplicate.size,
                decision=duplicate.decision,
                action=AssetAction.DEDUPLICATED,
            )

        decision = self._decide(
            data, content_hash, mime_type, title, original_filename, content_date
        )
        return await self._create(data, content_hash, caller_hash, owner_id, mime_type, decision)

    async def _create(
        self,
        data: bytes,
        content_hash: str,
        caller_hash: str,
        owner_id: str,
        mime_type: str,
        decision: NamingDecision,
    ) -> StoredAsset:
        filename = await self._unique_filename(decision, content_hash)
        key = self._key(filename)
        try:
            stored = await self._storage.put(key, data, mime_type)
        except ObjectStorageError as e:
            raise AssetStorageError(f"Failed to store {filename}: {e}") from e

        inserted = await self._repository.insert(
            AssetRecord(
                content_hash=content_hash,
                caller_hash=caller_hash,
                owner_id=owner_id,
                filename=filename,
                storage_key=key,
                mime_type=mime_type,
                size=len(data),
                url=stored.url,
                naming_strategy=decision.strategy,
                naming_reason=decision.reason,
                original_title=decision.original_title,
                original_filename=decision.original_filename,
                capture_date=decision.capture_date,
                date_source=decision.date_source,
                camera_make=decision.camera_make,
                camera_model=decision.camera_model,
            )
        )

        if inserted is None:
            # A concurrent store recorded the same bytes first
            winner = await self._repository.get_by_content_hash(content_hash)
            if winner is not None:
                if winner.storage_key != key:
                    await self._delete_quietly(key)
                await self._repository.add_reference(
                    content_hash, owner_id, winner.storage_key
                )
                get_metrics().record_asset_action(AssetAction.DEDUPLICATED.value)
                return StoredAsset(
                    url=winner.url,
                    filename=winner.filename,
                    content_hash=content_hash,
                    size=winner.size,
                    decision=winner.decision,
                    action=AssetAction.DEDUPLICATED,
                )

        await self._repository.add_reference(content_hash, owner_id, key)
        get_metrics().record_asset_action(AssetAction.CREATED.value)
        logger.info(
            "Asset stored",
            filename=filename,
            strategy=decision.strategy.value,
            size=len(data),
        )
        return StoredAsset(
            url=stored.url,
            filename=filename,
            content_hash=content_hash,
            size=len(data),
            decision=decision,
            action=AssetAction.CREATED,
        )

    async def _rename(
        self,
        existing: AssetRecord,
        data: bytes,
        decision: NamingDecision,
    ) -> StoredAsset:
        """
        Move an asset to the name `decision` asks for, without re-uploading.

        The old object is removed only when no other owner still links to
        it; deduplicated posts keep working until they are re-synced.
        """
        old_key = existing.storage_key
        filename = await self._unique_filename(decision, existing.content_hash)
        key = self._key(filename)

        try:
            stored = await self._storage.copy(old_key, key)
        except ObjectStorageError as e:
            logger.warning(
                "Asset copy failed, uploading under new name",
                source=old_key,
                dest=key,
                error=str(e),
            )
            try:
                stored = await self._storage.put(key, data, existing.mime_type)
            except ObjectStorageError as put_error:
                raise AssetStorageError(
                    f"Failed to store {filename}: {put_error}"
                ) from put_error

        await self._repository.update_naming(
            existing.content_hash, filename, key, stored.url, decision
        )
        await self._repository.add_reference(existing.content_hash, existing.owner_id, key)

        others = await self._repository.count_other_references(old_key, existing.owner_id)
        if others:
            logger.info("Old asset object kept for other owners", key=old_key, owners=others)
        else:
            await self._delete_quietly(old_key)

        get_metrics().record_asset_action(AssetAction.RENAMED.value)
        logger.info(
            "Asset renamed",
            old_filename=existing.filename,
            new_filename=filename,
            strategy=decision.strategy.value,
        )
        return StoredAsset(
            url=stored.url,
            filename=filename,
            content_hash=existing.content_hash,
            size=len(data),
            decision=decision,
            action=AssetAction.RENAMED,
        )

    async def _delete_quietly(self, key: str) -> None:
        try:
            await self._storage.delete(key)
        except ObjectStorageError as e:
            logger.warning("Orphaned asset object left behind", key=key, error=str(e))
