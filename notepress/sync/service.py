"""
Sync entry point.

SyncService ties the per-blog interval limiter, blog lookup, credential
lookup and the two sync paths together. sync_owner_blogs and
sync_all_owners fan a note sync out over an owner's blogs, or every
connected owner, one blog at a time. Every error leaving sync_blog or
sync_ghost is a NotepressError: classified source errors pass through,
anything unexpected is wrapped in InternalSyncError.
"""

import structlog

from notepress.assets.backends import LocalObjectStorage, ObjectStorage
from notepress.assets.config import AssetConfig
from notepress.assets.repository import AssetRepository
from notepress.assets.store import AssetStore
from notepress.blogs.credentials import CredentialStore, PostgresCredentialStore
from notepress.blogs.repository import BlogRepository, PostRepository
from notepress.blogs.schemas import Blog
from notepress.content.transformer import ContentTransformer
from notepress.errors import NotepressError
from notepress.ingestion.errors import RateLimitedError, UnauthorizedError
from notepress.ingestion.repository import PublishTagCacheRepository
from notepress.ingestion.tags import PublishTagResolver
from notepress.observability.logging import sync_context
from notepress.storage.database import Database
from notepress.sync.config import SyncConfig
from notepress.sync.ghost_sync import GhostSyncService
from notepress.sync.limiter import SyncIntervalLimiter
from notepress.sync.orchestrator import SyncOrchestrator
from notepress.sync.schemas import OwnerSyncResult, SyncResult

logger = structlog.get_logger(__name__)


class InternalSyncError(NotepressError):
    """An unexpected failure inside a sync pass."""

    pass


class BlogNotFoundError(NotepressError):
    """No blog with the requested id exists locally."""

    pass


class SyncService:
    """
    Runs note and Ghost syncs by blog id.

    Usage:
        service = SyncService.from_database(db)
        result = await service.sync_blog("blog_1")
    """

    def __init__(
        self,
        blogs: BlogRepository,
        credentials: CredentialStore,
        orchestrator: SyncOrchestrator,
        ghost_sync: GhostSyncService | None = None,
        limiter: SyncIntervalLimiter | None = None,
    ):
        self._blogs = blogs
        self._credentials = credentials
        self._orchestrator = orchestrator
        self._ghost_sync = ghost_sync
        self._limiter = limiter or SyncIntervalLimiter()

    @classmethod
    def from_database(
        cls,
        database: Database,
        storage: ObjectStorage | None = None,
        sync_config: SyncConfig | None = None,
        asset_config: AssetConfig | None = None,
    ) -> "SyncService":
        """Wire the default Postgres-backed components."""
        sync_config = sync_config or SyncConfig()
        asset_config = asset_config or AssetConfig()
        storage = storage or LocalObjectStorage(
            asset_config.storage_root, asset_config.public_url_prefix
        )

        blogs = BlogRepository(database)
        posts = PostRepository(database)
        transformer = ContentTransformer(
            AssetStore(storage, AssetRepository(database), asset_config),
            local_url_prefixes=(asset_config.public_url_prefix,),
        )
        resolver = PublishTagResolver(
            PublishTagCacheRepository(database), marker=sync_config.publish_tag
        )

        return cls(
            blogs=blogs,
            credentials=PostgresCredentialStore(database),
            orchestrator=SyncOrchestrator(
                blogs, posts, transformer, resolver, config=sync_config
            ),
            ghost_sync=GhostSyncService(blogs, posts, transformer, config=sync_config),
            limiter=SyncIntervalLimiter(sync_config.min_sync_interval_seconds),
        )

    async def _load_blog(self, blog_id: str) -> Blog:
        blog = await self._blogs.get(blog_id)
        if blog is None:
            raise BlogNotFoundError(f"Blog {blog_id} not found")
        return blog

    async def sync_blog(self, blog_id: str, force_full: bool = False) -> SyncResult:
        """
        Run a note sync pass for one blog.

        Raises:
            SyncTooSoonError: Triggered again within the minimum interval
            BlogNotFoundError: Unknown blog id
            RateLimitedError, UnauthorizedError, NotFoundError: From the pass
            InternalSyncError: Anything unexpected
        """
        await self._limiter.acquire(blog_id)
        with sync_context(blog_id=blog_id, sync_kind="note"):
            try:
                blog = await self._load_blog(blog_id)
                credentials = await self._credentials.get_credentials(blog.owner_id)
                return await self._orchestrator.sync(blog, credentials, force_full=force_full)
            except NotepressError:
                raise
            except Exception as e:
                logger.exception("Unexpected sync failure")
                raise InternalSyncError(f"Sync of blog {blog_id} failed: {e}") from e

    async def sync_ghost(
        self,
        blog_id: str,
        site_url: str | None = None,
        content_api_key: str = "",
        force_full: bool = False,
    ) -> SyncResult:
        """
        Run a Ghost sync pass for one blog.

        `site_url` defaults to the blog's configured Ghost site.
        """
        if self._ghost_sync is None:
            raise InternalSyncError("Ghost sync is not configured")

        await self._limiter.acquire(blog_id)
        with sync_context(blog_id=blog_id, sync_kind="ghost"):
            try:
                blog = await self._load_blog(blog_id)
                site_url = site_url or blog.ghost_site_url
                if not site_url:
                    raise InternalSyncError(f"Blog {blog_id} has no Ghost site configured")
                return await self._ghost_sync.sync(
                    blog, site_url, content_api_key, force_full=force_full
                )
            except NotepressError:
                raise
            except Exception as e:
                logger.exception("Unexpected Ghost sync failure")
                raise InternalSyncError(f"Ghost sync of blog {blog_id} failed: {e}") from e

    async def sync_owner_blogs(self, owner_id: str, force_full: bool = False) -> OwnerSyncResult:
        """
        Run a note sync pass for each of the owner's notebook-linked blogs.

        One blog's failure is recorded and the next blog still runs. A long
        rate limit stops the remaining blogs, since they share the account.
        """
        with sync_context(owner_id=owner_id):
            result = OwnerSyncResult(owner_id=owner_id)
            try:
                await self._credentials.get_credentials(owner_id)
                blogs = await self._blogs.list_note_blogs(owner_id)
            except UnauthorizedError as e:
                result.error = str(e)
                logger.warning("Owner skipped", error=str(e))
                return result

            for index, blog in enumerate(blogs):
                try:
                    result.results[blog.id] = await self.sync_blog(blog.id, force_full=force_full)
                except RateLimitedError as e:
                    result.errors[blog.id] = f"{type(e).__name__}: {e}"
                    for skipped in blogs[index + 1:]:
                        result.errors[skipped.id] = "Skipped: account is rate limited"
                    logger.warning(
                        "Owner sync stopped by rate limit", retry_after=e.retry_after_seconds
                    )
                    break
                except NotepressError as e:
                    result.errors[blog.id] = f"{type(e).__name__}: {e}"
                    logger.warning("Blog sync failed", blog_id=blog.id, error=str(e))

            logger.info("Owner sync finished", **result.summary())
            return result

    async def sync_all_owners(self, force_full: bool = False) -> list[OwnerSyncResult]:
        """Sync the blogs of every owner with stored note-service credentials."""
        owner_ids = await self._credentials.list_owner_ids()
        return [
            await self.sync_owner_blogs(owner_id, force_full=force_full)
            for owner_id in owner_ids
        ]
