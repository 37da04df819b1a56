"""
Ghost sync: mirrors published posts from a Ghost site into a blog.

Simpler than note sync: the Content API already filters to published posts
and reports updated_at, so each pass fetches everything (full) or what
changed since the last successful pass, transforms the HTML so images are
served from the asset store, and creates or updates posts.
"""

import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

import asyncpg
import structlog

from notepress.blogs.repository import BlogRepository, PostRepository
from notepress.blogs.schemas import Blog, Post, PostSource, SourceKind
from notepress.content.transformer import (
    ContentTransformer,
    TransformContext,
    generate_excerpt,
)
from notepress.errors import NotepressError
from notepress.ingestion.config import HTTPConfig
from notepress.ingestion.errors import RateLimitedError, UnauthorizedError
from notepress.ingestion.ghost_client import GhostClient
from notepress.ingestion.http_client import HTTPClient, RetryPolicy
from notepress.ingestion.schemas import GhostPost
from notepress.observability.metrics import get_metrics
from notepress.sync.config import SyncConfig
from notepress.sync.schemas import ChangeAction, PostChange, SyncResult

logger = structlog.get_logger(__name__)

GhostClientFactory = Callable[[str, str], GhostClient]


class GhostSyncService:
    """
    Runs Ghost sync passes.

    Usage:
        service = GhostSyncService(blogs, posts, transformer)
        result = await service.sync(blog, "https://blog.example.com", key)
    """

    def __init__(
        self,
        blogs: BlogRepository,
        posts: PostRepository,
        transformer: ContentTransformer,
        client_factory: GhostClientFactory = GhostClient,
        config: SyncConfig | None = None,
        http_config: HTTPConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._blogs = blogs
        self._posts = posts
        self._transformer = transformer
        self._client_factory = client_factory
        self._config = config or SyncConfig()
        self._http_config = http_config or HTTPConfig()
        self._now = clock or (lambda: datetime.now(timezone.utc))

    def _downloader(self) -> HTTPClient:
        return HTTPClient(
            retry_policy=RetryPolicy.from_config(self._http_config),
            timeout=self._http_config.timeout_seconds,
            default_rate_limit_wait=self._http_config.default_rate_limit_wait_seconds,
            service_name="media",
        )

    async def sync(
        self,
        blog: Blog,
        site_url: str,
        content_api_key: str,
        force_full: bool = False,
    ) -> SyncResult:
        """
        Run one Ghost pass for `blog`.

        Raises:
            UnauthorizedError: The Content API key was rejected
            RateLimitedError: The site asked for a wait above the cap
        """
        started_at = self._now()
        start = time.perf_counter()
        full = force_full or blog.ghost_last_synced_at is None
        result = SyncResult(full_sync=full)
        log = logger.bind(blog_id=blog.id, site_url=site_url, full_sync=full)

        try:
            async with self._client_factory(site_url, content_api_key) as ghost:
                if full:
                    ghost_posts = await ghost.fetch_posts()
                else:
                    ghost_posts = await ghost.fetch_posts_updated_since(
                        blog.ghost_last_synced_at
                    )
                async with self._downloader() as downloader:
                    await self._apply(blog, ghost_posts, downloader, ghost, result, log)
        except Exception as e:
            if isinstance(e, RateLimitedError):
                result.retry_after_seconds = e.retry_after_seconds
            get_metrics().record_sync_pass("ghost", "aborted", time.perf_counter() - start)
            log.error("Ghost sync aborted", error=str(e), error_type=type(e).__name__)
            raise

        if result.notes_found and result.failure_ratio() > self._config.max_failure_ratio:
            result.failed = True
            status = "failed"
        else:
            await self._blogs.mark_ghost_synced(blog.id, started_at)
            status = "succeeded"

        metrics = get_metrics()
        metrics.record_sync_pass("ghost", status, time.perf_counter() - start)
        for action in ("created", "updated", "unpublished", "republished"):
            metrics.record_post_change("ghost", action, getattr(result, action))

        log.info("Ghost sync finished", status=status, **result.summary())
        return result

    async def _apply(
        self,
        blog: Blog,
        ghost_posts: list[GhostPost],
        downloader: HTTPClient,
        ghost: GhostClient,
        result: SyncResult,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        result.notes_found = len(ghost_posts)
        existing = {
            post.source.id: post
            for post in await self._posts.list_by_source_kind(blog.id, SourceKind.GHOST)
        }

        for ghost_post in ghost_posts:
            try:
                change = await self._sync_post(blog, ghost_post, existing, downloader, result)
            except RateLimitedError as e:
                if ghost.retry_policy.is_long_wait(e):
                    raise
                change = self._failure(ghost_post, e)
            except UnauthorizedError:
                raise
            except (NotepressError, asyncpg.PostgresError) as e:
                change = self._failure(ghost_post, e)

            if change.action == ChangeAction.FAILED:
                log.warning("Ghost post failed", ghost_id=ghost_post.id, error=change.error)
            result.record(change)

    async def _sync_post(
        self,
        blog: Blog,
        ghost_post: GhostPost,
        existing: dict[str, Post],
        downloader: HTTPClient,
        result: SyncResult,
    ) -> PostChange:
        post = existing.get(ghost_post.id)
        if post is not None:
            newer = post.source_updated_at is None or (
                ghost_post.updated_at is not None
                and ghost_post.updated_at > post.source_updated_at
            )
            if not newer and post.is_published == ghost_post.is_published:
                return PostChange(
                    ghost_post.id, ChangeAction.UNCHANGED, post_id=post.id, title=post.title
                )

        post_id = post.id if post else str(uuid.uuid4())
        transformed = await self._transformer.transform(
            ghost_post.html,
            SourceKind.GHOST,
            TransformContext(
                owner_id=post_id,
                title=ghost_post.title,
                content_date=ghost_post.published_at,
                fetch_url=downloader.get_bytes,
            ),
        )
        result.errors.extend(f"{ghost_post.title}: {error}" for error in transformed.errors)
        excerpt = ghost_post.excerpt or generate_excerpt(
            transformed.html, self._config.excerpt_length
        )
        now = self._now()

        if post is None:
            published_at = (ghost_post.published_at or now) if ghost_post.is_published else None
            created = Post(
                id=post_id,
                blog_id=blog.id,
                title=ghost_post.title,
                content=transformed.html,
                slug=await self._posts.unique_slug(blog.id, ghost_post.slug or ghost_post.title),
                source=PostSource.ghost(ghost_post.id),
                excerpt=excerpt,
                is_published=published_at is not None,
                published_at=published_at,
                source_updated_at=ghost_post.updated_at,
                source_url=ghost_post.url,
            )
            existing[ghost_post.id] = await self._posts.create(created)
            return PostChange(
                ghost_post.id, ChangeAction.CREATED, post_id=post_id, title=ghost_post.title
            )

        if ghost_post.is_published and not post.is_published:
            action = ChangeAction.REPUBLISHED
            post.publish(ghost_post.published_at or now)
        elif not ghost_post.is_published and post.is_published:
            action = ChangeAction.UNPUBLISHED
            post.unpublish()
        else:
            action = ChangeAction.UPDATED

        post.title = ghost_post.title
        post.content = transformed.html
        post.excerpt = excerpt
        post.source_updated_at = ghost_post.updated_at
        post.source_url = ghost_post.url
        existing[ghost_post.id] = await self._posts.update(post)
        return PostChange(ghost_post.id, action, post_id=post.id, title=ghost_post.title)

    @staticmethod
    def _failure(ghost_post: GhostPost, error: Exception) -> PostChange:
        get_metrics().record_item_failure("ghost", type(error).__name__)
        return PostChange(
            ghost_post.id,
            ChangeAction.FAILED,
            title=ghost_post.title,
            error=f"{type(error).__name__}: {ghost_post.title}: {error}",
        )
