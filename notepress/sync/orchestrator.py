"""
Incremental note sync.

One pass for one blog:
1. decide the change window (everything, or since the last successful sync)
2. skip the pass early if the account reports no changes since then
3. resolve the publish tag and list candidate notes in the blog's notebook
4. create, update or republish posts for candidates carrying the tag
5. unpublish posts whose note lost the tag
6. mark the pass failed when too many candidates failed

Successful items are persisted as they are processed, so a failed pass
keeps its partial progress; it only leaves last_synced_at where it was so
the next pass looks at the same window again.
"""

import asyncio
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

import asyncpg
import structlog

from notepress.blogs.credentials import NoteCredentials
from notepress.blogs.repository import BlogRepository, PostRepository
from notepress.blogs.schemas import Blog, Post, PostSource, SourceKind
from notepress.content.transformer import (
    ContentTransformer,
    TransformContext,
    generate_excerpt,
)
from notepress.errors import NotepressError
from notepress.ingestion.errors import (
    NotFoundError,
    RateLimitedError,
    SourceError,
    UnauthorizedError,
)
from notepress.ingestion.note_client import NoteStoreClient
from notepress.ingestion.schemas import (
    NoteFilter,
    NoteMetadata,
    NotesMetadataList,
    SyncState,
)
from notepress.ingestion.tags import PublishTagResolver, TagCache
from notepress.observability.metrics import get_metrics
from notepress.sync.config import SyncConfig
from notepress.sync.schemas import ChangeAction, PostChange, SyncResult

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[NoteCredentials], NoteStoreClient]


def default_client_factory(credentials: NoteCredentials) -> NoteStoreClient:
    return NoteStoreClient(credentials.access_token, credentials.note_store_url)


class SyncOrchestrator:
    """
    Runs note sync passes.

    Usage:
        orchestrator = SyncOrchestrator(blogs, posts, transformer, resolver)
        result = await orchestrator.sync(blog, credentials)
    """

    def __init__(
        self,
        blogs: BlogRepository,
        posts: PostRepository,
        transformer: ContentTransformer,
        tag_resolver: PublishTagResolver,
        client_factory: ClientFactory = default_client_factory,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._blogs = blogs
        self._posts = posts
        self._transformer = transformer
        self._resolver = tag_resolver
        self._client_factory = client_factory
        self._config = config or SyncConfig()
        self._now = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def is_fatal(error: Exception, client: NoteStoreClient) -> bool:
        """Errors that end the whole pass rather than one item."""
        if isinstance(error, UnauthorizedError):
            return True
        if isinstance(error, RateLimitedError):
            return client.retry_policy.is_long_wait(error)
        return False

    async def sync(
        self,
        blog: Blog,
        credentials: NoteCredentials,
        force_full: bool = False,
    ) -> SyncResult:
        """
        Run one pass for `blog`.

        Args:
            blog: Blog to sync; its notebook_guid selects the notes
            credentials: Note-service credentials of the blog owner
            force_full: Ignore the change window and look at every note

        Returns:
            SyncResult with per-post changes and counters

        Raises:
            RateLimitedError: The service asked for a wait above the cap
            UnauthorizedError: Credentials were rejected
            NotFoundError: The blog's notebook does not exist
        """
        started_at = self._now()
        start = time.perf_counter()
        metrics = get_metrics()
        full = force_full or blog.last_synced_at is None
        result = SyncResult(full_sync=full)
        log = logger.bind(blog_id=blog.id, full_sync=full)

        try:
            async with self._client_factory(credentials) as client:
                state = await self._run_pass(client, blog, force_full, full, result, log)
        except Exception as e:
            await self._blogs.mark_sync_attempt(blog.id, started_at)
            if isinstance(e, RateLimitedError):
                result.retry_after_seconds = e.retry_after_seconds
            metrics.record_sync_pass("note", "aborted", time.perf_counter() - start)
            log.error("Sync pass aborted", error=str(e), error_type=type(e).__name__)
            raise

        if result.failed:
            await self._blogs.mark_sync_attempt(blog.id, started_at)
            status = "failed"
        else:
            await self._blogs.mark_sync_success(
                blog.id,
                started_at,
                state.update_count if state else None,
            )
            status = "skipped" if result.skipped else "succeeded"

        latency = time.perf_counter() - start
        metrics.record_sync_pass("note", status, latency)
        for action in ("created", "updated", "unpublished", "republished"):
            metrics.record_post_change("note", action, getattr(result, action))

        log.info("Sync pass finished", status=status, latency=round(latency, 2), **result.summary())
        return result

    async def _sync_state(
        self,
        client: NoteStoreClient,
        log: structlog.stdlib.BoundLogger,
    ) -> SyncState | None:
        try:
            return await client.get_sync_state()
        except SourceError as e:
            if self.is_fatal(e, client):
                raise
            log.warning("Sync state unavailable", error=str(e))
            return None

    async def _run_pass(
        self,
        client: NoteStoreClient,
        blog: Blog,
        force_full: bool,
        full: bool,
        result: SyncResult,
        log: structlog.stdlib.BoundLogger,
    ) -> SyncState | None:
        state = await self._sync_state(client, log)
        if (
            not force_full
            and state is not None
            and blog.last_synced_at is not None
            and blog.last_sync_update_count is not None
            and state.update_count <= blog.last_sync_update_count
        ):
            log.info("No account changes since last sync", update_count=state.update_count)
            result.skipped = True
            return state

        if not blog.notebook_guid:
            raise NotFoundError(f"Blog {blog.id} has no notebook configured")

        if full:
            await self._refresh_notebook_name(client, blog, log)

        tag_cache = TagCache(self._config.tag_fetch_delay)
        publish_guid = await self._resolve_publish_tag(client, blog, tag_cache, log)

        window_start = None if full else blog.last_synced_at
        listing = await self._list_notes(
            client,
            NoteFilter(
                notebook_guid=blog.notebook_guid,
                tag_guids=[publish_guid] if publish_guid else [],
                updated_since=window_start,
            ),
        )
        result.notes_found = len(listing.notes)
        log.info(
            "Candidate notes listed",
            candidates=len(listing.notes),
            total=listing.total_notes,
            tag_filtered=publish_guid is not None,
        )

        note_posts = {
            post.source.id: post
            for post in await self._posts.list_by_source_kind(blog.id, SourceKind.NOTE)
        }
        unmarked: set[str] = set()
        marked: set[str] = set()

        for index, meta in enumerate(listing.notes):
            if index and self._config.inter_note_delay > 0:
                await asyncio.sleep(self._config.inter_note_delay)

            try:
                change = await self._process_candidate(
                    client, blog, meta, note_posts, tag_cache, publish_guid, result
                )
            except RateLimitedError as e:
                if self.is_fatal(e, client):
                    raise
                result.retry_after_seconds = e.retry_after_seconds
                change = self._failure(meta, e)
            except UnauthorizedError:
                raise
            except (NotepressError, asyncpg.PostgresError) as e:
                change = self._failure(meta, e)

            if change is None:
                unmarked.add(meta.guid)
                continue
            marked.add(meta.guid)
            if change.action == ChangeAction.FAILED:
                log.warning("Note failed", note_guid=meta.guid, error=change.error)
            result.record(change)

        to_unpublish = await self._unpublish_candidates(
            client, blog, publish_guid, tag_cache, full, listing.truncated,
            window_start, note_posts, marked, unmarked, result, log,
        )
        for guid in sorted(to_unpublish):
            post = note_posts[guid]
            post.unpublish()
            try:
                await self._posts.update(post)
            except asyncpg.PostgresError as e:
                result.record(self._failure_for(guid, post.title, e))
                continue
            result.record(
                PostChange(guid, ChangeAction.UNPUBLISHED, post_id=post.id, title=post.title)
            )

        if result.notes_found and result.failure_ratio() > self._config.max_failure_ratio:
            result.failed = True
            log.warning(
                "Sync pass failed",
                failures=result.failures,
                candidates=result.notes_found,
            )

        return state

    async def _list_notes(
        self,
        client: NoteStoreClient,
        note_filter: NoteFilter,
    ) -> NotesMetadataList:
        """Every match for `note_filter`, requested `page_size` notes at a time."""
        notes: list[NoteMetadata] = []
        total = 0
        while True:
            page = await client.find_notes_metadata(
                note_filter,
                offset=len(notes),
                max_notes=self._config.page_size,
            )
            notes.extend(page.notes)
            total = page.total_notes
            if not page.notes or len(notes) >= total:
                break
        return NotesMetadataList(notes=notes, total_notes=total)

    async def _refresh_notebook_name(
        self,
        client: NoteStoreClient,
        blog: Blog,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        try:
            notebooks = await client.list_notebooks()
        except SourceError as e:
            if self.is_fatal(e, client):
                raise
            log.warning("Could not list notebooks", error=str(e))
            return

        notebook = next((n for n in notebooks if n.guid == blog.notebook_guid), None)
        if notebook is None:
            raise NotFoundError(f"Notebook {blog.notebook_guid} no longer exists")

        if notebook.name != blog.notebook_name:
            try:
                await self._blogs.update_notebook_name(blog.id, notebook.name)
            except asyncpg.PostgresError as e:
                log.warning("Could not store notebook name", error=str(e))
                return
            blog.notebook_name = notebook.name

    async def _resolve_publish_tag(
        self,
        client: NoteStoreClient,
        blog: Blog,
        tag_cache: TagCache,
        log: structlog.stdlib.BoundLogger,
    ) -> str | None:
        try:
            return await self._resolver.resolve(client, blog.owner_id, tag_cache)
        except SourceError as e:
            if self.is_fatal(e, client):
                raise
            log.warning("Publish tag resolution failed, filtering by name", error=str(e))
            return None

    async def _is_marked(
        self,
        client: NoteStoreClient,
        meta: NoteMetadata,
        tag_cache: TagCache,
        publish_guid: str | None,
    ) -> bool:
        if publish_guid and publish_guid in meta.tag_guids:
            return True
        names = await tag_cache.resolve_names(client, meta.tag_guids)
        return self._resolver.has_marker(names)

    async def _process_candidate(
        self,
        client: NoteStoreClient,
        blog: Blog,
        meta: NoteMetadata,
        note_posts: dict[str, Post],
        tag_cache: TagCache,
        publish_guid: str | None,
        result: SyncResult,
    ) -> PostChange | None:
        """
        Reconcile one candidate.

        Returns:
            The change made, or None when the note lacks the publish tag
        """
        if not await self._is_marked(client, meta, tag_cache, publish_guid):
            return None

        existing = note_posts.get(meta.guid)
        if (
            existing is not None
            and existing.is_published
            and existing.source_updated_at is not None
            and meta.updated is not None
            and existing.source_updated_at >= meta.updated
        ):
            return PostChange(
                meta.guid, ChangeAction.UNCHANGED, post_id=existing.id, title=existing.title
            )

        note = await client.get_note(meta.guid)
        post_id = existing.id if existing else str(uuid.uuid4())

        async def fetch_resource(resource):
            return await client.get_resource_bytes(resource.guid)

        transformed = await self._transformer.transform(
            note.content,
            SourceKind.NOTE,
            TransformContext(
                owner_id=post_id,
                title=note.title,
                content_date=note.created,
                resources=note.resources,
                fetch_resource=fetch_resource,
            ),
        )
        result.errors.extend(f"{note.title}: {error}" for error in transformed.errors)
        excerpt = generate_excerpt(note.content, self._config.excerpt_length)
        now = self._now()

        if existing is None:
            post = Post(
                id=post_id,
                blog_id=blog.id,
                title=note.title,
                content=transformed.html,
                slug=await self._posts.unique_slug(blog.id, note.title),
                source=PostSource.note(note.guid),
                excerpt=excerpt,
                is_published=True,
                published_at=now,
                source_updated_at=note.updated,
            )
            note_posts[note.guid] = await self._posts.create(post)
            return PostChange(note.guid, ChangeAction.CREATED, post_id=post_id, title=note.title)

        action = ChangeAction.UPDATED if existing.is_published else ChangeAction.REPUBLISHED
        existing.title = note.title
        existing.content = transformed.html
        existing.excerpt = excerpt
        existing.source_updated_at = note.updated
        existing.publish(now)
        note_posts[note.guid] = await self._posts.update(existing)
        return PostChange(note.guid, action, post_id=existing.id, title=note.title)

    async def _unpublish_candidates(
        self,
        client: NoteStoreClient,
        blog: Blog,
        publish_guid: str | None,
        tag_cache: TagCache,
        full: bool,
        truncated: bool,
        window_start: datetime | None,
        note_posts: dict[str, Post],
        marked: set[str],
        unmarked: set[str],
        result: SyncResult,
        log: structlog.stdlib.BoundLogger,
    ) -> set[str]:
        """Guids of published posts whose note no longer carries the tag."""
        published = {guid for guid, post in note_posts.items() if post.is_published}
        lost = published & unmarked

        if publish_guid is None:
            return lost

        if full:
            if not truncated:
                lost |= published - marked
            return lost

        # Tag-filtered incremental listings never show notes that lost the
        # tag, so look at the same window without the tag filter
        try:
            unfiltered = await self._list_notes(
                client,
                NoteFilter(notebook_guid=blog.notebook_guid, updated_since=window_start),
            )
        except SourceError as e:
            if self.is_fatal(e, client):
                raise
            log.warning("Unpublish check skipped", error=str(e))
            result.errors.append(f"Unpublish check skipped: {e}")
            return lost

        for meta in unfiltered.notes:
            if meta.guid not in published or meta.guid in marked:
                continue
            if not await self._is_marked(client, meta, tag_cache, publish_guid):
                lost.add(meta.guid)
        return lost

    @staticmethod
    def _failure(meta: NoteMetadata, error: Exception) -> PostChange:
        return SyncOrchestrator._failure_for(meta.guid, meta.title, error)

    @staticmethod
    def _failure_for(guid: str, title: str | None, error: Exception) -> PostChange:
        get_metrics().record_item_failure("note", type(error).__name__)
        return PostChange(
            guid,
            ChangeAction.FAILED,
            title=title,
            error=f"{type(error).__name__}: {title or guid}: {error}",
        )
