"""Fixtures for sync tests: in-memory repositories and a fake note service."""

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from notepress.blogs.credentials import NoteCredentials
from notepress.blogs.repository import pick_unique_slug
from notepress.blogs.schemas import Blog, Post, PostSource, SourceKind, slugify
from notepress.content.transformer import ContentTransformer
from notepress.ingestion.errors import NotFoundError
from notepress.ingestion.http_client import RetryPolicy
from notepress.ingestion.schemas import (
    NoteFilter,
    NoteMetadata,
    Notebook,
    NotesMetadataList,
    NoteTag,
    PublishTagCacheEntry,
    SourceNote,
    SyncState,
)
from notepress.ingestion.tags import PublishTagResolver
from notepress.sync.config import SyncConfig
from notepress.sync.orchestrator import SyncOrchestrator

PUBLISH_TAG = NoteTag("t-pub", "published")
OTHER_TAG = NoteTag("t-travel", "travel")


class Clock:
    """Settable clock passed to the orchestrator."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryBlogRepository:
    def __init__(self, blogs: list[Blog]) -> None:
        self.blogs = {blog.id: blog for blog in blogs}
        self.attempts: list[datetime] = []
        self.successes: list[tuple[datetime, int | None]] = []
        self.ghost_synced: list[datetime] = []

    async def get(self, blog_id: str) -> Blog | None:
        return self.blogs.get(blog_id)

    async def list_note_blogs(self, owner_id: str) -> list[Blog]:
        return [
            blog
            for blog in self.blogs.values()
            if blog.owner_id == owner_id and blog.notebook_guid
        ]

    async def mark_sync_attempt(self, blog_id: str, attempted_at: datetime) -> None:
        self.attempts.append(attempted_at)
        self.blogs[blog_id].last_sync_attempt_at = attempted_at

    async def mark_sync_success(
        self, blog_id: str, synced_at: datetime, update_count: int | None = None
    ) -> None:
        self.successes.append((synced_at, update_count))
        blog = self.blogs[blog_id]
        blog.last_synced_at = synced_at
        blog.last_sync_attempt_at = synced_at
        if update_count is not None:
            blog.last_sync_update_count = update_count

    async def update_notebook_name(self, blog_id: str, name: str) -> None:
        self.blogs[blog_id].notebook_name = name

    async def mark_ghost_synced(self, blog_id: str, synced_at: datetime) -> None:
        self.ghost_synced.append(synced_at)
        self.blogs[blog_id].ghost_last_synced_at = synced_at


class InMemoryPostRepository:
    """Stores copies so callers must write changes back through update()."""

    def __init__(self) -> None:
        self.posts: dict[str, Post] = {}

    def by_source(self, kind: SourceKind, source_id: str) -> Post | None:
        for post in self.posts.values():
            if post.source == PostSource(kind, source_id):
                return post
        return None

    async def list_by_source_kind(
        self, blog_id: str, kind: SourceKind, published_only: bool = False
    ) -> list[Post]:
        return [
            replace(post)
            for post in self.posts.values()
            if post.blog_id == blog_id
            and post.source.kind == kind
            and (post.is_published or not published_only)
        ]

    async def unique_slug(self, blog_id: str, title: str, post_id: str = "") -> str:
        taken = {
            post.slug
            for post in self.posts.values()
            if post.blog_id == blog_id and post.id != post_id
        }
        return pick_unique_slug(slugify(title), taken)

    async def create(self, post: Post) -> Post:
        assert post.id not in self.posts
        self.posts[post.id] = replace(post)
        return replace(post)

    async def update(self, post: Post) -> Post:
        assert post.id in self.posts
        self.posts[post.id] = replace(post)
        return replace(post)


class FakeTagCacheRepository:
    def __init__(self) -> None:
        self.entries: dict[str, PublishTagCacheEntry] = {}

    async def get(self, owner_id: str) -> PublishTagCacheEntry | None:
        return self.entries.get(owner_id)

    async def upsert(self, owner_id: str, account_id: str, publish_tag_guid: str) -> None:
        self.entries[owner_id] = PublishTagCacheEntry(owner_id, account_id, publish_tag_guid)

    async def delete(self, owner_id: str) -> None:
        self.entries.pop(owner_id, None)


class FakeNoteClient:
    """
    Note service stand-in holding notes of a single notebook.

    `failures` maps an operation name (or "get_note:<guid>") to the error
    it raises.
    """

    def __init__(self) -> None:
        self.retry_policy = RetryPolicy(short_wait_cap_seconds=60)
        self.notes: dict[str, SourceNote] = {}
        self.tags = {PUBLISH_TAG.guid: PUBLISH_TAG, OTHER_TAG.guid: OTHER_TAG}
        self.notebooks = [Notebook("nb-1", "Blog Notes")]
        self.resources: dict[str, bytes] = {}
        self.update_count = 1
        self.account_id = "acct-1"
        self.failures: dict[str, Exception] = {}
        self.filters: list[NoteFilter] = []
        self.fetched: list[str] = []
        # Matches the service claims beyond the ones it actually returns
        self.phantom_matches = 0

    async def __aenter__(self) -> "FakeNoteClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    def _check(self, key: str) -> None:
        if key in self.failures:
            raise self.failures[key]

    def put_note(
        self,
        guid: str,
        title: str,
        updated: datetime,
        tags: tuple[str, ...] = (PUBLISH_TAG.guid,),
        content: str | None = None,
        resources: list | None = None,
    ) -> SourceNote:
        note = SourceNote(
            guid=guid,
            title=title,
            content=content or f"<en-note><p>{title} body</p></en-note>",
            tag_guids=list(tags),
            created=updated - timedelta(days=1),
            updated=updated,
            resources=list(resources or []),
        )
        self.notes[guid] = note
        self.update_count += 1
        return note

    async def get_sync_state(self) -> SyncState:
        self._check("get_sync_state")
        return SyncState(update_count=self.update_count)

    async def list_notebooks(self) -> list[Notebook]:
        self._check("list_notebooks")
        return list(self.notebooks)

    async def list_tags(self) -> list[NoteTag]:
        self._check("list_tags")
        return list(self.tags.values())

    async def get_tag(self, guid: str) -> NoteTag:
        self._check("get_tag")
        if guid not in self.tags:
            raise NotFoundError(f"Tag {guid} not found")
        return self.tags[guid]

    async def get_user_id(self) -> str:
        self._check("get_user_id")
        return self.account_id

    async def find_notes_metadata(
        self, note_filter: NoteFilter, offset: int = 0, max_notes: int = 50
    ) -> NotesMetadataList:
        self._check("find_notes_metadata")
        self.filters.append(note_filter)
        matches = [
            note
            for note in self.notes.values()
            if set(note_filter.tag_guids) <= set(note.tag_guids)
            and (note_filter.updated_since is None or note.updated > note_filter.updated_since)
        ]
        matches.sort(key=lambda note: note.updated)
        page = matches[offset : offset + max_notes]
        return NotesMetadataList(
            notes=[
                NoteMetadata(n.guid, n.title, list(n.tag_guids), n.created, n.updated)
                for n in page
            ],
            total_notes=len(matches) + self.phantom_matches,
            start_index=offset,
        )

    async def get_note(self, guid: str) -> SourceNote:
        self._check(f"get_note:{guid}")
        self.fetched.append(guid)
        return replace(self.notes[guid])

    async def get_resource_bytes(self, guid: str) -> bytes:
        self._check("get_resource_bytes")
        return self.resources[guid]


@pytest.fixture
def clock(fixed_now) -> Clock:
    return Clock(fixed_now)


@pytest.fixture
def blog() -> Blog:
    return Blog(id="blog-1", title="My Blog", owner_id="owner-1", notebook_guid="nb-1")


@pytest.fixture
def credentials() -> NoteCredentials:
    return NoteCredentials("token-123", "https://notes.test/store")


@pytest.fixture
def blog_repo(blog) -> InMemoryBlogRepository:
    return InMemoryBlogRepository([blog])


@pytest.fixture
def post_repo() -> InMemoryPostRepository:
    return InMemoryPostRepository()


@pytest.fixture
def tag_cache_repo() -> FakeTagCacheRepository:
    return FakeTagCacheRepository()


@pytest.fixture
def note_client() -> FakeNoteClient:
    return FakeNoteClient()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(inter_note_delay=0, tag_fetch_delay=0)


@pytest.fixture
def transformer(asset_store) -> ContentTransformer:
    return ContentTransformer(asset_store, local_url_prefixes=("https://cdn.test/assets",))


@pytest.fixture
def orchestrator(
    blog_repo, post_repo, transformer, tag_cache_repo, note_client, sync_config, clock
) -> SyncOrchestrator:
    return SyncOrchestrator(
        blog_repo,
        post_repo,
        transformer,
        PublishTagResolver(tag_cache_repo),
        client_factory=lambda credentials: note_client,
        config=sync_config,
        clock=clock,
    )
