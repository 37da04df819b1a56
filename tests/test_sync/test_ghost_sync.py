"""Tests for GhostSyncService."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx

from notepress.blogs.schemas import Post, PostSource, SourceKind
from notepress.ingestion.errors import UnauthorizedError
from notepress.ingestion.http_client import RetryPolicy
from notepress.ingestion.schemas import GhostPost
from notepress.sync.ghost_sync import GhostSyncService
from notepress.sync.schemas import ChangeAction

SITE = "https://ghost.example.com"
PUBLISHED = datetime(2025, 2, 1, 8, tzinfo=timezone.utc)
GIF = b"GIF89a" + b"\x03" * 32


class FakeGhostClient:
    def __init__(self, posts: list[GhostPost]) -> None:
        self.posts = posts
        self.retry_policy = RetryPolicy()
        self.full_fetches = 0
        self.since: list[datetime] = []
        self.error: Exception | None = None

    async def __aenter__(self) -> "FakeGhostClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def fetch_posts(self) -> list[GhostPost]:
        if self.error:
            raise self.error
        self.full_fetches += 1
        return list(self.posts)

    async def fetch_posts_updated_since(self, since: datetime) -> list[GhostPost]:
        self.since.append(since)
        return [p for p in self.posts if p.updated_at > since]


def _ghost_post(post_id: str, title: str, updated_at: datetime, **overrides) -> GhostPost:
    values = dict(
        id=post_id,
        title=title,
        html=f"<p>{title} text</p>",
        slug=title.lower().replace(" ", "-"),
        url=f"{SITE}/{post_id}/",
        published_at=PUBLISHED,
        updated_at=updated_at,
    )
    values.update(overrides)
    return GhostPost(**values)


@pytest.fixture
def ghost_client() -> FakeGhostClient:
    return FakeGhostClient(
        [
            _ghost_post("g1", "Hello Ghost", PUBLISHED, excerpt="Custom excerpt"),
            _ghost_post("g2", "Second", PUBLISHED + timedelta(days=1)),
        ]
    )


@pytest.fixture
def ghost_sync(blog_repo, post_repo, transformer, ghost_client, sync_config, clock):
    return GhostSyncService(
        blog_repo,
        post_repo,
        transformer,
        client_factory=lambda site_url, key: ghost_client,
        config=sync_config,
        clock=clock,
    )


def _post(post_repo, ghost_id):
    return post_repo.by_source(SourceKind.GHOST, ghost_id)


class TestGhostSync:

    @pytest.mark.asyncio
    async def test_first_sync_creates_posts(
        self, ghost_sync, ghost_client, blog, post_repo, blog_repo, fixed_now
    ):
        result = await ghost_sync.sync(blog, SITE, "key")

        assert result.full_sync
        assert result.created == 2
        assert ghost_client.full_fetches == 1
        post = _post(post_repo, "g1")
        assert post.slug == "hello-ghost"
        assert post.published_at == PUBLISHED
        assert post.excerpt == "Custom excerpt"
        assert post.source_url == f"{SITE}/g1/"
        assert _post(post_repo, "g2").excerpt == "Second text"
        assert blog_repo.ghost_synced == [fixed_now]
        assert blog.ghost_last_synced_at == fixed_now

    @pytest.mark.asyncio
    async def test_incremental_pass_updates_changed_posts(
        self, ghost_sync, ghost_client, blog, post_repo, clock, fixed_now
    ):
        await ghost_sync.sync(blog, SITE, "key")
        clock.advance(hours=1)
        ghost_client.posts[1] = _ghost_post(
            "g2", "Second Edition", fixed_now + timedelta(minutes=10)
        )

        result = await ghost_sync.sync(blog, SITE, "key")

        assert not result.full_sync
        assert ghost_client.since == [fixed_now]
        assert result.updated == 1
        assert result.notes_found == 1
        post = _post(post_repo, "g2")
        assert post.title == "Second Edition"
        assert post.slug == "second"

    @pytest.mark.asyncio
    async def test_forced_full_pass_leaves_unchanged_posts(
        self, ghost_sync, blog, clock
    ):
        await ghost_sync.sync(blog, SITE, "key")
        clock.advance(hours=1)

        result = await ghost_sync.sync(blog, SITE, "key", force_full=True)

        assert {c.action for c in result.posts} == {ChangeAction.UNCHANGED}

    @pytest.mark.asyncio
    async def test_slug_collision_with_existing_post(
        self, ghost_sync, blog, post_repo
    ):
        await post_repo.create(
            Post(
                id="note-post",
                blog_id=blog.id,
                title="Hello Ghost",
                content="",
                slug="hello-ghost",
                source=PostSource.note("n1"),
            )
        )

        await ghost_sync.sync(blog, SITE, "key")

        assert _post(post_repo, "g1").slug == "hello-ghost-1"

    @pytest.mark.asyncio
    async def test_status_change_unpublishes(
        self, ghost_sync, ghost_client, blog, post_repo, clock
    ):
        await ghost_sync.sync(blog, SITE, "key")
        clock.advance(hours=1)
        ghost_client.posts[0] = _ghost_post("g1", "Hello Ghost", PUBLISHED, status="draft")

        result = await ghost_sync.sync(blog, SITE, "key", force_full=True)

        assert result.unpublished == 1
        assert not _post(post_repo, "g1").is_published

    @pytest.mark.asyncio
    async def test_unauthorized_key_aborts(self, ghost_sync, ghost_client, blog, blog_repo):
        ghost_client.error = UnauthorizedError("bad key", status_code=401)

        with pytest.raises(UnauthorizedError):
            await ghost_sync.sync(blog, SITE, "wrong")

        assert blog_repo.ghost_synced == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_remote_images_copied_to_asset_store(
        self, ghost_sync, ghost_client, blog, post_repo, memory_storage
    ):
        image_url = f"{SITE}/content/images/2025/02/harbour.png"
        respx.get(image_url).mock(
            return_value=httpx.Response(200, content=GIF, headers={"Content-Type": "image/gif"})
        )
        ghost_client.posts = [
            _ghost_post("g1", "Harbour", PUBLISHED, html=f'<img src="{image_url}" alt="">')
        ]

        result = await ghost_sync.sync(blog, SITE, "key")

        assert result.created == 1
        content = _post(post_repo, "g1").content
        assert "https://cdn.test/assets/images/harbour.gif" in content
        assert image_url not in content
        assert "images/harbour.gif" in memory_storage.objects
