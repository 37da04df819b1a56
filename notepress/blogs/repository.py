"""Database repositories for blogs and posts."""

import logging
from datetime import datetime

from notepress.blogs.schemas import Blog, Post, PostSource, SourceKind, slugify
from notepress.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_BLOGS_SQL = """
CREATE TABLE IF NOT EXISTS blogs (
    id                      TEXT PRIMARY KEY,
    title                   TEXT NOT NULL,
    owner_id                TEXT NOT NULL,
    notebook_guid           TEXT,
    notebook_name           TEXT,
    last_synced_at          TIMESTAMPTZ,
    last_sync_attempt_at    TIMESTAMPTZ,
    last_sync_update_count  INTEGER,
    ghost_site_url          TEXT,
    ghost_last_synced_at    TIMESTAMPTZ,
    created_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at              TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_blogs_owner ON blogs(owner_id);
"""

_CREATE_POSTS_SQL = """
CREATE TABLE IF NOT EXISTS posts (
    id                 TEXT PRIMARY KEY,
    blog_id            TEXT NOT NULL REFERENCES blogs(id) ON DELETE CASCADE,
    title              TEXT NOT NULL,
    content            TEXT NOT NULL,
    excerpt            TEXT,
    slug               TEXT NOT NULL,
    is_published       BOOLEAN NOT NULL DEFAULT FALSE,
    published_at       TIMESTAMPTZ,
    source_kind        TEXT NOT NULL DEFAULT 'manual',
    source_id          TEXT,
    source_updated_at  TIMESTAMPTZ,
    source_url         TEXT,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT posts_published_consistent
        CHECK (is_published = (published_at IS NOT NULL)),
    CONSTRAINT posts_source_id_present
        CHECK ((source_kind = 'manual') = (source_id IS NULL))
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_posts_blog_slug
    ON posts(blog_id, slug);
CREATE UNIQUE INDEX IF NOT EXISTS idx_posts_blog_source
    ON posts(blog_id, source_kind, source_id) WHERE source_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_posts_blog_published
    ON posts(blog_id, source_kind) WHERE is_published = TRUE;
"""

_BLOG_COLUMNS = """
    id, title, owner_id, notebook_guid, notebook_name, last_synced_at,
    last_sync_attempt_at, last_sync_update_count, ghost_site_url,
    ghost_last_synced_at, created_at, updated_at
"""

_GET_BLOG_SQL = f"SELECT {_BLOG_COLUMNS} FROM blogs WHERE id = $1"

_LIST_OWNER_NOTE_BLOGS_SQL = f"""
SELECT {_BLOG_COLUMNS}
FROM blogs
WHERE owner_id = $1 AND notebook_guid IS NOT NULL
ORDER BY created_at
"""

_UPSERT_BLOG_SQL = f"""
INSERT INTO blogs (id, title, owner_id, notebook_guid, notebook_name, ghost_site_url)
VALUES ($1, $2, $3, $4, $5, $6)
ON CONFLICT (id) DO UPDATE SET
    title = EXCLUDED.title,
    owner_id = EXCLUDED.owner_id,
    notebook_guid = EXCLUDED.notebook_guid,
    notebook_name = EXCLUDED.notebook_name,
    ghost_site_url = EXCLUDED.ghost_site_url,
    updated_at = NOW()
RETURNING {_BLOG_COLUMNS}
"""

_MARK_ATTEMPT_SQL = """
UPDATE blogs SET last_sync_attempt_at = $2, updated_at = NOW()
WHERE id = $1
"""

_MARK_SUCCESS_SQL = """
UPDATE blogs SET
    last_synced_at = $2,
    last_sync_attempt_at = $2,
    last_sync_update_count = COALESCE($3, last_sync_update_count),
    updated_at = NOW()
WHERE id = $1
"""

_UPDATE_NOTEBOOK_NAME_SQL = """
UPDATE blogs SET notebook_name = $2, updated_at = NOW()
WHERE id = $1
"""

_MARK_GHOST_SYNCED_SQL = """
UPDATE blogs SET ghost_last_synced_at = $2, updated_at = NOW()
WHERE id = $1
"""

_POST_COLUMNS = """
    id, blog_id, title, content, excerpt, slug, is_published, published_at,
    source_kind, source_id, source_updated_at, source_url, created_at, updated_at
"""

_GET_POST_SQL = f"SELECT {_POST_COLUMNS} FROM posts WHERE id = $1"

_GET_POST_BY_SOURCE_SQL = f"""
SELECT {_POST_COLUMNS}
FROM posts
WHERE blog_id = $1 AND source_kind = $2 AND source_id = $3
"""

_LIST_BY_KIND_SQL = f"""
SELECT {_POST_COLUMNS}
FROM posts
WHERE blog_id = $1 AND source_kind = $2
ORDER BY created_at
"""

_LIST_PUBLISHED_BY_KIND_SQL = f"""
SELECT {_POST_COLUMNS}
FROM posts
WHERE blog_id = $1 AND source_kind = $2 AND is_published = TRUE
ORDER BY created_at
"""

_SLUGS_LIKE_SQL = """
SELECT slug FROM posts
WHERE blog_id = $1 AND (slug = $2 OR slug LIKE $2 || '-%') AND id <> $3
"""

_INSERT_POST_SQL = f"""
INSERT INTO posts (
    id, blog_id, title, content, excerpt, slug, is_published, published_at,
    source_kind, source_id, source_updated_at, source_url
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
RETURNING {_POST_COLUMNS}
"""

_UPDATE_POST_SQL = f"""
UPDATE posts SET
    title = $2,
    content = $3,
    excerpt = $4,
    slug = $5,
    is_published = $6,
    published_at = $7,
    source_updated_at = $8,
    source_url = $9,
    updated_at = NOW()
WHERE id = $1
RETURNING {_POST_COLUMNS}
"""


def _record_to_blog(record) -> Blog:
    """Convert an asyncpg Record to a Blog dataclass."""
    return Blog(
        id=record["id"],
        title=record["title"],
        owner_id=record["owner_id"],
        notebook_guid=record["notebook_guid"],
        notebook_name=record["notebook_name"],
        last_synced_at=record["last_synced_at"],
        last_sync_attempt_at=record["last_sync_attempt_at"],
        last_sync_update_count=record["last_sync_update_count"],
        ghost_site_url=record["ghost_site_url"],
        ghost_last_synced_at=record["ghost_last_synced_at"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _record_to_post(record) -> Post:
    """Convert an asyncpg Record to a Post dataclass."""
    return Post(
        id=record["id"],
        blog_id=record["blog_id"],
        title=record["title"],
        content=record["content"],
        excerpt=record["excerpt"],
        slug=record["slug"],
        is_published=record["is_published"],
        published_at=record["published_at"],
        source=PostSource(SourceKind(record["source_kind"]), record["source_id"]),
        source_updated_at=record["source_updated_at"],
        source_url=record["source_url"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def pick_unique_slug(base: str, taken: set[str]) -> str:
    """`base`, or `base-1`, `base-2`, ... whichever is free first."""
    if base not in taken:
        return base
    n = 1
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


class BlogRepository:
    """Reads blogs and records sync bookkeeping on them."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_BLOGS_SQL)
        logger.info("Blogs table ensured")

    async def get(self, blog_id: str) -> Blog | None:
        record = await self._db.fetchrow(_GET_BLOG_SQL, blog_id)
        return _record_to_blog(record) if record else None

    async def list_note_blogs(self, owner_id: str) -> list[Blog]:
        """The owner's blogs that are linked to a notebook, oldest first."""
        rows = await self._db.fetch(_LIST_OWNER_NOTE_BLOGS_SQL, owner_id)
        return [_record_to_blog(row) for row in rows]

    async def upsert(self, blog: Blog) -> Blog:
        record = await self._db.fetchrow(
            _UPSERT_BLOG_SQL,
            blog.id,
            blog.title,
            blog.owner_id,
            blog.notebook_guid,
            blog.notebook_name,
            blog.ghost_site_url,
        )
        return _record_to_blog(record)

    async def mark_sync_attempt(self, blog_id: str, attempted_at: datetime) -> None:
        await self._db.execute(_MARK_ATTEMPT_SQL, blog_id, attempted_at)

    async def mark_sync_success(
        self,
        blog_id: str,
        synced_at: datetime,
        update_count: int | None = None,
    ) -> None:
        """Advance last_synced_at (and the attempt time with it)."""
        await self._db.execute(_MARK_SUCCESS_SQL, blog_id, synced_at, update_count)

    async def update_notebook_name(self, blog_id: str, name: str) -> None:
        await self._db.execute(_UPDATE_NOTEBOOK_NAME_SQL, blog_id, name)

    async def mark_ghost_synced(self, blog_id: str, synced_at: datetime) -> None:
        await self._db.execute(_MARK_GHOST_SYNCED_SQL, blog_id, synced_at)


class PostRepository:
    """CRUD for posts, keyed by id or by (blog, source)."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_POSTS_SQL)
        logger.info("Posts table ensured")

    async def get(self, post_id: str) -> Post | None:
        record = await self._db.fetchrow(_GET_POST_SQL, post_id)
        return _record_to_post(record) if record else None

    async def find_by_source(self, blog_id: str, source: PostSource) -> Post | None:
        if source.id is None:
            return None
        record = await self._db.fetchrow(
            _GET_POST_BY_SOURCE_SQL, blog_id, source.kind.value, source.id
        )
        return _record_to_post(record) if record else None

    async def list_by_source_kind(
        self,
        blog_id: str,
        kind: SourceKind,
        published_only: bool = False,
    ) -> list[Post]:
        sql = _LIST_PUBLISHED_BY_KIND_SQL if published_only else _LIST_BY_KIND_SQL
        rows = await self._db.fetch(sql, blog_id, kind.value)
        return [_record_to_post(row) for row in rows]

    async def unique_slug(self, blog_id: str, title: str, post_id: str = "") -> str:
        """Slug for `title` not used by any other post of the blog."""
        base = slugify(title)
        rows = await self._db.fetch(_SLUGS_LIKE_SQL, blog_id, base, post_id)
        return pick_unique_slug(base, {row["slug"] for row in rows})

    async def create(self, post: Post) -> Post:
        record = await self._db.fetchrow(
            _INSERT_POST_SQL,
            post.id,
            post.blog_id,
            post.title,
            post.content,
            post.excerpt,
            post.slug,
            post.is_published,
            post.published_at,
            post.source.kind.value,
            post.source.id,
            post.source_updated_at,
            post.source_url,
        )
        return _record_to_post(record)

    async def update(self, post: Post) -> Post:
        record = await self._db.fetchrow(
            _UPDATE_POST_SQL,
            post.id,
            post.title,
            post.content,
            post.excerpt,
            post.slug,
            post.is_published,
            post.published_at,
            post.source_updated_at,
            post.source_url,
        )
        return _record_to_post(record)
