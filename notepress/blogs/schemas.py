"""Data models for blogs and posts."""

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class SourceKind(str, Enum):
    """Where a post's content comes from."""

    NOTE = "note"
    GHOST = "ghost"
    MANUAL = "manual"


@dataclass(frozen=True)
class PostSource:
    """
    Tagged origin of a post.

    NOTE and GHOST sources carry the external id; MANUAL posts have none.
    """

    kind: SourceKind
    id: str | None = None

    def __post_init__(self) -> None:
        if self.kind == SourceKind.MANUAL:
            if self.id is not None:
                raise ValueError("Manual posts have no source id")
        elif not self.id:
            raise ValueError(f"{self.kind.value} source requires an id")

    @classmethod
    def note(cls, guid: str) -> "PostSource":
        return cls(SourceKind.NOTE, guid)

    @classmethod
    def ghost(cls, post_id: str) -> "PostSource":
        return cls(SourceKind.GHOST, post_id)

    @classmethod
    def manual(cls) -> "PostSource":
        return cls(SourceKind.MANUAL)


def slugify(title: str, max_length: int = 80) -> str:
    """Lowercase, ASCII-fold and hyphenate a title. Falls back to 'post'."""
    text = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode()
    text = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return text[:max_length].rstrip("-") or "post"


@dataclass
class Blog:
    """A blog fed by one notebook and, optionally, one Ghost site."""

    id: str
    title: str
    owner_id: str
    notebook_guid: str | None = None
    notebook_name: str | None = None
    last_synced_at: datetime | None = None
    last_sync_attempt_at: datetime | None = None
    last_sync_update_count: int | None = None
    ghost_site_url: str | None = None
    ghost_last_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Post:
    """
    A blog post.

    `is_published` and `published_at` always move together; change them
    through publish() and unpublish().
    """

    id: str
    blog_id: str
    title: str
    content: str
    slug: str
    source: PostSource = field(default_factory=PostSource.manual)
    excerpt: str | None = None
    is_published: bool = False
    published_at: datetime | None = None
    source_updated_at: datetime | None = None
    source_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.is_published != (self.published_at is not None):
            raise ValueError("is_published must be true exactly when published_at is set")

    def publish(self, at: datetime | None = None) -> None:
        if not self.is_published:
            self.is_published = True
            self.published_at = at or datetime.now(timezone.utc)

    def unpublish(self) -> None:
        self.is_published = False
        self.published_at = None
