"""Data models for notes and posts fetched from external sources."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def from_epoch_ms(value: Any) -> datetime | None:
    """Convert a millisecond epoch timestamp to an aware datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, accepting a trailing 'Z'."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class NoteTag:
    guid: str
    name: str


@dataclass
class Notebook:
    guid: str
    name: str


@dataclass
class NoteResource:
    """An attachment referenced from note markup by its body hash."""

    guid: str
    body_hash: str
    mime: str
    size: int = 0
    width: int | None = None
    height: int | None = None
    filename: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "NoteResource":
        attributes = data.get("attributes") or {}
        return cls(
            guid=data["guid"],
            body_hash=str(data.get("bodyHash", "")).lower(),
            mime=data.get("mime") or "application/octet-stream",
            size=int(data.get("size") or 0),
            width=data.get("width"),
            height=data.get("height"),
            filename=attributes.get("fileName") or data.get("fileName"),
        )


@dataclass
class SourceNote:
    """A full note as returned by the note service."""

    guid: str
    title: str
    content: str
    tag_guids: list[str] = field(default_factory=list)
    tag_names: list[str] = field(default_factory=list)
    created: datetime | None = None
    updated: datetime | None = None
    resources: list[NoteResource] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SourceNote":
        return cls(
            guid=data["guid"],
            title=data.get("title") or "Untitled",
            content=data.get("content") or "",
            tag_guids=list(data.get("tagGuids") or []),
            tag_names=list(data.get("tagNames") or []),
            created=from_epoch_ms(data.get("created")),
            updated=from_epoch_ms(data.get("updated")),
            resources=[NoteResource.from_api(r) for r in data.get("resources") or []],
        )

    def resource_by_hash(self, body_hash: str) -> NoteResource | None:
        wanted = body_hash.lower()
        for resource in self.resources:
            if resource.body_hash == wanted:
                return resource
        return None


@dataclass
class NoteMetadata:
    """Lightweight search result: enough to decide whether to fetch the note."""

    guid: str
    title: str = ""
    tag_guids: list[str] = field(default_factory=list)
    created: datetime | None = None
    updated: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "NoteMetadata":
        return cls(
            guid=data["guid"],
            title=data.get("title") or "",
            tag_guids=list(data.get("tagGuids") or []),
            created=from_epoch_ms(data.get("created")),
            updated=from_epoch_ms(data.get("updated")),
        )


@dataclass
class NotesMetadataList:
    notes: list[NoteMetadata]
    total_notes: int
    start_index: int = 0

    @property
    def truncated(self) -> bool:
        """True when the service holds more matches than this page returned."""
        return self.start_index + len(self.notes) < self.total_notes


@dataclass
class NoteFilter:
    """Search criteria for find_notes_metadata."""

    notebook_guid: str | None = None
    tag_guids: list[str] = field(default_factory=list)
    updated_since: datetime | None = None

    def to_api(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"order": "UPDATED", "ascending": True}
        if self.notebook_guid:
            payload["notebookGuid"] = self.notebook_guid
        if self.tag_guids:
            payload["tagGuids"] = list(self.tag_guids)
        if self.updated_since is not None:
            since = self.updated_since.astimezone(timezone.utc)
            payload["words"] = f"updated:{since.strftime('%Y%m%dT%H%M%SZ')}"
        return payload


@dataclass
class SyncState:
    """Account-level change counter reported by the note service."""

    update_count: int
    current_time: datetime | None = None
    full_sync_before: datetime | None = None


@dataclass
class ResourceData:
    """Resource bytes plus the attributes needed to store them."""

    guid: str
    data: bytes
    mime: str
    filename: str | None = None
    width: int | None = None
    height: int | None = None


@dataclass
class GhostPost:
    """A post from the Ghost Content API."""

    id: str
    title: str
    html: str
    slug: str = ""
    url: str | None = None
    excerpt: str | None = None
    status: str = "published"
    published_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "GhostPost":
        return cls(
            id=data["id"],
            title=data.get("title") or "Untitled",
            html=data.get("html") or "",
            slug=data.get("slug") or "",
            url=data.get("url"),
            excerpt=data.get("custom_excerpt") or data.get("excerpt"),
            # The Content API only ever serves published posts
            status=data.get("status") or "published",
            published_at=parse_iso_datetime(data.get("published_at")),
            updated_at=parse_iso_datetime(data.get("updated_at")),
        )


@dataclass
class PublishTagCacheEntry:
    """Persisted publish-tag guid, valid only for the account it was resolved on."""

    owner_id: str
    account_id: str
    publish_tag_guid: str
    updated_at: datetime | None = None
