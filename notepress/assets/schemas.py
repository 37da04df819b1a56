"""Data models for stored assets and the naming decisions behind them."""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


class NamingStrategy(str, Enum):
    """Which input produced an asset's filename, in order of preference."""

    TITLE = "title"
    ORIGINAL_FILENAME = "original_filename"
    CAPTURE_DATE = "capture_date"
    CONTENT_HASH = "content_hash"


class DateSource(str, Enum):
    EXIF = "exif"
    FILENAME = "filename"
    CONTENT_DATE = "content_date"


class AssetAction(str, Enum):
    """What a store() call did."""

    CREATED = "created"
    REUSED = "reused"
    DEDUPLICATED = "deduplicated"
    RENAMED = "renamed"


@dataclass
class NamingDecision:
    """
    How an asset's filename was chosen.

    `base_name` is the name before any uniqueness suffix and extension;
    the stored filename is `base_name[_suffix].extension`.
    """

    strategy: NamingStrategy
    base_name: str
    extension: str
    reason: str
    original_title: str | None = None
    original_filename: str | None = None
    capture_date: date | None = None
    date_source: DateSource | None = None
    camera_make: str | None = None
    camera_model: str | None = None

    @property
    def filename(self) -> str:
        return f"{self.base_name}.{self.extension}"


@dataclass
class AssetRecord:
    """A persisted asset. `content_hash` is unique across all records."""

    content_hash: str
    caller_hash: str
    owner_id: str
    filename: str
    storage_key: str
    mime_type: str
    size: int
    url: str
    naming_strategy: NamingStrategy
    naming_reason: str = ""
    original_title: str | None = None
    original_filename: str | None = None
    capture_date: date | None = None
    date_source: DateSource | None = None
    camera_make: str | None = None
    camera_model: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def decision(self) -> NamingDecision:
        stem, _, extension = self.filename.rpartition(".")
        return NamingDecision(
            strategy=self.naming_strategy,
            base_name=stem or self.filename,
            extension=extension if stem else "",
            reason=self.naming_reason,
            original_title=self.original_title,
            original_filename=self.original_filename,
            capture_date=self.capture_date,
            date_source=self.date_source,
            camera_make=self.camera_make,
            camera_model=self.camera_model,
        )


@dataclass
class StoredAsset:
    """Result of storing one binary."""

    url: str
    filename: str
    content_hash: str
    size: int
    decision: NamingDecision
    action: AssetAction
