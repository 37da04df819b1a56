"""Configuration for sync passes."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncConfig(BaseSettings):
    """Pacing, paging and failure thresholds for note and Ghost sync."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        case_sensitive=False,
        extra="ignore",
    )

    page_size: int = Field(
        default=50,
        ge=1,
        le=250,
        description="Maximum note metadata entries requested per pass",
    )
    inter_note_delay: float = Field(
        default=1.0,
        ge=0,
        description="Seconds to wait between candidate notes",
    )
    tag_fetch_delay: float = Field(
        default=0.1,
        ge=0,
        description="Seconds to wait between uncached tag lookups",
    )
    publish_tag: str = Field(
        default="published",
        min_length=1,
        description="Tag name marking a note as published (case-insensitive)",
    )
    max_failure_ratio: float = Field(
        default=1 / 3,
        gt=0,
        le=1,
        description="Share of failed candidates above which the pass is failed",
    )
    min_sync_interval_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Minimum time between two sync triggers for the same blog",
    )
    excerpt_length: int = Field(
        default=200,
        ge=20,
        description="Maximum excerpt length in characters",
    )
