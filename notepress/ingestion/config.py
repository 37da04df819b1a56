"""Configuration for the external source HTTP layer."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HTTPConfig(BaseSettings):
    """Timeouts and retry behaviour shared by the note-store and Ghost clients."""

    model_config = SettingsConfigDict(
        env_prefix="HTTP_",
        case_sensitive=False,
        extra="ignore",
    )

    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout",
    )
    max_attempts: int = Field(
        default=4,
        ge=1,
        le=10,
        description="Attempts per call, including the first one",
    )
    short_wait_cap_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Longest rate-limit wait we sleep through; longer waits fail fast",
    )
    default_rate_limit_wait_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Wait assumed when a rate-limit response carries no duration",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay for exponential backoff on transient errors",
    )
    max_backoff_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for a single backoff sleep",
    )
    jitter_factor: float = Field(
        default=0.1,
        ge=0,
        le=1,
        description="Fraction of the backoff added as random jitter",
    )
