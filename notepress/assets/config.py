"""Configuration for the content-addressed asset store."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AssetConfig(BaseSettings):
    """Object storage location and filename rules."""

    model_config = SettingsConfigDict(
        env_prefix="ASSETS_",
        case_sensitive=False,
        extra="ignore",
    )

    storage_root: str = Field(
        default="./data/assets",
        description="Directory the local object storage backend writes into",
    )
    public_url_prefix: str = Field(
        default="/assets",
        description="URL prefix under which stored objects are served",
    )
    key_prefix: str = Field(
        default="images",
        description="Folder inside the bucket that asset keys are placed in",
    )
    filename_prefix: str = Field(
        default="image",
        description="Prefix for date and hash based filenames",
    )
    max_name_length: int = Field(
        default=50,
        ge=8,
        le=200,
        description="Maximum length of the sanitized part of a filename",
    )
    max_collisions: int = Field(
        default=999,
        ge=1,
        description="Numbered suffixes tried before falling back to a hash suffix",
    )
