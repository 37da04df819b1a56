"""Assets: content-addressed storage for media embedded in posts."""

from notepress.assets.backends import (
    LocalObjectStorage,
    MemoryObjectStorage,
    ObjectStorage,
    ObjectStorageError,
)
from notepress.assets.config import AssetConfig
from notepress.assets.repository import AssetRepository
from notepress.assets.schemas import (
    AssetAction,
    AssetRecord,
    DateSource,
    NamingDecision,
    NamingStrategy,
    StoredAsset,
)
from notepress.assets.store import AssetStorageError, AssetStore

__all__ = [
    "AssetAction",
    "AssetConfig",
    "AssetRecord",
    "AssetRepository",
    "AssetStorageError",
    "AssetStore",
    "DateSource",
    "LocalObjectStorage",
    "MemoryObjectStorage",
    "NamingDecision",
    "NamingStrategy",
    "ObjectStorage",
    "ObjectStorageError",
    "StoredAsset",
]
