"""External content sources: note service and Ghost clients."""

from notepress.ingestion.errors import (
    NotFoundError,
    RateLimitedError,
    SourceError,
    TransientError,
    UnauthorizedError,
)
from notepress.ingestion.ghost_client import GhostClient
from notepress.ingestion.http_client import HTTPClient, RetryPolicy
from notepress.ingestion.note_client import NoteStoreClient
from notepress.ingestion.repository import PublishTagCacheRepository
from notepress.ingestion.tags import PublishTagResolver, TagCache

__all__ = [
    "GhostClient",
    "HTTPClient",
    "NoteStoreClient",
    "NotFoundError",
    "PublishTagCacheRepository",
    "PublishTagResolver",
    "RateLimitedError",
    "RetryPolicy",
    "SourceError",
    "TagCache",
    "TransientError",
    "UnauthorizedError",
]
