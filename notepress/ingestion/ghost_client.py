"""
Ghost Content API client.

Reads published posts (with HTML) from a Ghost site. Authentication is the
site's Content API key passed as the `key` query parameter.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from notepress.ingestion.config import HTTPConfig
from notepress.ingestion.errors import SourceError
from notepress.ingestion.http_client import HTTPClient, RetryPolicy
from notepress.ingestion.schemas import GhostPost

logger = logging.getLogger(__name__)

API_PATH = "/ghost/api/content"
PAGE_SIZE = 50


def validate_ghost_url(url: str) -> bool:
    """Check that `url` is an absolute http(s) URL."""
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class GhostClient:
    """
    Async Ghost Content API client.

    Usage:
        async with GhostClient("https://blog.example.com", key) as ghost:
            posts = await ghost.fetch_posts()
    """

    def __init__(
        self,
        site_url: str,
        content_api_key: str,
        config: HTTPConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        page_size: int = PAGE_SIZE,
    ):
        if not validate_ghost_url(site_url):
            raise ValueError(f"Invalid Ghost site URL: {site_url!r}")
        self._config = config or HTTPConfig()
        self.site_url = site_url.rstrip("/")
        self._key = content_api_key
        self.page_size = page_size
        self.retry_policy = retry_policy or RetryPolicy.from_config(self._config)
        self._http = HTTPClient(
            retry_policy=self.retry_policy,
            timeout=self._config.timeout_seconds,
            default_rate_limit_wait=self._config.default_rate_limit_wait_seconds,
            service_name="ghost",
        )

    async def __aenter__(self) -> "GhostClient":
        await self._http.__aenter__()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self._http.__aexit__(exc_type, exc_val, exc_tb)

    async def _browse(self, filter_expr: str, order: str) -> list[GhostPost]:
        """Walk every page of /posts/ matching `filter_expr`."""
        posts: list[GhostPost] = []
        page: int | None = 1
        while page is not None:
            data = await self._http.get_json(
                f"{self.site_url}{API_PATH}/posts/",
                params={
                    "key": self._key,
                    "formats": "html",
                    "filter": filter_expr,
                    "order": order,
                    "limit": self.page_size,
                    "page": page,
                },
            )
            posts.extend(GhostPost.from_api(p) for p in data.get("posts") or [])
            pagination = (data.get("meta") or {}).get("pagination") or {}
            page = pagination.get("next")

        logger.info(f"Fetched {len(posts)} posts from {self.site_url}")
        return posts

    async def fetch_posts(self) -> list[GhostPost]:
        """Fetch every published post."""
        return await self._browse("status:published", "published_at desc")

    async def fetch_posts_updated_since(self, since: datetime) -> list[GhostPost]:
        """Fetch published posts whose updated_at is after `since`."""
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        stamp = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
        return await self._browse(
            f"status:published+updated_at:>'{stamp}'",
            "updated_at desc",
        )

    async def test_connection(self) -> bool:
        """Return True if the site answers a one-post browse."""
        try:
            await self._http.get_json(
                f"{self.site_url}{API_PATH}/posts/",
                params={"key": self._key, "limit": 1},
            )
        except SourceError as e:
            logger.warning(f"Ghost connection test failed for {self.site_url}: {e}")
            return False
        return True
