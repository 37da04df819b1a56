"""
Content transformer: turns source markup into post HTML.

Note markup arrives wrapped in an <en-note> envelope with <en-media hash=..>
placeholders for attachments. Ghost HTML is already HTML but points at
images on the Ghost host. In both cases every binary is copied into the
asset store and the markup is rewritten to reference the stored copy.
"""

import hashlib
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from posixpath import basename
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup, Tag

from notepress.assets.media import detect_mime_type, is_image
from notepress.assets.schemas import StoredAsset
from notepress.assets.store import AssetStorageError, AssetStore
from notepress.blogs.schemas import SourceKind
from notepress.ingestion.errors import NotFoundError, SourceError, TransientError
from notepress.ingestion.schemas import NoteResource

logger = logging.getLogger(__name__)

_XML_DECLARATION = re.compile(r"<\?xml[^>]*\?>", re.IGNORECASE)
_DOCTYPE = re.compile(r"<!DOCTYPE[^>]*>", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

DEFAULT_EXCERPT_LENGTH = 200

ResourceFetcher = Callable[[NoteResource], Awaitable[bytes]]
UrlFetcher = Callable[[str], Awaitable[tuple[bytes, str | None]]]


def url_hash(url: str) -> str:
    """Caller hash for remote media: first 16 hex chars of SHA-256 of the URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


def _strip_envelope_text(markup: str) -> str:
    return _DOCTYPE.sub("", _XML_DECLARATION.sub("", markup))


def generate_excerpt(markup: str, max_length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    """Plain-text preview of `markup`, truncated with '...'."""
    soup = BeautifulSoup(_strip_envelope_text(markup), "html.parser")
    for tag in soup.find_all(["en-media", "img", "script", "style"]):
        tag.decompose()
    text = _WHITESPACE.sub(" ", soup.get_text(" ")).strip()
    if len(text) > max_length:
        return text[:max_length].rstrip() + "..."
    return text


@dataclass
class TransformContext:
    """
    Everything the transformer needs besides the markup itself.

    Attributes:
        owner_id: Id of the post the media is stored for
        title: Post title, used to name stored media
        content_date: Creation date of the source item
        resources: Attachments of the note (note markup only)
        fetch_resource: Loads one attachment's bytes (note markup only)
        fetch_url: Downloads a remote URL (Ghost HTML only)
    """

    owner_id: str
    title: str | None = None
    content_date: datetime | None = None
    resources: list[NoteResource] = field(default_factory=list)
    fetch_resource: ResourceFetcher | None = None
    fetch_url: UrlFetcher | None = None


@dataclass
class TransformResult:
    html: str
    media_count: int = 0
    errors: list[str] = field(default_factory=list)
    assets: list[StoredAsset] = field(default_factory=list)


class ContentTransformer:
    """
    Rewrites note and Ghost markup to reference locally stored media.

    Usage:
        transformer = ContentTransformer(asset_store)
        result = await transformer.transform(note.content, SourceKind.NOTE, context)
    """

    def __init__(
        self,
        asset_store: AssetStore,
        local_url_prefixes: tuple[str, ...] = (),
    ):
        self._assets = asset_store
        self.local_url_prefixes = tuple(p for p in local_url_prefixes if p)

    async def transform(
        self,
        markup: str,
        source_kind: SourceKind,
        context: TransformContext,
    ) -> TransformResult:
        """
        Transform `markup` from `source_kind` into post HTML.

        Per-media problems are recorded in `errors` and the reference is
        dropped, except a Ghost image that could not be downloaded keeps
        its original URL. Rate-limit and auth errors from the note service
        propagate.
        """
        if source_kind == SourceKind.NOTE:
            return await self._transform_note(markup, context)
        if source_kind == SourceKind.GHOST:
            return await self._transform_ghost(markup, context)
        return TransformResult(html=markup)

    async def _transform_note(self, markup: str, context: TransformContext) -> TransformResult:
        soup = BeautifulSoup(_strip_envelope_text(markup), "html.parser")
        result = TransformResult(html="")

        for envelope in soup.find_all("en-note"):
            envelope.name = "div"
            envelope.attrs = {}

        for todo in soup.find_all("en-todo"):
            checkbox = soup.new_tag("input", attrs={"type": "checkbox", "disabled": ""})
            if todo.get("checked", "").lower() == "true":
                checkbox["checked"] = ""
            todo.replace_with(checkbox)

        for encrypted in soup.find_all("en-crypt"):
            encrypted.decompose()

        stored: dict[str, StoredAsset | None] = {}
        for media in soup.find_all("en-media"):
            body_hash = (media.get("hash") or "").lower()
            resource = next(
                (r for r in context.resources if r.body_hash == body_hash), None
            )
            if not body_hash or resource is None:
                result.errors.append(f"Unresolved media reference {body_hash[:8] or '?'}")
                media.decompose()
                continue

            if body_hash not in stored:
                stored[body_hash] = await self._store_resource(
                    resource, media, context, result
                )
                if stored[body_hash] is not None:
                    result.assets.append(stored[body_hash])
            asset = stored[body_hash]
            if asset is None:
                media.decompose()
                continue

            media.replace_with(self._media_element(soup, media, resource, asset))
            result.media_count += 1

        result.html = str(soup).strip()
        return result

    async def _store_resource(
        self,
        resource: NoteResource,
        media: Tag,
        context: TransformContext,
        result: TransformResult,
    ) -> StoredAsset | None:
        if context.fetch_resource is None:
            result.errors.append(f"No resource fetcher for {resource.guid}")
            return None

        try:
            data = await context.fetch_resource(resource)
        except (NotFoundError, TransientError) as e:
            result.errors.append(f"Failed to fetch resource {resource.guid}: {e}")
            return None

        title = media.get("title") or media.get("alt") or context.title
        try:
            return await self._assets.store(
                data,
                caller_hash=resource.body_hash,
                mime_type=resource.mime,
                owner_id=context.owner_id,
                title=title,
                original_filename=resource.filename,
                content_date=context.content_date,
            )
        except AssetStorageError as e:
            result.errors.append(f"Failed to store resource {resource.guid}: {e}")
            return None

    def _media_element(
        self,
        soup: BeautifulSoup,
        media: Tag,
        resource: NoteResource,
        asset: StoredAsset,
    ) -> Tag:
        if is_image(resource.mime):
            img = soup.new_tag("img", attrs={"src": asset.url})
            img["alt"] = media.get("alt") or media.get("title") or resource.filename or "Image"
            width = media.get("width") or resource.width
            height = media.get("height") or resource.height
            if width:
                img["width"] = str(width)
            if height:
                img["height"] = str(height)
            return img

        link = soup.new_tag("a", attrs={"href": asset.url})
        link.string = resource.filename or asset.filename
        return link

    def _is_remote(self, url: str) -> bool:
        if url.startswith("data:"):
            return False
        if any(url.startswith(prefix) for prefix in self.local_url_prefixes):
            return False
        return urlparse(url).scheme in ("http", "https")

    async def _transform_ghost(self, markup: str, context: TransformContext) -> TransformResult:
        soup = BeautifulSoup(markup, "html.parser")
        result = TransformResult(html="")
        stored: dict[str, StoredAsset | None] = {}
        rejected: set[str] = set()

        candidates = soup.find_all("img") + [
            source for source in soup.find_all("source") if not source.get("srcset")
        ]
        for element in candidates:
            src = element.get("src")
            if not src or not self._is_remote(src):
                continue

            if src not in stored:
                try:
                    stored[src] = await self._store_remote(src, element, context, result)
                except AssetStorageError as e:
                    result.errors.append(f"Failed to store {src}: {e}")
                    stored[src] = None
                    rejected.add(src)
                if stored[src] is not None:
                    result.assets.append(stored[src])
            asset = stored[src]
            if asset is None:
                # Upload failed after download
                if src in rejected:
                    element.decompose()
                continue

            element["src"] = asset.url
            # Remote responsive variants would bypass the stored copy
            for attr in ("srcset", "sizes"):
                if attr in element.attrs:
                    del element[attr]
            result.media_count += 1

        result.html = str(soup).strip()
        return result

    async def _store_remote(
        self,
        url: str,
        element: Tag,
        context: TransformContext,
        result: TransformResult,
    ) -> StoredAsset | None:
        if context.fetch_url is None:
            result.errors.append(f"No downloader configured for {url}")
            return None

        try:
            data, declared_type = await context.fetch_url(url)
        except SourceError as e:
            result.errors.append(f"Failed to download {url}: {e}")
            return None

        title = (
            element.get("data-export-as")
            or element.get("data-filename")
            or element.get("title")
            or element.get("alt")
            or context.title
        )
        filename = unquote(basename(urlparse(url).path)) or None
        return await self._assets.store(
            data,
            caller_hash=url_hash(url),
            mime_type=detect_mime_type(data, url, declared_type),
            owner_id=context.owner_id,
            title=title,
            original_filename=filename,
            content_date=context.content_date,
        )
