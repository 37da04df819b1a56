"""Tests for ContentTransformer."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from bs4 import BeautifulSoup

from notepress.assets.backends import ObjectStorageError
from notepress.blogs.schemas import SourceKind
from notepress.content.transformer import (
    ContentTransformer,
    TransformContext,
    generate_excerpt,
    url_hash,
)
from notepress.ingestion.errors import NotFoundError, RateLimitedError
from notepress.ingestion.schemas import NoteResource

GIF = b"GIF89a" + b"\x07" * 32
ENVELOPE = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<!DOCTYPE en-note SYSTEM "http://xml.evernote.com/pub/enml2.dtd">'
    "<en-note>{}</en-note>"
)
REMOTE = "https://ghost.test/content/images/2024/05/boat.jpg"


def _note(body: str) -> str:
    return ENVELOPE.format(body)


def _resource(**overrides) -> NoteResource:
    values = dict(
        guid="res-1",
        body_hash="abcdef0123",
        mime="image/gif",
        width=640,
        height=480,
        filename="cat.gif",
    )
    values.update(overrides)
    return NoteResource(**values)


@pytest.fixture
def transformer(asset_store) -> ContentTransformer:
    return ContentTransformer(asset_store, local_url_prefixes=("https://cdn.test/assets",))


def _context(**overrides) -> TransformContext:
    values = dict(
        owner_id="post-1",
        title="Trip Notes",
        content_date=datetime(2025, 1, 2, tzinfo=timezone.utc),
        resources=[_resource()],
        fetch_resource=AsyncMock(return_value=GIF),
    )
    values.update(overrides)
    return TransformContext(**values)


class TestNoteMarkup:
    """Tests for note markup conversion."""

    @pytest.mark.asyncio
    async def test_envelope_and_media_rewritten(self, transformer):
        markup = _note('<p>Hi</p><en-media hash="ABCDEF0123" type="image/gif"/>')

        result = await transformer.transform(markup, SourceKind.NOTE, _context())

        assert "<?xml" not in result.html
        assert "DOCTYPE" not in result.html
        soup = BeautifulSoup(result.html, "html.parser")
        assert soup.find("en-note") is None
        assert soup.find("en-media") is None
        img = soup.find("img")
        assert img["src"] == "https://cdn.test/assets/images/trip-notes.gif"
        assert img["width"] == "640"
        assert img["height"] == "480"
        assert img["alt"] == "cat.gif"
        assert result.media_count == 1
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_repeated_media_fetched_once(self, transformer):
        fetch = AsyncMock(return_value=GIF)
        markup = _note('<en-media hash="abcdef0123"/><p>x</p><en-media hash="abcdef0123"/>')

        result = await transformer.transform(
            markup, SourceKind.NOTE, _context(fetch_resource=fetch)
        )

        fetch.assert_awaited_once()
        assert result.media_count == 2
        assert len(result.assets) == 1

    @pytest.mark.asyncio
    async def test_unresolved_reference_dropped(self, transformer):
        markup = _note('<p>Before</p><en-media hash="ffff0000"/>')

        result = await transformer.transform(markup, SourceKind.NOTE, _context())

        assert "<img" not in result.html
        assert "Before" in result.html
        assert result.errors and "Unresolved media reference" in result.errors[0]

    @pytest.mark.asyncio
    async def test_fetch_failure_recorded(self, transformer):
        fetch = AsyncMock(side_effect=NotFoundError("gone", status_code=404))

        result = await transformer.transform(
            _note('<en-media hash="abcdef0123"/>'),
            SourceKind.NOTE,
            _context(fetch_resource=fetch),
        )

        assert result.media_count == 0
        assert "Failed to fetch resource res-1" in result.errors[0]

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self, transformer):
        fetch = AsyncMock(side_effect=RateLimitedError(1200))

        with pytest.raises(RateLimitedError):
            await transformer.transform(
                _note('<en-media hash="abcdef0123"/>'),
                SourceKind.NOTE,
                _context(fetch_resource=fetch),
            )

    @pytest.mark.asyncio
    async def test_storage_failure_recorded(self, transformer, memory_storage):
        memory_storage.put = AsyncMock(side_effect=ObjectStorageError("read-only"))

        result = await transformer.transform(
            _note('<en-media hash="abcdef0123"/>'), SourceKind.NOTE, _context()
        )

        assert result.media_count == 0
        assert "Failed to store resource res-1" in result.errors[0]

    @pytest.mark.asyncio
    async def test_non_image_becomes_link(self, transformer):
        resource = _resource(mime="application/pdf", filename="itinerary.pdf", width=None)

        result = await transformer.transform(
            _note('<en-media hash="abcdef0123" type="application/pdf"/>'),
            SourceKind.NOTE,
            _context(resources=[resource], fetch_resource=AsyncMock(return_value=b"%PDF-1.4")),
        )

        link = BeautifulSoup(result.html, "html.parser").find("a")
        assert link["href"].endswith(".pdf")
        assert link.get_text() == "itinerary.pdf"

    @pytest.mark.asyncio
    async def test_todo_and_encrypted_blocks(self, transformer):
        markup = _note('<en-todo checked="true"/>Done<en-todo/>Open<en-crypt>secret</en-crypt>')

        result = await transformer.transform(markup, SourceKind.NOTE, _context(resources=[]))

        soup = BeautifulSoup(result.html, "html.parser")
        boxes = soup.find_all("input")
        assert len(boxes) == 2
        assert boxes[0].has_attr("checked")
        assert not boxes[1].has_attr("checked")
        assert "secret" not in result.html


class TestGhostMarkup:
    """Tests for rewriting Ghost HTML."""

    @pytest.mark.asyncio
    async def test_remote_image_stored_and_rewritten(self, transformer):
        fetch_url = AsyncMock(return_value=(GIF, "image/gif"))
        html = (
            f'<p><img src="{REMOTE}" srcset="{REMOTE} 600w" sizes="(max-width: 600px)" '
            'alt="A boat"></p>'
            '<img src="data:image/png;base64,AAAA">'
            '<img src="https://cdn.test/assets/images/already.gif">'
            f'<img src="{REMOTE}">'
        )

        result = await transformer.transform(
            html, SourceKind.GHOST, TransformContext(owner_id="post-1", fetch_url=fetch_url)
        )

        fetch_url.assert_awaited_once_with(REMOTE)
        images = BeautifulSoup(result.html, "html.parser").find_all("img")
        assert images[0]["src"] == "https://cdn.test/assets/images/a-boat.gif"
        assert not images[0].has_attr("srcset")
        assert not images[0].has_attr("sizes")
        assert images[1]["src"].startswith("data:")
        assert images[2]["src"] == "https://cdn.test/assets/images/already.gif"
        assert images[3]["src"] == images[0]["src"]
        assert result.media_count == 2

    @pytest.mark.asyncio
    async def test_caller_hash_is_url_hash(self, transformer, asset_repository):
        fetch_url = AsyncMock(return_value=(GIF, None))

        await transformer.transform(
            f'<img src="{REMOTE}">',
            SourceKind.GHOST,
            TransformContext(owner_id="post-1", fetch_url=fetch_url),
        )

        (record,) = asset_repository.records.values()
        assert record.caller_hash == url_hash(REMOTE)
        assert len(url_hash(REMOTE)) == 16
        # No caption: the URL basename names it
        assert record.filename == "boat.gif"

    @pytest.mark.asyncio
    async def test_download_failure_keeps_original(self, transformer):
        fetch_url = AsyncMock(side_effect=NotFoundError("gone", status_code=404))

        result = await transformer.transform(
            f'<img src="{REMOTE}">',
            SourceKind.GHOST,
            TransformContext(owner_id="post-1", fetch_url=fetch_url),
        )

        assert REMOTE in result.html
        assert "Failed to download" in result.errors[0]

    @pytest.mark.asyncio
    async def test_upload_failure_strips_image(self, transformer, memory_storage):
        memory_storage.put = AsyncMock(side_effect=ObjectStorageError("read-only"))
        fetch_url = AsyncMock(return_value=(GIF, "image/gif"))

        result = await transformer.transform(
            f'<p>Harbour</p><img src="{REMOTE}"><img src="{REMOTE}">',
            SourceKind.GHOST,
            TransformContext(owner_id="post-1", fetch_url=fetch_url),
        )

        assert REMOTE not in result.html
        assert "Harbour" in result.html
        assert result.media_count == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Failed to store {REMOTE}")
        fetch_url.assert_awaited_once_with(REMOTE)

    @pytest.mark.asyncio
    async def test_manual_markup_untouched(self, transformer):
        html = f'<img src="{REMOTE}">'

        result = await transformer.transform(html, SourceKind.MANUAL, TransformContext("p"))

        assert result.html == html


class TestGenerateExcerpt:
    def test_strips_markup_and_media(self):
        markup = _note('<p>Hello   <b>world</b></p><en-media hash="x"/>')
        assert generate_excerpt(markup) == "Hello world"

    def test_truncates(self):
        assert generate_excerpt("<p>" + "a" * 300 + "</p>", max_length=10) == "a" * 10 + "..."
