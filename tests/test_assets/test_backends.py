"""Tests for object storage backends."""

import pytest

from notepress.assets.backends import (
    LocalObjectStorage,
    MemoryObjectStorage,
    ObjectStorageError,
)


class TestLocalObjectStorage:

    @pytest.mark.asyncio
    async def test_put_head_copy_delete(self, tmp_path):
        storage = LocalObjectStorage(tmp_path, "/assets/")

        stored = await storage.put("images/cat.png", b"png-bytes", "image/png")

        assert stored.url == "/assets/images/cat.png"
        assert (tmp_path / "images" / "cat.png").read_bytes() == b"png-bytes"
        head = await storage.head("images/cat.png")
        assert head is not None and head.size == 9

        copied = await storage.copy("images/cat.png", "images/kitten.png")
        assert copied.url == "/assets/images/kitten.png"
        assert (tmp_path / "images" / "kitten.png").read_bytes() == b"png-bytes"

        await storage.delete("images/cat.png")
        await storage.delete("images/cat.png")
        assert await storage.head("images/cat.png") is None

    @pytest.mark.asyncio
    async def test_copy_missing_source(self, tmp_path):
        storage = LocalObjectStorage(tmp_path)

        with pytest.raises(ObjectStorageError):
            await storage.copy("images/none.png", "images/other.png")

    @pytest.mark.asyncio
    async def test_rejects_escaping_keys(self, tmp_path):
        storage = LocalObjectStorage(tmp_path)

        for key in ("../etc/passwd", "/abs.png", "images//x.png", ""):
            with pytest.raises(ObjectStorageError):
                await storage.put(key, b"x", "image/png")


class TestMemoryObjectStorage:

    @pytest.mark.asyncio
    async def test_roundtrip_and_counts(self):
        storage = MemoryObjectStorage()

        await storage.put("images/a.gif", b"gif", "image/gif")
        copied = await storage.copy("images/a.gif", "images/b.gif")

        assert copied.url == "memory://assets/images/b.gif"
        assert storage.put_count == 1
        assert (await storage.head("images/b.gif")).content_type == "image/gif"

    @pytest.mark.asyncio
    async def test_copy_missing_source(self):
        with pytest.raises(ObjectStorageError):
            await MemoryObjectStorage().copy("images/x.gif", "images/y.gif")
