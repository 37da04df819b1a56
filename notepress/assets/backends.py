"""
Object storage backends for the asset store.

Defines the interface every backend implements plus a filesystem backend
for single-host deployments and an in-memory backend for tests and dry
runs. Keys are '/'-separated paths relative to the backend root.
"""

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    key: str
    url: str
    size: int
    content_type: str | None = None


class ObjectStorageError(Exception):
    """A backend operation failed."""

    pass


class ObjectStorage(ABC):
    """
    Abstract base class for object storage backends.

    All methods are async; implementations doing blocking I/O push it to a
    worker thread.
    """

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Write `data` under `key`, replacing any existing object."""
        ...

    @abstractmethod
    async def head(self, key: str) -> StoredObject | None:
        """Return the object's metadata, or None if the key is free."""
        ...

    @abstractmethod
    async def copy(self, source_key: str, dest_key: str) -> StoredObject:
        """Copy an existing object to a new key."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete `key`; deleting a missing key is not an error."""
        ...

    @abstractmethod
    def url_for(self, key: str) -> str:
        """Public URL an object under `key` is served from."""
        ...


def _validate_key(key: str) -> str:
    parts = key.split("/")
    if not key or key.startswith("/") or any(p in ("", ".", "..") for p in parts):
        raise ObjectStorageError(f"Invalid object key: {key!r}")
    return key


class LocalObjectStorage(ObjectStorage):
    """
    Stores objects as files under a root directory.

    Usage:
        storage = LocalObjectStorage("./data/assets", "/assets")
        obj = await storage.put("images/cat.png", data, "image/png")
        obj.url  # "/assets/images/cat.png"
    """

    def __init__(self, root: str | Path, public_url_prefix: str = "/assets"):
        self.root = Path(root)
        self.public_url_prefix = public_url_prefix.rstrip("/")

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*_validate_key(key).split("/"))

    def url_for(self, key: str) -> str:
        return f"{self.public_url_prefix}/{key}"

    def _stored(self, key: str, path: Path) -> StoredObject:
        return StoredObject(key=key, url=self.url_for(key), size=path.stat().st_size)

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        path = self._path(key)

        def _write() -> StoredObject:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f".{path.name}.tmp")
            tmp.write_bytes(data)
            tmp.replace(path)
            return StoredObject(
                key=key, url=self.url_for(key), size=len(data), content_type=content_type
            )

        try:
            return await asyncio.to_thread(_write)
        except OSError as e:
            raise ObjectStorageError(f"Failed to write {key}: {e}") from e

    async def head(self, key: str) -> StoredObject | None:
        path = self._path(key)

        def _stat() -> StoredObject | None:
            return self._stored(key, path) if path.is_file() else None

        return await asyncio.to_thread(_stat)

    async def copy(self, source_key: str, dest_key: str) -> StoredObject:
        source = self._path(source_key)
        dest = self._path(dest_key)

        def _copy() -> StoredObject:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
            return self._stored(dest_key, dest)

        try:
            return await asyncio.to_thread(_copy)
        except OSError as e:
            raise ObjectStorageError(
                f"Failed to copy {source_key} to {dest_key}: {e}"
            ) from e

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise ObjectStorageError(f"Failed to delete {key}: {e}") from e


class MemoryObjectStorage(ObjectStorage):
    """Keeps objects in a dict. Used by tests and dry runs."""

    def __init__(self, public_url_prefix: str = "memory://assets"):
        self.public_url_prefix = public_url_prefix.rstrip("/")
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.put_count = 0

    def url_for(self, key: str) -> str:
        return f"{self.public_url_prefix}/{key}"

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        _validate_key(key)
        self.objects[key] = (bytes(data), content_type)
        self.put_count += 1
        return StoredObject(key, self.url_for(key), len(data), content_type)

    async def head(self, key: str) -> StoredObject | None:
        if key not in self.objects:
            return None
        data, content_type = self.objects[key]
        return StoredObject(key, self.url_for(key), len(data), content_type)

    async def copy(self, source_key: str, dest_key: str) -> StoredObject:
        _validate_key(dest_key)
        if source_key not in self.objects:
            raise ObjectStorageError(f"No such object: {source_key}")
        self.objects[dest_key] = self.objects[source_key]
        data, content_type = self.objects[dest_key]
        return StoredObject(dest_key, self.url_for(dest_key), len(data), content_type)

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
