"""Media type sniffing and file extension mapping."""

import mimetypes
from urllib.parse import urlparse

DEFAULT_MIME_TYPE = "image/jpeg"

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
}

_EXTENSION_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "svg": "image/svg+xml",
}


def sniff_mime_type(data: bytes) -> str | None:
    """Identify common image formats from their leading bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"BM"):
        return "image/bmp"
    if data[:4] in (b"II*\x00", b"MM\x00*"):
        return "image/tiff"
    head = data[:512].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return "image/svg+xml"
    return None


def detect_mime_type(
    data: bytes,
    url: str | None = None,
    declared: str | None = None,
) -> str:
    """
    Work out the MIME type of a downloaded file.

    Magic bytes win; then the URL's extension; then a declared image
    Content-Type; then JPEG.
    """
    sniffed = sniff_mime_type(data)
    if sniffed:
        return sniffed

    if url:
        path = urlparse(url).path
        extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
        if extension in _EXTENSION_MIME_TYPES:
            return _EXTENSION_MIME_TYPES[extension]

    if declared and declared.startswith("image/"):
        return declared

    return DEFAULT_MIME_TYPE


def extension_for_mime(mime_type: str) -> str:
    """File extension (without dot) for a MIME type, 'jpg' when unknown."""
    mime_type = mime_type.split(";", 1)[0].strip().lower()
    if mime_type in _EXTENSIONS:
        return _EXTENSIONS[mime_type]
    guessed = mimetypes.guess_extension(mime_type)
    if guessed and not mime_type.startswith("image/"):
        return guessed.lstrip(".")
    return "jpg"


def is_image(mime_type: str) -> bool:
    return mime_type.lower().startswith("image/")
