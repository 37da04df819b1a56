"""
Filename derivation for stored assets.

Precedence: title, then original filename, then capture date, then
content hash. The capture date comes from EXIF (via Pillow), then from
date patterns in the original filename, then from the date of the content
the asset belongs to.
"""

import io
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime

from PIL import ExifTags, Image

from notepress.assets.schemas import DateSource, NamingDecision, NamingStrategy
from notepress.assets.media import extension_for_mime

logger = logging.getLogger(__name__)

_EXIF_DATE_TAGS = (
    ExifTags.Base.DateTimeOriginal,
    ExifTags.Base.DateTimeDigitized,
    ExifTags.Base.DateTime,
)

_EXIF_MIME_TYPES = frozenset(
    {"image/jpeg", "image/tiff", "image/png", "image/webp"}
)

_FILENAME_DATE_PATTERNS = (
    # IMG_20240315_123456.jpg, IMG20240315.jpg
    re.compile(r"IMG_?(\d{4})(\d{2})(\d{2})", re.IGNORECASE),
    # 2024-03-15, 2024_03_15
    re.compile(r"(\d{4})[-_](\d{2})[-_](\d{2})"),
    # 20240315
    re.compile(r"(\d{4})(\d{2})(\d{2})"),
    # Screenshot 2024-03-15 at 12.34.56
    re.compile(r"Screenshot\s+(\d{4})[-_](\d{2})[-_](\d{2})", re.IGNORECASE),
    # Photo 2024-03-15
    re.compile(r"Photo\s+(\d{4})[-_](\d{2})[-_](\d{2})", re.IGNORECASE),
)

_MIN_TITLE_LENGTH = 3


@dataclass
class ExifInfo:
    capture_date: date | None = None
    camera_make: str | None = None
    camera_model: str | None = None


def sanitize_name(name: str, max_length: int = 50) -> str:
    """
    Make `name` safe for object keys.

    Lowercases, replaces anything outside [a-z0-9-_.] with '-', collapses
    hyphen runs, strips leading/trailing hyphens and truncates.
    """
    cleaned = re.sub(r"[^a-z0-9\-_.]", "-", name.strip().lower())
    cleaned = re.sub(r"-+", "-", cleaned).strip("-")
    return cleaned[:max_length].rstrip("-")


def _parse_exif_datetime(value: object) -> date | None:
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip()[:19], "%Y:%m:%d %H:%M:%S").date()
    except ValueError:
        return None


def _clean_exif_text(value: object) -> str | None:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if not isinstance(value, str):
        return None
    value = value.replace("\x00", "").strip()
    return value or None


def read_exif(data: bytes, mime_type: str) -> ExifInfo:
    """Read capture date and camera from EXIF; empty info when unavailable."""
    if mime_type not in _EXIF_MIME_TYPES:
        return ExifInfo()

    try:
        with Image.open(io.BytesIO(data)) as image:
            exif = image.getexif()
            tags = dict(exif)
            # DateTimeOriginal and DateTimeDigitized live in the Exif sub-IFD
            tags.update(exif.get_ifd(ExifTags.IFD.Exif))
    # Pillow reports some corrupt headers as SyntaxError
    except (OSError, ValueError, SyntaxError) as e:
        logger.debug(f"No EXIF data readable: {e}")
        return ExifInfo()

    capture_date = None
    for tag in _EXIF_DATE_TAGS:
        capture_date = _parse_exif_datetime(tags.get(tag))
        if capture_date:
            break

    return ExifInfo(
        capture_date=capture_date,
        camera_make=_clean_exif_text(tags.get(ExifTags.Base.Make)),
        camera_model=_clean_exif_text(tags.get(ExifTags.Base.Model)),
    )


def extract_date_from_filename(filename: str) -> date | None:
    """Find a calendar date embedded in a filename."""
    for pattern in _FILENAME_DATE_PATTERNS:
        for match in pattern.finditer(filename):
            year, month, day = (int(part) for part in match.groups())
            try:
                return date(year, month, day)
            except ValueError:
                continue
    return None


def derive_naming_decision(
    data: bytes,
    content_hash: str,
    mime_type: str,
    title: str | None = None,
    original_filename: str | None = None,
    content_date: datetime | date | None = None,
    prefix: str = "image",
    max_length: int = 50,
) -> NamingDecision:
    """
    Choose the base filename for an asset.

    Args:
        data: Raw bytes (read for EXIF)
        content_hash: SHA-256 hex of `data`
        mime_type: Detected MIME type, decides the extension
        title: Caption or title of the content the asset belongs to
        original_filename: Filename the asset had at its source
        content_date: Date of the owning post or note
        prefix: Prefix for date and hash based names
        max_length: Maximum sanitized name length

    Returns:
        NamingDecision with strategy, reason and the metadata consulted
    """
    extension = extension_for_mime(mime_type)
    exif = read_exif(data, mime_type)

    capture_date = exif.capture_date
    date_source = DateSource.EXIF if capture_date else None
    if capture_date is None and original_filename:
        capture_date = extract_date_from_filename(original_filename)
        date_source = DateSource.FILENAME if capture_date else None
    if capture_date is None and content_date is not None:
        capture_date = (
            content_date.date() if isinstance(content_date, datetime) else content_date
        )
        date_source = DateSource.CONTENT_DATE

    common = dict(
        extension=extension,
        original_title=title,
        original_filename=original_filename,
        capture_date=capture_date,
        date_source=date_source,
        camera_make=exif.camera_make,
        camera_model=exif.camera_model,
    )

    sanitized = sanitize_name(title, max_length) if title else ""
    if len(sanitized) >= _MIN_TITLE_LENGTH:
        return NamingDecision(
            strategy=NamingStrategy.TITLE,
            base_name=sanitized,
            reason=f"Named from title {title.strip()!r}",
            **common,
        )

    if original_filename:
        stem = original_filename.rsplit(".", 1)[0] if "." in original_filename else original_filename
        sanitized = sanitize_name(stem, max_length)
        if sanitized:
            return NamingDecision(
                strategy=NamingStrategy.ORIGINAL_FILENAME,
                base_name=sanitized,
                reason=f"Named from original filename {original_filename!r}",
                **common,
            )

    safe_prefix = sanitize_name(prefix, max_length) or "image"

    if capture_date is not None:
        return NamingDecision(
            strategy=NamingStrategy.CAPTURE_DATE,
            base_name=f"{safe_prefix}_{capture_date.isoformat()}",
            reason=f"Named from capture date ({date_source.value})",
            **common,
        )

    return NamingDecision(
        strategy=NamingStrategy.CONTENT_HASH,
        base_name=f"{safe_prefix}_{content_hash[:16]}",
        reason="No title, filename or date available",
        **common,
    )
