"""Tests for MIME sniffing and extension mapping."""

from notepress.assets.media import (
    detect_mime_type,
    extension_for_mime,
    is_image,
    sniff_mime_type,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 16


class TestSniffMimeType:
    def test_known_signatures(self):
        assert sniff_mime_type(PNG) == "image/png"
        assert sniff_mime_type(JPEG) == "image/jpeg"
        assert sniff_mime_type(b"GIF89a....") == "image/gif"
        assert sniff_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
        assert sniff_mime_type(b"II*\x00rest") == "image/tiff"

    def test_svg_with_xml_prolog(self):
        data = b'<?xml version="1.0"?>\n<svg xmlns="http://www.w3.org/2000/svg"></svg>'
        assert sniff_mime_type(data) == "image/svg+xml"

    def test_unknown(self):
        assert sniff_mime_type(b"plain text") is None


class TestDetectMimeType:
    def test_magic_bytes_beat_extension(self):
        assert detect_mime_type(PNG, "https://x.test/photo.jpg", "image/gif") == "image/png"

    def test_url_extension_beats_declared(self):
        assert detect_mime_type(b"????", "https://x.test/a/photo.webp?w=600", "image/png") == (
            "image/webp"
        )

    def test_declared_image_type(self):
        assert detect_mime_type(b"????", "https://x.test/blob", "image/avif") == "image/avif"

    def test_non_image_declared_type_ignored(self):
        assert detect_mime_type(b"????", None, "text/html") == "image/jpeg"


class TestExtensionForMime:
    def test_common_types(self):
        assert extension_for_mime("image/jpeg") == "jpg"
        assert extension_for_mime("image/png; charset=binary") == "png"
        assert extension_for_mime("application/pdf") == "pdf"

    def test_unknown_image_type_defaults_to_jpg(self):
        assert extension_for_mime("image/x-unknown") == "jpg"

    def test_is_image(self):
        assert is_image("IMAGE/PNG")
        assert not is_image("application/pdf")
