"""Tests for image reference resolution."""

import base64
from unittest.mock import MagicMock, patch

import httpx
import pytest

from storyspec.services.image_service import load_image, load_images, sniff_media_type
from storyspec.utils.exceptions import ImageSupplyError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16


class TestSniffMediaType:
    """Tests for magic-byte detection."""

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            (PNG_BYTES, "image/png"),
            (JPEG_BYTES, "image/jpeg"),
            (b"GIF89a....", "image/gif"),
            (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
            (b"%PDF-1.7", None),
        ],
    )
    def test_detects(self, data, expected):
        """Known signatures map to media types."""
        assert sniff_media_type(data) == expected


class TestLoadImage:
    """Tests for load_image."""

    def test_file_path(self, tmp_path):
        """Files are read and base64 encoded."""
        path = tmp_path / "wireframe.png"
        path.write_bytes(PNG_BYTES)
        block = load_image(str(path))
        assert block.media_type == "image/png"
        assert base64.b64decode(block.data_b64) == PNG_BYTES

    def test_data_uri(self):
        """Base64 data URIs are decoded."""
        uri = "data:image/jpeg;base64," + base64.b64encode(JPEG_BYTES).decode()
        block = load_image(uri)
        assert block.media_type == "image/jpeg"
        assert block.source == "data-uri"

    def test_raw_base64(self):
        """A bare base64 string is accepted when it is not a file path."""
        block = load_image(base64.b64encode(PNG_BYTES).decode())
        assert block.media_type == "image/png"
        assert block.source == "inline-base64"

    def test_url(self):
        """http(s) references are fetched with redirects followed."""
        response = MagicMock(content=JPEG_BYTES, headers={"content-type": "image/jpeg"})
        with patch("storyspec.services.image_service.httpx.get", return_value=response) as get:
            block = load_image("https://example.com/mock.jpg")
        get.assert_called_once_with("https://example.com/mock.jpg", timeout=30.0, follow_redirects=True)
        assert block.media_type == "image/jpeg"

    def test_url_failure(self):
        """Fetch errors become ImageSupplyError with the reference."""
        with patch(
            "storyspec.services.image_service.httpx.get",
            side_effect=httpx.ConnectError("unreachable"),
        ):
            with pytest.raises(ImageSupplyError) as exc_info:
                load_image("https://example.com/missing.png")
        assert exc_info.value.reference == "https://example.com/missing.png"

    @pytest.mark.parametrize(
        "reference",
        [
            "",
            "not/a/file/and not base64!",
            "data:image/png,rawbytes",
            "data:image/png;base64,@@@@",
            base64.b64encode(b"%PDF-1.7 plain document").decode(),
        ],
    )
    def test_unusable_references_raise(self, reference):
        """Empty, unreadable, non-base64 and non-image inputs are rejected."""
        with pytest.raises(ImageSupplyError):
            load_image(reference)

    def test_empty_file(self, tmp_path):
        """A zero-byte file is rejected."""
        path = tmp_path / "empty.png"
        path.write_bytes(b"")
        with pytest.raises(ImageSupplyError, match="empty"):
            load_image(str(path))


class TestLoadImages:
    """Tests for load_images."""

    def test_preserves_order(self, tmp_path):
        """Blocks come back in reference order."""
        first = tmp_path / "a.png"
        second = tmp_path / "b.jpg"
        first.write_bytes(PNG_BYTES)
        second.write_bytes(JPEG_BYTES)
        blocks = load_images([str(first), str(second)])
        assert [b.media_type for b in blocks] == ["image/png", "image/jpeg"]
