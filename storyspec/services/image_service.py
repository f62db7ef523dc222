"""Resolve image references into base64 blocks the gateway can attach.

A reference is a filesystem path, an http(s) URL, a ``data:`` URI or a raw
base64 string. Image bytes are never decoded or inspected beyond the magic
bytes needed to name the media type.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from storyspec.utils.exceptions import ImageSupplyError

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 30.0
MAX_IMAGE_BYTES = 20 * 1024 * 1024

_EXTENSION_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


@dataclass(frozen=True)
class ImageBlock:
    """An encoded image ready to attach to a model message."""

    data_b64: str
    media_type: str
    source: str


def sniff_media_type(data: bytes) -> str | None:
    """Media type from magic bytes, or None if unrecognized."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _short(reference: str) -> str:
    return reference if len(reference) <= 80 else f"{reference[:77]}..."


def _block_from_bytes(data: bytes, reference: str, hint: str | None = None) -> ImageBlock:
    if not data:
        raise ImageSupplyError(f"Image is empty: {_short(reference)}", reference=reference)
    if len(data) > MAX_IMAGE_BYTES:
        raise ImageSupplyError(
            f"Image exceeds {MAX_IMAGE_BYTES} bytes: {_short(reference)}", reference=reference
        )
    media_type = sniff_media_type(data) or hint
    if media_type is None or not media_type.startswith("image/"):
        raise ImageSupplyError(
            f"Unrecognized image format: {_short(reference)}", reference=reference
        )
    return ImageBlock(
        data_b64=base64.b64encode(data).decode("ascii"),
        media_type=media_type,
        source=_short(reference),
    )


def _load_data_uri(reference: str) -> ImageBlock:
    header, sep, payload = reference.partition(",")
    if not sep or ";base64" not in header:
        raise ImageSupplyError("Only base64 data URIs are supported", reference=_short(reference))
    hint = header[len("data:") :].split(";", 1)[0] or None
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageSupplyError(f"Invalid base64 in data URI: {e}", reference=_short(reference)) from e
    return _block_from_bytes(data, "data-uri", hint)


def _load_url(reference: str) -> ImageBlock:
    try:
        response = httpx.get(reference, timeout=FETCH_TIMEOUT, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise ImageSupplyError(f"Failed to fetch image {reference}: {e}", reference=reference) from e
    hint = response.headers.get("content-type", "").split(";", 1)[0].strip() or None
    return _block_from_bytes(response.content, reference, hint)


def _is_file(path: Path) -> bool:
    # Long base64 payloads raise ENAMETOOLONG rather than returning False
    try:
        return path.is_file()
    except OSError:
        return False


def _load_path(path: Path, reference: str) -> ImageBlock:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ImageSupplyError(f"Failed to read image {reference}: {e}", reference=reference) from e
    return _block_from_bytes(data, reference, _EXTENSION_MEDIA_TYPES.get(path.suffix.lower()))


def load_image(reference: str) -> ImageBlock:
    """Resolve one image reference.

    Args:
        reference: Path, http(s) URL, ``data:`` URI or raw base64 bytes.

    Returns:
        ImageBlock with base64 data and media type.

    Raises:
        ImageSupplyError: If the reference cannot be read, fetched or decoded.
    """
    reference = reference.strip()
    if not reference:
        raise ImageSupplyError("Empty image reference", reference=reference)

    if reference.startswith("data:"):
        block = _load_data_uri(reference)
    elif reference.startswith(("http://", "https://")):
        block = _load_url(reference)
    else:
        path = Path(reference).expanduser()
        if _is_file(path):
            block = _load_path(path, reference)
        else:
            try:
                data = base64.b64decode(reference, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ImageSupplyError(
                    f"Image reference is neither a readable file nor base64: {_short(reference)}",
                    reference=_short(reference),
                ) from e
            block = _block_from_bytes(data, "inline-base64")

    logger.debug("Loaded image %s (%s)", block.source, block.media_type)
    return block


def load_images(references: list[str]) -> list[ImageBlock]:
    """Resolve every reference in order; the first failure is raised."""
    return [load_image(reference) for reference in references]
