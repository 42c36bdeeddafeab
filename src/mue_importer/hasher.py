"""Content identification over metadata-stripped image bytes."""

from __future__ import annotations

import hashlib
import io
import struct
from typing import Final

import piexif

from utils.logging import get_logger
from mue_importer.errors import CorruptInputError

LOGGER = get_logger(__name__)

CONTENT_HASH_ALGO: Final[str] = "md5-exif-stripped-v1"

_JPEG_SOI: Final[bytes] = b"\xff\xd8"


def is_supported_container(raw: bytes) -> bool:
    """Return True for JPEG or RIFF/WebP payloads."""

    if raw[:2] == _JPEG_SOI:
        return True
    return raw[:4] == b"RIFF" and raw[8:12] == b"WEBP"


def strip_metadata(raw: bytes) -> bytes:
    """Remove the embedded EXIF block and return the canonical image bytes.

    Raises:
        CorruptInputError: When ``raw`` is not a JPEG/WebP container or its
            segment structure cannot be parsed.
    """

    if not is_supported_container(raw):
        raise CorruptInputError("unsupported or unrecognized image container")
    if raw[:2] != _JPEG_SOI and b"EXIF" not in raw:
        return raw

    output = io.BytesIO()
    try:
        piexif.remove(raw, output)
    except (piexif.InvalidImageDataError, ValueError, struct.error, IndexError) as exc:
        raise CorruptInputError(f"cannot strip metadata: {exc}") from exc
    return output.getvalue()


def compute_content_id(canonical: bytes) -> str:
    """Return the 128-bit MD5 digest of ``canonical`` as 32 hex characters."""

    return hashlib.md5(canonical).hexdigest()


def identify(raw: bytes) -> tuple[bytes, str]:
    """Strip metadata from ``raw`` and hash the remainder.

    Two files that differ only in their EXIF payload (timestamps, GPS,
    software tags) produce the same identifier; any change to the encoded
    image data produces a different one.

    Returns:
        ``(canonical_bytes, image_id)``.
    """

    canonical = strip_metadata(raw)
    image_id = compute_content_id(canonical)
    LOGGER.debug(
        "content_identified",
        extra={"image_id": image_id, "raw_bytes": len(raw), "canonical_bytes": len(canonical)},
    )
    return canonical, image_id


__all__ = ["CONTENT_HASH_ALGO", "compute_content_id", "identify", "is_supported_container", "strip_metadata"]
