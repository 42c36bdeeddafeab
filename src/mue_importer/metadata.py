"""EXIF capture metadata extraction."""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Final

import piexif

from utils.logging import get_logger
from mue_importer.hasher import is_supported_container
from mue_importer.models import CaptureMetadata

LOGGER = get_logger(__name__)

_EXIF_DATETIME_RE: Final = re.compile(
    r"(?P<year>\d{4}):(?P<month>\d{2}):(?P<day>\d{2})\s(?P<time>\d{2}:\d{2}:\d{2})"
)


def _as_text(value: Any) -> str | None:
    """Decode an EXIF ASCII value, dropping NUL padding and whitespace."""

    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if not isinstance(value, str):
        return None
    text = value.replace("\x00", "").strip()
    return text or None


def parse_exif_datetime(value: Any) -> datetime | None:
    """Parse ``YYYY:MM:DD HH:MM:SS`` into a naive local datetime.

    Returns None for absent or malformed values instead of raising.
    """

    text = _as_text(value)
    if text is None:
        return None

    match = _EXIF_DATETIME_RE.search(text)
    if match is None:
        return None

    try:
        return datetime.strptime(
            f"{match['year']}-{match['month']}-{match['day']}T{match['time']}",
            "%Y-%m-%dT%H:%M:%S",
        )
    except ValueError:
        return None


def dms_to_degrees(value: Any) -> float | None:
    """Convert an EXIF degrees/minutes/seconds rational triple to degrees."""

    if not isinstance(value, Sequence) or len(value) < 3:
        return None

    parts: list[float] = []
    for item in value[:3]:
        if isinstance(item, Sequence) and len(item) == 2:
            numerator, denominator = item
            if not denominator:
                return None
            parts.append(float(numerator) / float(denominator))
        elif isinstance(item, (int, float)):
            parts.append(float(item))
        else:
            return None

    degrees, minutes, seconds = parts
    return degrees + minutes / 60.0 + seconds / 3600.0


def signed_coordinate(magnitude: float, ref: Any, positive_ref: str) -> float:
    """Apply the hemisphere sign and round to one decimal place.

    Any reference other than ``positive_ref`` (``N`` or ``E``) is treated as
    the negative hemisphere.
    """

    sign = 1.0 if _as_text(ref) == positive_ref else -1.0
    return sign * round(magnitude, 1) + 0.0


def extract_coordinates(gps_ifd: dict[int, Any]) -> tuple[float, float] | None:
    """Return rounded signed ``(lat, lon)`` or None unless both axes are present."""

    latitude = dms_to_degrees(gps_ifd.get(piexif.GPSIFD.GPSLatitude))
    longitude = dms_to_degrees(gps_ifd.get(piexif.GPSIFD.GPSLongitude))
    if latitude is None or longitude is None:
        return None

    return (
        signed_coordinate(latitude, gps_ifd.get(piexif.GPSIFD.GPSLatitudeRef), "N"),
        signed_coordinate(longitude, gps_ifd.get(piexif.GPSIFD.GPSLongitudeRef), "E"),
    )


def extract_capture_metadata(raw: bytes) -> CaptureMetadata:
    """Read capture timestamp, camera model and GPS from raw image bytes.

    Must be called on the original bytes, before metadata is stripped. A
    missing field is simply left unset. An EXIF block that is present but
    cannot be decoded yields empty metadata with ``exif_readable=False``.
    """

    if not is_supported_container(raw):
        return CaptureMetadata(exif_readable=False)

    try:
        exif = piexif.load(raw)
    except Exception as exc:
        LOGGER.warning("exif_load_error", extra={"error": str(exc)})
        return CaptureMetadata(exif_readable=False)

    zeroth = exif.get("0th") or {}
    exif_ifd = exif.get("Exif") or {}
    gps_ifd = exif.get("GPS") or {}

    return CaptureMetadata(
        captured_at=parse_exif_datetime(exif_ifd.get(piexif.ExifIFD.DateTimeOriginal)),
        camera_model=_as_text(zeroth.get(piexif.ImageIFD.Model)),
        coordinates=extract_coordinates(gps_ifd),
    )


__all__ = [
    "dms_to_degrees",
    "extract_capture_metadata",
    "extract_coordinates",
    "parse_exif_datetime",
    "signed_coordinate",
]
