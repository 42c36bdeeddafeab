"""Shared fixtures: synthetic JPEGs with controllable EXIF payloads."""

from __future__ import annotations

import io
from collections.abc import Callable
from typing import Any

import piexif
import pytest
from PIL import Image


def _jpeg_bytes(size: tuple[int, int], color: tuple[int, int, int], pixel: tuple[int, int] | None = None) -> bytes:
    image = Image.new("RGB", size, color=color)
    if pixel is not None:
        image.putpixel(pixel, (255 - color[0], 255 - color[1], 255 - color[2]))
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def _with_exif(jpeg: bytes, exif: dict[str, Any]) -> bytes:
    output = io.BytesIO()
    piexif.insert(piexif.dump(exif), jpeg, output)
    return output.getvalue()


def gps_ifd(lat: tuple[int, int, int], lat_ref: bytes, lon: tuple[int, int, int], lon_ref: bytes) -> dict[int, Any]:
    return {
        piexif.GPSIFD.GPSLatitudeRef: lat_ref,
        piexif.GPSIFD.GPSLatitude: tuple((value, 1) for value in lat),
        piexif.GPSIFD.GPSLongitudeRef: lon_ref,
        piexif.GPSIFD.GPSLongitude: tuple((value, 1) for value in lon),
    }


@pytest.fixture
def make_jpeg() -> Callable[..., bytes]:
    """Return a factory building JPEG bytes, optionally carrying EXIF."""

    def _factory(
        *,
        size: tuple[int, int] = (48, 32),
        color: tuple[int, int, int] = (200, 40, 40),
        pixel: tuple[int, int] | None = None,
        model: bytes | None = None,
        taken: bytes | None = None,
        gps: dict[int, Any] | None = None,
        software: bytes | None = None,
    ) -> bytes:
        jpeg = _jpeg_bytes(size, color, pixel)
        zeroth: dict[int, Any] = {}
        exif_ifd: dict[int, Any] = {}
        if model is not None:
            zeroth[piexif.ImageIFD.Model] = model
        if software is not None:
            zeroth[piexif.ImageIFD.Software] = software
        if taken is not None:
            exif_ifd[piexif.ExifIFD.DateTimeOriginal] = taken
        if not (zeroth or exif_ifd or gps):
            return jpeg
        return _with_exif(jpeg, {"0th": zeroth, "Exif": exif_ifd, "GPS": gps or {}})

    return _factory


@pytest.fixture
def london_gps() -> dict[int, Any]:
    # 51°30'0" N, 0°7'30" W
    return gps_ifd((51, 30, 0), b"N", (0, 7, 30), b"W")
