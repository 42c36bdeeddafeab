"""Tests for EXIF capture metadata extraction."""

from __future__ import annotations

from datetime import datetime

import piexif
import pytest

from mue_importer.geocoding import cache_key
from mue_importer.metadata import (
    dms_to_degrees,
    extract_capture_metadata,
    extract_coordinates,
    parse_exif_datetime,
    signed_coordinate,
)


def test_parse_exif_datetime_valid() -> None:
    assert parse_exif_datetime(b"2021:06:15 14:30:00") == datetime(2021, 6, 15, 14, 30, 0)


@pytest.mark.parametrize("value", ["not a date", b"", None, "2021:13:45 99:00:00", 12345])
def test_parse_exif_datetime_invalid_returns_none(value) -> None:
    assert parse_exif_datetime(value) is None


@pytest.mark.parametrize(
    ("ref", "positive", "expected"),
    [
        (b"N", "N", 51.5),
        (b"S", "N", -51.5),
        (b"E", "E", 51.5),
        (b"W", "E", -51.5),
        ("N", "N", 51.5),
    ],
)
def test_signed_coordinate_hemispheres(ref, positive: str, expected: float) -> None:
    assert signed_coordinate(51.5, ref, positive) == expected


def test_signed_coordinate_rounds_to_one_decimal() -> None:
    assert signed_coordinate(40.7128, b"N", "N") == 40.7
    assert signed_coordinate(74.0060, b"W", "E") == -74.0


def test_signed_coordinate_near_zero_has_no_negative_zero() -> None:
    value = signed_coordinate(0.03, b"S", "N")

    assert value == 0.0
    assert str(value) == "0.0"
    assert cache_key(value, signed_coordinate(0.01, b"W", "E")) == "0.0,0.0"


def test_dms_to_degrees_handles_rationals() -> None:
    assert dms_to_degrees(((51, 1), (30, 1), (0, 1))) == pytest.approx(51.5)
    assert dms_to_degrees(((51, 1), (0, 0), (0, 1))) is None
    assert dms_to_degrees(((51, 1),)) is None


def test_coordinates_require_both_axes() -> None:
    gps = {
        piexif.GPSIFD.GPSLatitudeRef: b"N",
        piexif.GPSIFD.GPSLatitude: ((51, 1), (30, 1), (0, 1)),
    }

    assert extract_coordinates(gps) is None


def test_extract_capture_metadata_full(make_jpeg, london_gps) -> None:
    raw = make_jpeg(model=b"Pixel 7", taken=b"2021:06:15 14:30:00", gps=london_gps)

    metadata = extract_capture_metadata(raw)

    assert metadata.exif_readable
    assert metadata.camera_model == "Pixel 7"
    assert metadata.captured_at == datetime(2021, 6, 15, 14, 30, 0)
    assert metadata.coordinates == (51.5, -0.1)


def test_extract_capture_metadata_malformed_timestamp_is_unset(make_jpeg) -> None:
    metadata = extract_capture_metadata(make_jpeg(model=b"Pixel 7", taken=b"not a date"))

    assert metadata.captured_at is None
    assert metadata.camera_model == "Pixel 7"


def test_extract_capture_metadata_without_exif(make_jpeg) -> None:
    metadata = extract_capture_metadata(make_jpeg())

    assert metadata.exif_readable
    assert metadata.captured_at is None
    assert metadata.camera_model is None
    assert metadata.coordinates is None


def test_extract_capture_metadata_unknown_container_is_unreadable() -> None:
    metadata = extract_capture_metadata(b"definitely not a jpeg")

    assert not metadata.exif_readable
    assert metadata.coordinates is None
