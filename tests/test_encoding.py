"""Tests for variant encoding."""

from __future__ import annotations

import io
import re

import pytest
from PIL import Image

from mue_importer.config import EncodingConfig
from mue_importer.encoding import RESOLUTION_CLASSES, VariantEncoder, build_variants, dominant_colour
from mue_importer.errors import EncodeError

IMAGE_ID = "0123456789abcdef0123456789abcdef"


def _jpeg(size: tuple[int, int], color=(30, 120, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


def _decoded_size(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as image:
        return image.size


def test_build_variants_is_resolution_major() -> None:
    variants = build_variants(["webp", "avif"])

    assert [(v.resolution_class, v.format) for v in variants[:3]] == [("hd", "webp"), ("hd", "avif"), ("fhd", "webp")]
    assert len(variants) == len(RESOLUTION_CLASSES) * 2


def test_encode_produces_every_variant_key() -> None:
    encoder = VariantEncoder(EncodingConfig(compute_dominant_colour=False))

    result = encoder.encode(_jpeg((40, 30)), IMAGE_ID)

    assert len(result.buffers) == 8
    assert set(result.buffers) == set(encoder.storage_keys(IMAGE_ID))
    for key, encoded in result.buffers.items():
        match = re.fullmatch(rf"img/(hd|fhd|qhd|original)/{IMAGE_ID}\.(webp|avif)", key)
        assert match is not None
        assert encoded.content_type == f"image/{match.group(2)}"
        assert encoded.data
    assert result.dominant_colour is None


def test_encode_resizes_to_class_height() -> None:
    encoder = VariantEncoder(EncodingConfig(formats=["webp"]))

    result = encoder.encode(_jpeg((20, 1600)), IMAGE_ID)

    assert _decoded_size(result.buffers[f"img/hd/{IMAGE_ID}.webp"].data)[1] == 720
    assert _decoded_size(result.buffers[f"img/fhd/{IMAGE_ID}.webp"].data)[1] == 1080
    assert _decoded_size(result.buffers[f"img/qhd/{IMAGE_ID}.webp"].data)[1] == 1440
    assert _decoded_size(result.buffers[f"img/original/{IMAGE_ID}.webp"].data) == (20, 1600)


def test_encode_does_not_upscale_by_default() -> None:
    encoder = VariantEncoder(EncodingConfig(formats=["webp"]))

    result = encoder.encode(_jpeg((60, 40)), IMAGE_ID)

    assert {_decoded_size(buf.data) for buf in result.buffers.values()} == {(60, 40)}


def test_encode_upscales_when_allowed() -> None:
    encoder = VariantEncoder(EncodingConfig(formats=["webp"], allow_upscale=True))

    result = encoder.encode(_jpeg((60, 40)), IMAGE_ID)

    assert _decoded_size(result.buffers[f"img/hd/{IMAGE_ID}.webp"].data) == (1080, 720)


def test_avif_variant_decodes() -> None:
    encoder = VariantEncoder(EncodingConfig(formats=["avif"]))

    result = encoder.encode(_jpeg((40, 30)), IMAGE_ID)

    with Image.open(io.BytesIO(result.buffers[f"img/original/{IMAGE_ID}.avif"].data)) as image:
        assert image.format == "AVIF"


def test_undecodable_source_raises_encode_error() -> None:
    with pytest.raises(EncodeError):
        VariantEncoder().encode(b"\xff\xd8garbage", IMAGE_ID)


def test_variant_failure_aborts_whole_file(monkeypatch) -> None:
    encoder = VariantEncoder(EncodingConfig(formats=["webp", "avif"]))
    original = VariantEncoder.encode_variant

    def _flaky(self, image, variant):
        if variant.resolution_class == "qhd" and variant.format == "avif":
            raise OSError("encoder crashed")
        return original(self, image, variant)

    monkeypatch.setattr(VariantEncoder, "encode_variant", _flaky)

    with pytest.raises(EncodeError) as excinfo:
        encoder.encode(_jpeg((40, 30)), IMAGE_ID)

    assert excinfo.value.variant == f"img/qhd/{IMAGE_ID}.avif"


def test_unknown_format_rejected() -> None:
    with pytest.raises(ValueError):
        VariantEncoder(EncodingConfig(formats=["gif"]))


def test_dominant_colour_of_solid_image() -> None:
    assert dominant_colour(Image.new("RGB", (50, 50), color=(255, 0, 0))) == "#ff0000"
    assert dominant_colour(Image.new("RGBA", (10, 10), color=(0, 128, 255, 255))) == "#0080ff"
