"""Multi-resolution, multi-format variant encoding."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Final

import numpy as np
from PIL import Image
from PIL.Image import Resampling

from utils.logging import get_logger
from mue_importer.config import EncodingConfig
from mue_importer.errors import EncodeError
from mue_importer.models import EncodedVariant, Variant

LOGGER = get_logger(__name__, extra={"component": "encoding"})

# Ordered; ``None`` keeps the source dimensions.
RESOLUTION_CLASSES: Final[dict[str, int | None]] = {
    "hd": 720,
    "fhd": 1080,
    "qhd": 1440,
    "original": None,
}

_CONTENT_TYPES: Final[dict[str, str]] = {
    "webp": "image/webp",
    "avif": "image/avif",
}

_COLOUR_SAMPLE_SIDE: Final[int] = 64


def build_variants(formats: list[str]) -> list[Variant]:
    """Return the resolution × format product in resolution-major order."""

    return [
        Variant(resolution_class=name, format=fmt, height=height)
        for name, height in RESOLUTION_CLASSES.items()
        for fmt in formats
    ]


@dataclass(frozen=True)
class EncodeResult:
    buffers: dict[str, EncodedVariant]
    dominant_colour: str | None


def dominant_colour(image: Image.Image) -> str:
    """Mean RGB of a downsampled copy of ``image`` as ``#rrggbb``."""

    sample = image.convert("RGB")
    sample.thumbnail((_COLOUR_SAMPLE_SIDE, _COLOUR_SAMPLE_SIDE), resample=Resampling.BOX)
    pixels = np.asarray(sample, dtype=np.float64).reshape(-1, 3)
    red, green, blue = (int(round(channel)) for channel in pixels.mean(axis=0))
    return f"#{red:02x}{green:02x}{blue:02x}"


def _normalize_mode(image: Image.Image) -> Image.Image:
    has_alpha = image.mode in ("RGBA", "LA", "PA") or (image.mode == "P" and "transparency" in image.info)
    target = "RGBA" if has_alpha else "RGB"
    return image if image.mode == target else image.convert(target)


class VariantEncoder:
    """Produce every configured variant of a source image."""

    def __init__(self, config: EncodingConfig | None = None) -> None:
        self._config = config or EncodingConfig()
        unknown = [fmt for fmt in self._config.formats if fmt not in _CONTENT_TYPES]
        if unknown:
            raise ValueError(f"Unsupported output formats: {unknown!r}")
        self._variants = build_variants(list(self._config.formats))

    @property
    def variants(self) -> list[Variant]:
        return list(self._variants)

    def storage_keys(self, image_id: str) -> list[str]:
        return [variant.storage_key(image_id) for variant in self._variants]

    def _resize(self, image: Image.Image, height: int | None) -> Image.Image:
        if height is None:
            return image
        if image.height <= height and not self._config.allow_upscale:
            return image
        width = max(1, round(image.width * height / image.height))
        return image.resize((width, height), resample=Resampling.LANCZOS)

    def _save_params(self, fmt: str) -> dict[str, Any]:
        if fmt == "webp":
            return {"format": "WEBP", "quality": self._config.quality, "method": self._config.webp_method}
        return {"format": "AVIF", "quality": self._config.quality, "speed": self._config.avif_speed}

    def encode_variant(self, image: Image.Image, variant: Variant) -> EncodedVariant:
        """Encode one variant of an already-decoded image."""

        resized = self._resize(image, variant.height)
        buffer = io.BytesIO()
        resized.save(buffer, **self._save_params(variant.format))
        return EncodedVariant(variant=variant, data=buffer.getvalue(), content_type=_CONTENT_TYPES[variant.format])

    def encode(self, canonical: bytes, image_id: str) -> EncodeResult:
        """Encode all variants of ``canonical``.

        The source is decoded once. Every variant must succeed; the first
        failure raises and no partial result is returned.

        Raises:
            EncodeError: When the source cannot be decoded or any variant
                fails to encode.
        """

        try:
            with Image.open(io.BytesIO(canonical)) as opened:
                opened.load()
                source = _normalize_mode(opened)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise EncodeError(f"cannot decode source image: {exc}") from exc

        buffers: dict[str, EncodedVariant] = {}
        for variant in self._variants:
            key = variant.storage_key(image_id)
            try:
                buffers[key] = self.encode_variant(source, variant)
            except (OSError, ValueError, KeyError) as exc:
                LOGGER.error(
                    "variant_encode_error",
                    extra={"image_id": image_id, "key": key, "error": str(exc)},
                )
                raise EncodeError(f"failed to encode {key}: {exc}", variant=key) from exc

        colour = dominant_colour(source) if self._config.compute_dominant_colour else None
        LOGGER.debug(
            "variants_encoded",
            extra={"image_id": image_id, "variants": len(buffers), "bytes": sum(len(b.data) for b in buffers.values())},
        )
        return EncodeResult(buffers=buffers, dominant_colour=colour)


__all__ = ["RESOLUTION_CLASSES", "EncodeResult", "VariantEncoder", "build_variants", "dominant_colour"]
