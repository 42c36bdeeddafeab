"""Immutable domain records passed between pipeline stages."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Mapping


class FileState(str, Enum):
    """Per-file state machine positions."""

    DISCOVERED = "discovered"
    IDENTIFIED = "identified"
    ENRICHED = "enriched"
    ENCODED = "encoded"
    STORED = "stored"
    CATALOGED = "cataloged"
    CLEANED = "cleaned"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailedStage(str, Enum):
    """Stage at which a file's processing was aborted."""

    IDENTIFY = "identify"
    ENCODE = "encode"
    STORE = "store"
    CATALOG = "catalog"


@dataclass(frozen=True)
class SourceFile:
    """A candidate image discovered in the input directory."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


@dataclass(frozen=True)
class CaptureMetadata:
    """Normalized values extracted from embedded EXIF."""

    captured_at: datetime | None = None
    camera_model: str | None = None
    coordinates: tuple[float, float] | None = None
    exif_readable: bool = True


@dataclass(frozen=True)
class ImageRecord:
    """The catalog row for one ingested image."""

    id: str
    category: str
    photographer: str
    source_file_name: str
    version: int
    camera_model: str | None = None
    captured_at: datetime | None = None
    location_coordinates: tuple[float, float] | None = None
    location_name: str | None = None
    dominant_colour: str | None = None

    @property
    def location_data(self) -> str | None:
        """Coordinates rendered as ``"lat,lon"``, the catalog column format."""

        if self.location_coordinates is None:
            return None
        lat, lon = self.location_coordinates
        return f"{lat},{lon}"


@dataclass(frozen=True)
class Variant:
    """One (resolution class, format) rendition of an image."""

    resolution_class: str
    format: str
    height: int | None

    def storage_key(self, image_id: str) -> str:
        return f"img/{self.resolution_class}/{image_id}.{self.format}"


@dataclass(frozen=True)
class EncodedVariant:
    """An encoded buffer ready for upload."""

    variant: Variant
    data: bytes
    content_type: str


@dataclass(frozen=True)
class Identified:
    source: SourceFile
    raw_bytes: bytes
    canonical_bytes: bytes
    image_id: str


@dataclass(frozen=True)
class Enriched:
    identified: Identified
    metadata: CaptureMetadata
    camera_model: str | None
    location_name: str | None
    degradations: tuple[str, ...] = ()


@dataclass(frozen=True)
class Encoded:
    enriched: Enriched
    buffers: Mapping[str, EncodedVariant]
    dominant_colour: str | None = None


@dataclass(frozen=True)
class FileOutcome:
    """Terminal result for one file in a run."""

    file_name: str
    state: FileState
    image_id: str | None = None
    failed_stage: FailedStage | None = None
    error: str | None = None
    degradations: tuple[str, ...] = ()
    uploaded_keys: tuple[str, ...] = ()
    cleanup_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state in (FileState.CATALOGED, FileState.CLEANED)

    @property
    def summary_key(self) -> str:
        if self.state is FileState.FAILED and self.failed_stage is not None:
            return f"failed:{self.failed_stage.value}"
        return self.state.value


@dataclass
class RunSummary:
    """Aggregated outcomes of one pipeline run."""

    outcomes: list[FileOutcome] = field(default_factory=list)
    discovered: int = 0
    not_started: int = 0

    @property
    def counts(self) -> dict[str, int]:
        counts = Counter(outcome.summary_key for outcome in self.outcomes)
        if self.not_started:
            counts["not_started"] = self.not_started
        return dict(counts)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.state is FileState.FAILED)

    def outcome_for(self, file_name: str) -> FileOutcome | None:
        for outcome in self.outcomes:
            if outcome.file_name == file_name:
                return outcome
        return None


@dataclass(frozen=True)
class PipelineEvent:
    """Progress notification delivered to the optional event callback."""

    kind: str
    file_name: str
    state: FileState
    image_id: str | None = None
    error: str | None = None


__all__ = [
    "FileState",
    "FailedStage",
    "SourceFile",
    "CaptureMetadata",
    "ImageRecord",
    "Variant",
    "EncodedVariant",
    "Identified",
    "Enriched",
    "Encoded",
    "FileOutcome",
    "RunSummary",
    "PipelineEvent",
]
