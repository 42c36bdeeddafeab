"""Error taxonomy for the ingestion pipeline.

Run-fatal errors (:class:`ConfigurationError`, :class:`DeviceTableError`) stop
a run before any file is processed. Every other error is scoped to a single
file and is converted into a failed :class:`~mue_importer.models.FileOutcome`
at the pipeline boundary.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for all importer errors."""


class ConfigurationError(IngestError):
    """Run configuration is missing a required value or holds an invalid one."""


class DeviceTableError(IngestError):
    """The device-name table could not be loaded or built."""


class CorruptInputError(IngestError):
    """A source file is not a parseable image container."""


class GeocodingError(IngestError):
    """The reverse-geocoding collaborator failed or timed out."""


class EncodeError(IngestError):
    """One of a file's variants could not be encoded."""

    def __init__(self, message: str, *, variant: str | None = None) -> None:
        super().__init__(message)
        self.variant = variant


class StorageError(IngestError):
    """One or more variant uploads failed."""

    def __init__(self, message: str, *, failed_keys: list[str] | None = None) -> None:
        super().__init__(message)
        self.failed_keys = list(failed_keys or [])


class CatalogError(IngestError):
    """The catalog upsert (or delete) did not complete."""


class CleanupError(IngestError):
    """The source file could not be removed after a successful commit."""


__all__ = [
    "IngestError",
    "ConfigurationError",
    "DeviceTableError",
    "CorruptInputError",
    "GeocodingError",
    "EncodeError",
    "StorageError",
    "CatalogError",
    "CleanupError",
]
