"""Per-file ingestion state machine executed over a worker pool."""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path

from utils.logging import get_logger
from mue_importer.catalog import CatalogWriter
from mue_importer.config import RunConfig, Settings, load_settings
from mue_importer.devices import DeviceNameResolver, load_device_resolver
from mue_importer.encoding import VariantEncoder
from mue_importer.errors import CleanupError, DeviceTableError, GeocodingError, IngestError
from mue_importer.geocoding import GeoResolver, HttpReverseGeocoder
from mue_importer.hasher import identify
from mue_importer.metadata import extract_capture_metadata
from mue_importer.models import (
    Encoded,
    Enriched,
    FailedStage,
    FileOutcome,
    FileState,
    Identified,
    ImageRecord,
    PipelineEvent,
    RunSummary,
    SourceFile,
)
from mue_importer.scanner import list_source_files
from mue_importer.storage import S3ObjectStore, StorageUploader

EventCallback = Callable[[PipelineEvent], None]

DEGRADED_EXIF = "exif_unreadable"
DEGRADED_GEOCODE = "geocode_failed"


def _version_now() -> int:
    return time.time_ns() // 1_000_000


class IngestionPipeline:
    """Ingest every image in a directory, one independent state machine per file.

    Stages run in order identify → enrich → encode → store → catalog →
    cleanup. A failure in identify, encode, store or catalog aborts that file
    only; enrichment never fails a file and cleanup failures leave the
    catalog commit in place.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        device_loader: Callable[[], DeviceNameResolver],
        encoder: VariantEncoder,
        uploader: StorageUploader,
        catalog: CatalogWriter,
        geo_resolver: GeoResolver | None = None,
        run_config: RunConfig | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self._settings = settings
        self._run = run_config or settings.run
        self._device_loader = device_loader
        self._encoder = encoder
        self._uploader = uploader
        self._catalog = catalog
        self._geo = geo_resolver
        self._on_event = on_event
        self._devices: DeviceNameResolver | None = None
        self._stop = threading.Event()
        self._encode_slots = threading.BoundedSemaphore(max(1, settings.pipeline.encode_workers))
        self._logger = get_logger(__name__, extra={"component": "ingest"})

    # -- lifecycle -----------------------------------------------------------

    def prepare(self) -> DeviceNameResolver:
        """Load the device-name table once; later calls reuse it.

        Raises:
            DeviceTableError: When the table cannot be built or read.
        """

        if self._devices is None:
            try:
                self._devices = self._device_loader()
            except DeviceTableError:
                raise
            except Exception as exc:
                raise DeviceTableError(f"device table bootstrap failed: {exc}") from exc
        return self._devices

    def request_stop(self) -> None:
        """Stop dequeuing files; in-flight files that have not been stored stop at the next stage boundary."""

        if not self._stop.is_set():
            self._logger.info("pipeline_stop_requested", extra={})
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def run(self, input_dir: Path | None = None) -> RunSummary:
        """Process every candidate file in ``input_dir``.

        Raises:
            ConfigurationError: When the run configuration is invalid; no file
                is touched.
            DeviceTableError: When the device table bootstrap fails.
        """

        self._run.validate()
        source_dir = Path(input_dir or self._settings.pipeline.input_dir)
        self.prepare()

        files = list_source_files(source_dir)
        summary = RunSummary(discovered=len(files))
        self._logger.info(
            "pipeline_start",
            extra={
                "input_dir": str(source_dir),
                "file_count": len(files),
                "concurrency": self._run.concurrency,
                "category": self._run.category,
                "photographer": self._run.photographer,
            },
        )

        work: queue.Queue[SourceFile] = queue.Queue()
        for source in files:
            work.put(source)

        results_lock = threading.Lock()

        def _worker_loop(worker_id: int) -> None:
            while not self._stop.is_set():
                try:
                    source = work.get_nowait()
                except queue.Empty:
                    return
                try:
                    outcome = self.process_file(source)
                except Exception as exc:  # pragma: no cover - process_file classifies stage errors
                    self._logger.exception("worker_unexpected_error", extra={"worker_id": worker_id, "file": source.name})
                    outcome = FileOutcome(file_name=source.name, state=FileState.FAILED, error=str(exc))
                with results_lock:
                    summary.outcomes.append(outcome)

        workers = max(1, min(self._run.concurrency, len(files) or 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as executor:
            for idx in range(workers):
                executor.submit(_worker_loop, idx)

        summary.not_started = work.qsize()
        self._logger.info(
            "pipeline_complete",
            extra={"counts": summary.counts, "succeeded": summary.succeeded, "failed": summary.failed},
        )
        return summary

    # -- per-file state machine ---------------------------------------------

    def process_file(self, source: SourceFile) -> FileOutcome:
        """Drive one file through every stage and return its terminal outcome."""

        self.prepare()
        self._emit("file_started", source.name, FileState.DISCOVERED)

        try:
            identified = self.identify(source)
        except Exception as exc:
            return self._fail(source.name, FailedStage.IDENTIFY, exc)
        self._emit("stage_completed", source.name, FileState.IDENTIFIED, identified.image_id)

        enriched = self.enrich(identified)
        self._emit("stage_completed", source.name, FileState.ENRICHED, identified.image_id)
        if self._stop.is_set():
            return self._cancel(enriched, FileState.ENRICHED)

        try:
            encoded = self.encode(enriched)
        except Exception as exc:
            return self._fail(source.name, FailedStage.ENCODE, exc, enriched)
        self._emit("stage_completed", source.name, FileState.ENCODED, identified.image_id)
        if self._stop.is_set():
            return self._cancel(enriched, FileState.ENCODED)

        try:
            uploaded = self.store(encoded)
        except Exception as exc:
            return self._fail(source.name, FailedStage.STORE, exc, enriched)
        self._emit("stage_completed", source.name, FileState.STORED, identified.image_id)

        try:
            record = self.commit(encoded)
        except Exception as exc:
            return self._fail(source.name, FailedStage.CATALOG, exc, enriched, uploaded)
        self._emit("stage_completed", source.name, FileState.CATALOGED, record.id)

        state = FileState.CATALOGED
        cleanup_error: str | None = None
        if self._settings.pipeline.delete_source_on_success:
            try:
                self.cleanup(source)
            except CleanupError as exc:
                cleanup_error = str(exc)
                self._logger.error(
                    "source_cleanup_error",
                    extra={"file": source.name, "image_id": record.id, "error": cleanup_error},
                )
            else:
                state = FileState.CLEANED
                self._emit("stage_completed", source.name, FileState.CLEANED, record.id)

        outcome = FileOutcome(
            file_name=source.name,
            state=state,
            image_id=record.id,
            degradations=enriched.degradations,
            uploaded_keys=tuple(uploaded),
            cleanup_error=cleanup_error,
        )
        self._logger.info(
            "file_ingested",
            extra={"file": source.name, "image_id": record.id, "state": state.value, "variants": len(uploaded)},
        )
        self._emit("file_finished", source.name, state, record.id, cleanup_error)
        return outcome

    # -- stages --------------------------------------------------------------

    def identify(self, source: SourceFile) -> Identified:
        raw = source.read_bytes()
        canonical, image_id = identify(raw)
        return Identified(source=source, raw_bytes=raw, canonical_bytes=canonical, image_id=image_id)

    def enrich(self, identified: Identified) -> Enriched:
        """Attach capture metadata, device name and place name.

        Never raises: unreadable EXIF and failed geocoding are recorded as
        degradations and the affected fields keep their fallback values.
        """

        degradations: list[str] = []
        metadata = extract_capture_metadata(identified.raw_bytes)
        if not metadata.exif_readable:
            degradations.append(DEGRADED_EXIF)

        devices = self.prepare()
        camera_model = devices.resolve(metadata.camera_model)

        location_name = self._run.fallback_location_name
        if metadata.coordinates is not None and self._geo is not None:
            lat, lon = metadata.coordinates
            try:
                resolved = self._geo.resolve(lat, lon)
            except GeocodingError as exc:
                degradations.append(DEGRADED_GEOCODE)
                self._logger.warning(
                    "geocode_failed",
                    extra={"file": identified.source.name, "lat": lat, "lon": lon, "error": str(exc)},
                )
            except Exception as exc:  # pragma: no cover - third-party geocoder bugs
                degradations.append(DEGRADED_GEOCODE)
                self._logger.warning(
                    "geocode_failed",
                    extra={"file": identified.source.name, "lat": lat, "lon": lon, "error": repr(exc)},
                )
            else:
                if resolved:
                    location_name = resolved

        return Enriched(
            identified=identified,
            metadata=metadata,
            camera_model=camera_model,
            location_name=location_name,
            degradations=tuple(degradations),
        )

    def encode(self, enriched: Enriched) -> Encoded:
        identified = enriched.identified
        with self._encode_slots:
            result = self._encoder.encode(identified.canonical_bytes, identified.image_id)
        return Encoded(enriched=enriched, buffers=result.buffers, dominant_colour=result.dominant_colour)

    def store(self, encoded: Encoded) -> list[str]:
        return self._uploader.upload_all(encoded.buffers)

    def build_record(self, encoded: Encoded) -> ImageRecord:
        enriched = encoded.enriched
        return ImageRecord(
            id=enriched.identified.image_id,
            category=self._run.category,
            photographer=str(self._run.photographer),
            source_file_name=enriched.identified.source.name,
            version=_version_now(),
            camera_model=enriched.camera_model,
            captured_at=enriched.metadata.captured_at,
            location_coordinates=enriched.metadata.coordinates,
            location_name=enriched.location_name,
            dominant_colour=encoded.dominant_colour,
        )

    def commit(self, encoded: Encoded) -> ImageRecord:
        record = self.build_record(encoded)
        self._catalog.upsert(record)
        return record

    def cleanup(self, source: SourceFile) -> None:
        try:
            source.path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise CleanupError(f"cannot delete {source.path}: {exc}") from exc

    # -- helpers -------------------------------------------------------------

    def _fail(
        self,
        file_name: str,
        stage: FailedStage,
        exc: Exception,
        enriched: Enriched | None = None,
        uploaded: list[str] | None = None,
    ) -> FileOutcome:
        image_id = enriched.identified.image_id if enriched is not None else None
        extra = {"file": file_name, "stage": stage.value, "image_id": image_id, "error": str(exc)}
        if isinstance(exc, (IngestError, OSError)):
            self._logger.error("file_failed", extra=extra)
        else:
            self._logger.exception("file_failed_unexpected", extra=extra)

        outcome = FileOutcome(
            file_name=file_name,
            state=FileState.FAILED,
            image_id=image_id,
            failed_stage=stage,
            error=str(exc),
            degradations=enriched.degradations if enriched is not None else (),
            uploaded_keys=tuple(uploaded or ()),
        )
        self._emit("file_finished", file_name, FileState.FAILED, image_id, str(exc))
        return outcome

    def _cancel(self, enriched: Enriched, reached: FileState) -> FileOutcome:
        name = enriched.identified.source.name
        image_id = enriched.identified.image_id
        self._logger.info("file_cancelled", extra={"file": name, "image_id": image_id, "reached": reached.value})
        self._emit("file_finished", name, FileState.CANCELLED, image_id)
        return FileOutcome(
            file_name=name,
            state=FileState.CANCELLED,
            image_id=image_id,
            degradations=enriched.degradations,
        )

    def _emit(
        self,
        kind: str,
        file_name: str,
        state: FileState,
        image_id: str | None = None,
        error: str | None = None,
    ) -> None:
        if self._on_event is None:
            return
        event = PipelineEvent(kind=kind, file_name=file_name, state=state, image_id=image_id, error=error)
        try:
            self._on_event(event)
        except Exception as exc:
            self._logger.warning("event_callback_error", extra={"kind": kind, "file": file_name, "error": str(exc)})


def build_pipeline(
    settings: Settings | None = None,
    *,
    run_config: RunConfig | None = None,
    on_event: EventCallback | None = None,
) -> IngestionPipeline:
    """Wire an :class:`IngestionPipeline` with the production collaborators."""

    settings = settings or load_settings()
    geo_resolver = GeoResolver(HttpReverseGeocoder(settings.geocoding)) if settings.geocoding.enabled else None
    return IngestionPipeline(
        settings,
        device_loader=partial(load_device_resolver, settings.devices),
        encoder=VariantEncoder(settings.encoding),
        uploader=StorageUploader(S3ObjectStore(settings.storage), settings.storage),
        catalog=CatalogWriter(settings.catalog.url),
        geo_resolver=geo_resolver,
        run_config=run_config,
        on_event=on_event,
    )


__all__ = ["IngestionPipeline", "EventCallback", "build_pipeline", "DEGRADED_EXIF", "DEGRADED_GEOCODE"]
