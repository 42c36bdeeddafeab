"""Catalog writes keyed by content identifier."""

from __future__ import annotations

import time
from pathlib import Path

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from utils.logging import get_logger
from mue_importer.db import CatalogImage, open_catalog_session
from mue_importer.db_helpers import dialect_insert
from mue_importer.errors import CatalogError
from mue_importer.hasher import CONTENT_HASH_ALGO
from mue_importer.models import ImageRecord

LOGGER = get_logger(__name__, extra={"component": "catalog"})


def record_values(record: ImageRecord) -> dict[str, object]:
    """Map an :class:`ImageRecord` onto ``images`` column values."""

    return {
        "id": record.id,
        "category": record.category,
        "photographer": record.photographer,
        "camera": record.camera_model,
        "created_at": record.captured_at,
        "location_data": record.location_data,
        "location_name": record.location_name,
        "colour": record.dominant_colour,
        "original_file_name": record.source_file_name,
        "hash_algo": CONTENT_HASH_ALGO,
        "version": record.version,
        "updated_at": time.time(),
    }


class CatalogWriter:
    """Upsert and delete catalog rows.

    Each call opens its own session, so a single writer can be shared by the
    whole worker pool.
    """

    def __init__(self, target: str | Path) -> None:
        self._target = target

    def upsert(self, record: ImageRecord) -> bool:
        """Insert or update the row for ``record.id``.

        The update only applies when ``record.version`` is at least the stored
        version, so a stale writer cannot clobber a newer row.

        Returns:
            True when a row was inserted or updated, False when a newer
            version was already stored.

        Raises:
            CatalogError: When the database rejects the statement.
        """

        values = record_values(record)
        try:
            with open_catalog_session(self._target) as session:
                stmt = dialect_insert(session, CatalogImage).values(**values)
                update_columns = {key: stmt.excluded[key] for key in values if key != "id"}
                stmt = stmt.on_conflict_do_update(
                    index_elements=[CatalogImage.id],
                    set_=update_columns,
                    where=CatalogImage.version <= stmt.excluded.version,
                )
                result = session.execute(stmt)
                session.commit()
        except SQLAlchemyError as exc:
            LOGGER.error("catalog_upsert_error", extra={"image_id": record.id, "error": str(exc)})
            raise CatalogError(f"upsert failed for {record.id}: {exc}") from exc

        written = bool(result.rowcount)
        if not written:
            LOGGER.info("catalog_upsert_stale", extra={"image_id": record.id, "version": record.version})
        return written

    def get(self, image_id: str) -> CatalogImage | None:
        with open_catalog_session(self._target) as session:
            row = session.get(CatalogImage, image_id)
            if row is not None:
                session.expunge(row)
            return row

    def delete(self, image_id: str) -> bool:
        """Remove the row for ``image_id``; return False when it did not exist."""

        try:
            with open_catalog_session(self._target) as session:
                result = session.execute(delete(CatalogImage).where(CatalogImage.id == image_id))
                session.commit()
        except SQLAlchemyError as exc:
            raise CatalogError(f"delete failed for {image_id}: {exc}") from exc
        return bool(result.rowcount)


__all__ = ["CatalogWriter", "record_values"]
