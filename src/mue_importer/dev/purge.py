"""Remove an ingested image's catalog row and stored variants."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from utils.logging import get_logger
from mue_importer.catalog import CatalogWriter
from mue_importer.config import load_settings
from mue_importer.encoding import VariantEncoder
from mue_importer.errors import CatalogError, StorageError
from mue_importer.storage import S3ObjectStore, StorageUploader


LOGGER = get_logger(__name__)

app = typer.Typer(help="Delete an image from the catalog and object storage.")


def purge_image(image_id: str, catalog: CatalogWriter, uploader: StorageUploader, encoder: VariantEncoder) -> list[str]:
    """Delete the catalog row first, then every variant key for ``image_id``.

    The row goes first so the catalog never references missing objects.
    """

    existed = catalog.delete(image_id)
    removed = uploader.delete_variants(image_id, encoder.variants)
    LOGGER.info("image_purged", extra={"image_id": image_id, "row_existed": existed, "keys": len(removed)})
    return removed


@app.command("run")
def run(
    image_id: str = typer.Argument(..., help="Content identifier of the image to remove."),
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Path to an alternative settings.yaml."),
) -> None:
    """Delete one image everywhere it was published."""

    settings = load_settings(settings_path)
    try:
        purge_image(
            image_id,
            CatalogWriter(settings.catalog.url),
            StorageUploader(S3ObjectStore(settings.storage), settings.storage),
            VariantEncoder(settings.encoding),
        )
    except (CatalogError, StorageError) as exc:
        LOGGER.error("purge_failed", extra={"image_id": image_id, "error": str(exc)})
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()


__all__ = ["app", "purge_image"]
