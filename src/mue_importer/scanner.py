"""Input directory listing."""

from __future__ import annotations

from pathlib import Path

from utils.logging import get_logger
from mue_importer.models import SourceFile

LOGGER = get_logger(__name__)


def list_source_files(input_dir: Path) -> list[SourceFile]:
    """Return the candidate images directly inside ``input_dir``.

    The listing is flat: subdirectories, hidden entries (leading dot) and
    anything that is not a regular file are skipped. Results are sorted by
    name so runs are reproducible.

    Args:
        input_dir: Directory holding the images to ingest.

    Returns:
        SourceFile descriptors, one per candidate.
    """

    if not input_dir.exists() or not input_dir.is_dir():
        LOGGER.warning("input_dir_missing", extra={"input_dir": str(input_dir)})
        return []

    files: list[SourceFile] = []
    for path in sorted(input_dir.iterdir()):
        if path.name.startswith("."):
            continue
        if not path.is_file():
            continue
        files.append(SourceFile(path=path))

    LOGGER.info("input_files_discovered", extra={"input_dir": str(input_dir), "file_count": len(files)})
    return files


__all__ = ["list_source_files"]
