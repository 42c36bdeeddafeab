"""CLI entrypoint for importing a directory of images."""

from __future__ import annotations

import signal
from pathlib import Path
from typing import Optional

import typer

from utils.logging import get_logger
from mue_importer.config import Settings, load_settings
from mue_importer.errors import ConfigurationError, DeviceTableError
from mue_importer.models import PipelineEvent
from mue_importer.pipeline import build_pipeline


LOGGER = get_logger(__name__)

app = typer.Typer(help="Import images into object storage and the catalog.")


def _apply_cli_overrides(
    settings: Settings,
    category: Optional[str],
    location: Optional[str],
    photographer: Optional[str],
    concurrency: Optional[int],
) -> Settings:
    """Apply CLI overrides on top of settings.yaml."""

    if category:
        settings.run.default_category = category
    if location:
        settings.run.fallback_location_name = location
    if photographer:
        settings.run.photographer = photographer
    if concurrency is not None:
        settings.run.concurrency = concurrency
    return settings


def _log_event(event: PipelineEvent) -> None:
    if event.kind == "file_finished":
        LOGGER.info(
            "file_finished",
            extra={"file": event.file_name, "state": event.state.value, "image_id": event.image_id, "error": event.error},
        )


@app.command("run")
def run(
    input_dir: Optional[Path] = typer.Option(
        None,
        "--input",
        file_okay=False,
        dir_okay=True,
        help="Directory of images to import. Defaults to pipeline.input_dir from settings.yaml.",
    ),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Image category."),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Fallback location name when EXIF has none."),
    photographer: Optional[str] = typer.Option(None, "--photographer", "-p", help="Photographer name."),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Number of files processed in parallel."),
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Path to an alternative settings.yaml."),
) -> None:
    """Import every image in the input directory."""

    settings = _apply_cli_overrides(load_settings(settings_path), category, location, photographer, concurrency)
    if not settings.run.fallback_location_name:
        LOGGER.warning("no_fallback_location", extra={})

    pipeline = build_pipeline(settings, on_event=_log_event)
    previous_handler = signal.signal(signal.SIGINT, lambda *_: pipeline.request_stop())
    try:
        summary = pipeline.run(input_dir)
    except (ConfigurationError, DeviceTableError) as exc:
        LOGGER.error("run_aborted", extra={"error": str(exc)})
        raise typer.Exit(code=1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    for outcome in summary.outcomes:
        if outcome.error:
            LOGGER.warning(
                "file_outcome",
                extra={"file": outcome.file_name, "outcome": outcome.summary_key, "error": outcome.error},
            )
    LOGGER.info("run_summary", extra={"discovered": summary.discovered, **summary.counts})

    if summary.failed:
        raise typer.Exit(code=2)


def main() -> None:
    """Entrypoint used when invoking the module as a script."""

    app()


if __name__ == "__main__":
    main()


__all__ = ["app", "main"]
