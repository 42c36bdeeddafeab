"""Shared logging configuration and logger factory."""

from __future__ import annotations

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_LOG_ROOT = _PROJECT_ROOT / "log"
_STANDARD_KEYS = frozenset(logging.makeLogRecord({}).__dict__.keys()) | {"stack_info", "asctime", "message"}


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the attributes attached to ``record`` through ``extra=``."""

    return {key: value for key, value in record.__dict__.items() if key not in _STANDARD_KEYS}


class _JsonLineFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(_record_extras(record))
        return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)


class _ConsoleFormatter(logging.Formatter):
    """Console formatter that appends ``extra`` fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _record_extras(record)
        if not extras:
            return base

        parts = [f"{key}={value!r}" for key, value in sorted(extras.items())]
        return f"{base} | " + " ".join(parts)


def _resolve_level() -> int:
    name = os.getenv("MUE_IMPORTER_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_root_logger() -> None:
    """Attach console and rotating file handlers to the root logger once."""

    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(_resolve_level())

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_ConsoleFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(console_handler)

    log_root = Path(os.getenv("MUE_IMPORTER_LOG_DIR") or _DEFAULT_LOG_ROOT)
    try:
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_root / "mue_importer.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        root.warning("file_logging_unavailable", extra={"log_root": str(log_root), "error": str(exc)})
        return

    file_handler.setFormatter(_JsonLineFormatter())
    root.addHandler(file_handler)


def get_logger(name: str, extra: Dict[str, Any] | None = None) -> logging.LoggerAdapter:
    """Return a structured logger adapter for the given name.

    The first call configures the root handlers. Callers can pass a base
    ``extra`` mapping that is attached to every record emitted through the
    returned adapter; per-call ``extra`` values are merged on top of it.
    """

    _configure_root_logger()
    return _MergingAdapter(logging.getLogger(name), extra or {})


class _MergingAdapter(logging.LoggerAdapter):
    """Adapter that merges the base ``extra`` with per-call ``extra``."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


__all__ = ["get_logger"]
