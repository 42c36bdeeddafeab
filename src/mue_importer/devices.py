"""Camera model to marketing name lookup backed by a local JSON cache."""

from __future__ import annotations

import csv
import io
import json
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType

import requests

from utils.logging import get_logger
from mue_importer.config import DevicesConfig
from mue_importer.errors import DeviceTableError

LOGGER = get_logger(__name__, extra={"component": "devices"})


class DeviceNameResolver:
    """Read-only ``Model -> DisplayName`` lookup."""

    def __init__(self, table: Mapping[str, str] | None = None) -> None:
        self._table: Mapping[str, str] = MappingProxyType(dict(table or {}))

    def __len__(self) -> int:
        return len(self._table)

    def resolve(self, model: str | None) -> str | None:
        """Return the friendly name for ``model``, or ``model`` itself if unmapped."""

        if model is None:
            return None
        return self._table.get(model, model)


def display_name(model: str, retail_branding: str, marketing_name: str) -> str:
    """Combine CSV columns into the name shown for a device.

    The marketing name is used as-is when it already carries the brand
    prefix; otherwise the brand is prepended to the marketing name, or to the
    model code when no marketing name is listed.
    """

    if marketing_name and marketing_name.startswith(retail_branding):
        return marketing_name
    return f"{retail_branding} {marketing_name or model}".strip()


def _normalize_header(name: str) -> str:
    return name.replace(" ", "").strip().lstrip("\ufeff")


def build_device_table(rows: Iterable[Mapping[str, str | None]]) -> dict[str, str]:
    """Transform CSV rows into a ``Model -> DisplayName`` mapping.

    Later rows win when a model code is listed more than once.
    """

    table: dict[str, str] = {}
    for row in rows:
        normalized = {_normalize_header(str(key)): (value or "").strip() for key, value in row.items() if key}
        model = normalized.get("Model", "")
        if not model:
            continue
        table[model] = display_name(model, normalized.get("RetailBranding", ""), normalized.get("MarketingName", ""))
    return table


def decode_csv_payload(payload: bytes) -> str:
    """Decode the device CSV, which upstream publishes as UTF-16."""

    if payload[:2] in (b"\xff\xfe", b"\xfe\xff"):
        return payload.decode("utf-16")
    return payload.decode("utf-8-sig")


def _download_csv(config: DevicesConfig, session: requests.Session | None) -> str:
    http = session or requests.Session()
    try:
        response = http.get(config.source_url, timeout=config.timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise DeviceTableError(f"failed to download device list: {exc}") from exc
    return decode_csv_payload(response.content)


def _write_json_atomic(path: Path, table: Mapping[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(json.dumps(table, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp_path, path)


def ensure_device_table(config: DevicesConfig, session: requests.Session | None = None) -> Path:
    """Materialize the local device cache file if it is absent.

    Idempotent: when the cache file already exists it is left untouched and
    no network request is made.

    Raises:
        DeviceTableError: When the download or transform fails.
    """

    cache_path = Path(config.cache_path)
    if cache_path.exists():
        return cache_path

    LOGGER.info("device_table_download_start", extra={"url": config.source_url})
    text = _download_csv(config, session)
    try:
        table = build_device_table(csv.DictReader(io.StringIO(text)))
    except csv.Error as exc:
        raise DeviceTableError(f"malformed device list: {exc}") from exc

    try:
        _write_json_atomic(cache_path, table)
    except OSError as exc:
        raise DeviceTableError(f"cannot write device cache {cache_path}: {exc}") from exc

    LOGGER.info("device_table_built", extra={"path": str(cache_path), "models": len(table)})
    return cache_path


def load_device_resolver(config: DevicesConfig, session: requests.Session | None = None) -> DeviceNameResolver:
    """Build the cache if needed and return a resolver over it."""

    if not config.enabled:
        return DeviceNameResolver()

    cache_path = ensure_device_table(config, session=session)
    try:
        raw = json.loads(cache_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise DeviceTableError(f"cannot read device cache {cache_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise DeviceTableError(f"device cache {cache_path} is not a JSON object")

    resolver = DeviceNameResolver({str(key): str(value) for key, value in raw.items()})
    LOGGER.info("device_table_loaded", extra={"path": str(cache_path), "models": len(resolver)})
    return resolver


__all__ = [
    "DeviceNameResolver",
    "build_device_table",
    "decode_csv_payload",
    "display_name",
    "ensure_device_table",
    "load_device_resolver",
]
