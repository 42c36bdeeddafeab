"""Configuration loader and typed settings for the Mue importer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from mue_importer.errors import ConfigurationError


def _default_concurrency() -> int:
    return max(1, min(os.cpu_count() or 1, 8))


@dataclass
class RunConfig:
    """Per-run options normally supplied by the operator."""

    default_category: str = "outdoors"
    fallback_location_name: str | None = None
    photographer: str | None = None
    concurrency: int = field(default_factory=_default_concurrency)

    @property
    def category(self) -> str:
        return (self.default_category or "").strip().lower()

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` when the run cannot start."""

        if not self.photographer or not self.photographer.strip():
            raise ConfigurationError("photographer is required")
        if self.concurrency < 1:
            raise ConfigurationError(f"concurrency must be at least 1, got {self.concurrency}")


@dataclass
class PipelineConfig:
    """Input discovery and worker pool settings."""

    input_dir: str = "import"
    encode_workers: int = 2
    delete_source_on_success: bool = True


@dataclass
class EncodingConfig:
    """Variant encoder parameters."""

    formats: list[str] = field(default_factory=lambda: ["webp", "avif"])
    quality: int = 85
    webp_method: int = 6
    avif_speed: int = 6
    allow_upscale: bool = False
    compute_dominant_colour: bool = True


@dataclass
class StorageConfig:
    """S3-compatible object storage target."""

    bucket: str = "mue"
    endpoint_url: str | None = None
    region_name: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    force_path_style: bool = True
    cache_control: str = "public, max-age=31536000, stale-while-revalidate=86400"
    upload_concurrency: int = 4
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    max_attempts: int = 3
    skip_existing: bool = True


@dataclass
class CatalogConfig:
    """Catalog database target."""

    url: str = "sqlite:///data/catalog.db"


@dataclass
class GeocodingConfig:
    """Reverse geocoding endpoint."""

    enabled: bool = True
    endpoint: str = "https://proxy.muetab.com/weather/autolocation"
    timeout: float = 10.0


@dataclass
class DevicesConfig:
    """Device-name lookup table source and local cache."""

    enabled: bool = True
    cache_path: str = "android.json"
    source_url: str = "https://storage.googleapis.com/play_public/supported_devices.csv"
    timeout: float = 60.0


@dataclass
class Settings:
    """Top-level application settings."""

    run: RunConfig = field(default_factory=RunConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    encoding: EncodingConfig = field(default_factory=EncodingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    geocoding: GeocodingConfig = field(default_factory=GeocodingConfig)
    devices: DevicesConfig = field(default_factory=DevicesConfig)


def _project_root() -> Path:
    """Best-effort detection of the repository root for config discovery."""

    module_path = Path(__file__).resolve()
    try:
        return module_path.parents[2]
    except IndexError:  # pragma: no cover - installed flat
        return module_path.parent


def _resolve_settings_path(settings_path: Path | str | None) -> Path:
    """Determine which settings file to load, honoring overrides."""

    if settings_path:
        return Path(settings_path).expanduser().resolve()

    env_override = os.getenv("MUE_IMPORTER_SETTINGS")
    if env_override:
        return Path(env_override).expanduser().resolve()

    candidates = [
        (Path.cwd() / "config" / "settings.yaml").resolve(),
        (_project_root() / "config" / "settings.yaml").resolve(),
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _assign(target: Any, raw: dict[str, Any], key: str, kinds: type | tuple[type, ...], cast: Any = None) -> None:
    """Copy ``raw[key]`` onto ``target`` when it has one of the expected types.

    ``bool`` is a subclass of ``int`` in Python, so booleans are rejected for
    numeric fields unless ``bool`` is itself the expected type.
    """

    if key not in raw:
        return
    value = raw[key]
    if isinstance(value, bool) and bool not in (kinds if isinstance(kinds, tuple) else (kinds,)):
        return
    if not isinstance(value, kinds):
        return
    setattr(target, key, cast(value) if cast else value)


def _apply_env_overrides(settings: Settings) -> None:
    storage = settings.storage
    storage.endpoint_url = os.getenv("S3_ENDPOINT") or storage.endpoint_url
    storage.access_key_id = os.getenv("S3_ACCESS") or storage.access_key_id
    storage.secret_access_key = os.getenv("S3_SECRET") or storage.secret_access_key
    storage.bucket = os.getenv("S3_BUCKET") or storage.bucket
    settings.catalog.url = os.getenv("MUE_IMPORTER_CATALOG_URL") or settings.catalog.url


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Load application settings from a YAML file, falling back to defaults.

    Missing files, missing keys and values of the wrong type all fall back to
    the dataclass defaults. Storage credentials and the catalog URL may be
    overridden from the environment.
    """

    path = _resolve_settings_path(settings_path)
    settings = Settings()

    raw: Any = {}
    if path.exists() and path.is_file():
        with path.open("r", encoding="utf-8") as fp:
            raw = yaml.safe_load(fp) or {}
    raw = _as_dict(raw)

    run_raw = _as_dict(raw.get("run"))
    _assign(settings.run, run_raw, "default_category", str)
    _assign(settings.run, run_raw, "fallback_location_name", str)
    _assign(settings.run, run_raw, "photographer", str)
    _assign(settings.run, run_raw, "concurrency", int)

    pipeline_raw = _as_dict(raw.get("pipeline"))
    _assign(settings.pipeline, pipeline_raw, "input_dir", str)
    _assign(settings.pipeline, pipeline_raw, "encode_workers", int)
    _assign(settings.pipeline, pipeline_raw, "delete_source_on_success", bool)

    encoding_raw = _as_dict(raw.get("encoding"))
    formats = encoding_raw.get("formats")
    if isinstance(formats, list) and formats:
        settings.encoding.formats = [str(item).lower() for item in formats if str(item)]
    _assign(settings.encoding, encoding_raw, "quality", int)
    _assign(settings.encoding, encoding_raw, "webp_method", int)
    _assign(settings.encoding, encoding_raw, "avif_speed", int)
    _assign(settings.encoding, encoding_raw, "allow_upscale", bool)
    _assign(settings.encoding, encoding_raw, "compute_dominant_colour", bool)

    storage_raw = _as_dict(raw.get("storage"))
    for key in ("bucket", "endpoint_url", "region_name", "access_key_id", "secret_access_key", "cache_control"):
        _assign(settings.storage, storage_raw, key, str)
    _assign(settings.storage, storage_raw, "force_path_style", bool)
    _assign(settings.storage, storage_raw, "skip_existing", bool)
    _assign(settings.storage, storage_raw, "upload_concurrency", int)
    _assign(settings.storage, storage_raw, "max_attempts", int)
    _assign(settings.storage, storage_raw, "connect_timeout", (int, float), float)
    _assign(settings.storage, storage_raw, "read_timeout", (int, float), float)

    catalog_raw = _as_dict(raw.get("catalog"))
    _assign(settings.catalog, catalog_raw, "url", str)

    geocoding_raw = _as_dict(raw.get("geocoding"))
    _assign(settings.geocoding, geocoding_raw, "enabled", bool)
    _assign(settings.geocoding, geocoding_raw, "endpoint", str)
    _assign(settings.geocoding, geocoding_raw, "timeout", (int, float), float)

    devices_raw = _as_dict(raw.get("devices"))
    _assign(settings.devices, devices_raw, "enabled", bool)
    _assign(settings.devices, devices_raw, "cache_path", str)
    _assign(settings.devices, devices_raw, "source_url", str)
    _assign(settings.devices, devices_raw, "timeout", (int, float), float)

    _apply_env_overrides(settings)
    return settings


__all__ = [
    "RunConfig",
    "PipelineConfig",
    "EncodingConfig",
    "StorageConfig",
    "CatalogConfig",
    "GeocodingConfig",
    "DevicesConfig",
    "Settings",
    "load_settings",
]
