"""Reverse geocoding with a process-wide coordinate cache."""

from __future__ import annotations

import threading
from typing import Any, Protocol

import requests

from utils.logging import get_logger
from mue_importer.config import GeocodingConfig
from mue_importer.errors import GeocodingError

LOGGER = get_logger(__name__, extra={"component": "geocoding"})


class ReverseGeocoder(Protocol):
    """Remote collaborator returning candidate places for a coordinate."""

    def lookup(self, lat: float, lon: float) -> list[dict[str, Any]]:
        ...


class HttpReverseGeocoder:
    """``GET {endpoint}?lat=..&lon=..`` returning ``[{"name", "state"}, ...]``."""

    def __init__(self, config: GeocodingConfig, session: requests.Session | None = None) -> None:
        self._endpoint = config.endpoint
        self._timeout = config.timeout
        self._session = session or requests.Session()

    def lookup(self, lat: float, lon: float) -> list[dict[str, Any]]:
        try:
            response = self._session.get(self._endpoint, params={"lat": lat, "lon": lon}, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GeocodingError(f"reverse geocode failed for {lat},{lon}: {exc}") from exc

        if not isinstance(payload, list):
            raise GeocodingError(f"unexpected geocode response for {lat},{lon}: {type(payload).__name__}")
        return [item for item in payload if isinstance(item, dict)]


def format_place(candidate: dict[str, Any]) -> str | None:
    """Render ``"name, state"``, or just the name when no state is given."""

    name = str(candidate.get("name") or "").strip()
    if not name:
        return None
    state = str(candidate.get("state") or "").strip()
    return f"{name}, {state}" if state else name


def cache_key(lat: float, lon: float) -> str:
    return f"{lat},{lon}"


class GeoResolver:
    """Resolve rounded coordinates to a place name, caching every answer.

    The cache is shared by all workers. Two workers missing on the same key
    may both call the remote service; the first answer stored wins and both
    return it. Failed lookups are not cached.
    """

    def __init__(self, geocoder: ReverseGeocoder) -> None:
        self._geocoder = geocoder
        self._cache: dict[str, str | None] = {}
        self._lock = threading.Lock()

    def cached(self, lat: float, lon: float) -> bool:
        with self._lock:
            return cache_key(lat, lon) in self._cache

    def resolve(self, lat: float, lon: float) -> str | None:
        """Return the place name for ``(lat, lon)`` or None when nothing matches.

        Raises:
            GeocodingError: When the remote lookup fails or times out.
        """

        key = cache_key(lat, lon)
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        candidates = self._geocoder.lookup(lat, lon)
        name = format_place(candidates[0]) if candidates else None

        with self._lock:
            stored = self._cache.setdefault(key, name)
        LOGGER.debug("geocode_resolved", extra={"key": key, "location_name": stored})
        return stored


__all__ = ["GeoResolver", "HttpReverseGeocoder", "ReverseGeocoder", "cache_key", "format_place"]
