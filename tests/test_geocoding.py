"""Tests for the cached reverse geocoder."""

from __future__ import annotations

import threading

import pytest
import requests

from mue_importer.config import GeocodingConfig
from mue_importer.errors import GeocodingError
from mue_importer.geocoding import GeoResolver, HttpReverseGeocoder, format_place


class CountingGeocoder:
    def __init__(self, answers: list[dict] | Exception) -> None:
        self.answers = answers
        self.calls: list[tuple[float, float]] = []
        self._lock = threading.Lock()

    def lookup(self, lat: float, lon: float) -> list[dict]:
        with self._lock:
            self.calls.append((lat, lon))
        if isinstance(self.answers, Exception):
            raise self.answers
        return list(self.answers)


def test_cache_hit_avoids_second_remote_call() -> None:
    remote = CountingGeocoder([{"name": "Nantucket", "state": "Massachusetts"}])
    resolver = GeoResolver(remote)

    first = resolver.resolve(40.0, -70.0)
    second = resolver.resolve(40.0, -70.0)

    assert first == second == "Nantucket, Massachusetts"
    assert remote.calls == [(40.0, -70.0)]


def test_empty_answer_is_cached() -> None:
    remote = CountingGeocoder([])
    resolver = GeoResolver(remote)

    assert resolver.resolve(0.0, -30.0) is None
    assert resolver.resolve(0.0, -30.0) is None
    assert len(remote.calls) == 1
    assert resolver.cached(0.0, -30.0)


def test_failures_are_not_cached() -> None:
    remote = CountingGeocoder(GeocodingError("timeout"))
    resolver = GeoResolver(remote)

    for _ in range(2):
        with pytest.raises(GeocodingError):
            resolver.resolve(51.5, -0.1)

    assert len(remote.calls) == 2
    assert not resolver.cached(51.5, -0.1)


def test_concurrent_lookups_converge() -> None:
    remote = CountingGeocoder([{"name": "London", "state": "England"}])
    resolver = GeoResolver(remote)
    results: list[str | None] = []
    results_lock = threading.Lock()

    def _worker() -> None:
        value = resolver.resolve(51.5, -0.1)
        with results_lock:
            results.append(value)

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert set(results) == {"London, England"}
    assert 1 <= len(remote.calls) <= 8


def test_format_place() -> None:
    assert format_place({"name": "Paris", "state": "Ile-de-France"}) == "Paris, Ile-de-France"
    assert format_place({"name": "Monaco"}) == "Monaco"
    assert format_place({"state": "Nowhere"}) is None


class _FakeResponse:
    def __init__(self, payload, status: int = 200) -> None:
        self._payload = payload
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self):
        return self._payload


class _FakeSession:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.requests: list[dict] = []

    def get(self, url, params, timeout):
        self.requests.append({"url": url, "params": params, "timeout": timeout})
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def test_http_geocoder_sends_rounded_coordinates() -> None:
    session = _FakeSession(_FakeResponse([{"name": "London", "state": "England"}, {"name": "Other"}]))
    geocoder = HttpReverseGeocoder(GeocodingConfig(endpoint="https://geo.test/lookup", timeout=3.0), session=session)

    candidates = geocoder.lookup(51.5, -0.1)

    assert candidates[0]["name"] == "London"
    assert session.requests == [{"url": "https://geo.test/lookup", "params": {"lat": 51.5, "lon": -0.1}, "timeout": 3.0}]


@pytest.mark.parametrize(
    "outcome",
    [requests.Timeout("slow"), _FakeResponse({"error": "nope"}), _FakeResponse([], status=502)],
)
def test_http_geocoder_failures_raise_geocoding_error(outcome) -> None:
    geocoder = HttpReverseGeocoder(GeocodingConfig(), session=_FakeSession(outcome))

    with pytest.raises(GeocodingError):
        geocoder.lookup(1.0, 2.0)
