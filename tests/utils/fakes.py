from __future__ import annotations

import hashlib
import threading
from collections.abc import Callable, Iterable


class MemoryStore:
    """In-memory object store with optional per-key upload failures."""

    def __init__(self, fail: Callable[[str], bool] | None = None, keys: Iterable[str] = ()) -> None:
        self.objects: dict[str, bytes] = {key: b"" for key in keys}
        self.headers: dict[str, dict[str, str]] = {}
        self.puts: list[str] = []
        self.fail = fail or (lambda key: False)
        self._lock = threading.Lock()

    def put_object(self, key, data, *, content_type, cache_control, content_md5):
        if self.fail(key):
            raise OSError(f"connection reset for {key}")
        with self._lock:
            self.puts.append(key)
            self.objects[key] = data
            self.headers[key] = {
                "content_type": content_type,
                "cache_control": cache_control,
                "content_md5": content_md5,
            }

    def object_etag(self, key):
        data = self.objects.get(key)
        return hashlib.md5(data).hexdigest() if data is not None else None

    def delete_object(self, key):
        with self._lock:
            self.objects.pop(key, None)
