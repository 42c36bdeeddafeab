"""Content-addressed variant uploads to S3-compatible object storage."""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from utils.logging import get_logger
from mue_importer.config import StorageConfig
from mue_importer.errors import StorageError
from mue_importer.models import EncodedVariant, Variant

LOGGER = get_logger(__name__, extra={"component": "storage"})


class ObjectStore(Protocol):
    """Minimal object storage surface used by :class:`StorageUploader`."""

    def put_object(self, key: str, data: bytes, *, content_type: str, cache_control: str, content_md5: str) -> None:
        ...

    def object_etag(self, key: str) -> str | None:
        ...

    def delete_object(self, key: str) -> None:
        ...


class S3ObjectStore:
    """:class:`ObjectStore` backed by a boto3 S3 client."""

    def __init__(self, config: StorageConfig, client: Any | None = None) -> None:
        self._bucket = config.bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            region_name=config.region_name,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path" if config.force_path_style else "auto"},
                connect_timeout=config.connect_timeout,
                read_timeout=config.read_timeout,
                retries={"max_attempts": config.max_attempts, "mode": "standard"},
            ),
        )

    def put_object(self, key: str, data: bytes, *, content_type: str, cache_control: str, content_md5: str) -> None:
        self._client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl=cache_control,
            ContentMD5=content_md5,
        )

    def object_etag(self, key: str) -> str | None:
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"404", "NoSuchKey", "NotFound"}:
                return None
            raise
        etag = response.get("ETag")
        return str(etag).strip('"') if etag else None

    def delete_object(self, key: str) -> None:
        self._client.delete_object(Bucket=self._bucket, Key=key)


def content_md5(data: bytes) -> tuple[str, str]:
    """Return ``(hex, base64)`` MD5 digests of ``data``."""

    digest = hashlib.md5(data).digest()
    return digest.hex(), base64.b64encode(digest).decode("ascii")


class StorageUploader:
    """Persist encoded variants under their deterministic keys."""

    def __init__(self, store: ObjectStore, config: StorageConfig | None = None) -> None:
        self._store = store
        self._config = config or StorageConfig()

    def put(self, key: str, variant: EncodedVariant) -> bool:
        """Upload one buffer; return False when an identical object already exists.

        Raises:
            StorageError: When the upload (or the existence probe) fails.
        """

        md5_hex, md5_b64 = content_md5(variant.data)
        try:
            if self._config.skip_existing and self._store.object_etag(key) == md5_hex:
                LOGGER.debug("upload_skipped_existing", extra={"key": key})
                return False
            self._store.put_object(
                key,
                variant.data,
                content_type=variant.content_type,
                cache_control=self._config.cache_control,
                content_md5=md5_b64,
            )
        except (BotoCoreError, ClientError, OSError) as exc:
            raise StorageError(f"upload failed for {key}: {exc}", failed_keys=[key]) from exc
        return True

    def upload_all(self, buffers: Mapping[str, EncodedVariant]) -> list[str]:
        """Upload every buffer, fanning out across a small thread pool.

        All uploads are attempted even after one fails, so the error lists
        every failed key. Objects that did upload are left in place.

        Raises:
            StorageError: When at least one upload failed.
        """

        failed: list[str] = []
        errors: list[str] = []
        stored: list[str] = []
        workers = max(1, min(self._config.upload_concurrency, len(buffers) or 1))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="upload") as executor:
            futures = {executor.submit(self.put, key, variant): key for key, variant in buffers.items()}
            for future in as_completed(futures):
                key = futures[future]
                try:
                    future.result()
                except StorageError as exc:
                    failed.append(key)
                    errors.append(str(exc))
                    LOGGER.error("upload_error", extra={"key": key, "error": str(exc)})
                except Exception as exc:
                    failed.append(key)
                    errors.append(f"{key}: {type(exc).__name__}: {exc}")
                    LOGGER.error("upload_error", extra={"key": key, "error": str(exc)})
                else:
                    stored.append(key)

        if failed:
            raise StorageError(
                f"{len(failed)} of {len(buffers)} uploads failed: " + "; ".join(errors),
                failed_keys=sorted(failed),
            )
        return sorted(stored)

    def delete_keys(self, keys: Iterable[str]) -> list[str]:
        """Delete objects, returning the keys that were removed."""

        removed: list[str] = []
        for key in keys:
            try:
                self._store.delete_object(key)
            except (BotoCoreError, ClientError) as exc:
                raise StorageError(f"delete failed for {key}: {exc}", failed_keys=[key]) from exc
            removed.append(key)
        return removed

    def delete_variants(self, image_id: str, variants: Iterable[Variant]) -> list[str]:
        """Delete every stored variant of ``image_id``."""

        removed = self.delete_keys(variant.storage_key(image_id) for variant in variants)
        LOGGER.info("variants_deleted", extra={"image_id": image_id, "keys": len(removed)})
        return removed


__all__ = ["ObjectStore", "S3ObjectStore", "StorageUploader", "content_md5"]
