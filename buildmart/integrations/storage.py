from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import boto3
from botocore.exceptions import ClientError

from buildmart.core.config import Settings, get_settings
from buildmart.core.errors import NotFoundError, ValidationFailedError


logger = logging.getLogger("buildmart.storage")


class BlobStorage(Protocol):
    def put(self, key: str, content: bytes, content_type: str) -> str:
        """Store ``content`` under ``key`` and return its public URL."""
        ...

    def get(self, key: str) -> bytes:
        ...

    def delete(self, key: str) -> None:
        ...


def _safe_key(key: str) -> str:
    parts = [part for part in key.replace("\\", "/").split("/") if part not in {"", ".", ".."}]
    if not parts:
        raise ValidationFailedError("invalid storage key", details={"key": key})
    return "/".join(parts)


class LocalBlobStorage:
    def __init__(self, base_dir: str | Path, public_base_url: str) -> None:
        self._base_dir = Path(base_dir)
        self._public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        return self._base_dir / _safe_key(key)

    def put(self, key: str, content: bytes, content_type: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return f"{self._public_base_url}/{_safe_key(key)}"

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise NotFoundError("file not found", details={"key": key})
        return path.read_bytes()

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


class S3BlobStorage:
    def __init__(self, bucket: str, *, region: str | None = None, endpoint_url: str | None = None, public_base_url: str | None = None) -> None:
        self._bucket = bucket
        self._client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url or None)
        self._public_base_url = (public_base_url or f"https://{bucket}.s3.amazonaws.com").rstrip("/")

    def put(self, key: str, content: bytes, content_type: str) -> str:
        safe_key = _safe_key(key)
        try:
            self._client.put_object(Bucket=self._bucket, Key=safe_key, Body=content, ContentType=content_type)
        except ClientError as exc:
            logger.error("storage.upload_failed", extra={"error": str(exc)})
            raise
        return f"{self._public_base_url}/{safe_key}"

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=_safe_key(key))
        except ClientError as exc:
            raise NotFoundError("file not found", details={"key": key}) from exc
        return response["Body"].read()

    def delete(self, key: str) -> None:
        self._client.delete_object(Bucket=self._bucket, Key=_safe_key(key))


def build_blob_storage(settings: Settings | None = None) -> BlobStorage:
    settings = settings or get_settings()
    if settings.storage_backend.lower() == "s3":
        return S3BlobStorage(
            settings.storage_s3_bucket,
            region=settings.storage_s3_region,
            endpoint_url=settings.storage_s3_endpoint_url,
        )
    return LocalBlobStorage(settings.storage_local_dir, settings.storage_public_base_url)
