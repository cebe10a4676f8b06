# bzr_portal/app/services/object_store.py
"""
Object storage for user documents.

`S3ObjectStore` talks to Wasabi (or any S3-compatible endpoint) through
boto3; the blocking SDK calls are pushed to a worker thread.
`LocalObjectStore` keeps the same contract on a local directory tree and is
meant for development.

Keys use "/" as the folder separator. Listing is one level deep: files
directly under the prefix plus the sub-folders, which callers recurse into.
"""
import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bzr_portal.app.core.exceptions import ServiceError
from bzr_portal.app.core.logging import get_logger
from bzr_portal.app.core.metrics import object_store_duration_seconds, object_store_errors_total
from bzr_portal.app.core.settings import Settings

logger = get_logger(__name__)

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


class StorageServiceError(ServiceError):
    """Base exception for storage errors."""


class StorageUnavailableError(StorageServiceError):
    """The object store failed; never to be read as "nothing stored"."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        super().__init__(f"Object storage unavailable ({operation})", 503)
        self.detail = detail


class ObjectNotFoundError(StorageServiceError):
    def __init__(self, key: str):
        self.key = key
        super().__init__("Document not found", 404)


@dataclass(frozen=True, slots=True)
class StoredObject:
    key: str
    size_bytes: int
    is_folder: bool = False


class ObjectStore(Protocol):
    async def list_objects(self, prefix: str) -> List[StoredObject]:
        ...

    async def put_object(self, key: str, body: bytes, content_type: str) -> None:
        ...

    async def get_object(self, key: str) -> bytes:
        ...

    async def delete_object(self, key: str) -> None:
        ...


class S3ObjectStore:
    """S3-compatible store. Retries are left to botocore's standard retry mode."""

    def __init__(
        self,
        bucket: str,
        client=None,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        max_attempts: int = 4,
    ):
        self.bucket = bucket
        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=Config(
                    retries={"max_attempts": max_attempts, "mode": "standard"},
                    connect_timeout=5,
                    read_timeout=30,
                ),
            )
        self._client = client

    async def _call(self, operation: str, func, *args, key: str | None = None):
        started = time.time()
        try:
            return await asyncio.to_thread(func, *args)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if key is not None and code in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            object_store_errors_total.labels(operation=operation).inc()
            logger.error("Object store call failed", operation=operation, error_code=code, error=str(e))
            raise StorageUnavailableError(operation, str(e)) from e
        except BotoCoreError as e:
            object_store_errors_total.labels(operation=operation).inc()
            logger.error("Object store call failed", operation=operation, error=str(e))
            raise StorageUnavailableError(operation, str(e)) from e
        finally:
            object_store_duration_seconds.labels(operation=operation).observe(time.time() - started)

    def _list_sync(self, prefix: str) -> List[StoredObject]:
        paginator = self._client.get_paginator("list_objects_v2")
        objects: List[StoredObject] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, Delimiter="/"):
            for item in page.get("Contents", []):
                item_key = item["Key"]
                objects.append(StoredObject(
                    key=item_key,
                    size_bytes=int(item.get("Size", 0)),
                    is_folder=item_key.endswith("/"),
                ))
            for common in page.get("CommonPrefixes", []):
                objects.append(StoredObject(key=common["Prefix"], size_bytes=0, is_folder=True))
        return objects

    def _get_sync(self, key: str) -> bytes:
        response = self._client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read()

    def _put_sync(self, key: str, body: bytes, content_type: str) -> None:
        self._client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)

    def _delete_sync(self, key: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=key)

    async def list_objects(self, prefix: str) -> List[StoredObject]:
        return await self._call("list", self._list_sync, prefix)

    async def put_object(self, key: str, body: bytes, content_type: str) -> None:
        await self._call("put", self._put_sync, key, body, content_type)

    async def get_object(self, key: str) -> bytes:
        return await self._call("get", self._get_sync, key, key=key)

    async def delete_object(self, key: str) -> None:
        await self._call("delete", self._delete_sync, key)


class LocalObjectStore:
    """Directory-backed store with the S3 listing semantics."""

    def __init__(self, root: Path | str):
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise ObjectNotFoundError(key)
        return path

    def _list_sync(self, prefix: str) -> List[StoredObject]:
        folder = self._path(prefix)
        if not folder.is_dir():
            return []
        objects: List[StoredObject] = []
        for child in sorted(folder.iterdir()):
            if child.is_dir():
                objects.append(StoredObject(key=f"{prefix}{child.name}/", size_bytes=0, is_folder=True))
            else:
                objects.append(StoredObject(key=f"{prefix}{child.name}", size_bytes=child.stat().st_size))
        return objects

    def _put_sync(self, key: str, body: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)

    def _get_sync(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        return path.read_bytes()

    def _delete_sync(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def _call(self, operation: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except OSError as e:
            object_store_errors_total.labels(operation=operation).inc()
            logger.error("Local store call failed", operation=operation, error=str(e))
            raise StorageUnavailableError(operation, str(e)) from e

    async def list_objects(self, prefix: str) -> List[StoredObject]:
        return await self._call("list", self._list_sync, prefix)

    async def put_object(self, key: str, body: bytes, content_type: str) -> None:
        await self._call("put", self._put_sync, key, body)

    async def get_object(self, key: str) -> bytes:
        return await self._call("get", self._get_sync, key)

    async def delete_object(self, key: str) -> None:
        await self._call("delete", self._delete_sync, key)


def build_object_store(settings: Settings) -> ObjectStore:
    if settings.STORAGE_BACKEND == "local":
        logger.warning("Using local object store", root=settings.LOCAL_STORAGE_DIR)
        return LocalObjectStore(settings.LOCAL_STORAGE_DIR)
    return S3ObjectStore(
        settings.WASABI_USER_DOCUMENTS_BUCKET,
        endpoint_url=settings.WASABI_ENDPOINT_URL,
        region=settings.WASABI_REGION,
        access_key_id=settings.WASABI_ACCESS_KEY_ID,
        secret_access_key=settings.WASABI_SECRET_ACCESS_KEY,
        max_attempts=settings.OBJECT_STORE_MAX_ATTEMPTS,
    )
