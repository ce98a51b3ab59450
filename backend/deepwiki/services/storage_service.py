"""
DeepWiki Backend — Object Storage Backends
============================================

What:  Local-disk and Cloudflare R2 implementations of StorageBackend.
How:   LocalStorage writes through aiofiles so disk I/O never blocks the event
       loop. R2Storage drives boto3's S3 client against the R2 endpoint; boto3
       is synchronous, so each call runs in a worker thread.
Who:   Built once by create_storage() in the application lifespan.

Security Model (LocalStorage):
    Keys are joined to the storage root and resolved; anything that lands
    outside the root (e.g. "../../etc/passwd") is rejected before touching
    the file system.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, List

import aiofiles
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from deepwiki.exceptions import NotFoundError, StorageError, ValidationError
from deepwiki.services.storage_base import StorageBackend

logger = logging.getLogger(__name__)

MARKDOWN_CONTENT_TYPE = "text/markdown; charset=utf-8"


class LocalStorage(StorageBackend):
    """
    Pages on local disk under `root`.

    Directory Structure:
        storage/
        └── getting-started/
            ├── index.md
            ├── index.md.v1
            └── setup.md
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("LocalStorage initialized with root=%s", self.root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and not path.is_relative_to(self.root):
            raise ValidationError(message="Invalid storage key", context={"key": key})
        return path

    async def put_text(self, key: str, content: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(content)
            logger.debug("Stored %s (%d chars)", key, len(content))
        except OSError as e:
            logger.error("Failed to store %s: %s", path, str(e))
            raise StorageError(
                message="Failed to save page content. Please try again.",
                context={"key": key, "os_error": str(e)},
            )

    async def get_text(self, key: str) -> str:
        path = self._path(key)
        if not path.is_file():
            raise NotFoundError(resource="file", resource_id=key)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return await f.read()
        except OSError as e:
            logger.error("Failed to read %s: %s", path, str(e))
            raise StorageError(
                message="Failed to read page content.",
                context={"key": key, "os_error": str(e)},
            )

    async def list_keys(self, prefix: str) -> List[str]:
        base = self._path(prefix)
        search_root = base if base.is_dir() else base.parent
        if not search_root.exists():
            return []
        keys = [
            p.relative_to(self.root).as_posix()
            for p in search_root.rglob("*")
            if p.is_file()
        ]
        return sorted(k for k in keys if k.startswith(prefix))

    async def delete_keys(self, keys: List[str]) -> None:
        for key in keys:
            try:
                self._path(key).unlink(missing_ok=True)
            except OSError as e:
                logger.error("Failed to delete %s: %s", key, str(e))
                raise StorageError(
                    message="Failed to delete page content.",
                    context={"key": key, "os_error": str(e)},
                )

    async def delete_prefix(self, prefix: str) -> List[str]:
        keys = await self.list_keys(prefix)
        await self.delete_keys(keys)

        # Drop the wiki directory itself once it is empty
        directory = self._path(prefix.rstrip("/"))
        if directory != self.root and directory.is_dir():
            await asyncio.to_thread(shutil.rmtree, directory, True)

        logger.info("Deleted %d objects under %s", len(keys), prefix)
        return keys

    async def health_check(self) -> bool:
        return self.root.is_dir()


class R2Storage(StorageBackend):
    """
    Pages in a Cloudflare R2 bucket (S3-compatible API).

    Error translation:
        NoSuchKey / 404      → NotFoundError
        other ClientError    → StorageError (bucket and key logged only)
        BotoCoreError        → StorageError (network, credentials)
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        region: str = "auto",
        client: Any = None,
    ):
        self.bucket = bucket
        self.s3_client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
        logger.info("R2Storage initialized for bucket=%s", bucket)

    async def put_text(self, key: str, content: str) -> None:
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content.encode("utf-8"),
                ContentType=MARKDOWN_CONTENT_TYPE,
                Metadata={"encoding": "utf-8"},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("R2 upload failed for %s: %s", key, str(e))
            raise StorageError(
                message="Failed to save page content. Please try again.",
                context={"bucket": self.bucket, "key": key, "error": str(e)},
            )

    async def get_text(self, key: str) -> str:
        try:
            return await asyncio.to_thread(self._download_sync, key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise NotFoundError(resource="file", resource_id=key)
            logger.error("R2 download failed for %s: %s", key, str(e))
            raise StorageError(
                message="Failed to read page content.",
                context={"bucket": self.bucket, "key": key, "error": str(e)},
            )
        except BotoCoreError as e:
            logger.error("R2 download failed for %s: %s", key, str(e))
            raise StorageError(
                message="Failed to read page content.",
                context={"bucket": self.bucket, "key": key, "error": str(e)},
            )

    def _download_sync(self, key: str) -> str:
        response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read().decode("utf-8")

    async def list_keys(self, prefix: str) -> List[str]:
        try:
            return await asyncio.to_thread(self._list_sync, prefix)
        except (ClientError, BotoCoreError) as e:
            logger.error("R2 listing failed for %s: %s", prefix, str(e))
            raise StorageError(
                message="Failed to list wiki files.",
                context={"bucket": self.bucket, "prefix": prefix, "error": str(e)},
            )

    def _list_sync(self, prefix: str) -> List[str]:
        paginator = self.s3_client.get_paginator("list_objects_v2")
        keys: List[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return sorted(keys)

    async def delete_keys(self, keys: List[str]) -> None:
        if not keys:
            return
        try:
            await asyncio.to_thread(self._delete_sync, keys)
        except (ClientError, BotoCoreError) as e:
            logger.error("R2 delete failed for %d keys: %s", len(keys), str(e))
            raise StorageError(
                message="Failed to delete wiki files.",
                context={"bucket": self.bucket, "keys": keys[:10], "error": str(e)},
            )

    async def delete_prefix(self, prefix: str) -> List[str]:
        keys = await self.list_keys(prefix)
        await self.delete_keys(keys)
        logger.info("Deleted %d objects under %s", len(keys), prefix)
        return keys

    def _delete_sync(self, keys: List[str]) -> None:
        # DeleteObjects accepts at most 1000 keys per request
        for start in range(0, len(keys), 1000):
            batch = keys[start:start + 1000]
            self.s3_client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self.s3_client.head_bucket, Bucket=self.bucket)
            return True
        except Exception as e:
            logger.warning("R2 health check failed: %s", str(e))
            return False


def create_storage(settings: Any) -> StorageBackend:
    """Pick the backend named by settings.storage_backend."""
    if settings.storage_backend == "r2":
        return R2Storage(
            bucket=settings.r2_bucket_name,
            endpoint_url=settings.r2_endpoint_url,
            access_key_id=settings.r2_access_key_id,
            secret_access_key=settings.r2_secret_access_key,
            region=settings.r2_region,
        )
    return LocalStorage(settings.storage_root)
