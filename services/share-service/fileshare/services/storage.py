# services/share-service/fileshare/services/storage.py

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from ..monitoring.metrics import object_store_errors

logger = logging.getLogger(__name__)

MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


class StorageError(Exception):
    """Raised when the object store rejects or fails an operation"""

    def __init__(self, operation: str, key: Optional[str] = None):
        self.operation = operation
        self.key = key
        super().__init__(f"Object store operation '{operation}' failed")


def create_s3_client(config=settings):
    """Build the S3 client used by the gateway (path-style for MinIO)"""
    return boto3.client(
        "s3",
        endpoint_url=config.S3_ENDPOINT_URL or None,
        aws_access_key_id=config.S3_ACCESS_KEY,
        aws_secret_access_key=config.S3_SECRET_KEY,
        region_name=config.S3_REGION,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class StorageGateway:
    """Put/get/delete/presign facade over a single object-store bucket.

    The boto3 client is blocking, so every call is pushed onto a thread pool.
    Keys are opaque here; the bucket name is the only configuration the
    gateway depends on. Presigned URLs are the only way bytes leave the
    store for browsers or the document server.
    """

    def __init__(self, client, bucket: str, executor: Optional[ThreadPoolExecutor] = None):
        self.client = client
        self.bucket = bucket
        self._executor = executor or ThreadPoolExecutor(max_workers=settings.STORAGE_WORKERS)

    async def _run(self, operation: str, func, *args, key: str = None, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, partial(func, *args, **kwargs))
        except (BotoCoreError, ClientError) as e:
            object_store_errors.labels(operation=operation).inc()
            logger.error("Object store %s failed for bucket %s: %s", operation, self.bucket, e)
            raise StorageError(operation, key) from e

    async def ensure_bucket_exists(self):
        """Create the bucket if it is missing. Safe to call repeatedly."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                self._executor, partial(self.client.head_bucket, Bucket=self.bucket)
            )
            return
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in MISSING_BUCKET_CODES:
                object_store_errors.labels(operation="head_bucket").inc()
                raise StorageError("head_bucket") from e
        except BotoCoreError as e:
            object_store_errors.labels(operation="head_bucket").inc()
            raise StorageError("head_bucket") from e

        logger.info("Creating bucket %s", self.bucket)
        try:
            await loop.run_in_executor(
                self._executor, partial(self.client.create_bucket, Bucket=self.bucket)
            )
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            # Another request created it first
            if code not in {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}:
                object_store_errors.labels(operation="create_bucket").inc()
                raise StorageError("create_bucket") from e

    async def put(self, key: str, data: bytes, mime_type: str = "application/octet-stream"):
        await self.ensure_bucket_exists()
        await self._run(
            "put", self.client.put_object, key=key,
            Bucket=self.bucket, Key=key, Body=data,
            ContentLength=len(data), ContentType=mime_type or "application/octet-stream",
        )

    async def get(self, key: str) -> bytes:
        def _read():
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        return await self._run("get", _read, key=key)

    async def delete(self, key: str):
        await self._run("delete", self.client.delete_object, key=key, Bucket=self.bucket, Key=key)

    async def presign(self, key: str, ttl_seconds: int = None) -> str:
        return await self._run(
            "presign", self.client.generate_presigned_url, key=key,
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds or settings.PRESIGN_TTL_SECONDS,
        )

    async def ping(self) -> bool:
        await self.ensure_bucket_exists()
        return True

    def close(self):
        self._executor.shutdown(wait=False)
