"""
CalorieSnap Backend: S3 Object Storage
=======================================

What:  Stores uploaded images in an S3 (or S3-compatible) bucket.
How:   boto3 client calls run in a worker thread via asyncio.to_thread.
       Clients upload directly to the bucket through presigned PUT URLs;
       the backend reads objects back when analyzing or serving them.
When:  STORAGE_MODE=s3.

Credentials come from boto3's default chain (environment variables,
shared config files, instance roles).

Size limit:
    A presigned PUT cannot bound the body size, so uploads that bypass the
    backend are checked against MAX_FILE_SIZE when the gateway reads them.
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlsplit

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from caloriesnap.exceptions import FileStorageError, NotFoundError
from caloriesnap.services.storage_base import ObjectStorage, UploadTarget, validate_key

logger = logging.getLogger(__name__)

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


def _build_s3_client(region: Optional[str], endpoint_url: Optional[str]):
    kwargs: Dict[str, Any] = {"service_name": "s3"}
    if region:
        kwargs["region_name"] = region
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.client(**kwargs)


class S3ObjectStorage(ObjectStorage):
    mode = "s3"

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        upload_url_expiry: int = 900,
        client=None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.upload_url_expiry = upload_url_expiry
        self.client = client or _build_s3_client(region, endpoint_url)
        logger.info("S3ObjectStorage initialized with bucket=%s", bucket)

    @staticmethod
    def _error_code(error: ClientError) -> str:
        return str(error.response.get("Error", {}).get("Code", ""))

    async def store_bytes(self, key: str, content: bytes) -> None:
        validate_key(key)
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 upload failed for %s: %s", key, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"key": key, "bucket": self.bucket, "error": str(e)},
            )
        logger.info("Object stored: s3://%s/%s (%d bytes)", self.bucket, key, len(content))

    async def retrieve_bytes(self, key: str) -> bytes:
        validate_key(key)

        def _read() -> bytes:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_read)
        except ClientError as e:
            if self._error_code(e) in _MISSING_KEY_CODES:
                raise NotFoundError(resource="image", resource_id=key)
            logger.error("S3 read failed for %s: %s", key, str(e))
            raise FileStorageError(
                message="Failed to read stored image.",
                context={"key": key, "bucket": self.bucket, "error": str(e)},
            )
        except BotoCoreError as e:
            logger.error("S3 read failed for %s: %s", key, str(e))
            raise FileStorageError(
                message="Failed to read stored image.",
                context={"key": key, "bucket": self.bucket, "error": str(e)},
            )

    async def delete_bytes(self, key: str) -> bool:
        validate_key(key)
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._error_code(e) in _MISSING_KEY_CODES:
                return False
            raise FileStorageError(
                message="Failed to delete stored image.",
                context={"key": key, "bucket": self.bucket, "error": str(e)},
            )
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 delete failed for %s: %s", key, str(e))
            raise FileStorageError(
                message="Failed to delete stored image.",
                context={"key": key, "bucket": self.bucket, "error": str(e)},
            )
        logger.info("Object deleted: s3://%s/%s", self.bucket, key)
        return True

    async def create_upload_target(
        self, key: str, default_url: str, object_url: str
    ) -> UploadTarget:
        validate_key(key)
        try:
            url = await asyncio.to_thread(
                self.client.generate_presigned_url,
                "put_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.upload_url_expiry,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to presign upload URL for %s: %s", key, str(e))
            raise FileStorageError(
                message="Failed to generate upload URL",
                context={"key": key, "bucket": self.bucket, "error": str(e)},
            )
        return UploadTarget(method="PUT", url=url, object_url=object_url)

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self.client.head_bucket, Bucket=self.bucket)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning("S3 health check failed: %s", str(e))
            return False

    def key_from_locator(self, locator: str) -> Optional[str]:
        """Also accept direct bucket URLs, virtual-hosted or path style."""
        parts = urlsplit(locator)
        host = parts.hostname or ""
        path = unquote(parts.path)

        if host.startswith(f"{self.bucket}.s3.") and host.endswith(".amazonaws.com"):
            return validate_key(path.lstrip("/"))

        if self.endpoint_url:
            endpoint_host = urlsplit(self.endpoint_url).hostname
            bucket_prefix = f"/{self.bucket}/"
            if host == endpoint_host and path.startswith(bucket_prefix):
                return validate_key(path[len(bucket_prefix):])

        return super().key_from_locator(locator)
