"""
CalorieSnap Backend: Local Disk Object Storage
===============================================

What:  Stores uploaded images in a directory on the local filesystem.
How:   Keys map to paths under storage_root; reads and writes use aiofiles
       so disk I/O does not block the event loop.
When:  STORAGE_MODE=local (the default, used in development and tests).

Directory Structure:
    uploads/
    └── 2024/
        └── 01/
            └── 15/
                ├── a1b2c3d4-5678.jpg
                └── e5f6g7h8-9012.png
"""

import logging
from pathlib import Path

import aiofiles
import aiofiles.os

from caloriesnap.exceptions import FileStorageError, InputError, NotFoundError
from caloriesnap.services.storage_base import ObjectStorage, UploadTarget, validate_key

logger = logging.getLogger(__name__)


class LocalObjectStorage(ObjectStorage):
    mode = "local"

    def __init__(self, storage_root: str):
        self.storage_root = Path(storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("LocalObjectStorage initialized with storage_root=%s", self.storage_root)

    def _path_for(self, key: str) -> Path:
        """Resolve a key to an absolute path that stays inside storage_root."""
        validate_key(key)
        path = (self.storage_root / key).resolve()
        if not path.is_relative_to(self.storage_root):
            raise InputError(message="Invalid object key", field="key", context={"key": key})
        return path

    async def store_bytes(self, key: str, content: bytes) -> None:
        path = self._path_for(key)
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"key": key, "os_error": str(e)},
            )
        logger.info("File stored: %s (%d bytes)", key, len(content))

    async def retrieve_bytes(self, key: str) -> bytes:
        path = self._path_for(key)
        if not await aiofiles.os.path.isfile(path):
            raise NotFoundError(resource="image", resource_id=key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise NotFoundError(resource="image", resource_id=key)
        except OSError as e:
            logger.error("Failed to read file at %s: %s", path, str(e))
            raise FileStorageError(
                message="Failed to read stored image.",
                context={"key": key, "os_error": str(e)},
            )

    async def delete_bytes(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.debug("Delete: file already gone: %s", key)
            return False
        except OSError as e:
            logger.error("Failed to delete file at %s: %s", path, str(e))
            raise FileStorageError(
                message="Failed to delete stored image.",
                context={"key": key, "os_error": str(e)},
            )
        logger.info("File deleted: %s", key)
        return True

    async def create_upload_target(
        self, key: str, default_url: str, object_url: str
    ) -> UploadTarget:
        # Bytes go through our own PUT endpoint; the key is assigned on arrival
        return UploadTarget(method="PUT", url=default_url)

    async def health_check(self) -> bool:
        return await aiofiles.os.path.isdir(self.storage_root)
