"""
CalorieSnap Backend: Abstract Object Storage Interface
=======================================================

What:  Abstract base class defining the contract for blob storage backends.
How:   Concrete implementations (LocalObjectStorage, S3ObjectStorage) inherit
       from ObjectStorage and implement the byte-level operations.
Who:   Wrapped by FileService (the upload sink); read by the analysis
       gateway when a locator points back at our own storage.

Keys:
    Keys are relative, slash-separated paths such as
    `2024/01/15/3f2a....jpg`. They never contain `..` segments or a leading
    slash; `validate_key()` enforces this for every backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urlsplit

from caloriesnap.exceptions import InputError

# URL path prefix under which stored objects are served back
UPLOADS_PREFIX = "/uploads/"


@dataclass(frozen=True)
class UploadTarget:
    """Where a client should send raw image bytes."""

    method: str
    url: str
    # Final locator of the object, known up front only for direct-to-bucket uploads
    object_url: Optional[str] = None


def validate_key(key: str) -> str:
    """
    Reject keys that could escape the storage root.

    Raises:
        InputError: empty key, absolute key, or a `..`/`.` segment
    """
    if not key or key.startswith("/") or "\\" in key:
        raise InputError(message="Invalid object key", field="key", context={"key": key})
    parts = key.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise InputError(message="Invalid object key", field="key", context={"key": key})
    return key


class ObjectStorage(ABC):
    """
    Abstract interface for storing uploaded images.

    Contract:
        - store_bytes() persists bytes under a key; overwriting is allowed
        - retrieve_bytes() returns the identical bytes or raises NotFoundError
        - backend failures are wrapped in FileStorageError
    """

    #: Name reported by /health and used in logs
    mode: str = "abstract"

    @abstractmethod
    async def store_bytes(self, key: str, content: bytes) -> None:
        """
        Persist `content` under `key`.

        Raises:
            FileStorageError: the write failed (disk full, permission, S3 error)
        """
        ...

    @abstractmethod
    async def retrieve_bytes(self, key: str) -> bytes:
        """
        Read back the bytes stored under `key`.

        Raises:
            NotFoundError: nothing is stored under `key`
            FileStorageError: the read failed for another reason
        """
        ...

    @abstractmethod
    async def delete_bytes(self, key: str) -> bool:
        """Delete the object. Returns False if it did not exist."""
        ...

    @abstractmethod
    async def create_upload_target(
        self, key: str, default_url: str, object_url: str
    ) -> UploadTarget:
        """
        Issue a destination a client can send raw bytes to.

        `default_url` is this backend's own upload endpoint; backends that
        cannot issue direct upload URLs return it unchanged. `object_url` is
        the locator the object will have once stored under `key`.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability test; never raises."""
        ...

    def key_from_locator(self, locator: str) -> Optional[str]:
        """
        Map a locator back to a storage key, or None for foreign URLs.

        Any URL (or bare path) whose path starts with /uploads/ refers to an
        object served by this backend.
        """
        path = unquote(urlsplit(locator).path)
        if not path.startswith(UPLOADS_PREFIX):
            return None
        return validate_key(path[len(UPLOADS_PREFIX):])
