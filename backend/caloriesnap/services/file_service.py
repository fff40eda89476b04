"""
CalorieSnap Backend: Upload Sink (File Service)
================================================

What:  Accepts uploaded meal photos, validates them, stores them through an
       ObjectStorage backend and hands back a retrievable locator URL.
How:   Size is checked before anything is stored (Content-Length first, then
       the actual byte count); the image format is sniffed with Pillow;
       a date-organized UUID key is generated; bytes are written through the
       configured backend.
Who:   Called by the upload routes; read by the analysis gateway.

Validation order:
    1. Empty body check
    2. Size check (Content-Length header, then actual size)
    3. Image format check (Pillow reads the header bytes)
    4. Store under YYYY/MM/DD/<uuid>.<ext>

Locators:
    Every stored object is reachable at `<base_url>/uploads/<key>`, for
    local and S3 storage alike.
"""

import asyncio
import io
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Tuple

from fastapi import Request
from PIL import Image, UnidentifiedImageError

from caloriesnap.exceptions import InputError, PayloadTooLargeError
from caloriesnap.services.storage_base import UPLOADS_PREFIX, ObjectStorage, UploadTarget

logger = logging.getLogger(__name__)

# Pillow format name → (MIME type, extension)
ALLOWED_FORMATS = {
    "JPEG": ("image/jpeg", ".jpg"),
    "MPO": ("image/jpeg", ".jpg"),  # multi-picture JPEG from phone cameras
    "PNG": ("image/png", ".png"),
    "WEBP": ("image/webp", ".webp"),
    "GIF": ("image/gif", ".gif"),
}

UPLOAD_ENDPOINT = "/api/upload-image"


@dataclass(frozen=True)
class StoredImage:
    key: str
    url: str
    size: int
    content_type: str

    @property
    def filename(self) -> str:
        return self.key.rsplit("/", 1)[-1]


class FileService:
    """
    Upload sink over a pluggable ObjectStorage backend.

    Args:
        storage: Backend that actually holds the bytes
        max_file_size: Byte cap for a single image
        public_base_url: Base for locators; falls back to the request's base URL
    """

    def __init__(
        self,
        storage: ObjectStorage,
        max_file_size: int,
        public_base_url: Optional[str] = None,
    ):
        self.storage = storage
        self.max_file_size = max_file_size
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    # ── Locators ──────────────────────────────────────────────────────────

    def resolve_base_url(self, request_base_url: str) -> str:
        return self.public_base_url or request_base_url.rstrip("/")

    def locator_for(self, key: str, base_url: str) -> str:
        return f"{self.resolve_base_url(base_url)}{UPLOADS_PREFIX}{key}"

    def key_from_locator(self, locator: str) -> Optional[str]:
        """Storage key for locators pointing at our own storage, else None."""
        return self.storage.key_from_locator(locator)

    @staticmethod
    def generate_key(extension: str) -> str:
        """Unique key of the form YYYY/MM/DD/<uuid><extension>."""
        date_dir = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        return f"{date_dir}/{uuid.uuid4()}{extension}"

    # ── Validation ────────────────────────────────────────────────────────

    def validate_size(self, content_length: Optional[int], actual_size: Optional[int]) -> None:
        """
        Raises:
            PayloadTooLargeError: either size is above max_file_size
        """
        if content_length and content_length > self.max_file_size:
            raise PayloadTooLargeError(self.max_file_size)
        if actual_size is not None and actual_size > self.max_file_size:
            raise PayloadTooLargeError(self.max_file_size, actual_size)

    @staticmethod
    def detect_image_format(content: bytes) -> Tuple[str, str]:
        """
        Identify the image format from its header bytes.

        Returns:
            (mime_type, extension), e.g. ("image/jpeg", ".jpg")

        Raises:
            InputError: the bytes are not an image in an allowed format
        """
        try:
            with Image.open(io.BytesIO(content)) as img:
                image_format = img.format
                img.verify()
        except Image.DecompressionBombError as e:
            raise InputError(
                message="Image dimensions are too large",
                field="file",
                context={"error": str(e)},
            )
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise InputError(
                message="Only image files are allowed",
                field="file",
                context={"error": str(e)},
            )

        if image_format not in ALLOWED_FORMATS:
            raise InputError(
                message=(
                    f"Image format '{image_format}' is not supported. "
                    f"Allowed formats: {', '.join(sorted(set(ALLOWED_FORMATS) - {'MPO'}))}"
                ),
                field="file",
                context={"detected_format": image_format},
            )
        return ALLOWED_FORMATS[image_format]

    async def read_limited(
        self, chunks: AsyncIterator[bytes], content_length: Optional[int] = None
    ) -> bytes:
        """
        Collect a streamed request body, aborting once it passes the cap.

        A Content-Length above the cap is rejected before reading anything.
        """
        self.validate_size(content_length, None)
        buffer = bytearray()
        async for chunk in chunks:
            buffer.extend(chunk)
            if len(buffer) > self.max_file_size:
                raise PayloadTooLargeError(self.max_file_size, len(buffer))
        return bytes(buffer)

    # ── Operations ────────────────────────────────────────────────────────

    async def request_upload_target(self, base_url: str) -> UploadTarget:
        """
        Issue a destination for the client's raw image bytes.

        Local storage answers with our own PUT endpoint. Bucket storage
        answers with a presigned URL for a fresh key; such uploads are
        assumed to be JPEG, the common case for camera photos.
        """
        base = self.resolve_base_url(base_url)
        key = self.generate_key(".jpg")
        target = await self.storage.create_upload_target(
            key=key,
            default_url=f"{base}{UPLOAD_ENDPOINT}",
            object_url=self.locator_for(key, base),
        )
        logger.info("Issued %s upload target (mode=%s)", target.method, self.storage.mode)
        return target

    async def store_bytes(self, key: str, content: bytes, base_url: str) -> str:
        """Persist bytes under `key` and return the locator."""
        await self.storage.store_bytes(key, content)
        return self.locator_for(key, base_url)

    async def store_upload(
        self,
        content: bytes,
        base_url: str,
        content_length: Optional[int] = None,
    ) -> StoredImage:
        """
        Complete validation and storage pipeline for one uploaded image.

        Raises:
            InputError: empty body or not an image
            PayloadTooLargeError: over max_file_size
            FileStorageError: the backend write failed
        """
        if not content:
            raise InputError(message="No image data provided", field="file")

        self.validate_size(content_length, len(content))
        # Pillow parses the whole header; keep it off the event loop
        content_type, extension = await asyncio.to_thread(self.detect_image_format, content)

        key = self.generate_key(extension)
        url = await self.store_bytes(key, content, base_url)
        return StoredImage(key=key, url=url, size=len(content), content_type=content_type)

    async def retrieve_bytes(self, key: str) -> bytes:
        return await self.storage.retrieve_bytes(key)

    async def delete_bytes(self, key: str) -> bool:
        return await self.storage.delete_bytes(key)


def get_file_service(request: Request) -> FileService:
    """FastAPI dependency: the upload sink built by create_app()."""
    return request.app.state.file_service
