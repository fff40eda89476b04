"""
CalorieSnap Backend: Analysis Gateway
======================================

What:  Turns an image locator into a validated NutritionPayload by way of the
       external n8n analysis webhook.
How:   1. Resolve the locator to bytes (our storage, or an HTTP GET)
       2. Package them as multipart/form-data
       3. POST to the webhook and wait for the synchronous JSON answer
       4. Normalize the response shape, then validate it
Who:   Called by MealService.analyze_meal() once per analyze request.

Failure Policy:
    Any stage failure raises a subclass of AnalysisError and aborts the
    request. Nothing is retried: one optional image fetch and one webhook
    call per request. Timeouts are terminal.

Webhook Form Fields:
    image      meal_image.jpg, always sent as image/jpeg
    timestamp  ISO 8601 UTC time of the call
    mimeType   "image/jpeg"
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx
from fastapi import Request

from caloriesnap.exceptions import (
    ExtractionError,
    FetchError,
    FileStorageError,
    NotFoundError,
    WebhookError,
)
from caloriesnap.schemas.meal import NutritionPayload
from caloriesnap.services.file_service import FileService
from caloriesnap.services.normalizer import normalize
from caloriesnap.services.nutrition_validator import validate

logger = logging.getLogger(__name__)

IMAGE_FIELD = "image"
IMAGE_FILENAME = "meal_image.jpg"
IMAGE_CONTENT_TYPE = "image/jpeg"

ASYNC_ACK_MESSAGE = "Workflow was started"
TEST_MODE_MARKERS = ("test mode", "Execute workflow")

WEBHOOK_HEADERS = {"ngrok-skip-browser-warning": "true"}


class AnalysisGateway:
    """
    Client for the external meal analysis webhook.

    Args:
        file_service: Upload sink used to read locators that point at our storage
        webhook_url: n8n webhook endpoint
        webhook_timeout: Seconds allowed for the webhook round trip
        image_fetch_timeout: Seconds allowed for fetching a remote image
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        file_service: FileService,
        webhook_url: str,
        webhook_timeout: float = 30.0,
        image_fetch_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.file_service = file_service
        self.webhook_url = webhook_url
        self.webhook_timeout = webhook_timeout
        self.image_fetch_timeout = image_fetch_timeout
        self.transport = transport

    async def analyze(self, image_locator: str) -> NutritionPayload:
        """
        Run the full fetch → webhook → normalize → validate pipeline.

        Raises:
            InputError: the locator names an invalid storage key
            FetchError: image bytes could not be obtained
            WebhookError: the webhook failed, timed out, or runs asynchronously
            ExtractionError: the response shape was not recognized
            ValidationError: the payload does not match NutritionPayload
        """
        content = await self.fetch_image(image_locator)
        raw = await self.call_webhook(content, image_locator)
        payload = normalize(raw)
        nutrition = validate(payload)
        logger.info(
            "Analysis for %s: %d food items, %s kcal",
            image_locator,
            len(nutrition.food),
            nutrition.total.calories,
        )
        return nutrition

    # ── Stage 1: image bytes ──────────────────────────────────────────────

    async def fetch_image(self, image_locator: str) -> bytes:
        key = self.file_service.key_from_locator(image_locator)
        if key is not None:
            content = await self._read_stored(key, image_locator)
        else:
            content = await self._download(image_locator)

        if not content:
            raise FetchError(
                message="Image is empty",
                context={"locator": image_locator},
            )
        if len(content) > self.file_service.max_file_size:
            raise self._too_large(image_locator, len(content))
        return content

    async def _read_stored(self, key: str, image_locator: str) -> bytes:
        try:
            content = await self.file_service.retrieve_bytes(key)
        except NotFoundError:
            logger.error("Stored image not found for %s", image_locator)
            raise FetchError(
                message=f"Failed to read image file: {key}",
                context={"locator": image_locator, "key": key},
            )
        except FileStorageError as e:
            logger.error("Stored image unreadable for %s: %s", image_locator, e.message)
            raise FetchError(
                message=f"Failed to read image file: {key}",
                context={"locator": image_locator, "key": key, **e.context},
            )
        logger.info("Read stored image %s (%d bytes)", key, len(content))
        return content

    def _too_large(self, image_locator: str, size: int) -> FetchError:
        return FetchError(
            message=(
                f"Image is larger than the "
                f"{self.file_service.max_file_size // (1024 * 1024)}MB limit"
            ),
            context={"locator": image_locator, "size": size},
        )

    async def _download(self, image_locator: str) -> bytes:
        """
        GET a remote image, streaming the body.

        A Content-Length above max_file_size is rejected before the body is
        read; otherwise the download stops as soon as it passes the cap.
        """
        if urlsplit(image_locator).scheme not in ("http", "https"):
            raise FetchError(
                message="Image URL must be an http(s) URL or an uploaded image path",
                context={"locator": image_locator},
            )

        max_size = self.file_service.max_file_size
        logger.info("Fetching external image: %s", image_locator)
        try:
            async with httpx.AsyncClient(
                timeout=self.image_fetch_timeout,
                transport=self.transport,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", image_locator) as response:
                    if not response.is_success:
                        logger.error(
                            "Image fetch for %s returned %d", image_locator, response.status_code
                        )
                        raise FetchError(
                            message=f"Failed to fetch image: {response.status_code}",
                            context={
                                "locator": image_locator,
                                "upstream_status": response.status_code,
                            },
                        )

                    declared = response.headers.get("content-length", "")
                    if declared.isdigit() and int(declared) > max_size:
                        logger.error("Remote image %s declares %s bytes", image_locator, declared)
                        raise self._too_large(image_locator, int(declared))

                    buffer = bytearray()
                    async for chunk in response.aiter_bytes():
                        buffer.extend(chunk)
                        if len(buffer) > max_size:
                            logger.error("Remote image %s passed the size cap", image_locator)
                            raise self._too_large(image_locator, len(buffer))
        except httpx.HTTPError as e:
            logger.error("Image fetch failed for %s: %s", image_locator, str(e))
            raise FetchError(
                message=f"Failed to fetch image: {type(e).__name__}",
                context={"locator": image_locator, "error": str(e)},
            )

        logger.info("Fetched external image (%d bytes)", len(buffer))
        return bytes(buffer)

    # ── Stage 2 + 3: webhook ──────────────────────────────────────────────

    def build_form(self, content: bytes):
        """Multipart parts for the webhook call: (files, data)."""
        files = {IMAGE_FIELD: (IMAGE_FILENAME, content, IMAGE_CONTENT_TYPE)}
        data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "mimeType": IMAGE_CONTENT_TYPE,
        }
        return files, data

    async def call_webhook(self, content: bytes, image_locator: str) -> Any:
        """POST the image and return the decoded JSON body."""
        if not self.webhook_url:
            raise WebhookError(
                message="Analysis webhook is not configured. Set N8N_WEBHOOK_URL.",
                context={"locator": image_locator},
            )

        files, data = self.build_form(content)
        start_time = time.perf_counter()
        logger.info("Sending %d bytes to analysis webhook", len(content))

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.webhook_timeout),
                transport=self.transport,
            ) as client:
                response = await client.post(
                    self.webhook_url,
                    files=files,
                    data=data,
                    headers=WEBHOOK_HEADERS,
                )
        except httpx.TimeoutException:
            logger.error(
                "Analysis webhook timed out after %.0fs for %s",
                self.webhook_timeout,
                image_locator,
            )
            raise WebhookError(
                message=f"Analysis workflow did not respond within {self.webhook_timeout:.0f} seconds",
                context={"locator": image_locator},
            )
        except httpx.HTTPError as e:
            logger.error("Analysis webhook unreachable for %s: %s", image_locator, str(e))
            raise WebhookError(
                message=f"Analysis workflow could not be reached: {type(e).__name__}",
                context={"locator": image_locator, "error": str(e)},
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Analysis webhook answered %d in %.0fms",
            response.status_code,
            duration_ms,
        )

        if not response.is_success:
            body = response.text[:500]
            logger.error(
                "Analysis webhook error response (status %d): %s",
                response.status_code,
                body,
            )
            if any(marker in body for marker in TEST_MODE_MARKERS):
                message = (
                    "n8n webhook is in test mode. Please click 'Execute workflow' "
                    "in the n8n canvas and try again."
                )
            else:
                message = f"Analysis workflow failed: {response.status_code} - {body}"
            raise WebhookError(
                message=message,
                status_code=response.status_code,
                context={"locator": image_locator},
            )

        try:
            body = response.json()
        except ValueError:
            logger.error("Analysis webhook returned non-JSON body: %.200s", response.text)
            raise ExtractionError(
                message="Analysis workflow returned a non-JSON response",
                context={"locator": image_locator, "content_type": response.headers.get("content-type")},
            )

        if isinstance(body, dict) and body.get("message") == ASYNC_ACK_MESSAGE:
            logger.error(
                "Analysis webhook is configured for asynchronous execution; "
                "switch it to synchronous execution in n8n"
            )
            raise WebhookError(
                message=(
                    "Analysis workflow is running asynchronously. Please change the webhook "
                    "to 'Respond When Workflow Finishes' in n8n settings."
                ),
                status_code=response.status_code,
                async_mode=True,
                context={"locator": image_locator},
            )

        return body


def get_gateway(request: Request) -> AnalysisGateway:
    """FastAPI dependency: the gateway built by create_app()."""
    return request.app.state.gateway
