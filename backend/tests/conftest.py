"""
CalorieSnap Backend: Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── temp_storage: Temporary directory for file operations
    ├── local_storage / file_service: Upload sink over temp_storage
    ├── sample_image_bytes / sample_png_bytes: Real images made with Pillow
    ├── nutrition_data: A valid NutritionPayload as plain JSON
    └── make_app / make_client: App factory wired to a mock webhook

The webhook is never called for real. Tests hand an httpx.MockTransport
handler to the app (or gateway); the same transport serves remote image
downloads.
"""

import io
import os
import tempfile

# Override settings for testing BEFORE any app imports
os.environ["N8N_WEBHOOK_URL"] = "http://n8n.test/webhook/meal-analysis"
os.environ["STORAGE_MODE"] = "local"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="caloriesnap_test_")
os.environ["LOG_LEVEL"] = "WARNING"

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image

from caloriesnap.config import Settings
from caloriesnap.main import create_app
from caloriesnap.services.file_service import FileService
from caloriesnap.services.local_storage import LocalObjectStorage

WEBHOOK_URL = "http://n8n.test/webhook/meal-analysis"
MAX_FILE_SIZE = 10 * 1024 * 1024


def _make_image_bytes(image_format: str = "JPEG", size=(16, 16)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(210, 140, 60)).save(buffer, format=image_format)
    return buffer.getvalue()


def _json_webhook(body, status_code: int = 200):
    """MockTransport handler answering every request with `body` as JSON."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)

    return handler


@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def local_storage(temp_storage):
    return LocalObjectStorage(storage_root=temp_storage)


@pytest.fixture
def file_service(local_storage):
    return FileService(storage=local_storage, max_file_size=MAX_FILE_SIZE)


@pytest.fixture
def sample_image_bytes():
    """A small but real JPEG; Pillow must be able to identify it."""
    return _make_image_bytes("JPEG")


@pytest.fixture
def sample_png_bytes():
    return _make_image_bytes("PNG")


@pytest.fixture
def nutrition_data():
    return {
        "status": "success",
        "food": [
            {
                "name": "Rice",
                "quantity": "1 cup (120g)",
                "calories": 200,
                "protein": 4,
                "carbs": 45,
                "fat": 0.5,
            }
        ],
        "total": {"calories": 200, "protein": 4, "carbs": 45, "fat": 0.5},
    }


@pytest.fixture
def make_app(temp_storage):
    """
    Build a fresh app with its own storage directory and result store.

    Usage:
        app = make_app(webhook=json_webhook([{"output": payload}]))
        app = make_app(max_file_size=1_048_576)
    """

    def _make(webhook=None, **overrides):
        overrides.setdefault("N8N_WEBHOOK_URL", WEBHOOK_URL)
        overrides.setdefault("storage_root", temp_storage)
        config = Settings(**overrides)
        transport = httpx.MockTransport(webhook) if webhook else None
        return create_app(config=config, webhook_transport=transport)

    return _make


@pytest.fixture
def make_client():
    """
    HTTPX AsyncClient talking to an app in-process.

    Usage:
        async with make_client(app) as client:
            response = await client.get("/health")
    """

    def _make(app):
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    return _make


@pytest.fixture
def make_image():
    """make_image("WEBP") → bytes of a tiny image in that format."""
    return _make_image_bytes


@pytest.fixture
def json_webhook():
    """json_webhook(body, status_code=200) → MockTransport handler."""
    return _json_webhook
