"""
CalorieSnap Backend: API Endpoint Tests
========================================

What:  End-to-end tests through the HTTP layer: upload, analyze, feedback,
       lookups, error mapping, middleware.
How:   Each test builds its own app (fresh storage directory and result
       store) and talks to it in-process through httpx's ASGITransport.
"""

import httpx
import pytest
from PIL import Image


async def _upload(client, image_bytes) -> str:
    response = await client.put(
        "/api/upload-image",
        content=image_bytes,
        headers={"Content-Type": "image/jpeg"},
    )
    assert response.status_code == 200
    return response.text


class TestUploads:
    @pytest.mark.asyncio
    async def test_local_upload_target(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.post("/api/objects/upload")

        assert response.status_code == 200
        assert response.json() == {"uploadURL": "http://test/api/upload-image", "method": "PUT"}

    @pytest.mark.asyncio
    async def test_public_base_url_in_upload_target(self, make_app, make_client):
        app = make_app(public_base_url="https://meals.example.com")
        async with make_client(app) as client:
            response = await client.post("/api/objects/upload", json={})

        assert response.json()["uploadURL"] == "https://meals.example.com/api/upload-image"

    @pytest.mark.asyncio
    async def test_raw_put_returns_plain_url(self, make_app, make_client, sample_image_bytes):
        async with make_client(make_app()) as client:
            response = await client.put("/api/upload-image", content=sample_image_bytes)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text.startswith("http://test/uploads/")
        assert response.text.endswith(".jpg")

    @pytest.mark.asyncio
    async def test_uploaded_image_is_served_back(self, make_app, make_client, sample_image_bytes):
        async with make_client(make_app()) as client:
            url = await _upload(client, sample_image_bytes)
            response = await client.get(url)

        assert response.status_code == 200
        assert response.content == sample_image_bytes
        assert response.headers["content-type"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_multipart_upload(self, make_app, make_client, sample_png_bytes):
        async with make_client(make_app()) as client:
            response = await client.post(
                "/api/upload-image",
                files={"image": ("plate.png", sample_png_bytes, "image/png")},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["filename"].endswith(".png")
        assert body["imageUrl"].endswith(body["filename"])

    @pytest.mark.asyncio
    async def test_multipart_without_file(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.post("/api/upload-image", data={"other": "x"})

        assert response.status_code == 400
        assert "image" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_empty_put(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.put("/api/upload-image", content=b"")

        assert response.status_code == 400
        assert response.json()["error"] == "No image data provided"

    @pytest.mark.asyncio
    async def test_non_image_rejected(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.put("/api/upload-image", content=b"not an image at all")

        assert response.status_code == 400
        assert response.json()["error"] == "Only image files are allowed"

    @pytest.mark.asyncio
    async def test_oversized_dimensions_rejected(self, make_app, make_client, make_image, monkeypatch):
        content = make_image("PNG", (64, 64))
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
        async with make_client(make_app()) as client:
            response = await client.put("/api/upload-image", content=content)

        assert response.status_code == 400
        assert response.json()["error"] == "Image dimensions are too large"

    @pytest.mark.asyncio
    async def test_oversized_put(self, make_app, make_client):
        app = make_app(max_file_size=1_048_576)
        async with make_client(app) as client:
            response = await client.put("/api/upload-image", content=b"\xff" * 1_048_577)

        assert response.status_code == 413
        assert "exceeds" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_delete_image(self, make_app, make_client, sample_image_bytes):
        async with make_client(make_app()) as client:
            url = await _upload(client, sample_image_bytes)
            key = url.split("/uploads/", 1)[1]

            first = await client.delete(f"/api/objects/{key}")
            second = await client.delete(f"/api/objects/{key}")
            served = await client.get(url)

        assert first.status_code == 204
        assert second.status_code == 404
        assert served.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_image(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.get("/uploads/2024/01/01/missing.jpg")
        assert response.status_code == 404


class TestAnalyzeMeal:
    @pytest.mark.asyncio
    async def test_upload_then_analyze(self, make_app, make_client, json_webhook, sample_image_bytes, nutrition_data):
        app = make_app(webhook=json_webhook([{"output": nutrition_data}]))
        async with make_client(app) as client:
            url = await _upload(client, sample_image_bytes)
            response = await client.post("/api/analyze-meal", json={"imageUrl": url})

        assert response.status_code == 200
        body = response.json()
        assert body["nutrition"]["total"]["calories"] == 200
        assert body["nutrition"]["food"][0]["name"] == "Rice"
        assert body["imageUrl"] == url
        assert body["analysisId"]
        assert await app.state.result_store.count() == 1

    @pytest.mark.asyncio
    async def test_missing_image_url(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.post("/api/analyze-meal", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "Image URL is required"

    @pytest.mark.asyncio
    async def test_webhook_failure_stores_nothing(self, make_app, make_client, sample_image_bytes):
        def handler(request):
            return httpx.Response(500, text="boom")

        app = make_app(webhook=handler)
        async with make_client(app) as client:
            url = await _upload(client, sample_image_bytes)
            response = await client.post("/api/analyze-meal", json={"imageUrl": url})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to analyze meal"
        assert body["details"] == "Analysis workflow failed: 500 - boom"
        assert await app.state.result_store.count() == 0

    @pytest.mark.asyncio
    async def test_async_mode_webhook(self, make_app, make_client, json_webhook, sample_image_bytes):
        app = make_app(webhook=json_webhook({"message": "Workflow was started"}))
        async with make_client(app) as client:
            url = await _upload(client, sample_image_bytes)
            response = await client.post("/api/analyze-meal", json={"imageUrl": url})

        assert response.status_code == 500
        assert "Respond When Workflow Finishes" in response.json()["details"]

    @pytest.mark.asyncio
    async def test_invalid_payload(self, make_app, make_client, json_webhook, sample_image_bytes, nutrition_data):
        nutrition_data["total"]["fat"] = "low"
        app = make_app(webhook=json_webhook({"output": nutrition_data}))
        async with make_client(app) as client:
            url = await _upload(client, sample_image_bytes)
            response = await client.post("/api/analyze-meal", json={"imageUrl": url})

        assert response.status_code == 500
        assert "total.fat" in response.json()["details"]
        assert await app.state.result_store.count() == 0

    @pytest.mark.asyncio
    async def test_payload_without_total_stores_nothing(
        self, make_app, make_client, json_webhook, sample_image_bytes, nutrition_data
    ):
        del nutrition_data["total"]
        app = make_app(webhook=json_webhook([{"output": nutrition_data}]))
        async with make_client(app) as client:
            url = await _upload(client, sample_image_bytes)
            response = await client.post("/api/analyze-meal", json={"imageUrl": url})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to analyze meal"
        assert "total" in response.json()["details"]
        assert await app.state.result_store.count() == 0

    @pytest.mark.asyncio
    async def test_missing_stored_image(self, make_app, make_client, json_webhook, nutrition_data):
        app = make_app(webhook=json_webhook(nutrition_data))
        async with make_client(app) as client:
            response = await client.post(
                "/api/analyze-meal", json={"imageUrl": "http://test/uploads/2024/01/01/gone.jpg"}
            )

        assert response.status_code == 500
        assert response.json()["details"] == "Failed to read image file: 2024/01/01/gone.jpg"

    @pytest.mark.asyncio
    async def test_webhook_not_configured(self, make_app, make_client, sample_image_bytes):
        app = make_app(N8N_WEBHOOK_URL="")
        async with make_client(app) as client:
            url = await _upload(client, sample_image_bytes)
            response = await client.post("/api/analyze-meal", json={"imageUrl": url})

        assert response.status_code == 500
        assert "N8N_WEBHOOK_URL" in response.json()["details"]


class TestFeedback:
    @pytest.mark.asyncio
    async def test_feedback_attaches_to_analysis(self, make_app, make_client, json_webhook, sample_image_bytes, nutrition_data):
        app = make_app(webhook=json_webhook(nutrition_data))
        async with make_client(app) as client:
            url = await _upload(client, sample_image_bytes)
            analysis = (await client.post("/api/analyze-meal", json={"imageUrl": url})).json()

            feedback = await client.post(
                "/api/feedback",
                json={
                    "imageUrl": url,
                    "rating": 3,
                    "nutrition": analysis["nutrition"],
                    "analysisId": analysis["analysisId"],
                },
            )
            stored = await client.get(f"/api/analyses/{analysis['analysisId']}")

        assert feedback.status_code == 200
        assert feedback.json() == {"success": True, "feedbackId": analysis["analysisId"]}
        assert stored.status_code == 200
        assert stored.json()["feedback"] == 3
        assert stored.json()["imageUrl"] == url

    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, make_app, make_client, nutrition_data):
        app = make_app()
        async with make_client(app) as client:
            response = await client.post(
                "/api/feedback",
                json={"imageUrl": "http://test/uploads/a.jpg", "rating": 5, "nutrition": nutrition_data},
            )

        assert response.status_code == 400
        assert response.json()["error"] == "Rating must be between 1 and 4"
        assert await app.state.result_store.count() == 0

    @pytest.mark.asyncio
    async def test_missing_fields(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.post("/api/feedback", json={"rating": 2})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    @pytest.mark.asyncio
    async def test_malformed_json_body(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.post(
                "/api/feedback",
                content=b"{not json",
                headers={"Content-Type": "application/json"},
            )
        assert response.status_code == 400


class TestAnalysesLookup:
    @pytest.mark.asyncio
    async def test_unknown_id(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.get("/api/analyses/does-not-exist")

        assert response.status_code == 404
        assert "does-not-exist" in response.json()["error"]


class TestHealthAndMiddleware:
    @pytest.mark.asyncio
    async def test_health(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["storage_mode"] == "local"
        assert body["webhook_configured"] is True
        assert body["analyses_stored"] == 0

    @pytest.mark.asyncio
    async def test_health_degraded_without_webhook(self, make_app, make_client):
        async with make_client(make_app(N8N_WEBHOOK_URL="")) as client:
            response = await client.get("/health")

        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, make_app, make_client):
        async with make_client(make_app()) as client:
            generated = await client.get("/health")
            supplied = await client.get("/health", headers={"X-Request-ID": "trace-42"})

        assert generated.headers["X-Request-ID"]
        assert supplied.headers["X-Request-ID"] == "trace-42"

    @pytest.mark.asyncio
    async def test_error_body_carries_request_id(self, make_app, make_client):
        async with make_client(make_app()) as client:
            response = await client.post(
                "/api/analyze-meal", json={}, headers={"X-Request-ID": "trace-7"}
            )

        assert response.json()["request_id"] == "trace-7"

    @pytest.mark.asyncio
    async def test_rate_limit_applies_to_api_routes(self, make_app, make_client):
        app = make_app(rate_limit_requests=10, rate_limit_window=60)
        async with make_client(app) as client:
            for _ in range(10):
                assert (await client.post("/api/objects/upload")).status_code == 200
            limited = await client.post("/api/objects/upload")
            health = await client.get("/health")

        assert limited.status_code == 429
        assert int(limited.headers["Retry-After"]) >= 1
        assert "Rate limit exceeded" in limited.json()["error"]
        assert health.status_code == 200
