"""Test API routes, error mapping, middleware and lifecycle."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from mock_provider import USER_ID

from eventcraft.api import generation_error_status, get_generation_service, lifespan
from eventcraft.exceptions import ErrorCode, ImageGenerationError, StorageError
from eventcraft.middleware import create_token
from eventcraft.models import GenerateImageRequest


class TestRoot:
    """Root, health and login."""

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "EventCraft API"
        assert data["status"] == "running"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        response = await client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Process-Time"].endswith("ms")

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client):
        response = await client.get("/")
        assert len(response.headers["X-Request-ID"]) == 36

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {
            "storage": True,
            "object_store": True,
            "cache": True,
            "providers": True,
        }
        assert "version" not in data

    @pytest.mark.asyncio
    async def test_health_detailed(self, client):
        response = await client.get("/health", params={"detailed": True})

        data = response.json()
        assert data["version"] == "1.0.0"
        assert "webp_enabled" in data["environment"]

    @pytest.mark.asyncio
    async def test_health_unhealthy(self, client, repository):
        repository.health_check = AsyncMock(side_effect=StorageError("down"))

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["services"]["storage"] is False

    @pytest.mark.asyncio
    async def test_login_creates_user(self, client, service):
        response = await client.post("/login", json={"user_id": "new-user", "email": "a@b.c"})

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"

        profile = await client.get(
            "/users/me", headers={"Authorization": f"Bearer {data['access_token']}"}
        )
        assert profile.json()["email"] == "a@b.c"
        assert profile.json()["credits"] == 3

    @pytest.mark.asyncio
    async def test_login_validates_user_id(self, client):
        response = await client.post("/login", json={"user_id": "ab"})
        assert response.status_code == 400


class TestAuth:
    """Bearer token handling at the route level."""

    @pytest.mark.asyncio
    async def test_missing_header(self, client):
        response = await client.get("/users/me")

        assert response.status_code == 400
        assert response.json()["message"] == "Required field 'authorization' is missing"

    @pytest.mark.asyncio
    async def test_bad_token(self, client):
        response = await client.get("/users/me", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        response = await client.get(
            "/users/me", headers={"Authorization": f"Bearer {create_token('ghost-user')}"}
        )

        assert response.status_code == 404
        assert response.json()["type"] == "NotFoundError"


class TestImages:
    """Image generation and gallery routes."""

    @pytest.mark.asyncio
    async def test_generate(self, client, auth_headers, provider):
        response = await client.post(
            "/images/generate",
            json={"prompt": "A garden party", "aspect_ratio": "16x9"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["provider"] == "ideogram"
        assert data["r2_key"].startswith(f"users/{USER_ID}/images/")
        assert data["message"] == "Image generated successfully using ideogram provider"
        assert provider.calls[0].aspect_ratio.value == "16:9"

    @pytest.mark.asyncio
    async def test_empty_prompt(self, client, auth_headers):
        response = await client.post("/images/generate", json={"prompt": "   "}, headers=auth_headers)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Validation failed"
        assert "Prompt cannot be empty" in data["details"]

    @pytest.mark.asyncio
    async def test_script_in_prompt(self, client, auth_headers):
        response = await client.post(
            "/images/generate", json={"prompt": "<script>alert(1)</script>"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert "Script tags not allowed" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, auth_headers):
        response = await client.post(
            "/images/generate",
            content=b"{not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid JSON format"

    @pytest.mark.asyncio
    async def test_out_of_credits(self, client, auth_headers, repository):
        await repository.add_credits(USER_ID, -3)

        response = await client.post("/images/generate", json={"prompt": "Party"}, headers=auth_headers)

        assert response.status_code == 402
        assert response.json()["type"] == "InsufficientCreditsError"

    @pytest.mark.asyncio
    async def test_provider_quota(self, client, auth_headers, provider):
        provider.fail_with(
            ImageGenerationError("quota", ErrorCode.QUOTA_EXCEEDED, "ideogram", retryable=False)
        )

        response = await client.post("/images/generate", json={"prompt": "Party"}, headers=auth_headers)

        assert response.status_code == 429
        data = response.json()
        assert data["code"] == "QUOTA_EXCEEDED"
        assert data["provider"] == "ideogram"
        assert data["detail"].startswith("API quota exceeded for ideogram")

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client, auth_headers):
        response = await client.post(
            "/images/generate", json={"prompt": "Party", "provider": "dalle"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PARAMETERS"

    @pytest.mark.asyncio
    async def test_gallery_flow(self, client, auth_headers, admin_headers):
        generated = await client.post(
            "/images/generate", json={"prompt": "Party"}, headers=auth_headers
        )
        image_id = generated.json()["generated_image_id"]

        listing = await client.get("/images", headers=auth_headers)
        assert listing.status_code == 200
        assert [image["id"] for image in listing.json()] == [image_id]
        assert listing.json()[0]["image_url"]

        single = await client.get(f"/images/{image_id}", headers=auth_headers)
        assert single.json()["prompt"] == "Party"

        # Admins may view any image
        assert (await client.get(f"/images/{image_id}", headers=admin_headers)).status_code == 200

        deleted = await client.delete(f"/images/{image_id}", headers=auth_headers)
        assert deleted.status_code == 204
        assert (await client.get(f"/images/{image_id}", headers=auth_headers)).status_code == 404

    @pytest.mark.asyncio
    async def test_other_users_image_forbidden(self, client, auth_headers, service):
        await service.ensure_user("other-user")
        result = await service.generate_image("other-user", GenerateImageRequest(prompt="Secret"))

        response = await client.get(f"/images/{result['generated_image_id']}", headers=auth_headers)
        assert response.status_code == 403

        owner = {"Authorization": f"Bearer {create_token('other-user')}"}
        assert (await client.get(f"/images/{result['generated_image_id']}", headers=owner)).status_code == 200

    @pytest.mark.asyncio
    async def test_list_limit_validated(self, client, auth_headers):
        response = await client.get("/images", params={"limit": 0}, headers=auth_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_upscale_not_configured(self, client, auth_headers):
        generated = await client.post("/images/generate", json={"prompt": "Party"}, headers=auth_headers)

        response = await client.post(
            "/images/upscale",
            json={"image_id": generated.json()["generated_image_id"]},
            headers=auth_headers,
        )

        assert response.status_code == 503
        assert response.json()["provider"] == "fal-upscaler"

    @pytest.mark.asyncio
    async def test_upscale_factor_validated(self, client, auth_headers):
        response = await client.post(
            "/images/upscale", json={"image_id": "img-1", "upscale_factor": 8}, headers=auth_headers
        )
        assert response.status_code == 400


class TestCarousels:
    """Carousel routes."""

    @pytest.mark.asyncio
    async def test_background(self, client, auth_headers, provider):
        response = await client.post(
            "/carousels/background",
            json={"prompt": "Summer sale", "slide_count": 4},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["slide_count"] == 4
        assert len(data["slides"]) == 4
        assert provider.calls[0].aspect_ratio.value == "3:1"

    @pytest.mark.asyncio
    async def test_background_slide_count_validated(self, client, auth_headers):
        response = await client.post(
            "/carousels/background",
            json={"prompt": "Summer sale", "slide_count": 11},
            headers=auth_headers,
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_text(self, client, auth_headers):
        response = await client.post(
            "/carousels/text",
            json={"title": "Healthy habits", "slide_index": 2, "total_slides": 3},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["slide_type"] == "conclusion"
        assert data["text"] == "READY TO TAKE ACTION?"
        assert data["source"] == "template"

    @pytest.mark.asyncio
    async def test_text_index_out_of_range(self, client, auth_headers):
        response = await client.post(
            "/carousels/text",
            json={"title": "Habits", "slide_index": 3, "total_slides": 3},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "outside a 3-slide carousel" in response.json()["message"]


class TestUsers:
    """Profile routes."""

    @pytest.mark.asyncio
    async def test_profile(self, client, auth_headers):
        response = await client.get("/users/me", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == USER_ID
        assert data["credits"] == 3
        assert data["is_admin"] is False

    @pytest.mark.asyncio
    async def test_update_settings(self, client, auth_headers):
        response = await client.patch(
            "/users/me/settings", json={"watermark_enabled": False}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["watermark_enabled"] is False


class TestAdmin:
    """Admin routes."""

    @pytest.mark.asyncio
    async def test_requires_admin(self, client, auth_headers):
        response = await client.get("/admin/providers", headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access required"

    @pytest.mark.asyncio
    async def test_provider_status(self, client, admin_headers):
        response = await client.get("/admin/providers", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert "health" in data
        assert data["admin_default"] is None

    @pytest.mark.asyncio
    async def test_set_default_provider(self, client, admin_headers):
        response = await client.put(
            "/admin/providers/ideogram",
            json={"is_default": True, "default_quality": "high"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_default"] is True
        assert data["base_settings"] == {"defaultQuality": "high"}

    @pytest.mark.asyncio
    async def test_update_provider_needs_changes(self, client, admin_headers):
        response = await client.put("/admin/providers/ideogram", json={}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Nothing to update"

    @pytest.mark.asyncio
    async def test_disable_provider(self, client, admin_headers, auth_headers):
        response = await client.put(
            "/admin/providers/ideogram", json={"enabled": False}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        generated = await client.post("/images/generate", json={"prompt": "Party"}, headers=auth_headers)
        assert generated.status_code == 503

    @pytest.mark.asyncio
    async def test_reset_circuit(self, client, admin_headers):
        response = await client.post("/admin/providers/ideogram/reset", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["ideogram"]["failures"] == 0

    @pytest.mark.asyncio
    async def test_grant_credits(self, client, admin_headers):
        response = await client.post(
            "/admin/credits", json={"user_id": USER_ID, "amount": 10}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json() == {"user_id": USER_ID, "credits": 13}

    @pytest.mark.asyncio
    async def test_grant_credits_validated(self, client, admin_headers):
        response = await client.post(
            "/admin/credits", json={"user_id": USER_ID, "amount": 0}, headers=admin_headers
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_system_prompt(self, client, admin_headers):
        body = {"category": "event_type", "subcategory": "Wedding", "content": "Elegant florals"}

        first = await client.post("/admin/prompts", json=body, headers=admin_headers)
        second = await client.post("/admin/prompts", json=body, headers=admin_headers)

        assert first.json() == {"category": "event_type", "subcategory": "Wedding", "version": 1}
        assert second.json()["version"] == 2

    @pytest.mark.asyncio
    async def test_usage_stats(self, client, admin_headers, auth_headers):
        await client.post("/images/generate", json={"prompt": "Party"}, headers=auth_headers)

        response = await client.get("/admin/stats", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["total_images"] == 1


class TestErrorStatus:
    """Provider error codes to HTTP status."""

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (ErrorCode.INVALID_PARAMETERS, 400),
            (ErrorCode.UNSUPPORTED_ASPECT_RATIO, 400),
            (ErrorCode.INSUFFICIENT_CREDITS, 402),
            (ErrorCode.RATE_LIMITED, 429),
            (ErrorCode.TIMEOUT, 503),
            (ErrorCode.INVALID_API_KEY, 502),
            (ErrorCode.GENERATION_FAILED, 502),
        ],
    )
    def test_mapping(self, code, expected):
        assert generation_error_status(ImageGenerationError("x", code)) == expected


class TestLifespan:
    """Startup and shutdown wiring."""

    def test_service_requires_startup(self):
        with pytest.raises(RuntimeError, match="Service not initialized"):
            get_generation_service()

    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self):
        test_app = FastAPI()
        mock_repo = AsyncMock()
        mock_store = AsyncMock()
        mock_cache = AsyncMock()
        mock_manager = MagicMock()
        mock_manager.aclose = AsyncMock()

        with (
            patch("eventcraft.api.create_repository", return_value=mock_repo),
            patch("eventcraft.api.create_object_store", return_value=mock_store),
            patch("eventcraft.api.create_cache", return_value=mock_cache),
            patch("eventcraft.api.create_provider_manager", return_value=mock_manager),
            patch("eventcraft.api.create_upscaler", return_value=None),
        ):
            async with lifespan(test_app):
                service = get_generation_service()
                assert service.repository is mock_repo
                assert service.provider_manager is mock_manager
                assert service.upscaler is None

                mock_repo.startup.assert_awaited_once()
                mock_store.startup.assert_awaited_once()
                mock_cache.startup.assert_awaited_once()

        mock_manager.aclose.assert_awaited_once()
        mock_repo.shutdown.assert_awaited_once()
        mock_store.shutdown.assert_awaited_once()
        mock_cache.shutdown.assert_awaited_once()

        with pytest.raises(RuntimeError):
            get_generation_service()

    @pytest.mark.asyncio
    async def test_startup_failure_propagates(self):
        mock_repo = AsyncMock()
        mock_repo.startup.side_effect = StorageError("cannot connect")

        with (
            patch("eventcraft.api.create_repository", return_value=mock_repo),
            patch("eventcraft.api.create_object_store", return_value=AsyncMock()),
            patch("eventcraft.api.create_cache", return_value=AsyncMock()),
            pytest.raises(StorageError),
        ):
            async with lifespan(FastAPI()):
                pass
