"""Generation service: credits, prompt building, provider fallback, storage."""

import asyncio
import random
from functools import partial
from typing import Any

from loguru import logger

from .config import Settings
from .copywriter import CarouselCopywriter
from .exceptions import (
    ConfigurationError,
    ErrorCode,
    ImageGenerationError,
    InsufficientCreditsError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from .imaging.naming import ImageKeyMetadata, generate_prompt_hash, generate_search_tags
from .imaging.slicer import MAX_SLIDES, calculate_slice_data, crop_css, slice_long_image
from .imaging.watermark import WatermarkOptions, add_watermark
from .models import CarouselBackgroundRequest, GenerateImageRequest
from .prompts import build_event_prompt, carousel_background_prompt, carousel_seed
from .providers import FalUpscaler, ProviderManager, parse_provider
from .providers.base import sniff_mime_type
from .providers.types import (
    AspectRatio,
    ImageGenerationParams,
    ImageGenerationResponse,
    ImageQuality,
    ProviderType,
    normalize_aspect_ratio,
)
from .storage import Cache, ObjectStore, Repository
from .storage.cache import get_cached_signed_url, get_cached_signed_urls, invalidate_signed_url
from .storage.uploads import UploadConfig, UploadResult, upload_image_with_webp
from .types import (
    CarouselResult,
    GenerationResult,
    HealthStatus,
    ImageRecord,
    SlideResult,
    UsageStats,
    UserRecord,
)

CAROUSEL_EVENT_TYPE = "CAROUSEL_BACKGROUND"
UPSCALER_NAME = "fal-upscaler"


def friendly_message(error: ImageGenerationError) -> str:
    """User facing text for a provider error."""
    provider = error.provider or "The image provider"
    match error.code:
        case ErrorCode.QUOTA_EXCEEDED:
            return f"API quota exceeded for {provider}. Please try again later or upgrade your plan."
        case ErrorCode.RATE_LIMITED:
            return f"Rate limit reached for {provider}. Please wait a moment and try again."
        case ErrorCode.SERVICE_UNAVAILABLE:
            return f"{provider} service is temporarily unavailable. Please try again."
        case ErrorCode.INVALID_PARAMETERS:
            return f"Invalid parameters: {error}"
        case ErrorCode.INSUFFICIENT_CREDITS:
            return "Insufficient credits. Please upgrade your plan."
    return f"Image generation failed: {error}"


def parse_quality(value: Any) -> ImageQuality | None:
    try:
        return ImageQuality(value) if value else None
    except ValueError:
        logger.warning(f"Ignoring unknown quality setting {value!r}")
        return None


class GenerationService:
    """Image and carousel generation with credit accounting."""

    def __init__(
        self,
        repository: Repository,
        object_store: ObjectStore,
        cache: Cache,
        provider_manager: ProviderManager,
        settings: Settings,
        copywriter: CarouselCopywriter | None = None,
        upscaler: FalUpscaler | None = None,
    ) -> None:
        """Initialize with injected dependencies."""
        self.repository = repository
        self.object_store = object_store
        self.cache = cache
        self.provider_manager = provider_manager
        self.settings = settings
        self.copywriter = copywriter or CarouselCopywriter()
        self.upscaler = upscaler
        self.upload_config = UploadConfig.from_settings(settings)

    # Users

    async def ensure_user(self, user_id: str, email: str | None = None) -> UserRecord:
        """Return the user, creating it with the signup credits on first sight."""
        user = await self.repository.get_user(user_id)
        if user is not None:
            return user
        role = "admin" if user_id in self.settings.admin_ids else "user"
        logger.bind(role=role).info(f"Creating user with {self.settings.signup_credits} credits")
        return await self.repository.create_user(
            user_id, email=email, credits=self.settings.signup_credits, role=role
        )

    async def get_user_profile(self, user_id: str) -> dict[str, Any]:
        user = await self._get_user(user_id)
        return {**user, "is_admin": self._is_admin(user)}

    async def update_user_settings(self, user_id: str, *, watermark_enabled: bool) -> dict[str, Any]:
        await self._get_user(user_id)
        await self.repository.update_user_settings(user_id, watermark_enabled=watermark_enabled)
        return await self.get_user_profile(user_id)

    async def _get_user(self, user_id: str) -> UserRecord:
        user = await self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def _get_user_with_credits(self, user_id: str) -> UserRecord:
        user = await self._get_user(user_id)
        if user["credits"] <= 0:
            raise InsufficientCreditsError("Insufficient credits. Please upgrade your plan.")
        return user

    def _is_admin(self, user: UserRecord) -> bool:
        return user["role"] == "admin" or user["id"] in self.settings.admin_ids

    async def _require_admin(self, user_id: str) -> UserRecord:
        user = await self._get_user(user_id)
        if not self._is_admin(user):
            raise PermissionDeniedError("Admin access required")
        return user

    # Image generation

    async def _build_prompt(self, request: GenerateImageRequest) -> str:
        if not (request.event_type and request.event_details):
            return request.prompt
        try:
            stored_style = None
            if request.style_preset:
                stored_style = await self.repository.get_active_prompt(
                    "style_preset", request.style_preset
                )
            return build_event_prompt(
                request.event_type,
                request.event_details,
                request.prompt,
                style_preset=request.style_preset,
                custom_style=request.custom_style,
                stored_style_prompt=stored_style,
            )
        except (StorageError, ValidationError, KeyError, ValueError) as e:
            logger.warning(f"Prompt enhancement failed, using the raw prompt: {e}")
            return request.prompt

    async def _default_provider_setting(self) -> dict[str, Any] | None:
        try:
            return await self.repository.get_default_provider_setting()
        except StorageError as e:
            logger.warning(f"Could not read the admin provider setting: {e}")
            return None

    async def _select_provider(
        self, requested: str | None
    ) -> tuple[ProviderType | None, dict[str, Any]]:
        """Admin default, then the caller's preference, then the configured default."""
        setting = await self._default_provider_setting()
        if setting:
            try:
                provider = parse_provider(setting["provider_id"])
            except ConfigurationError:
                logger.warning(f"Admin default provider {setting['provider_id']!r} is unknown")
            else:
                if self.provider_manager.config_manager.is_available(provider):
                    return provider, setting.get("base_settings") or {}

        if requested:
            try:
                return parse_provider(requested), {}
            except ConfigurationError as e:
                raise ImageGenerationError(str(e), ErrorCode.INVALID_PARAMETERS) from e

        return self.provider_manager.default_provider, {}

    def _select_quality(
        self,
        requested: ImageQuality | None,
        provider: ProviderType | None,
        base_settings: dict[str, Any],
    ) -> ImageQuality:
        if requested:
            return requested
        configured = parse_quality(
            base_settings.get("defaultQuality") or base_settings.get("default_quality")
        )
        if configured:
            return configured
        return ImageQuality.HIGH if provider == ProviderType.FAL_QWEN else ImageQuality.STANDARD

    def _random_seed(self, provider: ProviderType | None) -> int | None:
        if not self.provider_manager.supports_seeds(provider):
            return None
        return random.randint(1, 2_147_483_647)

    async def _apply_watermark(self, response: ImageGenerationResponse) -> tuple[bytes, str, bool]:
        options = WatermarkOptions(text=self.settings.watermark_text)
        loop = asyncio.get_event_loop()
        data = await loop.run_in_executor(None, partial(add_watermark, response.image_data, options))
        if data is response.image_data:
            return data, response.mime_type, False
        return data, "image/png", True

    async def _upload(
        self, data: bytes, content_type: str, metadata: ImageKeyMetadata
    ) -> UploadResult:
        result = await upload_image_with_webp(
            self.object_store, data, content_type, metadata, self.upload_config
        )
        if not result.success:
            raise StorageError(f"Image upload failed: {result.error}")
        return result

    async def _signed_url(self, r2_key: str) -> str:
        return await get_cached_signed_url(
            self.object_store, self.cache, r2_key, self.settings.signed_url_expiry
        )

    async def _discard_objects(self, keys: list[str]) -> None:
        for key in keys:
            try:
                await self.object_store.delete(key)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Could not remove orphaned object {key}: {e}")

    async def _charge(self, user_id: str, uploaded_keys: list[str]) -> int:
        """Take one credit; undo the upload when the balance ran out meanwhile."""
        remaining = await self.repository.consume_credit(user_id)
        if remaining is None:
            await self._discard_objects(uploaded_keys)
            raise InsufficientCreditsError("Insufficient credits. Please upgrade your plan.")
        return remaining

    async def _save(self, record: ImageRecord, user_id: str, uploaded_keys: list[str]) -> None:
        """Persist the record; refund and clean up when the database write fails."""
        try:
            await self.repository.save_image(record)
        except StorageError:
            logger.error("Saving image record failed, refunding credit")
            await self.repository.add_credits(user_id, 1)
            await self._discard_objects(uploaded_keys)
            raise

    async def generate_image(self, user_id: str, request: GenerateImageRequest) -> GenerationResult:
        """Generate, watermark, store and charge for one image.

        Raises:
            NotFoundError: Unknown user.
            InsufficientCreditsError: No credits left.
            ImageGenerationError: Every provider failed.
            StorageError: Upload or persistence failed.
        """
        user = await self._get_user_with_credits(user_id)

        prompt = await self._build_prompt(request)
        aspect_ratio = normalize_aspect_ratio(request.aspect_ratio)
        provider, base_settings = await self._select_provider(request.provider)
        quality = self._select_quality(request.quality, provider, base_settings)

        params = ImageGenerationParams(
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            user_id=user_id,
            quality=quality,
            seed=self._random_seed(provider),
            style_images=list(request.style_images),
            negative_prompt=request.negative_prompt,
        )
        logger.bind(
            provider=provider.value if provider else None,
            aspect_ratio=aspect_ratio.value,
            quality=quality.value,
        ).info("Generating image")
        response = await self.provider_manager.generate_with_fallback(params, preferred=provider)

        data, content_type, watermarked = response.image_data, response.mime_type, False
        if user["watermark_enabled"]:
            data, content_type, watermarked = await self._apply_watermark(response)

        metadata = ImageKeyMetadata(
            user_id=user_id,
            event_type=request.event_type,
            aspect_ratio=aspect_ratio.value,
            style_preset=request.style_preset,
            watermark_enabled=watermarked,
            prompt_hash=generate_prompt_hash(prompt),
            generation_model=response.provider.value,
            custom_tags=[
                f"provider:{response.provider.value}",
                f"quality:{response.quality.value}",
                f"cost:{response.cost}",
                f"time:{response.generation_time_ms}ms",
            ],
        )
        upload = await self._upload(data, content_type, metadata)
        image_url = await self._signed_url(upload.r2_key)
        webp_url = image_url if upload.content_type == "image/webp" else None

        await self._charge(user_id, [upload.r2_key])

        image_id = upload.image_id or upload.r2_key
        await self._save(
            {
                "id": image_id,
                "user_id": user_id,
                "prompt": prompt,
                "r2_key": upload.r2_key,
                "webp_key": upload.r2_key if webp_url else None,
                "content_type": upload.content_type,
                "event_type": request.event_type,
                "aspect_ratio": aspect_ratio.value,
                "provider": response.provider.value,
                "quality": response.quality.value,
                "seed": response.seed,
                "cost": response.cost,
                "generation_time_ms": response.generation_time_ms,
                "watermarked": watermarked,
                "original_size": upload.original_size,
                "webp_size": upload.webp_size if webp_url else None,
                "compression_ratio": upload.compression_ratio if webp_url else None,
                "metadata": {
                    "original_prompt": request.prompt,
                    "style_preset": request.style_preset,
                    "event_details": dict(request.event_details),
                    "width": response.width,
                    "height": response.height,
                    "tags": metadata.custom_tags,
                    "search_tags": generate_search_tags(metadata),
                    **response.provider_data,
                },
            },
            user_id,
            [upload.r2_key],
        )

        return {
            "success": True,
            "image_url": image_url,
            "webp_url": webp_url,
            "r2_key": upload.r2_key,
            "generated_image_id": image_id,
            "provider": response.provider.value,
            "generation_time": response.generation_time_ms,
            "cost": response.cost,
            "seed": response.seed,
            "quality": response.quality.value,
            "message": f"Image generated successfully using {response.provider.value} provider",
        }

    async def generate_carousel_background(
        self, user_id: str, request: CarouselBackgroundRequest
    ) -> CarouselResult:
        """Generate one 3:1 background and store it with its square slides."""
        await self._get_user_with_credits(user_id)
        if not 1 <= request.slide_count <= MAX_SLIDES:
            raise ValidationError(f"slide_count must be between 1 and {MAX_SLIDES}")

        prompt = carousel_background_prompt(request.prompt)
        seed = carousel_seed(prompt, request.slide_count)
        provider, base_settings = await self._select_provider(request.provider)
        quality = self._select_quality(request.quality, provider, base_settings)

        params = ImageGenerationParams(
            prompt=prompt,
            aspect_ratio=AspectRatio.BANNER_3_1,
            user_id=user_id,
            quality=quality,
            seed=seed,
        )
        response = await self.provider_manager.generate_with_fallback(params, preferred=provider)

        metadata = ImageKeyMetadata(
            user_id=user_id,
            event_type=CAROUSEL_EVENT_TYPE,
            aspect_ratio=AspectRatio.BANNER_3_1.value,
            prompt_hash=generate_prompt_hash(prompt),
            generation_model=response.provider.value,
            custom_tags=["carousel", f"slides:{request.slide_count}"],
        )
        upload = await self._upload(response.image_data, response.mime_type, metadata)
        uploaded = [upload.r2_key]

        crops = calculate_slice_data(request.slide_count)
        stem = upload.r2_key.rsplit(".", 1)[0]
        slides: list[SlideResult] = []
        try:
            loop = asyncio.get_event_loop()
            slide_images = await loop.run_in_executor(
                None, partial(slice_long_image, response.image_data, request.slide_count)
            )
            for index, (slide, crop) in enumerate(zip(slide_images, crops, strict=True)):
                key = await self.object_store.upload(
                    f"{stem}/slide-{index + 1}.png",
                    slide,
                    "image/png",
                    {"user-id": user_id, "slide": str(index + 1)},
                )
                uploaded.append(key)
                slides.append(
                    {"index": index, "r2_key": key, "image_url": await self._signed_url(key), "crop": crop}
                )
        except (StorageError, ValidationError):
            await self._discard_objects(uploaded)
            raise

        image_url = await self._signed_url(upload.r2_key)
        await self._charge(user_id, uploaded)

        image_id = upload.image_id or upload.r2_key
        carousel_data = {
            "slide_count": request.slide_count,
            "crops": crops,
            "css": [crop_css(image_url, crop) for crop in crops],
        }
        await self._save(
            {
                "id": image_id,
                "user_id": user_id,
                "prompt": prompt,
                "r2_key": upload.r2_key,
                "webp_key": upload.r2_key if upload.content_type == "image/webp" else None,
                "content_type": upload.content_type,
                "event_type": CAROUSEL_EVENT_TYPE,
                "aspect_ratio": AspectRatio.BANNER_3_1.value,
                "provider": response.provider.value,
                "quality": response.quality.value,
                "seed": response.seed,
                "cost": response.cost,
                "generation_time_ms": response.generation_time_ms,
                "watermarked": False,
                "original_size": upload.original_size,
                "webp_size": upload.webp_size,
                "compression_ratio": upload.compression_ratio,
                "metadata": {
                    "original_prompt": request.prompt,
                    "slide_count": request.slide_count,
                    "slide_keys": uploaded[1:],
                    **response.provider_data,
                },
            },
            user_id,
            uploaded,
        )

        return {
            "success": True,
            "generated_image_id": image_id,
            "image_url": image_url,
            "r2_key": upload.r2_key,
            "provider": response.provider.value,
            "seed": response.seed,
            "slide_count": request.slide_count,
            "slides": slides,
            "carousel_data": carousel_data,
            "message": f"Carousel background generated with {request.slide_count} slides",
        }

    async def generate_carousel_text(
        self,
        title: str,
        slide_index: int,
        total_slides: int,
        slide_type: str | None = None,
    ) -> dict[str, Any]:
        if not 0 <= slide_index < total_slides:
            raise ValidationError("slide_index must be within the carousel")
        return await self.copywriter.generate(title, slide_index, total_slides, slide_type)  # type: ignore[arg-type]

    async def upscale_image(self, user_id: str, image_id: str, upscale_factor: int = 2) -> GenerationResult:
        """Upscale one of the user's images into a new stored image."""
        await self._get_user_with_credits(user_id)
        original = await self.repository.get_image(image_id)
        if original is None:
            raise NotFoundError(f"Image {image_id} not found")
        if original["user_id"] != user_id:
            raise PermissionDeniedError("You can only upscale your own images")
        if self.upscaler is None:
            raise ImageGenerationError(
                "Upscaling is not configured", ErrorCode.SERVICE_UNAVAILABLE, UPSCALER_NAME
            )

        source_url = await self._signed_url(original["r2_key"])
        started = asyncio.get_event_loop().time()
        data = await self.upscaler.upscale(source_url, upscale_factor)
        elapsed_ms = int((asyncio.get_event_loop().time() - started) * 1000)

        metadata = ImageKeyMetadata(
            user_id=user_id,
            event_type=original.get("event_type"),
            aspect_ratio=original.get("aspect_ratio"),
            watermark_enabled=bool(original.get("watermarked")),
            prompt_hash=generate_prompt_hash(original["prompt"]),
            generation_model=UPSCALER_NAME,
            custom_tags=["upscaled", f"x{upscale_factor}"],
        )
        upload = await self._upload(data, sniff_mime_type(data), metadata)
        image_url = await self._signed_url(upload.r2_key)
        await self._charge(user_id, [upload.r2_key])

        new_id = upload.image_id or upload.r2_key
        await self._save(
            {
                "id": new_id,
                "user_id": user_id,
                "prompt": original["prompt"],
                "r2_key": upload.r2_key,
                "webp_key": upload.r2_key if upload.content_type == "image/webp" else None,
                "content_type": upload.content_type,
                "event_type": original.get("event_type"),
                "aspect_ratio": original["aspect_ratio"],
                "provider": UPSCALER_NAME,
                "quality": original["quality"],
                "seed": original.get("seed"),
                "cost": 0.0,
                "generation_time_ms": elapsed_ms,
                "watermarked": bool(original.get("watermarked")),
                "original_size": upload.original_size,
                "webp_size": upload.webp_size,
                "compression_ratio": upload.compression_ratio,
                "metadata": {
                    "upscaled": True,
                    "upscale_factor": upscale_factor,
                    "source_image_id": image_id,
                },
            },
            user_id,
            [upload.r2_key],
        )

        return {
            "success": True,
            "image_url": image_url,
            "webp_url": image_url if upload.content_type == "image/webp" else None,
            "r2_key": upload.r2_key,
            "generated_image_id": new_id,
            "provider": UPSCALER_NAME,
            "generation_time": elapsed_ms,
            "cost": 0.0,
            "seed": original.get("seed"),
            "quality": original["quality"],
            "message": f"Image upscaled {upscale_factor}x",
        }

    # Gallery

    async def list_images(self, user_id: str, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        images = await self.repository.list_images(user_id, limit, offset)
        urls = await get_cached_signed_urls(
            self.object_store,
            self.cache,
            [image["r2_key"] for image in images],
            self.settings.signed_url_expiry,
        )
        return [{**image, "image_url": urls.get(image["r2_key"])} for image in images]

    async def _owned_image(self, user_id: str, image_id: str) -> ImageRecord:
        image = await self.repository.get_image(image_id)
        if image is None:
            raise NotFoundError(f"Image {image_id} not found")
        if image["user_id"] != user_id:
            user = await self._get_user(user_id)
            if not self._is_admin(user):
                raise PermissionDeniedError("You do not have access to this image")
        return image

    async def get_image(self, user_id: str, image_id: str) -> dict[str, Any]:
        image = await self._owned_image(user_id, image_id)
        return {**image, "image_url": await self._signed_url(image["r2_key"])}

    async def delete_image(self, user_id: str, image_id: str) -> None:
        """Delete the record and every stored object that belongs to it."""
        image = await self._owned_image(user_id, image_id)
        keys = [image["r2_key"], *image.get("metadata", {}).get("slide_keys", [])]
        if image.get("webp_key") and image["webp_key"] not in keys:
            keys.append(image["webp_key"])

        for key in keys:
            await self.object_store.delete(key)
            await invalidate_signed_url(self.cache, key, self.settings.signed_url_expiry)
        await self.repository.delete_image(image_id)
        logger.info(f"Deleted image {image_id} ({len(keys)} objects)")

    # Admin

    async def set_default_provider(
        self, admin_id: str, provider: str, default_quality: ImageQuality | None = None
    ) -> dict[str, Any]:
        await self._require_admin(admin_id)
        provider_type = self.provider_manager.config_manager.set_default_provider(provider)
        base_settings = {"defaultQuality": default_quality.value} if default_quality else None
        return await self.repository.save_provider_setting(
            provider_type.value, is_default=True, is_active=True, base_settings=base_settings
        )

    async def set_provider_enabled(self, admin_id: str, provider: str, enabled: bool) -> dict[str, Any]:
        await self._require_admin(admin_id)
        provider_type = parse_provider(provider)
        self.provider_manager.config_manager.set_provider_enabled(provider_type, enabled)
        changes: dict[str, Any] = {"is_active": enabled}
        if not enabled:
            changes["is_default"] = False
        return await self.repository.save_provider_setting(provider_type.value, **changes)

    async def reset_circuit_breaker(self, admin_id: str, provider: str) -> dict[str, Any]:
        await self._require_admin(admin_id)
        provider_type = parse_provider(provider)
        self.provider_manager.reset_circuit_breaker(provider_type)
        return self.provider_manager.circuit_breaker.get_status([provider_type])

    async def grant_credits(self, admin_id: str, user_id: str, amount: int) -> int:
        await self._require_admin(admin_id)
        if amount <= 0:
            raise ValidationError("Credit amount must be positive")
        await self.ensure_user(user_id)
        balance = await self.repository.add_credits(user_id, amount)
        logger.bind(admin=admin_id).info(f"Granted {amount} credits")
        return balance

    async def save_system_prompt(
        self,
        admin_id: str,
        category: str,
        subcategory: str | None,
        content: str,
        is_active: bool = True,
    ) -> int:
        await self._require_admin(admin_id)
        return await self.repository.save_prompt(category, subcategory, content, is_active=is_active)

    async def get_provider_status(self, admin_id: str) -> dict[str, Any]:
        await self._require_admin(admin_id)
        status = self.provider_manager.get_status()
        status["health"] = await self.provider_manager.get_providers_health()
        status["admin_default"] = await self._default_provider_setting()
        return status

    async def get_usage_stats(self, admin_id: str) -> UsageStats:
        await self._require_admin(admin_id)
        return await self.repository.get_usage_stats()

    # Health

    async def health_check(self) -> HealthStatus:
        """Check health of all components."""
        logger.debug("Performing health checks")
        return {
            "storage": await self._check_storage_health(),
            "object_store": await self._check_object_store_health(),
            "cache": await self._check_cache_health(),
            "providers": bool(self.provider_manager.providers),
        }

    async def _check_storage_health(self) -> bool:
        try:
            return await self.repository.health_check()
        except Exception as e:  # noqa: BLE001
            logger.error(f"Storage health check failed: {e}")
            return False

    async def _check_object_store_health(self) -> bool:
        try:
            return await self.object_store.test_connection()
        except Exception as e:  # noqa: BLE001
            logger.error(f"Object store health check failed: {e}")
            return False

    async def _check_cache_health(self) -> bool:
        try:
            await self.cache.set("__health_check__", {"test": True}, ttl=1)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Cache health check failed: {e}")
            return False
        else:
            return True

    async def aclose(self) -> None:
        await self.provider_manager.aclose()
        if self.upscaler is not None:
            await self.upscaler.aclose()
