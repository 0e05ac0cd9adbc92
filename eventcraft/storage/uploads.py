"""Upload pipeline: optional WebP conversion, validation, enhanced key, object store."""

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from loguru import logger

from ..exceptions import StorageError, ValidationError
from ..imaging.naming import ImageKeyMetadata, generate_enhanced_image_key, get_file_extension
from ..imaging.validation import WebPValidationResult, validate_webp_conversion
from ..imaging.webp import (
    Preset,
    calculate_compression_ratio,
    convert_with_preset,
    create_webp_thumbnail,
    should_convert_to_webp,
)
from .protocols import ObjectStore


@dataclass
class UploadConfig:
    enabled: bool = True
    default_preset: Preset = "medium"
    validate_conversions: bool = True
    fallback_to_original: bool = True

    @classmethod
    def from_settings(cls, settings: Any) -> "UploadConfig":
        return cls(
            enabled=settings.webp_enabled,
            default_preset=settings.webp_preset,
            validate_conversions=settings.webp_validate_conversions,
            fallback_to_original=settings.webp_fallback_to_original,
        )


@dataclass
class UploadResult:
    success: bool
    r2_key: str
    content_type: str
    original_size: int
    webp_size: int
    compression_ratio: float = 0.0
    validation: WebPValidationResult | None = None
    error: str | None = None
    image_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


async def _run(func, *args):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, partial(func, *args))


async def upload_image_with_webp(
    store: ObjectStore,
    data: bytes,
    content_type: str,
    metadata: ImageKeyMetadata,
    config: UploadConfig | None = None,
    image_id: str | None = None,
) -> UploadResult:
    """Convert to WebP where it pays off, then upload under an enhanced key.

    Never raises; failures come back as ``success=False``.
    """
    config = config or UploadConfig()
    original_size = len(data)
    final_data = data
    final_type = content_type
    webp_size = original_size
    compression_ratio = 0.0
    validation = None

    try:
        if config.enabled and should_convert_to_webp(content_type):
            try:
                converted = await _run(convert_with_preset, data, config.default_preset)
                final_data = converted.data
                final_type = "image/webp"
                webp_size = converted.webp_size
                compression_ratio = calculate_compression_ratio(original_size, webp_size)

                if config.validate_conversions:
                    validation = await _run(validate_webp_conversion, data, converted.data)
                    if not validation.is_valid and config.fallback_to_original:
                        logger.warning(
                            f"WebP validation failed ({'; '.join(validation.errors)}), "
                            "keeping original format"
                        )
                        final_data, final_type = data, content_type
                        webp_size, compression_ratio = original_size, 0.0
            except (ValidationError, OSError) as e:
                if not config.fallback_to_original:
                    raise
                logger.warning(f"WebP conversion failed: {e}. Keeping original format")
                final_data, final_type = data, content_type
                webp_size, compression_ratio = original_size, 0.0

        enhanced = generate_enhanced_image_key(metadata, get_file_extension(final_type), image_id)
        r2_key = await store.upload(
            enhanced.key,
            final_data,
            final_type,
            {"user-id": metadata.user_id, "original-size": str(original_size)},
        )
    except (StorageError, ValidationError, OSError) as e:
        logger.error(f"Image upload failed: {e}")
        return UploadResult(
            success=False,
            r2_key="",
            content_type=content_type,
            original_size=original_size,
            webp_size=original_size,
            error=str(e),
        )

    return UploadResult(
        success=True,
        r2_key=r2_key,
        content_type=final_type,
        original_size=original_size,
        webp_size=webp_size,
        compression_ratio=compression_ratio,
        validation=validation,
        image_id=enhanced.image_id,
    )


async def upload_batch_with_webp(
    store: ObjectStore,
    images: list[tuple[str, bytes, str, ImageKeyMetadata]],
    config: UploadConfig | None = None,
) -> list[tuple[str, UploadResult]]:
    """Upload ``(id, data, content_type, metadata)`` items one after another."""
    results = []
    for item_id, data, content_type, metadata in images:
        results.append(
            (item_id, await upload_image_with_webp(store, data, content_type, metadata, config))
        )
    return results


async def upload_webp_thumbnail(
    store: ObjectStore,
    data: bytes,
    key: str,
    size: int = 300,
    preset: Preset = "low",
) -> str:
    thumbnail = await _run(create_webp_thumbnail, data, size, preset)
    return await store.upload(key, thumbnail, "image/webp", {"thumbnail-size": str(size)})
