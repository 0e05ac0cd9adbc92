"""Shared types for image generation providers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AspectRatio(str, Enum):
    """Aspect ratios understood across providers."""

    SQUARE = "1:1"
    LANDSCAPE_16_9 = "16:9"
    PORTRAIT_9_16 = "9:16"
    LANDSCAPE_4_3 = "4:3"
    PORTRAIT_3_4 = "3:4"
    PORTRAIT_4_5 = "4:5"
    CARD_5_7 = "5:7"
    PHOTO_3_2 = "3:2"
    PHOTO_2_3 = "2:3"
    STORY_10_16 = "10:16"
    WIDE_16_10 = "16:10"
    BANNER_1_3 = "1:3"
    BANNER_3_1 = "3:1"


class ImageQuality(str, Enum):
    """Quality tiers mapped to provider specific speed or step settings."""

    FAST = "fast"
    STANDARD = "standard"
    HIGH = "high"
    ULTRA = "ultra"


class ProviderType(str, Enum):
    """Registered provider identifiers."""

    IDEOGRAM = "ideogram"
    HUGGINGFACE = "huggingface"
    STABILITY = "stability"
    QWEN = "qwen"
    FAL_QWEN = "fal-qwen"
    FAL_IDEOGRAM = "fal-ideogram"


ALL_RATIOS: tuple[AspectRatio, ...] = tuple(AspectRatio)
ALL_QUALITIES: tuple[ImageQuality, ...] = tuple(ImageQuality)

PORTRAIT_RATIOS = frozenset(
    {AspectRatio.PORTRAIT_9_16, AspectRatio.PORTRAIT_3_4, AspectRatio.PHOTO_2_3, AspectRatio.CARD_5_7}
)

# ~1.75 MP, every side divisible by 8
STANDARD_DIMENSIONS: dict[AspectRatio, tuple[int, int]] = {
    AspectRatio.SQUARE: (1320, 1320),
    AspectRatio.LANDSCAPE_16_9: (1768, 992),
    AspectRatio.PORTRAIT_9_16: (992, 1768),
    AspectRatio.LANDSCAPE_4_3: (1528, 1144),
    AspectRatio.PORTRAIT_3_4: (1144, 1528),
    AspectRatio.PORTRAIT_4_5: (1184, 1480),
    AspectRatio.CARD_5_7: (1120, 1568),
    AspectRatio.PHOTO_3_2: (1624, 1080),
    AspectRatio.PHOTO_2_3: (1080, 1624),
    AspectRatio.STORY_10_16: (1048, 1672),
    AspectRatio.WIDE_16_10: (1672, 1048),
    AspectRatio.BANNER_1_3: (768, 2288),
    AspectRatio.BANNER_3_1: (2288, 768),
}


def normalize_aspect_ratio(value: str | AspectRatio | None) -> AspectRatio:
    """Accept "16x9" or "16:9" style ratios; anything unknown becomes 1:1."""
    if isinstance(value, AspectRatio):
        return value
    if not value:
        return AspectRatio.SQUARE
    try:
        return AspectRatio(value.strip().lower().replace("x", ":"))
    except ValueError:
        return AspectRatio.SQUARE


@dataclass
class ImageGenerationParams:
    """Provider independent generation request."""

    prompt: str
    aspect_ratio: AspectRatio
    user_id: str
    quality: ImageQuality | None = None
    seed: int | None = None
    style_images: list[str] = field(default_factory=list)
    negative_prompt: str | None = None
    provider_options: dict[str, Any] = field(default_factory=dict)

    @property
    def effective_quality(self) -> ImageQuality:
        return self.quality or ImageQuality.STANDARD


@dataclass
class ImageGenerationResponse:
    """Provider independent generation result with the image already downloaded."""

    image_data: bytes
    mime_type: str
    provider: ProviderType
    cost: float
    generation_time_ms: int
    width: int
    height: int
    aspect_ratio: AspectRatio
    prompt: str
    quality: ImageQuality
    seed: int | None = None
    provider_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class RateLimits:
    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int


@dataclass
class Pricing:
    cost_per_image: float
    currency: str = "USD"
    free_quota: int = 0


@dataclass
class ProviderCapabilities:
    """What a provider accepts and what it costs."""

    supported_aspect_ratios: tuple[AspectRatio, ...]
    supported_qualities: tuple[ImageQuality, ...]
    max_prompt_length: int
    supports_seeds: bool
    supports_style_images: bool
    supports_image_editing: bool
    rate_limits: RateLimits
    pricing: Pricing


@dataclass
class ProviderConfig:
    """Connection and selection settings for one provider."""

    api_key: str | None
    base_url: str | None = None
    enabled: bool = True
    priority: int = 0
    timeout: float = 120.0
    options: dict[str, Any] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        """Config view that never exposes the key."""
        return {
            "enabled": self.enabled,
            "priority": self.priority,
            "has_api_key": bool(self.api_key),
            "base_url": self.base_url,
            "timeout": self.timeout,
            "options": dict(self.options),
        }
