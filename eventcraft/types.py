"""Type definitions for the EventCraft API."""

from typing import Any

from typing_extensions import TypedDict


class CircuitStatus(TypedDict):
    """Circuit breaker state for one provider."""

    failures: int
    seconds_since_failure: float | None
    is_open: bool


class ProviderHealth(TypedDict):
    """Health of one registered provider."""

    available: bool
    healthy: bool
    circuit_open: bool


class HealthStatus(TypedDict):
    """Health status of system components."""

    storage: bool
    object_store: bool
    cache: bool
    providers: bool


class UserRecord(TypedDict):
    """Database record for a user."""

    id: str
    email: str | None
    credits: int
    watermark_enabled: bool
    role: str
    created_at: str


class ImageRecord(TypedDict, total=False):
    """Database record for a generated image."""

    id: str
    user_id: str
    prompt: str
    r2_key: str
    webp_key: str | None
    content_type: str
    event_type: str | None
    aspect_ratio: str
    provider: str
    quality: str
    seed: int | None
    cost: float
    generation_time_ms: int
    watermarked: bool
    original_size: int
    webp_size: int | None
    compression_ratio: float | None
    metadata: dict[str, Any]
    created_at: str


class GenerationResult(TypedDict, total=False):
    """Result of a successful image generation."""

    success: bool
    image_url: str
    webp_url: str | None
    r2_key: str
    generated_image_id: str
    provider: str
    generation_time: int
    cost: float
    seed: int | None
    quality: str
    message: str


class SlideResult(TypedDict):
    """One square slide cut from a carousel background."""

    index: int
    r2_key: str
    image_url: str
    crop: dict[str, float]


class CarouselResult(TypedDict, total=False):
    """Result of a carousel background generation."""

    success: bool
    generated_image_id: str
    image_url: str
    r2_key: str
    provider: str
    seed: int | None
    slide_count: int
    slides: list[SlideResult]
    carousel_data: dict[str, Any]
    message: str


class UsageStats(TypedDict):
    """Aggregate usage figures for the admin dashboard."""

    total_users: int
    total_images: int
    total_credits_remaining: int
    total_cost: float
    images_by_provider: dict[str, int]
    images_by_event_type: dict[str, int]
    average_generation_time_ms: float
