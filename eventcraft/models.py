"""Request and response models using Pydantic."""

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from .imaging.slicer import MAX_SLIDES
from .providers.types import ImageQuality

MAX_PROMPT_LENGTH = 2000

SUSPICIOUS_PATTERNS = [
    (r"<script", "Script tags not allowed"),
    (r"javascript:", "JavaScript URLs not allowed"),
    (r"\x00", "Null bytes not allowed"),
]


def clean_prompt(value: str) -> str:
    """Strip and reject empty or script-carrying prompts."""
    if not isinstance(value, str) or not value.strip():
        raise PydanticCustomError("empty_prompt", "Prompt cannot be empty", {"input": value})
    value = value.strip()
    if len(value) > MAX_PROMPT_LENGTH:
        raise PydanticCustomError(
            "prompt_too_long",
            "Prompt is too long (max {max_length} characters)",
            {"length": len(value), "max_length": MAX_PROMPT_LENGTH},
        )
    for pattern, message in SUSPICIOUS_PATTERNS:
        if re.search(pattern, value, re.IGNORECASE):
            raise PydanticCustomError("unsafe_prompt", message, {"pattern": pattern})
    return value


class GenerateImageRequest(BaseModel):
    """Single image generation request."""

    prompt: str
    aspect_ratio: str = Field("1:1", max_length=10)
    event_type: str | None = Field(None, max_length=50)
    event_details: dict[str, str | int | float] = Field(default_factory=dict)
    style_preset: str | None = Field(None, max_length=100)
    custom_style: str | None = Field(None, max_length=500)
    provider: str | None = Field(None, max_length=30)
    quality: ImageQuality | None = None
    negative_prompt: str | None = Field(None, max_length=500)
    style_images: list[str] = Field(default_factory=list, max_length=3)

    @field_validator("prompt", mode="before")
    @classmethod
    def validate_prompt(cls, value: str) -> str:
        return clean_prompt(value)


class GenerateImageResponse(BaseModel):
    success: bool = True
    image_url: str
    webp_url: str | None = None
    r2_key: str
    generated_image_id: str
    provider: str
    generation_time: int
    cost: float
    seed: int | None = None
    quality: str
    message: str


class CarouselBackgroundRequest(BaseModel):
    """Long 3:1 background that is cut into square slides."""

    prompt: str
    slide_count: int = Field(3, ge=1, le=MAX_SLIDES)
    provider: str | None = Field(None, max_length=30)
    quality: ImageQuality | None = None

    @field_validator("prompt", mode="before")
    @classmethod
    def validate_prompt(cls, value: str) -> str:
        return clean_prompt(value)


class CarouselTextRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    slide_index: int = Field(0, ge=0)
    total_slides: int = Field(3, ge=1, le=MAX_SLIDES)
    slide_type: Literal["intro", "content", "conclusion"] | None = None

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise PydanticCustomError("empty_title", "Title cannot be empty", {"input": value})
        return value.strip()

    @model_validator(mode="after")
    def check_slide_index(self) -> "CarouselTextRequest":
        if self.slide_index >= self.total_slides:
            raise PydanticCustomError(
                "slide_out_of_range",
                "Slide index {index} is outside a {total}-slide carousel",
                {"index": self.slide_index, "total": self.total_slides},
            )
        return self


class UpscaleRequest(BaseModel):
    image_id: str = Field(..., min_length=1, max_length=100)
    upscale_factor: int = Field(2, ge=2, le=4)


class UserSettingsUpdate(BaseModel):
    watermark_enabled: bool


class ProviderUpdate(BaseModel):
    """Admin change to one provider."""

    enabled: bool | None = None
    is_default: bool | None = None
    default_quality: ImageQuality | None = None


class GrantCreditsRequest(BaseModel):
    user_id: str = Field(..., min_length=3, max_length=100)
    amount: int = Field(..., gt=0, le=10_000)


class SystemPromptRequest(BaseModel):
    category: Literal["event_type", "style_preset"]
    subcategory: str | None = Field(None, max_length=100)
    content: str = Field(..., min_length=1, max_length=5000)
    is_active: bool = True


class ImageResponse(BaseModel):
    """A stored image as shown in the gallery."""

    id: str
    prompt: str
    image_url: str | None = None
    r2_key: str
    content_type: str
    event_type: str | None = None
    aspect_ratio: str
    provider: str
    quality: str
    seed: int | None = None
    watermarked: bool = False
    created_at: datetime | str
    metadata: dict[str, Any] = Field(default_factory=dict)


class UserProfile(BaseModel):
    id: str
    email: str | None = None
    credits: int
    watermark_enabled: bool
    role: str
    is_admin: bool = False
