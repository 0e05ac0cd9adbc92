"""Fal.ai hosted models: Qwen-Image, Ideogram v3 and the clarity upscaler."""

from abc import abstractmethod
from typing import Any

import httpx
from loguru import logger

from ..exceptions import ErrorCode, ImageGenerationError
from .base import BaseImageProvider
from .types import (
    ALL_QUALITIES,
    ALL_RATIOS,
    PORTRAIT_RATIOS,
    AspectRatio,
    ImageGenerationParams,
    ImageGenerationResponse,
    ImageQuality,
    Pricing,
    ProviderCapabilities,
    ProviderConfig,
    ProviderType,
    RateLimits,
)

FAL_BASE_URL = "https://fal.run"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class FalProvider(BaseImageProvider):
    """Synchronous fal.run endpoint shared by the hosted models."""

    model: str

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url or FAL_BASE_URL}/{self.config.options.get('model', self.model)}"

    @abstractmethod
    def build_payload(self, params: ImageGenerationParams) -> dict[str, Any]:
        """Request body for the fal.run endpoint."""

    @abstractmethod
    def dimensions_for(self, params: ImageGenerationParams) -> tuple[int, int]:
        """Output size the endpoint will return for these params."""

    async def _generate(self, params: ImageGenerationParams) -> ImageGenerationResponse:
        payload = self.build_payload(params)
        response = await self.client.post(
            self.endpoint,
            headers={"Authorization": f"Key {self.config.api_key}"},
            json=payload,
        )
        self.check_response(response)
        result = response.json()

        images = result.get("images") or []
        if not images or not images[0].get("url"):
            raise ImageGenerationError(
                f"No images returned from {self.name}", ErrorCode.GENERATION_FAILED, self.name
            )
        image = images[0]
        data, mime_type = await self.fetch_image(image["url"])

        default_width, default_height = self.dimensions_for(params)
        width = image.get("width") or default_width
        height = image.get("height") or default_height

        return ImageGenerationResponse(
            image_data=data,
            mime_type=image.get("content_type") or mime_type,
            provider=self.provider_type,
            cost=self.cost_for(params, width, height),
            generation_time_ms=0,
            width=width,
            height=height,
            aspect_ratio=params.aspect_ratio,
            prompt=params.prompt,
            quality=params.effective_quality,
            seed=result.get("seed", params.seed),
            provider_data={
                "model": self.config.options.get("model", self.model),
                "request": {k: v for k, v in payload.items() if k != "prompt"},
                "has_nsfw_concepts": result.get("has_nsfw_concepts"),
            },
        )

    def cost_for(self, params: ImageGenerationParams, width: int, height: int) -> float:
        return self.estimate_cost(params)

    def error_for_status(self, status_code: int, message: str) -> ImageGenerationError:
        lowered = message.lower()
        if "api key" in lowered:
            return ImageGenerationError(
                f"Invalid Fal API key: {message}", ErrorCode.INVALID_API_KEY, self.name
            )
        if status_code not in (429, 503) and ("quota" in lowered or "limit" in lowered):
            return ImageGenerationError(
                f"Fal quota exceeded: {message}", ErrorCode.QUOTA_EXCEEDED, self.name
            )
        if "timeout" in lowered:
            return ImageGenerationError(
                f"Fal request timed out: {message}", ErrorCode.TIMEOUT, self.name, True
            )
        return super().error_for_status(status_code, message)


# Steps are multiplied per ratio so that non-square images keep detail.
QWEN_RATIO_STEP_COMPENSATION = {
    AspectRatio.SQUARE: 1.0,
    AspectRatio.LANDSCAPE_16_9: 1.3,
    AspectRatio.PORTRAIT_9_16: 1.5,
    AspectRatio.LANDSCAPE_4_3: 1.2,
    AspectRatio.PORTRAIT_3_4: 1.3,
    AspectRatio.PORTRAIT_4_5: 1.3,
    AspectRatio.CARD_5_7: 1.5,
    AspectRatio.PHOTO_3_2: 1.2,
    AspectRatio.PHOTO_2_3: 1.3,
}

QWEN_QUALITY_STEPS = {
    ImageQuality.FAST: 15,
    ImageQuality.STANDARD: 25,
    ImageQuality.HIGH: 35,
    ImageQuality.ULTRA: 50,
}

QWEN_IMAGE_SIZES = {
    AspectRatio.SQUARE: "square_hd",
    AspectRatio.LANDSCAPE_16_9: "landscape_16_9",
    AspectRatio.PORTRAIT_9_16: "portrait_16_9",
    AspectRatio.LANDSCAPE_4_3: "landscape_4_3",
    AspectRatio.PORTRAIT_3_4: "portrait_4_3",
    AspectRatio.CARD_5_7: "portrait_16_9",
    AspectRatio.PORTRAIT_4_5: "portrait_4_3",
    AspectRatio.PHOTO_3_2: "landscape_4_3",
    AspectRatio.PHOTO_2_3: "portrait_4_3",
}

PRESET_DIMENSIONS = {
    "square_hd": (1024, 1024),
    "landscape_16_9": (1024, 576),
    "portrait_16_9": (576, 1024),
    "landscape_4_3": (1024, 768),
    "portrait_4_3": (768, 1024),
}

PORTRAIT_KEYWORDS = (
    "highly detailed",
    "sharp focus",
    "professional photography",
    "high resolution",
    "crisp details",
)

QWEN_COST_PER_MEGAPIXEL = 0.05
QWEN_MAX_STEPS = 50


class FalQwenProvider(FalProvider):
    """Qwen-Image on fal.ai."""

    provider_type = ProviderType.FAL_QWEN
    model = "fal-ai/qwen-image"

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supported_aspect_ratios=tuple(QWEN_IMAGE_SIZES),
            supported_qualities=ALL_QUALITIES,
            max_prompt_length=2000,
            supports_seeds=True,
            supports_style_images=False,
            supports_image_editing=False,
            rate_limits=RateLimits(60, 1000, 10000),
            pricing=Pricing(cost_per_image=QWEN_COST_PER_MEGAPIXEL),
        )

    def inference_steps(self, params: ImageGenerationParams) -> int:
        base = QWEN_QUALITY_STEPS[params.effective_quality]
        compensation = QWEN_RATIO_STEP_COMPENSATION.get(params.aspect_ratio, 1.0)
        return min(round(base * compensation), QWEN_MAX_STEPS)

    def enhance_prompt(self, params: ImageGenerationParams) -> str:
        """Portrait renders get detail keywords the prompt does not already carry."""
        if not self.is_portrait(params.aspect_ratio):
            return params.prompt
        lowered = params.prompt.lower()
        missing = [keyword for keyword in PORTRAIT_KEYWORDS if keyword not in lowered]
        if not missing:
            return params.prompt
        return f"{params.prompt}, {', '.join(missing)}"

    def is_portrait(self, ratio: AspectRatio) -> bool:
        return ratio in PORTRAIT_RATIOS or ratio == AspectRatio.PORTRAIT_4_5

    def build_payload(self, params: ImageGenerationParams) -> dict[str, Any]:
        options = params.provider_options
        guidance = 4.5 if self.is_portrait(params.aspect_ratio) else 3.0

        payload: dict[str, Any] = {
            "prompt": self.enhance_prompt(params),
            "image_size": QWEN_IMAGE_SIZES[params.aspect_ratio],
            "num_inference_steps": int(
                clamp(options.get("num_inference_steps", self.inference_steps(params)), 1, 50)
            ),
            "guidance_scale": clamp(options.get("guidance_scale", guidance), 0, 20),
            "num_images": int(clamp(options.get("num_images", 1), 1, 4)),
            "enable_safety_checker": True,
            "output_format": "png",
        }
        if params.seed is not None:
            payload["seed"] = params.seed
        if params.negative_prompt:
            payload["negative_prompt"] = params.negative_prompt
        return payload

    def dimensions_for(self, params: ImageGenerationParams) -> tuple[int, int]:
        return PRESET_DIMENSIONS[QWEN_IMAGE_SIZES[params.aspect_ratio]]

    def estimate_cost(self, params: ImageGenerationParams) -> float:
        width, height = self.dimensions_for(params)
        return self.cost_for(params, width, height)

    def cost_for(self, params: ImageGenerationParams, width: int, height: int) -> float:
        megapixels = width * height / 1_000_000
        return round(megapixels * QWEN_COST_PER_MEGAPIXEL, 4)


FAL_IDEOGRAM_IMAGE_SIZES = {
    AspectRatio.SQUARE: "square_hd",
    AspectRatio.LANDSCAPE_16_9: "landscape_16_9",
    AspectRatio.PORTRAIT_9_16: "portrait_16_9",
    AspectRatio.LANDSCAPE_4_3: "landscape_4_3",
    AspectRatio.PORTRAIT_3_4: "portrait_4_3",
    AspectRatio.PORTRAIT_4_5: "portrait_4_3",
    AspectRatio.CARD_5_7: "portrait_4_3",
    AspectRatio.PHOTO_3_2: "landscape_4_3",
    AspectRatio.PHOTO_2_3: "portrait_4_3",
    AspectRatio.STORY_10_16: "portrait_16_9",
    AspectRatio.WIDE_16_10: "landscape_16_9",
    AspectRatio.BANNER_1_3: "portrait_16_9",
    AspectRatio.BANNER_3_1: "landscape_16_9",
}

FAL_IDEOGRAM_DIMENSIONS = {
    AspectRatio.SQUARE: (1024, 1024),
    AspectRatio.LANDSCAPE_16_9: (1024, 576),
    AspectRatio.PORTRAIT_9_16: (576, 1024),
    AspectRatio.LANDSCAPE_4_3: (1024, 768),
    AspectRatio.PORTRAIT_3_4: (768, 1024),
    AspectRatio.PORTRAIT_4_5: (1024, 1280),
    AspectRatio.CARD_5_7: (1024, 1434),
    AspectRatio.PHOTO_3_2: (1024, 683),
    AspectRatio.PHOTO_2_3: (683, 1024),
    AspectRatio.STORY_10_16: (640, 1024),
    AspectRatio.WIDE_16_10: (1024, 640),
    AspectRatio.BANNER_1_3: (341, 1024),
    AspectRatio.BANNER_3_1: (1024, 341),
}

FAL_IDEOGRAM_SPEED = {
    ImageQuality.FAST: "TURBO",
    ImageQuality.STANDARD: "BALANCED",
    ImageQuality.HIGH: "QUALITY",
    ImageQuality.ULTRA: "QUALITY",
}

FAL_IDEOGRAM_COST_PER_MEGAPIXEL = {"TURBO": 0.03, "BALANCED": 0.06, "QUALITY": 0.09}


class FalIdeogramProvider(FalProvider):
    """Ideogram v3 hosted on fal.ai."""

    provider_type = ProviderType.FAL_IDEOGRAM
    model = "fal-ai/ideogram/v3"

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supported_aspect_ratios=ALL_RATIOS,
            supported_qualities=ALL_QUALITIES,
            max_prompt_length=1000,
            supports_seeds=True,
            supports_style_images=False,
            supports_image_editing=False,
            rate_limits=RateLimits(60, 1000, 10000),
            pricing=Pricing(cost_per_image=0.06),
        )

    def rendering_speed(self, params: ImageGenerationParams) -> str:
        return params.provider_options.get(
            "rendering_speed", FAL_IDEOGRAM_SPEED[params.effective_quality]
        )

    def build_payload(self, params: ImageGenerationParams) -> dict[str, Any]:
        options = params.provider_options
        payload: dict[str, Any] = {
            "prompt": params.prompt,
            "image_size": FAL_IDEOGRAM_IMAGE_SIZES[params.aspect_ratio],
            "rendering_speed": self.rendering_speed(params),
            "expand_prompt": options.get("expand_prompt", True),
            "num_images": int(clamp(options.get("num_images", 1), 1, 4)),
        }
        if params.seed is not None:
            payload["seed"] = params.seed
        if params.negative_prompt:
            payload["negative_prompt"] = params.negative_prompt
        for key in ("style", "style_codes", "color_palette"):
            if options.get(key):
                payload[key] = options[key]
        return payload

    def dimensions_for(self, params: ImageGenerationParams) -> tuple[int, int]:
        return FAL_IDEOGRAM_DIMENSIONS[params.aspect_ratio]

    def estimate_cost(self, params: ImageGenerationParams) -> float:
        width, height = self.dimensions_for(params)
        return self.cost_for(params, width, height)

    def cost_for(self, params: ImageGenerationParams, width: int, height: int) -> float:
        rate = FAL_IDEOGRAM_COST_PER_MEGAPIXEL.get(self.rendering_speed(params), 0.06)
        return round(width * height / 1_000_000 * rate, 4)


class FalUpscaler:
    """Clarity upscaler used by the upscale action."""

    model = "fal-ai/clarity-upscaler"

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None) -> None:
        if not config.api_key:
            raise ImageGenerationError(
                "FAL_KEY is required for upscaling", ErrorCode.INVALID_API_KEY, "fal-upscaler"
            )
        self.config = config
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    def build_payload(self, image_url: str, upscale_factor: int = 2) -> dict[str, Any]:
        return {
            "image_url": image_url,
            "prompt": "masterpiece, best quality, highres",
            "upscale_factor": upscale_factor,
            "negative_prompt": "(worst quality, low quality, normal quality:2)",
            "creativity": 0.35,
            "resemblance": 0.6,
            "guidance_scale": 4,
            "num_inference_steps": 18,
            "enable_safety_checker": True,
        }

    async def upscale(self, image_url: str, upscale_factor: int = 2) -> bytes:
        """Upscale the image behind ``image_url`` and return the new bytes."""
        endpoint = f"{self.config.base_url or FAL_BASE_URL}/{self.model}"
        logger.info(f"Upscaling image with {self.model} (x{upscale_factor})")
        try:
            response = await self.client.post(
                endpoint,
                headers={"Authorization": f"Key {self.config.api_key}"},
                json=self.build_payload(image_url, upscale_factor),
            )
            response.raise_for_status()
            url = (response.json().get("image") or {}).get("url")
            if not url:
                raise ImageGenerationError(
                    "No upscaled image returned", ErrorCode.GENERATION_FAILED, "fal-upscaler"
                )
            download = await self.client.get(url)
            download.raise_for_status()
        except ImageGenerationError:
            raise
        except httpx.HTTPStatusError as e:
            raise ImageGenerationError(
                f"Upscale failed ({e.response.status_code}): {e.response.text[:200]}",
                ErrorCode.GENERATION_FAILED,
                "fal-upscaler",
                e.response.status_code >= 500,
            ) from e
        except httpx.HTTPError as e:
            raise ImageGenerationError(
                f"Upscale request failed: {e}", ErrorCode.NETWORK_ERROR, "fal-upscaler", True
            ) from e
        return download.content

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
