"""HuggingFace Inference API providers (SDXL family and Qwen-Image)."""

from typing import Any

from ..exceptions import ErrorCode, ImageGenerationError
from .base import BaseImageProvider
from .types import (
    ALL_QUALITIES,
    ALL_RATIOS,
    STANDARD_DIMENSIONS,
    AspectRatio,
    ImageGenerationParams,
    ImageGenerationResponse,
    ImageQuality,
    Pricing,
    ProviderCapabilities,
    ProviderType,
    RateLimits,
)

HUGGINGFACE_BASE_URL = "https://api-inference.huggingface.co"

HUGGINGFACE_MODELS = {
    "sdxl": "stabilityai/stable-diffusion-xl-base-1.0",
    "flux-schnell": "black-forest-labs/FLUX.1-schnell",
    "sd-1.5": "runwayml/stable-diffusion-v1-5",
}

HF_QUALITY_STEPS = {
    ImageQuality.FAST: 10,
    ImageQuality.STANDARD: 20,
    ImageQuality.HIGH: 30,
    ImageQuality.ULTRA: 40,
}

QUALITY_SUFFIX = ", high quality, detailed, professional"


class HuggingFaceProvider(BaseImageProvider):
    """Text-to-image through the serverless inference endpoint."""

    provider_type = ProviderType.HUGGINGFACE
    default_model = HUGGINGFACE_MODELS["sdxl"]

    @property
    def model(self) -> str:
        model = self.config.options.get("model", self.default_model)
        return HUGGINGFACE_MODELS.get(model, model)

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url or HUGGINGFACE_BASE_URL}/models/{self.model}"

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supported_aspect_ratios=(
                AspectRatio.SQUARE,
                AspectRatio.LANDSCAPE_16_9,
                AspectRatio.PORTRAIT_9_16,
                AspectRatio.LANDSCAPE_4_3,
                AspectRatio.PORTRAIT_3_4,
                AspectRatio.PHOTO_3_2,
                AspectRatio.PHOTO_2_3,
            ),
            supported_qualities=ALL_QUALITIES,
            max_prompt_length=500,
            supports_seeds=False,
            supports_style_images=False,
            supports_image_editing=False,
            rate_limits=RateLimits(30, 300, 1000),
            pricing=Pricing(cost_per_image=0.01, free_quota=1000),
        )

    def build_payload(self, params: ImageGenerationParams) -> dict[str, Any]:
        prompt = params.prompt
        if params.effective_quality in (ImageQuality.HIGH, ImageQuality.ULTRA):
            prompt += QUALITY_SUFFIX
        parameters: dict[str, Any] = {
            "guidance_scale": 7.5,
            "num_inference_steps": HF_QUALITY_STEPS[params.effective_quality],
        }
        if params.negative_prompt:
            parameters["negative_prompt"] = params.negative_prompt
        return {"inputs": prompt, "parameters": parameters}

    def dimensions_for(self, params: ImageGenerationParams) -> tuple[int, int]:
        return 1024, 1024

    def error_for_status(self, status_code: int, message: str) -> ImageGenerationError:
        lowered = message.lower()
        if status_code == 429 or "rate limit" in lowered:
            return ImageGenerationError(
                f"HuggingFace rate limit: {message}", ErrorCode.RATE_LIMITED, self.name, True
            )
        if status_code == 503 or "loading" in lowered:
            return ImageGenerationError(
                f"HuggingFace model is loading: {message}",
                ErrorCode.SERVICE_UNAVAILABLE,
                self.name,
                True,
            )
        return super().error_for_status(status_code, message)

    async def _generate(self, params: ImageGenerationParams) -> ImageGenerationResponse:
        payload = self.build_payload(params)
        response = await self.client.post(
            self.endpoint,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        self.check_response(response)

        content_type = response.headers.get("content-type", "").split(";")[0]
        if not content_type.startswith("image/"):
            raise ImageGenerationError(
                f"Expected image response, got {content_type or 'unknown content type'}",
                ErrorCode.GENERATION_FAILED,
                self.name,
            )

        width, height = self.dimensions_for(params)
        return ImageGenerationResponse(
            image_data=response.content,
            mime_type=content_type,
            provider=self.provider_type,
            cost=self.estimate_cost(params),
            generation_time_ms=0,
            width=width,
            height=height,
            aspect_ratio=params.aspect_ratio,
            prompt=params.prompt,
            quality=params.effective_quality,
            provider_data={"model": self.model, "parameters": payload["parameters"]},
        )


QWEN_QUALITY_STEPS = {
    ImageQuality.FAST: 15,
    ImageQuality.STANDARD: 25,
    ImageQuality.HIGH: 35,
    ImageQuality.ULTRA: 50,
}


class QwenInferenceProvider(HuggingFaceProvider):
    """Qwen-Image routed through HuggingFace inference providers."""

    provider_type = ProviderType.QWEN
    default_model = "Qwen/Qwen-Image"

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supported_aspect_ratios=ALL_RATIOS,
            supported_qualities=ALL_QUALITIES,
            max_prompt_length=1000,
            supports_seeds=False,
            supports_style_images=False,
            supports_image_editing=False,
            rate_limits=RateLimits(100, 1000, 10000),
            pricing=Pricing(cost_per_image=0.02),
        )

    def dimensions_for(self, params: ImageGenerationParams) -> tuple[int, int]:
        return STANDARD_DIMENSIONS[params.aspect_ratio]

    def build_payload(self, params: ImageGenerationParams) -> dict[str, Any]:
        width, height = self.dimensions_for(params)
        return {
            "inputs": params.prompt,
            "parameters": {
                "num_inference_steps": QWEN_QUALITY_STEPS[params.effective_quality],
                "true_cfg_scale": 4.0,
                "width": width,
                "height": height,
                "negative_prompt": params.negative_prompt or " ",
            },
        }
