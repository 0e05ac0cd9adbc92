"""Base class shared by every image generation provider."""

import base64
import binascii
import time
from abc import ABC, abstractmethod

import httpx
from loguru import logger

from ..exceptions import ErrorCode, ImageGenerationError
from .types import (
    AspectRatio,
    ImageGenerationParams,
    ImageGenerationResponse,
    ImageQuality,
    ProviderCapabilities,
    ProviderConfig,
    ProviderType,
)


def sniff_mime_type(data: bytes) -> str:
    """Guess an image mime type from its magic bytes."""
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return "image/png"


class BaseImageProvider(ABC):
    """Common validation, error mapping and metrics for providers.

    Subclasses implement ``get_capabilities`` and ``_generate``; callers go
    through ``generate_image`` which validates, times and logs the call and
    turns every failure into an ``ImageGenerationError``.
    """

    provider_type: ProviderType

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None) -> None:
        if not config.api_key:
            raise ImageGenerationError(
                f"API key is required for {self.provider_type.value} provider",
                ErrorCode.INVALID_API_KEY,
                self.provider_type.value,
            )
        self.config = config
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    @property
    def name(self) -> str:
        return self.provider_type.value

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        """Describe what this provider supports."""

    @abstractmethod
    async def _generate(self, params: ImageGenerationParams) -> ImageGenerationResponse:
        """Call the remote API and return the downloaded image."""

    async def generate_image(self, params: ImageGenerationParams) -> ImageGenerationResponse:
        """Validate, generate and log a single image."""
        started = time.perf_counter()
        try:
            self.validate_params(params)
            self._log_metrics("generation_start", params)
            response = await self._generate(params)
        except Exception as e:
            error = self.handle_error(e, "generate_image")
            self._log_metrics("generation_error", params, error=error)
            raise error from e

        response.generation_time_ms = int((time.perf_counter() - started) * 1000)
        self._log_metrics("generation_success", params, response=response)
        return response

    def supports_aspect_ratio(self, ratio: AspectRatio) -> bool:
        return ratio in self.get_capabilities().supported_aspect_ratios

    def validate_params(self, params: ImageGenerationParams) -> None:
        """Raise if the request cannot be served by this provider."""
        capabilities = self.get_capabilities()

        if not params.prompt or not params.prompt.strip():
            self._fail("Prompt is required", ErrorCode.INVALID_PARAMETERS)

        if len(params.prompt) > capabilities.max_prompt_length:
            self._fail(
                f"Prompt too long. Maximum length is {capabilities.max_prompt_length} characters",
                ErrorCode.PROMPT_TOO_LONG,
            )

        if params.aspect_ratio not in capabilities.supported_aspect_ratios:
            self._fail(
                f"Aspect ratio {params.aspect_ratio.value} is not supported by {self.name}",
                ErrorCode.UNSUPPORTED_ASPECT_RATIO,
            )

        if params.quality and params.quality not in capabilities.supported_qualities:
            self._fail(
                f"Quality {params.quality.value} is not supported by {self.name}",
                ErrorCode.INVALID_PARAMETERS,
            )

        if params.style_images and not capabilities.supports_style_images:
            self._fail(f"Style images are not supported by {self.name}", ErrorCode.INVALID_PARAMETERS)

        if params.seed is not None and not capabilities.supports_seeds:
            self._fail(f"Seeds are not supported by {self.name}", ErrorCode.INVALID_PARAMETERS)

    def estimate_cost(self, params: ImageGenerationParams) -> float:
        """Estimated USD cost of one image."""
        return self.get_capabilities().pricing.cost_per_image

    def error_for_status(self, status_code: int, message: str) -> ImageGenerationError:
        """Map an HTTP status from the provider to an error code."""
        match status_code:
            case 401 | 403:
                return ImageGenerationError(
                    f"Unauthorized: {message}", ErrorCode.UNAUTHORIZED, self.name
                )
            case 402:
                return ImageGenerationError(
                    f"Quota exceeded: {message}", ErrorCode.QUOTA_EXCEEDED, self.name
                )
            case 429:
                return ImageGenerationError(
                    f"Rate limit exceeded: {message}", ErrorCode.RATE_LIMITED, self.name, True
                )
            case 503:
                return ImageGenerationError(
                    f"Service unavailable: {message}",
                    ErrorCode.SERVICE_UNAVAILABLE,
                    self.name,
                    True,
                )
        return ImageGenerationError(
            f"Generation failed ({status_code}): {message}",
            ErrorCode.GENERATION_FAILED,
            self.name,
            status_code >= 500,
        )

    def handle_error(self, error: Exception, operation: str) -> ImageGenerationError:
        """Normalize any exception raised during ``operation``."""
        if isinstance(error, ImageGenerationError):
            return error

        if isinstance(error, httpx.HTTPStatusError):
            return self.error_for_status(error.response.status_code, error.response.text[:200])

        if isinstance(error, httpx.TimeoutException | TimeoutError):
            return ImageGenerationError(
                f"{self.name} {operation} timed out", ErrorCode.TIMEOUT, self.name, True
            )

        if isinstance(error, httpx.TransportError | ConnectionError):
            return ImageGenerationError(
                f"Network error during {operation}: {error}",
                ErrorCode.NETWORK_ERROR,
                self.name,
                True,
            )

        return ImageGenerationError(
            f"Unexpected error during {operation}: {error}", ErrorCode.UNKNOWN_ERROR, self.name
        )

    def check_response(self, response: httpx.Response) -> None:
        """Raise a mapped error for non-2xx responses."""
        if response.is_error:
            raise self.error_for_status(response.status_code, response.text[:200])

    async def fetch_image(self, source: bytes | str) -> tuple[bytes, str]:
        """Resolve raw bytes, data URLs, http URLs or bare base64 into image bytes."""
        if isinstance(source, bytes):
            return source, sniff_mime_type(source)

        if source.startswith("data:"):
            header, _, payload = source.partition(",")
            mime_type = header[5:].split(";")[0] or "image/png"
            return self._decode_base64(payload), mime_type

        if source.startswith(("http://", "https://")):
            response = await self.client.get(source)
            self.check_response(response)
            content_type = response.headers.get("content-type", "").split(";")[0]
            data = response.content
            return data, content_type if content_type.startswith("image/") else sniff_mime_type(data)

        data = self._decode_base64(source)
        return data, sniff_mime_type(data)

    async def health_check(self) -> bool:
        """Configured and able to accept a simple request."""
        if not self.config.api_key or not self.config.enabled:
            return False
        probe = ImageGenerationParams(
            prompt="health check",
            aspect_ratio=AspectRatio.SQUARE,
            user_id="health-check",
            quality=ImageQuality.STANDARD,
        )
        try:
            self.validate_params(probe)
        except ImageGenerationError:
            return False
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _decode_base64(self, payload: str) -> bytes:
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ImageGenerationError(
                f"Invalid image data returned: {e}", ErrorCode.GENERATION_FAILED, self.name
            ) from e

    def _fail(self, message: str, code: ErrorCode) -> None:
        raise ImageGenerationError(message, code, self.name)

    def _log_metrics(
        self,
        event: str,
        params: ImageGenerationParams,
        response: ImageGenerationResponse | None = None,
        error: ImageGenerationError | None = None,
    ) -> None:
        data = {
            "provider": self.name,
            "aspect_ratio": params.aspect_ratio.value,
            "quality": params.effective_quality.value,
            "prompt_length": len(params.prompt),
        }
        if response is not None:
            data["generation_time_ms"] = response.generation_time_ms
            data["cost"] = response.cost
        if error is not None:
            data["error_code"] = error.code.value
            logger.bind(**data).warning(f"[{self.name}] {event}: {error}")
        else:
            logger.bind(**data).info(f"[{self.name}] {event}")
