"""Circuit breaker and fallback orchestration across providers."""

import asyncio
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from loguru import logger

from ..exceptions import ErrorCode, ImageGenerationError
from ..retry import RetryConfig, provider_retrying
from ..types import CircuitStatus, ProviderHealth
from .base import BaseImageProvider
from .config import ProviderConfigManager
from .types import ALL_QUALITIES, ImageGenerationParams, ImageGenerationResponse, ProviderType

# Errors caused by the request itself or by credentials; another provider will not help.
NO_FALLBACK_CODES = frozenset(
    {
        ErrorCode.INVALID_PARAMETERS,
        ErrorCode.PROMPT_TOO_LONG,
        ErrorCode.UNSUPPORTED_ASPECT_RATIO,
        ErrorCode.INVALID_API_KEY,
        ErrorCode.UNAUTHORIZED,
    }
)


class ProviderCircuitBreaker:
    """Stops sending traffic to a provider after repeated failures."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._failures: dict[ProviderType, int] = {}
        self._last_failure: dict[ProviderType, float] = {}
        self._open: set[ProviderType] = set()

    def is_available(self, provider: ProviderType) -> bool:
        if provider not in self._open:
            return True
        if self._clock() - self._last_failure.get(provider, 0.0) >= self.reset_timeout:
            logger.info(f"Circuit for {provider.value} half-open after {self.reset_timeout}s, retrying")
            self.reset(provider)
            return True
        return False

    def record_failure(self, provider: ProviderType) -> None:
        self._failures[provider] = self._failures.get(provider, 0) + 1
        self._last_failure[provider] = self._clock()
        if self._failures[provider] >= self.failure_threshold and provider not in self._open:
            self._open.add(provider)
            logger.warning(
                f"Circuit opened for {provider.value} after {self._failures[provider]} failures"
            )

    def record_success(self, provider: ProviderType) -> None:
        if self._failures.get(provider) or provider in self._open:
            self.reset(provider)

    def reset(self, provider: ProviderType) -> None:
        self._failures.pop(provider, None)
        self._last_failure.pop(provider, None)
        self._open.discard(provider)

    def get_status(self, providers: list[ProviderType] | None = None) -> dict[str, CircuitStatus]:
        """Failure count, seconds since last failure and open state per provider."""
        now = self._clock()
        known = providers or sorted(
            set(self._failures) | self._open, key=lambda p: p.value
        )
        status: dict[str, CircuitStatus] = {}
        for provider in known:
            last = self._last_failure.get(provider)
            status[provider.value] = {
                "failures": self._failures.get(provider, 0),
                "seconds_since_failure": round(now - last, 1) if last is not None else None,
                "is_open": provider in self._open,
            }
        return status


class ProviderManager:
    """Runs a generation against the preferred provider, then the fallbacks."""

    def __init__(
        self,
        config_manager: ProviderConfigManager,
        providers: dict[ProviderType, BaseImageProvider] | None = None,
        circuit_breaker: ProviderCircuitBreaker | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.config_manager = config_manager
        self.providers: dict[ProviderType, BaseImageProvider] = dict(providers or {})
        self.circuit_breaker = circuit_breaker or ProviderCircuitBreaker()
        self.retry_config = retry_config or RetryConfig()

    def register(self, provider: BaseImageProvider) -> None:
        self.providers[provider.provider_type] = provider

    def get_provider(self, provider: ProviderType) -> BaseImageProvider | None:
        return self.providers.get(provider)

    @property
    def default_provider(self) -> ProviderType | None:
        return self.config_manager.default_provider

    def supports_seeds(self, provider: ProviderType | None) -> bool:
        instance = self.providers.get(provider) if provider else None
        return bool(instance and instance.get_capabilities().supports_seeds)

    def fallback_order(self, preferred: ProviderType | None = None) -> list[ProviderType]:
        available = self.config_manager.get_available_providers()
        if preferred is None:
            return available
        order = [preferred, *self.config_manager.get_fallback_providers(preferred)]
        return [p for p in order if p in available]

    def adapt_params(
        self, provider: BaseImageProvider, params: ImageGenerationParams
    ) -> ImageGenerationParams:
        """Drop what the provider cannot honour instead of failing the whole fallback chain."""
        capabilities = provider.get_capabilities()
        changes: dict[str, Any] = {}
        if params.seed is not None and not capabilities.supports_seeds:
            changes["seed"] = None
        if params.quality and params.quality not in capabilities.supported_qualities:
            requested = ALL_QUALITIES.index(params.quality)
            downgrades = [q for q in capabilities.supported_qualities if ALL_QUALITIES.index(q) <= requested]
            changes["quality"] = max(downgrades, key=ALL_QUALITIES.index) if downgrades else None
        return replace(params, **changes) if changes else params

    async def generate_with_retry(
        self, provider: BaseImageProvider, params: ImageGenerationParams
    ) -> ImageGenerationResponse:
        retrying = provider_retrying(self.retry_config, provider.name)
        return await retrying(provider.generate_image, params)

    async def generate_with_fallback(
        self,
        params: ImageGenerationParams,
        preferred: ProviderType | None = None,
    ) -> ImageGenerationResponse:
        """Generate an image, walking the fallback chain until one provider succeeds.

        Raises:
            ImageGenerationError: Immediately for request or credential errors,
                otherwise the last provider error once every provider failed.
                Unexpected exceptions from a provider count as
                `GENERATION_FAILED` and move on to the next provider.

        """
        order = self.fallback_order(preferred)
        last_error: ImageGenerationError | None = None

        for index, provider_type in enumerate(order):
            provider = self.providers.get(provider_type)
            if provider is None:
                logger.debug(f"Provider {provider_type.value} not registered, skipping")
                continue
            if not self.circuit_breaker.is_available(provider_type):
                logger.info(f"Circuit open for {provider_type.value}, skipping")
                continue
            if not provider.supports_aspect_ratio(params.aspect_ratio):
                logger.debug(
                    f"{provider_type.value} does not support {params.aspect_ratio.value}, skipping"
                )
                last_error = ImageGenerationError(
                    f"Aspect ratio {params.aspect_ratio.value} is not supported by any available provider",
                    ErrorCode.UNSUPPORTED_ASPECT_RATIO,
                    provider_type.value,
                )
                continue

            try:
                response = await self.generate_with_retry(provider, self.adapt_params(provider, params))
            except ImageGenerationError as e:
                self.circuit_breaker.record_failure(provider_type)
                last_error = e
                if e.code in NO_FALLBACK_CODES:
                    raise
                logger.warning(f"Provider {provider_type.value} failed ({e.code.value}), trying next")
                continue
            except Exception as e:  # noqa: BLE001
                self.circuit_breaker.record_failure(provider_type)
                last_error = ImageGenerationError(
                    f"Unexpected error from {provider_type.value}: {e}",
                    ErrorCode.GENERATION_FAILED,
                    provider_type.value,
                )
                logger.exception(f"Provider {provider_type.value} raised unexpectedly, trying next")
                continue

            self.circuit_breaker.record_success(provider_type)
            if index > 0:
                logger.info(f"Generated with fallback provider {provider_type.value}")
                response.provider_data["fallback_used"] = True
            return response

        if last_error is not None:
            raise last_error
        raise ImageGenerationError(
            "All image generation providers failed",
            ErrorCode.SERVICE_UNAVAILABLE,
            preferred.value if preferred else None,
            True,
        )

    async def get_providers_health(self) -> dict[str, ProviderHealth]:
        """Run every registered provider's health check concurrently."""
        names = list(self.providers)
        results = await asyncio.gather(
            *(self.providers[p].health_check() for p in names), return_exceptions=True
        )
        health: dict[str, ProviderHealth] = {}
        for provider_type, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(f"Health check for {provider_type.value} raised: {result}")
            health[provider_type.value] = {
                "available": self.config_manager.is_available(provider_type),
                "healthy": result is True,
                "circuit_open": not self.circuit_breaker.is_available(provider_type),
            }
        return health

    def reset_circuit_breaker(self, provider: ProviderType) -> None:
        self.circuit_breaker.reset(provider)
        logger.info(f"Circuit breaker reset for {provider.value}")

    def get_status(self) -> dict[str, Any]:
        summary = self.config_manager.get_config_summary()
        summary["registered_providers"] = [p.value for p in self.providers]
        summary["circuits"] = self.circuit_breaker.get_status(list(self.providers))
        return summary

    async def aclose(self) -> None:
        for provider in self.providers.values():
            await provider.aclose()
