"""Image generation providers with a registry and fallback manager."""

import httpx
from loguru import logger

from ..config import Settings
from ..exceptions import ConfigurationError, ImageGenerationError
from ..retry import RetryConfig
from .base import BaseImageProvider
from .config import ProviderConfigManager, load_provider_configs, parse_provider
from .fal import FalIdeogramProvider, FalQwenProvider, FalUpscaler
from .fallback import ProviderCircuitBreaker, ProviderManager
from .huggingface import HuggingFaceProvider, QwenInferenceProvider
from .ideogram import IdeogramProvider
from .types import (
    AspectRatio,
    ImageGenerationParams,
    ImageGenerationResponse,
    ImageQuality,
    ProviderCapabilities,
    ProviderConfig,
    ProviderType,
    normalize_aspect_ratio,
)

PROVIDER_CLASSES: dict[ProviderType, type[BaseImageProvider]] = {
    ProviderType.IDEOGRAM: IdeogramProvider,
    ProviderType.HUGGINGFACE: HuggingFaceProvider,
    ProviderType.QWEN: QwenInferenceProvider,
    ProviderType.FAL_QWEN: FalQwenProvider,
    ProviderType.FAL_IDEOGRAM: FalIdeogramProvider,
}


def create_provider(
    provider_type: ProviderType,
    config: ProviderConfig,
    client: httpx.AsyncClient | None = None,
) -> BaseImageProvider:
    """Instantiate one provider client."""
    provider_class = PROVIDER_CLASSES.get(provider_type)
    if provider_class is None:
        raise ConfigurationError(f"No client implementation for provider {provider_type.value}")
    return provider_class(config, client)


def create_provider_manager(
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> ProviderManager:
    """Factory function to build the provider registry from settings."""
    config_manager = ProviderConfigManager.from_settings(settings)

    for provider, issues in config_manager.validate_configurations().items():
        logger.warning(f"Provider {provider} misconfigured: {', '.join(issues)}")

    manager = ProviderManager(
        config_manager,
        circuit_breaker=ProviderCircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.circuit_reset_timeout,
        ),
        retry_config=RetryConfig(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_multiplier=settings.retry_backoff_multiplier,
        ),
    )

    for provider_type in config_manager.get_available_providers():
        if provider_type not in PROVIDER_CLASSES:
            logger.debug(f"Provider {provider_type.value} has no client, skipping")
            continue
        config = config_manager.configs[provider_type]
        try:
            manager.register(create_provider(provider_type, config, client))
        except ImageGenerationError as e:
            logger.warning(f"Could not initialise {provider_type.value}: {e}")

    if not manager.providers:
        logger.warning("No image generation providers configured")
    else:
        default = config_manager.default_provider
        logger.info(
            f"Image providers ready: {', '.join(p.value for p in manager.providers)} "
            f"(default: {default.value if default else 'none'})"
        )
    return manager


def create_upscaler(settings: Settings, client: httpx.AsyncClient | None = None) -> FalUpscaler | None:
    """Upscaler client when a Fal key is configured."""
    if not settings.fal_key:
        return None
    config = ProviderConfig(
        api_key=settings.fal_key,
        base_url=settings.fal_base_url,
        timeout=float(settings.provider_timeout),
    )
    return FalUpscaler(config, client)


__all__ = [
    "AspectRatio",
    "BaseImageProvider",
    "FalIdeogramProvider",
    "FalQwenProvider",
    "FalUpscaler",
    "HuggingFaceProvider",
    "IdeogramProvider",
    "ImageGenerationParams",
    "ImageGenerationResponse",
    "ImageQuality",
    "PROVIDER_CLASSES",
    "ProviderCapabilities",
    "ProviderCircuitBreaker",
    "ProviderConfig",
    "ProviderConfigManager",
    "ProviderManager",
    "ProviderType",
    "QwenInferenceProvider",
    "create_provider",
    "create_provider_manager",
    "create_upscaler",
    "load_provider_configs",
    "normalize_aspect_ratio",
    "parse_provider",
]
