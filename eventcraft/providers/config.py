"""Provider configuration loaded from settings."""

from typing import Any

from loguru import logger

from ..config import Settings
from ..exceptions import ConfigurationError
from .types import ProviderConfig, ProviderType


def load_provider_configs(settings: Settings) -> dict[ProviderType, ProviderConfig]:
    """Build the provider table from environment driven settings."""
    timeout = float(settings.provider_timeout)
    return {
        ProviderType.IDEOGRAM: ProviderConfig(
            api_key=settings.ideogram_api_key,
            base_url=settings.ideogram_base_url,
            enabled=bool(settings.ideogram_api_key),
            priority=100,
            timeout=timeout,
            options={"version": "v3", "rendering_speed": "TURBO"},
        ),
        ProviderType.HUGGINGFACE: ProviderConfig(
            api_key=settings.hugging_face_api_token,
            base_url=settings.huggingface_base_url,
            enabled=bool(settings.hugging_face_api_token),
            priority=90,
            timeout=timeout,
            options={"model": settings.huggingface_model},
        ),
        ProviderType.QWEN: ProviderConfig(
            api_key=settings.hugging_face_api_token,
            base_url=settings.huggingface_base_url,
            enabled=bool(settings.hugging_face_api_token),
            priority=95,
            timeout=timeout,
            options={"model": "Qwen/Qwen-Image"},
        ),
        ProviderType.STABILITY: ProviderConfig(
            api_key=settings.stability_api_key,
            base_url="https://api.stability.ai",
            enabled=False,
            priority=80,
            timeout=timeout,
        ),
        ProviderType.FAL_QWEN: ProviderConfig(
            api_key=settings.fal_key,
            base_url=settings.fal_base_url,
            enabled=bool(settings.fal_key),
            priority=101,
            timeout=timeout,
            options={"model": "fal-ai/qwen-image"},
        ),
        ProviderType.FAL_IDEOGRAM: ProviderConfig(
            api_key=settings.fal_key,
            base_url=settings.fal_base_url,
            enabled=bool(settings.fal_key),
            priority=102,
            timeout=timeout,
            options={"model": "fal-ai/ideogram/v3", "rendering_speed": "BALANCED"},
        ),
    }


def parse_provider(value: str | ProviderType) -> ProviderType:
    """Parse a provider name, raising ConfigurationError for unknown names."""
    if isinstance(value, ProviderType):
        return value
    try:
        return ProviderType(value.strip().lower())
    except ValueError as e:
        raise ConfigurationError(f"Unknown image generation provider: {value}") from e


class ProviderConfigManager:
    """Selects the default provider and fallback order."""

    def __init__(
        self,
        configs: dict[ProviderType, ProviderConfig],
        preferred_default: str | None = None,
    ) -> None:
        self.configs = configs
        self.default_provider = self._resolve_default(preferred_default)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderConfigManager":
        return cls(load_provider_configs(settings), settings.image_generation_provider)

    def _resolve_default(self, preferred: str | None) -> ProviderType | None:
        if preferred:
            try:
                provider = parse_provider(preferred)
            except ConfigurationError:
                logger.warning(f"Ignoring unknown default provider {preferred!r}")
            else:
                config = self.configs.get(provider)
                if config and config.enabled:
                    return provider
                logger.warning(f"Default provider {provider.value} is not enabled, picking by priority")

        available = self.get_available_providers()
        return available[0] if available else None

    def get_config(self, provider: ProviderType) -> ProviderConfig | None:
        return self.configs.get(provider)

    def get_available_providers(self) -> list[ProviderType]:
        """Enabled providers, highest priority first."""
        enabled = [p for p, c in self.configs.items() if c.enabled]
        return sorted(enabled, key=lambda p: self.configs[p].priority, reverse=True)

    def get_fallback_providers(self, primary: ProviderType) -> list[ProviderType]:
        return [p for p in self.get_available_providers() if p != primary]

    def is_available(self, provider: ProviderType) -> bool:
        config = self.configs.get(provider)
        return bool(config and config.enabled)

    def set_default_provider(self, provider: str | ProviderType) -> ProviderType:
        provider = parse_provider(provider)
        config = self.configs.get(provider)
        if config is None:
            raise ConfigurationError(f"Provider {provider.value} is not configured")
        if not config.enabled:
            raise ConfigurationError(f"Provider {provider.value} is disabled")
        self.default_provider = provider
        logger.info(f"Default image provider set to {provider.value}")
        return provider

    def set_provider_enabled(self, provider: str | ProviderType, enabled: bool) -> None:
        provider = parse_provider(provider)
        config = self.configs.get(provider)
        if config is None:
            raise ConfigurationError(f"Provider {provider.value} is not configured")
        if enabled and not config.api_key:
            raise ConfigurationError(f"Provider {provider.value} has no API key")
        config.enabled = enabled
        logger.info(f"Provider {provider.value} {'enabled' if enabled else 'disabled'}")

        if not enabled and self.default_provider == provider:
            available = self.get_available_providers()
            self.default_provider = available[0] if available else None

    def update_provider_config(self, provider: str | ProviderType, **changes: Any) -> ProviderConfig:
        provider = parse_provider(provider)
        config = self.configs.get(provider)
        if config is None:
            raise ConfigurationError(f"Provider {provider.value} is not configured")
        for key, value in changes.items():
            if not hasattr(config, key):
                raise ConfigurationError(f"Unknown provider setting: {key}")
            setattr(config, key, value)
        return config

    def add_provider_config(self, provider: ProviderType, config: ProviderConfig) -> None:
        self.configs[provider] = config

    def get_config_summary(self) -> dict[str, Any]:
        return {
            "default_provider": self.default_provider.value if self.default_provider else None,
            "available_providers": [p.value for p in self.get_available_providers()],
            "providers": {p.value: c.summary() for p, c in self.configs.items()},
        }

    def validate_configurations(self) -> dict[str, list[str]]:
        """Problems per enabled provider; an empty dict means everything is usable."""
        problems: dict[str, list[str]] = {}
        for provider, config in self.configs.items():
            if not config.enabled:
                continue
            issues = []
            if not config.api_key:
                issues.append("Missing API key")
            if not config.base_url and provider != ProviderType.HUGGINGFACE:
                issues.append("Missing base URL")
            if issues:
                problems[provider.value] = issues
        return problems
