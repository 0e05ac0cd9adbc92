"""Tests for provider configuration, circuit breaker and fallback manager."""

import pytest
from mock_provider import MockImageProvider, build_manager

from eventcraft.config import Settings
from eventcraft.exceptions import ConfigurationError, ErrorCode, ImageGenerationError
from eventcraft.providers import (
    ProviderCircuitBreaker,
    ProviderConfigManager,
    create_provider_manager,
    create_upscaler,
    parse_provider,
)
from eventcraft.providers.types import (
    AspectRatio,
    ImageGenerationParams,
    ImageGenerationResponse,
    ImageQuality,
    ProviderConfig,
    ProviderType,
)


def params(**kwargs) -> ImageGenerationParams:
    kwargs.setdefault("prompt", "Community picnic flyer")
    kwargs.setdefault("aspect_ratio", AspectRatio.SQUARE)
    kwargs.setdefault("user_id", "test-user")
    return ImageGenerationParams(**kwargs)


class BrokenProvider(MockImageProvider):
    """Raises from generate_image itself, bypassing the provider error mapping."""

    def __init__(self, provider_type: ProviderType, error: Exception) -> None:
        super().__init__(provider_type)
        self.error = error

    async def generate_image(self, params: ImageGenerationParams) -> ImageGenerationResponse:
        raise self.error


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestProviderConfig:
    """Provider table built from settings."""

    def test_parse_provider(self):
        assert parse_provider(" FAL-QWEN ") == ProviderType.FAL_QWEN
        assert parse_provider(ProviderType.QWEN) == ProviderType.QWEN
        with pytest.raises(ConfigurationError):
            parse_provider("midjourney")

    def test_default_by_priority(self):
        manager = ProviderConfigManager.from_settings(
            Settings(ideogram_api_key="ideo", fal_key="fal", image_generation_provider=None)
        )
        assert manager.default_provider == ProviderType.FAL_IDEOGRAM
        assert manager.get_available_providers() == [
            ProviderType.FAL_IDEOGRAM,
            ProviderType.FAL_QWEN,
            ProviderType.IDEOGRAM,
        ]

    def test_preferred_default(self):
        manager = ProviderConfigManager.from_settings(
            Settings(ideogram_api_key="ideo", fal_key="fal", image_generation_provider="ideogram")
        )
        assert manager.default_provider == ProviderType.IDEOGRAM

    def test_preferred_default_must_be_enabled(self):
        manager = ProviderConfigManager.from_settings(
            Settings(ideogram_api_key="ideo", image_generation_provider="fal-qwen")
        )
        assert manager.default_provider == ProviderType.IDEOGRAM

    def test_no_keys_no_default(self):
        manager = ProviderConfigManager.from_settings(Settings(image_generation_provider=None))
        assert manager.default_provider is None
        assert manager.get_available_providers() == []

    def test_set_default_provider(self):
        manager = ProviderConfigManager.from_settings(Settings(ideogram_api_key="ideo"))
        with pytest.raises(ConfigurationError, match="disabled"):
            manager.set_default_provider("fal-qwen")
        assert manager.set_default_provider("ideogram") == ProviderType.IDEOGRAM

    def test_disabling_default_picks_next(self):
        manager = ProviderConfigManager(
            {
                ProviderType.IDEOGRAM: ProviderConfig(api_key="a", priority=10),
                ProviderType.QWEN: ProviderConfig(api_key="b", priority=5),
            }
        )
        manager.set_provider_enabled("ideogram", False)

        assert manager.default_provider == ProviderType.QWEN
        assert manager.get_fallback_providers(ProviderType.QWEN) == []

    def test_enable_without_key_rejected(self):
        manager = ProviderConfigManager(
            {ProviderType.STABILITY: ProviderConfig(api_key=None, enabled=False)}
        )
        with pytest.raises(ConfigurationError, match="no API key"):
            manager.set_provider_enabled(ProviderType.STABILITY, True)

    def test_update_provider_config(self):
        manager = ProviderConfigManager({ProviderType.IDEOGRAM: ProviderConfig(api_key="a")})
        assert manager.update_provider_config("ideogram", priority=7).priority == 7
        with pytest.raises(ConfigurationError):
            manager.update_provider_config("ideogram", colour="red")

    def test_validate_configurations(self):
        manager = ProviderConfigManager(
            {ProviderType.IDEOGRAM: ProviderConfig(api_key=None, base_url=None, enabled=True)}
        )
        assert manager.validate_configurations() == {
            "ideogram": ["Missing API key", "Missing base URL"]
        }

    def test_summary_has_no_keys(self):
        manager = ProviderConfigManager.from_settings(Settings(ideogram_api_key="secret-key"))
        assert "secret-key" not in str(manager.get_config_summary())


class TestFactories:
    @pytest.mark.asyncio
    async def test_create_provider_manager_registers_enabled(self):
        manager = create_provider_manager(Settings(ideogram_api_key="ideo", fal_key="fal"))

        assert set(manager.providers) == {
            ProviderType.IDEOGRAM,
            ProviderType.FAL_QWEN,
            ProviderType.FAL_IDEOGRAM,
        }
        await manager.aclose()

    def test_create_upscaler(self):
        assert create_upscaler(Settings(fal_key=None)) is None
        assert create_upscaler(Settings(fal_key="fal")) is not None


class TestCircuitBreaker:
    """Circuit breaker state transitions."""

    def test_opens_after_threshold(self):
        breaker = ProviderCircuitBreaker(failure_threshold=3, clock=FakeClock())

        for _ in range(2):
            breaker.record_failure(ProviderType.IDEOGRAM)
        assert breaker.is_available(ProviderType.IDEOGRAM)

        breaker.record_failure(ProviderType.IDEOGRAM)
        assert not breaker.is_available(ProviderType.IDEOGRAM)

    def test_half_open_after_timeout(self):
        clock = FakeClock()
        breaker = ProviderCircuitBreaker(failure_threshold=1, reset_timeout=60, clock=clock)
        breaker.record_failure(ProviderType.IDEOGRAM)

        clock.now += 59
        assert not breaker.is_available(ProviderType.IDEOGRAM)
        clock.now += 1
        assert breaker.is_available(ProviderType.IDEOGRAM)
        assert breaker.get_status([ProviderType.IDEOGRAM])["ideogram"]["failures"] == 0

    def test_success_resets(self):
        breaker = ProviderCircuitBreaker(failure_threshold=5, clock=FakeClock())
        breaker.record_failure(ProviderType.QWEN)
        breaker.record_success(ProviderType.QWEN)
        assert breaker.get_status() == {}

    def test_status(self):
        clock = FakeClock()
        breaker = ProviderCircuitBreaker(failure_threshold=1, clock=clock)
        breaker.record_failure(ProviderType.FAL_QWEN)
        clock.now += 12.34

        assert breaker.get_status() == {
            "fal-qwen": {"failures": 1, "seconds_since_failure": 12.3, "is_open": True}
        }


class TestProviderManager:
    """Fallback orchestration."""

    @pytest.mark.asyncio
    async def test_preferred_provider_first(self):
        first = MockImageProvider(ProviderType.IDEOGRAM)
        second = MockImageProvider(ProviderType.QWEN)
        manager = build_manager(first, second)

        response = await manager.generate_with_fallback(params(), preferred=ProviderType.QWEN)

        assert response.provider == ProviderType.QWEN
        assert first.calls == []
        assert manager.fallback_order(ProviderType.QWEN) == [ProviderType.QWEN, ProviderType.IDEOGRAM]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_fallback_on_provider_error(self):
        first = MockImageProvider(ProviderType.IDEOGRAM)
        second = MockImageProvider(ProviderType.QWEN)
        first.fail_with(ImageGenerationError("limit", ErrorCode.RATE_LIMITED, "ideogram", True))
        manager = build_manager(first, second)

        response = await manager.generate_with_fallback(params())

        assert response.provider == ProviderType.QWEN
        assert response.provider_data["fallback_used"] is True
        assert manager.circuit_breaker.get_status()["ideogram"]["failures"] == 1
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_request_errors_do_not_fall_back(self):
        first = MockImageProvider(ProviderType.IDEOGRAM)
        second = MockImageProvider(ProviderType.QWEN)
        first.fail_with(ImageGenerationError("bad", ErrorCode.INVALID_PARAMETERS, "ideogram"))
        manager = build_manager(first, second)

        with pytest.raises(ImageGenerationError) as exc_info:
            await manager.generate_with_fallback(params())

        assert exc_info.value.code == ErrorCode.INVALID_PARAMETERS
        assert second.calls == []
        assert manager.circuit_breaker.get_status()["ideogram"]["failures"] == 1
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_unexpected_exception_falls_back(self):
        first = BrokenProvider(ProviderType.IDEOGRAM, KeyError('"detail"'))
        second = MockImageProvider(ProviderType.QWEN)
        manager = build_manager(first, second)

        response = await manager.generate_with_fallback(params())

        assert response.provider == ProviderType.QWEN
        assert manager.circuit_breaker.get_status()["ideogram"]["failures"] == 1
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_unexpected_exception_from_last_provider(self):
        only = BrokenProvider(ProviderType.IDEOGRAM, RuntimeError("boom"))
        manager = build_manager(only)

        with pytest.raises(ImageGenerationError) as exc_info:
            await manager.generate_with_fallback(params())

        assert exc_info.value.code == ErrorCode.GENERATION_FAILED
        assert exc_info.value.provider == "ideogram"
        assert "boom" in str(exc_info.value)
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_all_providers_fail(self):
        first = MockImageProvider(ProviderType.IDEOGRAM)
        second = MockImageProvider(ProviderType.QWEN)
        first.fail_with(ImageGenerationError("down", ErrorCode.SERVICE_UNAVAILABLE, "ideogram", True))
        second.fail_with(ImageGenerationError("down", ErrorCode.NETWORK_ERROR, "qwen", True))
        manager = build_manager(first, second)

        with pytest.raises(ImageGenerationError) as exc_info:
            await manager.generate_with_fallback(params())

        assert exc_info.value.provider == "qwen"
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_open_circuit_is_skipped(self):
        first = MockImageProvider(ProviderType.IDEOGRAM)
        second = MockImageProvider(ProviderType.QWEN)
        manager = build_manager(first, second, failure_threshold=1)
        manager.circuit_breaker.record_failure(ProviderType.IDEOGRAM)

        response = await manager.generate_with_fallback(params())

        assert response.provider == ProviderType.QWEN
        assert first.calls == []
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_no_providers(self):
        manager = build_manager()
        with pytest.raises(ImageGenerationError) as exc_info:
            await manager.generate_with_fallback(params())
        assert exc_info.value.code == ErrorCode.SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unsupported_ratio_skips_provider(self):
        square_only = MockImageProvider(ProviderType.IDEOGRAM, ratios=(AspectRatio.SQUARE,))
        banner = MockImageProvider(ProviderType.FAL_IDEOGRAM)
        manager = build_manager(square_only, banner)

        response = await manager.generate_with_fallback(params(aspect_ratio=AspectRatio.BANNER_3_1))

        assert response.provider == ProviderType.FAL_IDEOGRAM
        assert square_only.calls == []
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_unsupported_ratio_everywhere(self):
        square_only = MockImageProvider(ProviderType.IDEOGRAM, ratios=(AspectRatio.SQUARE,))
        manager = build_manager(square_only)

        with pytest.raises(ImageGenerationError) as exc_info:
            await manager.generate_with_fallback(params(aspect_ratio=AspectRatio.BANNER_3_1))
        assert exc_info.value.code == ErrorCode.UNSUPPORTED_ASPECT_RATIO
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_params_adapted_for_fallback(self):
        first = MockImageProvider(ProviderType.IDEOGRAM)
        limited = MockImageProvider(
            ProviderType.HUGGINGFACE,
            supports_seeds=False,
            qualities=(ImageQuality.FAST, ImageQuality.STANDARD, ImageQuality.HIGH),
        )
        first.fail_with(ImageGenerationError("down", ErrorCode.TIMEOUT, "ideogram", True))
        manager = build_manager(first, limited)

        await manager.generate_with_fallback(params(seed=42, quality=ImageQuality.ULTRA))

        assert first.calls[0].seed == 42
        assert limited.calls[0].seed is None
        assert limited.calls[0].quality == ImageQuality.HIGH
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self):
        provider = MockImageProvider(ProviderType.IDEOGRAM)
        provider.fail_with(ImageGenerationError("busy", ErrorCode.RATE_LIMITED, "ideogram", True))
        manager = build_manager(provider)
        manager.retry_config.max_attempts = 2

        response = await manager.generate_with_fallback(params())

        assert response.provider == ProviderType.IDEOGRAM
        assert len(provider.calls) == 2
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_providers_health(self):
        provider = MockImageProvider(ProviderType.IDEOGRAM)
        manager = build_manager(provider, failure_threshold=1)
        manager.circuit_breaker.record_failure(ProviderType.IDEOGRAM)

        health = await manager.get_providers_health()

        assert health == {"ideogram": {"available": True, "healthy": True, "circuit_open": True}}
        manager.reset_circuit_breaker(ProviderType.IDEOGRAM)
        assert manager.get_status()["circuits"]["ideogram"]["is_open"] is False
        await manager.aclose()
