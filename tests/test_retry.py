"""Test retry logic functionality."""

import pytest

from eventcraft.exceptions import CopywriterError, ErrorCode, ImageGenerationError
from eventcraft.retry import RetryConfig, is_retryable, provider_retrying, with_llm_retry


class TestIsRetryable:
    """Which provider errors are retried."""

    def test_retryable_code_and_flag(self) -> None:
        error = ImageGenerationError("busy", ErrorCode.SERVICE_UNAVAILABLE, retryable=True)
        assert is_retryable(error)

    def test_flag_required(self) -> None:
        error = ImageGenerationError("busy", ErrorCode.SERVICE_UNAVAILABLE, retryable=False)
        assert not is_retryable(error)

    def test_code_required(self) -> None:
        error = ImageGenerationError("bad key", ErrorCode.INVALID_API_KEY, retryable=True)
        assert not is_retryable(error)

    def test_custom_codes(self) -> None:
        error = ImageGenerationError("slow", ErrorCode.TIMEOUT, retryable=True)
        config = RetryConfig(retryable_codes=frozenset({ErrorCode.RATE_LIMITED}))
        assert not is_retryable(error, config)

    def test_other_exceptions(self) -> None:
        assert not is_retryable(TimeoutError("slow"))


class TestProviderRetrying:
    """Async retry loop around a provider call."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self) -> None:
        call_count = 0

        async def flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ImageGenerationError("busy", ErrorCode.RATE_LIMITED, retryable=True)
            return "ok"

        async for attempt in provider_retrying(RetryConfig(base_delay=0), "test"):
            with attempt:
                result = await flaky()

        assert result == "ok"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_reraises_last_error(self) -> None:
        call_count = 0

        async def always_busy() -> None:
            nonlocal call_count
            call_count += 1
            raise ImageGenerationError(f"busy {call_count}", ErrorCode.TIMEOUT, retryable=True)

        with pytest.raises(ImageGenerationError, match="busy 2"):
            async for attempt in provider_retrying(RetryConfig(max_attempts=2, base_delay=0), "test"):
                with attempt:
                    await always_busy()

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self) -> None:
        call_count = 0

        async def bad_params() -> None:
            nonlocal call_count
            call_count += 1
            raise ImageGenerationError("bad", ErrorCode.INVALID_PARAMETERS)

        with pytest.raises(ImageGenerationError):
            async for attempt in provider_retrying(RetryConfig(base_delay=0), "test"):
                with attempt:
                    await bad_params()

        assert call_count == 1


class TestRetryDecorator:
    """Copywriter retry decorator."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        call_count = 0

        @with_llm_retry("TestProvider")
        async def complete() -> str:
            nonlocal call_count
            call_count += 1
            return "success"

        assert await complete() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_success_after_retry(self) -> None:
        call_count = 0

        @with_llm_retry("TestProvider", max_retries=3)
        async def complete() -> str:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise ConnectionError("reset")
            return "success after retry"

        assert await complete() == "success after retry"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_generic_errors_wrapped(self) -> None:
        call_count = 0

        @with_llm_retry("TestProvider")
        async def complete() -> str:
            nonlocal call_count
            call_count += 1
            raise ValueError("boom")

        with pytest.raises(CopywriterError, match="TestProvider API error: boom"):
            await complete()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_copywriter_errors_pass_through(self) -> None:
        @with_llm_retry("TestProvider")
        async def complete() -> str:
            raise CopywriterError("bad reply")

        with pytest.raises(CopywriterError, match="^bad reply$"):
            await complete()
