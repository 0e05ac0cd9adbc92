"""Retry logic for the EventCraft API using tenacity."""

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import CopywriterError, ErrorCode, ImageGenerationError

F = TypeVar("F", bound=Callable[..., Any])

RETRYABLE_CODES = frozenset(
    {
        ErrorCode.QUOTA_EXCEEDED,
        ErrorCode.RATE_LIMITED,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.TIMEOUT,
        ErrorCode.NETWORK_ERROR,
    }
)


@dataclass
class RetryConfig:
    """Backoff settings for provider calls."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    retryable_codes: frozenset[ErrorCode] = field(default_factory=lambda: RETRYABLE_CODES)


def is_retryable(error: BaseException, config: RetryConfig | None = None) -> bool:
    """A provider error is retried only when flagged retryable and its code allows it."""
    codes = (config or RetryConfig()).retryable_codes
    return isinstance(error, ImageGenerationError) and error.retryable and error.code in codes


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(f"{label} attempt {retry_state.attempt_number} failed: {error or 'Unknown error'}")

    return before_sleep


def provider_retrying(config: RetryConfig, label: str) -> AsyncRetrying:
    """Build an async retry loop for a single provider.

    Args:
        config: Backoff settings.
        label: Provider name used in log lines.

    Returns:
        AsyncRetrying that re-raises the last provider error.

    """
    return AsyncRetrying(
        retry=retry_if_exception(lambda e: is_retryable(e, config)),
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.base_delay,
            max=config.max_delay,
            exp_base=config.backoff_multiplier,
        ),
        before_sleep=_log_retry(label),
        reraise=True,
    )


def with_llm_retry(
    provider_name: str,
    max_retries: int = 3,
) -> Callable[[F], F]:
    """Decorator to add retry logic to copywriter LLM calls.

    Args:
        provider_name: Name of the provider for error messages
        max_retries: Maximum number of retry attempts

    Returns:
        Decorated function with retry logic

    """

    def decorator(func: F) -> F:
        @retry(
            retry=retry_if_exception_type((TimeoutError, ConnectionError)),
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            before_sleep=_log_retry(provider_name),
            reraise=True,
        )
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except (TimeoutError, ConnectionError):
                raise
            except CopywriterError:
                raise
            except Exception as e:
                logger.error(f"{provider_name} API error: {e}")
                raise CopywriterError(f"{provider_name} API error: {e}") from e

        return wrapper  # type: ignore[return-value,no-any-return]

    return decorator
