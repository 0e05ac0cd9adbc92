"""Domain-specific exceptions for the EventCraft API."""

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes shared by every image generation provider."""

    INVALID_API_KEY = "INVALID_API_KEY"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    PROMPT_TOO_LONG = "PROMPT_TOO_LONG"
    UNSUPPORTED_ASPECT_RATIO = "UNSUPPORTED_ASPECT_RATIO"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    GENERATION_FAILED = "GENERATION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class EventCraftError(Exception):
    """Base exception for all EventCraft errors."""


class ImageGenerationError(EventCraftError):
    """Error raised by an image generation provider."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        provider: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.provider = provider
        self.retryable = retryable

    def __repr__(self) -> str:
        return (
            f"ImageGenerationError({str(self)!r}, code={self.code.value}, "
            f"provider={self.provider!r}, retryable={self.retryable})"
        )


class InsufficientCreditsError(EventCraftError):
    """User does not have enough credits for the operation."""


class NotFoundError(EventCraftError):
    """Requested record does not exist."""


class PermissionDeniedError(EventCraftError):
    """Caller is not allowed to touch the requested record."""


class StorageError(EventCraftError):
    """Error related to database or object storage operations."""


class ValidationError(EventCraftError):
    """Error related to input validation (not Pydantic)."""


class ConfigurationError(EventCraftError):
    """Error related to configuration issues."""


class CopywriterError(EventCraftError):
    """Error raised while generating carousel copy with an LLM."""
