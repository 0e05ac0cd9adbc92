"""Configuration using pydantic-settings."""

import os
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with validation and constants."""

    host: str = "0.0.0.0"  # nosec B104 - Required for container deployment
    port: int = 8000
    log_level: str = "INFO"
    log_file: str | None = None

    environment: Literal["development", "docker", "lambda"] = "development"

    # Image generation providers
    image_generation_provider: str | None = None
    ideogram_api_key: str | None = None
    ideogram_base_url: str = "https://api.ideogram.ai"
    hugging_face_api_token: str | None = None
    huggingface_base_url: str = "https://api-inference.huggingface.co"
    huggingface_model: str = "stabilityai/stable-diffusion-xl-base-1.0"
    fal_key: str | None = None
    fal_base_url: str = "https://fal.run"
    stability_api_key: str | None = None
    provider_timeout: int = 120

    # Retry and circuit breaker
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_backoff_multiplier: float = 2.0
    circuit_failure_threshold: int = 5
    circuit_reset_timeout: float = 60.0

    # Cloudflare R2
    r2_account_id: str | None = None
    r2_access_key_id: str | None = None
    r2_secret_access_key: str | None = None
    r2_bucket_name: str = "eventcraft-images"
    r2_public_url: str | None = None
    signed_url_expiry: int = 3600

    # WebP conversion
    webp_enabled: bool = True
    webp_preset: Literal["low", "medium", "high"] = "medium"
    webp_validate_conversions: bool = True
    webp_fallback_to_original: bool = True

    watermark_text: str = "Made using EventCraftAI.com"

    # Carousel copywriting (optional)
    llm_model: str = "openrouter/meta-llama/llama-3.2-3b-instruct"
    llm_api_key: str | None = None
    llm_timeout: int = 30

    database_url: str = "sqlite+aiosqlite:///./data/eventcraft.db"
    redis_url: str | None = None

    rate_limit: str = "60/minute"
    generation_rate_limit: str = "10/minute"

    # JWT settings
    secret_key: str = "your-secret-key-change-in-production"  # noqa: S105
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60

    # Users and credits
    signup_credits: int = 3
    admin_user_ids: str = ""

    # Signed URL cache
    cache_ttl_seconds: int = 3000

    @property
    def is_lambda_environment(self) -> bool:
        """Check if running in AWS Lambda."""
        return self.environment == "lambda" or bool(os.getenv("AWS_LAMBDA_FUNCTION_NAME"))

    @property
    def r2_endpoint_url(self) -> str | None:
        """S3-compatible endpoint for the configured R2 account."""
        if not self.r2_account_id:
            return None
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    @property
    def admin_ids(self) -> set[str]:
        """Admin user ids parsed from the comma separated setting."""
        return {part.strip() for part in self.admin_user_ids.split(",") if part.strip()}

    @field_validator("signup_credits")
    @classmethod
    def validate_signup_credits(cls, value: int) -> int:
        """Signup credits cannot be negative."""
        if value < 0:
            raise ValueError("signup_credits must be zero or positive")
        return value

    @model_validator(mode="after")
    def validate_r2_credentials(self) -> "Settings":
        """R2 keys must be configured together."""
        keys = [self.r2_account_id, self.r2_access_key_id, self.r2_secret_access_key]
        if any(keys) and not all(keys):
            raise ValueError(
                "Incomplete R2 configuration. Set EVENTCRAFT_R2_ACCOUNT_ID, "
                "EVENTCRAFT_R2_ACCESS_KEY_ID and EVENTCRAFT_R2_SECRET_ACCESS_KEY together."
            )
        return self

    @model_validator(mode="after")
    def validate_environment(self) -> "Settings":
        """Set environment based on EVENTCRAFT_ENV or AWS Lambda detection."""
        env = os.getenv("EVENTCRAFT_ENV", "").lower()
        if env == "lambda":
            self.environment = "lambda"
        elif env == "docker":
            self.environment = "docker"
        elif env == "development":
            self.environment = "development"
        elif os.getenv("AWS_LAMBDA_FUNCTION_NAME"):
            self.environment = "lambda"
        return self

    class Config:
        """Pydantic config."""

        env_prefix = "EVENTCRAFT_"
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    """Get settings instance (for dependency injection)."""
    return settings
