"""Storage protocol definitions using typing.Protocol."""

from typing import Any, Protocol

from ..types import ImageRecord, UsageStats, UserRecord


class Repository(Protocol):
    """Repository protocol for users, images, provider settings and prompts."""

    async def create_user(
        self, user_id: str, email: str | None = None, credits: int = 0, role: str = "user"
    ) -> UserRecord:
        """Create a user with a starting credit balance."""
        ...

    async def get_user(self, user_id: str) -> UserRecord | None:
        """Get a user by id."""
        ...

    async def update_user_settings(self, user_id: str, *, watermark_enabled: bool) -> None:
        """Update per-user preferences."""
        ...

    async def add_credits(self, user_id: str, amount: int) -> int:
        """Add credits and return the new balance."""
        ...

    async def consume_credit(self, user_id: str, amount: int = 1) -> int | None:
        """Decrement credits if the balance allows it; None when it does not."""
        ...

    async def save_image(self, record: ImageRecord) -> None:
        """Persist a generated image record."""
        ...

    async def get_image(self, image_id: str) -> ImageRecord | None:
        """Get an image record by id."""
        ...

    async def list_images(self, user_id: str, limit: int = 20, offset: int = 0) -> list[ImageRecord]:
        """List a user's images, newest first."""
        ...

    async def delete_image(self, image_id: str) -> bool:
        """Delete an image record; False when it did not exist."""
        ...

    async def get_default_provider_setting(self) -> dict[str, Any] | None:
        """The active provider setting flagged as default."""
        ...

    async def save_provider_setting(
        self,
        provider_id: str,
        *,
        is_default: bool | None = None,
        is_active: bool | None = None,
        base_settings: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create or update an admin provider setting."""
        ...

    async def get_active_prompt(self, category: str, subcategory: str | None = None) -> str | None:
        """Highest-version active system prompt content."""
        ...

    async def save_prompt(
        self, category: str, subcategory: str | None, content: str, *, is_active: bool = True
    ) -> int:
        """Store a new system prompt version and return its version number."""
        ...

    async def get_usage_stats(self) -> UsageStats:
        """Aggregate usage numbers for admins."""
        ...

    async def health_check(self) -> bool:
        """Check if repository is healthy."""
        ...

    async def startup(self) -> None:
        """Initialize repository on startup."""
        ...

    async def shutdown(self) -> None:
        """Cleanup repository on shutdown."""
        ...


class ObjectStore(Protocol):
    """Object storage protocol (Cloudflare R2 / S3)."""

    async def upload(
        self, key: str, data: bytes, content_type: str, metadata: dict[str, str] | None = None
    ) -> str:
        """Upload bytes and return the key."""
        ...

    async def download(self, key: str) -> bytes:
        """Fetch an object's bytes."""
        ...

    async def generate_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """Presigned GET URL for a key."""
        ...

    async def delete(self, key: str) -> None:
        """Delete an object."""
        ...

    async def test_connection(self) -> bool:
        """Check the bucket is reachable."""
        ...

    async def startup(self) -> None:
        """Initialize the client."""
        ...

    async def shutdown(self) -> None:
        """Release the client."""
        ...


class Cache(Protocol):
    """Cache protocol for signed URL caching."""

    async def get(self, key: str) -> dict[str, Any] | None:
        """Get cached value."""
        ...

    async def set(self, key: str, value: dict[str, Any], ttl: int = 3600) -> None:
        """Set cached value with TTL."""
        ...

    async def delete(self, key: str) -> None:
        """Drop a cached value."""
        ...

    async def startup(self) -> None:
        """Initialize cache on startup."""
        ...

    async def shutdown(self) -> None:
        """Cleanup cache on shutdown."""
        ...
