"""SQL repository implementation (SQLite locally, PostgreSQL in production)."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from loguru import logger
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from ..exceptions import StorageError
from ..types import ImageRecord, UsageStats, UserRecord

metadata = sa.MetaData()

users = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.String, primary_key=True),
    sa.Column("email", sa.String, nullable=True, unique=True),
    sa.Column("credits", sa.Integer, nullable=False, default=0),
    sa.Column("watermark_enabled", sa.Boolean, nullable=False, default=True),
    sa.Column("role", sa.String, nullable=False, default="user"),
    sa.Column("created_at", sa.DateTime, nullable=False),
)

generated_images = sa.Table(
    "generated_images",
    metadata,
    sa.Column("id", sa.String, primary_key=True),
    sa.Column("user_id", sa.String, sa.ForeignKey("users.id"), index=True, nullable=False),
    sa.Column("prompt", sa.Text, nullable=False),
    sa.Column("r2_key", sa.String, nullable=False),
    sa.Column("webp_key", sa.String, nullable=True),
    sa.Column("content_type", sa.String, nullable=False),
    sa.Column("event_type", sa.String, nullable=True),
    sa.Column("aspect_ratio", sa.String, nullable=False),
    sa.Column("provider", sa.String, nullable=False),
    sa.Column("quality", sa.String, nullable=False),
    sa.Column("seed", sa.BigInteger, nullable=True),
    sa.Column("cost", sa.Float, nullable=False, default=0.0),
    sa.Column("generation_time_ms", sa.Integer, nullable=False, default=0),
    sa.Column("watermarked", sa.Boolean, nullable=False, default=False),
    sa.Column("original_size", sa.Integer, nullable=False, default=0),
    sa.Column("webp_size", sa.Integer, nullable=True),
    sa.Column("compression_ratio", sa.Float, nullable=True),
    sa.Column("metadata", sa.JSON, nullable=True),
    sa.Column("created_at", sa.DateTime, index=True, nullable=False),
)

provider_settings = sa.Table(
    "provider_settings",
    metadata,
    sa.Column("provider_id", sa.String, primary_key=True),
    sa.Column("is_default", sa.Boolean, nullable=False, default=False),
    sa.Column("is_active", sa.Boolean, nullable=False, default=True),
    sa.Column("base_settings", sa.JSON, nullable=True),
    sa.Column("updated_at", sa.DateTime, nullable=False),
)

system_prompts = sa.Table(
    "system_prompts",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("category", sa.String, index=True, nullable=False),
    sa.Column("subcategory", sa.String, nullable=True),
    sa.Column("content", sa.Text, nullable=False),
    sa.Column("version", sa.Integer, nullable=False, default=1),
    sa.Column("is_active", sa.Boolean, nullable=False, default=True),
    sa.Column("created_at", sa.DateTime, nullable=False),
)


def _isoformat(value: datetime | None) -> str:
    return value.isoformat() if value else ""


def _user(row: Any) -> UserRecord:
    return {
        "id": row["id"],
        "email": row["email"],
        "credits": row["credits"],
        "watermark_enabled": bool(row["watermark_enabled"]),
        "role": row["role"],
        "created_at": _isoformat(row["created_at"]),
    }


def _image(row: Any) -> ImageRecord:
    record = ImageRecord(**row)
    record["metadata"] = row["metadata"] or {}
    record["watermarked"] = bool(row["watermarked"])
    record["created_at"] = _isoformat(row["created_at"])
    return record


class SQLRepository:
    """SQLite/PostgreSQL repository using SQLAlchemy Core on an async engine."""

    def __init__(self, database_url: str):
        """Initialize the repository.

        Args:
            database_url: Async database URL, e.g. ``sqlite+aiosqlite:///./data/eventcraft.db``.
        """
        self.database_url = database_url
        self.engine: AsyncEngine | None = None

    def _create_engine(self) -> AsyncEngine:
        if ":memory:" in self.database_url:
            # One shared connection, otherwise every checkout sees an empty database
            return create_async_engine(
                self.database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(self.database_url, pool_pre_ping=True)

    async def startup(self) -> None:
        """Create the engine and the tables."""
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = self._create_engine()
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Database ready")

    async def shutdown(self) -> None:
        """Dispose of the connection pool."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None

    def _engine(self) -> AsyncEngine:
        if self.engine is None:
            raise StorageError("Repository not started")
        return self.engine

    async def _fetch_one(self, query: Any) -> Any:
        try:
            async with self._engine().begin() as conn:
                result = await conn.execute(query)
                return result.mappings().first()
        except SQLAlchemyError as e:
            logger.error(f"Database query failed: {e}")
            raise StorageError(f"Database query failed: {e}") from e

    async def _fetch_all(self, query: Any) -> list[Any]:
        try:
            async with self._engine().begin() as conn:
                result = await conn.execute(query)
                return list(result.mappings().all())
        except SQLAlchemyError as e:
            logger.error(f"Database query failed: {e}")
            raise StorageError(f"Database query failed: {e}") from e

    async def _execute(self, query: Any) -> int:
        try:
            async with self._engine().begin() as conn:
                result = await conn.execute(query)
                return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Database write failed: {e}")
            raise StorageError(f"Database write failed: {e}") from e

    # Users

    async def create_user(
        self, user_id: str, email: str | None = None, credits: int = 0, role: str = "user"
    ) -> UserRecord:
        """Create a user with a starting credit balance."""
        await self._execute(
            users.insert().values(
                id=user_id,
                email=email,
                credits=credits,
                watermark_enabled=True,
                role=role,
                created_at=datetime.now(UTC),
            )
        )
        user = await self.get_user(user_id)
        if user is None:
            raise StorageError(f"User {user_id} was not created")
        return user

    async def get_user(self, user_id: str) -> UserRecord | None:
        row = await self._fetch_one(users.select().where(users.c.id == user_id))
        return _user(row) if row else None

    async def update_user_settings(self, user_id: str, *, watermark_enabled: bool) -> None:
        await self._execute(
            users.update().where(users.c.id == user_id).values(watermark_enabled=watermark_enabled)
        )

    async def add_credits(self, user_id: str, amount: int) -> int:
        """Add credits and return the new balance.

        Raises:
            StorageError: If the user does not exist.
        """
        row = await self._fetch_one(
            users.update()
            .where(users.c.id == user_id)
            .values(credits=users.c.credits + amount)
            .returning(users.c.credits)
        )
        if row is None:
            raise StorageError(f"User {user_id} not found")
        return int(row["credits"])

    async def consume_credit(self, user_id: str, amount: int = 1) -> int | None:
        """Atomically take ``amount`` credits; None when the balance is too low."""
        row = await self._fetch_one(
            users.update()
            .where(users.c.id == user_id, users.c.credits >= amount)
            .values(credits=users.c.credits - amount)
            .returning(users.c.credits)
        )
        return int(row["credits"]) if row else None

    # Images

    async def save_image(self, record: ImageRecord) -> None:
        values = dict(record)
        values.setdefault("metadata", {})
        created_at = values.pop("created_at", None)
        values["created_at"] = (
            datetime.fromisoformat(created_at) if created_at else datetime.now(UTC)
        )
        await self._execute(generated_images.insert().values(**values))

    async def get_image(self, image_id: str) -> ImageRecord | None:
        row = await self._fetch_one(
            generated_images.select().where(generated_images.c.id == image_id)
        )
        return _image(row) if row else None

    async def list_images(self, user_id: str, limit: int = 20, offset: int = 0) -> list[ImageRecord]:
        rows = await self._fetch_all(
            generated_images.select()
            .where(generated_images.c.user_id == user_id)
            .order_by(generated_images.c.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return [_image(row) for row in rows]

    async def delete_image(self, image_id: str) -> bool:
        deleted = await self._execute(
            generated_images.delete().where(generated_images.c.id == image_id)
        )
        return deleted > 0

    # Provider settings

    async def get_default_provider_setting(self) -> dict[str, Any] | None:
        row = await self._fetch_one(
            provider_settings.select().where(
                provider_settings.c.is_default.is_(True),
                provider_settings.c.is_active.is_(True),
            )
        )
        if row is None:
            return None
        return {
            "provider_id": row["provider_id"],
            "is_default": bool(row["is_default"]),
            "is_active": bool(row["is_active"]),
            "base_settings": row["base_settings"] or {},
        }

    async def save_provider_setting(
        self,
        provider_id: str,
        *,
        is_default: bool | None = None,
        is_active: bool | None = None,
        base_settings: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create or update a provider setting; only one row can be the default."""
        now = datetime.now(UTC)
        try:
            async with self._engine().begin() as conn:
                if is_default:
                    await conn.execute(
                        provider_settings.update()
                        .where(provider_settings.c.provider_id != provider_id)
                        .values(is_default=False, updated_at=now)
                    )

                existing = (
                    await conn.execute(
                        provider_settings.select().where(
                            provider_settings.c.provider_id == provider_id
                        )
                    )
                ).mappings().first()

                values: dict[str, Any] = {"updated_at": now}
                if is_default is not None:
                    values["is_default"] = is_default
                if is_active is not None:
                    values["is_active"] = is_active
                if base_settings is not None:
                    values["base_settings"] = base_settings

                if existing is None:
                    values.setdefault("is_default", False)
                    values.setdefault("is_active", True)
                    values.setdefault("base_settings", {})
                    await conn.execute(
                        provider_settings.insert().values(provider_id=provider_id, **values)
                    )
                else:
                    await conn.execute(
                        provider_settings.update()
                        .where(provider_settings.c.provider_id == provider_id)
                        .values(**values)
                    )

                row = (
                    await conn.execute(
                        provider_settings.select().where(
                            provider_settings.c.provider_id == provider_id
                        )
                    )
                ).mappings().one()
        except SQLAlchemyError as e:
            logger.error(f"Saving provider setting failed: {e}")
            raise StorageError(f"Saving provider setting failed: {e}") from e

        return {
            "provider_id": row["provider_id"],
            "is_default": bool(row["is_default"]),
            "is_active": bool(row["is_active"]),
            "base_settings": row["base_settings"] or {},
        }

    # System prompts

    async def get_active_prompt(self, category: str, subcategory: str | None = None) -> str | None:
        query = system_prompts.select().where(
            system_prompts.c.category == category,
            system_prompts.c.is_active.is_(True),
        )
        if subcategory is None:
            query = query.where(system_prompts.c.subcategory.is_(None))
        else:
            query = query.where(system_prompts.c.subcategory == subcategory)
        row = await self._fetch_one(query.order_by(system_prompts.c.version.desc()).limit(1))
        return row["content"] if row else None

    async def save_prompt(
        self, category: str, subcategory: str | None, content: str, *, is_active: bool = True
    ) -> int:
        """Store a new version; versions count up per category and subcategory."""
        condition = system_prompts.c.category == category
        if subcategory is None:
            condition = condition & system_prompts.c.subcategory.is_(None)
        else:
            condition = condition & (system_prompts.c.subcategory == subcategory)

        try:
            async with self._engine().begin() as conn:
                current = (
                    await conn.execute(sa.select(sa.func.max(system_prompts.c.version)).where(condition))
                ).scalar()
                version = (current or 0) + 1
                await conn.execute(
                    system_prompts.insert().values(
                        category=category,
                        subcategory=subcategory,
                        content=content,
                        version=version,
                        is_active=is_active,
                        created_at=datetime.now(UTC),
                    )
                )
        except SQLAlchemyError as e:
            logger.error(f"Saving system prompt failed: {e}")
            raise StorageError(f"Saving system prompt failed: {e}") from e
        return version

    # Analytics

    async def get_usage_stats(self) -> UsageStats:
        try:
            async with self._engine().begin() as conn:
                user_totals = (
                    await conn.execute(
                        sa.select(sa.func.count(), sa.func.coalesce(sa.func.sum(users.c.credits), 0))
                    )
                ).one()
                image_totals = (
                    await conn.execute(
                        sa.select(
                            sa.func.count(),
                            sa.func.coalesce(sa.func.sum(generated_images.c.cost), 0.0),
                            sa.func.coalesce(sa.func.avg(generated_images.c.generation_time_ms), 0.0),
                        )
                    )
                ).one()
                by_provider = (
                    await conn.execute(
                        sa.select(generated_images.c.provider, sa.func.count()).group_by(
                            generated_images.c.provider
                        )
                    )
                ).all()
                by_event = (
                    await conn.execute(
                        sa.select(generated_images.c.event_type, sa.func.count()).group_by(
                            generated_images.c.event_type
                        )
                    )
                ).all()
        except SQLAlchemyError as e:
            logger.error(f"Usage statistics query failed: {e}")
            raise StorageError(f"Usage statistics query failed: {e}") from e

        return {
            "total_users": int(user_totals[0]),
            "total_credits_remaining": int(user_totals[1]),
            "total_images": int(image_totals[0]),
            "total_cost": round(float(image_totals[1]), 4),
            "average_generation_time_ms": round(float(image_totals[2]), 1),
            "images_by_provider": {provider: count for provider, count in by_provider},
            "images_by_event_type": {event or "unknown": count for event, count in by_event},
        }

    async def health_check(self) -> bool:
        """Check if database is accessible.

        Returns:
            True if database is healthy, False otherwise.
        """
        try:
            async with self._engine().connect() as conn:
                await conn.execute(sa.text("SELECT 1"))
            return True
        except (SQLAlchemyError, StorageError, ConnectionError, TimeoutError):
            logger.exception("Database health check failed")
            return False
