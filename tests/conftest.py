"""Shared test fixtures."""

import os

# Set test environment before the app reads its settings
os.environ["EVENTCRAFT_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["EVENTCRAFT_RATE_LIMIT"] = "1000/minute"
os.environ["EVENTCRAFT_GENERATION_RATE_LIMIT"] = "1000/minute"
os.environ["EVENTCRAFT_LOG_LEVEL"] = "ERROR"  # Reduce log noise

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mock_provider import ADMIN_ID, USER_ID, MockImageProvider, build_manager, make_png

from eventcraft.api import app, get_generation_service
from eventcraft.config import Settings
from eventcraft.middleware import create_token
from eventcraft.service import GenerationService
from eventcraft.storage.cache import MemoryCache
from eventcraft.storage.database import SQLRepository
from eventcraft.storage.r2 import MemoryObjectStore


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        admin_user_ids=ADMIN_ID,
        signup_credits=3,
        webp_enabled=False,
        redis_url=None,
        image_generation_provider=None,
    )


@pytest_asyncio.fixture
async def repository() -> AsyncGenerator[SQLRepository, None]:
    repo = SQLRepository("sqlite+aiosqlite:///:memory:")
    await repo.startup()
    yield repo
    await repo.shutdown()


@pytest.fixture
def object_store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest_asyncio.fixture
async def provider() -> AsyncGenerator[MockImageProvider, None]:
    mock = MockImageProvider()
    yield mock
    await mock.aclose()


@pytest_asyncio.fixture
async def service(
    repository: SQLRepository,
    object_store: MemoryObjectStore,
    cache: MemoryCache,
    provider: MockImageProvider,
    test_settings: Settings,
) -> AsyncGenerator[GenerationService, None]:
    """Service over real in-memory storage and a mock provider."""
    generation_service = GenerationService(
        repository=repository,
        object_store=object_store,
        cache=cache,
        provider_manager=build_manager(provider),
        settings=test_settings,
    )
    await generation_service.ensure_user(USER_ID)
    await generation_service.ensure_user(ADMIN_ID)
    yield generation_service


@pytest_asyncio.fixture
async def client(service: GenerationService) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the service injected through dependency overrides."""
    app.dependency_overrides[get_generation_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(USER_ID)}"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(ADMIN_ID)}"}


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()
