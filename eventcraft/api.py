"""FastAPI application and route handlers."""

import sys
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .config import settings
from .copywriter import CarouselCopywriter, LLMConfig
from .exceptions import (
    ConfigurationError,
    CopywriterError,
    ErrorCode,
    EventCraftError,
    ImageGenerationError,
    InsufficientCreditsError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from .middleware import add_request_id, create_token, get_current_user
from .models import (
    CarouselBackgroundRequest,
    CarouselTextRequest,
    GenerateImageRequest,
    GenerateImageResponse,
    GrantCreditsRequest,
    ImageResponse,
    ProviderUpdate,
    SystemPromptRequest,
    UpscaleRequest,
    UserProfile,
    UserSettingsUpdate,
)
from .providers import create_provider_manager, create_upscaler
from .service import GenerationService, friendly_message
from .storage import create_cache, create_object_store, create_repository

VERSION = "1.0.0"

_generation_service: GenerationService | None = None


def configure_logging() -> None:
    """Configure logging - should be called at startup, not import time."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.log_level,
        serialize=False,
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            level=settings.log_level,
        )


def get_limiter() -> Limiter:
    """Get or create rate limiter."""
    return Limiter(
        key_func=get_remote_address,
        storage_uri=settings.redis_url or "memory://",
        default_limits=[settings.rate_limit],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global _generation_service
    configure_logging()

    repository = create_repository()
    object_store = create_object_store()
    cache = create_cache()

    await repository.startup()
    await object_store.startup()
    await cache.startup()

    copywriter = CarouselCopywriter(
        LLMConfig(
            model=settings.llm_model,
            api_key=settings.llm_api_key,
            timeout=settings.llm_timeout,
        )
    )

    _generation_service = GenerationService(
        repository=repository,
        object_store=object_store,
        cache=cache,
        provider_manager=create_provider_manager(settings),
        settings=settings,
        copywriter=copywriter,
        upscaler=create_upscaler(settings),
    )

    logger.info("Application started successfully")

    yield

    await _generation_service.aclose()
    await cache.shutdown()
    await object_store.shutdown()
    await repository.shutdown()
    _generation_service = None
    logger.info("Application shutdown complete")


app = FastAPI(
    title="EventCraft API",
    version=VERSION,
    description="AI event image and carousel generation with multi-provider fallback",
    lifespan=lifespan,
)

app.middleware("http")(add_request_id)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = get_limiter()
app.state.limiter = limiter  # Required by slowapi
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle validation errors with clean messages."""
    error_messages = []

    for error in exc.errors():  # type: ignore[attr-defined]
        field = error["loc"][-1] if error["loc"] else "field"
        message = error.get("msg", f"Invalid {field}")

        match error["type"]:
            case "missing":
                message = f"Required field '{field}' is missing"
            case "json_invalid":
                message = "Invalid JSON format"

        error_messages.append(message)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Validation failed",
            "message": "; ".join(error_messages),
            "details": error_messages,
        },
    )


app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]


def generation_error_status(error: ImageGenerationError) -> int:
    match error.code:
        case (
            ErrorCode.INVALID_PARAMETERS
            | ErrorCode.PROMPT_TOO_LONG
            | ErrorCode.UNSUPPORTED_ASPECT_RATIO
        ):
            return status.HTTP_400_BAD_REQUEST
        case ErrorCode.INSUFFICIENT_CREDITS:
            return status.HTTP_402_PAYMENT_REQUIRED
        case ErrorCode.QUOTA_EXCEEDED | ErrorCode.RATE_LIMITED:
            return status.HTTP_429_TOO_MANY_REQUESTS
        case ErrorCode.SERVICE_UNAVAILABLE | ErrorCode.TIMEOUT | ErrorCode.NETWORK_ERROR:
            return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_502_BAD_GATEWAY


@app.exception_handler(EventCraftError)
async def eventcraft_exception_handler(request: Request, exc: EventCraftError) -> JSONResponse:
    """Handle domain-specific errors."""
    logger.error(f"EventCraft error: {exc!r}")

    message = str(exc)
    content: dict[str, Any] = {"type": exc.__class__.__name__}

    match exc:
        case ImageGenerationError():
            status_code = generation_error_status(exc)
            message = friendly_message(exc)
            content["code"] = exc.code.value
            content["provider"] = exc.provider
        case ValidationError() | ConfigurationError():
            status_code = status.HTTP_400_BAD_REQUEST
        case InsufficientCreditsError():
            status_code = status.HTTP_402_PAYMENT_REQUIRED
        case PermissionDeniedError():
            status_code = status.HTTP_403_FORBIDDEN
        case NotFoundError():
            status_code = status.HTTP_404_NOT_FOUND
        case StorageError() | CopywriterError():
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        case _:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    content["detail"] = message
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Request-ID": getattr(request.state, "request_id", "")},
    )


def get_generation_service() -> GenerationService:
    """Get generation service singleton."""
    if _generation_service is None:
        raise RuntimeError("Service not initialized")
    return _generation_service


Service = Annotated[GenerationService, Depends(get_generation_service)]
CurrentUser = Annotated[str, Depends(get_current_user)]


# Images


@app.post("/images/generate", tags=["images"])
@limiter.limit(settings.generation_rate_limit)
async def generate_image_endpoint(
    request: Request,
    body: GenerateImageRequest,
    service: Service,
    user_id: CurrentUser,
) -> GenerateImageResponse:
    """Generate one event image and charge one credit."""
    result = await service.generate_image(user_id, body)
    return GenerateImageResponse(**result)


@app.post("/images/upscale", tags=["images"])
@limiter.limit(settings.generation_rate_limit)
async def upscale_image_endpoint(
    request: Request,
    body: UpscaleRequest,
    service: Service,
    user_id: CurrentUser,
) -> GenerateImageResponse:
    result = await service.upscale_image(user_id, body.image_id, body.upscale_factor)
    return GenerateImageResponse(**result)


@app.get("/images", tags=["images"])
async def list_images_endpoint(
    service: Service,
    user_id: CurrentUser,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> list[ImageResponse]:
    images = await service.list_images(user_id, limit, offset)
    return [ImageResponse(**image) for image in images]


@app.get("/images/{image_id}", tags=["images"])
async def get_image_endpoint(image_id: str, service: Service, user_id: CurrentUser) -> ImageResponse:
    return ImageResponse(**await service.get_image(user_id, image_id))


@app.delete("/images/{image_id}", tags=["images"], status_code=status.HTTP_204_NO_CONTENT)
async def delete_image_endpoint(image_id: str, service: Service, user_id: CurrentUser) -> Response:
    await service.delete_image(user_id, image_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Carousels


@app.post("/carousels/background", tags=["carousels"])
@limiter.limit(settings.generation_rate_limit)
async def carousel_background_endpoint(
    request: Request,
    body: CarouselBackgroundRequest,
    service: Service,
    user_id: CurrentUser,
) -> dict[str, Any]:
    """Generate a long background and its square slides for one credit."""
    return dict(await service.generate_carousel_background(user_id, body))


@app.post("/carousels/text", tags=["carousels"])
async def carousel_text_endpoint(
    body: CarouselTextRequest,
    service: Service,
    user_id: CurrentUser,
) -> dict[str, Any]:
    return await service.generate_carousel_text(
        body.title, body.slide_index, body.total_slides, body.slide_type
    )


# Users


@app.get("/users/me", tags=["users"])
async def profile_endpoint(service: Service, user_id: CurrentUser) -> UserProfile:
    return UserProfile(**await service.get_user_profile(user_id))


@app.patch("/users/me/settings", tags=["users"])
async def settings_endpoint(
    body: UserSettingsUpdate, service: Service, user_id: CurrentUser
) -> UserProfile:
    profile = await service.update_user_settings(user_id, watermark_enabled=body.watermark_enabled)
    return UserProfile(**profile)


# Admin


@app.get("/admin/providers", tags=["admin"])
async def provider_status_endpoint(service: Service, user_id: CurrentUser) -> dict[str, Any]:
    return await service.get_provider_status(user_id)


@app.put("/admin/providers/{provider}", tags=["admin"])
async def update_provider_endpoint(
    provider: str, body: ProviderUpdate, service: Service, user_id: CurrentUser
) -> dict[str, Any]:
    """Enable, disable or make a provider the default."""
    setting: dict[str, Any] = {}
    if body.enabled is not None:
        setting = await service.set_provider_enabled(user_id, provider, body.enabled)
    if body.is_default:
        setting = await service.set_default_provider(user_id, provider, body.default_quality)
    if not setting:
        raise ValidationError("Nothing to update")
    return setting


@app.post("/admin/providers/{provider}/reset", tags=["admin"])
async def reset_circuit_endpoint(provider: str, service: Service, user_id: CurrentUser) -> dict[str, Any]:
    return await service.reset_circuit_breaker(user_id, provider)


@app.post("/admin/credits", tags=["admin"])
async def grant_credits_endpoint(
    body: GrantCreditsRequest, service: Service, user_id: CurrentUser
) -> dict[str, Any]:
    balance = await service.grant_credits(user_id, body.user_id, body.amount)
    return {"user_id": body.user_id, "credits": balance}


@app.post("/admin/prompts", tags=["admin"])
async def system_prompt_endpoint(
    body: SystemPromptRequest, service: Service, user_id: CurrentUser
) -> dict[str, Any]:
    version = await service.save_system_prompt(
        user_id, body.category, body.subcategory, body.content, body.is_active
    )
    return {"category": body.category, "subcategory": body.subcategory, "version": version}


@app.get("/admin/stats", tags=["admin"])
async def usage_stats_endpoint(service: Service, user_id: CurrentUser) -> dict[str, Any]:
    return dict(await service.get_usage_stats(user_id))


# Health and auth


@app.get("/health", tags=["health"])
async def health_endpoint(
    response: Response,
    service: Service,
    detailed: bool = Query(False, description="Include detailed environment information"),
) -> dict[str, Any]:
    """Check health status of all components.

    Args:
        detailed: If True, includes version and environment information.

    """
    health = await service.health_check()
    all_healthy = all(health.values())

    if not all_healthy:
        response.status_code = 503

    result: dict[str, Any] = {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": health,
    }

    if detailed:
        result["version"] = VERSION
        result["environment"] = {
            "environment": settings.environment,
            "default_provider": settings.image_generation_provider,
            "rate_limit": settings.rate_limit,
            "webp_enabled": settings.webp_enabled,
        }

    return result


@app.get("/", tags=["health"])
async def root_endpoint() -> dict[str, str]:
    """API information endpoint."""
    return {
        "name": "EventCraft API",
        "version": VERSION,
        "status": "running",
        "docs": "/docs",
    }


@app.post("/login", tags=["auth"])
async def login_endpoint(
    service: Service,
    user_id: str = Body(..., min_length=3, max_length=100),
    email: str | None = Body(None, max_length=254),
) -> dict[str, str]:
    """Demo login endpoint: creates the user on first login and returns a JWT."""
    await service.ensure_user(user_id, email)
    return {"access_token": create_token(user_id, email), "token_type": "bearer"}


app.openapi_tags = [
    {"name": "images", "description": "Image generation and gallery"},
    {"name": "carousels", "description": "Carousel backgrounds and copy"},
    {"name": "users", "description": "Profile and preferences"},
    {"name": "admin", "description": "Provider and credit administration"},
    {"name": "health", "description": "Health checks"},
    {"name": "auth", "description": "Authentication"},
]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    return app
