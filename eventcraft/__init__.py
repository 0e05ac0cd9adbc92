"""EventCraft API - AI event images and carousels with provider fallback."""

from .api import app, create_app
from .providers import create_provider_manager
from .service import GenerationService

__version__ = "1.0.0"

__all__ = [
    "GenerationService",
    "app",
    "create_app",
    "create_provider_manager",
]
