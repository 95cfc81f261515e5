"""API routes for the socialsync application."""

from .health import router as health_router
from .social import router as social_router

__all__ = [
    "health_router",
    "social_router",
]
