"""API routes for the memorial quota service."""

from .health import router as health_router
from .usage import router as usage_router

__all__ = [
    "health_router",
    "usage_router",
]
