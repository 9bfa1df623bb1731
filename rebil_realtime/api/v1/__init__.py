"""API v1 endpoints package."""

from .notifications import router as notifications_router
from .stream import router as stream_router

__all__ = ["notifications_router", "stream_router"]
