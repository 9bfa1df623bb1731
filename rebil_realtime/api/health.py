"""Health check endpoint."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..config.settings import settings
from ..services.realtime.notification_service import NotificationService
from .dependencies import get_notification_service

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"]
    service: str
    realtime_ready: bool = False
    realtime_error: Optional[str] = None
    active_connections: int = 0
    error_connections: int = 0
    active_subscriptions: int = 0
    failed_channels: int = 0


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    service: NotificationService = Depends(get_notification_service),
) -> HealthResponse:
    """
    Health check endpoint.

    The service is healthy when the realtime layer is initialized. Channel
    errors are reported but do not flip the status, since they are retried.
    """
    stats = service.get_service_stats()
    return HealthResponse(
        status="healthy" if stats.is_ready else "unhealthy",
        service=settings.notifier_service_name,
        realtime_ready=stats.is_ready,
        realtime_error=service.init_error,
        active_connections=stats.active_connections,
        error_connections=stats.error_connections,
        active_subscriptions=stats.active_subscriptions,
        failed_channels=stats.failed_channels,
    )
