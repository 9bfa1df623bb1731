"""Notification service statistics and control REST API (v1)."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from ...config.logging import get_logger
from ...models.subscription import ServiceStats
from ...services.realtime.notification_service import NotificationService
from ..dependencies import get_notification_service
from .schemas import ReconnectRequest, ReconnectResponse

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])
logger = get_logger(__name__)


@router.get("/stats", response_model=ServiceStats, summary="Get realtime service statistics")
async def get_stats(
    service: NotificationService = Depends(get_notification_service),
) -> ServiceStats:
    return service.get_service_stats()


@router.post(
    "/reconnect",
    response_model=ReconnectResponse,
    summary="Reconnect failed or disconnected channels",
)
async def reconnect(
    request: Optional[ReconnectRequest] = None,
    service: NotificationService = Depends(get_notification_service),
) -> ReconnectResponse:
    """Reset channels to connecting with a fresh retry budget."""
    channel_name = request.channel_name if request else None
    reconnected = service.reconnect(channel_name)
    logger.info("api_reconnect_requested", channel_name=channel_name, reconnected=reconnected)
    return ReconnectResponse(reconnected=reconnected)
