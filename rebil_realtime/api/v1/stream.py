"""WebSocket streams: one lifecycle scope per connected client."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from ...config.logging import get_logger
from ...config.settings import settings
from ...models.subscription import SubscriptionIntent
from ...services.realtime.channels import admin_notifications_intent, car_status_intent
from ...services.realtime.lifecycle import UNAVAILABLE_REASON, SubscriptionLifecycle
from ...services.realtime.notification_service import NotificationService
from ..dependencies import get_ws_notification_service
from .schemas import StreamMessage

router = APIRouter(prefix="/ws", tags=["streams"])
logger = get_logger(__name__)

# Events buffered per client before new ones are dropped
STREAM_QUEUE_SIZE = 100


class ClientQueue:
    """Bounded event buffer for one stream client.

    A client that reads slower than events arrive loses the newest events
    instead of growing the buffer without limit.
    """

    def __init__(self, channel_name: str, maxsize: int = STREAM_QUEUE_SIZE):
        self.channel_name = channel_name
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, event: BaseModel) -> bool:
        """Buffer an event; returns False if it was dropped."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % self.queue.maxsize == 0:
                logger.warning(
                    "stream_client_lagging",
                    channel_name=self.channel_name,
                    dropped=self.dropped,
                    queue_size=self.queue.maxsize,
                )
            return False
        return True

    async def get(self) -> BaseModel:
        return await self.queue.get()


async def _stream(websocket: WebSocket, service: NotificationService, intent: SubscriptionIntent) -> None:
    if settings.notifier_api_key and websocket.query_params.get("api_key") != settings.notifier_api_key:
        logger.warning("stream_authentication_failed", channel_name=intent.channel_name)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    buffer = ClientQueue(intent.channel_name)

    async with SubscriptionLifecycle(service) as scope:
        scope.on_mount(intent, buffer.offer)
        await scope.wait_mounted()

        if scope.degraded or not scope.get_stats()["active_subscriptions"]:
            await websocket.send_json(
                StreamMessage(type="degraded", channel=intent.channel_name, reason=UNAVAILABLE_REASON).model_dump(
                    exclude_none=True
                )
            )
        else:
            await websocket.send_json(
                StreamMessage(type="subscribed", channel=intent.channel_name).model_dump(exclude_none=True)
            )
        logger.info("stream_client_connected", channel_name=intent.channel_name)

        receiver = asyncio.create_task(websocket.receive_text())
        try:
            while True:
                getter = asyncio.create_task(buffer.get())
                done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)
                if receiver in done:
                    getter.cancel()
                    # Client messages are ignored; a disconnect raises here
                    receiver.result()
                    receiver = asyncio.create_task(websocket.receive_text())
                    continue
                event: BaseModel = getter.result()
                await websocket.send_json(
                    StreamMessage(
                        type="event", channel=intent.channel_name, data=event.model_dump(mode="json")
                    ).model_dump(exclude_none=True)
                )
        except WebSocketDisconnect:
            logger.info(
                "stream_client_disconnected",
                channel_name=intent.channel_name,
                dropped=buffer.dropped,
            )
        finally:
            receiver.cancel()


@router.websocket("/car-status")
async def car_status_stream(
    websocket: WebSocket,
    service: NotificationService = Depends(get_ws_notification_service),
) -> None:
    await _stream(websocket, service, car_status_intent())


@router.websocket("/admin/{admin_user_id}")
async def admin_notifications_stream(
    websocket: WebSocket,
    admin_user_id: str,
    service: NotificationService = Depends(get_ws_notification_service),
) -> None:
    await _stream(websocket, service, admin_notifications_intent(admin_user_id))
