"""Request-scoped access to the application's notification service."""

from fastapi import HTTPException, Request, WebSocket

from ..services.realtime.notification_service import NotificationService


def _service_from_state(state) -> NotificationService:
    service = getattr(state, "notification_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Notification service not initialized")
    return service


def get_notification_service(request: Request) -> NotificationService:
    return _service_from_state(request.app.state)


def get_ws_notification_service(websocket: WebSocket) -> NotificationService:
    return _service_from_state(websocket.app.state)
