"""In-memory realtime transport and payload builders for tests."""

from typing import Any, Callable, Dict, List, Optional


class FakeChannel:
    """Channel whose status and events are driven by the test."""

    def __init__(self, name: str, auto_ack: bool = False, fail_subscribe: bool = False):
        self.name = name
        self.auto_ack = auto_ack
        self.fail_subscribe = fail_subscribe
        self.handlers: List[tuple] = []
        self.status_callback: Optional[Callable[[str], None]] = None
        self.subscribed = False
        self.unsubscribed = False

    def on(self, event_type: str, handler, filter: Optional[Dict[str, str]] = None):
        self.handlers.append((event_type, dict(filter or {}), handler))
        return self

    def subscribe(self, status_callback):
        if self.fail_subscribe:
            raise RuntimeError("join rejected")
        self.status_callback = status_callback
        self.subscribed = True
        if self.auto_ack:
            status_callback("SUBSCRIBED")
        return self

    def unsubscribe(self) -> None:
        self.unsubscribed = True

    def ack(self) -> None:
        self.status_callback("SUBSCRIBED")

    def fail(self, status: str = "CHANNEL_ERROR") -> None:
        self.status_callback(status)

    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        for bound_type, filter, handler in list(self.handlers):
            if bound_type != event_type:
                continue
            if event_type == "postgres_changes" and filter.get("table") not in (None, payload.get("table")):
                continue
            if event_type == "broadcast" and filter.get("event") not in (None, payload.get("event")):
                continue
            handler(payload)


class FakeTransport:
    """Records every channel it hands out."""

    def __init__(self, auto_ack: bool = False, fail_connect: bool = False, fail_subscribe: bool = False):
        self.auto_ack = auto_ack
        self.fail_connect = fail_connect
        self.fail_subscribe = fail_subscribe
        self.channels: List[FakeChannel] = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise ConnectionError("realtime unreachable")

    async def disconnect(self) -> None:
        self.disconnect_calls += 1

    def channel(self, name: str) -> FakeChannel:
        channel = FakeChannel(name, auto_ack=self.auto_ack, fail_subscribe=self.fail_subscribe)
        self.channels.append(channel)
        return channel

    def channels_named(self, name: str) -> List[FakeChannel]:
        return [channel for channel in self.channels if channel.name == name]

    def latest(self, name: str) -> FakeChannel:
        return self.channels_named(name)[-1]

    def live(self) -> List[FakeChannel]:
        return [channel for channel in self.channels if not channel.unsubscribed]


def car_update_payload(
    car_id: str = "car1",
    old_status: Optional[str] = "PENDING_APPROVAL",
    new_status: str = "ACTIVE",
) -> Dict[str, Any]:
    """Normalised row change for an update of the cars table."""
    record = {
        "id": car_id,
        "status": new_status,
        "host_id": "host-1",
        "make": "Toyota",
        "model": "Avanza",
        "year": 2021,
        "updated_at": "2024-05-01T10:00:00+00:00",
    }
    return {
        "event": "UPDATE",
        "table": "cars",
        "schema": "public",
        "record": record,
        "old_record": {"id": car_id, "status": old_status} if old_status else {"id": car_id},
        "commit_timestamp": "2024-05-01T10:00:00Z",
    }


def admin_notification_record(admin_notification_id: str = "n-1") -> Dict[str, Any]:
    return {
        "id": admin_notification_id,
        "type": "CAR_SUBMITTED_FOR_APPROVAL",
        "car_id": "car1",
        "host_id": "host-1",
        "host_name": "Budi",
        "car_make": "Honda",
        "car_model": "Brio",
        "car_year": 2022,
        "new_status": "PENDING_APPROVAL",
        "timestamp": "2024-05-01T10:00:00Z",
        "read": False,
    }
