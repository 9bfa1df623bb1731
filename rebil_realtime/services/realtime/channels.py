"""Channel kinds: naming, transport bindings and payload decoding.

Each ChannelKind knows which tables and broadcast events feed it and which
payload model its subscribers receive, so no callback type has to be guessed
at dispatch time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ...models.notifications import AdminNotification, CarStatusChange
from ...models.subscription import ChannelKind, SubscriptionIntent


CAR_STATUS_CHANNEL = "car_status_changes"
ADMIN_NOTIFICATIONS_CHANNEL_PREFIX = "admin_notifications_"

Notification = Union[CarStatusChange, AdminNotification]


@dataclass(frozen=True)
class ChannelBinding:
    """One `.on(event_type, handler, filter)` registration on a channel."""

    event_type: str
    filter: Dict[str, str]


_BINDINGS: Dict[ChannelKind, List[ChannelBinding]] = {
    ChannelKind.CAR_STATUS: [
        ChannelBinding("postgres_changes", {"event": "*", "schema": "public", "table": "cars"}),
        ChannelBinding("broadcast", {"event": "car_status_change"}),
    ],
    ChannelKind.ADMIN_NOTIFICATIONS: [
        ChannelBinding(
            "postgres_changes",
            {"event": "INSERT", "schema": "public", "table": "admin_notifications"},
        ),
        ChannelBinding("broadcast", {"event": "admin_notification"}),
    ],
}


def car_status_intent() -> SubscriptionIntent:
    """Intent for the shared car status feed."""
    return SubscriptionIntent(kind=ChannelKind.CAR_STATUS, channel_name=CAR_STATUS_CHANNEL)


def admin_notifications_intent(admin_user_id: str) -> SubscriptionIntent:
    """Intent for one administrator's notification feed.

    Raises:
        ValueError: If admin_user_id is empty
    """
    if not admin_user_id:
        raise ValueError("admin_user_id is required for admin notifications")
    return SubscriptionIntent(
        kind=ChannelKind.ADMIN_NOTIFICATIONS,
        channel_name=f"{ADMIN_NOTIFICATIONS_CHANNEL_PREFIX}{admin_user_id}",
        admin_user_id=admin_user_id,
    )


def bindings_for(intent: SubscriptionIntent) -> List[ChannelBinding]:
    """Get the transport bindings for an intent's channel kind."""
    return _BINDINGS[intent.kind]


def _decode_car_status(payload: Dict[str, Any]) -> Optional[CarStatusChange]:
    if payload.get("type") == "broadcast":
        return CarStatusChange.model_validate(payload.get("payload") or {})

    if payload.get("event") not in ("INSERT", "UPDATE"):
        return None

    record = payload.get("record") or {}
    old_record = payload.get("old_record") or {}
    old_status = old_record.get("status")
    new_status = record.get("status")

    # Updates that touch other columns are not status changes
    if old_status is not None and old_status == new_status:
        return None

    return CarStatusChange.model_validate(
        {
            "id": record.get("id"),
            "old_status": old_status,
            "new_status": new_status,
            "host_id": record.get("host_id"),
            "make": record.get("make"),
            "model": record.get("model"),
            "year": record.get("year"),
            "updated_at": record.get("updated_at"),
        }
    )


def _decode_admin_notification(payload: Dict[str, Any]) -> Optional[AdminNotification]:
    if payload.get("type") == "broadcast":
        return AdminNotification.model_validate(payload.get("payload") or {})

    if payload.get("event") != "INSERT":
        return None
    return AdminNotification.model_validate(payload.get("record") or {})


def decode_event(intent: SubscriptionIntent, payload: Dict[str, Any]) -> Optional[Notification]:
    """
    Turn a raw transport payload into the model subscribers of this kind receive.

    Args:
        intent: Intent of the channel the payload arrived on
        payload: Normalised row change or broadcast payload

    Returns:
        The typed notification, or None if the payload is not relevant to the feed

    Raises:
        pydantic.ValidationError: If the payload does not match the model
    """
    if intent.kind == ChannelKind.CAR_STATUS:
        return _decode_car_status(payload)
    if intent.kind == ChannelKind.ADMIN_NOTIFICATIONS:
        return _decode_admin_notification(payload)
    raise ValueError(f"Unknown channel kind: {intent.kind}")
