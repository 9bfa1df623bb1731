"""Unit tests for channel naming and payload decoding."""

import pytest
from pydantic import ValidationError

from rebil_realtime.models.notifications import AdminNotification, CarStatus, CarStatusChange
from rebil_realtime.models.subscription import ChannelKind
from rebil_realtime.services.realtime.channels import (
    admin_notifications_intent,
    bindings_for,
    car_status_intent,
    decode_event,
)
from tests.fakes import admin_notification_record, car_update_payload


def test_car_status_intent_uses_shared_channel():
    intent = car_status_intent()

    assert intent.kind == ChannelKind.CAR_STATUS
    assert intent.channel_name == "car_status_changes"
    assert intent == car_status_intent()


def test_admin_intent_is_scoped_to_admin():
    intent = admin_notifications_intent("admin-42")

    assert intent.kind == ChannelKind.ADMIN_NOTIFICATIONS
    assert intent.channel_name == "admin_notifications_admin-42"
    assert intent.admin_user_id == "admin-42"


def test_admin_intent_requires_admin_id():
    with pytest.raises(ValueError):
        admin_notifications_intent("")


def test_admin_bindings_listen_for_inserts_only():
    (table_binding, broadcast_binding) = bindings_for(admin_notifications_intent("a"))

    assert table_binding.event_type == "postgres_changes"
    assert table_binding.filter["event"] == "INSERT"
    assert table_binding.filter["table"] == "admin_notifications"
    assert broadcast_binding.filter == {"event": "admin_notification"}


def test_decode_car_update():
    event = decode_event(car_status_intent(), car_update_payload(car_id="car1"))

    assert isinstance(event, CarStatusChange)
    assert event.id == "car1"
    assert event.old_status == CarStatus.PENDING_APPROVAL
    assert event.new_status == CarStatus.ACTIVE
    assert event.make == "Toyota"


def test_decode_car_update_without_old_status():
    event = decode_event(car_status_intent(), car_update_payload(old_status=None))

    assert event.old_status is None
    assert event.new_status == CarStatus.ACTIVE


def test_decode_car_insert():
    payload = car_update_payload(old_status=None, new_status="DRAFT")
    payload["event"] = "INSERT"

    event = decode_event(car_status_intent(), payload)

    assert event.new_status == CarStatus.DRAFT


@pytest.mark.parametrize("event_type", ["DELETE", None])
def test_decode_car_ignores_other_events(event_type):
    payload = car_update_payload()
    payload["event"] = event_type

    assert decode_event(car_status_intent(), payload) is None


def test_decode_car_ignores_unchanged_status():
    payload = car_update_payload(old_status="ACTIVE", new_status="ACTIVE")

    assert decode_event(car_status_intent(), payload) is None


def test_decode_car_rejects_unknown_status():
    payload = car_update_payload(new_status="SCRAPPED")

    with pytest.raises(ValidationError):
        decode_event(car_status_intent(), payload)


def test_decode_admin_insert():
    payload = {"event": "INSERT", "table": "admin_notifications", "record": admin_notification_record()}

    event = decode_event(admin_notifications_intent("admin-1"), payload)

    assert isinstance(event, AdminNotification)
    assert event.type == "CAR_SUBMITTED_FOR_APPROVAL"
    assert event.car_year == 2022
    assert event.read is False


def test_decode_admin_ignores_updates():
    payload = {"event": "UPDATE", "table": "admin_notifications", "record": admin_notification_record()}

    assert decode_event(admin_notifications_intent("admin-1"), payload) is None


def test_decode_admin_broadcast():
    record = admin_notification_record("n-5")
    record["type"] = "CAR_STATUS_CHANGED"
    record["old_status"] = "PENDING_APPROVAL"
    record["new_status"] = "ACTIVE"
    payload = {"type": "broadcast", "event": "admin_notification", "payload": record}

    event = decode_event(admin_notifications_intent("admin-1"), payload)

    assert event.id == "n-5"
    assert event.old_status == CarStatus.PENDING_APPROVAL
