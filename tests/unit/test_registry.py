"""Unit tests for SubscriptionRegistry and SubscriptionHandle."""

import asyncio
from unittest.mock import MagicMock

import pytest

from rebil_realtime.exceptions import PoolExhaustedError
from rebil_realtime.models.notifications import AdminNotification, CarStatus, CarStatusChange
from rebil_realtime.models.subscription import ReconnectPhase
from rebil_realtime.services.realtime.channels import (
    CAR_STATUS_CHANNEL,
    admin_notifications_intent,
    car_status_intent,
)
from rebil_realtime.services.realtime.connection_manager import ConnectionManager
from rebil_realtime.services.realtime.reconnection import RetryPolicy
from rebil_realtime.services.realtime.registry import SubscriptionHandle, SubscriptionRegistry
from tests.fakes import admin_notification_record, car_update_payload


@pytest.fixture
def connection_manager(transport):
    return ConnectionManager(transport, max_connections=5)


@pytest.fixture
def registry(connection_manager):
    """Registry with fast retry timers."""
    return SubscriptionRegistry(
        connection_manager,
        retry_policy=RetryPolicy(base_delay=0.01, max_delay=0.04, max_retries=2),
    )


def emit_car_update(transport, **kwargs):
    transport.latest(CAR_STATUS_CHANNEL).emit("postgres_changes", car_update_payload(**kwargs))


def test_subscribers_to_same_feed_share_one_connection(registry, transport):
    registry.subscribe(car_status_intent(), MagicMock())
    registry.subscribe(car_status_intent(), MagicMock())

    assert len(transport.channels) == 1
    assert len(registry.get(CAR_STATUS_CHANNEL).callbacks) == 2


def test_same_callback_is_registered_once(registry):
    callback = MagicMock()

    registry.subscribe(car_status_intent(), callback)
    registry.subscribe(car_status_intent(), callback)

    assert len(registry.get(CAR_STATUS_CHANNEL).callbacks) == 1


def test_channel_binds_table_and_broadcast_handlers(registry, transport):
    registry.subscribe(car_status_intent(), MagicMock())

    bound = [(event_type, filter) for event_type, filter, _ in transport.latest(CAR_STATUS_CHANNEL).handlers]
    assert ("postgres_changes", {"event": "*", "schema": "public", "table": "cars"}) in bound
    assert ("broadcast", {"event": "car_status_change"}) in bound


def test_two_callbacks_then_unsubscribe_each(registry, transport):
    callback_a = MagicMock()
    callback_b = MagicMock()
    handle_a = registry.subscribe(car_status_intent(), callback_a)
    handle_b = registry.subscribe(car_status_intent(), callback_b)
    transport.latest(CAR_STATUS_CHANNEL).ack()

    emit_car_update(transport, car_id="car1")

    event = callback_a.call_args.args[0]
    assert isinstance(event, CarStatusChange)
    assert event.id == "car1"
    assert event.old_status == CarStatus.PENDING_APPROVAL
    assert event.new_status == CarStatus.ACTIVE
    callback_b.assert_called_once_with(event)

    handle_a.unsubscribe()
    emit_car_update(transport, car_id="car2")

    assert callback_a.call_count == 1
    assert callback_b.call_count == 2
    assert not transport.latest(CAR_STATUS_CHANNEL).unsubscribed

    handle_b.unsubscribe()

    assert transport.latest(CAR_STATUS_CHANNEL).unsubscribed
    assert registry.get(CAR_STATUS_CHANNEL) is None


def test_unsubscribe_is_idempotent(registry, transport):
    handle_a = registry.subscribe(car_status_intent(), MagicMock())
    registry.subscribe(car_status_intent(), MagicMock())

    handle_a.unsubscribe()
    handle_a.unsubscribe()
    handle_a()

    entry = registry.get(CAR_STATUS_CHANNEL)
    assert entry is not None
    assert len(entry.callbacks) == 1
    assert not handle_a.active


def test_inert_handle_does_nothing():
    handle = SubscriptionHandle.inert("car_status_changes")

    handle.unsubscribe()

    assert not handle.active


def test_failing_callback_does_not_block_others(registry, transport):
    broken = MagicMock(side_effect=RuntimeError("boom"))
    healthy = MagicMock()
    registry.subscribe(car_status_intent(), broken)
    registry.subscribe(car_status_intent(), healthy)

    emit_car_update(transport)

    broken.assert_called_once()
    healthy.assert_called_once()


def test_unsubscribing_during_dispatch_uses_snapshot(registry, transport):
    calls = []
    handles = {}

    def first(event):
        calls.append("first")
        handles["second"].unsubscribe()

    def second(event):
        calls.append("second")

    handles["first"] = registry.subscribe(car_status_intent(), first)
    handles["second"] = registry.subscribe(car_status_intent(), second)

    emit_car_update(transport)
    emit_car_update(transport)

    assert calls == ["first", "second", "first"]


def test_unchanged_status_update_is_not_delivered(registry, transport):
    callback = MagicMock()
    registry.subscribe(car_status_intent(), callback)

    emit_car_update(transport, old_status="ACTIVE", new_status="ACTIVE")

    callback.assert_not_called()


def test_invalid_payload_is_dropped(registry, transport):
    callback = MagicMock()
    registry.subscribe(car_status_intent(), callback)
    payload = car_update_payload()
    payload["record"]["status"] = "SCRAPPED"

    transport.latest(CAR_STATUS_CHANNEL).emit("postgres_changes", payload)

    callback.assert_not_called()


def test_broadcast_event_is_delivered(registry, transport):
    callback = MagicMock()
    registry.subscribe(car_status_intent(), callback)
    change = {
        "id": "car9",
        "old_status": "DRAFT",
        "new_status": "PENDING_APPROVAL",
        "host_id": "host-2",
        "make": "Suzuki",
        "model": "Ertiga",
        "year": 2020,
        "updated_at": "2024-05-02T08:00:00+00:00",
    }

    transport.latest(CAR_STATUS_CHANNEL).emit(
        "broadcast", {"type": "broadcast", "event": "car_status_change", "payload": change}
    )

    event = callback.call_args.args[0]
    assert event.id == "car9"
    assert event.new_status == CarStatus.PENDING_APPROVAL


def test_admin_feeds_are_isolated_per_admin(registry, transport):
    callback_1 = MagicMock()
    callback_2 = MagicMock()
    registry.subscribe(admin_notifications_intent("admin-1"), callback_1)
    registry.subscribe(admin_notifications_intent("admin-2"), callback_2)

    transport.latest("admin_notifications_admin-1").emit(
        "postgres_changes",
        {"event": "INSERT", "table": "admin_notifications", "record": admin_notification_record()},
    )

    assert isinstance(callback_1.call_args.args[0], AdminNotification)
    callback_2.assert_not_called()


def test_pool_exhaustion_leaves_existing_feed_intact(transport):
    registry = SubscriptionRegistry(ConnectionManager(transport, max_connections=1))
    car_callback = MagicMock()
    registry.subscribe(car_status_intent(), car_callback)

    with pytest.raises(PoolExhaustedError):
        registry.subscribe(admin_notifications_intent("admin-1"), MagicMock())

    assert registry.get("admin_notifications_admin-1") is None
    assert registry.reconnection.phase("admin_notifications_admin-1") == ReconnectPhase.IDLE
    assert len(transport.channels) == 1

    emit_car_update(transport)
    car_callback.assert_called_once()


def test_unsubscribe_frees_pool_slot(transport):
    registry = SubscriptionRegistry(ConnectionManager(transport, max_connections=1))
    handle = registry.subscribe(car_status_intent(), MagicMock())

    handle.unsubscribe()
    registry.subscribe(admin_notifications_intent("admin-1"), MagicMock())

    assert registry.get("admin_notifications_admin-1") is not None


def test_transport_failure_on_open_leaves_nothing_registered(transport, connection_manager):
    registry = SubscriptionRegistry(connection_manager)
    transport.fail_subscribe = True

    with pytest.raises(RuntimeError):
        registry.subscribe(car_status_intent(), MagicMock())

    assert registry.get(CAR_STATUS_CHANNEL) is None
    assert registry.reconnection.phase(CAR_STATUS_CHANNEL) == ReconnectPhase.IDLE
    assert connection_manager.get(CAR_STATUS_CHANNEL) is None
    assert connection_manager.live_count() == 0
    assert transport.live() == []

    # The feed can be opened again once the transport recovers
    transport.fail_subscribe = False
    registry.subscribe(car_status_intent(), MagicMock())
    assert connection_manager.live_count() == 1


def test_reconnect_leaves_healthy_shared_channel_alone(registry, transport):
    callbacks = [MagicMock(), MagicMock()]
    for callback in callbacks:
        registry.subscribe(car_status_intent(), callback)
    channel = transport.latest(CAR_STATUS_CHANNEL)
    channel.ack()

    assert registry.reconnect(CAR_STATUS_CHANNEL) is False

    assert transport.channels == [channel]
    assert not channel.unsubscribed
    emit_car_update(transport)
    for callback in callbacks:
        callback.assert_called_once()


@pytest.mark.asyncio
async def test_retry_count_is_carried_across_rebuilds(registry, transport, connection_manager):
    registry.subscribe(car_status_intent(), MagicMock())

    transport.latest(CAR_STATUS_CHANNEL).fail()
    await asyncio.sleep(0.05)
    assert len(transport.channels) == 2
    assert connection_manager.get(CAR_STATUS_CHANNEL).retry_count == 1

    transport.latest(CAR_STATUS_CHANNEL).fail()
    await asyncio.sleep(0.05)
    assert len(transport.channels) == 3
    assert connection_manager.get(CAR_STATUS_CHANNEL).retry_count == 2
    assert connection_manager.stats()["details"][0]["retry_count"] == 2

    transport.latest(CAR_STATUS_CHANNEL).ack()
    assert connection_manager.get(CAR_STATUS_CHANNEL).retry_count == 0


@pytest.mark.asyncio
async def test_failed_channel_is_rebuilt_with_same_callbacks(registry, transport):
    callback = MagicMock()
    registry.subscribe(car_status_intent(), callback)
    old_channel = transport.latest(CAR_STATUS_CHANNEL)
    old_channel.ack()

    old_channel.fail()
    await asyncio.sleep(0.05)

    new_channel = transport.latest(CAR_STATUS_CHANNEL)
    assert new_channel is not old_channel
    assert old_channel.unsubscribed
    new_channel.ack()
    assert registry.reconnection.phase(CAR_STATUS_CHANNEL) == ReconnectPhase.OPEN

    new_channel.emit("postgres_changes", car_update_payload(car_id="car2"))
    old_channel.emit("postgres_changes", car_update_payload(car_id="stale"))

    callback.assert_called_once()
    assert callback.call_args.args[0].id == "car2"


@pytest.mark.asyncio
async def test_admin_channel_rebuilt_for_same_admin(registry, transport):
    callback = MagicMock()
    registry.subscribe(admin_notifications_intent("admin-7"), callback)

    transport.latest("admin_notifications_admin-7").fail("TIMED_OUT")
    await asyncio.sleep(0.05)

    assert len(transport.channels_named("admin_notifications_admin-7")) == 2
    transport.latest("admin_notifications_admin-7").emit(
        "postgres_changes",
        {"event": "INSERT", "table": "admin_notifications", "record": admin_notification_record()},
    )
    callback.assert_called_once()


@pytest.mark.asyncio
async def test_exhausted_retries_keep_callbacks_for_manual_reconnect(registry, transport):
    callback = MagicMock()
    registry.subscribe(car_status_intent(), callback)

    for _ in range(3):
        transport.latest(CAR_STATUS_CHANNEL).fail()
        await asyncio.sleep(0.1)

    entry = registry.get(CAR_STATUS_CHANNEL)
    assert entry.failed
    assert registry.reconnection.phase(CAR_STATUS_CHANNEL) == ReconnectPhase.FAILED
    assert all(channel.unsubscribed for channel in transport.channels)
    assert registry.details()[0].is_active is False

    assert registry.reconnect(CAR_STATUS_CHANNEL) is True
    transport.latest(CAR_STATUS_CHANNEL).ack()
    emit_car_update(transport)

    assert not entry.failed
    callback.assert_called_once()


def test_reconnect_unknown_channel_returns_false(registry):
    assert registry.reconnect("nope") is False


@pytest.mark.asyncio
async def test_async_callback_is_scheduled(registry, transport):
    received = []

    async def callback(event):
        received.append(event.id)

    registry.subscribe(car_status_intent(), callback)
    emit_car_update(transport, car_id="car5")
    await asyncio.sleep(0)

    assert received == ["car5"]


@pytest.mark.asyncio
async def test_clear_tears_down_everything(registry, transport):
    registry.subscribe(car_status_intent(), MagicMock())
    registry.subscribe(admin_notifications_intent("admin-1"), MagicMock())
    transport.latest(CAR_STATUS_CHANNEL).fail()

    registry.clear()
    await asyncio.sleep(0.05)

    assert registry.channel_names() == []
    assert transport.live() == []
    assert len(transport.channels) == 2


def test_details_reports_each_channel(registry, transport):
    registry.subscribe(car_status_intent(), MagicMock())
    registry.subscribe(car_status_intent(), MagicMock())
    transport.latest(CAR_STATUS_CHANNEL).ack()

    (detail,) = registry.details()

    assert detail.channel_name == CAR_STATUS_CHANNEL
    assert detail.callback_count == 2
    assert detail.connection_state == "open"
    assert detail.reconnect_phase == "open"
    assert detail.is_active
