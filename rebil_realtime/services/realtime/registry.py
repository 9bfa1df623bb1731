"""Subscription registry: one channel per feed, many callbacks per channel."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ...config.logging import get_logger
from ...models.subscription import SubscriptionDetail, SubscriptionEntry, SubscriptionIntent
from .channels import bindings_for, decode_event
from .connection_manager import ConnectionManager
from .reconnection import ReconnectionController, RetryPolicy
from .transport import RealtimeChannel

logger = get_logger(__name__)

Callback = Callable[[Any], Any]
Decoder = Callable[[SubscriptionIntent, Dict[str, Any]], Any]


class SubscriptionHandle:
    """Handle returned by subscribe(); calling it (or unsubscribe()) detaches the callback.

    Unsubscribing is idempotent.
    """

    def __init__(
        self,
        channel_name: str,
        callback: Optional[Callback],
        release: Optional[Callable[["SubscriptionHandle"], None]],
    ):
        self.channel_name = channel_name
        self.callback = callback
        self._release = release
        self._active = release is not None

    @classmethod
    def inert(cls, channel_name: str) -> "SubscriptionHandle":
        """A handle that was never attached to anything."""
        return cls(channel_name, None, None)

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        release, self._release = self._release, None
        release(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"SubscriptionHandle(channel_name={self.channel_name!r}, active={self._active})"


class SubscriptionRegistry:
    """Deduplicates subscriptions by channel name and fans events out to callbacks.

    The underlying connection is opened on the first subscribe to a channel
    and released in the same call that removes the last callback.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        retry_policy: Optional[RetryPolicy] = None,
        decoder: Decoder = decode_event,
    ):
        self._connections = connection_manager
        self._decoder = decoder
        self._entries: Dict[str, SubscriptionEntry] = {}
        self._reconnection = ReconnectionController(
            connection_manager,
            rebuild=self._rebuild,
            on_failed=self._on_failed,
            policy=retry_policy,
        )

    @property
    def reconnection(self) -> ReconnectionController:
        return self._reconnection

    def get(self, channel_name: str) -> Optional[SubscriptionEntry]:
        return self._entries.get(channel_name)

    def channel_names(self) -> List[str]:
        return list(self._entries)

    def subscribe(self, intent: SubscriptionIntent, callback: Callback) -> SubscriptionHandle:
        """
        Register a callback for a feed, opening its channel if needed.

        Args:
            intent: Feed to subscribe to
            callback: Called with every decoded event on the feed

        Returns:
            Handle whose unsubscribe() detaches this callback

        Raises:
            PoolExhaustedError: If a new channel is needed and the pool is full
            Exception: Whatever the transport raised while opening the channel.
                Nothing is left registered for the feed in either case.
        """
        channel_name = intent.channel_name
        entry = self._entries.get(channel_name)

        if entry is not None and entry.is_active:
            entry.callbacks[callback] = None
            logger.debug(
                "subscription_callback_added",
                channel_name=channel_name,
                callback_count=len(entry.callbacks),
            )
            return self._make_handle(entry, callback)

        entry = SubscriptionEntry(intent=intent)
        entry.callbacks[callback] = None

        # Registered before acquire so a synchronous status report finds it
        self._entries[channel_name] = entry
        self._reconnection.arm(channel_name)
        try:
            self._connections.acquire(channel_name, bind=lambda channel: self._bind(entry, channel))
        except Exception:
            entry.is_active = False
            if self._entries.get(channel_name) is entry:
                del self._entries[channel_name]
            self._reconnection.disarm(channel_name)
            raise

        logger.info(
            "subscription_created",
            channel_name=channel_name,
            kind=intent.kind.value,
        )
        return self._make_handle(entry, callback)

    def _make_handle(self, entry: SubscriptionEntry, callback: Callback) -> SubscriptionHandle:
        return SubscriptionHandle(
            entry.channel_name,
            callback,
            lambda handle: self._remove_callback(entry, handle.callback),
        )

    def _remove_callback(self, entry: SubscriptionEntry, callback: Callback) -> None:
        entry.callbacks.pop(callback, None)
        logger.debug(
            "subscription_callback_removed",
            channel_name=entry.channel_name,
            callback_count=len(entry.callbacks),
        )
        if not entry.callbacks and self._entries.get(entry.channel_name) is entry:
            self._teardown(entry, reason="last_unsubscribe")

    def _teardown(self, entry: SubscriptionEntry, reason: str) -> None:
        entry.is_active = False
        del self._entries[entry.channel_name]
        self._reconnection.disarm(entry.channel_name)
        self._connections.release(entry.channel_name)
        logger.info(
            "subscription_removed",
            channel_name=entry.channel_name,
            reason=reason,
            events_delivered=entry.events_delivered,
        )

    def _bind(self, entry: SubscriptionEntry, channel: RealtimeChannel) -> None:
        channel_name = entry.channel_name
        for binding in bindings_for(entry.intent):
            channel.on(
                binding.event_type,
                lambda payload, _channel=channel: self.dispatch(channel_name, _channel, payload),
                filter=dict(binding.filter),
            )

    def dispatch(
        self,
        channel_name: str,
        channel: Optional[RealtimeChannel],
        payload: Dict[str, Any],
    ) -> int:
        """
        Deliver one inbound payload to every callback registered on the channel.

        Events from a channel that is no longer the live connection for the
        name are dropped. A failing callback is logged and does not stop
        delivery to the others.

        Returns:
            Number of callbacks invoked
        """
        entry = self._entries.get(channel_name)
        if entry is None or not entry.is_active or not entry.callbacks:
            return 0
        if channel is not None and not self._connections.owns(channel_name, channel):
            logger.debug("subscription_stale_channel_event_dropped", channel_name=channel_name)
            return 0

        self._connections.touch(channel_name)

        try:
            event = self._decoder(entry.intent, payload)
        except (ValidationError, ValueError) as e:
            logger.warning(
                "subscription_event_decode_failed",
                channel_name=channel_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0
        if event is None:
            return 0

        # Snapshot: callbacks may subscribe or unsubscribe while we iterate
        callbacks = list(entry.callbacks)
        for callback in callbacks:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    task.add_done_callback(
                        lambda t, _name=channel_name: self._log_async_callback_result(_name, t)
                    )
            except Exception as e:
                logger.error(
                    "subscription_callback_failed",
                    channel_name=channel_name,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
        entry.events_delivered += 1
        return len(callbacks)

    @staticmethod
    def _log_async_callback_result(channel_name: str, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "subscription_callback_failed",
                channel_name=channel_name,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    def _rebuild(self, channel_name: str) -> None:
        """Reopen a channel for its existing entry, keeping the callback set."""
        entry = self._entries.get(channel_name)
        if entry is None:
            return
        retry = self._reconnection.retry_state(channel_name)
        self._connections.release(channel_name)
        self._connections.acquire(
            channel_name,
            bind=lambda channel: self._bind(entry, channel),
            retry_count=retry.attempts if retry else 0,
        )
        entry.failed = False

    def _on_failed(self, channel_name: str) -> None:
        """Retries exhausted: close the connection but keep callbacks for reconnect()."""
        entry = self._entries.get(channel_name)
        if entry is None:
            return
        entry.failed = True
        self._connections.release(channel_name)
        logger.error(
            "subscription_failed",
            channel_name=channel_name,
            callback_count=len(entry.callbacks),
        )

    def reconnect(self, channel_name: str) -> bool:
        """Reset a channel's retry budget and reopen it now, unless it is open or joining."""
        if channel_name not in self._entries:
            return False
        return self._reconnection.reset(channel_name)

    def clear(self) -> None:
        """Tear down every subscription and cancel every pending retry."""
        self._reconnection.stop()
        for entry in list(self._entries.values()):
            self._teardown(entry, reason="cleanup")

    def details(self) -> List[SubscriptionDetail]:
        details = []
        for channel_name, entry in self._entries.items():
            record = self._connections.get(channel_name)
            retry = self._reconnection.retry_state(channel_name)
            details.append(
                SubscriptionDetail(
                    channel_name=channel_name,
                    kind=entry.intent.kind,
                    is_active=entry.is_active and not entry.failed,
                    callback_count=len(entry.callbacks),
                    connection_state=record.state.value if record else None,
                    reconnect_phase=self._reconnection.phase(channel_name).value,
                    retry_attempts=retry.attempts if retry else 0,
                )
            )
        return details
