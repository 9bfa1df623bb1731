"""Binds subscriptions to the lifetime of one consumer."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from ...config.logging import get_logger
from ...exceptions import PoolExhaustedError
from ...models.subscription import SubscriptionIntent
from .notification_service import NotificationService
from .registry import SubscriptionHandle

logger = get_logger(__name__)

UNAVAILABLE_REASON = "realtime updates unavailable"


@dataclass
class _TrackedSubscription:
    channel_name: str
    handle: Optional[SubscriptionHandle] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.handle is not None and self.handle.active


class SubscriptionLifecycle:
    """Subscriptions owned by one consumer (for example a connected client).

    on_mount() subscribes once the service is ready, on_unmount() releases
    every subscription exactly once, and no callback runs after unmount.
    Use it as an async context manager so the release also happens when the
    consumer fails:

        async with SubscriptionLifecycle(service) as scope:
            scope.on_mount(car_status_intent(), handle_change)
            await scope.wait_mounted()
            ...
    """

    def __init__(self, service: NotificationService, ready_timeout: Optional[float] = 10.0):
        self._service = service
        self._ready_timeout = ready_timeout
        self._subscriptions: List[_TrackedSubscription] = []
        self._pending: List[asyncio.Task] = []
        self._unmounted = False

    @property
    def is_ready(self) -> bool:
        return self._service.is_ready and not self._unmounted

    @property
    def is_unmounted(self) -> bool:
        return self._unmounted

    @property
    def degraded(self) -> bool:
        """True if any mount could not get a live subscription."""
        return any(tracked.error for tracked in self._subscriptions)

    def on_mount(self, intent: SubscriptionIntent, callback: Callable[[Any], Any]) -> asyncio.Task:
        """
        Subscribe `callback` to a feed once the service reports ready.

        Returns:
            The pending mount task
        """
        tracked = _TrackedSubscription(channel_name=intent.channel_name)
        self._subscriptions.append(tracked)
        task = asyncio.create_task(self._mount(tracked, intent, callback))
        self._pending.append(task)
        task.add_done_callback(self._forget_pending)
        return task

    def _forget_pending(self, task: asyncio.Task) -> None:
        if task in self._pending:
            self._pending.remove(task)

    async def _mount(
        self,
        tracked: _TrackedSubscription,
        intent: SubscriptionIntent,
        callback: Callable[[Any], Any],
    ) -> None:
        if self._unmounted:
            return

        ready = await self._service.wait_ready(timeout=self._ready_timeout)
        if self._unmounted:
            return
        if not ready:
            tracked.error = UNAVAILABLE_REASON
            logger.warning(
                "lifecycle_service_not_ready",
                channel_name=intent.channel_name,
                timeout=self._ready_timeout,
            )
            return

        def guarded(event: Any) -> Any:
            if self._unmounted:
                return None
            return callback(event)

        try:
            tracked.handle = self._service.subscribe(intent, guarded)
        except PoolExhaustedError as e:
            tracked.error = UNAVAILABLE_REASON
            logger.warning(
                "lifecycle_subscription_unavailable",
                channel_name=intent.channel_name,
                error=e.message,
            )
            return
        except Exception as e:
            tracked.error = UNAVAILABLE_REASON
            logger.error(
                "lifecycle_subscription_failed",
                channel_name=intent.channel_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        logger.debug("lifecycle_mounted", channel_name=intent.channel_name)

    async def wait_mounted(self) -> None:
        """Wait for every pending mount to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def on_unmount(self) -> None:
        """Release every subscription. Safe to call more than once."""
        if self._unmounted:
            return
        self._unmounted = True

        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

        released = 0
        for tracked in self._subscriptions:
            if tracked.handle is not None and tracked.handle.active:
                tracked.handle.unsubscribe()
                released += 1
        logger.debug("lifecycle_unmounted", released=released)

    def reconnect(self) -> List[str]:
        """Manually reconnect the channels this consumer uses."""
        if self._unmounted:
            return []
        reconnected: List[str] = []
        for channel_name in {tracked.channel_name for tracked in self._subscriptions if tracked.is_active}:
            reconnected.extend(self._service.reconnect(channel_name))
        return reconnected

    def get_stats(self) -> dict:
        """Subscription statistics for debugging surfaces."""
        per_channel = [
            {
                "channel_name": tracked.channel_name,
                "is_active": tracked.is_active,
                "phase": self._service.channel_phase(tracked.channel_name).value,
                "error": tracked.error,
            }
            for tracked in self._subscriptions
        ]
        return {
            "active_subscriptions": sum(1 for detail in per_channel if detail["is_active"]),
            "total_subscriptions": len(per_channel),
            "per_channel_detail": per_channel,
        }

    async def __aenter__(self) -> "SubscriptionLifecycle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.on_unmount()
