"""Notification service: composition root of the realtime subscription layer."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ...config.logging import get_logger
from ...config.settings import Settings
from ...exceptions import ConfigurationError, PoolExhaustedError
from ...models.connection import ConnectionState
from ...models.notifications import AdminNotification, CarStatusChange
from ...models.subscription import ReconnectPhase, ServiceStats, SubscriptionIntent
from .channels import admin_notifications_intent, car_status_intent
from .connection_manager import MAX_CONNECTIONS_LIMIT, ConnectionManager
from .reconnection import RetryPolicy
from .registry import SubscriptionHandle, SubscriptionRegistry
from .transport import RealtimeTransport

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotificationServiceConfig:
    """Tuning knobs for the notification service."""

    max_connections: int = 5
    connection_timeout: float = 30.0
    cleanup_interval: float = 60.0
    error_grace_period: float = 30.0
    enable_health_check: bool = True
    auto_reconnect: bool = True
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    enable_exponential_backoff: bool = True

    def __post_init__(self) -> None:
        if not 1 <= self.max_connections <= MAX_CONNECTIONS_LIMIT:
            raise ConfigurationError(
                f"max_connections must be between 1 and {MAX_CONNECTIONS_LIMIT}"
            )
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must not be negative")
        if self.base_delay <= 0 or self.max_delay <= 0:
            raise ConfigurationError("retry delays must be positive")
        if self.max_delay < self.base_delay:
            raise ConfigurationError("max_delay must not be smaller than base_delay")
        if self.connection_timeout <= 0 or self.cleanup_interval <= 0:
            raise ConfigurationError("connection_timeout and cleanup_interval must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationServiceConfig":
        """Build the config from application settings."""
        return cls(
            max_connections=settings.realtime_max_connections,
            connection_timeout=settings.realtime_connection_timeout,
            cleanup_interval=settings.realtime_cleanup_interval,
            error_grace_period=settings.realtime_error_grace_period,
            enable_health_check=settings.realtime_enable_health_check,
            auto_reconnect=settings.realtime_auto_reconnect,
            max_retries=settings.realtime_max_retries,
            base_delay=settings.realtime_base_delay,
            max_delay=settings.realtime_max_delay,
            enable_exponential_backoff=settings.realtime_enable_exponential_backoff,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            max_retries=self.max_retries,
            exponential=self.enable_exponential_backoff,
            auto_reconnect=self.auto_reconnect,
        )


class NotificationService:
    """Realtime feeds of car status changes and admin notifications.

    Constructed explicitly by the application and driven through
    init()/shutdown(). Subscribing never raises through the public
    subscribe_to_* methods: failures are visible in get_service_stats().
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        config: Optional[NotificationServiceConfig] = None,
    ):
        self._transport = transport
        self._config = config or NotificationServiceConfig()
        self._connection_manager = ConnectionManager(
            transport,
            max_connections=self._config.max_connections,
            connection_timeout=self._config.connection_timeout,
            cleanup_interval=self._config.cleanup_interval,
            error_grace_period=self._config.error_grace_period,
            enable_health_check=self._config.enable_health_check,
        )
        self._registry = SubscriptionRegistry(
            self._connection_manager, retry_policy=self._config.retry_policy
        )
        self._ready_event = asyncio.Event()
        self._is_destroyed = False
        self._pool_exhausted_count = 0
        self._init_error: Optional[str] = None

    @property
    def config(self) -> NotificationServiceConfig:
        return self._config

    @property
    def is_ready(self) -> bool:
        return self._ready_event.is_set() and not self._is_destroyed

    @property
    def is_destroyed(self) -> bool:
        return self._is_destroyed

    @property
    def init_error(self) -> Optional[str]:
        return self._init_error

    @property
    def connection_manager(self) -> ConnectionManager:
        return self._connection_manager

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    async def init(self) -> bool:
        """
        Connect the transport and start the health sweep.

        Failure is logged and leaves the service not ready; call init() again
        to retry.

        Returns:
            True if the service is ready
        """
        if self._is_destroyed:
            logger.warning("notification_service_init_after_shutdown")
            return False
        if self.is_ready:
            return True

        logger.info("notification_service_initializing")
        try:
            await self._transport.connect()
            await self._connection_manager.start()
        except Exception as e:
            self._init_error = str(e)
            logger.error(
                "notification_service_initialization_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False

        self._init_error = None
        self._ready_event.set()
        logger.info(
            "notification_service_initialized",
            max_connections=self._config.max_connections,
        )
        return True

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the service is ready.

        Args:
            timeout: Maximum time to wait in seconds

        Returns:
            True if ready, False on timeout or after shutdown
        """
        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_ready

    def subscribe(self, intent: SubscriptionIntent, callback: Callable[[Any], Any]) -> SubscriptionHandle:
        """
        Subscribe a callback to a feed.

        Before the service is ready this is a no-op returning an inert handle.

        Raises:
            PoolExhaustedError: If the connection pool is full
        """
        if not self.is_ready:
            logger.debug(
                "notification_service_not_ready_subscribe_ignored",
                channel_name=intent.channel_name,
            )
            return SubscriptionHandle.inert(intent.channel_name)
        try:
            return self._registry.subscribe(intent, callback)
        except PoolExhaustedError:
            self._pool_exhausted_count += 1
            raise

    def _subscribe_safely(self, intent: SubscriptionIntent, callback: Callable[[Any], Any]) -> SubscriptionHandle:
        try:
            return self.subscribe(intent, callback)
        except PoolExhaustedError as e:
            logger.warning(
                "notification_subscription_unavailable",
                channel_name=intent.channel_name,
                error=e.message,
            )
            return SubscriptionHandle.inert(intent.channel_name)

    def subscribe_to_car_status_changes(
        self, callback: Callable[[CarStatusChange], Any]
    ) -> SubscriptionHandle:
        """Subscribe to vehicle listing status changes."""
        return self._subscribe_safely(car_status_intent(), callback)

    def subscribe_to_admin_notifications(
        self, admin_user_id: str, callback: Callable[[AdminNotification], Any]
    ) -> SubscriptionHandle:
        """Subscribe to one administrator's notification feed."""
        return self._subscribe_safely(admin_notifications_intent(admin_user_id), callback)

    def channel_phase(self, channel_name: str) -> ReconnectPhase:
        return self._registry.reconnection.phase(channel_name)

    def reconnect(self, channel_name: Optional[str] = None) -> list[str]:
        """
        Reopen channels with a fresh retry budget.

        Channels that are open or still joining are never torn down, so
        subscribers sharing a healthy channel keep receiving events.

        Args:
            channel_name: Channel to reconnect. When omitted every subscribed
                channel is considered.

        Returns:
            Names of the channels that were reconnected
        """
        if not self.is_ready:
            logger.warning("notification_service_not_ready_reconnect_ignored")
            return []

        candidates = [channel_name] if channel_name is not None else self._registry.channel_names()
        names = [name for name in candidates if self._registry.reconnect(name)]
        logger.info("notification_service_reconnect", channels=names)
        return names

    def get_service_stats(self) -> ServiceStats:
        """Snapshot of connections and subscriptions."""
        pool = self._connection_manager.stats()
        by_state = pool["by_state"]
        details = self._registry.details()
        return ServiceStats(
            active_connections=by_state[ConnectionState.CONNECTING.value]
            + by_state[ConnectionState.OPEN.value],
            total_connections=pool["total"],
            error_connections=by_state[ConnectionState.ERROR.value],
            active_subscriptions=sum(1 for detail in details if detail.is_active),
            total_subscriptions=len(details),
            total_callbacks=sum(detail.callback_count for detail in details),
            reconnect_attempts=self._registry.reconnection.total_attempts(),
            failed_channels=sum(
                1 for detail in details if detail.reconnect_phase == ReconnectPhase.FAILED.value
            ),
            pool_exhausted_count=self._pool_exhausted_count,
            is_ready=self.is_ready,
            is_destroyed=self._is_destroyed,
            subscription_details=details,
        )

    def cleanup(self) -> None:
        """Tear down every subscription and pending retry. The service stays usable."""
        logger.info("notification_service_cleanup")
        self._registry.clear()
        self._connection_manager.close_all()

    async def shutdown(self) -> None:
        """Release everything and disconnect the transport."""
        if self._is_destroyed:
            return
        logger.info("notification_service_shutting_down")
        self.cleanup()
        self._is_destroyed = True
        self._ready_event.clear()
        await self._connection_manager.stop()
        try:
            await self._transport.disconnect()
        except Exception as e:
            logger.warning(
                "notification_service_transport_disconnect_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
        logger.info("notification_service_shutdown_complete")
