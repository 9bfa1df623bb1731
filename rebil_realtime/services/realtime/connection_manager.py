"""Connection manager owning the bounded pool of realtime channel connections."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ...config.logging import get_logger
from ...exceptions import PoolExhaustedError
from ...models.connection import ChannelStatus, ConnectionRecord, ConnectionState
from .transport import RealtimeChannel, RealtimeTransport

logger = get_logger(__name__)

DEFAULT_MAX_CONNECTIONS = 5
MAX_CONNECTIONS_LIMIT = 10

StatusListener = Callable[[str, ChannelStatus], None]


class ConnectionManager:
    """Opens, tracks and closes named channels on the shared realtime transport.

    This is the only component that calls channel subscribe/unsubscribe on
    the transport. At most one live (connecting or open) record exists per
    channel name, and the number of live records never exceeds
    max_connections.
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        connection_timeout: float = 30.0,
        cleanup_interval: float = 60.0,
        error_grace_period: float = 30.0,
        enable_health_check: bool = True,
    ):
        """
        Initialize connection manager.

        Args:
            transport: Realtime transport channels are opened on
            max_connections: Maximum live connections (1..10)
            connection_timeout: Seconds a connection may stay connecting
            cleanup_interval: Seconds between health sweeps
            error_grace_period: Seconds an errored connection is kept
            enable_health_check: Whether start() launches the sweep task
        """
        if not 1 <= max_connections <= MAX_CONNECTIONS_LIMIT:
            raise ValueError(
                f"max_connections must be between 1 and {MAX_CONNECTIONS_LIMIT}, got {max_connections}"
            )
        self._transport = transport
        self._max_connections = max_connections
        self._connection_timeout = timedelta(seconds=connection_timeout)
        self._cleanup_interval = cleanup_interval
        self._error_grace_period = timedelta(seconds=error_grace_period)
        self._enable_health_check = enable_health_check

        self._connections: Dict[str, ConnectionRecord] = {}
        self._listeners: List[StatusListener] = []
        self._sweep_task: Optional[asyncio.Task] = None
        self._is_running = False

    @property
    def max_connections(self) -> int:
        return self._max_connections

    def add_status_listener(self, listener: StatusListener) -> None:
        """Register a callback for channel lifecycle events."""
        self._listeners.append(listener)

    def get(self, channel_name: str) -> Optional[ConnectionRecord]:
        """Get the record for a channel name, if tracked."""
        return self._connections.get(channel_name)

    def owns(self, channel_name: str, channel: RealtimeChannel) -> bool:
        """Check that `channel` is the current connection for `channel_name`."""
        record = self._connections.get(channel_name)
        return record is not None and record.channel is channel

    def live_count(self) -> int:
        return sum(1 for record in self._connections.values() if record.is_live)

    def acquire(
        self,
        channel_name: str,
        bind: Optional[Callable[[RealtimeChannel], None]] = None,
        retry_count: int = 0,
    ) -> ConnectionRecord:
        """
        Get the live connection for a channel, opening one if needed.

        Args:
            channel_name: Name of the channel
            bind: Called with the new channel before it is subscribed, so that
                event handlers are in place before the join is sent
            retry_count: Retries already spent on this channel, carried over
                when a failed connection is rebuilt

        Returns:
            Existing live record, or a new record in CONNECTING state

        Raises:
            PoolExhaustedError: If the pool is full and no live record matches
            Exception: Whatever binding or subscribing the new channel raised;
                the half-opened record is closed first
        """
        existing = self._connections.get(channel_name)
        if existing and existing.is_live:
            logger.debug(
                "connection_reused",
                channel_name=channel_name,
                state=existing.state.value,
            )
            return existing

        live = self.live_count()
        if live >= self._max_connections:
            logger.warning(
                "connection_pool_exhausted",
                channel_name=channel_name,
                live_connections=live,
                max_connections=self._max_connections,
            )
            raise PoolExhaustedError(channel_name, self._max_connections)

        # A dead record for this name (error/closed) is replaced, never revived
        if existing:
            self._close(existing, reason="replaced")

        channel = self._transport.channel(channel_name)
        record = ConnectionRecord(channel_name=channel_name, channel=channel, retry_count=retry_count)
        self._connections[channel_name] = record

        logger.info(
            "connection_opening",
            channel_name=channel_name,
            live_connections=live + 1,
            max_connections=self._max_connections,
        )
        try:
            if bind is not None:
                bind(channel)
            channel.subscribe(lambda status: self._handle_status(record, status))
        except Exception as e:
            logger.error(
                "connection_open_failed",
                channel_name=channel_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._close(record, reason="open_failed")
            raise
        return record

    def release(self, channel_name: str) -> bool:
        """
        Close the named connection regardless of its state.

        Returns:
            True if a connection was closed, False if none was tracked
        """
        record = self._connections.get(channel_name)
        if record is None:
            return False
        self._close(record, reason="released")
        return True

    def touch(self, channel_name: str) -> None:
        """Record inbound activity on a channel."""
        record = self._connections.get(channel_name)
        if record is not None:
            record.last_activity_at = datetime.now()

    def _close(self, record: ConnectionRecord, reason: str) -> None:
        # Drop the record first so late status callbacks from this channel are ignored
        if self._connections.get(record.channel_name) is record:
            del self._connections[record.channel_name]
        old_state = record.state
        record.state = ConnectionState.CLOSED

        if record.channel is not None:
            try:
                record.channel.unsubscribe()
            except Exception as e:
                logger.warning(
                    "connection_unsubscribe_failed",
                    channel_name=record.channel_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info(
            "connection_closed",
            channel_name=record.channel_name,
            old_state=old_state.value,
            reason=reason,
        )

    def _handle_status(self, record: ConnectionRecord, status: str) -> None:
        """Apply a transport status report to the record it was issued for."""
        if self._connections.get(record.channel_name) is not record:
            logger.debug(
                "connection_stale_status_ignored",
                channel_name=record.channel_name,
                status=status,
            )
            return

        try:
            channel_status = ChannelStatus(status)
        except ValueError:
            logger.warning(
                "connection_unknown_status",
                channel_name=record.channel_name,
                status=status,
            )
            return

        old_state = record.state
        now = datetime.now()
        if channel_status == ChannelStatus.SUBSCRIBED:
            record.state = ConnectionState.OPEN
            record.last_activity_at = now
            record.retry_count = 0
            record.last_error = None
        elif channel_status in (ChannelStatus.CHANNEL_ERROR, ChannelStatus.TIMED_OUT):
            record.state = ConnectionState.ERROR
            record.last_activity_at = now
            record.retry_count += 1
            record.last_error = channel_status.value
        else:
            # Closed by the server; our own closes never reach here
            record.state = ConnectionState.CLOSED
            record.last_activity_at = now

        logger.info(
            "connection_state_changed",
            channel_name=record.channel_name,
            old_state=old_state.value,
            new_state=record.state.value,
            status=channel_status.value,
        )
        self._emit(record.channel_name, channel_status)

    def _emit(self, channel_name: str, status: ChannelStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(channel_name, status)
            except Exception as e:
                logger.error(
                    "connection_status_listener_failed",
                    channel_name=channel_name,
                    status=status.value,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    def health_sweep(self) -> List[str]:
        """
        Close zombie connections.

        Errored connections older than the grace period and connections stuck
        in CONNECTING longer than the connection timeout are closed and
        removed. A timed-out CONNECTING channel is reported as TIMED_OUT so
        its subscribers get a retry.

        Returns:
            Names of the channels that were removed
        """
        now = datetime.now()
        errored: List[str] = []
        stuck: List[str] = []

        for channel_name, record in self._connections.items():
            if record.state == ConnectionState.ERROR:
                if now - record.last_activity_at > self._error_grace_period:
                    errored.append(channel_name)
            elif record.state == ConnectionState.CONNECTING:
                if now - record.opened_at > self._connection_timeout:
                    stuck.append(channel_name)
            elif record.state == ConnectionState.CLOSED:
                errored.append(channel_name)

        for channel_name in errored:
            self._close(self._connections[channel_name], reason="health_sweep_error")
        for channel_name in stuck:
            self._close(self._connections[channel_name], reason="health_sweep_timeout")
            self._emit(channel_name, ChannelStatus.TIMED_OUT)

        removed = errored + stuck
        stats = self.stats()
        logger.debug(
            "connection_health_sweep",
            removed=removed,
            total=stats["total"],
            by_state=stats["by_state"],
        )
        return removed

    def stats(self) -> dict:
        """Read-only snapshot of the pool."""
        by_state = {state.value: 0 for state in ConnectionState}
        details = []
        for channel_name, record in self._connections.items():
            by_state[record.state.value] += 1
            details.append(
                {
                    "channel_name": channel_name,
                    "state": record.state.value,
                    "opened_at": record.opened_at.isoformat(),
                    "last_activity_at": record.last_activity_at.isoformat(),
                    "retry_count": record.retry_count,
                }
            )
        return {
            "total": len(self._connections),
            "by_state": by_state,
            "max_connections": self._max_connections,
            "details": details,
        }

    async def start(self) -> None:
        """Start the periodic health sweep."""
        if not self._enable_health_check:
            logger.info("connection_health_check_disabled")
            return
        if self._is_running:
            logger.warning("connection_health_sweep_already_running")
            return

        self._is_running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "connection_health_sweep_started",
            interval_seconds=self._cleanup_interval,
        )

    async def stop(self) -> None:
        """Stop the health sweep and close every connection."""
        self._is_running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        self.close_all()
        logger.info("connection_manager_stopped")

    def close_all(self) -> None:
        for channel_name in list(self._connections):
            self.release(channel_name)

    async def _sweep_loop(self) -> None:
        while self._is_running:
            try:
                await asyncio.sleep(self._cleanup_interval)
                self.health_sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "connection_health_sweep_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
