"""Realtime transport backed by the Supabase `realtime` client."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Dict, List, Optional, Set, Tuple

from realtime import AsyncRealtimeClient

from ...config.logging import get_logger
from ...config.settings import Settings
from ...exceptions import TransportError
from ...models.connection import ChannelStatus
from ...utils.tracing import generate_trace_id, set_trace_id
from .transport import EventHandler, StatusCallback

logger = get_logger(__name__)


def normalise_postgres_change(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a postgres_changes payload into the shape the decoders read."""
    data = payload.get("data") or payload
    return {
        "event": data.get("type") or data.get("eventType"),
        "table": data.get("table"),
        "schema": data.get("schema"),
        "record": data.get("record"),
        "old_record": data.get("old_record"),
        "commit_timestamp": data.get("commit_timestamp"),
    }


class SupabaseChannel:
    """One channel on the shared realtime client."""

    def __init__(self, transport: "SupabaseRealtimeTransport", name: str):
        self._transport = transport
        self.name = name
        self._bindings: List[Tuple[str, Dict[str, str], EventHandler]] = []
        self._status_callback: Optional[StatusCallback] = None
        self._channel: Optional[Any] = None
        self._join_task: Optional[asyncio.Task] = None
        self.closed = False

    def on(
        self,
        event_type: str,
        handler: EventHandler,
        filter: Optional[Dict[str, str]] = None,
    ) -> "SupabaseChannel":
        self._bindings.append((event_type, dict(filter or {}), handler))
        return self

    def subscribe(self, status_callback: StatusCallback) -> "SupabaseChannel":
        """Register the bindings and start the join; its outcome arrives through status_callback."""
        if self.closed:
            raise TransportError(f"Channel {self.name} was already unsubscribed")

        self._status_callback = status_callback
        channel = self._transport.client.channel(self.name)
        for event_type, filter, handler in self._bindings:
            if event_type == "postgres_changes":
                options = {
                    "table": filter.get("table", "*"),
                    "schema": filter.get("schema", "public"),
                }
                if filter.get("filter"):
                    options["filter"] = filter["filter"]
                channel.on_postgres_changes(
                    filter.get("event", "*"),
                    callback=self._wrap(event_type, handler, normalise_postgres_change),
                    **options,
                )
            elif event_type == "broadcast":
                channel.on_broadcast(filter.get("event", "*"), self._wrap(event_type, handler))
            else:
                logger.warning("realtime_binding_unsupported", channel=self.name, event_type=event_type)

        self._channel = channel
        self._join_task = self._transport.spawn(self._join())
        logger.debug("realtime_channel_joining", channel=self.name)
        return self

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._status_callback = None
        if self._join_task is not None and not self._join_task.done():
            self._join_task.cancel()
        if self._channel is not None:
            self._transport.spawn(self._leave(self._channel))
        logger.debug("realtime_channel_left", channel=self.name)

    async def _join(self) -> None:
        try:
            await self._channel.subscribe(self._on_state)
        except Exception as e:
            logger.error(
                "realtime_channel_join_failed",
                channel=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._report(ChannelStatus.CHANNEL_ERROR.value)

    async def _leave(self, channel: Any) -> None:
        try:
            await channel.unsubscribe()
        except Exception as e:
            logger.warning(
                "realtime_channel_leave_failed",
                channel=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _on_state(self, state: Any, error: Optional[Exception] = None) -> None:
        status = getattr(state, "value", str(state))
        if error is not None:
            logger.warning("realtime_channel_state_error", channel=self.name, status=status, error=str(error))
        self._report(status)

    def _report(self, status: str) -> None:
        if self.closed or self._status_callback is None:
            return
        self._status_callback(status)

    def _wrap(self, event_type: str, handler: EventHandler, transform=None):
        def callback(payload: Dict[str, Any]) -> None:
            if self.closed:
                return
            try:
                handler(transform(payload) if transform else payload)
            except Exception as e:
                logger.error(
                    "realtime_channel_handler_failed",
                    channel=self.name,
                    event_type=event_type,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

        return callback


class SupabaseRealtimeTransport:
    """Shares one AsyncRealtimeClient between every channel of the service."""

    def __init__(
        self,
        url: str,
        access_token: Optional[str] = None,
        heartbeat_interval: int = 25,
        connect_timeout: float = 10.0,
        client: Optional[Any] = None,
    ):
        """
        Initialize the transport.

        Args:
            url: Realtime endpoint, `<project url>/realtime/v1`
            access_token: Anon key or JWT used for the socket and channel joins
            heartbeat_interval: Seconds between heartbeats sent by the client
            connect_timeout: Seconds to wait for the socket to open
            client: Prebuilt realtime client; built lazily when omitted
        """
        self._url = url
        self.access_token = access_token
        self.heartbeat_interval = heartbeat_interval
        self.connect_timeout = connect_timeout
        self._client = client
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseRealtimeTransport":
        return cls(
            url=settings.realtime_endpoint,
            access_token=settings.supabase_anon_key or None,
            heartbeat_interval=settings.realtime_heartbeat_interval,
            connect_timeout=settings.realtime_connect_timeout,
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = AsyncRealtimeClient(
                self._url,
                self.access_token,
                auto_reconnect=True,
                hb_interval=self.heartbeat_interval,
            )
        return self._client

    def channel(self, name: str) -> SupabaseChannel:
        return SupabaseChannel(self, name)

    def spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def connect(self) -> None:
        """
        Open the realtime socket.

        Raises:
            TransportError: If the socket cannot be opened in time
        """
        trace_id = generate_trace_id()
        set_trace_id(trace_id)
        logger.info("realtime_socket_connecting", url=self._url, trace_id=trace_id)

        try:
            await asyncio.wait_for(self.client.connect(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "realtime_socket_connection_timeout",
                timeout=self.connect_timeout,
                trace_id=trace_id,
            )
            raise TransportError(
                f"Realtime connection timed out after {self.connect_timeout}s", trace_id=trace_id
            )
        except Exception as e:
            logger.error(
                "realtime_socket_connection_failed",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id,
                exc_info=True,
            )
            raise TransportError(f"Realtime connection failed: {e}", trace_id=trace_id) from e

        logger.info("realtime_socket_connected", trace_id=trace_id)

    async def disconnect(self) -> None:
        """Stop pending joins and leaves and close the client."""
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._client is None:
            return
        try:
            await self._client.close()
        except Exception as e:
            logger.warning(
                "realtime_socket_close_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
        logger.info("realtime_socket_disconnected")
