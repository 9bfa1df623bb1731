"""Interfaces the notification layer expects from a realtime transport.

Any client that multiplexes named publish/subscribe channels over one shared
socket can back the service, as long as it exposes these methods.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol

StatusCallback = Callable[[str], None]
EventHandler = Callable[[Dict[str, Any]], None]


class RealtimeChannel(Protocol):
    """A named feed on the shared socket."""

    def on(
        self,
        event_type: str,
        handler: EventHandler,
        filter: Optional[Dict[str, str]] = None,
    ) -> "RealtimeChannel":
        """Register an event handler. Must be called before subscribe()."""
        ...

    def subscribe(self, status_callback: StatusCallback) -> "RealtimeChannel":
        """Join the channel; status_callback receives a ChannelStatus value."""
        ...

    def unsubscribe(self) -> None:
        """Leave the channel. No status is reported afterwards."""
        ...


class RealtimeTransport(Protocol):
    """The shared socket that channels are multiplexed over."""

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    def channel(self, name: str) -> RealtimeChannel:
        ...
