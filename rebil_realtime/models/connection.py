"""Channel connection state models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ChannelStatus(str, Enum):
    """Status values reported by the realtime transport for a channel."""

    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


class ConnectionState(str, Enum):
    """Lifecycle state of one pooled channel connection."""

    CONNECTING = "connecting"
    OPEN = "open"
    ERROR = "error"
    CLOSED = "closed"


LIVE_STATES = frozenset({ConnectionState.CONNECTING, ConnectionState.OPEN})


@dataclass
class ConnectionRecord:
    """A named channel connection owned by the ConnectionManager."""

    channel_name: str
    state: ConnectionState = ConnectionState.CONNECTING
    opened_at: datetime = field(default_factory=datetime.now)
    last_activity_at: datetime = field(default_factory=datetime.now)
    retry_count: int = 0
    last_error: Optional[str] = None
    channel: Any = field(default=None, repr=False)

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES
