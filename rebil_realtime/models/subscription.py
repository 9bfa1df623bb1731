"""Subscription intent, registry entry and retry state models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field


class ChannelKind(str, Enum):
    """Kinds of realtime feeds the service offers."""

    CAR_STATUS = "car_status"
    ADMIN_NOTIFICATIONS = "admin_notifications"


@dataclass(frozen=True)
class SubscriptionIntent:
    """Everything needed to (re)build a channel: its kind, name and parameters."""

    kind: ChannelKind
    channel_name: str
    admin_user_id: Optional[str] = None


class ReconnectPhase(str, Enum):
    """Per-channel state of the reconnection controller."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    BACKOFF = "backoff"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class RetryState:
    """Backoff bookkeeping for one channel."""

    attempts: int = 0
    next_delay: float = 0.0
    scheduled_at: Optional[datetime] = None


@dataclass
class SubscriptionEntry:
    """One logical feed and the callbacks fanned out from it.

    Callbacks are stored as dict keys so that registering the same callable
    twice is a no-op.
    """

    intent: SubscriptionIntent
    callbacks: Dict[Callable[[Any], Any], None] = field(default_factory=dict)
    is_active: bool = True
    failed: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    events_delivered: int = 0

    @property
    def channel_name(self) -> str:
        return self.intent.channel_name


class SubscriptionDetail(BaseModel):
    """Per-channel line of the service statistics."""

    channel_name: str
    kind: ChannelKind
    is_active: bool
    callback_count: int
    connection_state: Optional[str] = None
    reconnect_phase: Optional[str] = None
    retry_attempts: int = 0


class ServiceStats(BaseModel):
    """Snapshot of the notification service for observability surfaces."""

    active_connections: int = Field(default=0, description="Connections connecting or open")
    total_connections: int = Field(default=0, description="Connections tracked by the pool")
    error_connections: int = Field(default=0, description="Connections in error state")
    active_subscriptions: int = 0
    total_subscriptions: int = 0
    total_callbacks: int = 0
    reconnect_attempts: int = Field(default=0, description="Pending retry attempts across channels")
    failed_channels: int = 0
    pool_exhausted_count: int = 0
    is_ready: bool = False
    is_destroyed: bool = False
    subscription_details: list[SubscriptionDetail] = Field(default_factory=list)
