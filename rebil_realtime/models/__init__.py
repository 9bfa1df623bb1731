"""Data models."""

from .connection import ChannelStatus, ConnectionRecord, ConnectionState
from .notifications import AdminNotification, CarStatus, CarStatusChange
from .subscription import (
    ChannelKind,
    ReconnectPhase,
    RetryState,
    ServiceStats,
    SubscriptionDetail,
    SubscriptionEntry,
    SubscriptionIntent,
)

__all__ = [
    "AdminNotification",
    "CarStatus",
    "CarStatusChange",
    "ChannelKind",
    "ChannelStatus",
    "ConnectionRecord",
    "ConnectionState",
    "ReconnectPhase",
    "RetryState",
    "ServiceStats",
    "SubscriptionDetail",
    "SubscriptionEntry",
    "SubscriptionIntent",
]
