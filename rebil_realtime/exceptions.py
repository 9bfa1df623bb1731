"""Error handling and exception classes."""

from typing import Optional


class RealtimeServiceError(Exception):
    """Base exception for the realtime notification service."""

    def __init__(self, message: str, trace_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.trace_id = trace_id


class ConfigurationError(RealtimeServiceError):
    """Raised when configuration is invalid or missing."""

    pass


class PoolExhaustedError(RealtimeServiceError):
    """Raised when the connection pool is full and no connection can be reused."""

    def __init__(self, channel_name: str, max_connections: int, trace_id: Optional[str] = None):
        super().__init__(
            f"Connection pool exhausted ({max_connections} live connections), "
            f"cannot open channel '{channel_name}'",
            trace_id=trace_id,
        )
        self.channel_name = channel_name
        self.max_connections = max_connections


class TransportError(RealtimeServiceError):
    """Raised when the realtime socket cannot be opened or written to."""

    pass


class AuthenticationError(RealtimeServiceError):
    """Raised when API authentication fails."""

    pass
