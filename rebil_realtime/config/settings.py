"""Configuration management using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Supabase Configuration
    supabase_url: str = Field(
        default="http://localhost:54321", description="Supabase project URL"
    )
    supabase_anon_key: str = Field(
        default="", description="Supabase anon key used for realtime authentication"
    )

    # Realtime connection pool
    realtime_max_connections: int = Field(
        default=5, description="Maximum number of live channel connections (1-10)"
    )
    realtime_connection_timeout: float = Field(
        default=30.0,
        description="Seconds a channel may stay in 'connecting' before the health sweep closes it",
    )
    realtime_cleanup_interval: float = Field(
        default=60.0, description="Seconds between health sweeps"
    )
    realtime_error_grace_period: float = Field(
        default=30.0,
        description="Seconds an errored channel is kept before the health sweep removes it",
    )
    realtime_enable_health_check: bool = Field(
        default=True, description="Run the periodic health sweep"
    )

    # Reconnection / backoff
    realtime_auto_reconnect: bool = Field(
        default=True, description="Retry failed channels automatically"
    )
    realtime_max_retries: int = Field(
        default=3, description="Retries per channel before it is marked failed"
    )
    realtime_base_delay: float = Field(default=1.0, description="Initial retry delay in seconds")
    realtime_max_delay: float = Field(default=30.0, description="Maximum retry delay in seconds")
    realtime_enable_exponential_backoff: bool = Field(
        default=True,
        description="Double the retry delay after every attempt. When disabled every retry waits base_delay",
    )

    # Realtime socket
    realtime_heartbeat_interval: int = Field(
        default=25, description="Seconds between socket heartbeats"
    )
    realtime_connect_timeout: float = Field(
        default=10.0, description="Seconds to wait for the socket to open"
    )

    # Notifier Service Configuration
    notifier_port: int = Field(default=4500, description="REST API port")
    notifier_api_key: str = Field(
        default="", description="API key for REST API authentication (empty disables the check)"
    )
    notifier_log_level: str = Field(
        default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    notifier_service_name: str = Field(
        default="rebil-realtime", description="Service identifier"
    )

    @property
    def realtime_endpoint(self) -> str:
        """Get the Supabase Realtime endpoint the realtime client connects to."""
        return f"{self.supabase_url.rstrip('/')}/realtime/v1"


# Global settings instance
settings = Settings()
