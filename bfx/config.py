"""Central configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class BitfinexConfig(BaseSettings):
    api_key: str = Field(default="", alias="BFX_API_KEY")
    api_secret: str = Field(default="", alias="BFX_API_SECRET")
    rest_url: str = Field(default="https://api-pub.bitfinex.com/v2", alias="BFX_REST_URL")
    auth_rest_url: str = Field(default="https://api.bitfinex.com/v2", alias="BFX_AUTH_REST_URL")
    rest_v1_url: str = Field(default="https://api.bitfinex.com/v1", alias="BFX_REST_V1_URL")
    ws_url: str = Field(default="wss://api-pub.bitfinex.com/ws/2", alias="BFX_WS_URL")

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


class TuningConfig(BaseSettings):
    ws_ping_interval: int = Field(default=30, alias="WS_PING_INTERVAL")
    ws_pong_timeout: int = Field(default=10, alias="WS_PONG_TIMEOUT")
    ws_reconnect_max_delay: int = Field(default=60, alias="WS_RECONNECT_MAX_DELAY")
    pending_timeout: float = Field(default=30.0, alias="WS_PENDING_TIMEOUT")
    heartbeat_timeout: float = Field(default=30.0, alias="WS_HEARTBEAT_TIMEOUT")
    stats_interval: float = Field(default=60.0, alias="WS_STATS_INTERVAL")
    housekeeping_interval: float = Field(default=1.0, alias="WS_HOUSEKEEPING_INTERVAL")
    rest_timeout: float = Field(default=30.0, alias="REST_TIMEOUT")


class LoggingConfig(BaseSettings):
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")


class AppConfig:
    """Aggregated application configuration."""

    def __init__(self) -> None:
        self.bitfinex = BitfinexConfig()
        self.tuning = TuningConfig()
        self.logging = LoggingConfig()


def get_config() -> AppConfig:
    """Create and return the application configuration."""
    return AppConfig()
