"""Configuration management."""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, model_validator

CHAT_URL = "wss://open-chat.trovo.live/chat"
API_BASE_URL = "https://open-api.trovo.live/openplatform"


class ChatConfig(BaseModel):
    """Chat session settings. Durations are in seconds."""

    url: str = CHAT_URL

    # Keepalive
    heartbeat_interval: float = Field(30.0, gt=0)
    staleness_window: float = Field(75.0, gt=0)  # No frame for this long means the link is dead

    # Reconnection
    initial_backoff: float = Field(1.0, gt=0)
    max_backoff: float = Field(60.0, gt=0)

    # Timeouts
    connect_timeout: float = Field(10.0, gt=0)
    handshake_timeout: float = Field(10.0, gt=0)
    close_timeout: float = Field(5.0, gt=0)

    buffer_size: int = Field(32, ge=1)
    join_channel: bool = True

    @model_validator(mode="after")
    def _check_windows(self) -> "ChatConfig":
        if self.staleness_window <= self.heartbeat_interval:
            raise ValueError("staleness_window must be longer than heartbeat_interval")
        if self.max_backoff < self.initial_backoff:
            raise ValueError("max_backoff must not be shorter than initial_backoff")
        return self


class TrovoConfig(BaseModel):
    """Configuration model."""

    # Trovo API credentials
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    # HTTP settings
    api_base_url: str = API_BASE_URL
    http_timeout: float = 30.0

    chat: ChatConfig = Field(default_factory=ChatConfig)


def load_config(config_path: Optional[Path] = None) -> TrovoConfig:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = Path("trovo.yaml")

    if not config_path.exists():
        # Return default config
        return TrovoConfig()

    with open(config_path) as f:
        data = yaml.safe_load(f)

    return TrovoConfig(**(data or {}))
