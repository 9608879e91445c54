"""Configuration schema using Pydantic."""

from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings

from wahook.config.defaults import (
    DEFAULT_BULK,
    DEFAULT_PRESENCE,
    DEFAULT_SESSION,
    DEFAULT_WEBHOOK,
)


class APIConfig(BaseModel):
    """Inbound HTTP API settings."""

    model_config = ConfigDict(extra="ignore")

    host: str = "0.0.0.0"
    port: int = 3000
    api_key: str = ""  # Empty disables the check (development mode)
    api_key_header: str = "x-api-key"


class WebhookConfig(BaseModel):
    """Outbound webhook consumer settings."""

    model_config = ConfigDict(extra="ignore")

    url: str = ""
    secret: str = ""
    secret_header: str = str(DEFAULT_WEBHOOK["secret_header"])
    timeout_s: float = float(DEFAULT_WEBHOOK["timeout_s"])
    include_media: bool = True
    confirmation_timeout_s: int = int(DEFAULT_WEBHOOK["confirmation_timeout_s"])

    @property
    def enabled(self) -> bool:
        return bool(self.url.strip())

    @property
    def resolved_timeout_s(self) -> float:
        low = float(DEFAULT_WEBHOOK["min_timeout_s"])
        high = float(DEFAULT_WEBHOOK["max_timeout_s"])
        return max(low, min(high, float(self.timeout_s)))


class BridgeConfig(BaseModel):
    """Connection settings for the external WhatsApp bridge process."""

    model_config = ConfigDict(extra="ignore")

    url: str = "ws://127.0.0.1:3001"
    host: str = "127.0.0.1"
    port: int = 3001
    token: str = ""
    managed: bool = False  # Launch the bridge process from `serve`
    startup_timeout_ms: int = 15000
    command_timeout_s: float = 30.0
    max_payload_bytes: int = 64 * 1024 * 1024
    reconnect_initial_ms: int = 1000
    reconnect_max_ms: int = 30000
    reconnect_factor: float = 2.0
    reconnect_jitter: float = 0.25
    reconnect_max_attempts: int = 0  # 0 means unlimited retries
    command: list[str] = Field(default_factory=lambda: ["node", "dist/index.js"])
    dir: str = "~/.wahook/bridge"

    @property
    def resolved_port(self) -> int:
        if self.port:
            return self.port
        parsed = urlparse(self.url)
        if parsed.port is not None:
            return parsed.port
        if parsed.scheme == "wss":
            return 443
        if parsed.scheme == "ws":
            return 80
        return 3001

    @property
    def resolved_url(self) -> str:
        host = (self.host or "").strip()
        if not host:
            parsed = urlparse(self.url)
            host = parsed.hostname or "127.0.0.1"
        return f"ws://{host}:{self.resolved_port}"

    @property
    def dir_path(self) -> Path:
        return Path(self.dir).expanduser()


class SessionConfig(BaseModel):
    """Session lifecycle settings."""

    model_config = ConfigDict(extra="ignore")

    auth_dir: str = str(DEFAULT_SESSION["auth_dir"])
    max_auth_attempts: int = Field(default=int(DEFAULT_SESSION["max_auth_attempts"]), ge=1)
    reset_delay_ms: int = Field(default=int(DEFAULT_SESSION["reset_delay_ms"]), ge=0)
    reconnect_delay_ms: int = Field(default=int(DEFAULT_SESSION["reconnect_delay_ms"]), ge=0)

    @property
    def auth_path(self) -> Path:
        return Path(self.auth_dir).expanduser()


class PresenceConfig(BaseModel):
    """Typing/recording simulation settings."""

    model_config = ConfigDict(extra="ignore")

    min_ms: int = int(DEFAULT_PRESENCE["min_ms"])
    max_ms: int = int(DEFAULT_PRESENCE["max_ms"])
    floor_ms: int = int(DEFAULT_PRESENCE["floor_ms"])
    ms_per_char: int = int(DEFAULT_PRESENCE["ms_per_char"])
    default_typing_ms: int = int(DEFAULT_PRESENCE["default_typing_ms"])
    default_presence_ms: int = int(DEFAULT_PRESENCE["default_presence_ms"])
    max_message_delay_ms: int = int(DEFAULT_PRESENCE["max_message_delay_ms"])

    @model_validator(mode="after")
    def _validate_bounds(self) -> "PresenceConfig":
        if self.min_ms < 0 or self.max_ms < self.min_ms:
            raise ValueError("presence.minMs must be >= 0 and <= presence.maxMs")
        return self


class BulkConfig(BaseModel):
    """Bulk send settings."""

    model_config = ConfigDict(extra="ignore")

    delay_between_ms: int = int(DEFAULT_BULK["delay_between_ms"])
    typing_ms: int = int(DEFAULT_BULK["typing_ms"])
    max_messages: int = Field(default=int(DEFAULT_BULK["max_messages"]), ge=1)


class Config(BaseSettings):
    """Root configuration for wahook."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, env_prefix="WAHOOK_", env_nested_delimiter="__")

    config_version: int = 1
    api: APIConfig = Field(default_factory=APIConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    presence: PresenceConfig = Field(default_factory=PresenceConfig)
    bulk: BulkConfig = Field(default_factory=BulkConfig)
