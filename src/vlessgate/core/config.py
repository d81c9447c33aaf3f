"""Configuration types with environment variable support.

All settings can be configured via environment variables with the VLESSGATE_
prefix. Example: VLESSGATE_PROXY=proxy.example:8443 sets the fallback relay.
The identity and fallback also honour the bare UUID and PROXY names.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from vlessgate.core.destination import DEFAULT_FALLBACK_PORT, Destination


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def parse_identity(value: str) -> bytes:
    """Parse a UUID string (dashed or plain hex) into its 16 raw bytes."""
    try:
        return UUID(value.strip()).bytes
    except (ValueError, AttributeError) as e:
        raise ValueError(f"Invalid UUID: {value!r}") from e


@dataclass(frozen=True)
class RelayConfig:
    """Immutable per-connection relay configuration."""

    identity: bytes
    fallback: Destination | None = None
    connect_timeout: float | None = 10.0
    read_chunk_size: int = 64 * 1024
    replay_buffer_limit: int | None = 4 * 1024 * 1024

    def __post_init__(self) -> None:
        if len(self.identity) != 16:
            raise ValueError(f"Identity must be 16 bytes, got {len(self.identity)}")


class RelaySettings(BaseSettings):
    """Relay server settings.

    All settings can be overridden via environment variables:
    - VLESSGATE_UUID (or UUID): Pre-shared client identity
    - VLESSGATE_PROXY (or PROXY): Fallback relay, host[:port]
    - VLESSGATE_BIND: Listen address
    - VLESSGATE_CONNECT_TIMEOUT: Outbound connect timeout (seconds)
    - etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="VLESSGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    uuid: str = Field(
        default="",
        validation_alias=AliasChoices("VLESSGATE_UUID", "UUID", "uuid"),
        repr=False,
        description="Pre-shared client identity (UUID).",
    )
    proxy: str = Field(
        default="",
        validation_alias=AliasChoices("VLESSGATE_PROXY", "PROXY", "proxy"),
        description="Fallback relay destination, host[:port]. Port defaults to 443.",
    )
    bind: str = Field(
        default="0.0.0.0:8080",
        description="Listen address for the WebSocket endpoint.",
    )
    connect_timeout: float = Field(
        default=10.0,
        ge=0.0,
        description="Outbound connect timeout (seconds). 0 for indefinite.",
    )
    read_chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        description="Maximum bytes read from a destination per chunk.",
    )
    inbound_queue_size: int = Field(
        default=64,
        gt=0,
        description="Inbound messages buffered before the WebSocket reader stalls.",
    )
    replay_buffer_limit: int = Field(
        default=4 * 1024 * 1024,
        ge=0,
        description="Request bytes retained for fallback replay. 0 for unlimited.",
    )
    ws_max_msg_size: int = Field(
        default=4 * 1024 * 1024,
        gt=0,
        description="WebSocket maximum message size (bytes).",
    )
    ws_heartbeat: float = Field(
        default=30.0,
        ge=0.0,
        description="WebSocket ping interval (seconds). 0 disables heartbeats.",
    )
    early_data_header: str = Field(
        default="Sec-WebSocket-Protocol",
        description="Request header carrying base64url 0-RTT early data.",
    )
    metrics_enabled: bool = Field(
        default=True,
        description="Expose Prometheus metrics at /metrics.",
    )
    log_level: str = Field(
        default="info",
        description="Log level (debug, info, warning, error).",
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines.",
    )

    @field_validator("uuid")
    @classmethod
    def _check_uuid(cls, value: str) -> str:
        if value:
            parse_identity(value)
        return value

    @field_validator("proxy")
    @classmethod
    def _check_proxy(cls, value: str) -> str:
        if value.strip():
            Destination.parse(value, DEFAULT_FALLBACK_PORT)
        return value.strip()

    @property
    def identity(self) -> bytes:
        if not self.uuid:
            raise ValueError("No UUID configured (set VLESSGATE_UUID)")
        return parse_identity(self.uuid)

    @property
    def fallback(self) -> Destination | None:
        if not self.proxy:
            return None
        return Destination.parse(self.proxy, DEFAULT_FALLBACK_PORT)

    def to_relay_config(self) -> RelayConfig:
        return RelayConfig(
            identity=self.identity,
            fallback=self.fallback,
            connect_timeout=self.connect_timeout or None,
            read_chunk_size=self.read_chunk_size,
            replay_buffer_limit=self.replay_buffer_limit or None,
        )

    def to_env_dict(self) -> dict[str, str]:
        """Export current settings as environment variable dictionary."""
        result = {}
        for name, value in self.model_dump().items():
            if name == "uuid":
                continue
            result[f"VLESSGATE_{name.upper()}"] = (
                str(value).lower() if isinstance(value, bool) else str(value)
            )
        return result

    def to_display_dict(self) -> dict[str, Any]:
        """Export current settings as a nested dictionary for display."""
        return {
            "identity": {
                "uuid": "(set)" if self.uuid else None,
                "proxy": self.proxy or None,
            },
            "server": {
                "bind": self.bind,
                "early_data_header": self.early_data_header,
                "metrics_enabled": self.metrics_enabled,
                "ws_max_msg_size": self.ws_max_msg_size,
                "ws_heartbeat": self.ws_heartbeat,
            },
            "relay": {
                "connect_timeout": self.connect_timeout,
                "read_chunk_size": self.read_chunk_size,
                "inbound_queue_size": self.inbound_queue_size,
                "replay_buffer_limit": self.replay_buffer_limit,
            },
            "logging": {
                "log_level": self.log_level,
                "log_json": self.log_json,
            },
        }


_settings: RelaySettings | None = None


def get_settings() -> RelaySettings:
    """Get the process-wide settings instance.

    The instance reads environment variables once and is cached. Call
    clear_settings() first to reload (e.g., in tests).
    """
    global _settings
    if _settings is None:
        _settings = RelaySettings()
    return _settings


def clear_settings() -> None:
    """Clear the cached settings."""
    global _settings
    _settings = None
