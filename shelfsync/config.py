"""Configuration loading for Shelfsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ServerConfig:
    """Configuration for the central catalog server."""

    host: str = "0.0.0.0"
    port: int = 5000
    seed: bool = True  # Load the two sample books at startup
    allowed_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:3000"]
    )
    max_pending_messages: int = 1000


@dataclass
class ClientConfig:
    """Configuration for a viewer's sync client."""

    server_url: str = "http://localhost:5000"
    max_reconnect_attempts: int = 5
    reconnect_delay_seconds: float = 1.0
    recency_window_seconds: float = 3.0
    request_timeout_seconds: float = 10.0
    connect_timeout_seconds: float = 20.0

    @property
    def api_url(self) -> str:
        return f"{self.server_url.rstrip('/')}/api"

    @property
    def ws_url(self) -> str:
        base = self.server_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws"


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with SHELFSYNC_ prefix."""
    return os.environ.get(f"SHELFSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)
    if seed := _get_env("SERVER_SEED"):
        config.server.seed = _is_true(seed)
    if origins := _get_env("SERVER_ALLOWED_ORIGINS"):
        config.server.allowed_origins = [
            o.strip() for o in origins.split(",") if o.strip()
        ]

    # Client overrides
    if server_url := _get_env("CLIENT_SERVER_URL"):
        config.client.server_url = server_url
    if attempts := _get_env("CLIENT_RECONNECT_ATTEMPTS"):
        config.client.max_reconnect_attempts = int(attempts)
    if delay := _get_env("CLIENT_RECONNECT_DELAY"):
        config.client.reconnect_delay_seconds = float(delay)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    seed=server_data.get("seed", config.server.seed),
                    allowed_origins=server_data.get(
                        "allowed_origins", config.server.allowed_origins
                    ),
                    max_pending_messages=server_data.get(
                        "max_pending_messages", config.server.max_pending_messages
                    ),
                )

            # Parse client config
            if "client" in data:
                client_data = data["client"]
                config.client = ClientConfig(
                    server_url=client_data.get("server_url", config.client.server_url),
                    max_reconnect_attempts=client_data.get(
                        "max_reconnect_attempts", config.client.max_reconnect_attempts
                    ),
                    reconnect_delay_seconds=client_data.get(
                        "reconnect_delay_seconds", config.client.reconnect_delay_seconds
                    ),
                    recency_window_seconds=client_data.get(
                        "recency_window_seconds", config.client.recency_window_seconds
                    ),
                    request_timeout_seconds=client_data.get(
                        "request_timeout_seconds", config.client.request_timeout_seconds
                    ),
                    connect_timeout_seconds=client_data.get(
                        "connect_timeout_seconds", config.client.connect_timeout_seconds
                    ),
                )

    # Apply environment variable overrides
    return _apply_env_overrides(config)
