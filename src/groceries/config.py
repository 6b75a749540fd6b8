"""
Client configuration.

Values come from the environment (optionally a .env file) with defaults
suitable for a server running on localhost.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Timing constants shared by the store, channel and sync engine
OWN_CHANGE_TTL_SECONDS = 5.0
RECONNECT_BASE_DELAY_SECONDS = 1.0
RECONNECT_MAX_DELAY_SECONDS = 30.0
ERROR_DISMISS_SECONDS = 5.0


@dataclass
class ClientConfig:
    """Configuration for a grocery list client session."""

    # Server
    server_url: str = "http://localhost:3001"
    request_timeout: float = 10.0

    # Local cache
    data_dir: Path = field(default_factory=lambda: Path("~/.groceries").expanduser())
    ephemeral: bool = False  # Keep the cache in memory only

    # Timing
    own_change_ttl: float = OWN_CHANGE_TTL_SECONDS
    reconnect_base_delay: float = RECONNECT_BASE_DELAY_SECONDS
    reconnect_max_delay: float = RECONNECT_MAX_DELAY_SECONDS
    error_dismiss_seconds: float = ERROR_DISMISS_SECONDS

    # Logging
    log_level: str = "WARNING"

    @property
    def api_url(self) -> str:
        return f"{self.server_url.rstrip('/')}/api"

    @property
    def events_url(self) -> str:
        return f"{self.api_url}/events"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "groceries.sqlite"

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> ClientConfig:
        """
        Build a config from GROCERIES_* environment variables.

        A .env file in the working directory (or the one given) is loaded
        first; variables already set in the environment win.
        """
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)

        config = cls()
        if server_url := os.environ.get("GROCERIES_SERVER_URL"):
            config.server_url = server_url
        if data_dir := os.environ.get("GROCERIES_DATA_DIR"):
            config.data_dir = Path(data_dir).expanduser()
        if timeout := os.environ.get("GROCERIES_REQUEST_TIMEOUT"):
            config.request_timeout = float(timeout)
        if log_level := os.environ.get("GROCERIES_LOG_LEVEL"):
            config.log_level = log_level.upper()
        return config
