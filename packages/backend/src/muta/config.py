"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with MUTA_ prefix.
No config files — everything the server needs comes from the environment.

Learn: create_app() takes an optional Settings instance, so tests build
their own (no sample data, generous rate limits) without touching env vars.
"""

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via MUTA_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3001

    # Logging
    log_level: str = "info"
    log_format: str = "json"  # "json" or "console"

    # CORS + WebSocket origin allow-list
    cors_origins: list[str] = [
        "http://localhost:3000",
    ]

    # HTTP rate limiting
    rate_limit_rpm: int = 100  # requests per minute per IP

    # WebSocket
    ws_api_key: Optional[str] = None  # shared secret for "subscribe"
    ws_ping_interval: float = 25.0  # seconds between liveness probes
    ws_ping_timeout: float = 60.0  # seconds to wait for a pong
    ws_rate_window_seconds: float = 60.0
    ws_max_messages: int = 30  # per window
    ws_block_seconds: float = 300.0
    ws_session_max_idle_hours: float = 24.0
    ws_sweep_interval: float = 300.0

    # Orders
    initial_snapshot_size: int = 50  # orders pushed on connect
    seed_sample_orders: int = 20  # random orders created at startup

    model_config = {"env_prefix": "MUTA_"}

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @model_validator(mode="after")
    def validate_shared_secret(self):
        """A configured WebSocket secret must be usable by clients."""
        if self.ws_api_key is not None and len(self.ws_api_key) < 8:
            raise ValueError(
                "MUTA_WS_API_KEY must be at least 8 characters long. "
                'Generate one with: python -c "import secrets; '
                'print(secrets.token_urlsafe(16))"'
            )
        return self


# Singleton: import this everywhere
settings = Settings()
