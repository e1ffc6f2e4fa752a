"""
Runtime configuration for SignBridge, read from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .connection import DEFAULT_QUEUE_SIZE, DEFAULT_SEND_TIMEOUT
from .router import DEFAULT_MAX_MESSAGE_SIZE

DEFAULT_PORT = 5000
DEFAULT_RATE_LIMIT = 0.0  # frames per second per connection, 0 disables


@dataclass
class RelayConfig:
    """Server settings. ``from_env`` is the usual way to build one."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    ws_path: str = "/ws"
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    outbound_queue_size: int = DEFAULT_QUEUE_SIZE
    send_timeout: float = DEFAULT_SEND_TIMEOUT
    rate_limit: float = DEFAULT_RATE_LIMIT

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if not self.ws_path.startswith("/"):
            raise ValueError(f"ws_path must start with '/', got {self.ws_path!r}")
        for name in ("max_message_size", "outbound_queue_size", "send_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.rate_limit < 0:
            raise ValueError("rate_limit must not be negative")
        self.log_level = self.log_level.upper()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        """
        Build a config from environment variables.

        Raises:
            ValueError: If a numeric variable does not parse or is out of range.
        """
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("HOST", "0.0.0.0"),
            port=int(env.get("PORT", DEFAULT_PORT)),
            log_level=env.get("LOG_LEVEL", "INFO"),
            ws_path=env.get("SIGNBRIDGE_WS_PATH", "/ws"),
            max_message_size=int(env.get("SIGNBRIDGE_MAX_MESSAGE_SIZE", DEFAULT_MAX_MESSAGE_SIZE)),
            outbound_queue_size=int(env.get("SIGNBRIDGE_QUEUE_SIZE", DEFAULT_QUEUE_SIZE)),
            send_timeout=float(env.get("SIGNBRIDGE_SEND_TIMEOUT", DEFAULT_SEND_TIMEOUT)),
            rate_limit=float(env.get("SIGNBRIDGE_RATE_LIMIT", DEFAULT_RATE_LIMIT)),
        )


__all__ = ["DEFAULT_PORT", "DEFAULT_RATE_LIMIT", "RelayConfig"]
