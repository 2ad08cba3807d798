"""
Runtime configuration for the order synchronization core.

Every knob has a default so that tests and demos can construct a config with
no arguments. Deployments override values through ORDER_SYNC_* environment
variables (see SyncConfig.from_env).
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


LOG_FORMAT = "%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

ENV_PREFIX = "ORDER_SYNC_"


class SyncConfig(BaseModel):
    """
    Settings shared by the REST layer, push client and persisted state.
    """
    api_base_url: str = Field(
        default="http://localhost:5000/api/v1",
        description="Base URL of the storefront REST API",
    )
    socket_url: Optional[str] = Field(
        default=None,
        description="Push server URL; derived from api_base_url when not set",
    )
    request_timeout: float = Field(default=10.0, gt=0)

    # Push reconnection policy
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay: float = Field(default=1.0, ge=0)
    reconnect_delay_max: float = Field(default=5.0, ge=0)
    registration_timeout: float = Field(default=5.0, gt=0)

    # Cached order collections younger than this are served without a fetch
    orders_freshness_seconds: float = Field(default=300.0, ge=0)

    # Persisted state
    max_stored_orders: int = Field(default=100, ge=1)
    max_stored_notifications: int = Field(default=50, ge=1)
    storage_namespace: str = Field(default="storefront-order-sync")
    storage_path: Optional[Path] = Field(
        default=None,
        description="Directory for the persisted blob; None keeps state in memory",
    )

    @property
    def resolved_socket_url(self) -> str:
        """The push server URL, derived from the API base when not configured."""
        if self.socket_url:
            return self.socket_url
        base = self.api_base_url.rstrip("/")
        if base.endswith("/api/v1"):
            base = base[: -len("/api/v1")]
        return base

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (1-based), exponentially growing."""
        delay = self.reconnect_delay * (2 ** max(attempt - 1, 0))
        return min(delay, self.reconnect_delay_max)

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "SyncConfig":
        """
        Build a config from ORDER_SYNC_* environment variables.

        e.g. ORDER_SYNC_API_BASE_URL, ORDER_SYNC_MAX_RECONNECT_ATTEMPTS.
        Unset variables keep their defaults.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if environ.get(key):
                values[name] = environ[key]
        return cls(**values)
