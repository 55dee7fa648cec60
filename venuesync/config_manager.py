"""
Configuration management using database storage.

Provides access to configuration values with defaults and type conversion.
Environment variables named VENUESYNC_<KEY> take precedence over stored values.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .database import ConfigRepository, Database

ENV_PREFIX = "VENUESYNC_"


@dataclass(frozen=True)
class SyncSettings:
    """Resolved settings handed to each component at construction."""

    heartbeat_timeout_seconds: float = 6 * 60 * 60
    activity_retention_days: int = 30
    user_inactive_days: int = 30
    maintenance_interval_seconds: float = 300.0
    history_limit: int = 20
    command_retry_attempts: int = 3
    command_retry_backoff_seconds: float = 0.05
    store_timeout_seconds: float = 5.0
    broadcast_queue_size: int = 100
    default_volume: int = 80
    identity_endpoint: Optional[str] = None
    identity_project_id: Optional[str] = None


class ConfigManager:
    """Manages configuration stored in database."""

    # Default configuration values
    DEFAULTS = {
        "heartbeat_timeout_seconds": "21600",  # 6 hours without a heartbeat -> inactive
        "activity_retention_days": "30",
        "user_inactive_days": "30",
        "maintenance_interval_seconds": "300",
        "history_limit": "20",  # Tracks remembered for "previous"
        "command_retry_attempts": "3",
        "command_retry_backoff_seconds": "0.05",
        "store_timeout_seconds": "5",
        "broadcast_queue_size": "100",
        "default_volume": "80",
        "identity_endpoint": None,  # e.g. https://cloud.appwrite.io/v1
        "identity_project_id": None,
    }

    def __init__(self, database: Database):
        """
        Initialize ConfigManager.

        Args:
            database: Database instance
        """
        self.database = database
        self.repository = ConfigRepository(database)
        self.logger = logging.getLogger(__name__)
        self.repository.initialize_defaults(self.DEFAULTS)

    def get(self, key: str, default: Any = None) -> Optional[str]:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if not found (uses DEFAULTS if None)

        Returns:
            Configuration value as string, or None if not found
        """
        env_value = os.environ.get(ENV_PREFIX + key.upper())
        if env_value:
            return env_value

        if default is None:
            default = self.DEFAULTS.get(key)

        entry = self.repository.get(key)
        if entry:
            return entry.value if entry.value else default
        return default

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """Get configuration value as integer."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            self.logger.warning("Invalid integer value for %s: %s", key, value)
            return default

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        """Get configuration value as float."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            self.logger.warning("Invalid float value for %s: %s", key, value)
            return default

    def get_bool(self, key: str, default: Optional[bool] = None) -> Optional[bool]:
        """Get configuration value as boolean."""
        value = self.get(key)
        if value is None or value == "":
            return default
        return value.lower() in ("true", "1", "yes", "on")

    def set(self, key: str, value: Any) -> bool:
        """
        Set a configuration value.

        Args:
            key: Configuration key
            value: Value to set (will be converted to string)

        Returns:
            True if successful
        """
        return self.repository.set(key, str(value))

    def get_all(self) -> Dict[str, Optional[str]]:
        """Get all configuration values, defaults included."""
        config = {entry.key: entry.value for entry in self.repository.get_all()}
        result = dict(self.DEFAULTS)
        result.update(config)
        return result

    def settings(self) -> SyncSettings:
        """Resolve the current configuration into a SyncSettings struct."""
        fallback = SyncSettings()
        return SyncSettings(
            heartbeat_timeout_seconds=self.get_float(
                "heartbeat_timeout_seconds", fallback.heartbeat_timeout_seconds
            ),
            activity_retention_days=self.get_int(
                "activity_retention_days", fallback.activity_retention_days
            ),
            user_inactive_days=self.get_int("user_inactive_days", fallback.user_inactive_days),
            maintenance_interval_seconds=self.get_float(
                "maintenance_interval_seconds", fallback.maintenance_interval_seconds
            ),
            history_limit=self.get_int("history_limit", fallback.history_limit),
            command_retry_attempts=self.get_int(
                "command_retry_attempts", fallback.command_retry_attempts
            ),
            command_retry_backoff_seconds=self.get_float(
                "command_retry_backoff_seconds", fallback.command_retry_backoff_seconds
            ),
            store_timeout_seconds=self.get_float(
                "store_timeout_seconds", fallback.store_timeout_seconds
            ),
            broadcast_queue_size=self.get_int(
                "broadcast_queue_size", fallback.broadcast_queue_size
            ),
            default_volume=self.get_int("default_volume", fallback.default_volume),
            identity_endpoint=self.get("identity_endpoint"),
            identity_project_id=self.get("identity_project_id"),
        )
