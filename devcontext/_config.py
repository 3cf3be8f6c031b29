"""Configuration management for the local DevContext client."""

import json
import uuid
from pathlib import Path
from typing import Any


class ConfigManager:
    """Manages config.json for the local client.

    This service handles loading and saving the client configuration,
    including the sync server URL, the stable device ID and the
    network tuning knobs used by the sync engine.
    """

    DEFAULT_API_URL = "http://127.0.0.1:8000"
    DEFAULT_SYNC_INTERVAL = 300  # seconds
    DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds
    DEFAULT_MAX_RETRIES = 3

    def __init__(self, base_path: Path) -> None:
        """Initialize the configuration manager.

        Args:
            base_path: Base directory for DevContext storage.
        """
        self.base_path = base_path
        self.config_path = base_path / "config.json"

    def load_config(self) -> dict[str, Any]:
        """Load configuration from config.json.

        Returns:
            Configuration dictionary (empty if missing or unreadable).
        """
        if self.config_path.exists():
            try:
                with open(self.config_path) as f:
                    return json.load(f)
            except (json.JSONDecodeError, OSError):
                return {}
        return {}

    def save_config(self, config: dict[str, Any]) -> None:
        """Save configuration to config.json.

        Args:
            config: Configuration dictionary to save.
        """
        with open(self.config_path, "w") as f:
            json.dump(config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a single configuration value."""
        return self.load_config().get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a single configuration value."""
        config = self.load_config()
        config[key] = value
        self.save_config(config)

    def get_api_url(self) -> str:
        """Get the sync server base URL."""
        return str(self.get("api_url", self.DEFAULT_API_URL)).rstrip("/")

    def set_api_url(self, url: str) -> None:
        """Save the sync server base URL."""
        self.set("api_url", url.rstrip("/"))

    def get_device_id(self) -> str:
        """Get this device's stable ID, generating it on first use."""
        config = self.load_config()
        device_id = config.get("device_id")
        if not device_id:
            device_id = uuid.uuid4().hex
            config["device_id"] = device_id
            self.save_config(config)
        return device_id

    def get_sync_interval(self) -> float:
        """Seconds between automatic sync cycles."""
        return float(self.get("sync_interval", self.DEFAULT_SYNC_INTERVAL))

    def get_request_timeout(self) -> float:
        """Timeout in seconds for each sync request."""
        return float(self.get("request_timeout", self.DEFAULT_REQUEST_TIMEOUT))

    def get_max_retries(self) -> int:
        """Attempts allowed per queued change before it is dropped."""
        return int(self.get("max_retries", self.DEFAULT_MAX_RETRIES))
