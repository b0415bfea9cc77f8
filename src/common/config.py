"""
Configuration management for the signage device client.
Loads and validates settings from YAML files.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional


class Config:
    """Manages application configuration from YAML files."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file. If None, uses default_config.yaml
        """
        if config_path is None:
            # Default to config/default_config.yaml in project root
            project_root = Path(__file__).parent.parent.parent
            config_path = project_root / "config" / "default_config.yaml"

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            self._config = yaml.safe_load(f) or {}

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override config values from environment variables."""
        if 'SIGNAGE_BASE_URL' in os.environ:
            self.set('api.base_url', os.environ['SIGNAGE_BASE_URL'])

        if 'SIGNAGE_DEVICE_ID' in os.environ:
            self.set('device.id', os.environ['SIGNAGE_DEVICE_ID'])

        if 'SIGNAGE_LOG_LEVEL' in os.environ:
            self.set('logging.level', os.environ['SIGNAGE_LOG_LEVEL'])

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'api.base_url')
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config = Config()
            >>> config.get('sync.interval')
            30
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'api.timeout')
            value: Value to set
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        """
        Save configuration to YAML file.

        Args:
            path: Path to save to. If None, uses original config_path
        """
        save_path = Path(path) if path else self.config_path

        with open(save_path, 'w') as f:
            yaml.dump(self._config, f, default_flow_style=False, indent=2)

    @property
    def base_url(self) -> str:
        """Backend base URL, without trailing slash."""
        return str(self.get('api.base_url', 'http://localhost:3000')).rstrip('/')

    @property
    def realtime_url(self) -> str:
        """Socket.IO server URL. Defaults to the backend base URL."""
        return str(self.get('realtime.url') or self.base_url).rstrip('/')

    @property
    def device_id(self) -> str:
        """Explicit device ID override, empty when the host should provide one."""
        return str(self.get('device.id', '') or '')

    @property
    def settings_dir(self) -> str:
        """Directory holding the persisted settings document."""
        return self.get('storage.settings_dir', 'data/settings')

    @property
    def cache_dir(self) -> str:
        """Media cache root."""
        return self.get('storage.cache_dir', 'data/media_cache')

    @property
    def device_id_file(self) -> str:
        """File the generated device ID is kept in."""
        return self.get('storage.device_id_file', 'data/device_id.txt')

    @property
    def sync_interval(self) -> float:
        """Seconds between periodic license/timeline checks."""
        return float(self.get('sync.interval', 30))

    @property
    def splash_delay(self) -> float:
        """Seconds to hold the loading state before the startup check."""
        return float(self.get('sync.splash_delay', 2))

    def __repr__(self) -> str:
        """String representation."""
        return f"Config(path={self.config_path})"


# Global config instance (can be imported by other modules)
_global_config: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Args:
        config_path: Path to config file (only used on first call)

    Returns:
        Config instance
    """
    global _global_config

    if _global_config is None:
        _global_config = Config(config_path)

    return _global_config
