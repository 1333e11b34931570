"""Configuration management for chunk backups."""

import os
import yaml
from typing import Dict, Any, Optional
from .config_validator import ConfigValidator


class ConfigManager:
    """Manages configuration loading and validation for chunk backups."""

    DEFAULT_CONFIG_LOCATIONS = [
        "config.yaml",
        "config.yml",
        os.path.expanduser("~/.chunk-backup/config.yaml"),
        os.path.expanduser("~/.chunk-backup/config.yml"),
        "/etc/chunk-backup/config.yaml",
        "/etc/chunk-backup/config.yml"
    ]

    DEFAULTS = {
        'backup': {
            'chunk_path': None,
            'remote_path': None,
            'temp_path': '/tmp/chunk-backup',
            'prefix_digits': 2,
            'workers': 1,
            'timeout_minutes': 30
        },
        'storage': {
            'type': 'rclone'
        },
        'rclone': {
            'binary': 'rclone',
            'config': None,
            'args': [],
            'verbose': False
        },
        'logging': {
            'level': 'INFO',
            'file': None
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional path to config file. If not provided,
                        will search in default locations.
        """
        self.config_path = config_path
        self.config_data: Dict[str, Any] = {}
        self.validator = ConfigValidator()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file.

        Without an explicit path and with no file in the default
        locations, the defaults are used.

        Returns:
            Dictionary containing configuration data.

        Raises:
            FileNotFoundError: If an explicit config file cannot be found.
            ValueError: If config file is invalid.
        """
        config_file = self._find_config_file()

        if config_file:
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    self.config_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in config file {config_file}: {e}")
            except OSError as e:
                raise ValueError(f"Error reading config file {config_file}: {e}")
        else:
            self.config_data = {}

        if not isinstance(self.config_data, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping")

        self._set_defaults()
        self.validator.validate(self.config_data)

        return self.config_data

    def apply_overrides(self, section: str, overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Apply non-None values (e.g. command line flags) over a section and revalidate."""
        target = self.config_data.setdefault(section, {})
        for key, value in overrides.items():
            if value is not None:
                target[key] = value
        self.validator.validate(self.config_data)
        return target

    def _find_config_file(self) -> Optional[str]:
        """Find configuration file in default locations.

        Returns:
            Path to configuration file, or None if there is none.

        Raises:
            FileNotFoundError: If an explicit config file is missing.
        """
        if self.config_path:
            if os.path.exists(self.config_path):
                return self.config_path
            else:
                raise FileNotFoundError(f"Config file not found: {self.config_path}")

        for location in self.DEFAULT_CONFIG_LOCATIONS:
            if os.path.exists(location):
                return location

        return None

    def _set_defaults(self):
        """Set default values for optional configuration parameters."""
        for section, section_defaults in self.DEFAULTS.items():
            if not isinstance(self.config_data.get(section), dict):
                self.config_data[section] = {}
            for key, value in section_defaults.items():
                if key not in self.config_data[section]:
                    self.config_data[section][key] = list(value) if isinstance(value, list) else value

    def get_backup_config(self) -> Dict[str, Any]:
        """Get backup configuration.

        Returns:
            Backup configuration dictionary.
        """
        return self.config_data.get('backup', {})

    def get_storage_config(self) -> Dict[str, Any]:
        return self.config_data.get('storage', {})

    def get_rclone_config(self) -> Dict[str, Any]:
        """Get rclone configuration.

        Returns:
            Rclone configuration dictionary.
        """
        return self.config_data.get('rclone', {})

    def get_logging_config(self) -> Dict[str, Any]:
        """Get logging configuration.

        Returns:
            Logging configuration dictionary.
        """
        return self.config_data.get('logging', {})
