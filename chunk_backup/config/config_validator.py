"""Configuration validation for chunk backups."""

from typing import Dict, Any


class ConfigValidator:
    """Validates chunk backup configuration."""

    STORAGE_TYPES = ['rclone', 'local']
    LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']

    def validate(self, config: Dict[str, Any]) -> None:
        """Validate configuration data.

        Paths are not required here; the command line checks them once
        flags have been merged in.

        Args:
            config: Configuration dictionary to validate.

        Raises:
            ValueError: If configuration is invalid.
        """
        self._validate_backup_config(config.get('backup', {}))
        self._validate_storage_config(config.get('storage', {}))
        self._validate_rclone_config(config.get('rclone', {}))
        self._validate_logging_config(config.get('logging', {}))

    def _validate_backup_config(self, backup: Dict[str, Any]) -> None:
        """Validate the backup section.

        Args:
            backup: Backup configuration dictionary.

        Raises:
            ValueError: If a value is out of range.
        """
        for key in ('chunk_path', 'remote_path', 'temp_path'):
            value = backup.get(key)
            if value is not None and (not isinstance(value, str) or not value):
                raise ValueError(f"backup.{key} must be a non-empty string")

        prefix_digits = backup.get('prefix_digits')
        if prefix_digits is not None:
            if isinstance(prefix_digits, bool) or not isinstance(prefix_digits, int) \
                    or not 1 <= prefix_digits <= 4:
                raise ValueError(f"backup.prefix_digits must be between 1 and 4, got {prefix_digits!r}")

        workers = backup.get('workers')
        if workers is not None:
            if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
                raise ValueError(f"backup.workers must be a positive integer, got {workers!r}")

        timeout = backup.get('timeout_minutes')
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ValueError(f"backup.timeout_minutes must be positive, got {timeout!r}")

    def _validate_storage_config(self, storage: Dict[str, Any]) -> None:
        storage_type = storage.get('type', 'rclone')
        if storage_type not in self.STORAGE_TYPES:
            raise ValueError(f"storage.type has invalid value: {storage_type}")

    def _validate_rclone_config(self, rclone: Dict[str, Any]) -> None:
        """Validate the rclone section.

        Args:
            rclone: Rclone configuration dictionary.

        Raises:
            ValueError: If rclone configuration is invalid.
        """
        if not rclone.get('binary'):
            raise ValueError("rclone.binary cannot be empty")

        args = rclone.get('args', [])
        if not isinstance(args, list) or not all(isinstance(arg, str) for arg in args):
            raise ValueError("rclone.args must be a list of strings")

    def _validate_logging_config(self, logging_config: Dict[str, Any]) -> None:
        level = str(logging_config.get('level', 'INFO')).upper()
        if level not in self.LOG_LEVELS:
            raise ValueError(f"logging.level has invalid value: {logging_config.get('level')}")
