import os
from logging import Logger
from typing import Any

import yaml
from simple_logger.logger import get_logger

from migration_api.utils.constants import MULTIPART_MEBIBYTES_ENV


class Config:
    def __init__(self, logger: Logger | None = None) -> None:
        self.logger = logger or get_logger(name="config")
        self.data_dir: str = os.environ.get(
            "MIGRATION_API_DATA_DIR", os.path.join(os.path.expanduser("~"), ".migration-api")
        )
        self.config_path: str = os.path.join(self.data_dir, "config.yaml")

    def exists(self) -> bool:
        return os.path.isfile(self.config_path)

    @property
    def root_data(self) -> dict[str, Any]:
        # No config file means every value falls back to its default
        if not self.exists():
            return {}

        try:
            with open(self.config_path) as fd:
                return yaml.safe_load(fd) or {}
        except yaml.YAMLError:
            self.logger.exception(f"Config file has invalid YAML syntax: {self.config_path}")
            raise
        except PermissionError:
            self.logger.exception(f"Permission denied reading config file: {self.config_path}")
            raise

    def get_value(self, value: str, return_on_none: Any = None, extra_dict: dict[str, Any] | None = None) -> Any:
        """
        Get value from config

        Supports dot notation for nested values (e.g., "retry.max-attempts", "secondary-rate-limit.base-delay")

        Order of getting value:
            1. extra_dict (e.g. values passed on the command line)
            2. Global config file (config.yaml)
        """
        if extra_dict:
            result = self._get_nested_value(value, extra_dict)
            if result is not None:
                return result

        result = self._get_nested_value(value, self.root_data)
        if result is not None:
            return result

        return return_on_none

    def _get_nested_value(self, key: str, data: dict[str, Any]) -> Any:
        """
        Get value from nested dict using dot notation.

        Args:
            key: Key with optional dot notation (e.g., "retry.interval")
            data: Dictionary to search

        Returns:
            Value if found, None otherwise
        """
        keys = key.split(".")
        current = data

        for k in keys:
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return None

        return current

    @property
    def multipart_mebibytes(self) -> str | None:
        """
        Raw multipart part size override, in MiB.

        The GITHUB_OWNED_STORAGE_MULTIPART_MEBIBYTES environment variable takes precedence over
        the `multipart-mebibytes` config key. The value is returned unvalidated; the archive
        uploader decides whether it is usable.
        """
        env_value = os.environ.get(MULTIPART_MEBIBYTES_ENV)
        if env_value:
            return env_value

        config_value = self.get_value(value="multipart-mebibytes")
        return str(config_value) if config_value is not None else None
