"""
Manages loading and validation of the optional INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from omero_downloader.exceptions import ConfigurationError
from omero_downloader.models.config import DownloadConfig

log = logging.getLogger(__name__)

_INT_KEYS = {"port", "workers"}
_FLOAT_KEYS = {"poll_interval", "max_wait"}
_BOOL_KEYS = {"insecure", "only_binary", "only_companion", "whole_fileset"}


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> DownloadConfig:
        """
        Loads defaults from the INI file if it exists, applies CLI overrides,
        and validates the result.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated DownloadConfig object.

        Raises:
            ConfigurationError: If the file is unreadable or validation fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e
            config_from_file = self._get_config_as_dict()
            log.debug(f"Loaded defaults from [dim]{self.config_file_path}[/dim]")

        if cli_options:
            config_from_file.update(cli_options)

        try:
            return DownloadConfig(**config_from_file)
        except ValidationError as e:
            messages = "; ".join(
                err["msg"].removeprefix("Value error, ") for err in e.errors()
            )
            raise ConfigurationError(messages) from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the known keys of the 'DEFAULT' section into a dictionary."""
        section = self._parser["DEFAULT"]
        known_keys = DownloadConfig.get_ini_keys()
        values: dict[str, Any] = {}
        for key in section:
            if key not in known_keys:
                log.warning(f"[yellow]Ignoring unknown configuration key '{key}'.[/yellow]")
                continue
            try:
                if key in _INT_KEYS:
                    values[key] = section.getint(key)
                elif key in _FLOAT_KEYS:
                    values[key] = section.getfloat(key)
                elif key in _BOOL_KEYS:
                    values[key] = section.getboolean(key)
                elif key == "base_dir":
                    values[key] = Path(section[key]).expanduser()
                else:
                    values[key] = section[key]
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for '{key}' in {self.config_file_path}: {e}"
                ) from e
        return values
