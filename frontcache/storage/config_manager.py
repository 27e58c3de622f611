"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from frontcache.exceptions import ConfigurationError
from frontcache.models.config import CacheConfig

log = logging.getLogger(__name__)

# Environment variables that override the file, mapped to config fields.
ENV_OVERRIDES = {
    "API_BASE_URL": "base_url",
    "ENCRYPTION_KEY": "encryption_key",
    "FRONTCACHE_DATA_DIR": "data_dir",
}

_NO_EXPIRY = {"", "none", "inf", "infinity"}


def _optional_int(raw: str | None, default: int | None) -> int | None:
    if raw is None:
        return default
    if raw.strip().lower() in _NO_EXPIRY:
        return None
    return int(raw)


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(
        self,
        cli_options: dict[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> CacheConfig:
        """
        Loads configuration from the INI file, applies environment and CLI
        overrides, and validates it. A missing file yields the defaults.

        Args:
            cli_options: A dictionary of options provided via the command line.
            environ: Environment to read overrides from (defaults to os.environ).

        Returns:
            A validated CacheConfig object.

        Raises:
            ConfigurationError: If the config file is invalid or validation fails.
        """
        config_data: dict[str, Any] = {}

        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(
                    f"Error parsing configuration file: {e}"
                ) from e

            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
            try:
                config_data = self._get_config_as_dict()
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value in configuration file: {e}"
                ) from e

        env = os.environ if environ is None else environ
        for var, field in ENV_OVERRIDES.items():
            if env.get(var):
                config_data[field] = env[var]

        if cli_options:
            config_data.update(cli_options)

        config_dir = self.config_file_path.parent
        config_data.setdefault("data_dir", str(config_dir / "data"))

        try:
            return CacheConfig(**config_data, config_path=str(config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save.
        """
        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}

        defaults = CacheConfig()
        for key in sorted(CacheConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            config["DEFAULT"][key] = self._format_value(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    @staticmethod
    def _format_value(value: Any) -> str:
        if value is None:
            return "none"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, list):
            return ",".join(map(str, value))
        return str(value)

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        d = CacheConfig()
        return {
            "base_url": section.get("base_url", d.base_url),
            "files_endpoint": section.get("files_endpoint", d.files_endpoint),
            "hashes_endpoint": section.get("hashes_endpoint", d.hashes_endpoint),
            "list_endpoint": section.get("list_endpoint", d.list_endpoint),
            "cache_buster": section.get("cache_buster", d.cache_buster),
            "allowed_domains": _split_list(
                section.get("allowed_domains", ",".join(d.allowed_domains))
            ),
            "storage_prefix": section.get("storage_prefix", d.storage_prefix),
            "validation_mode": section.get("validation_mode", d.validation_mode),
            "trust_unmapped_paths": section.getboolean(
                "trust_unmapped_paths", d.trust_unmapped_paths
            ),
            "page_ttl": _optional_int(section.get("page_ttl"), d.page_ttl),
            "asset_ttl": _optional_int(section.get("asset_ttl"), d.asset_ttl),
            "manifest_ttl": section.getint("manifest_ttl", d.manifest_ttl),
            "max_cache_age": section.getint("max_cache_age", d.max_cache_age),
            "max_attempts": section.getint("max_attempts", d.max_attempts),
            "base_delay": section.getfloat("base_delay", d.base_delay),
            "max_delay": section.getfloat("max_delay", d.max_delay),
            "jitter": section.getfloat("jitter", d.jitter),
            "sync_interval": section.getint("sync_interval", d.sync_interval),
            "sweep_interval": section.getint("sweep_interval", d.sweep_interval),
            "preload_pages": _split_list(
                section.get("preload_pages", ",".join(d.preload_pages))
            ),
        }

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = CacheConfig()
        needs_saving = False

        config_section = self._parser["DEFAULT"]

        for key in sorted(CacheConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = self._format_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
