"""
Configuration settings management for corsync.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.corsync/config.yaml by default, with the
path overridable via the CORSYNC_CONFIG environment variable.

The credential encryption key is deliberately never written back to disk
by save_config(). Operators supply it through the config file they manage
themselves or through CORSYNC_ENCRYPTION_KEY.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".corsync"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

DEFAULT_API_ENDPOINT = "https://api.auditsoft.co"
DEFAULT_TIMEOUT_SECONDS = 30.0

TRANSPORTS = ("http", "simulated")


@dataclass
class SecurityConfig:
    """Credential encryption settings."""

    # 64 hex characters (32 bytes). Never persisted by save_config().
    encryption_key: str = ""


@dataclass
class PlatformConfig:
    """External audit platform connection settings."""

    api_endpoint: str = DEFAULT_API_ENDPOINT
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    transport: str = "http"


@dataclass
class PacingConfig:
    """Outbound request pacing (token bucket)."""

    requests_per_second: float = 10.0
    burst: int = 1


@dataclass
class RecordsConfig:
    """Location of the tenant record database and attachment blobs."""

    database: str = str(DEFAULT_CONFIG_DIR / "data" / "records.db")
    blob_root: str = str(DEFAULT_CONFIG_DIR / "data" / "blobs")


@dataclass
class ExportConfig:
    """Export run defaults."""

    default_incremental: bool = True
    lock_timeout_seconds: int = 3600


@dataclass
class Settings:
    """
    Complete corsync configuration settings.

    Settings are loaded from a YAML configuration file and can be overridden
    by environment variables prefixed with CORSYNC_.

    Attributes:
        data_dir: Directory for the sync database.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        security: Credential encryption settings.
        platform: External audit platform settings.
        pacing: Outbound request pacing.
        records: Tenant record source settings.
        export: Export run defaults.
    """

    data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    log_level: str = "INFO"

    security: SecurityConfig = field(default_factory=SecurityConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    pacing: PacingConfig = field(default_factory=PacingConfig)
    records: RecordsConfig = field(default_factory=RecordsConfig)
    export: ExportConfig = field(default_factory=ExportConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from CORSYNC_CONFIG environment variable if set,
    otherwise returns the default path (~/.corsync/config.yaml).
    """
    env_path = os.environ.get("CORSYNC_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses CORSYNC_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    The encryption key is never written.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


CONFIG_FILE_MAP: dict[tuple[str, str], tuple[str, Callable[[Any], Any]]] = {
    ("corsync", "data_dir"): ("data_dir", str),
    ("corsync", "log_level"): ("log_level", lambda x: str(x).upper()),
    ("security", "encryption_key"): ("security.encryption_key", lambda x: str(x or "")),
    ("platform", "api_endpoint"): ("platform.api_endpoint", str),
    ("platform", "timeout_seconds"): ("platform.timeout_seconds", float),
    ("platform", "transport"): ("platform.transport", lambda x: str(x).lower()),
    ("pacing", "requests_per_second"): ("pacing.requests_per_second", float),
    ("pacing", "burst"): ("pacing.burst", int),
    ("records", "database"): ("records.database", str),
    ("records", "blob_root"): ("records.blob_root", str),
    ("export", "default_incremental"): ("export.default_incremental", _to_bool),
    ("export", "lock_timeout_seconds"): ("export.lock_timeout_seconds", int),
}


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """
    Apply configuration data from parsed YAML to settings.

    Raises:
        ConfigurationError: If a section is not a mapping or a value has
                          the wrong type.
    """
    sections: dict[str, dict[str, Any]] = {}
    for section_name, _ in CONFIG_FILE_MAP:
        if section_name in sections:
            continue
        section = data.get(section_name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Config section '{section_name}' must be a mapping")
        sections[section_name] = section

    for (section_name, key), (attr_path, converter) in CONFIG_FILE_MAP.items():
        section = sections[section_name]
        if key not in section:
            continue
        try:
            _set_nested_attr(settings, attr_path, converter(section[key]))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {section_name}.{key}: {e}") from e

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "CORSYNC_DATA_DIR": ("data_dir", str),
        "CORSYNC_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "CORSYNC_ENCRYPTION_KEY": ("security.encryption_key", str),
        "CORSYNC_API_ENDPOINT": ("platform.api_endpoint", str),
        "CORSYNC_TIMEOUT_SECONDS": ("platform.timeout_seconds", float),
        "CORSYNC_TRANSPORT": ("platform.transport", lambda x: x.lower()),
        "CORSYNC_REQUESTS_PER_SECOND": ("pacing.requests_per_second", float),
        "CORSYNC_RECORDS_DATABASE": ("records.database", str),
        "CORSYNC_BLOB_ROOT": ("records.blob_root", str),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                _set_nested_attr(settings, attr_path, converter(value))
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {e}") from e

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if urlparse(settings.platform.api_endpoint).scheme != "https":
        raise ConfigurationError(
            f"api_endpoint must use HTTPS: {settings.platform.api_endpoint}"
        )

    if settings.platform.timeout_seconds <= 0:
        raise ConfigurationError("timeout_seconds must be positive")

    if settings.platform.transport not in TRANSPORTS:
        raise ConfigurationError(
            f"Invalid transport: {settings.platform.transport}. "
            f"Must be one of: {', '.join(TRANSPORTS)}"
        )

    if settings.pacing.requests_per_second <= 0:
        raise ConfigurationError("requests_per_second must be positive")
    if settings.pacing.burst < 1:
        raise ConfigurationError("burst must be at least 1")

    if settings.export.lock_timeout_seconds < 1:
        raise ConfigurationError("lock_timeout_seconds must be at least 1")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "corsync": {
            "data_dir": settings.data_dir,
            "log_level": settings.log_level,
        },
        "platform": {
            "api_endpoint": settings.platform.api_endpoint,
            "timeout_seconds": settings.platform.timeout_seconds,
            "transport": settings.platform.transport,
        },
        "pacing": {
            "requests_per_second": settings.pacing.requests_per_second,
            "burst": settings.pacing.burst,
        },
        "records": {
            "database": settings.records.database,
            "blob_root": settings.records.blob_root,
        },
        "export": {
            "default_incremental": settings.export.default_incremental,
            "lock_timeout_seconds": settings.export.lock_timeout_seconds,
        },
    }
