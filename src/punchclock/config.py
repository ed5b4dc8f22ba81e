"""Configuration management using pydantic-settings.

Precedence, highest first:
1. CLI options
2. Environment variables (PUNCHCLOCK_* prefix)
3. Global config file ($XDG_CONFIG_HOME/punchclock/config.toml)
4. Built-in defaults
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_config_path() -> Path:
    """Get the global config file path (XDG compliant).

    Returns:
        Path to config file:
        - Linux/macOS: ~/.config/punchclock/config.toml
        - Windows: %APPDATA%/punchclock/config.toml
    """
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home()))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "punchclock" / "config.toml"


def get_default_database_path() -> str:
    base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return str(base / "punchclock" / "punchclock.db")


class Settings(BaseSettings):
    """Application settings.

    Environment variables use the PUNCHCLOCK_ prefix, e.g.
    PUNCHCLOCK_DATABASE_PATH or PUNCHCLOCK_LOG_LEVEL.
    """

    model_config = SettingsConfigDict(
        env_prefix="PUNCHCLOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_assignment=True,
    )

    # Storage
    database_path: str = Field(default_factory=get_default_database_path, description="SQLite database file")

    # Display
    timezone: str = Field(default="UTC", description="IANA zone for naive CLI input and date rendering")
    output_format: Literal["table", "json"] = Field(default="table", description="CLI output format")

    # Reports
    default_report_period: Literal["week", "month"] = Field(default="week", description="Velocity period")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Logging level",
    )
    log_format: Literal["json", "console"] = Field(default="console", description="Log output format")
    log_file: str | None = Field(default=None, description="Log file path (optional)")

    # Metrics
    metrics_enabled: bool = Field(default=False, description="Write Prometheus metrics after each command")
    metrics_file: str | None = Field(default=None, description="Textfile-collector output path for metrics")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone '{v}'") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def resolved_database_path(self) -> Path:
        return Path(self.database_path).expanduser()


def load_toml_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from TOML file.

    Args:
        path: Path to config file (uses default if None)

    Returns:
        Configuration dictionary (empty if file doesn't exist)
    """
    try:
        import tomllib
    except ImportError:
        # Python < 3.11
        import tomli as tomllib  # type: ignore[no-redef]

    config_path = path or get_config_path()
    if config_path.exists():
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    return {}


# TOML section -> {key in section: Settings field}
TOML_FIELD_MAP: dict[str, dict[str, str]] = {
    "database": {"path": "database_path"},
    "display": {"timezone": "timezone", "output_format": "output_format"},
    "reports": {"default_period": "default_report_period"},
    "logging": {"level": "log_level", "format": "log_format", "file": "log_file"},
    "metrics": {"enabled": "metrics_enabled", "file": "metrics_file"},
}


def flatten_toml_config(toml_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested TOML config to a flat dictionary of Settings fields.

    Args:
        toml_config: Nested TOML configuration

    Returns:
        Flattened configuration dictionary
    """
    overrides: dict[str, Any] = {}
    for section, keys in TOML_FIELD_MAP.items():
        values = toml_config.get(section)
        if not isinstance(values, dict):
            continue
        for key, field_name in keys.items():
            if key in values:
                overrides[field_name] = values[key]
    return overrides


def get_default_config() -> dict[str, Any]:
    """Default configuration written by ``punchclock init-config``."""
    return {
        "database": {"path": get_default_database_path()},
        "display": {"timezone": "UTC", "output_format": "table"},
        "reports": {"default_period": "week"},
        "logging": {"level": "WARNING", "format": "console"},
    }


def load_settings_with_toml(config_path: Path | None = None) -> Settings:
    """Load settings with the TOML file as base and env vars on top.

    Environment variables win over file values, so file values are only
    applied for fields that have no PUNCHCLOCK_* variable set.

    Args:
        config_path: Optional path to TOML config file

    Returns:
        Settings instance with merged configuration
    """
    overrides = flatten_toml_config(load_toml_config(config_path))
    env_keys = {k.upper() for k in os.environ}
    overrides = {k: v for k, v in overrides.items() if f"PUNCHCLOCK_{k.upper()}" not in env_keys}
    return Settings(**overrides)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance (defaults + environment + global TOML file)."""
    return load_settings_with_toml()
