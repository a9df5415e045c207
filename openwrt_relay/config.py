"""Configuration settings for openwrt_relay.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default cache directory."""
    return Path.home() / ".cache" / "openwrt-relay" / "builders"


def _default_build_dir() -> Path:
    """Return the default build output directory."""
    return Path.home() / ".local" / "share" / "openwrt-relay" / "builds"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the OWRT_RELAY_ prefix.
    The build-host settings (paths, timeouts, offline) and the router-side
    selector settings (lock file, LED root, UCI section, relay service) share
    one class so both halves read the same .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="OWRT_RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Build host paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for Image Builder cache",
    )
    build_dir: Path = Field(
        default_factory=_default_build_dir,
        description="Root directory for build outputs and logs",
    )
    profile_path: Path | None = Field(
        default=None,
        description="Device profile file (uses the built-in profile if not set)",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - do not download Image Builders or wheels",
    )
    selector_wheels_dir: Path | None = Field(
        default=None,
        description="Local wheels for the selector dependencies (pip --find-links)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for Image Builder downloads",
    )
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for builds",
    )

    # Router-side uplink selector
    lock_file: Path = Field(
        default=Path("/var/lock/uplink-select.lock"),
        description="Lock file guarding against overlapping selector runs",
    )
    leds_root: Path = Field(
        default=Path("/sys/class/leds"),
        description="Directory holding the LED class devices",
    )
    relay_section: str = Field(
        default="stabridge",
        description="UCI network section of the relay interface",
    )
    relay_service: str = Field(
        default="network",
        description="Init script restarted when the relay must follow a new uplink",
    )
    relay_process: str = Field(
        default="relayd",
        description="Process name of the relay daemon",
    )
    lan_network: str = Field(
        default="lan",
        description="LAN network bridged by the relay",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
