"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from openwrt_relay.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert (
            settings.cache_dir == Path.home() / ".cache" / "openwrt-relay" / "builders"
        )
        assert (
            settings.build_dir
            == Path.home() / ".local" / "share" / "openwrt-relay" / "builds"
        )
        assert settings.profile_path is None
        assert settings.offline is False
        assert settings.log_level == "INFO"

    def test_selector_defaults(self) -> None:
        """Selector settings should match the stock relay image."""
        settings = Settings()

        assert settings.lock_file == Path("/var/lock/uplink-select.lock")
        assert settings.leds_root == Path("/sys/class/leds")
        assert settings.relay_section == "stabridge"
        assert settings.relay_service == "network"
        assert settings.relay_process == "relayd"
        assert settings.lan_network == "lan"

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "OWRT_RELAY_OFFLINE": "true",
                "OWRT_RELAY_LOG_LEVEL": "DEBUG",
                "OWRT_RELAY_RELAY_SECTION": "bridge0",
            },
        ):
            settings = Settings()
            assert settings.offline is True
            assert settings.log_level == "DEBUG"
            assert settings.relay_section == "bridge0"

    def test_paths_from_env(self) -> None:
        """Paths should be configurable via env."""
        with patch.dict(
            os.environ,
            {
                "OWRT_RELAY_CACHE_DIR": "/custom/cache",
                "OWRT_RELAY_PROFILE_PATH": "/etc/openwrt-relay/profile.json",
                "OWRT_RELAY_LOCK_FILE": "/tmp/select.lock",
            },
        ):
            settings = Settings()
            assert settings.cache_dir == Path("/custom/cache")
            assert settings.profile_path == Path("/etc/openwrt-relay/profile.json")
            assert settings.lock_file == Path("/tmp/select.lock")

    def test_invalid_log_level_rejected(self) -> None:
        """Unknown log levels should fail validation."""
        with (
            patch.dict(os.environ, {"OWRT_RELAY_LOG_LEVEL": "CHATTY"}),
            pytest.raises(ValidationError),
        ):
            Settings()

    def test_timeout_minimum(self) -> None:
        """Timeouts below one minute should be rejected."""
        with pytest.raises(ValidationError):
            Settings(build_timeout=10)


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_returns_valid_json(self) -> None:
        """print_settings_json should return valid JSON."""
        data = json.loads(print_settings_json())

        assert "cache_dir" in data
        assert "lock_file" in data
        assert data["relay_process"] == "relayd"

    def test_uses_given_settings(self, tmp_path: Path) -> None:
        """print_settings_json should render the given settings."""
        settings = Settings(cache_dir=tmp_path, offline=True)
        data = json.loads(print_settings_json(settings))

        assert data["cache_dir"] == str(tmp_path)
        assert data["offline"] is True
