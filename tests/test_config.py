"""Tests for settings loading."""

import json
from pathlib import Path

import pytest

from pin_upload import config
from pin_upload.config import Settings, get_settings


def _write_settings(tmp_path: Path, data: dict[str, object]) -> None:
    (tmp_path / "settings.json").write_text(json.dumps(data), encoding="utf-8")


class TestSettingsDefaults:
    """Tests for built-in defaults."""

    def test_defaults(self) -> None:
        """Test values when nothing is configured."""
        settings = get_settings()

        assert settings.project_id == ""
        assert settings.project_secret == ""
        assert settings.api_url == "https://ipfs.infura.io:5001"
        assert settings.pin is True
        assert settings.url_prefix == ""
        assert settings.output_dir == ""
        assert settings.max_concurrent_jobs == 8
        assert settings.request_timeout == 300.0

    def test_singleton(self) -> None:
        """Test that get_settings() returns the same instance."""
        assert get_settings() is get_settings()
        assert Settings() is get_settings()

    def test_log_directory_from_env(self, log_dir: Path) -> None:
        """Test that the log directory points where the environment says."""
        assert get_settings().log_directory == log_dir


class TestSettingsSources:
    """Tests for settings.json and environment precedence."""

    def test_settings_file(self, tmp_path: Path) -> None:
        """Test that settings.json overrides defaults."""
        _write_settings(tmp_path, {"url_prefix": "ipfs://", "max_concurrent_jobs": 3})

        settings = get_settings()

        assert settings.url_prefix == "ipfs://"
        assert settings.max_concurrent_jobs == 3

    def test_env_overrides_settings_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that environment variables win over settings.json."""
        _write_settings(tmp_path, {"project_id": "from-file", "api_url": "http://file:5001"})
        monkeypatch.setenv(config.ENV_PROJECT_ID, "from-env")

        settings = get_settings()

        assert settings.project_id == "from-env"
        assert settings.api_url == "http://file:5001"

    def test_reload(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that reload() picks up new environment values."""
        settings = get_settings()
        monkeypatch.setenv(config.ENV_URL_PREFIX, "https://gw.example/ipfs/")

        settings.reload()

        assert settings.url_prefix == "https://gw.example/ipfs/"
        assert settings.all()["url_prefix"] == "https://gw.example/ipfs/"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("false", False), ("0", False), ("no", False), ("TRUE", True), ("on", True)],
    )
    def test_pin_parsing(
        self, monkeypatch: pytest.MonkeyPatch, value: str, expected: bool
    ) -> None:
        """Test boolean parsing of the pin setting."""
        monkeypatch.setenv(config.ENV_PIN, value)
        assert get_settings().pin is expected

    def test_unparseable_pin_keeps_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that an unknown pin value falls back to pinning."""
        monkeypatch.setenv(config.ENV_PIN, "maybe")
        assert get_settings().pin is True

    def test_invalid_numbers_fall_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that non-numeric values fall back to defaults."""
        monkeypatch.setenv(config.ENV_MAX_CONCURRENT_JOBS, "lots")
        monkeypatch.setenv(config.ENV_REQUEST_TIMEOUT, "soon")

        settings = get_settings()

        assert settings.max_concurrent_jobs == config.DEFAULT_MAX_CONCURRENT_JOBS
        assert settings.request_timeout == 300.0


class TestPackageInfo:
    """Tests for package metadata helpers."""

    def test_version_and_name(self) -> None:
        """Test values read from pyproject.toml."""
        assert config.get_package_name() == "pin-upload"
        assert config.get_package_version() != ""
