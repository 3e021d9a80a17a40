"""Configuration management for pin_upload"""

import json
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env files (project first, then working directory)
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)
load_dotenv(Path.cwd() / ".env")

PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Environment variable names for configuration
ENV_SETTINGS_FILE = "PIN_UPLOAD_SETTINGS_FILE"
ENV_PROJECT_ID = "PIN_UPLOAD_PROJECT_ID"
ENV_PROJECT_SECRET = "PIN_UPLOAD_PROJECT_SECRET"
ENV_API_URL = "PIN_UPLOAD_API_URL"
ENV_PIN = "PIN_UPLOAD_PIN"
ENV_URL_PREFIX = "PIN_UPLOAD_URL_PREFIX"
ENV_OUTPUT_DIR = "PIN_UPLOAD_OUTPUT_DIR"
ENV_MAX_CONCURRENT_JOBS = "PIN_UPLOAD_MAX_CONCURRENT_JOBS"
ENV_REQUEST_TIMEOUT = "PIN_UPLOAD_REQUEST_TIMEOUT"
ENV_LOG_DIRECTORY = "PIN_UPLOAD_LOG_DIRECTORY"

DEFAULT_API_URL = "https://ipfs.infura.io:5001"
DEFAULT_MAX_CONCURRENT_JOBS = 8

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


def get_package_name() -> str:
    """Get the package name from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("name", "pin-upload"))
    except Exception:
        return "pin-upload"


def get_settings_file() -> Path:
    """Path of the optional JSON settings file."""
    override = os.environ.get(ENV_SETTINGS_FILE)
    if override:
        return Path(override).expanduser()
    return BASE_DIR / "settings.json"


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


class Settings:
    """Manages application settings from defaults, a JSON file and the environment."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. Hardcoded defaults
        """
        defaults: dict[str, Any] = {
            "project_id": "",
            "project_secret": "",
            "api_url": DEFAULT_API_URL,
            "pin": True,
            "url_prefix": "",
            "output_dir": "",
            "max_concurrent_jobs": DEFAULT_MAX_CONCURRENT_JOBS,
            "request_timeout": 300.0,
            "log_directory": str(Path.home() / ".pin_upload" / "logs"),
        }

        settings_file = get_settings_file()
        if settings_file.exists():
            with open(settings_file, encoding="utf-8") as f:
                defaults.update(json.load(f))

        env_overrides = {
            "project_id": os.environ.get(ENV_PROJECT_ID),
            "project_secret": os.environ.get(ENV_PROJECT_SECRET),
            "api_url": os.environ.get(ENV_API_URL),
            "pin": os.environ.get(ENV_PIN),
            "url_prefix": os.environ.get(ENV_URL_PREFIX),
            "output_dir": os.environ.get(ENV_OUTPUT_DIR),
            "max_concurrent_jobs": os.environ.get(ENV_MAX_CONCURRENT_JOBS),
            "request_timeout": os.environ.get(ENV_REQUEST_TIMEOUT),
            "log_directory": os.environ.get(ENV_LOG_DIRECTORY),
        }

        # Only apply non-None environment values
        for key, value in env_overrides.items():
            if value is not None:
                defaults[key] = value

        self._settings = defaults

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reload(self) -> None:
        """Reload settings from file and environment."""
        self._load_settings()

    @property
    def project_id(self) -> str:
        """Get the gateway project ID."""
        return str(self._settings.get("project_id") or "")

    @property
    def project_secret(self) -> str:
        """Get the gateway project secret."""
        return str(self._settings.get("project_secret") or "")

    @property
    def api_url(self) -> str:
        """Get the gateway API URL."""
        return str(self._settings.get("api_url") or DEFAULT_API_URL)

    @property
    def pin(self) -> bool:
        """Whether uploads are pinned."""
        return _as_bool(self._settings.get("pin", True), True)

    @property
    def url_prefix(self) -> str:
        return str(self._settings.get("url_prefix") or "")

    @property
    def output_dir(self) -> str:
        return str(self._settings.get("output_dir") or "")

    @property
    def max_concurrent_jobs(self) -> int:
        """Get the admission gate capacity."""
        try:
            return int(self._settings.get("max_concurrent_jobs", DEFAULT_MAX_CONCURRENT_JOBS))
        except (TypeError, ValueError):
            return DEFAULT_MAX_CONCURRENT_JOBS

    @property
    def request_timeout(self) -> float:
        """Get the gateway request timeout in seconds."""
        try:
            return float(self._settings.get("request_timeout", 300.0))
        except (TypeError, ValueError):
            return 300.0

    @property
    def log_directory(self) -> Path:
        """Get the JSONL log directory."""
        return Path(str(self._settings.get("log_directory"))).expanduser()


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()
