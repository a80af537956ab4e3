"""Application configuration: loads .env, then overrides from settings.json."""

import json
import os
import uuid
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATABASE_PATH: Path = Path(
        os.getenv("DATABASE_PATH", str(_PROJECT_ROOT / "data" / "habit_sync.db"))
    )

    # Remote store (settings.json overrides .env)
    REMOTE_BASE_URL: str = _runtime.get(
        "remote_base_url",
        os.getenv("REMOTE_BASE_URL", "http://localhost:8787"),
    )
    REMOTE_TIMEOUT_SECONDS: float = float(_runtime.get(
        "remote_timeout_seconds",
        os.getenv("REMOTE_TIMEOUT_SECONDS", "10"),
    ))

    # Sync cadence and batching
    SYNC_INTERVAL_MINUTES: int = int(_runtime.get(
        "sync_interval_minutes",
        os.getenv("SYNC_INTERVAL_MINUTES", "5"),
    ))
    AUTH_READY_TIMEOUT_SECONDS: float = float(_runtime.get(
        "auth_ready_timeout_seconds",
        os.getenv("AUTH_READY_TIMEOUT_SECONDS", "15"),
    ))
    PULL_PAGE_SIZE: int = int(_runtime.get(
        "pull_page_size",
        os.getenv("PULL_PAGE_SIZE", "100"),
    ))
    PUSH_BATCH_SIZE: int = int(_runtime.get(
        "push_batch_size",
        os.getenv("PUSH_BATCH_SIZE", "100"),
    ))
    CLOCK_SKEW_EPSILON_MS: int = int(_runtime.get(
        "clock_skew_epsilon_ms",
        os.getenv("CLOCK_SKEW_EPSILON_MS", "1000"),
    ))

    # Device identity (generated once, then persisted)
    DEVICE_ID: str = _runtime.get("device_id", os.getenv("DEVICE_ID", ""))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def get_device_id(cls) -> str:
        """Return this install's device id, generating it on first use."""
        if not cls.DEVICE_ID:
            cls.DEVICE_ID = uuid.uuid4().hex
            settings = _load_settings()
            settings["device_id"] = cls.DEVICE_ID
            _save_settings(settings)
        return cls.DEVICE_ID

    @classmethod
    def get_sync_interval_ms(cls) -> int:
        """Scheduler period in milliseconds (minimum 1 minute)."""
        return max(cls.SYNC_INTERVAL_MINUTES, 1) * 60 * 1000

    @classmethod
    def update_remote_settings(cls, base_url: str, timeout: float):
        """Update the remote endpoint at runtime and persist to disk."""
        cls.REMOTE_BASE_URL = base_url
        cls.REMOTE_TIMEOUT_SECONDS = timeout

        settings = _load_settings()
        settings["remote_base_url"] = base_url
        settings["remote_timeout_seconds"] = timeout
        _save_settings(settings)

    @classmethod
    def update_sync_settings(cls, interval_minutes: int,
                             page_size: int, batch_size: int):
        """Update scheduler cadence and batch sizes, then persist."""
        cls.SYNC_INTERVAL_MINUTES = interval_minutes
        cls.PULL_PAGE_SIZE = page_size
        cls.PUSH_BATCH_SIZE = batch_size

        settings = _load_settings()
        settings["sync_interval_minutes"] = interval_minutes
        settings["pull_page_size"] = page_size
        settings["push_batch_size"] = batch_size
        _save_settings(settings)

    @classmethod
    def update_auth_timeout(cls, seconds: float):
        """Update how long a sync waits for a signed-in user."""
        cls.AUTH_READY_TIMEOUT_SECONDS = seconds
        settings = _load_settings()
        settings["auth_ready_timeout_seconds"] = seconds
        _save_settings(settings)
