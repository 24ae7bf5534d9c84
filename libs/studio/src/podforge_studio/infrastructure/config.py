from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from podforge_contracts.errors import ConfigurationError

DEFAULT_API_URL = "http://localhost:8000/api/v1"


def load_env(env_path: Path | None = None) -> bool:
    """Load a .env file into the process environment without overriding it."""
    path = env_path or Path.cwd() / ".env"
    if not path.exists():
        return False
    return load_dotenv(path, override=False)


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class StudioSettings:
    api_url: str = DEFAULT_API_URL
    request_timeout_s: float = 30.0
    poll_interval_s: float = 5.0
    poll_backoff_cap_s: float | None = None
    per_page: int = 20
    log_level: str = "INFO"
    log_format: str = "plain"
    metrics_enabled: bool = False
    metrics_port: int = 9108
    blob_dir: str | None = None
    initial_volume: float = 0.8

    @classmethod
    def from_env(cls) -> "StudioSettings":
        backoff_cap = _env_float("PODFORGE_POLL_BACKOFF_CAP_S", 0.0)
        settings = cls(
            api_url=os.getenv("PODFORGE_API_URL", DEFAULT_API_URL).rstrip("/"),
            request_timeout_s=_env_float("PODFORGE_REQUEST_TIMEOUT_S", 30.0),
            poll_interval_s=_env_float("PODFORGE_POLL_INTERVAL_S", 5.0),
            poll_backoff_cap_s=backoff_cap or None,
            per_page=_env_int("PODFORGE_PER_PAGE", 20),
            log_level=os.getenv("PODFORGE_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("PODFORGE_LOG_FORMAT", "plain").lower(),
            metrics_enabled=_env_bool("PODFORGE_METRICS_ENABLED", False),
            metrics_port=_env_int("PODFORGE_METRICS_PORT", 9108),
            blob_dir=os.getenv("PODFORGE_BLOB_DIR") or None,
            initial_volume=_env_float("PODFORGE_INITIAL_VOLUME", 0.8),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.request_timeout_s <= 0:
            raise ConfigurationError("PODFORGE_REQUEST_TIMEOUT_S must be positive")
        if self.poll_interval_s <= 0:
            raise ConfigurationError("PODFORGE_POLL_INTERVAL_S must be positive")
        if self.poll_backoff_cap_s is not None and self.poll_backoff_cap_s < self.poll_interval_s:
            raise ConfigurationError("PODFORGE_POLL_BACKOFF_CAP_S must be at least the poll interval")
        if not 0.0 <= self.initial_volume <= 1.0:
            raise ConfigurationError("PODFORGE_INITIAL_VOLUME must be between 0 and 1")
        if self.log_format not in {"plain", "json"}:
            raise ConfigurationError("PODFORGE_LOG_FORMAT must be 'plain' or 'json'")
