"""
Environment configuration with validation.

REQUIRED ENV (bot only):
- TELEGRAM_BOT_TOKEN

OPTIONAL ENV:
- TELEGRAM_API_BASE (default: https://api.telegram.org)
- INSTANCE_NAME (for logs)
- DATABASE_URL (postgres storage for locks, job logs and user settings)
- REDIS_URL (redis lock backend)
- STORAGE_MODE (auto, memory, postgres)
- LOCK_BACKEND (auto, memory, postgres, redis)
- LOCK_TTL_SECONDS (default: 600)
- LOCK_RETRY_DELAY_SECONDS (default: 0.5)
- LOCK_REAPER_INTERVAL_SECONDS (default: 60)
- ALBUM_AGGREGATE_SECONDS (default: 1.0)
- DEFAULT_RATIO (default: 4:5)
- DEFAULT_COLOR (default: #000000)
- UPLOAD_DIR (default: uploads/temp)
- LOG_LEVEL, LOG_DIR
"""
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from nocrop.geometry import parse_color, parse_ratio

logger = logging.getLogger(__name__)

_STORAGE_MODES = {"auto", "memory", "postgres"}
_LOCK_BACKENDS = {"auto", "memory", "postgres", "redis"}


def _read_float_env(name: str, default: float, *, min_value: float, max_value: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = float(raw_value.strip())
    except ValueError:
        logger.warning("Invalid %s value '%s', defaulting to %s", name, raw_value, default)
        return default
    return max(min_value, min(max_value, value))


@dataclass
class Config:
    """Application configuration loaded from ENV."""

    telegram_bot_token: str = field(default="")
    telegram_api_base: str = field(default="https://api.telegram.org")
    instance_name: str = field(default="nocrop-instance")

    # Storage
    storage_mode: str = field(default="auto")
    lock_backend: str = field(default="auto")
    database_url: Optional[str] = field(default=None)
    redis_url: Optional[str] = field(default=None)

    # Concurrency
    lock_ttl_seconds: float = field(default=600.0)
    lock_retry_delay_seconds: float = field(default=0.5)
    lock_reaper_interval_seconds: float = field(default=60.0)
    album_aggregate_seconds: float = field(default=1.0)

    # User defaults
    default_ratio: str = field(default="4:5")
    default_color: str = field(default="#000000")

    upload_dir: str = field(default="uploads/temp")
    log_level: str = field(default="INFO")
    log_dir: Optional[str] = field(default="logs")

    def __post_init__(self):
        """Load configuration from ENV after dataclass init."""
        self.telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
        self.telegram_api_base = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org").rstrip("/")
        self.instance_name = os.getenv("INSTANCE_NAME", "nocrop-instance")

        self.storage_mode = os.getenv("STORAGE_MODE", "auto").strip().lower()
        self.lock_backend = os.getenv("LOCK_BACKEND", "auto").strip().lower()
        self.database_url = os.getenv("DATABASE_URL") or None
        self.redis_url = os.getenv("REDIS_URL") or None

        self.lock_ttl_seconds = _read_float_env("LOCK_TTL_SECONDS", 600.0, min_value=5.0, max_value=86400.0)
        self.lock_retry_delay_seconds = _read_float_env(
            "LOCK_RETRY_DELAY_SECONDS", 0.5, min_value=0.0, max_value=30.0
        )
        self.lock_reaper_interval_seconds = _read_float_env(
            "LOCK_REAPER_INTERVAL_SECONDS", 60.0, min_value=1.0, max_value=3600.0
        )
        self.album_aggregate_seconds = _read_float_env(
            "ALBUM_AGGREGATE_SECONDS", 1.0, min_value=0.05, max_value=30.0
        )

        self.default_ratio = os.getenv("DEFAULT_RATIO", "4:5").strip()
        self.default_color = os.getenv("DEFAULT_COLOR", "#000000").strip()

        self.upload_dir = os.getenv("UPLOAD_DIR", "uploads/temp")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        log_dir = os.getenv("LOG_DIR", "logs").strip()
        self.log_dir = log_dir or None

        self._validate()

    def _validate(self):
        """Validate configuration consistency."""
        if self.storage_mode not in _STORAGE_MODES:
            raise ValueError(f"STORAGE_MODE must be one of {sorted(_STORAGE_MODES)}, got: {self.storage_mode}")
        if self.lock_backend not in _LOCK_BACKENDS:
            raise ValueError(f"LOCK_BACKEND must be one of {sorted(_LOCK_BACKENDS)}, got: {self.lock_backend}")
        if self.storage_mode == "postgres" and not self.database_url:
            raise ValueError("STORAGE_MODE=postgres requires DATABASE_URL")
        if self.lock_backend == "postgres" and not self.database_url:
            raise ValueError("LOCK_BACKEND=postgres requires DATABASE_URL")
        if self.lock_backend == "redis" and not self.redis_url:
            raise ValueError("LOCK_BACKEND=redis requires REDIS_URL")
        if parse_ratio(self.default_ratio) is None:
            raise ValueError(f"DEFAULT_RATIO is not a valid ratio: {self.default_ratio}")
        if parse_color(self.default_color) is None:
            raise ValueError(f"DEFAULT_COLOR is not a valid colour: {self.default_color}")

    def problems(self) -> List[str]:
        """Return runtime problems that do not prevent building the core."""
        issues: List[str] = []
        if not self.telegram_bot_token:
            issues.append("TELEGRAM_BOT_TOKEN is not set")
        elif ":" not in self.telegram_bot_token:
            issues.append("TELEGRAM_BOT_TOKEN looks malformed")
        if self.lock_ttl_seconds <= self.lock_retry_delay_seconds:
            issues.append("LOCK_TTL_SECONDS should be larger than LOCK_RETRY_DELAY_SECONDS")
        return issues

    def mask_secret(self, value: Optional[str], show_chars: int = 4) -> str:
        """Mask secret for logging."""
        if not value or len(value) <= show_chars:
            return "****"
        return f"{value[:show_chars]}{'*' * (len(value) - show_chars)}"


_config: Optional[Config] = None


def get_config() -> Config:
    """Get global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the cached config (tests, reload after ENV changes)."""
    global _config
    _config = None
