"""Process configuration for vibesync."""

from __future__ import annotations

import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from vibesync.constants import (
    CONFIG_FILE_NAME,
    DATA_DIR_NAME,
    DB_FILE_NAME,
    DEFAULT_API_URL,
    HEARTBEAT_INTERVAL_SECONDS,
    HEARTBEAT_SOURCE,
    LEGACY_DIR_NAME,
    MAX_SEND_RETRIES,
    REQUEST_TIMEOUT,
)


def _home_dir() -> Path:
    """Resolve the user's home directory, preferring $HOME."""
    home = os.getenv("HOME")
    return Path(home) if home else Path.home()


def _load_dotenv(home: Path) -> None:
    """Load .env file from the working directory or the data directory."""
    env_paths = [
        Path.cwd() / ".env",
        home / DATA_DIR_NAME / ".env",
    ]
    for env_path in env_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _collect_env_vars(home: Path) -> dict:
    """Read all config environment variables and return as constructor kwargs."""
    data_dir = home / DATA_DIR_NAME
    return {
        "api_url": os.getenv("VIBE_API_URL", DEFAULT_API_URL).rstrip("/"),
        "data_dir": str(data_dir),
        "legacy_dir": str(home / LEGACY_DIR_NAME),
        "db_path": os.getenv("VIBE_DB_PATH", str(data_dir / DB_FILE_NAME)),
        "log_level": os.getenv("VIBE_LOG_LEVEL", "WARNING"),
        "log_file": os.getenv("VIBE_LOG_FILE"),
        "log_max_bytes": int(os.getenv("VIBE_LOG_MAX_BYTES", str(10 * 1024 * 1024))),
        "log_backup_count": int(os.getenv("VIBE_LOG_BACKUP_COUNT", "5")),
        "request_timeout": float(os.getenv("VIBE_REQUEST_TIMEOUT", str(REQUEST_TIMEOUT))),
        "heartbeat_interval": float(
            os.getenv("VIBE_HEARTBEAT_INTERVAL", str(HEARTBEAT_INTERVAL_SECONDS))
        ),
        "max_send_retries": int(os.getenv("VIBE_MAX_SEND_RETRIES", str(MAX_SEND_RETRIES))),
        "source": os.getenv("VIBE_SOURCE", HEARTBEAT_SOURCE),
    }


@dataclass
class Config:
    """Process configuration loaded from the environment."""

    # Remote API base URL (no trailing slash)
    api_url: str

    # Filesystem locations
    data_dir: str  # ~/.vibecodings
    legacy_dir: str  # ~/.vibe (read-only fallback for config.json)
    db_path: str

    # Logging configuration
    log_level: str = "WARNING"
    log_file: str | None = None
    log_max_bytes: int = 10 * 1024 * 1024  # 10 MB
    log_backup_count: int = 5

    # Per-request HTTP timeout (seconds)
    request_timeout: float = REQUEST_TIMEOUT

    # Presence heartbeat cadence (seconds); the pending sweep runs on the same tick
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS

    # Retries before a failed message is left for the user
    max_send_retries: int = MAX_SEND_RETRIES

    # Surface reported in heartbeats
    source: str = HEARTBEAT_SOURCE

    @property
    def config_path(self) -> Path:
        """Primary identity/preferences file."""
        return Path(self.data_dir) / CONFIG_FILE_NAME

    @property
    def legacy_config_path(self) -> Path:
        """Legacy identity file, read when the primary one is missing."""
        return Path(self.legacy_dir) / CONFIG_FILE_NAME

    @classmethod
    def load(cls) -> Config:
        """Load configuration from .env and the process environment."""
        home = _home_dir()
        _load_dotenv(home)
        return cls(**_collect_env_vars(home))


def setup_logging(
    log_level: str,
    log_file: str | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure logging for the process.

    Console output goes to stderr; stdout carries the tool protocol.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file. If provided, logs to both file and console.
        max_bytes: Maximum log file size in bytes before rotation (default 10 MB).
        backup_count: Number of rotated backup files to keep (default 5).
    """
    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.WARNING))
    root_logger.handlers.clear()

    # StreamHandler defaults to stderr
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info("Logging to file: %s", log_file)

    # Silence noisy third-party loggers
    for name in ("httpcore", "httpx", "sqlalchemy.engine", "aiohttp"):
        logging.getLogger(name).setLevel(logging.WARNING)
