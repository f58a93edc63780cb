"""
Centralized logging configuration.

Features:
- Dual output: file + stdout
- Rotation by size (10MB per file, keep 5 backups)
- Trace/user ids injected into every record
- Configurable log level via LOG_LEVEL env
- Separate file for errors (ERROR and above)
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from nocrop.utils.trace import TraceLogFilter

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s [trace=%(trace_id)s user=%(user_id)s]"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    log_level: Optional[str] = None,
    log_dir: Optional[str] = "logs",
    log_file: str = "bot.log",
    error_file: str = "errors.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    instance_id: str = "-",
) -> None:
    """
    Configure application-wide logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files; None disables file output
        log_file: Main log file name
        error_file: Error-only log file name
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
        instance_id: Instance name attached to every record
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    trace_filter = TraceLogFilter(instance_id=instance_id)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    # 1. Console handler (stdout)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(trace_filter)
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # 2. File handler (rotating, all logs)
        file_handler = RotatingFileHandler(
            log_path / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(trace_filter)
        root_logger.addHandler(file_handler)

        # 3. Error file handler (ERROR and above only)
        error_handler = RotatingFileHandler(
            log_path / error_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        error_handler.addFilter(trace_filter)
        root_logger.addHandler(error_handler)

    # Reduce noise from libraries
    logging.getLogger("aiogram").setLevel(logging.INFO)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    root_logger.info("Logging configured: level=%s dir=%s", log_level, log_dir or "-")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
