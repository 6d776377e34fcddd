"""
Centralized logging configuration for StockOrderWeb.

Every order and AI job runs in its own worker thread, and the site config
refresher runs in another. Log lines therefore carry the thread name so a
single job can be followed through interleaved output.

Features:
    - Thread name in every log message (via ThreadContextFilter)
    - Console output (always enabled)
    - Rotating file logs plus a separate error log (optional)
    - Per-job loggers under "stock_order_web.job.<handle>"

Log Format:
    2026-10-19 10:15:30 [INFO    ] [MainThread] stock_order_web.app - Starting application
    2026-10-19 10:15:31 [INFO    ] [SiteConfig] stock_order_web.services.site_config_service - Refresh complete
    2026-10-19 10:15:32 [INFO    ] [Job-a1b2c3d4] stock_order_web.job.a1b2c3d4 - Order created

Usage:
    from logging_config import setup_logging, get_logger

    setup_logging(log_level=logging.INFO, enable_file_logging=True)

    logger = get_logger(__name__)
    job_logger = get_job_logger(job.handle)
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

APP_LOGGER_NAME = "stock_order_web"

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] [%(thread_name)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Rotation: 10 MB per file, 5 backups
_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5


# =============================================================================
# THREAD CONTEXT FILTER
# =============================================================================

class ThreadContextFilter(logging.Filter):
    """
    Adds thread_name and thread_id to each record.

    Never drops records.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        current_thread = threading.current_thread()
        record.thread_name = current_thread.name
        record.thread_id = threading.get_ident()
        return True


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(
    app_name: str = APP_LOGGER_NAME,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure the application logger tree.

    Args:
        app_name: Name of the application root logger
        log_level: Minimum log level
        log_dir: Directory for log files (default: ./logs next to this file)
        enable_file_logging: Whether to write rotating log files

    Returns:
        Configured application root logger
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)
    logger.propagate = False

    # Allows re-configuration (tests, app factory called twice)
    logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    thread_filter = ThreadContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(thread_filter)
    logger.addHandler(console_handler)

    if enable_file_logging:
        if log_dir is None:
            log_dir = Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        logger.addHandler(
            _rotating_handler(app_log_file, log_level, formatter, thread_filter)
        )
        logger.addHandler(
            _rotating_handler(log_dir / f"{app_name}_error.log", logging.ERROR, formatter, thread_filter)
        )

        logger.info(f"File logging enabled: {app_log_file}")

    logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return logger


def _rotating_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    thread_filter: logging.Filter,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(thread_filter)
    return handler


def level_from_name(name: Optional[str], default: int = logging.INFO) -> int:
    """Map 'DEBUG', 'info', ... to a logging level; unknown names give default."""
    if not name:
        return default
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else default


# =============================================================================
# LOGGER FACTORY FUNCTIONS
# =============================================================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the application namespace.

    Args:
        name: Module name (typically __name__)

    Example:
        # In services/order_orchestrator.py
        logger = get_logger(__name__)
        # Logger name: "stock_order_web.services.order_orchestrator"
    """
    if not name.startswith(APP_LOGGER_NAME):
        name = f"{APP_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def get_job_logger(handle: str) -> logging.Logger:
    """
    Get the logger for one job.

    Args:
        handle: Job handle (first 8 chars used in the logger name)
    """
    return logging.getLogger(f"{APP_LOGGER_NAME}.job.{handle[:8]}")


def set_thread_name(name: str) -> None:
    """
    Rename the current thread; the name shows in the [thread_name] field.

    Example:
        set_thread_name(f"Job-{handle[:8]}")
    """
    threading.current_thread().name = name
