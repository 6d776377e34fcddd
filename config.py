"""
Configuration for StockOrderWeb.

All settings come from the environment (optionally a .env file). The core
classes never read the environment; create_app() passes these values into
their constructors.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from core.retry import RetryPolicy
from models.identifier import SiteKey

# Load .env early so the Config class attributes see its values
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


def _env_float(name: str, default: str) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.environ.get(name, default))


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "")
    JSON_SORT_KEYS = False

    # ==========================================================================
    # Upstream API
    # ==========================================================================
    STOCK_API_BASE_URL = os.environ.get("STOCK_API_BASE_URL", "https://nehtw.com/api")
    STOCK_API_KEY = os.environ.get("STOCK_API_KEY", "")
    STOCK_API_TIMEOUT = _env_float("STOCK_API_TIMEOUT", "30")

    # Retry: delay(n) = min(MAX_DELAY, BASE_DELAY * MULTIPLIER ** (n - 1))
    STOCK_API_MAX_ATTEMPTS = _env_int("STOCK_API_MAX_ATTEMPTS", "3")
    STOCK_API_BASE_DELAY = _env_float("STOCK_API_BASE_DELAY", "2.0")
    STOCK_API_MAX_DELAY = _env_float("STOCK_API_MAX_DELAY", "10.0")
    STOCK_API_BACKOFF_MULTIPLIER = _env_float("STOCK_API_BACKOFF_MULTIPLIER", "2.0")
    STOCK_API_RESPECT_RETRY_AFTER = _env_flag("STOCK_API_RESPECT_RETRY_AFTER", "1")

    # Minimum spacing between outgoing requests (0 = unthrottled)
    STOCK_API_MIN_REQUEST_INTERVAL = _env_float("STOCK_API_MIN_REQUEST_INTERVAL", "0")

    # ==========================================================================
    # Input parsing
    # ==========================================================================
    # Provider assumed for bare numeric ids; empty disables the heuristic
    DEFAULT_NUMERIC_SITE = os.environ.get("DEFAULT_NUMERIC_SITE", "shutterstock")

    # ==========================================================================
    # Orchestration
    # ==========================================================================
    STOCK_POLL_INTERVAL = _env_float("STOCK_POLL_INTERVAL", "2")
    AI_POLL_INTERVAL = _env_float("AI_POLL_INTERVAL", "5")
    POLL_TIMEOUT_SECONDS = _env_float("POLL_TIMEOUT_SECONDS", "600")  # 0 = unbounded
    JOB_RETENTION_SECONDS = _env_float("JOB_RETENTION_SECONDS", "3600")
    SITE_CONFIG_REFRESH_SECONDS = _env_float("SITE_CONFIG_REFRESH_SECONDS", "300")

    # Background site config refresh; off in tests
    START_BACKGROUND_SERVICES = True

    @classmethod
    def retry_policy(cls) -> RetryPolicy:
        """RetryPolicy built from the STOCK_API_* settings."""
        return RetryPolicy(
            max_attempts=cls.STOCK_API_MAX_ATTEMPTS,
            base_delay=cls.STOCK_API_BASE_DELAY,
            max_delay=cls.STOCK_API_MAX_DELAY,
            backoff_multiplier=cls.STOCK_API_BACKOFF_MULTIPLIER,
            respect_retry_after=cls.STOCK_API_RESPECT_RETRY_AFTER,
        )

    @classmethod
    def default_numeric_site(cls) -> Optional[SiteKey]:
        """SiteKey for bare numeric ids, None if disabled or unknown."""
        return SiteKey.lookup(cls.DEFAULT_NUMERIC_SITE) if cls.DEFAULT_NUMERIC_SITE else None

    @classmethod
    def poll_timeout(cls) -> Optional[float]:
        return cls.POLL_TIMEOUT_SECONDS if cls.POLL_TIMEOUT_SECONDS > 0 else None


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    ENVIRONMENT = "production"


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    STOCK_API_BASE_URL = "https://api.test/v1"
    STOCK_API_KEY = "test-key"
    STOCK_API_MAX_ATTEMPTS = 2
    STOCK_API_BASE_DELAY = 0.0
    STOCK_API_MAX_DELAY = 0.0
    STOCK_POLL_INTERVAL = 0.01
    AI_POLL_INTERVAL = 0.01
    POLL_TIMEOUT_SECONDS = 5.0
    START_BACKGROUND_SERVICES = False
