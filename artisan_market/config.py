"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    fallback_path = BASE_DIR / "db" / "marketplace.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and schedulers."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Artisan Marketplace")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    # Flask run configuration (used by run.py)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Inventory thresholds
    LOW_STOCK_THRESHOLD: Final[int] = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
    MADE_TO_ORDER_LOW_THRESHOLD: Final[int] = int(os.getenv("MADE_TO_ORDER_LOW_THRESHOLD", "1"))
    SCHEDULED_ORDER_LOW_THRESHOLD: Final[int] = int(os.getenv("SCHEDULED_ORDER_LOW_THRESHOLD", "5"))
    HIGH_UTILIZATION_PERCENT: Final[int] = int(os.getenv("HIGH_UTILIZATION_PERCENT", "80"))

    # Background jobs
    SCHEDULERS_ENABLED: Final[bool] = _str_to_bool(os.getenv("SCHEDULERS_ENABLED"), default=APP_ENV != "test")
    RESTORATION_CHECK_INTERVAL_SECONDS: Final[int] = int(os.getenv("RESTORATION_CHECK_INTERVAL_SECONDS", "60"))
    PROMOTION_EXPIRY_INTERVAL_SECONDS: Final[int] = int(os.getenv("PROMOTION_EXPIRY_INTERVAL_SECONDS", "60"))

    # Promotional features
    PROMOTION_MIN_DURATION_DAYS: Final[int] = int(os.getenv("PROMOTION_MIN_DURATION_DAYS", "1"))
    PROMOTION_MAX_DURATION_DAYS: Final[int] = int(os.getenv("PROMOTION_MAX_DURATION_DAYS", "365"))
    PROMOTION_CUSTOM_TEXT_MAX_LENGTH: Final[int] = int(os.getenv("PROMOTION_CUSTOM_TEXT_MAX_LENGTH", "500"))
    PROMOTION_MAX_KEYWORDS: Final[int] = int(os.getenv("PROMOTION_MAX_KEYWORDS", "20"))
    PROMOTION_LIST_PAGE_SIZE: Final[int] = int(os.getenv("PROMOTION_LIST_PAGE_SIZE", "20"))
    PROMOTION_LIST_MAX_PAGE_SIZE: Final[int] = int(os.getenv("PROMOTION_LIST_MAX_PAGE_SIZE", "100"))

    # Admin audit log
    AUDIT_LOG_PAGE_SIZE: Final[int] = int(os.getenv("AUDIT_LOG_PAGE_SIZE", "20"))
    AUDIT_LOG_MAX_PAGE_SIZE: Final[int] = int(os.getenv("AUDIT_LOG_MAX_PAGE_SIZE", "100"))

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
    METRICS_MAX_EVENTS: Final[int] = int(os.getenv("METRICS_MAX_EVENTS", "100"))

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["SCHEDULERS_ENABLED"] = cls.SCHEDULERS_ENABLED
        app.config["AUDIT_LOG_PAGE_SIZE"] = cls.AUDIT_LOG_PAGE_SIZE
