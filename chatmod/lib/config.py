"""
Runtime configuration loaded from environment variables.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


@dataclass
class Settings:
    """Pipeline settings. Defaults match a single-node development setup."""
    # Record store
    store_backend: str = "memory"  # memory | postgres
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "chat_moderation"
    db_user: str = "postgres"
    db_password: str = "postgres"

    # Moderator alerts (disabled when unset)
    kafka_bootstrap_servers: Optional[str] = None

    # Servers
    metrics_port: int = 8000
    api_port: int = 8080
    log_level: str = "INFO"

    # Moderation
    classifier_max_length: int = 800
    server_max_length: int = 1000
    message_max_length: int = 500
    rate_limit_max: int = 10
    rate_limit_window_seconds: int = 60
    counter_purge_interval_seconds: int = 300
    admin_emails: List[str] = field(default_factory=lambda: [
        "admin@sessionprocess.com",
        "moderator@sessionprocess.com",
    ])

    # Analytics
    analytics_timezone: str = "UTC"
    report_retention_days: int = 90
    aggregation_timeout_seconds: Optional[float] = None

    @classmethod
    def from_env(cls) -> "Settings":
        admin_emails = os.getenv("ADMIN_EMAILS")
        defaults = cls()
        return cls(
            store_backend=os.getenv("STORE_BACKEND", defaults.store_backend).lower(),
            database_url=os.getenv("DATABASE_URL"),
            db_host=os.getenv("DB_HOST", defaults.db_host),
            db_port=_env_int("DB_PORT", defaults.db_port),
            db_name=os.getenv("DB_NAME", defaults.db_name),
            db_user=os.getenv("DB_USER", defaults.db_user),
            db_password=os.getenv("DB_PASSWORD", defaults.db_password),
            kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS") or None,
            metrics_port=_env_int("METRICS_PORT", defaults.metrics_port),
            api_port=_env_int("API_PORT", defaults.api_port),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            classifier_max_length=_env_int("CLASSIFIER_MAX_LENGTH", defaults.classifier_max_length),
            server_max_length=_env_int("SERVER_MAX_LENGTH", defaults.server_max_length),
            message_max_length=_env_int("MESSAGE_MAX_LENGTH", defaults.message_max_length),
            rate_limit_max=_env_int("RATE_LIMIT_MAX", defaults.rate_limit_max),
            rate_limit_window_seconds=_env_int("RATE_LIMIT_WINDOW_SECONDS", defaults.rate_limit_window_seconds),
            counter_purge_interval_seconds=_env_int(
                "COUNTER_PURGE_INTERVAL_SECONDS", defaults.counter_purge_interval_seconds
            ),
            admin_emails=(
                [e.strip().lower() for e in admin_emails.split(",") if e.strip()]
                if admin_emails is not None else defaults.admin_emails
            ),
            analytics_timezone=os.getenv("ANALYTICS_TZ", defaults.analytics_timezone),
            report_retention_days=_env_int("REPORT_RETENTION_DAYS", defaults.report_retention_days),
            aggregation_timeout_seconds=_env_optional_float("AGGREGATION_TIMEOUT_SECONDS"),
        )


# Singleton instance
settings = Settings.from_env()
