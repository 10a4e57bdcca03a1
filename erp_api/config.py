"""
Centralized configuration using Pydantic Settings.

All environment variables are loaded and validated here.
"""

from datetime import time

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # PostgreSQL
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "erp"
    db_user: str = "erp"
    db_password: str = ""

    # Company
    company_name: str = "Default Company"
    currency: str = "INR"

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True  # False for colored dev output

    # CORS
    cors_origins: list[str] = ["*"]

    # ESSL device proxy (runs on the office network next to the devices)
    essl_proxy_url: str = "http://localhost:3001"
    essl_proxy_secret: str = ""
    essl_default_port: int = 4370
    essl_timeout_seconds: int = 10
    essl_connect_retries: int = 2
    essl_retry_backoff_seconds: float = 2.0  # multiplied by attempt number
    essl_device_timezone: str = "Asia/Kolkata"  # devices keep local wall-clock time

    # Attendance rules
    late_after: time = time(9, 30)
    half_day_hours: float = 4.0
    standard_work_hours: float = 8.0

    # Procurement
    default_payment_terms_days: int = 30

    # In-process cache / performance monitor
    cache_ttl_seconds: int = 300
    slow_request_ms: int = 1000

    # Alerts
    overdue_invoice_days: int = 30

    # Scheduler (periodic ESSL sync + attendance processing)
    scheduler_enabled: bool = False
    essl_sync_interval_minutes: int = 15
    attendance_process_interval_minutes: int = 60

    @property
    def database_url(self) -> str:
        """PostgreSQL connection URL."""
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def essl_auth_header(self) -> dict[str, str]:
        """Bearer token header for the ESSL proxy."""
        return {"Authorization": f"Bearer {self.essl_proxy_secret}"}


# Global settings instance
settings = Settings()
