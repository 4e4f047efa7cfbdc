"""
Centralized configuration using Pydantic Settings.

All environment variables are loaded and validated here.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment ("production" enforces webhook signatures)
    environment: str = "development"

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "compliance"
    db_user: str = "compliance"
    db_password: str = ""

    # IMAP mailbox
    imap_host: str = "imap.gmail.com"
    imap_port: int = 993
    imap_user: str = ""
    imap_password: str = ""
    imap_folder: str = "INBOX"

    # Mailbox watcher
    watcher_enabled: bool = False
    watcher_poll_seconds: int = 30
    watcher_reconnect_seconds: int = 10

    # Address normalization (Google Geocoding)
    geocode_enabled: bool = True
    google_maps_api_key: str = ""
    geocode_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    geocode_region: str = "country:AU"
    geocode_timeout_seconds: float = 10.0

    # Resend inbound webhook
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com"
    resend_webhook_secret: str = ""
    inbound_allowed_domain: str = ""
    webhook_tolerance_seconds: int = 300

    # Task lifecycle job (daily)
    scheduler_enabled: bool = True
    scheduler_hour: int = 4
    scheduler_minute: int = 0
    scheduler_timezone: str = "Australia/Melbourne"
    due_soon_window_days: int = 60

    # Task reminders (same daily run, before the status transitions)
    reminders_enabled: bool = True
    reminder_lookback_days: int = 60
    frontend_url: str = "https://yourdomain.com"

    # Outbound SMTP for reminders
    smtp_host: str = ""
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_timeout_seconds: float = 30.0
    reminder_from_name: str = "Task Reminder"

    # Backfill
    backfill_default_days: int = 7

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def database_url(self) -> str:
        """PostgreSQL connection URL."""
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def is_allowed_recipient(self, address: str) -> bool:
        """Check if an inbound recipient belongs to the handled domain.

        An empty allow-list accepts everything.
        """
        if not self.inbound_allowed_domain:
            return True
        allowed = self.inbound_allowed_domain.lower()
        domain = address.rsplit("@", 1)[-1].strip(" >").lower()
        return domain == allowed or domain.endswith(f".{allowed}")


# Global settings instance
settings = Settings()
