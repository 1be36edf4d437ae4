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

    # Database
    db_host: str = "postgres"
    db_port: int = 5432
    db_name: str = "autoreply"
    db_user: str = "autoreply"
    db_password: str = ""
    db_connect_timeout: int = 10

    # Credential encryption (32 bytes are used as the AES-256 key)
    encryption_key: str = ""

    # Gemini
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"

    # Mail protocols
    default_imap_host: str = "imap.gmail.com"
    default_imap_port: int = 993
    default_smtp_host: str = "smtp.gmail.com"
    default_smtp_port: int = 587
    imap_verify_tls: bool = False
    mail_timeout_seconds: float = 30.0

    # Reply timing defaults (used when a conversation leaves them unset)
    default_min_delay_minutes: int = 15
    default_max_delay_minutes: int = 90
    default_timezone: str = "UTC"
    default_working_hours_start: str = "09:00"
    default_working_hours_end: str = "18:00"
    history_turns: int = 5

    # Merchant workflow
    payment_gateway_domains: list[str] = [
        "fiserv.com",
        "payu.in",
        "payu.com",
        "razorpay.com",
        "cashfree.com",
        "paytm.com",
        "virtualpay.com",
        "evirtualpay.com",
        "stripe.com",
        "phonepe.com",
        "ccavenue.com",
        "instamojo.com",
        "billdesk.com",
        "paypal.com",
        "amazonpay.in",
    ]
    reply_reminder_hours: int = 6
    follow_up_hours: int = 18

    # Processing
    poll_concurrency: int = 4
    dispatch_batch_size: int = 25
    max_retries: int = 3
    stale_claim_minutes: int = 30

    # Scheduler
    scheduler_enabled: bool = True
    poll_interval_minutes: int = 3
    dispatch_interval_seconds: int = 60
    reminder_interval_minutes: int = 5
    retry_interval_minutes: int = 15

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    @property
    def database_url(self) -> str:
        """PostgreSQL connection URL."""
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    def is_payment_gateway_email(self, email: str) -> bool:
        """Check if an address belongs to a monitored payment gateway domain."""
        email_lower = email.lower()
        return any(email_lower.endswith(f"@{domain}") for domain in self.payment_gateway_domains)


# Global settings instance
settings = Settings()
