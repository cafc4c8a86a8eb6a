"""
Configuration management for the order fulfillment backend.

Loads settings from .env via pydantic-settings.

Notes:
    - MAIL_BACKEND selects the mail transport (smtp | console | memory)
    - EMAIL_NOTIFICATIONS=false silences every outgoing email
    - validate_production_settings() enforces secrets and strict CORS in production
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/fulfillment.db"
    store_cas_max_retries: int = 50  # compare-and-swap attempts per counter increment
    io_max_workers: int = 4  # thread pool for SMTP, PDF rendering and file writes

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    shop_name: str = "AlloyGator"

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "fulfillment-api"
    jwt_access_ttl_minutes: int = 60

    # Shared secret for the accounting "mark as paid" link
    admin_payment_token: str = ""
    payment_link_rate_limit: int = 10  # requests per minute per IP

    # ── Mail ────────────────────────────────────────────────────────
    mail_backend: str = "console"  # smtp | console | memory
    email_notifications: bool = True
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = True
    smtp_timeout_seconds: float = 30.0
    mail_from_name: str = "AlloyGator"
    admin_email: str = ""

    # ── Invoices ────────────────────────────────────────────────────
    invoice_dir: str = "public/invoices"
    invoice_url_prefix: str = "/invoices"
    invoice_background_dirs: str = "public/wysiwyg/forms,wysiwyg/forms"
    default_payment_terms_days: int = 14

    # ── Orders ──────────────────────────────────────────────────────
    order_number_prefix: str = "AGO"
    order_view_size: int = 500  # orders kept in the per-process admin view

    # ── VAT (percent) ───────────────────────────────────────────────
    vat_high_rate: float = 21.0
    vat_low_rate: float = 9.0
    vat_zero_rate: float = 0.0

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def background_dirs_list(self) -> List[str]:
        """Directories searched (in order) for the invoice background image."""
        return [d.strip() for d in self.invoice_background_dirs.split(",") if d.strip()]

    @property
    def mail_sender(self) -> str:
        """RFC 5322 From header value."""
        return f"{self.mail_from_name} <{self.smtp_user}>"

    @property
    def admin_recipient(self) -> str:
        """Admin mailbox; falls back to the SMTP account itself."""
        return self.admin_email or self.smtp_user

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to verify admin access tokens."
                )
            if self.mail_backend != "smtp":
                raise ValueError(
                    "MAIL_BACKEND must be 'smtp' in production. "
                    "Other backends never deliver mail."
                )
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if self.mail_backend != "smtp":
                warnings.append(f"MAIL_BACKEND={self.mail_backend} (emails are not delivered)")
            if not self.admin_payment_token:
                warnings.append("ADMIN_PAYMENT_TOKEN not set (accounting payment link disabled)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
