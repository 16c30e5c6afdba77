"""Application configuration management using Pydantic Settings."""

import json
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="orderdesk", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    max_request_body_size: int = Field(default=1_048_576, description="Maximum request body size in bytes")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_signing_key_jwk: str = Field(default="", description="Supabase signing key JWK (JSON string) for JWT token verification")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_currency: str = Field(default="usd", description="Currency for charges and payment links")
    payment_gateway_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single payment gateway call; a timeout is treated as an unknown outcome",
    )

    # Payment webhooks
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret (whsec_...)")
    webhook_signature_header: str = Field(default="stripe-signature", description="Header carrying the webhook signature")
    webhook_signature_bypass: bool = Field(
        default=False,
        description="Skip webhook signature verification (test/staging only, never production)",
    )

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Orders <orders@example.com>",
        description="From address for transactional emails",
    )
    notification_timeout_seconds: float = Field(default=5.0, description="Timeout for a single email delivery")
    notification_max_attempts: int = Field(default=3, ge=1, description="Delivery attempts per email before giving up")
    admin_notification_email: str = Field(default="", description="Address copied on every new order alert")
    location_admin_emails: str = Field(
        default="{}",
        description='JSON mapping of location to admin addresses, e.g. {"downtown": ["a@x.com"]}',
    )

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL for payment redirects and email links",
    )

    @model_validator(mode="after")
    def reject_signature_bypass_in_production(self) -> "Settings":
        """Refuse to start with webhook verification disabled in production."""
        if self.webhook_signature_bypass and self.is_production:
            raise ValueError("WEBHOOK_SIGNATURE_BYPASS cannot be enabled when APP_ENV=production")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def location_admins(self) -> dict[str, list[str]]:
        """Parse the location admin mapping.

        Returns:
            dict: Location identifier to list of admin email addresses.

        Raises:
            ValueError: If the setting is not a JSON object of string lists.
        """
        try:
            raw = json.loads(self.location_admin_emails or "{}")
        except json.JSONDecodeError as e:
            raise ValueError(f"LOCATION_ADMIN_EMAILS is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ValueError("LOCATION_ADMIN_EMAILS must be a JSON object")
        return {
            str(location): [str(email) for email in emails]
            for location, emails in raw.items()
            if isinstance(emails, list)
        }

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """Check if using Stripe test keys."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
