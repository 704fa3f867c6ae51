from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    # App
    app_name: str = "ChatVault Billing"
    site_url: str = "http://localhost:3000"
    secret_key: str = "CHANGE_ME"
    allowed_hosts: str = "*"
    enforce_https: bool = False
    cors_allowed_origins: str = "*"
    access_token_max_age_seconds: int = 60 * 60
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://chatvault:chatvault@db:5432/chatvault"

    # Payments (Stripe)
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_price_power_user: str | None = None
    stripe_price_team: str | None = None
    webhook_tolerance_seconds: int = 300

    # RQ/Redis
    redis_url: str = "redis://redis:6379/0"
    notification_queue: str = "billing"
    redis_socket_timeout_seconds: float = 2.0

    # Email (SMTP)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    email_from: str | None = None
    email_from_name: str | None = None
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    smtp_timeout_seconds: int = 20
    email_send_retries: int = 3

    def price_tier_table(self) -> dict[str, str]:
        """Tier -> configured price id. Unconfigured tiers are left out."""
        table = {
            "power_user": self.stripe_price_power_user,
            "team": self.stripe_price_team,
        }
        return {tier: price for tier, price in table.items() if price}


settings = Settings()
