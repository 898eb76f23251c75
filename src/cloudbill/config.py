"""Typed configuration loaded with pydantic-settings.

Settings objects are constructed by the entry point and handed to each
component; nothing in the package reads configuration from module globals.
"""

import enum
import logging

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKOFF_CAP_MS = 30_000


class Readiness(str, enum.Enum):
    """Lifecycle of an optional external dependency."""

    NOT_CONFIGURED = "not_configured"
    INITIALIZING = "initializing"
    READY = "ready"


class WebhookSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="WEBHOOK_", env_file=".env", extra="ignore")

    enabled: bool = True
    timeout_ms: int = Field(10_000, gt=0)
    max_retries: int = Field(3, ge=0, le=10)
    retry_delay_ms: int = Field(2_000, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    max_redirects: int = Field(5, ge=0)
    follow_redirects: bool = True
    verify_ssl: bool = True
    user_agent: str = "CloudBill-Notification-Service/1.0"
    signing_secret: str | None = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class PaymentSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STRIPE_", env_file=".env", extra="ignore")

    secret_key: str | None = None
    publishable_key: str | None = None
    webhook_secret: str | None = None
    currency: str = "usd"
    api_version: str = "2023-10-16"
    max_network_retries: int = Field(2, ge=0)
    timeout_seconds: int = Field(30, gt=0)
    webhook_tolerance_seconds: int = Field(300, gt=0)

    @field_validator("currency")
    @classmethod
    def _lowercase_currency(cls, value: str) -> str:
        return value.lower()


class Settings(BaseSettings):
    """Top-level service configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    service_name: str = Field("payment-service", alias="SERVICE_NAME")
    environment: str = Field("development", alias="APP_ENV")
    database_url: str = Field("sqlite:///./cloudbill.db", alias="DATABASE_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    payment: PaymentSettings = Field(default_factory=PaymentSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def summary(self) -> dict:
        """Non-secret view of the configuration, safe to log."""
        return {
            "service": self.service_name,
            "environment": self.environment,
            "webhook": {
                "enabled": self.webhook.enabled,
                "timeout_ms": self.webhook.timeout_ms,
                "max_retries": self.webhook.max_retries,
            },
            "payment": {
                "configured": self.payment.secret_key is not None,
                "currency": self.payment.currency,
            },
        }


def get_settings(**overrides) -> Settings:
    """Build settings from the environment, for process entry points."""
    return Settings(**overrides)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
