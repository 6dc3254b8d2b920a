"""
Configuration.

StripeConfig validates credentials eagerly so that a bad key fails at
startup rather than on the first API call. Settings loads the environment.
"""

from dataclasses import dataclass
from typing import Literal, Optional

from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError

SECRET_KEY_PREFIXES = ("sk_live_", "sk_test_", "rk_live_", "rk_test_")
WEBHOOK_SECRET_PREFIX = "whsec_"


def validate_webhook_secret(webhook_secret: str | None) -> str:
    """Return the webhook secret or raise ConfigurationError."""
    if not webhook_secret or not webhook_secret.strip():
        raise ConfigurationError(
            "Missing STRIPE_WEBHOOK_SECRET: a webhook signing secret is required "
            "for webhook signature verification"
        )
    webhook_secret = webhook_secret.strip()
    if not webhook_secret.startswith(WEBHOOK_SECRET_PREFIX):
        raise ConfigurationError(
            'Invalid STRIPE_WEBHOOK_SECRET format: webhook secrets must start with "whsec_"'
        )
    return webhook_secret


@dataclass
class StripeConfig:
    """Configuration for the Stripe provider.

    Args:
        api_key: Stripe secret key (sk_live_* or sk_test_*) or restricted key (rk_*)
        webhook_secret: Webhook signing secret (whsec_*)
        timeout: Upper bound in seconds for a single API call
        max_retries: Network retries performed by the Stripe SDK
    """

    api_key: str
    webhook_secret: str | None = None
    timeout: float = 30.0
    max_retries: int = 3

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.api_key or not self.api_key.strip():
            raise ConfigurationError(
                "Missing STRIPE_SECRET_KEY: api_key is required"
            )
        self.api_key = self.api_key.strip()

        if not self.api_key.startswith(SECRET_KEY_PREFIXES):
            raise ConfigurationError(
                "Invalid STRIPE_SECRET_KEY format: api_key must be a valid Stripe "
                "secret key (sk_*) or restricted key (rk_*)"
            )

        if self.webhook_secret is not None and self.webhook_secret.strip():
            self.webhook_secret = validate_webhook_secret(self.webhook_secret)
        else:
            self.webhook_secret = None

        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")

        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be non-negative")

    @property
    def is_test_mode(self) -> bool:
        """Check if using test mode API key."""
        return "_test_" in self.api_key

    @property
    def is_live_mode(self) -> bool:
        """Check if using live mode API key."""
        return "_live_" in self.api_key


class Settings(BaseSettings):
    """Environment settings."""

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_TIMEOUT: float = 30.0
    STRIPE_MAX_RETRIES: int = 3

    # Cache
    CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_SWEEP_INTERVAL: float = 60.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    def stripe_config(self) -> StripeConfig:
        """Build a validated StripeConfig from the environment."""
        return StripeConfig(
            api_key=self.STRIPE_SECRET_KEY or "",
            webhook_secret=self.STRIPE_WEBHOOK_SECRET,
            timeout=self.STRIPE_TIMEOUT,
            max_retries=self.STRIPE_MAX_RETRIES,
        )
