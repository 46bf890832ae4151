"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_credentials()``
startup gate that enforces credential presence in production mode.

IMPORTANT: This module has ZERO imports from the ``dealflow`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    ``SecretStr`` fields prevent accidental leaks in logs or error output.
    Policy constants (approval multiplier, default milestone split) live here
    so operators can tune them without a code change.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    http_port: int = 8000
    database_path: Path = Path("data/dealflow.db")
    sentry_dsn: str = ""

    # -- Negotiation policy ----------------------------------------------------
    human_approval_multiplier: Decimal = Decimal("1.2")
    fallback_high_risk_multiplier: Decimal = Decimal("1.5")
    counter_offer_floor_ratio: Decimal = Decimal("0.8")

    # -- Contract schedule -----------------------------------------------------
    default_milestone_split: list[Decimal] = [Decimal("50"), Decimal("50")]
    default_payment_due_days: int = 30

    # -- Timeouts and retries --------------------------------------------------
    classification_timeout_seconds: float = 20.0
    extraction_timeout_seconds: float = 30.0
    render_timeout_seconds: float = 30.0
    gateway_timeout_seconds: float = 15.0
    transport_timeout_seconds: float = 15.0
    transport_max_attempts: int = 3
    retry_initial_wait_seconds: float = 1.0
    io_max_workers: int = 16

    # -- LLM / Anthropic -------------------------------------------------------
    anthropic_api_key: SecretStr = SecretStr("")
    classification_model: str = "claude-haiku-4-5-20250929"
    extraction_model: str = "claude-sonnet-4-5-20250929"

    # -- External services -----------------------------------------------------
    messaging_base_url: str = ""
    messaging_api_key: SecretStr = SecretStr("")
    documents_base_url: str = ""
    payments_base_url: str = ""
    payments_api_key: SecretStr = SecretStr("")

    # -- Webhooks --------------------------------------------------------------
    inbound_webhook_secret: SecretStr = SecretStr("")
    payment_webhook_secret: SecretStr = SecretStr("")

    # -- Slack (secrets) -------------------------------------------------------
    slack_bot_token: SecretStr = SecretStr("")
    slack_escalation_channel: str = ""
    slack_errors_channel: str = ""

    @field_validator("default_milestone_split")
    @classmethod
    def split_must_total_one_hundred(cls, v: list[Decimal]) -> list[Decimal]:
        """Ensure the default milestone split is non-empty and sums to 100."""
        if not v:
            raise ValueError("default_milestone_split must not be empty")
        if any(part <= 0 for part in v):
            raise ValueError("default_milestone_split entries must be positive")
        if sum(v) != Decimal("100"):
            raise ValueError("default_milestone_split must sum to 100")
        return v

    @field_validator("human_approval_multiplier", "fallback_high_risk_multiplier")
    @classmethod
    def multiplier_must_be_positive(cls, v: Decimal) -> Decimal:
        """Ensure budget multipliers are positive."""
        if v <= 0:
            raise ValueError("multiplier must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    The ``@lru_cache`` decorator ensures environment variables are parsed
    exactly once.  Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # Log only the structured errors list -- never the full exception
        # which may contain raw SecretStr values.
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_credentials(settings: Settings) -> None:
    """Enforce credential presence at startup.

    In **production** mode (``settings.production is True``), the application
    exits with a clear error block if any required credential is missing.

    In **development** mode, each missing credential is logged as a warning
    but the application continues to start.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.messaging_base_url:
        errors.append("MESSAGING_BASE_URL is empty or not set")

    if not settings.payments_base_url:
        errors.append("PAYMENTS_BASE_URL is empty or not set")

    if not settings.payments_api_key.get_secret_value():
        errors.append("PAYMENTS_API_KEY is empty or not set")

    if not settings.documents_base_url:
        errors.append("DOCUMENTS_BASE_URL is empty or not set")

    if not settings.inbound_webhook_secret.get_secret_value():
        errors.append("INBOUND_WEBHOOK_SECRET is empty or not set")

    if not settings.payment_webhook_secret.get_secret_value():
        errors.append("PAYMENT_WEBHOOK_SECRET is empty or not set")

    if not errors:
        logger.info("credential_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("credential_missing", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Missing required credentials for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("credential_missing_dev", detail=err)
