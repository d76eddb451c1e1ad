"""Centralized, typed configuration using pydantic-settings.

Provides a single frozen ``Settings`` class backed by ``.env`` file and
environment variables, a cached ``get_settings()`` accessor, and a
``validate_credentials()`` startup gate that refuses to start without the
keys every request depends on.

IMPORTANT: This module has ZERO imports from the ``llmbox`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

import structlog
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    Constructed once at process start and passed explicitly into each
    component.  The model is frozen so no request can mutate it.
    ``SecretStr`` fields prevent accidental leaks in logs or error output.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    webhook_port: int = 8000
    log_level: LogLevelName = "INFO"
    service_email_address: str = ""
    service_domain: str = "llmbox.pro"
    web_app_url: str = "https://llmbox.ai"

    # -- Persistence -----------------------------------------------------------
    database_path: Path = Path("data/llmbox.db")

    # -- LLM / Anthropic -------------------------------------------------------
    anthropic_api_key: SecretStr = SecretStr("")
    llm_model: str = "claude-haiku-4-5"
    llm_timeout_seconds: float = 30.0
    llm_max_tokens: int = 2000
    llm_temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    enable_web_search: bool = True

    # -- SendGrid --------------------------------------------------------------
    sendgrid_api_key: SecretStr = SecretStr("")
    sendgrid_timeout_seconds: float = 10.0

    # -- Retry -----------------------------------------------------------------
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)

    # -- Billing ---------------------------------------------------------------
    free_tier_limit_usd: Decimal = Decimal("1.00")

    # -- Observability ---------------------------------------------------------
    sentry_dsn: str = ""


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
    """Refuse to start when a key needed by every request is missing.

    Runs once at startup so a misconfigured deployment fails before it
    accepts a webhook, rather than mid-request.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.anthropic_api_key.get_secret_value():
        errors.append("ANTHROPIC_API_KEY is empty or not set")

    if not settings.sendgrid_api_key.get_secret_value():
        errors.append("SENDGRID_API_KEY is empty or not set")

    if not settings.service_email_address:
        errors.append("SERVICE_EMAIL_ADDRESS is empty or not set")

    if not errors:
        logger.info("credential_validation_passed")
        return

    for err in errors:
        logger.error("credential_missing", detail=err)
    print("\n=== STARTUP FAILED ===", file=sys.stderr)
    print("Missing required configuration:", file=sys.stderr)
    for err in errors:
        print(f"  - {err}", file=sys.stderr)
    print("======================\n", file=sys.stderr)
    sys.exit(1)
