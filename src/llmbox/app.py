"""Application entry point serving the email webhook over FastAPI.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **Sentry** error reporting when ``SENTRY_DSN`` is set
- **Retry policies** for the completion API and the delivery API
- **SQLite** persistence for users, usage and email logs
- **Prometheus** metrics on ``/metrics`` and health probes on ``/health``/``/ready``
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from llmbox.billing.ledger import UsageLedger
from llmbox.config import Settings, get_settings, validate_credentials
from llmbox.email.sender import SendGridSender
from llmbox.health import register_health_routes
from llmbox.llm.client import LLM_RETRYABLE_STATUS_CODES, create_anthropic_client
from llmbox.llm.generator import ResponseGenerator
from llmbox.newsletter.runner import NewsletterRunner
from llmbox.newsletter.signup import NewsletterSignup
from llmbox.observability.logging import configure_logging
from llmbox.observability.metrics import setup_metrics
from llmbox.observability.middleware import RequestIdMiddleware
from llmbox.observability.sentry import init_sentry
from llmbox.pipeline.orchestrator import EmailPipeline
from llmbox.resilience.retry import DEFAULT_RETRYABLE_STATUS_CODES, RetryPolicy
from llmbox.store.sqlite import UsageStore, init_db
from llmbox.webhook import router as webhook_router

logger = structlog.get_logger()


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Build every shared component once, from one ``Settings`` instance.

    Args:
        settings: Loaded settings; ``get_settings()`` is used when omitted.

    Returns:
        A services dict holding the store, model generator, sender, ledger,
        pipeline, newsletter runner and newsletter signup.
    """
    if settings is None:
        settings = get_settings()

    conn = init_db(settings.database_path)
    store = UsageStore(conn, free_tier_limit=settings.free_tier_limit_usd)
    logger.info("database_initialized", path=str(settings.database_path))

    llm_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        retryable_status_codes=LLM_RETRYABLE_STATUS_CODES,
        timeout=settings.llm_timeout_seconds,
    )
    send_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        retryable_status_codes=DEFAULT_RETRYABLE_STATUS_CODES,
        timeout=settings.sendgrid_timeout_seconds,
    )

    generator = ResponseGenerator(
        create_anthropic_client(
            settings.anthropic_api_key.get_secret_value(), settings.llm_timeout_seconds
        ),
        model=settings.llm_model,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        enable_web_search=settings.enable_web_search,
        policy=llm_policy,
    )
    sender = SendGridSender(settings.sendgrid_api_key.get_secret_value(), send_policy)
    ledger = UsageLedger(store)

    pipeline = EmailPipeline(
        generator=generator,
        ledger=ledger,
        sender=sender,
        store=store,
        service_domain=settings.service_domain,
        from_address=settings.service_email_address,
        web_app_url=settings.web_app_url,
    )
    newsletter_runner = NewsletterRunner(
        store=store,
        generator=generator,
        ledger=ledger,
        sender=sender,
        from_address=settings.service_email_address,
        service_domain=settings.service_domain,
    )
    newsletter_signup = NewsletterSignup(
        store=store,
        sender=sender,
        from_address=settings.service_email_address,
        service_domain=settings.service_domain,
    )
    logger.info("services_initialized", model=settings.llm_model)

    return {
        "_settings": settings,
        "store": store,
        "generator": generator,
        "sender": sender,
        "ledger": ledger,
        "pipeline": pipeline,
        "newsletter_runner": newsletter_runner,
        "newsletter_signup": newsletter_signup,
    }


async def close_services(services: dict[str, Any]) -> None:
    """Release the HTTP client and database connection."""
    sender = services.get("sender")
    if sender is not None:
        await sender.aclose()
    store = services.get("store")
    if store is not None:
        store.close()
        logger.info("database_connection_closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Lifespan context manager for FastAPI startup and shutdown.

    On shutdown: closes the delivery client and the database connection.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application.
    """
    logger.info("fastapi_application_starting")
    yield
    await close_services(app.state.services)


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with lifespan, webhook router, probes and metrics.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="LLMBox Email Webhook", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("_settings")
    fastapi_app.add_middleware(RequestIdMiddleware)
    fastapi_app.include_router(webhook_router)
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)
    return fastapi_app


async def main() -> None:
    """Main entry point.

    1. Load settings and configure logging and Sentry
    2. Refuse to start without required credentials
    3. Initialize services and create the FastAPI app
    4. Serve with uvicorn until shutdown
    """
    settings = get_settings()
    sentry_enabled = init_sentry(
        settings.sentry_dsn,
        environment="production" if settings.production else "development",
    )
    configure_logging(
        level=settings.log_level,
        production=settings.production,
        sentry_enabled=sentry_enabled,
    )
    logger.info("application_starting")

    validate_credentials(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.webhook_port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
