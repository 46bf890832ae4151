"""Application entry point: wires the services and serves the HTTP API.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **Sentry** error reporting through the structlog processor chain
- **SQLite** store shared by the engine, contracts, and payments
- **External adapters** for messaging, documents, and payments from settings
- **Anthropic** classification and extraction when an API key is present
- **Slack** escalation and error notifications when a bot token is present
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from dealflow.adapters.http import HttpDocumentRenderer, HttpMessageTransport, HttpPaymentGateway
from dealflow.adapters.protocols import (
    Classifier,
    DocumentRenderer,
    MessageTransport,
    PaymentGateway,
    TermsExtractor,
)
from dealflow.config import Settings, get_settings, validate_credentials
from dealflow.contracts.service import ContractConfig, ContractService
from dealflow.contracts.terms import ScheduleSettings
from dealflow.health import register_health_routes
from dealflow.negotiation.engine import EngineConfig, NegotiationEngine
from dealflow.negotiation.policy import PolicySettings
from dealflow.observability.metrics import setup_metrics
from dealflow.observability.middleware import RequestIdMiddleware
from dealflow.observability.sentry import get_sentry_processor, init_sentry
from dealflow.payments.coordinator import PaymentConfig, PaymentCoordinator
from dealflow.resilience.locks import KeyedLocks
from dealflow.resilience.timeouts import BoundedCaller
from dealflow.routes import register_error_handlers
from dealflow.routes import router as api_router
from dealflow.state.schema import init_db
from dealflow.state.store import DealStore
from dealflow.webhooks import router as webhook_router

logger = structlog.get_logger()


def configure_logging(production: bool = False, sentry_enabled: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
        sentry_enabled: Forward ERROR events to Sentry.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if sentry_enabled:
        shared_processors.append(get_sentry_processor())

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="dealflow")


def _build_slack_notifier(settings: Settings) -> Any:
    bot_token = settings.slack_bot_token.get_secret_value()
    if not bot_token:
        logger.info("SLACK_BOT_TOKEN not set, SlackNotifier disabled")
        return None
    try:
        from dealflow.slack.client import SlackNotifier

        notifier = SlackNotifier(
            escalation_channel=settings.slack_escalation_channel,
            errors_channel=settings.slack_errors_channel,
            bot_token=bot_token,
        )
    except Exception:
        logger.warning("Failed to initialize SlackNotifier", exc_info=True)
        return None
    logger.info("SlackNotifier initialized")
    return notifier


def _build_llm_adapters(
    settings: Settings,
) -> tuple[Classifier | None, TermsExtractor | None]:
    if not settings.anthropic_api_key.get_secret_value():
        logger.info("ANTHROPIC_API_KEY not set, rule-based classification only")
        return None, None
    from dealflow.llm.classifier import AnthropicClassifier, AnthropicTermsExtractor
    from dealflow.llm.client import get_anthropic_client

    client = get_anthropic_client(
        api_key=settings.anthropic_api_key.get_secret_value(),
        timeout=max(settings.classification_timeout_seconds, settings.extraction_timeout_seconds),
    )
    logger.info("Anthropic client initialized")
    return (
        AnthropicClassifier(client, model=settings.classification_model),
        AnthropicTermsExtractor(client, model=settings.extraction_model),
    )


def initialize_services(
    settings: Settings | None = None,
    *,
    transport: MessageTransport | None = None,
    gateway: PaymentGateway | None = None,
    renderer: DocumentRenderer | None = None,
    classifier: Classifier | None = None,
    extractor: TermsExtractor | None = None,
) -> dict[str, Any]:
    """Set up all shared services for the application.

    Opens the SQLite store, then builds the engine, the contract service,
    and the payment coordinator around one shared lock table and one worker
    pool.  Adapters not passed in are built from settings: HTTP clients for
    the external services, Anthropic for classification and extraction
    (only if an API key is set), and Slack notifications (only if a bot
    token is set).

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.
        transport: Outbound messaging adapter override.
        gateway: Payment gateway adapter override.
        renderer: Contract document renderer override.
        classifier: Reply classifier override.
        extractor: Term extractor override.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {"settings": settings}

    db_path = settings.database_path
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    store = DealStore(init_db(db_path))
    services["store"] = store
    logger.info("Deal store opened", path=str(db_path))

    caller = BoundedCaller(max_workers=settings.io_max_workers)
    locks = KeyedLocks()
    services["caller"] = caller
    services["locks"] = locks

    slack_notifier = _build_slack_notifier(settings)
    services["slack_notifier"] = slack_notifier

    if transport is None:
        transport = HttpMessageTransport.from_url(
            settings.messaging_base_url,
            settings.messaging_api_key.get_secret_value(),
            timeout=settings.transport_timeout_seconds,
        )
    if gateway is None:
        gateway = HttpPaymentGateway.from_url(
            settings.payments_base_url,
            settings.payments_api_key.get_secret_value(),
            timeout=settings.gateway_timeout_seconds,
        )
    if renderer is None and settings.documents_base_url:
        renderer = HttpDocumentRenderer.from_url(
            settings.documents_base_url, timeout=settings.render_timeout_seconds
        )
    if classifier is None and extractor is None:
        classifier, extractor = _build_llm_adapters(settings)

    policy = PolicySettings(
        human_approval_multiplier=settings.human_approval_multiplier,
        fallback_high_risk_multiplier=settings.fallback_high_risk_multiplier,
        counter_offer_floor_ratio=settings.counter_offer_floor_ratio,
    )
    engine = NegotiationEngine(
        store,
        classifier,
        transport,
        caller,
        locks=locks,
        config=EngineConfig(
            policy=policy,
            classification_timeout=settings.classification_timeout_seconds,
            transport_timeout=settings.transport_timeout_seconds,
            transport_max_attempts=settings.transport_max_attempts,
            retry_initial_wait=settings.retry_initial_wait_seconds,
        ),
        escalation_notifier=slack_notifier,
        error_notifier=slack_notifier,
    )
    services["engine"] = engine

    payments = PaymentCoordinator(
        store,
        gateway,
        caller,
        locks=locks,
        config=PaymentConfig(
            gateway_timeout=settings.gateway_timeout_seconds,
            invoice_max_attempts=settings.transport_max_attempts,
            retry_initial_wait=settings.retry_initial_wait_seconds,
        ),
        error_notifier=slack_notifier,
    )
    services["payments"] = payments

    services["contracts"] = ContractService(
        store,
        payments,
        caller,
        extractor=extractor,
        renderer=renderer,
        locks=locks,
        config=ContractConfig(
            schedule=ScheduleSettings(
                split=tuple(settings.default_milestone_split),
                due_days=settings.default_payment_due_days,
            ),
            extraction_timeout=settings.extraction_timeout_seconds,
            render_timeout=settings.render_timeout_seconds,
        ),
    )
    logger.info("Services initialized")
    return services


def close_services(services: dict[str, Any]) -> None:
    """Release the worker pool and the database connection."""
    caller = services.get("caller")
    if caller is not None:
        caller.shutdown()
    store = services.get("store")
    if store is not None:
        store.close()
        logger.info("Deal store closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Lifespan context manager for FastAPI startup and shutdown.

    On shutdown: stops the worker pool and closes the database connection.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application.
    """
    logger.info("FastAPI application starting")
    yield
    close_services(app.state.services)


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with the operator API, webhooks, and probes.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="Dealflow", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("settings") or get_settings()
    fastapi_app.add_middleware(RequestIdMiddleware)
    setup_metrics(fastapi_app)
    register_health_routes(fastapi_app)
    register_error_handlers(fastapi_app)
    fastapi_app.include_router(api_router)
    fastapi_app.include_router(webhook_router)
    return fastapi_app


async def main() -> None:
    """Main entry point.

    1. Initialize Sentry and configure logging
    2. Validate credentials
    3. Initialize services
    4. Serve the FastAPI app with uvicorn
    """
    settings = get_settings()
    sentry_enabled = init_sentry(
        settings.sentry_dsn, "production" if settings.production else "development"
    )
    configure_logging(production=settings.production, sentry_enabled=sentry_enabled)
    logger.info("Application starting", sentry_enabled=sentry_enabled)

    validate_credentials(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.http_port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
