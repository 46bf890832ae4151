"""Tests for application entry point: structlog config, service initialization, and app creation."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import structlog
from fastapi import FastAPI
from pydantic import SecretStr

from dealflow.adapters.http import HttpMessageTransport, HttpPaymentGateway
from dealflow.app import close_services, configure_logging, create_app, initialize_services
from dealflow.config import Settings
from dealflow.llm.classifier import AnthropicClassifier
from dealflow.slack.client import SlackNotifier


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Reset structlog so cached loggers don't leak between tests."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _base_settings(tmp_path: Path, **overrides) -> Settings:
    """Build a Settings instance pointing the database to tmp_path.

    By default all optional credentials are empty so no external services
    are initialized.  Pass keyword overrides to customise.
    """
    defaults = {
        "database_path": tmp_path / "db" / "dealflow.db",
        "retry_initial_wait_seconds": 0.0,
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)  # type: ignore[call-arg]


class TestConfigureLogging:
    """Tests for structlog configuration in dev and production modes."""

    def test_development_mode_uses_console_renderer(self) -> None:
        configure_logging(production=False)
        processors = structlog.get_config()["processors"]
        assert any(isinstance(p, structlog.dev.ConsoleRenderer) for p in processors)

    def test_production_mode_uses_json_renderer(self) -> None:
        configure_logging(production=True)
        processors = structlog.get_config()["processors"]
        assert any(isinstance(p, structlog.processors.JSONRenderer) for p in processors)

    def test_sentry_processor_only_when_enabled(self) -> None:
        configure_logging(production=True)
        without = structlog.get_config()["processors"]
        configure_logging(production=True, sentry_enabled=True)
        with_sentry = structlog.get_config()["processors"]
        assert len(with_sentry) == len(without) + 1

    def test_service_name_is_bound(self) -> None:
        configure_logging()
        assert structlog.contextvars.get_contextvars()["service"] == "dealflow"


class TestInitializeServices:
    """Tests for initialize_services wiring."""

    def test_builds_every_service(self, tmp_path: Path) -> None:
        services = initialize_services(_base_settings(tmp_path))
        try:
            for key in ("store", "caller", "locks", "engine", "payments", "contracts"):
                assert services[key] is not None
            assert (tmp_path / "db" / "dealflow.db").exists()
            services["store"].ping()
        finally:
            close_services(services)

    def test_http_adapters_built_from_settings(self, tmp_path: Path) -> None:
        services = initialize_services(
            _base_settings(
                tmp_path,
                messaging_base_url="https://messaging.example.com",
                payments_base_url="https://payments.example.com",
            )
        )
        try:
            assert isinstance(services["engine"]._transport, HttpMessageTransport)
            assert isinstance(services["payments"]._gateway, HttpPaymentGateway)
            # No documents service configured: contracts are not rendered.
            assert services["contracts"]._renderer is None
        finally:
            close_services(services)

    def test_slack_disabled_without_token(self, tmp_path: Path) -> None:
        services = initialize_services(_base_settings(tmp_path))
        try:
            assert services["slack_notifier"] is None
        finally:
            close_services(services)

    def test_slack_enabled_with_token(self, tmp_path: Path) -> None:
        settings = _base_settings(
            tmp_path,
            slack_bot_token=SecretStr("xoxb-test"),
            slack_escalation_channel="C_ESCALATION",
        )
        with patch("dealflow.slack.client.WebClient"):
            services = initialize_services(settings)
        try:
            assert isinstance(services["slack_notifier"], SlackNotifier)
        finally:
            close_services(services)

    def test_rule_based_only_without_api_key(self, tmp_path: Path) -> None:
        services = initialize_services(_base_settings(tmp_path))
        try:
            assert services["engine"]._classifier is None
            assert services["contracts"]._extractor is None
        finally:
            close_services(services)

    def test_anthropic_adapters_with_api_key(self, tmp_path: Path) -> None:
        settings = _base_settings(tmp_path, anthropic_api_key=SecretStr("sk-test"))
        with patch("dealflow.llm.client.Anthropic") as mock_anthropic:
            services = initialize_services(settings)
        try:
            assert isinstance(services["engine"]._classifier, AnthropicClassifier)
            assert mock_anthropic.call_args.kwargs["api_key"] == "sk-test"
            assert mock_anthropic.call_args.kwargs["timeout"] == 30.0
        finally:
            close_services(services)

    def test_injected_adapters_win(self, tmp_path: Path) -> None:
        transport = MagicMock()
        classifier = MagicMock()
        services = initialize_services(
            _base_settings(tmp_path, anthropic_api_key=SecretStr("sk-test")),
            transport=transport,
            classifier=classifier,
        )
        try:
            assert services["engine"]._transport is transport
            assert services["engine"]._classifier is classifier
        finally:
            close_services(services)


class TestCreateApp:
    """Tests for FastAPI app assembly."""

    def test_routes_are_registered(self, tmp_path: Path) -> None:
        services = initialize_services(_base_settings(tmp_path))
        try:
            app = create_app(services)
            assert isinstance(app, FastAPI)
            paths = {route.path for route in app.routes}
            for path in (
                "/health",
                "/ready",
                "/metrics",
                "/deals",
                "/escalations/{request_id}/resolve",
                "/contracts/{contract_id}/milestones/{milestone_id}/pay",
                "/webhooks/inbound",
                "/webhooks/payments",
            ):
                assert path in paths
            assert app.state.settings is services["settings"]
        finally:
            close_services(services)
