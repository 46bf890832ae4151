"""Shared pytest fixtures for the dealflow test suite.

Every test gets a fresh in-memory SQLite store and in-process fakes for the
external collaborators (classifier, messaging transport, document renderer,
payment gateway), so nothing touches the network.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import threading
import time
from collections.abc import Callable, Iterator
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from dealflow.app import close_services, create_app, initialize_services
from dealflow.config import Settings
from dealflow.contracts.service import ContractConfig, ContractService
from dealflow.domain.errors import TransportFailure
from dealflow.domain.models import (
    BudgetConstraints,
    ChargeResult,
    Classification,
    CommunicationRecord,
    ContractTerms,
    Deal,
    PaymentMilestone,
)
from dealflow.domain.types import DealStage, Sentiment
from dealflow.negotiation.engine import EngineConfig, NegotiationEngine
from dealflow.payments.coordinator import PaymentConfig, PaymentCoordinator
from dealflow.resilience.locks import KeyedLocks
from dealflow.resilience.timeouts import BoundedCaller
from dealflow.state.schema import init_db
from dealflow.state.store import DealStore

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClassifier:
    """Returns a canned payload, raises, or stalls, and records every call."""

    def __init__(
        self,
        result: Any = None,
        error: BaseException | None = None,
        delay: float = 0.0,
    ) -> None:
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: list[tuple[list[CommunicationRecord], str]] = []

    def classify(self, history: list[CommunicationRecord], latest_reply: str) -> Any:
        self.calls.append((history, latest_reply))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeTransport:
    """Delivers messages in memory; the first ``failures`` sends raise."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.sent: list[tuple[str, str]] = []
        self.attempts = 0

    def send_message(self, deal_id: str, content: str) -> str:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransportFailure("connection reset")
        self.sent.append((deal_id, content))
        return f"msg-{len(self.sent)}"


class FakeRenderer:
    """Returns a document URL per contract, or raises ``error``."""

    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error
        self.rendered: list[str] = []

    def render_contract(self, contract_id: str, terms: ContractTerms) -> str:
        if self.error is not None:
            raise self.error
        self.rendered.append(contract_id)
        return f"https://docs.example.com/{contract_id}.pdf"


class FakeGateway:
    """In-memory payment gateway.

    ``charge_results`` is consumed in order; once empty every charge
    succeeds.  An entry that is an exception is raised instead of returned.
    ``charge_delay`` keeps each charge in flight long enough for concurrency
    tests to overlap.
    """

    def __init__(
        self,
        charge_results: list[ChargeResult | BaseException] | None = None,
        invoice_failures: int = 0,
        charge_delay: float = 0.0,
    ) -> None:
        self.charge_results = list(charge_results or [])
        self.invoice_failures = invoice_failures
        self.charge_delay = charge_delay
        self.invoices: list[str] = []
        self.charges: list[str] = []
        self.charge_attempts: list[int] = []
        self._lock = threading.Lock()

    def create_invoice(self, milestone: PaymentMilestone) -> str:
        with self._lock:
            if self.invoice_failures > 0:
                self.invoice_failures -= 1
                raise TransportFailure("gateway unavailable")
            self.invoices.append(milestone.id)
            return f"inv-{milestone.id}"

    def charge(self, invoice_id: str, attempt: int = 1) -> ChargeResult:
        with self._lock:
            self.charges.append(invoice_id)
            self.charge_attempts.append(attempt)
            outcome = self.charge_results.pop(0) if self.charge_results else None
        if self.charge_delay:
            time.sleep(self.charge_delay)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return ChargeResult(success=True, transaction_id=f"txn-{len(self.charges)}")
        return outcome


# ---------------------------------------------------------------------------
# Infrastructure fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Iterator[DealStore]:
    """DealStore backed by a fresh in-memory database."""
    deal_store = DealStore(init_db(":memory:"))
    yield deal_store
    deal_store.close()


@pytest.fixture
def caller() -> Iterator[BoundedCaller]:
    """Worker pool for bounded external calls."""
    bounded = BoundedCaller(max_workers=8)
    yield bounded
    bounded.shutdown()


@pytest.fixture
def make_classifier() -> type[FakeClassifier]:
    """The FakeClassifier class, for tests that need a specific payload."""
    return FakeClassifier


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def budget() -> BudgetConstraints:
    """The 2000 USD budget used throughout the examples."""
    return BudgetConstraints(max_budget=Decimal("2000"))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


# ---------------------------------------------------------------------------
# Service factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_engine(
    store: DealStore, caller: BoundedCaller, locks: KeyedLocks, transport: FakeTransport
) -> Callable[..., NegotiationEngine]:
    """Build a NegotiationEngine with zero retry backoff.

    Keyword arguments override the classifier, transport, notifiers, or
    any ``EngineConfig`` field.
    """

    def factory(
        classifier: Any = None,
        transport_override: Any = None,
        escalation_notifier: Any = None,
        error_notifier: Any = None,
        **config: Any,
    ) -> NegotiationEngine:
        config.setdefault("retry_initial_wait", 0.0)
        return NegotiationEngine(
            store,
            classifier,
            transport_override or transport,
            caller,
            locks=locks,
            config=EngineConfig(**config),
            escalation_notifier=escalation_notifier,
            error_notifier=error_notifier,
        )

    return factory


@pytest.fixture
def payments(
    store: DealStore, caller: BoundedCaller, locks: KeyedLocks, gateway: FakeGateway
) -> PaymentCoordinator:
    return PaymentCoordinator(
        store,
        gateway,
        caller,
        locks=locks,
        config=PaymentConfig(gateway_timeout=2.0, retry_initial_wait=0.0),
    )


@pytest.fixture
def contracts(
    store: DealStore,
    caller: BoundedCaller,
    locks: KeyedLocks,
    payments: PaymentCoordinator,
    renderer: FakeRenderer,
) -> ContractService:
    return ContractService(
        store,
        payments,
        caller,
        renderer=renderer,
        locks=locks,
        config=ContractConfig(extraction_timeout=2.0, render_timeout=2.0),
    )


@pytest.fixture
def ready_deal(store: DealStore, budget: BudgetConstraints) -> Callable[..., Deal]:
    """Insert a deal directly in ``ready_for_contract``."""

    def factory(proposed_amount: str | None = "1800") -> Deal:
        classification = Classification(
            sentiment=Sentiment.POSITIVE,
            proposed_amount=Decimal(proposed_amount) if proposed_amount else None,
            is_within_budget=True,
        )
        return store.insert_deal(
            Deal(
                campaign_id="camp-001",
                creator_id="creator-001",
                budget=budget,
                stage=DealStage.READY_FOR_CONTRACT,
                latest_classification=classification,
            )
        )

    return factory


# ---------------------------------------------------------------------------
# Application fixtures
# ---------------------------------------------------------------------------

INBOUND_SECRET = "inbound-secret"
PAYMENT_SECRET = "payment-secret"


@pytest.fixture
def app_settings() -> Settings:
    """Settings for an in-memory app with signed webhooks and no backoff."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_path=Path(":memory:"),
        inbound_webhook_secret=INBOUND_SECRET,  # type: ignore[arg-type]
        payment_webhook_secret=PAYMENT_SECRET,  # type: ignore[arg-type]
        retry_initial_wait_seconds=0.0,
        classification_timeout_seconds=2.0,
        gateway_timeout_seconds=2.0,
        render_timeout_seconds=2.0,
        extraction_timeout_seconds=2.0,
    )


@pytest.fixture
def make_services(
    app_settings: Settings,
    transport: FakeTransport,
    gateway: FakeGateway,
    renderer: FakeRenderer,
) -> Iterator[Callable[..., dict[str, Any]]]:
    """Build the full service graph around the in-memory fakes."""
    built: list[dict[str, Any]] = []

    def factory(classifier: Any = None, **settings_overrides: Any) -> dict[str, Any]:
        settings = app_settings.model_copy(update=settings_overrides)
        services = initialize_services(
            settings,
            transport=transport,
            gateway=gateway,
            renderer=renderer,
            classifier=classifier or FakeClassifier(error=RuntimeError("offline")),
        )
        built.append(services)
        return services

    yield factory
    for services in built:
        close_services(services)


@pytest.fixture
def make_client(make_services: Callable[..., dict[str, Any]]) -> Callable[..., TestClient]:
    """Return a TestClient factory; keyword arguments go to ``make_services``."""

    def factory(**kwargs: Any) -> TestClient:
        return TestClient(create_app(make_services(**kwargs)))

    return factory


@pytest.fixture
def post_signed() -> Callable[..., Any]:
    """POST a JSON body with a valid ``X-Signature`` header."""

    def post(
        client: TestClient, path: str, payload: Any, secret: str = INBOUND_SECRET
    ) -> Any:
        body = json.dumps(payload).encode()
        signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return client.post(
            path,
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": signature},
        )

    return post
