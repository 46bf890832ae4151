"""Prometheus metrics instrumentation for the deal lifecycle engine.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus business counters.
- ``REPLIES_PROCESSED``: Counter of classified replies, by chosen action.
- ``CLASSIFICATION_FALLBACKS``: Counter of replies classified by the rule-based fallback.
- ``ESCALATIONS_RAISED``: Counter of new human-review requests.
- ``OUTBOUND_MESSAGES``: Counter of outbound deliveries, by delivery status.
- ``CONTRACTS_CREATED``: Counter of contracts created, by terms source.
- ``MILESTONE_PAYMENTS``: Counter of charge attempts, by outcome.

Business metrics are updated at state transitions (not by polling the database).
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

REPLIES_PROCESSED: Counter = Counter(
    "dealflow_replies_processed_total",
    "Inbound replies processed, by strategy action",
    ["action"],
)

CLASSIFICATION_FALLBACKS: Counter = Counter(
    "dealflow_classification_fallbacks_total",
    "Replies classified by the rule-based fallback",
    ["reason"],
)

ESCALATIONS_RAISED: Counter = Counter(
    "dealflow_escalations_raised_total",
    "Human-review requests created",
)

OUTBOUND_MESSAGES: Counter = Counter(
    "dealflow_outbound_messages_total",
    "Outbound message deliveries, by delivery status",
    ["status"],
)

CONTRACTS_CREATED: Counter = Counter(
    "dealflow_contracts_created_total",
    "Contracts created from agreed deals, by terms source",
    ["terms_source"],
)

MILESTONE_PAYMENTS: Counter = Counter(
    "dealflow_milestone_payments_total",
    "Milestone charge attempts, by outcome",
    ["outcome"],
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
