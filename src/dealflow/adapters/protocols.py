"""Boundary contracts for the collaborators the engine consumes.

Implementations live outside the engine (LLM services, messaging, document
rendering, payment processing).  Every method may block on I/O; the engine
calls them through a :class:`~dealflow.resilience.BoundedCaller` so each call
has a timeout.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from dealflow.domain.models import (
    ChargeResult,
    Classification,
    CommunicationRecord,
    ContractTerms,
    Deal,
    PaymentMilestone,
)


class Classifier(Protocol):
    """Turns a free-text reply into structured negotiation fields."""

    def classify(
        self, history: list[CommunicationRecord], latest_reply: str
    ) -> Classification | Mapping[str, Any]:
        """Classify *latest_reply* in the context of the conversation so far.

        May return a raw mapping; the engine validates it and falls back to
        rule-based classification when it is malformed.
        """
        ...


class TermsExtractor(Protocol):
    """Extracts structured contract terms from an agreed negotiation."""

    def extract_terms(
        self, deal: Deal, history: list[CommunicationRecord]
    ) -> ContractTerms | Mapping[str, Any]:
        """Return the agreed terms; may be a raw mapping to be validated."""
        ...


class MessageTransport(Protocol):
    """Delivers outbound messages to the creator."""

    def send_message(self, deal_id: str, content: str) -> str:
        """Send *content* on the deal's thread and return a delivery id."""
        ...


class DocumentRenderer(Protocol):
    """Renders a contract document from its terms."""

    def render_contract(self, contract_id: str, terms: ContractTerms) -> str:
        """Render the document and return its URL."""
        ...


class PaymentGateway(Protocol):
    """Creates invoices and executes charges."""

    def create_invoice(self, milestone: PaymentMilestone) -> str:
        """Create an invoice for *milestone* and return its id."""
        ...

    def charge(self, invoice_id: str, attempt: int = 1) -> ChargeResult:
        """Charge an invoice.

        *attempt* numbers the charges of one invoice.  Resending the same
        attempt must not charge twice; a new attempt may follow a decline.

        Raises:
            GatewayAmbiguous: If the outcome cannot be determined.
        """
        ...
