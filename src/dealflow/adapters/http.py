"""httpx adapters for the messaging, document, and payment services.

Each adapter speaks a small JSON contract:

- messaging:  ``POST /messages`` -> ``{"delivery_id": ...}``
- documents:  ``POST /contracts/render`` -> ``{"document_url": ...}``
- payments:   ``POST /invoices`` -> ``{"invoice_id": ...}`` and
  ``POST /invoices/{id}/charge`` -> ``{"status": "succeeded"|"failed", ...}``

Responses that do not match the contract raise the matching domain error so
the engine never guesses.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from dealflow.domain.errors import GatewayAmbiguous, TransportFailure
from dealflow.domain.models import ChargeResult, ContractTerms, PaymentMilestone

logger = structlog.get_logger()


def _auth_headers(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


class HttpMessageTransport:
    """Messaging service client implementing ``MessageTransport``."""

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @classmethod
    def from_url(
        cls, base_url: str, api_key: str = "", timeout: float = 10.0
    ) -> HttpMessageTransport:
        """Build a transport with its own ``httpx.Client``."""
        return cls(httpx.Client(base_url=base_url, headers=_auth_headers(api_key), timeout=timeout))

    def send_message(self, deal_id: str, content: str) -> str:
        """Send a message and return the delivery id.

        Raises:
            TransportFailure: On network errors, non-2xx responses, or a
                response without ``delivery_id``.
        """
        try:
            response = self._client.post("/messages", json={"deal_id": deal_id, "content": content})
            response.raise_for_status()
            body: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransportFailure(f"messaging service error: {exc}") from exc

        delivery_id = body.get("delivery_id")
        if not delivery_id:
            raise TransportFailure("messaging service response missing delivery_id")
        return str(delivery_id)


class HttpDocumentRenderer:
    """Document service client implementing ``DocumentRenderer``."""

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @classmethod
    def from_url(cls, base_url: str, timeout: float = 30.0) -> HttpDocumentRenderer:
        """Build a renderer with its own ``httpx.Client``."""
        return cls(httpx.Client(base_url=base_url, timeout=timeout))

    def render_contract(self, contract_id: str, terms: ContractTerms) -> str:
        """Render the contract document and return its URL."""
        response = self._client.post(
            "/contracts/render",
            json={"contract_id": contract_id, "terms": terms.model_dump(mode="json")},
        )
        response.raise_for_status()
        document_url = response.json().get("document_url")
        if not document_url:
            raise ValueError("document service response missing document_url")
        return str(document_url)


class HttpPaymentGateway:
    """Payment service client implementing ``PaymentGateway``."""

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @classmethod
    def from_url(cls, base_url: str, api_key: str, timeout: float = 15.0) -> HttpPaymentGateway:
        """Build a gateway client with its own ``httpx.Client``."""
        return cls(httpx.Client(base_url=base_url, headers=_auth_headers(api_key), timeout=timeout))

    def create_invoice(self, milestone: PaymentMilestone) -> str:
        """Create an invoice for a milestone and return the invoice id.

        The milestone id is sent as the idempotency key, so a retried request
        returns the same invoice.

        Raises:
            TransportFailure: On network errors, non-2xx responses, or a
                response without ``invoice_id``.
        """
        try:
            response = self._client.post(
                "/invoices",
                json={
                    "reference": milestone.id,
                    "contract_id": milestone.contract_id,
                    "description": milestone.description,
                    "amount": str(milestone.amount),
                    "due_date": milestone.due_date,
                },
                headers={"Idempotency-Key": f"invoice-{milestone.id}"},
            )
            response.raise_for_status()
            body: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransportFailure(f"payment service error: {exc}") from exc

        invoice_id = body.get("invoice_id")
        if not invoice_id:
            raise TransportFailure("payment service response missing invoice_id")
        return str(invoice_id)

    def charge(self, invoice_id: str, attempt: int = 1) -> ChargeResult:
        """Charge an invoice.

        The idempotency key names the invoice and the attempt, so a resent
        request replays its own outcome while the charge after a decline is
        a new charge.  Only an explicit ``succeeded`` with a transaction id or an explicit
        ``failed`` is trusted; anything else is ambiguous.

        Raises:
            GatewayAmbiguous: On network errors, 5xx responses, or an
                unrecognized response body.
        """
        try:
            response = self._client.post(
                f"/invoices/{invoice_id}/charge",
                headers={"Idempotency-Key": f"charge-{invoice_id}-{attempt}"},
            )
        except httpx.HTTPError as exc:
            raise GatewayAmbiguous(f"payment service unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise GatewayAmbiguous(f"payment service returned {response.status_code}")

        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise GatewayAmbiguous("payment service returned a non-JSON body") from exc

        status = body.get("status")
        if status == "succeeded" and body.get("transaction_id"):
            return ChargeResult(success=True, transaction_id=str(body["transaction_id"]))
        if status == "failed":
            return ChargeResult(
                success=False,
                transaction_id=body.get("transaction_id"),
                reason=str(body.get("reason") or "unspecified"),
            )

        logger.warning("gateway_unrecognized_response", invoice_id=invoice_id, body=body)
        raise GatewayAmbiguous(f"unrecognized charge response status: {status!r}")
