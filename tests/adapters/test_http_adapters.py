"""Tests for the httpx adapters against a mock transport."""

from __future__ import annotations

import json
from collections.abc import Callable
from decimal import Decimal

import httpx
import pytest

from dealflow.adapters.http import HttpDocumentRenderer, HttpMessageTransport, HttpPaymentGateway
from dealflow.contracts.terms import default_terms, milestones_for
from dealflow.domain.errors import GatewayAmbiguous, TransportFailure
from dealflow.domain.models import BudgetConstraints, Deal


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    return httpx.Client(
        base_url="https://api.example.com",
        transport=httpx.MockTransport(handler),
        headers={"Authorization": "Bearer test-key"},
    )


@pytest.fixture
def milestone():
    deal = Deal(
        campaign_id="camp-001",
        creator_id="creator-001",
        budget=BudgetConstraints(max_budget=Decimal("1000")),
    )
    return milestones_for("ctr_1", default_terms(deal))[0]


class TestMessageTransport:
    def test_returns_delivery_id(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"delivery_id": "msg-42"})

        transport = HttpMessageTransport(_client(handler))
        assert transport.send_message("deal_1", "Hello") == "msg-42"
        assert seen[0].url.path == "/messages"
        assert json.loads(seen[0].content) == {"deal_id": "deal_1", "content": "Hello"}
        assert seen[0].headers["Authorization"] == "Bearer test-key"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(503, json={"error": "unavailable"}),
            httpx.Response(200, json={}),
            httpx.Response(200, content=b"not json"),
        ],
    )
    def test_bad_responses_are_transport_failures(self, response):
        transport = HttpMessageTransport(_client(lambda request: response))
        with pytest.raises(TransportFailure):
            transport.send_message("deal_1", "Hello")

    def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportFailure, match="refused"):
            HttpMessageTransport(_client(handler)).send_message("deal_1", "Hello")


class TestDocumentRenderer:
    def test_returns_document_url(self, milestone):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            return httpx.Response(
                200, json={"document_url": f"https://docs/{body['contract_id']}.pdf"}
            )

        deal = Deal(
            campaign_id="c", creator_id="cr", budget=BudgetConstraints(max_budget=Decimal("800"))
        )
        renderer = HttpDocumentRenderer(_client(handler))
        assert renderer.render_contract("ctr_1", default_terms(deal)) == "https://docs/ctr_1.pdf"

    def test_missing_url_raises(self):
        deal = Deal(
            campaign_id="c", creator_id="cr", budget=BudgetConstraints(max_budget=Decimal("800"))
        )
        renderer = HttpDocumentRenderer(_client(lambda request: httpx.Response(200, json={})))
        with pytest.raises(ValueError):
            renderer.render_contract("ctr_1", default_terms(deal))


class TestPaymentGateway:
    def test_create_invoice_sends_idempotency_key(self, milestone):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"invoice_id": "inv-1"})

        gateway = HttpPaymentGateway(_client(handler))
        assert gateway.create_invoice(milestone) == "inv-1"
        assert seen[0].headers["Idempotency-Key"] == f"invoice-{milestone.id}"
        assert json.loads(seen[0].content)["amount"] == "500.00"

    def test_create_invoice_failure(self, milestone):
        gateway = HttpPaymentGateway(_client(lambda request: httpx.Response(500)))
        with pytest.raises(TransportFailure):
            gateway.create_invoice(milestone)

    def test_charge_succeeded(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/invoices/inv-1/charge"
            return httpx.Response(200, json={"status": "succeeded", "transaction_id": "txn-9"})

        result = HttpPaymentGateway(_client(handler)).charge("inv-1")
        assert result.success is True
        assert result.transaction_id == "txn-9"

    def test_charge_declined_keeps_reason(self):
        gateway = HttpPaymentGateway(
            _client(
                lambda request: httpx.Response(
                    402, json={"status": "failed", "reason": "insufficient_funds"}
                )
            )
        )
        result = gateway.charge("inv-1")
        assert result.success is False
        assert result.reason == "insufficient_funds"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(502),
            httpx.Response(200, json={"status": "processing"}),
            httpx.Response(200, json={"status": "succeeded"}),
            httpx.Response(200, content=b"<html>"),
        ],
    )
    def test_ambiguous_charges(self, response):
        gateway = HttpPaymentGateway(_client(lambda request: response))
        with pytest.raises(GatewayAmbiguous):
            gateway.charge("inv-1")

    def test_charge_network_error_is_ambiguous(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GatewayAmbiguous):
            HttpPaymentGateway(_client(handler)).charge("inv-1")

    def test_charge_attempts_use_distinct_idempotency_keys(self):
        keys: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            keys.append(request.headers["Idempotency-Key"])
            return httpx.Response(200, json={"status": "succeeded", "transaction_id": "txn-1"})

        gateway = HttpPaymentGateway(_client(handler))
        gateway.charge("inv-1")
        gateway.charge("inv-1", attempt=2)
        gateway.charge("inv-1", attempt=2)

        assert keys == ["charge-inv-1-1", "charge-inv-1-2", "charge-inv-1-2"]
