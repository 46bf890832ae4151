"""Tests for ContractService: creation, signature, and activation."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from dealflow.contracts.service import ContractConfig, ContractService
from dealflow.domain.errors import (
    ExtractionUnavailable,
    InvalidTransitionError,
    NotFound,
    PreconditionFailed,
    RenderingFailed,
)
from dealflow.domain.models import Deal, MilestoneTerm
from dealflow.domain.types import ContractStatus, DealStage, MilestoneStatus

EXTRACTED_TERMS = {
    "deliverables": [{"description": "Instagram Reel", "quantity": 2}],
    "payment_amount": "1800",
    "milestones": [
        {"description": "Signature", "amount": "600", "due_date": "Upon signature"},
        {"description": "Go-live", "amount": "1200", "due_date": "Campaign launch"},
    ],
    "deadlines": {
        "content_creation": "2024-03-15",
        "campaign_launch": "2024-03-22",
        "final_reporting": "2024-04-05",
    },
    "usage_rights": "12 months, organic only",
}


@pytest.fixture
def with_extractor(store, caller, locks, payments, renderer):
    def factory(extractor) -> ContractService:
        return ContractService(
            store,
            payments,
            caller,
            extractor=extractor,
            renderer=renderer,
            locks=locks,
            config=ContractConfig(extraction_timeout=0.2, render_timeout=2.0),
        )

    return factory


class TestCreateContract:
    def test_default_terms_without_extractor(self, contracts, ready_deal, store):
        deal = ready_deal("1800")
        contract = contracts.create_contract_from_deal(deal.id)

        assert contract.status is ContractStatus.DRAFTING
        assert contract.terms_source == "default"
        assert contract.terms.payment_amount == Decimal("1800.00")
        assert store.get_deal(deal.id).stage is DealStage.CONTRACT_CREATED

        milestones = store.list_milestones(contract.id)
        assert [m.amount for m in milestones] == [Decimal("900.00"), Decimal("900.00")]
        assert all(m.status is MilestoneStatus.CREATED for m in milestones)

    def test_is_idempotent(self, contracts, ready_deal, store):
        deal = ready_deal()
        first = contracts.create_contract_from_deal(deal.id)
        second = contracts.create_contract_from_deal(deal.id)
        assert second.id == first.id
        assert len(contracts.list_contracts(deal_id=deal.id)) == 1
        assert len(store.list_milestones(first.id)) == 2

    def test_requires_ready_deal(self, contracts, store, budget):
        deal = store.insert_deal(Deal(campaign_id="c", creator_id="cr", budget=budget))
        with pytest.raises(PreconditionFailed):
            contracts.create_contract_from_deal(deal.id)
        assert contracts.get_contract_for_deal(deal.id) is None

    def test_unknown_deal(self, contracts):
        with pytest.raises(NotFound):
            contracts.create_contract_from_deal("deal_missing")

    def test_extracted_terms(self, with_extractor, ready_deal):
        extractor = MagicMock()
        extractor.extract_terms.return_value = EXTRACTED_TERMS
        service = with_extractor(extractor)

        contract = service.create_contract_from_deal(ready_deal().id)

        assert contract.terms_source == "extracted"
        assert contract.terms.usage_rights == "12 months, organic only"
        assert [m.amount for m in contract.terms.milestones] == [Decimal("600"), Decimal("1200")]

    @pytest.mark.parametrize(
        "failure",
        [
            ExtractionUnavailable("model refused"),
            RuntimeError("boom"),
        ],
    )
    def test_extraction_failure_uses_defaults(self, with_extractor, ready_deal, failure):
        extractor = MagicMock()
        extractor.extract_terms.side_effect = failure
        contract = with_extractor(extractor).create_contract_from_deal(ready_deal().id)
        assert contract.terms_source == "default"

    def test_inconsistent_extraction_uses_defaults(self, with_extractor, ready_deal):
        extractor = MagicMock()
        extractor.extract_terms.return_value = {**EXTRACTED_TERMS, "payment_amount": "2000"}
        contract = with_extractor(extractor).create_contract_from_deal(ready_deal().id)
        assert contract.terms_source == "default"
        assert contract.terms.payment_amount == Decimal("1800.00")

    def test_sub_cent_agreement_gets_a_single_milestone(self, contracts, ready_deal, store):
        deal = ready_deal("0.001")
        contract = contracts.create_contract_from_deal(deal.id)

        assert contract.terms.payment_amount == Decimal("0.01")
        assert [m.amount for m in store.list_milestones(contract.id)] == [Decimal("0.01")]
        assert store.get_deal(deal.id).stage is DealStage.CONTRACT_CREATED

    def test_invalid_default_terms_keep_deal_ready(
        self, contracts, ready_deal, store, monkeypatch
    ):
        def broken_terms(deal, settings):
            return MilestoneTerm(description="Signing", amount=Decimal("0"), due_date="now")

        monkeypatch.setattr("dealflow.contracts.service.default_terms", broken_terms)
        deal = ready_deal()

        with pytest.raises(PreconditionFailed, match="no valid default terms"):
            contracts.create_contract_from_deal(deal.id)

        assert contracts.get_contract_for_deal(deal.id) is None
        assert store.get_deal(deal.id).stage is DealStage.READY_FOR_CONTRACT


class TestSignatureLifecycle:
    def test_send_for_signature_renders_document(self, contracts, ready_deal, renderer):
        contract = contracts.create_contract_from_deal(ready_deal().id)
        sent = contracts.send_for_signature(contract.id)
        assert sent.status is ContractStatus.AWAITING_SIGNATURES
        assert sent.document_url == f"https://docs.example.com/{contract.id}.pdf"
        assert renderer.rendered == [contract.id]

    def test_rendering_failure_keeps_drafting(self, contracts, ready_deal, renderer):
        contract = contracts.create_contract_from_deal(ready_deal().id)
        renderer.error = RuntimeError("template missing")
        with pytest.raises(RenderingFailed, match="template missing"):
            contracts.send_for_signature(contract.id)
        assert contracts.get_contract(contract.id).status is ContractStatus.DRAFTING

    def test_cannot_sign_a_draft(self, contracts, ready_deal):
        contract = contracts.create_contract_from_deal(ready_deal().id)
        with pytest.raises(InvalidTransitionError):
            contracts.mark_signed(contract.id)

    def test_cannot_send_twice(self, contracts, ready_deal):
        contract = contracts.create_contract_from_deal(ready_deal().id)
        contracts.send_for_signature(contract.id)
        with pytest.raises(InvalidTransitionError):
            contracts.send_for_signature(contract.id)

    def test_activate_invoices_milestones(self, contracts, ready_deal, gateway, store):
        contract = contracts.create_contract_from_deal(ready_deal().id)
        contracts.send_for_signature(contract.id)
        contracts.mark_signed(contract.id)

        result = contracts.activate(contract.id)

        assert result.contract.status is ContractStatus.ACTIVE
        assert result.fully_invoiced is True
        milestones = store.list_milestones(contract.id)
        assert [m.status for m in milestones] == [MilestoneStatus.INVOICED] * 2
        assert [m.invoice_id for m in milestones] == [f"inv-{m.id}" for m in milestones]
        assert len(gateway.invoices) == 2

    def test_activation_reports_invoice_failures(self, contracts, ready_deal, gateway):
        contract = contracts.create_contract_from_deal(ready_deal().id)
        contracts.send_for_signature(contract.id)
        contracts.mark_signed(contract.id)
        # Three attempts for the first milestone all fail.
        gateway.invoice_failures = 3

        result = contracts.activate(contract.id)

        assert result.contract.status is ContractStatus.ACTIVE
        assert result.fully_invoiced is False
        assert [r.success for r in result.milestones] == [False, True]
        assert result.milestones[0].status is MilestoneStatus.CREATED
