"""Tests for the flows that chain negotiation and contract creation."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from dealflow.domain.errors import InvalidTransitionError
from dealflow.domain.models import BudgetConstraints
from dealflow.domain.types import ContractStatus, DealStage, StrategyAction
from dealflow.workflows import apply_escalation_decision, handle_inbound_message

BUDGET = BudgetConstraints(max_budget=Decimal("2000"))


def _open(services):
    return services["engine"].open_deal("camp-001", "creator-001", BUDGET)


def test_agreement_creates_contract(make_services, make_classifier):
    services = make_services(
        classifier=make_classifier(result={"sentiment": "positive", "proposed_amount": "1800"})
    )
    deal = _open(services)

    result = handle_inbound_message(services, deal.id, "Yes! $1,800 works.")

    assert result.deal.stage is DealStage.CONTRACT_CREATED
    assert result.contract is not None
    assert result.contract.status is ContractStatus.DRAFTING
    assert result.contract.terms.payment_amount == Decimal("1800.00")
    assert result.strategy.action is StrategyAction.ACCEPT
    assert result.outbound_delivered is True


def test_escalation_has_no_contract(make_services, make_classifier):
    services = make_services(
        classifier=make_classifier(result={"sentiment": "positive", "proposed_amount": "5000"})
    )
    deal = _open(services)

    result = handle_inbound_message(services, deal.id, "$5,000 and it's yours")

    assert result.deal.stage is DealStage.PENDING_HUMAN_REVIEW
    assert result.escalation is not None
    assert result.contract is None
    assert result.outbound_delivered is None


def test_domain_errors_propagate_unchanged(make_services, make_classifier):
    services = make_services(
        classifier=make_classifier(result={"sentiment": "negative"})
    )
    deal = _open(services)
    handle_inbound_message(services, deal.id, "No thanks.")

    with pytest.raises(InvalidTransitionError):
        handle_inbound_message(services, deal.id, "Changed my mind")
    assert services["engine"].get_deal(deal.id).stage is DealStage.DECLINED


def test_unexpected_failure_moves_deal_to_error(make_services, make_classifier):
    services = make_services(
        classifier=make_classifier(result={"sentiment": "positive", "proposed_amount": "1800"})
    )
    broken_contracts = MagicMock()
    broken_contracts.create_contract_from_deal.side_effect = RuntimeError("disk full")
    services = {**services, "contracts": broken_contracts}
    deal = _open(services)

    with pytest.raises(RuntimeError, match="disk full"):
        handle_inbound_message(services, deal.id, "Yes! $1,800 works.")

    assert services["engine"].get_deal(deal.id).stage is DealStage.ERROR


def test_sub_cent_agreement_creates_contract(make_services, make_classifier):
    services = make_services(
        classifier=make_classifier(result={"sentiment": "positive", "proposed_amount": "0.001"})
    )
    deal = _open(services)

    result = handle_inbound_message(services, deal.id, "Do it for a tenth of a cent")

    assert result.deal.stage is DealStage.CONTRACT_CREATED
    assert result.contract.terms.payment_amount == Decimal("0.01")


def test_failure_on_terminal_deal_reraises_original_error(
    make_services, make_classifier, monkeypatch
):
    services = make_services(classifier=make_classifier(result={"sentiment": "negative"}))
    deal = _open(services)
    handle_inbound_message(services, deal.id, "No thanks.")
    monkeypatch.setattr(
        services["engine"], "process_reply", MagicMock(side_effect=RuntimeError("queue closed"))
    )

    with pytest.raises(RuntimeError, match="queue closed"):
        handle_inbound_message(services, deal.id, "Changed my mind")

    assert services["engine"].get_deal(deal.id).stage is DealStage.DECLINED


def test_approved_escalation_creates_contract(make_services, make_classifier):
    services = make_services(
        classifier=make_classifier(result={"sentiment": "positive", "proposed_amount": "2500"})
    )
    deal = _open(services)
    escalation = handle_inbound_message(services, deal.id, "$2,500 please").escalation
    assert escalation is not None

    result = apply_escalation_decision(
        services, escalation.id, "approved", note="worth it", action=StrategyAction.ACCEPT
    )

    assert result.deal.stage is DealStage.CONTRACT_CREATED
    assert result.contract.terms.payment_amount == Decimal("2500.00")
    assert result.escalation.note == "worth it"
    assert result.outbound_delivered is True


def test_rejected_escalation_declines(make_services, make_classifier):
    services = make_services(
        classifier=make_classifier(result={"sentiment": "positive", "proposed_amount": "2500"})
    )
    deal = _open(services)
    escalation = handle_inbound_message(services, deal.id, "$2,500 please").escalation

    result = apply_escalation_decision(services, escalation.id, "rejected")

    assert result.deal.stage is DealStage.DECLINED
    assert result.contract is None
    assert result.strategy.action is StrategyAction.DECLINE_POLITELY
